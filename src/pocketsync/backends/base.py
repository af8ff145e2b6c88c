"""
Base class for light client backends.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Literal

from pocketsync.backends.models import (
    CellsCapacity,
    HeaderView,
    IndexerCell,
    Page,
    RemoteNode,
    ScriptStatus,
    SearchKey,
    Transaction,
    TransactionWithStatus,
    TxWithCell,
)

Order = Literal["asc", "desc"]
SetScriptsCommand = Literal["all", "partial", "delete"]


class LightClientBackend(ABC):
    """
    Chain-indexing client consumed by the sync engine.

    Query methods raise ``QueryError`` on transport failures, RPC errors, or
    responses that do not match the wire schema. ``send_transaction`` raises
    ``BroadcastError``. ``init``/``start`` report failure by returning False.
    """

    @abstractmethod
    async def init(self, config_path: str | None) -> bool:
        """Prepare the client from its config file."""

    @abstractmethod
    async def start(self) -> bool:
        """Bring the client online. Returns True once it answers queries."""

    @abstractmethod
    async def set_scripts(
        self, scripts: list[ScriptStatus], command: SetScriptsCommand = "all"
    ) -> bool:
        """
        Register scripts to index. ``all`` replaces the whole registered set.
        """

    @abstractmethod
    async def get_scripts(self) -> list[ScriptStatus]:
        """Registered scripts with the block each has been synced to."""

    @abstractmethod
    async def get_tip_header(self) -> HeaderView:
        """Header of the best block the client knows about."""

    @abstractmethod
    async def get_header(self, block_hash: str) -> HeaderView | None:
        """Header for a block hash, or None if the client has not fetched it."""

    @abstractmethod
    async def get_cells_capacity(self, search_key: SearchKey) -> CellsCapacity:
        """Aggregate capacity of indexed cells matching the key."""

    @abstractmethod
    async def get_cells(
        self,
        search_key: SearchKey,
        order: Order = "desc",
        limit: int = 100,
        cursor: str | None = None,
    ) -> Page[IndexerCell]:
        """One page of indexed cells matching the key."""

    @abstractmethod
    async def get_transactions(
        self,
        search_key: SearchKey,
        order: Order = "desc",
        limit: int = 100,
        cursor: str | None = None,
    ) -> Page[TxWithCell]:
        """One page of (transaction, touched cell) records matching the key."""

    @abstractmethod
    async def get_transaction(self, tx_hash: str) -> TransactionWithStatus | None:
        """Transaction with pool/chain status, or None if the client has no record."""

    @abstractmethod
    async def send_transaction(self, tx: Transaction) -> str:
        """Relay a signed transaction and return its hash."""

    @abstractmethod
    async def get_peers(self) -> list[RemoteNode]:
        """Connected peers (diagnostics only)."""

    @abstractmethod
    async def call_rpc(self, method: str, params: list[Any] | None = None) -> Any:
        """Raw RPC passthrough (diagnostics only)."""

    async def close(self) -> None:
        """Release resources held by the backend."""
        return None
