"""
Engine data models.

Snapshots published to observers are frozen so a subscriber can never see a
partially updated value.
"""

from __future__ import annotations

from enum import Enum
from typing import Literal

from pydantic.dataclasses import dataclass

from pocketsync.amount import shannons_to_ckb
from pocketsync.backends.models import OutPoint, Script


class NetworkType(str, Enum):
    MAINNET = "mainnet"
    TESTNET = "testnet"

    @property
    def hrp(self) -> str:
        """Address prefix used on this network."""
        return "ckb" if self is NetworkType.MAINNET else "ckt"


class SyncMode(str, Enum):
    """How far back to scan when an address is registered for the first time."""

    NEW_WALLET = "new_wallet"  # From the tip: brand new wallet, no history
    RECENT = "recent"  # ~30 days of blocks
    FULL_HISTORY = "full_history"  # From genesis, slow but complete
    CUSTOM = "custom"  # From a user-supplied height


class TransactionState(str, Enum):
    IDLE = "idle"
    SENDING = "sending"
    PENDING = "pending"
    PROPOSED = "proposed"
    CONFIRMED = "confirmed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (TransactionState.CONFIRMED, TransactionState.FAILED)

    @property
    def is_in_flight(self) -> bool:
        return self in (
            TransactionState.SENDING,
            TransactionState.PENDING,
            TransactionState.PROPOSED,
        )


TxDirection = Literal["in", "out", "self"]
PollStatus = Literal["unknown", "pending", "proposed", "committed", "rejected"]


@dataclass(frozen=True)
class SyncPreference:
    """Persisted sync preferences for one network."""

    network: NetworkType
    mode: SyncMode = SyncMode.RECENT
    custom_block_height: int | None = None
    last_synced_block: int = 0
    completed_initial_sync: bool = False


@dataclass(frozen=True)
class LiveCell:
    """A cell owned by the tracked script that no observed transaction has spent."""

    out_point: OutPoint
    capacity: int  # shannons
    lock: Script
    block_number: int
    type: Script | None = None
    data: str = "0x"

    @property
    def key(self) -> str:
        return self.out_point.key


@dataclass(frozen=True)
class CellsPage:
    items: list[LiveCell]
    next_cursor: str | None = None

    @property
    def total_capacity(self) -> int:
        return sum(cell.capacity for cell in self.items)


@dataclass(frozen=True)
class TransactionRecord:
    """One wallet transaction with its net effect on the tracked script."""

    tx_hash: str
    block_number: int
    balance_change: int  # absolute value, shannons
    direction: TxDirection
    fee: int = 0
    confirmations: int = 0
    block_hash: str | None = None
    block_timestamp: int | None = None

    @property
    def signed_change(self) -> int:
        return -self.balance_change if self.direction == "out" else self.balance_change

    def formatted_amount(self) -> str:
        amount = shannons_to_ckb(self.balance_change)
        sign = {"in": "+", "out": "-"}.get(self.direction, "")
        return f"{sign}{amount:.8f} CKB"


@dataclass(frozen=True)
class TransactionsPage:
    items: list[TransactionRecord]
    next_cursor: str | None = None


@dataclass(frozen=True)
class AccountStatus:
    address: str
    is_registered: bool
    tip_number: int
    synced_to_block: int
    sync_progress: float
    is_synced: bool

    @property
    def blocks_behind(self) -> int:
        return max(self.tip_number - self.synced_to_block, 0)


@dataclass(frozen=True)
class BalanceSnapshot:
    address: str
    capacity: int  # shannons
    as_of_block: int

    @property
    def capacity_ckb(self) -> str:
        return f"{shannons_to_ckb(self.capacity):.8f}"


@dataclass(frozen=True)
class TxStatusReport:
    """Result of a single transaction status poll."""

    tx_hash: str
    status: PollStatus
    confirmations: int = 0
    block_hash: str | None = None
    block_number: int | None = None
    reason: str | None = None

    @property
    def is_unknown(self) -> bool:
        return self.status == "unknown"

    @property
    def is_committed(self) -> bool:
        return self.status == "committed"


@dataclass(frozen=True)
class TrackerSnapshot:
    """Observable state of the send/track flow."""

    state: TransactionState = TransactionState.IDLE
    tx_hash: str | None = None
    confirmations: int = 0
    status_message: str = ""
    error: str | None = None


__all__ = [
    "NetworkType",
    "SyncMode",
    "TransactionState",
    "TxDirection",
    "PollStatus",
    "SyncPreference",
    "LiveCell",
    "CellsPage",
    "TransactionRecord",
    "TransactionsPage",
    "AccountStatus",
    "BalanceSnapshot",
    "TxStatusReport",
    "TrackerSnapshot",
]
