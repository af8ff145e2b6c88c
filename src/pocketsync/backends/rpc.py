"""
ckb-light-client JSON-RPC backend.

Talks to a light client over HTTP. When a binary path is configured the
backend also owns the light client process: ``init`` launches it with the
given config file and ``close`` terminates it.

The light client keeps its script registrations and block filters in a
per-network store and cannot be re-initialized against a different network
inside a running process, which is why network switches relaunch the host.
"""

from __future__ import annotations

import asyncio
import tomllib
from pathlib import Path
from typing import Any, TypeVar

import httpx
import pydantic
from loguru import logger

from pocketsync.amount import to_hex_quantity
from pocketsync.backends.base import LightClientBackend, Order, SetScriptsCommand
from pocketsync.backends.models import (
    CellsCapacity,
    HeaderView,
    IndexerCell,
    LocalNode,
    Page,
    RemoteNode,
    ScriptStatus,
    SearchKey,
    Transaction,
    TransactionWithStatus,
    TxWithCell,
)
from pocketsync.errors import BroadcastError, QueryError

# Timeout for regular RPC calls (seconds)
DEFAULT_RPC_TIMEOUT = 30.0

# How long start() waits for the RPC endpoint to answer
START_PROBE_ATTEMPTS = 10
START_PROBE_INTERVAL = 1.0

M = TypeVar("M", bound=pydantic.BaseModel)


class RpcError(Exception):
    """JSON-RPC error object returned by the light client."""

    def __init__(self, code: Any, message: str) -> None:
        super().__init__(f"RPC error {code}: {message}")
        self.code = code
        self.rpc_message = message


class LightClientRpcBackend(LightClientBackend):
    """
    Light client backend over JSON-RPC 2.0.

    Usage:
        backend = LightClientRpcBackend(rpc_url="http://127.0.0.1:9000")
        if await backend.init(None) and await backend.start():
            tip = await backend.get_tip_header()
    """

    def __init__(
        self,
        rpc_url: str = "http://127.0.0.1:9000",
        binary: str | None = None,
        timeout: float = DEFAULT_RPC_TIMEOUT,
        start_probe_attempts: int = START_PROBE_ATTEMPTS,
        start_probe_interval: float = START_PROBE_INTERVAL,
    ):
        self.rpc_url = rpc_url.rstrip("/")
        self.binary = binary
        self.timeout = timeout
        self.start_probe_attempts = start_probe_attempts
        self.start_probe_interval = start_probe_interval

        self.client = httpx.AsyncClient(timeout=timeout)
        self._request_id = 0
        self._process: asyncio.subprocess.Process | None = None
        self.config: dict[str, Any] = {}

    async def _rpc_call(self, method: str, params: list[Any] | None = None) -> Any:
        """
        Make an RPC call to the light client.

        Raises:
            RpcError: On a JSON-RPC error object
            httpx.HTTPError: On connection/timeout errors
        """
        self._request_id += 1
        payload = {
            "jsonrpc": "2.0",
            "id": self._request_id,
            "method": method,
            "params": params or [],
        }

        response = await self.client.post(self.rpc_url, json=payload)
        response.raise_for_status()
        data = response.json()

        if "error" in data and data["error"]:
            error_info = data["error"]
            raise RpcError(error_info.get("code", "unknown"), error_info.get("message", ""))

        return data.get("result")

    async def _query(self, method: str, params: list[Any] | None = None) -> Any:
        """``_rpc_call`` with every failure mapped to ``QueryError``."""
        try:
            return await self._rpc_call(method, params)
        except RpcError as e:
            logger.error(f"RPC {method} failed: {e}")
            raise QueryError(str(e)) from e
        except httpx.TimeoutException as e:
            logger.error(f"RPC call timed out: {method} - {e}")
            raise QueryError(f"{method} timed out") from e
        except httpx.HTTPError as e:
            logger.error(f"RPC call failed: {method} - {e}")
            raise QueryError(f"{method} failed: {e}") from e
        except ValueError as e:
            # Body was not JSON
            raise QueryError(f"{method} returned a malformed response: {e}") from e

    @staticmethod
    def _decode(method: str, model: type[M], result: Any) -> M:
        if result is None:
            raise QueryError(f"{method} returned an empty result")
        try:
            return model.model_validate(result)
        except pydantic.ValidationError as e:
            raise QueryError(f"{method} returned an unexpected shape: {e}") from e

    # -- Lifecycle ---------------------------------------------------------

    async def init(self, config_path: str | None) -> bool:
        if config_path is not None:
            path = Path(config_path)
            try:
                with open(path, "rb") as f:
                    self.config = tomllib.load(f)
            except (OSError, tomllib.TOMLDecodeError) as e:
                logger.error(f"Failed to load light client config {path}: {e}")
                return False
            logger.debug(f"Loaded light client config from {path}")

        if self.binary is None:
            return True

        if self._process is not None and self._process.returncode is None:
            logger.debug("Light client process already running")
            return True

        if config_path is None:
            logger.error("Cannot launch light client without a config file")
            return False

        args = [self.binary, "run", "--config-file", config_path]
        try:
            self._process = await asyncio.create_subprocess_exec(
                *args,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.DEVNULL,
            )
        except OSError as e:
            logger.error(f"Failed to launch light client {self.binary}: {e}")
            return False

        logger.info(f"Launched light client (pid {self._process.pid})")
        return True

    async def start(self) -> bool:
        for attempt in range(1, self.start_probe_attempts + 1):
            if self._process is not None and self._process.returncode is not None:
                logger.error(f"Light client exited with code {self._process.returncode}")
                return False
            try:
                node = await self.local_node_info()
                logger.info(f"Light client online: version {node.version}, node {node.node_id}")
                return True
            except QueryError as e:
                logger.debug(f"Light client not answering yet (attempt {attempt}): {e}")
            if attempt < self.start_probe_attempts:
                await asyncio.sleep(self.start_probe_interval)
        return False

    async def close(self) -> None:
        await self.client.aclose()
        if self._process is not None and self._process.returncode is None:
            self._process.terminate()
            try:
                await asyncio.wait_for(self._process.wait(), timeout=10.0)
            except TimeoutError:
                logger.warning("Light client did not exit, killing it")
                self._process.kill()
                await self._process.wait()
            logger.info("Light client process stopped")

    # -- Scripts -----------------------------------------------------------

    async def set_scripts(
        self, scripts: list[ScriptStatus], command: SetScriptsCommand = "all"
    ) -> bool:
        params = [[s.model_dump(mode="json") for s in scripts], command]
        # set_scripts returns null on success
        await self._query("set_scripts", params)
        logger.debug(f"set_scripts({command}) registered {len(scripts)} script(s)")
        return True

    async def get_scripts(self) -> list[ScriptStatus]:
        result = await self._query("get_scripts")
        if result is None:
            return []
        if not isinstance(result, list):
            raise QueryError("get_scripts returned a non-list result")
        return [self._decode("get_scripts", ScriptStatus, item) for item in result]

    # -- Headers -----------------------------------------------------------

    async def get_tip_header(self) -> HeaderView:
        result = await self._query("get_tip_header")
        return self._decode("get_tip_header", HeaderView, result)

    async def get_header(self, block_hash: str) -> HeaderView | None:
        result = await self._query("get_header", [block_hash])
        if result is None:
            return None
        return self._decode("get_header", HeaderView, result)

    # -- Indexer -----------------------------------------------------------

    async def get_cells_capacity(self, search_key: SearchKey) -> CellsCapacity:
        result = await self._query(
            "get_cells_capacity", [search_key.model_dump(mode="json", exclude_none=True)]
        )
        return self._decode("get_cells_capacity", CellsCapacity, result)

    async def get_cells(
        self,
        search_key: SearchKey,
        order: Order = "desc",
        limit: int = 100,
        cursor: str | None = None,
    ) -> Page[IndexerCell]:
        params = [
            search_key.model_dump(mode="json", exclude_none=True),
            order,
            to_hex_quantity(limit),
            cursor,
        ]
        result = await self._query("get_cells", params)
        return self._decode("get_cells", Page[IndexerCell], result)

    async def get_transactions(
        self,
        search_key: SearchKey,
        order: Order = "desc",
        limit: int = 100,
        cursor: str | None = None,
    ) -> Page[TxWithCell]:
        params = [
            search_key.model_dump(mode="json", exclude_none=True),
            order,
            to_hex_quantity(limit),
            cursor,
        ]
        result = await self._query("get_transactions", params)
        return self._decode("get_transactions", Page[TxWithCell], result)

    # -- Transactions ------------------------------------------------------

    async def get_transaction(self, tx_hash: str) -> TransactionWithStatus | None:
        result = await self._query("get_transaction", [tx_hash])
        if result is None:
            return None
        return self._decode("get_transaction", TransactionWithStatus, result)

    async def send_transaction(self, tx: Transaction) -> str:
        tx_json = tx.model_dump(mode="json")
        try:
            result = await self._rpc_call("send_transaction", [tx_json])
        except RpcError as e:
            logger.error(f"Failed to broadcast transaction: {e}")
            raise BroadcastError(str(e)) from e
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"Failed to broadcast transaction: {e}")
            raise BroadcastError(f"Send failed: {e}") from e

        if not isinstance(result, str) or not result:
            raise BroadcastError("Send failed: light client returned no transaction hash")
        tx_hash = result.strip('"')
        logger.info(f"Broadcast transaction: {tx_hash}")
        return tx_hash

    # -- Diagnostics -------------------------------------------------------

    async def local_node_info(self) -> LocalNode:
        result = await self._query("local_node_info")
        return self._decode("local_node_info", LocalNode, result)

    async def get_peers(self) -> list[RemoteNode]:
        result = await self._query("get_peers")
        if not isinstance(result, list):
            raise QueryError("get_peers returned a non-list result")
        return [self._decode("get_peers", RemoteNode, item) for item in result]

    async def call_rpc(self, method: str, params: list[Any] | None = None) -> Any:
        return await self._query(method, params)
