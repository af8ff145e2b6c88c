"""
Live balance reconciliation.

The light client's aggregate ``get_cells_capacity`` can still count cells that
an already-indexed transaction has spent. The live balance is therefore
recomputed from the cells page minus every outpoint consumed by the
transactions page. Both pages are bounded and newest-first, which covers a
light wallet's working set.
"""

from __future__ import annotations

from collections.abc import Iterable

from loguru import logger

from pocketsync.backends.base import LightClientBackend
from pocketsync.backends.models import IndexerCell, Script, SearchKey, TxWithCell
from pocketsync.constants import DEFAULT_HISTORY_LIMIT, DEFAULT_PAGE_LIMIT, SELF_HEAL_LOOKBACK_BLOCKS
from pocketsync.errors import EngineError, QueryError
from pocketsync.models import (
    BalanceSnapshot,
    CellsPage,
    LiveCell,
    TransactionRecord,
    TransactionsPage,
    TxDirection,
)
from pocketsync.wallet.sync import SyncCoordinator


def collect_spent_outpoints(transactions: Iterable[TxWithCell]) -> set[str]:
    """Outpoint keys consumed as inputs by any of the given transactions."""
    spent: set[str] = set()
    for record in transactions:
        for cell_input in record.transaction.inputs:
            spent.add(cell_input.previous_output.key)
    return spent


def partition_cells(
    cells: Iterable[IndexerCell], spent: set[str]
) -> tuple[list[IndexerCell], list[IndexerCell]]:
    """Split cells into ``(live, spent)`` by outpoint membership in ``spent``."""
    live: list[IndexerCell] = []
    consumed: list[IndexerCell] = []
    for cell in cells:
        if cell.out_point.key in spent:
            consumed.append(cell)
        else:
            live.append(cell)
    return live, consumed


def to_live_cell(cell: IndexerCell) -> LiveCell:
    return LiveCell(
        out_point=cell.out_point,
        capacity=cell.output.capacity,
        lock=cell.output.lock,
        block_number=cell.block_number,
        type=cell.output.type,
        data=cell.output_data or "0x",
    )


def _direction(net_change: int) -> TxDirection:
    if net_change > 0:
        return "in"
    if net_change < 0:
        return "out"
    return "self"


def summarize_transactions(records: Iterable[TxWithCell], tip: int = 0) -> list[TransactionRecord]:
    """
    Group indexer records by transaction hash, in first-seen order.

    Net change is the capacity of outputs paying the tracked script minus the
    capacity of its cells consumed as inputs.
    """
    grouped: dict[str, list[TxWithCell]] = {}
    for record in records:
        grouped.setdefault(record.transaction.hash, []).append(record)

    summaries: list[TransactionRecord] = []
    for tx_hash, touches in grouped.items():
        net_change = 0
        for touch in touches:
            if touch.io_type == "output":
                net_change += touch.io_capacity
            else:
                net_change -= touch.io_capacity

        block_number = touches[0].block_number
        confirmations = tip - block_number + 1 if 0 < block_number <= tip else 0
        summaries.append(
            TransactionRecord(
                tx_hash=tx_hash,
                block_number=block_number,
                balance_change=abs(net_change),
                direction=_direction(net_change),
                confirmations=confirmations,
            )
        )
    return summaries


class BalanceReconciler:
    def __init__(
        self,
        backend: LightClientBackend,
        sync: SyncCoordinator,
        lock_script: Script,
        address: str = "",
        page_limit: int = DEFAULT_PAGE_LIMIT,
    ):
        self.backend = backend
        self.sync = sync
        self.lock_script = lock_script
        self.address = address
        self.page_limit = page_limit

    @property
    def search_key(self) -> SearchKey:
        return SearchKey(script=self.lock_script, script_type="lock")

    async def _spent_outpoints(self) -> tuple[set[str], list[TxWithCell]]:
        page = await self.backend.get_transactions(self.search_key, "desc", self.page_limit)
        spent = collect_spent_outpoints(page.objects)
        logger.debug(f"Found {len(spent)} spent outpoints in {len(page.objects)} transaction records")
        return spent, page.objects

    async def refresh_balance(self) -> BalanceSnapshot:
        """
        Compute the live balance of the tracked script.

        When no live cell is found but transactions exist, the light client
        has most likely not scanned the block holding our change output yet;
        the script is re-registered a little before the earliest transaction
        so the next refresh picks it up.

        Raises:
            QueryError: If the aggregate capacity query failed
        """
        aggregate = await self.backend.get_cells_capacity(self.search_key)
        capacity = aggregate.capacity

        try:
            spent, transactions = await self._spent_outpoints()
            cells = await self.backend.get_cells(self.search_key, "desc", self.page_limit)
        except QueryError as e:
            logger.warning(f"Could not filter spent cells, using aggregate capacity: {e}")
        else:
            live, consumed = partition_cells(cells.objects, spent)
            capacity = sum(cell.output.capacity for cell in live)
            logger.debug(
                f"Live balance: {len(live)} live cells, {len(consumed)} spent, "
                f"{capacity} shannons (aggregate {aggregate.capacity})"
            )
            if capacity == 0 and transactions:
                await self._self_heal(transactions)

        snapshot = BalanceSnapshot(
            address=self.address, capacity=capacity, as_of_block=aggregate.block_number
        )
        logger.info(f"Balance: {snapshot.capacity_ckb} CKB at block {snapshot.as_of_block}")
        return snapshot

    async def _self_heal(self, transactions: list[TxWithCell]) -> None:
        earliest = min(record.block_number for record in transactions)
        rescan_from = max(earliest - SELF_HEAL_LOOKBACK_BLOCKS, 0)
        logger.warning(
            f"{len(transactions)} transaction records but no live cells, "
            f"rescanning from block {rescan_from} (earliest tx at {earliest})"
        )
        try:
            await self.sync.reregister_at(rescan_from, "missing change cell")
        except EngineError as e:
            logger.error(f"Self-heal rescan failed: {e}")

    async def get_cells(self, limit: int = DEFAULT_PAGE_LIMIT, cursor: str | None = None) -> CellsPage:
        """
        One page of live cells.

        Raises:
            QueryError: If either the transaction or the cells query failed
        """
        spent, _ = await self._spent_outpoints()
        page = await self.backend.get_cells(self.search_key, "desc", limit, cursor)
        live, consumed = partition_cells(page.objects, spent)
        for cell in consumed:
            logger.debug(f"Filtered out spent cell {cell.out_point.key}")
        logger.debug(f"{len(live)} live cells (of {len(page.objects)} returned)")
        return CellsPage(items=[to_live_cell(cell) for cell in live], next_cursor=page.last_cursor)

    async def get_transactions(
        self, limit: int = DEFAULT_HISTORY_LIMIT, cursor: str | None = None
    ) -> TransactionsPage:
        """
        One page of wallet transactions, one entry per transaction hash.

        Raises:
            QueryError: If the light client could not be queried
        """
        tip = (await self.backend.get_tip_header()).number
        page = await self.backend.get_transactions(self.search_key, "desc", limit, cursor)
        items = summarize_transactions(page.objects, tip)
        return TransactionsPage(items=items, next_cursor=page.last_cursor)


__all__ = [
    "BalanceReconciler",
    "collect_spent_outpoints",
    "partition_cells",
    "summarize_transactions",
    "to_live_cell",
]
