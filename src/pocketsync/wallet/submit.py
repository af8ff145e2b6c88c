"""
Pre-flight validation and broadcast of signed transactions.
"""

from __future__ import annotations

import asyncio

from loguru import logger

from pocketsync.amount import format_amount
from pocketsync.backends.base import LightClientBackend
from pocketsync.backends.models import Transaction
from pocketsync.constants import (
    MIN_CELL_CAPACITY,
    POST_SEND_LOOKBACK_BLOCKS,
    POST_SEND_RESCAN_DELAY,
)
from pocketsync.errors import BroadcastError, ValidationError
from pocketsync.tasks import spawn_background
from pocketsync.wallet.sync import SyncCoordinator

# (substrings, message) pairs checked in order against the lowercased failure text
_BROADCAST_ERROR_CATEGORIES: list[tuple[tuple[str, ...], str]] = [
    (
        ("duplicated", "already exists", "already known"),
        "This transaction has already been submitted.",
    ),
    (
        ("dead", "unknown outpoint", "failedtoresolve", "resolve"),
        "Some of the funds being spent are already spent or not yet synced. "
        "Wait for the wallet to sync and try again.",
    ),
    (
        ("insufficient",),
        "Insufficient balance for this transaction.",
    ),
    (
        ("fee rate", "lowfeerate", "min fee", "fee too low"),
        "Transaction fee is too low for the network to accept it.",
    ),
    (
        ("verification failed", "verificationfailure", "validationfailure", "script"),
        "Transaction verification failed. The transaction may be invalid.",
    ),
    (
        ("send failed", "broadcast", "connect", "timed out", "timeout"),
        "Could not broadcast transaction. Check that the light client is connected and try again.",
    ),
    (
        ("not synced", "sync"),
        "Wallet is still syncing. Wait for sync to complete before sending.",
    ),
    (
        ("json", "parse", "serial", "missing"),
        "Internal error processing transaction data. Please try again.",
    ),
]


def categorize_broadcast_error(message: str) -> str:
    """Turn a raw light client failure into a human-readable explanation."""
    lowered = message.lower()
    if "minimum" in lowered and "61" in lowered:
        return "Minimum transfer amount is 61 CKB."
    for needles, explanation in _BROADCAST_ERROR_CATEGORIES:
        if any(needle in lowered for needle in needles):
            return explanation
    return f"Transaction failed: {message}"


def validate_transaction(tx: Transaction) -> None:
    """
    Reject transactions the network would never accept.

    Raises:
        ValidationError: On empty inputs/outputs, mismatched output data, or an
            output below the minimum cell capacity
    """
    if not tx.inputs:
        raise ValidationError("Transaction has no inputs")
    if not tx.outputs:
        raise ValidationError("Transaction has no outputs")
    if len(tx.outputs_data) != len(tx.outputs):
        raise ValidationError(
            f"Transaction has {len(tx.outputs)} outputs but {len(tx.outputs_data)} output data entries"
        )
    for index, output in enumerate(tx.outputs):
        if output.capacity < MIN_CELL_CAPACITY:
            raise ValidationError(
                f"Output {index} capacity {format_amount(output.capacity)} is below the "
                f"minimum of {format_amount(MIN_CELL_CAPACITY)}"
            )


class TransactionSubmitter:
    def __init__(
        self,
        backend: LightClientBackend,
        sync: SyncCoordinator,
        rescan_delay: float = POST_SEND_RESCAN_DELAY,
    ):
        self.backend = backend
        self.sync = sync
        self.rescan_delay = rescan_delay
        self._rescan_task: asyncio.Task[None] | None = None

    @property
    def rescan_task(self) -> asyncio.Task[None] | None:
        """The most recently scheduled post-send rescan, if any."""
        return self._rescan_task

    def validate(self, tx: Transaction) -> None:
        validate_transaction(tx)

    async def submit(self, tx: Transaction) -> str:
        """
        Validate and broadcast ``tx``, then schedule a rescan near the tip.

        The light client only indexes our change output if it scans the block
        that commits the transaction, so shortly after broadcast the tracked
        script is moved back a few blocks from the tip. That step runs
        detached; its failures are logged only.

        Returns:
            Transaction hash

        Raises:
            ValidationError: If the transaction fails pre-flight checks
            BroadcastError: If the light client refused to relay it
        """
        self.validate(tx)
        logger.info(f"Broadcasting transaction: {len(tx.inputs)} inputs, {len(tx.outputs)} outputs")

        try:
            tx_hash = await self.backend.send_transaction(tx)
        except BroadcastError as e:
            user_message = categorize_broadcast_error(e.raw_message)
            logger.error(f"Broadcast failed: {e.raw_message}")
            raise BroadcastError(e.raw_message, user_message) from e

        self._rescan_task = spawn_background(
            f"post-send-rescan-{tx_hash[:10]}", self._post_send_rescan(tx_hash)
        )
        return tx_hash

    async def _post_send_rescan(self, tx_hash: str) -> None:
        await asyncio.sleep(self.rescan_delay)
        tip = (await self.backend.get_tip_header()).number
        rescan_from = max(tip - POST_SEND_LOOKBACK_BLOCKS, 0)
        await self.sync.reregister_at(rescan_from, f"catch change output of {tx_hash}")


__all__ = ["TransactionSubmitter", "categorize_broadcast_error", "validate_transaction"]
