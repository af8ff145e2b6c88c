"""
Send flow state machine and confirmation tracking.

IDLE -> SENDING -> PENDING -> (PROPOSED) -> CONFIRMED | FAILED

Once a broadcast is acknowledged two loops may run: the status loop polls the
transaction until it is confirmed deeply enough (or given up on), then hands
over to the balance loop, which polls until the wallet balance reflects the
send. Both share one ``CancelToken`` per flow, so clearing the flow or
switching networks stops them together. Terminal states stay until
``clear()``.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from typing import Any

from loguru import logger

from pocketsync.backends.base import LightClientBackend
from pocketsync.backends.models import Transaction
from pocketsync.constants import (
    BALANCE_POLL_ATTEMPTS,
    BALANCE_POLL_INTERVAL,
    REQUIRED_CONFIRMATIONS,
    TX_MAX_POLL_ATTEMPTS,
    TX_POLL_INTERVAL,
    UNKNOWN_CONFIRM_THRESHOLD,
    UNKNOWN_TIMEOUT_THRESHOLD,
)
from pocketsync.errors import BroadcastError, EngineError, PollTimeout, QueryError
from pocketsync.models import BalanceSnapshot, TrackerSnapshot, TransactionState, TxStatusReport
from pocketsync.state import StateFlow
from pocketsync.tasks import CancelToken, cancel_tasks, poll_until
from pocketsync.wallet.balance import BalanceReconciler
from pocketsync.wallet.submit import TransactionSubmitter

NETWORK_CHANGED_MESSAGE = "Network changed. Transaction cancelled."
TIMED_OUT_MESSAGE = "Status check timed out. Transaction may still confirm."
UNKNOWN_STATUS_MESSAGE = "Transaction broadcast. Waiting for network confirmation..."


class TransactionStatusTracker:
    def __init__(
        self,
        backend: LightClientBackend,
        submitter: TransactionSubmitter,
        balance: BalanceReconciler,
        poll_interval: float = TX_POLL_INTERVAL,
        max_poll_attempts: int = TX_MAX_POLL_ATTEMPTS,
        required_confirmations: int = REQUIRED_CONFIRMATIONS,
        unknown_confirm_threshold: int = UNKNOWN_CONFIRM_THRESHOLD,
        unknown_timeout_threshold: int = UNKNOWN_TIMEOUT_THRESHOLD,
        balance_poll_interval: float = BALANCE_POLL_INTERVAL,
        balance_poll_attempts: int = BALANCE_POLL_ATTEMPTS,
        on_balance: Callable[[BalanceSnapshot], None] | None = None,
    ):
        self.backend = backend
        self.submitter = submitter
        self.balance = balance
        self.poll_interval = poll_interval
        self.max_poll_attempts = max_poll_attempts
        self.required_confirmations = required_confirmations
        self.unknown_confirm_threshold = unknown_confirm_threshold
        self.unknown_timeout_threshold = unknown_timeout_threshold
        self.balance_poll_interval = balance_poll_interval
        self.balance_poll_attempts = balance_poll_attempts
        self.on_balance = on_balance

        self.state: StateFlow[TrackerSnapshot] = StateFlow(TrackerSnapshot(), name="tracker")
        self._token = CancelToken()
        self._tasks: list[asyncio.Task[Any]] = []

    @property
    def snapshot(self) -> TrackerSnapshot:
        return self.state.value

    def _publish(self, **changes: Any) -> None:
        current = self.state.value
        fields = {
            "state": current.state,
            "tx_hash": current.tx_hash,
            "confirmations": current.confirmations,
            "status_message": current.status_message,
            "error": current.error,
        }
        fields.update(changes)
        self.state.set(TrackerSnapshot(**fields))

    # -- Status lookup ----------------------------------------------------

    async def check_status(self, tx_hash: str) -> TxStatusReport:
        """
        Poll the light client once for ``tx_hash``.

        A transaction the light client has no record of is ``unknown``, not an
        error: it may be sitting in a remote pool or in a block the client has
        not fetched yet.

        Raises:
            QueryError: If the light client could not be queried
        """
        result = await self.backend.get_transaction(tx_hash)
        if result is None:
            logger.debug(f"No record of {tx_hash}, reporting unknown")
            return TxStatusReport(tx_hash=tx_hash, status="unknown")

        status = result.tx_status
        confirmations = 0
        block_number = None
        if status.status == "committed":
            confirmations, block_number = await self._committed_depth(status.block_hash)

        logger.debug(f"{tx_hash}: status={status.status}, confirmations={confirmations}")
        return TxStatusReport(
            tx_hash=tx_hash,
            status=status.status,
            confirmations=confirmations,
            block_hash=status.block_hash,
            block_number=block_number,
            reason=status.reason,
        )

    async def _committed_depth(self, block_hash: str | None) -> tuple[int, int | None]:
        """
        Confirmation depth of a committed transaction.

        Falls back to the required depth when the light client cannot resolve
        the block header, since a committed status is already final there.
        """
        if block_hash is None:
            return self.required_confirmations, None
        try:
            header = await self.backend.get_header(block_hash)
            tip = await self.backend.get_tip_header()
        except QueryError as e:
            logger.debug(f"Could not resolve header {block_hash}: {e}")
            return self.required_confirmations, None
        if header is None or tip.number < header.number:
            return self.required_confirmations, None
        return tip.number - header.number + 1, header.number

    # -- Flow control ------------------------------------------------------

    def _new_flow(self) -> CancelToken:
        self._token.cancel("superseded")
        for task in self._tasks:
            task.cancel()
        self._tasks = []
        self._token = CancelToken()
        return self._token

    def _spawn(self, name: str, coro: Any) -> asyncio.Task[Any]:
        task = asyncio.create_task(coro, name=name)
        self._tasks.append(task)
        return task

    async def send(self, tx: Transaction, previous_balance: int | None = None) -> str:
        """
        Submit ``tx`` and start tracking it.

        Returns:
            Transaction hash

        Raises:
            ValidationError: If the transaction fails pre-flight checks
            BroadcastError: If the light client refused to relay it
        """
        token = self._new_flow()
        self.state.set(
            TrackerSnapshot(state=TransactionState.SENDING, status_message="Broadcasting transaction...")
        )
        try:
            tx_hash = await self.submitter.submit(tx)
        except EngineError as e:
            if not token.cancelled:
                self._publish(
                    state=TransactionState.FAILED,
                    status_message="Transaction failed",
                    error=e.user_message if isinstance(e, BroadcastError) else e.message,
                )
            raise

        if token.cancelled:
            logger.warning(f"Send flow cancelled ({token.reason}) after broadcasting {tx_hash}")
            return tx_hash

        self._start_tracking(tx_hash, previous_balance, token)
        return tx_hash

    def track(self, tx_hash: str, previous_balance: int | None = None) -> None:
        """Start tracking an already broadcast transaction."""
        token = self._new_flow()
        self._start_tracking(tx_hash, previous_balance, token)

    def _start_tracking(self, tx_hash: str, previous_balance: int | None, token: CancelToken) -> None:
        self.state.set(
            TrackerSnapshot(
                state=TransactionState.PENDING,
                tx_hash=tx_hash,
                status_message="Transaction submitted. Waiting for confirmation...",
            )
        )
        self._spawn(f"tx-status-{tx_hash[:10]}", self._status_loop(tx_hash, previous_balance, token))

    async def wait(self) -> TrackerSnapshot:
        """Wait for the current flow's loops to finish and return the final snapshot."""
        while True:
            pending = [task for task in self._tasks if not task.done()]
            if not pending:
                return self.state.value
            await asyncio.gather(*pending, return_exceptions=True)

    def clear(self) -> None:
        """Stop any polling and return to IDLE."""
        self._token.cancel("cleared")
        for task in self._tasks:
            task.cancel()
        self.state.set(TrackerSnapshot())

    def cancel_for_network_change(self) -> None:
        """Stop polling; an in-flight send is marked FAILED."""
        self._token.cancel("network changed")
        for task in self._tasks:
            task.cancel()
        if self.state.value.state.is_in_flight:
            logger.warning("Network changed during an in-flight transaction, cancelling tracking")
            self._publish(
                state=TransactionState.FAILED,
                status_message=NETWORK_CHANGED_MESSAGE,
                error=NETWORK_CHANGED_MESSAGE,
            )

    async def close(self) -> None:
        self._token.cancel("closed")
        await cancel_tasks(self._tasks)
        self._tasks = []

    # -- Loops -------------------------------------------------------------

    def _apply_progress(self, report: TxStatusReport) -> None:
        if report.is_committed:
            # Committed but not yet deep enough
            self._publish(
                state=TransactionState.PROPOSED,
                confirmations=report.confirmations,
                status_message=(
                    f"{report.confirmations} of {self.required_confirmations} confirmations..."
                ),
            )
        elif report.status == "proposed":
            self._publish(
                state=TransactionState.PROPOSED,
                status_message="Transaction in proposal stage...",
            )
        else:
            self._publish(state=TransactionState.PENDING, status_message="Transaction pending...")

    async def _status_loop(
        self, tx_hash: str, previous_balance: int | None, token: CancelToken
    ) -> None:
        unknowns = 0

        async def probe(attempt: int) -> TxStatusReport | None:
            nonlocal unknowns
            report = await self.check_status(tx_hash)
            if token.cancelled:
                return None

            if report.is_unknown:
                unknowns += 1
                logger.debug(f"{tx_hash} unknown (#{unknowns} in a row, attempt {attempt})")
                self._publish(state=TransactionState.PENDING, status_message=UNKNOWN_STATUS_MESSAGE)
                if unknowns > self.unknown_confirm_threshold:
                    return report
                return None

            unknowns = 0
            if report.status == "rejected":
                return report
            if report.is_committed and report.confirmations >= self.required_confirmations:
                return report
            self._apply_progress(report)
            return None

        try:
            outcome = await poll_until(
                f"tx-status {tx_hash[:10]}", probe, self.poll_interval, self.max_poll_attempts, token
            )
        except PollTimeout:
            logger.info(f"Status polling for {tx_hash} timed out ({unknowns} unknowns in a row)")
            if unknowns >= self.unknown_timeout_threshold:
                logger.warning(f"Assuming {tx_hash} confirmed after {unknowns} unknown polls")
                self._finish_confirmed(
                    previous_balance, token, None, "Transaction sent successfully"
                )
            else:
                self._publish(status_message=TIMED_OUT_MESSAGE)
            return

        if outcome is None:
            return

        if outcome.status == "rejected":
            reason = outcome.reason or "rejected by the transaction pool"
            logger.error(f"Transaction {tx_hash} rejected: {reason}")
            self._publish(
                state=TransactionState.FAILED,
                status_message="Transaction rejected",
                error=f"Transaction rejected: {reason}",
            )
        elif outcome.is_unknown:
            logger.warning(
                f"No status for {tx_hash} after {unknowns} polls, assuming it confirmed"
            )
            self._finish_confirmed(previous_balance, token, 1, "Transaction confirmed")
        else:
            logger.info(f"Transaction {tx_hash} confirmed ({outcome.confirmations} confirmations)")
            self._finish_confirmed(
                previous_balance,
                token,
                outcome.confirmations,
                f"Fully confirmed with {outcome.confirmations} confirmations",
            )

    def _finish_confirmed(
        self,
        previous_balance: int | None,
        token: CancelToken,
        confirmations: int | None,
        message: str,
    ) -> None:
        changes: dict[str, Any] = {"state": TransactionState.CONFIRMED, "status_message": message}
        if confirmations is not None:
            changes["confirmations"] = confirmations
        self._publish(**changes)
        self._spawn("balance-poll", self._balance_loop(previous_balance, token))

    def _emit_balance(self, snapshot: BalanceSnapshot) -> None:
        if self.on_balance is not None:
            self.on_balance(snapshot)

    async def _balance_loop(self, previous_balance: int | None, token: CancelToken) -> None:
        async def probe(attempt: int) -> BalanceSnapshot | None:
            snapshot = await self.balance.refresh_balance()
            if token.cancelled:
                return None
            self._emit_balance(snapshot)
            logger.debug(f"Balance poll #{attempt}: {snapshot.capacity} shannons")
            if previous_balance is None or snapshot.capacity != previous_balance:
                return snapshot
            return None

        try:
            updated = await poll_until(
                "balance-poll", probe, self.balance_poll_interval, self.balance_poll_attempts, token
            )
        except PollTimeout:
            logger.warning("Balance did not change yet; it may update once the light client syncs")
            try:
                self._emit_balance(await self.balance.refresh_balance())
            except EngineError as e:
                logger.warning(f"Final balance refresh failed: {e}")
            return

        if updated is not None:
            logger.info(f"Balance updated: {updated.capacity_ckb} CKB")


__all__ = [
    "TransactionStatusTracker",
    "NETWORK_CHANGED_MESSAGE",
    "TIMED_OUT_MESSAGE",
]
