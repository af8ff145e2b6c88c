"""Tests for the send flow state machine and confirmation tracking."""

from __future__ import annotations

import asyncio
from pathlib import Path

import pytest
from _pocketsync_test_helpers import (
    CKB,
    FakeLightClient,
    make_cell,
    make_hash,
    make_service,
    make_signed_tx,
    make_status,
)

from pocketsync.backends.models import HeaderView
from pocketsync.errors import BroadcastError, ValidationError
from pocketsync.models import TransactionState
from pocketsync.wallet.service import AccountService
from pocketsync.wallet.tracker import NETWORK_CHANGED_MESSAGE, TIMED_OUT_MESSAGE

BLOCK = make_hash(0xB10C)


def committed_at(client: FakeLightClient, depth: int) -> None:
    """Make BLOCK sit ``depth`` confirmations deep."""
    client.headers[BLOCK] = HeaderView(hash=BLOCK, number=client.tip - depth + 1)


class TestCheckStatus:
    @pytest.mark.asyncio
    async def test_no_record_is_unknown(self, fake_client: FakeLightClient, tmp_path: Path) -> None:
        tracker = make_service(fake_client, tmp_path).tracker
        report = await tracker.check_status(make_hash(1))
        assert report.is_unknown
        assert report.confirmations == 0

    @pytest.mark.asyncio
    async def test_committed_depth(self, fake_client: FakeLightClient, tmp_path: Path) -> None:
        tracker = make_service(fake_client, tmp_path).tracker
        committed_at(fake_client, 7)
        fake_client.statuses[make_hash(1)] = [make_status("committed", BLOCK)]

        report = await tracker.check_status(make_hash(1))

        assert report.is_committed
        assert report.confirmations == 7
        assert report.block_number == fake_client.tip - 6

    @pytest.mark.asyncio
    async def test_unresolvable_header_counts_as_final(
        self, fake_client: FakeLightClient, tmp_path: Path
    ) -> None:
        tracker = make_service(fake_client, tmp_path).tracker
        fake_client.statuses[make_hash(1)] = [make_status("committed", BLOCK)]
        fake_client.fail.add("get_header")
        report = await tracker.check_status(make_hash(1))
        assert report.confirmations == tracker.required_confirmations


class TestSendFlow:
    @pytest.mark.asyncio
    async def test_unknown_streak_assumed_confirmed(
        self, fake_client: FakeLightClient, tmp_path: Path
    ) -> None:
        service = make_service(fake_client, tmp_path, max_poll_attempts=30)
        tracker = service.tracker
        states_before_poll: list[TransactionState] = []
        original = fake_client.get_transaction

        async def recording_get_transaction(tx_hash: str):
            states_before_poll.append(tracker.snapshot.state)
            return await original(tx_hash)

        fake_client.get_transaction = recording_get_transaction  # type: ignore[method-assign]

        tx_hash = await tracker.send(make_signed_tx())
        assert tracker.snapshot.state == TransactionState.PENDING
        assert tracker.snapshot.tx_hash == tx_hash

        final = await tracker.wait()

        assert final.state == TransactionState.CONFIRMED
        assert final.confirmations == 1
        assert final.status_message == "Transaction confirmed"
        assert final.error is None
        assert fake_client.status_calls == 21
        # Still pending after exactly 20 unknowns; the 21st flips it
        assert len(states_before_poll) == 21
        assert states_before_poll[20] == TransactionState.PENDING
        assert set(states_before_poll) == {TransactionState.PENDING}

    @pytest.mark.asyncio
    async def test_confirmed_when_deep_enough(
        self, fake_client: FakeLightClient, tmp_path: Path
    ) -> None:
        tracker = make_service(fake_client, tmp_path).tracker
        committed_at(fake_client, 5)
        fake_client.statuses[fake_client.send_hash] = [
            make_status("pending"),
            make_status("proposed"),
            make_status("committed", BLOCK),
        ]

        await tracker.send(make_signed_tx())
        final = await tracker.wait()

        assert final.state == TransactionState.CONFIRMED
        assert final.confirmations == 5
        assert final.status_message == "Fully confirmed with 5 confirmations"

    @pytest.mark.asyncio
    async def test_shallow_commit_reports_progress(
        self, fake_client: FakeLightClient, tmp_path: Path
    ) -> None:
        tracker = make_service(fake_client, tmp_path, max_poll_attempts=3).tracker
        committed_at(fake_client, 1)
        fake_client.statuses[fake_client.send_hash] = [make_status("committed", BLOCK)]

        await tracker.send(make_signed_tx())
        final = await tracker.wait()

        assert final.state == TransactionState.PROPOSED
        assert final.confirmations == 1
        assert final.status_message == TIMED_OUT_MESSAGE

    @pytest.mark.asyncio
    async def test_progress_messages(self, fake_client: FakeLightClient, tmp_path: Path) -> None:
        tracker = make_service(fake_client, tmp_path, poll_interval=10.0).tracker
        committed_at(fake_client, 2)
        fake_client.statuses[fake_client.send_hash] = [make_status("committed", BLOCK)]
        await tracker.send(make_signed_tx())

        report = await tracker.check_status(fake_client.send_hash)
        tracker._apply_progress(report)
        assert tracker.snapshot.state == TransactionState.PROPOSED
        assert tracker.snapshot.status_message == "2 of 3 confirmations..."
        await tracker.close()

    @pytest.mark.asyncio
    async def test_rejected(self, fake_client: FakeLightClient, tmp_path: Path) -> None:
        tracker = make_service(fake_client, tmp_path).tracker
        fake_client.statuses[fake_client.send_hash] = [
            make_status("pending"),
            make_status("rejected", reason="Resolve failed"),
        ]

        await tracker.send(make_signed_tx())
        final = await tracker.wait()

        assert final.state == TransactionState.FAILED
        assert final.error == "Transaction rejected: Resolve failed"

    @pytest.mark.asyncio
    async def test_timeout_with_unknown_streak_counts_as_success(
        self, fake_client: FakeLightClient, tmp_path: Path
    ) -> None:
        tracker = make_service(fake_client, tmp_path, max_poll_attempts=10).tracker

        await tracker.send(make_signed_tx())
        final = await tracker.wait()

        assert final.state == TransactionState.CONFIRMED
        assert final.status_message == "Transaction sent successfully"
        assert fake_client.status_calls == 10

    @pytest.mark.asyncio
    async def test_timeout_while_pending(self, fake_client: FakeLightClient, tmp_path: Path) -> None:
        tracker = make_service(fake_client, tmp_path, max_poll_attempts=5).tracker
        fake_client.statuses[fake_client.send_hash] = [make_status("pending")]

        await tracker.send(make_signed_tx())
        final = await tracker.wait()

        assert final.state == TransactionState.PENDING
        assert final.status_message == TIMED_OUT_MESSAGE
        assert final.error is None

    @pytest.mark.asyncio
    async def test_broadcast_failure(self, fake_client: FakeLightClient, tmp_path: Path) -> None:
        tracker = make_service(fake_client, tmp_path).tracker
        fake_client.send_error = "PoolRejectedDuplicatedTransaction"

        with pytest.raises(BroadcastError):
            await tracker.send(make_signed_tx())

        assert tracker.snapshot.state == TransactionState.FAILED
        assert tracker.snapshot.error == "This transaction has already been submitted."

    @pytest.mark.asyncio
    async def test_validation_failure(self, fake_client: FakeLightClient, tmp_path: Path) -> None:
        tracker = make_service(fake_client, tmp_path).tracker

        with pytest.raises(ValidationError):
            await tracker.send(make_signed_tx(inputs=0))

        assert tracker.snapshot.state == TransactionState.FAILED
        assert tracker.snapshot.error == "Transaction has no inputs"
        assert fake_client.sent == []

    @pytest.mark.asyncio
    async def test_clear_returns_to_idle(self, fake_client: FakeLightClient, tmp_path: Path) -> None:
        tracker = make_service(fake_client, tmp_path, max_poll_attempts=30).tracker
        await tracker.send(make_signed_tx())
        await tracker.wait()

        tracker.clear()

        assert tracker.snapshot.state == TransactionState.IDLE
        assert tracker.snapshot.tx_hash is None

    @pytest.mark.asyncio
    async def test_network_change_fails_in_flight_send(
        self, fake_client: FakeLightClient, tmp_path: Path
    ) -> None:
        tracker = make_service(fake_client, tmp_path, poll_interval=60.0).tracker
        await tracker.send(make_signed_tx())
        assert tracker.snapshot.state.is_in_flight

        tracker.cancel_for_network_change()
        final = await asyncio.wait_for(tracker.wait(), timeout=1)

        assert final.state == TransactionState.FAILED
        assert final.error == NETWORK_CHANGED_MESSAGE
        assert fake_client.status_calls == 0

    @pytest.mark.asyncio
    async def test_network_change_keeps_terminal_state(
        self, fake_client: FakeLightClient, tmp_path: Path
    ) -> None:
        tracker = make_service(fake_client, tmp_path, max_poll_attempts=30).tracker
        await tracker.send(make_signed_tx())
        await tracker.wait()

        tracker.cancel_for_network_change()
        assert tracker.snapshot.state == TransactionState.CONFIRMED


class TestBalanceAfterConfirm:
    async def _confirm(self, service: AccountService, previous: int | None) -> None:
        await service.tracker.send(make_signed_tx(), previous)
        await service.tracker.wait()

    @pytest.mark.asyncio
    async def test_publishes_changed_balance(
        self, fake_client: FakeLightClient, tmp_path: Path
    ) -> None:
        service = make_service(fake_client, tmp_path, max_poll_attempts=30)
        fake_client.cells = [make_cell(1, 0, 50 * CKB)]

        await self._confirm(service, 100 * CKB)

        assert service.balance.value is not None
        assert service.balance.value.capacity == 50 * CKB

    @pytest.mark.asyncio
    async def test_unchanged_balance_gives_up_quietly(
        self, fake_client: FakeLightClient, tmp_path: Path
    ) -> None:
        service = make_service(
            fake_client, tmp_path, max_poll_attempts=30, balance_poll_attempts=3
        )
        fake_client.cells = [make_cell(1, 0, 100 * CKB)]

        await self._confirm(service, 100 * CKB)

        assert service.tracker.snapshot.state == TransactionState.CONFIRMED
        assert service.balance.value is not None
        assert service.balance.value.capacity == 100 * CKB

    @pytest.mark.asyncio
    async def test_track_existing_hash(self, fake_client: FakeLightClient, tmp_path: Path) -> None:
        tracker = make_service(fake_client, tmp_path).tracker
        tx_hash = make_hash(0xABC)
        committed_at(fake_client, 3)
        fake_client.statuses[tx_hash] = [make_status("committed", BLOCK)]

        tracker.track(tx_hash)
        final = await tracker.wait()

        assert final.tx_hash == tx_hash
        assert final.state == TransactionState.CONFIRMED
        assert fake_client.sent == []
