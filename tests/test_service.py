"""Tests for the account service facade."""

from __future__ import annotations

import asyncio
from pathlib import Path

import pytest
from _pocketsync_test_helpers import CKB, FakeLightClient, make_cell, make_service, make_signed_tx

from pocketsync.errors import NodeInitError
from pocketsync.models import NetworkType, SyncMode, TransactionState
from pocketsync.preferences import JsonPreferenceStore
from pocketsync.wallet.service import AccountService


@pytest.fixture
def service(fake_client: FakeLightClient, tmp_path: Path) -> AccountService:
    return make_service(fake_client, tmp_path, poll_interval=60.0)


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_start_and_close(self, fake_client: FakeLightClient, service: AccountService) -> None:
        await service.start()
        assert service.node.ready is True
        await service.close()
        assert fake_client.closed

    @pytest.mark.asyncio
    async def test_start_failure(self, fake_client: FakeLightClient, service: AccountService) -> None:
        fake_client.init_results = [False, False, False]
        with pytest.raises(NodeInitError, match="3 attempts"):
            await service.start()

    def test_config_path_defaults_to_network_file(
        self, service: AccountService, tmp_path: Path
    ) -> None:
        assert service.resolve_config_path() is None
        (tmp_path / "mainnet.toml").write_text("")
        assert service.resolve_config_path() == str(tmp_path / "mainnet.toml")


class TestRegistration:
    @pytest.mark.asyncio
    async def test_first_registration_uses_configured_mode(self, service: AccountService) -> None:
        await service.start()
        assert await service.register_account() == 800_000
        assert service.is_registered
        assert service.preferences.has_completed_initial_sync()

    @pytest.mark.asyncio
    async def test_new_wallet_starts_at_tip(self, service: AccountService) -> None:
        await service.start()
        assert await service.create_new_wallet_registration() == 1_000_000

    @pytest.mark.asyncio
    async def test_import_wallet(self, service: AccountService) -> None:
        await service.start()
        assert await service.import_wallet_registration(SyncMode.CUSTOM, 250_000) == 250_000
        assert service.preferences.get_custom_block_height() == 250_000

    @pytest.mark.asyncio
    async def test_force_reset_sync(self, service: AccountService) -> None:
        await service.start()
        service.preferences.set_sync_mode(SyncMode.FULL_HISTORY)
        service.preferences.set_last_synced_block(123)

        await service.force_reset_sync()

        assert service.preferences.get_sync_mode() == SyncMode.RECENT
        assert service.preferences.get_last_synced_block() == 0
        assert service.balance.value is None

    @pytest.mark.asyncio
    async def test_resync_account(self, fake_client: FakeLightClient, service: AccountService) -> None:
        await service.start()
        await service.register_account(SyncMode.RECENT)
        assert await service.resync_account(SyncMode.NEW_WALLET) == fake_client.tip


class TestQueries:
    @pytest.mark.asyncio
    async def test_refresh_balance_registers_and_publishes(
        self, fake_client: FakeLightClient, service: AccountService
    ) -> None:
        fake_client.cells = [make_cell(1, 0, 500 * CKB)]
        await service.start()

        snapshot = await service.refresh_balance()

        assert service.is_registered
        assert service.balance.value == snapshot
        assert snapshot.capacity == 500 * CKB

    @pytest.mark.asyncio
    async def test_account_status_published(self, service: AccountService) -> None:
        await service.start()
        await service.register_account()
        status = await service.get_account_status()
        assert service.account_status.value == status
        assert status.synced_to_block == 800_000

    @pytest.mark.asyncio
    async def test_auto_refresh(self, fake_client: FakeLightClient, service: AccountService) -> None:
        fake_client.cells = [make_cell(1, 0, 70 * CKB)]
        await service.start()

        service.start_auto_refresh(0.01)
        for _ in range(100):
            if service.balance.value is not None and service.account_status.value is not None:
                break
            await asyncio.sleep(0.01)
        await service.close()

        assert service.balance.value is not None
        assert service.balance.value.capacity == 70 * CKB
        assert service.account_status.value is not None

    @pytest.mark.asyncio
    async def test_diagnostics_pass_through(self, service: AccountService) -> None:
        result = await service.call_rpc("get_peers", ["0x1"])
        assert result == {"method": "get_peers", "params": ["0x1"]}
        assert (await service.get_tip_header()).number == 1_000_000


class TestSwitchNetwork:
    @pytest.mark.asyncio
    async def test_same_network_is_noop(self, service: AccountService) -> None:
        await service.switch_network(NetworkType.MAINNET)
        assert service.preferences.get_selected_network() == NetworkType.MAINNET

    @pytest.mark.asyncio
    async def test_switch_cancels_in_flight_send(
        self, fake_client: FakeLightClient, service: AccountService, tmp_path: Path
    ) -> None:
        await service.start()
        await service.send_transaction(make_signed_tx())
        assert service.tracker.snapshot.state.is_in_flight

        await service.switch_network(NetworkType.TESTNET)

        assert service.tracker.snapshot.state == TransactionState.FAILED
        reopened = JsonPreferenceStore(tmp_path / "prefs" / "preferences.json")
        assert reopened.get_selected_network() == NetworkType.TESTNET
        # The running service stays on the network it was built for
        assert service.network == NetworkType.MAINNET
        await service.close()

    @pytest.mark.asyncio
    async def test_restart_hook_receives_target(
        self, fake_client: FakeLightClient, tmp_path: Path
    ) -> None:
        seen: list[NetworkType] = []

        async def hook(target: NetworkType) -> None:
            seen.append(target)

        service = make_service(fake_client, tmp_path)
        service.node.restart_hook = hook
        await service.switch_network(NetworkType.TESTNET)
        assert seen == [NetworkType.TESTNET]

    @pytest.mark.asyncio
    async def test_switch_back_before_relaunch(self, service: AccountService, tmp_path: Path) -> None:
        await service.switch_network(NetworkType.TESTNET)
        await service.switch_network(NetworkType.MAINNET)

        reopened = JsonPreferenceStore(tmp_path / "prefs" / "preferences.json")
        assert reopened.get_selected_network() == NetworkType.MAINNET

    @pytest.mark.asyncio
    async def test_repeat_switch_to_pending_target_is_noop(
        self, service: AccountService
    ) -> None:
        seen: list[NetworkType] = []

        async def hook(target: NetworkType) -> None:
            seen.append(target)

        await service.switch_network(NetworkType.TESTNET)
        service.node.restart_hook = hook
        await service.switch_network(NetworkType.TESTNET)
        assert seen == []


class TestSend:
    @pytest.mark.asyncio
    async def test_untracked_send(self, fake_client: FakeLightClient, service: AccountService) -> None:
        await service.start()
        tx_hash = await service.send_transaction(make_signed_tx(), track=False)

        assert tx_hash == fake_client.send_hash
        assert service.tracker.snapshot.state == TransactionState.IDLE
        assert service.submitter.rescan_task is not None
        await service.submitter.rescan_task
        await service.close()

    @pytest.mark.asyncio
    async def test_clear_transaction(self, service: AccountService) -> None:
        await service.start()
        await service.send_transaction(make_signed_tx())
        service.clear_transaction()
        assert service.tracker.snapshot.state == TransactionState.IDLE
        await service.close()
