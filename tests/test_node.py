"""Tests for light client bring-up and network switching."""

from __future__ import annotations

import asyncio
from pathlib import Path
from unittest.mock import AsyncMock, patch

import pytest
from _pocketsync_test_helpers import FakeLightClient

from pocketsync.errors import AlreadySwitchingError, QueryError
from pocketsync.models import NetworkType
from pocketsync.preferences import JsonPreferenceStore
from pocketsync.wallet.node import NodeLifecycleManager, relaunch_hook


@pytest.fixture
def preferences(tmp_path: Path) -> JsonPreferenceStore:
    return JsonPreferenceStore(tmp_path / "prefs" / "preferences.json")


def make_node(
    client: FakeLightClient, preferences: JsonPreferenceStore, **kwargs
) -> NodeLifecycleManager:
    kwargs.setdefault("retry_delays", (0.0, 0.0, 0.0))
    return NodeLifecycleManager(client, preferences, **kwargs)


class TestInitialize:
    @pytest.mark.asyncio
    async def test_first_attempt_succeeds(
        self, fake_client: FakeLightClient, preferences: JsonPreferenceStore
    ) -> None:
        node = make_node(fake_client, preferences)
        assert node.ready is None
        assert await node.initialize("mainnet.toml") is True
        assert node.ready is True
        assert fake_client.init_calls == 1
        assert fake_client.start_calls == 1

    @pytest.mark.asyncio
    async def test_retries_until_success(
        self, fake_client: FakeLightClient, preferences: JsonPreferenceStore
    ) -> None:
        fake_client.init_results = [False, True]
        fake_client.start_results = [False, True]
        node = make_node(fake_client, preferences)

        assert await node.initialize() is True
        # init fails, then init ok/start fails, then both ok
        assert fake_client.init_calls == 3
        assert fake_client.start_calls == 2

    @pytest.mark.asyncio
    async def test_gives_up_after_three_attempts(
        self, fake_client: FakeLightClient, preferences: JsonPreferenceStore
    ) -> None:
        fake_client.init_results = [False, False, False, False]
        node = make_node(fake_client, preferences)

        assert await node.initialize() is False
        assert node.ready is False
        assert await node.await_ready() is False
        assert fake_client.init_calls == 3

        # Nothing retries on its own
        await asyncio.sleep(0.01)
        assert fake_client.init_calls == 3

    @pytest.mark.asyncio
    async def test_backoff_sleeps_only_between_attempts(
        self, fake_client: FakeLightClient, preferences: JsonPreferenceStore
    ) -> None:
        fake_client.init_results = [False, False, False]
        node = make_node(fake_client, preferences, retry_delays=(2.0, 4.0, 8.0))

        with patch("pocketsync.wallet.node.asyncio.sleep", new=AsyncMock()) as mock_sleep:
            assert await node.initialize() is False

        assert [c.args[0] for c in mock_sleep.await_args_list] == [2.0, 4.0]

    @pytest.mark.asyncio
    async def test_raising_backend_counts_as_failure(
        self, fake_client: FakeLightClient, preferences: JsonPreferenceStore
    ) -> None:
        fake_client.start = AsyncMock(side_effect=QueryError("connection refused"))  # type: ignore[method-assign]
        node = make_node(fake_client, preferences, max_attempts=2)
        assert await node.initialize() is False
        assert fake_client.start.await_count == 2

    @pytest.mark.asyncio
    async def test_await_ready_blocks_until_settled(
        self, fake_client: FakeLightClient, preferences: JsonPreferenceStore
    ) -> None:
        node = make_node(fake_client, preferences)
        waiter = asyncio.create_task(node.await_ready())
        await asyncio.sleep(0)
        assert not waiter.done()

        await node.initialize()
        assert await asyncio.wait_for(waiter, timeout=1) is True


class TestSwitchNetwork:
    @pytest.mark.asyncio
    async def test_persists_without_hook(
        self, fake_client: FakeLightClient, preferences: JsonPreferenceStore
    ) -> None:
        node = make_node(fake_client, preferences)
        await node.switch_network(NetworkType.TESTNET)

        reopened = JsonPreferenceStore(preferences.path)
        assert reopened.get_selected_network() == NetworkType.TESTNET
        assert node.is_switching is False

    @pytest.mark.asyncio
    async def test_hook_runs_after_persisting(
        self, fake_client: FakeLightClient, preferences: JsonPreferenceStore
    ) -> None:
        seen: list[NetworkType] = []

        async def hook(target: NetworkType) -> None:
            seen.append(JsonPreferenceStore(preferences.path).get_selected_network())

        node = make_node(fake_client, preferences, restart_hook=hook)
        await node.switch_network(NetworkType.TESTNET)

        assert seen == [NetworkType.TESTNET]
        # The process is expected to go away; the switch stays in progress
        assert node.is_switching is True
        with pytest.raises(AlreadySwitchingError):
            await node.switch_network(NetworkType.MAINNET)

    @pytest.mark.asyncio
    async def test_failed_hook_clears_flag(
        self, fake_client: FakeLightClient, preferences: JsonPreferenceStore
    ) -> None:
        hook = AsyncMock(side_effect=OSError("exec failed"))
        node = make_node(fake_client, preferences, restart_hook=hook)

        with pytest.raises(OSError):
            await node.switch_network(NetworkType.TESTNET)
        assert node.is_switching is False

    @pytest.mark.asyncio
    async def test_relaunch_hook_execs_interpreter(self) -> None:
        hook = relaunch_hook(["pocket-sync", "status"])
        with patch("pocketsync.wallet.node.os.execv") as mock_execv:
            await hook(NetworkType.TESTNET)
        executable, args = mock_execv.call_args.args
        assert args[1:] == ["pocket-sync", "status"]
        assert args[0] == executable
