"""
Account service: one wallet identity on one network, backed by a light client.
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any

from loguru import logger

from pocketsync.backends.base import LightClientBackend
from pocketsync.backends.models import HeaderView, RemoteNode, Transaction
from pocketsync.constants import DEFAULT_HISTORY_LIMIT
from pocketsync.errors import NodeInitError
from pocketsync.models import (
    AccountStatus,
    BalanceSnapshot,
    CellsPage,
    NetworkType,
    SyncMode,
    TransactionsPage,
    TxStatusReport,
)
from pocketsync.paths import get_light_client_config_path
from pocketsync.preferences import PreferenceStore
from pocketsync.settings import PocketSyncSettings, get_settings
from pocketsync.state import StateFlow
from pocketsync.tasks import cancel_tasks, run_periodic_task
from pocketsync.wallet.balance import BalanceReconciler
from pocketsync.wallet.node import NodeLifecycleManager, RestartHook
from pocketsync.wallet.signer import Signer
from pocketsync.wallet.submit import TransactionSubmitter
from pocketsync.wallet.sync import SyncCoordinator
from pocketsync.wallet.tracker import TransactionStatusTracker

# Seconds between automatic balance/status refreshes
DEFAULT_REFRESH_INTERVAL = 30.0


class AccountService:
    """
    Wallet engine facade.

    Wires the node lifecycle, sync coordinator, balance reconciler, submitter
    and tracker around a single light client backend. The latest balance and
    account status are published through ``StateFlow``s; only this service
    writes to them.

    Lifecycle:
        service = AccountService(backend, preferences, signer)
        await service.start()
        await service.register_account()
        snapshot = await service.refresh_balance()
        ...
        await service.close()
    """

    def __init__(
        self,
        backend: LightClientBackend,
        preferences: PreferenceStore,
        signer: Signer,
        settings: PocketSyncSettings | None = None,
        restart_hook: RestartHook | None = None,
    ):
        self.settings = settings or get_settings()
        self.backend = backend
        self.preferences = preferences
        self.signer = signer

        self.network: NetworkType = preferences.get_selected_network()
        self.lock_script = signer.get_lock_script()
        self.address = signer.derive_address(self.network)

        light_client = self.settings.light_client
        tracker = self.settings.tracker
        page_limit = self.settings.wallet.page_limit

        self.node = NodeLifecycleManager(
            backend,
            preferences,
            max_attempts=light_client.init_max_attempts,
            retry_delays=light_client.init_retry_delays,
            restart_hook=restart_hook,
        )
        self.sync = SyncCoordinator(
            backend, preferences, self.node, self.lock_script, self.network, self.address
        )
        self.reconciler = BalanceReconciler(
            backend, self.sync, self.lock_script, self.address, page_limit=page_limit
        )
        self.submitter = TransactionSubmitter(
            backend, self.sync, rescan_delay=tracker.post_send_rescan_delay
        )
        self.tracker = TransactionStatusTracker(
            backend,
            self.submitter,
            self.reconciler,
            poll_interval=tracker.poll_interval,
            max_poll_attempts=tracker.max_poll_attempts,
            required_confirmations=tracker.required_confirmations,
            unknown_confirm_threshold=tracker.unknown_confirm_threshold,
            unknown_timeout_threshold=tracker.unknown_timeout_threshold,
            balance_poll_interval=tracker.balance_poll_interval,
            balance_poll_attempts=tracker.balance_poll_attempts,
            on_balance=self._publish_balance,
        )

        self.balance: StateFlow[BalanceSnapshot | None] = StateFlow(None, name="balance")
        self.account_status: StateFlow[AccountStatus | None] = StateFlow(
            None, name="account_status"
        )
        self._refresh_tasks: list[asyncio.Task[None]] = []
        self._running = False

        logger.info(f"Account service for {self.address} on {self.network.value}")

    @property
    def is_registered(self) -> bool:
        return self.sync.is_registered

    def _publish_balance(self, snapshot: BalanceSnapshot) -> None:
        self.balance.set(snapshot)

    def resolve_config_path(self) -> str | None:
        """Light client config: explicit setting, else ``<data_dir>/<network>.toml`` if present."""
        configured = self.settings.light_client.config_path
        if configured:
            return configured
        default = get_light_client_config_path(self.network.value, self.settings.get_data_dir())
        return str(default) if Path(default).exists() else None

    # -- Lifecycle ---------------------------------------------------------

    async def start(self, config_path: str | None = None) -> None:
        """
        Bring the light client online.

        Raises:
            NodeInitError: If every bring-up attempt failed
        """
        path = config_path or self.resolve_config_path()
        if not await self.node.initialize(path):
            raise NodeInitError(
                f"Light client failed to start after {self.node.max_attempts} attempts"
            )

    async def close(self) -> None:
        self._running = False
        await cancel_tasks(self._refresh_tasks)
        self._refresh_tasks = []
        await self.tracker.close()
        await self.backend.close()
        logger.info("Account service closed")

    # -- Registration ------------------------------------------------------

    async def register_account(
        self,
        sync_mode: SyncMode | None = None,
        custom_height: int | None = None,
        save_preference: bool = True,
        force_resync: bool = False,
    ) -> int:
        """
        Register the wallet's lock script. The first registration on a network
        uses the configured default mode unless one is given.

        Returns:
            Block height the script was registered at
        """
        if sync_mode is None and not self.preferences.has_completed_initial_sync(self.network):
            sync_mode = self.settings.sync.default_mode
            if custom_height is None:
                custom_height = self.settings.sync.custom_block_height
        return await self.sync.register(sync_mode, custom_height, save_preference, force_resync)

    async def create_new_wallet_registration(self) -> int:
        """Register a freshly generated wallet: no history, scan from the tip."""
        return await self.register_account(SyncMode.NEW_WALLET)

    async def import_wallet_registration(
        self, sync_mode: SyncMode = SyncMode.RECENT, custom_height: int | None = None
    ) -> int:
        """Register an imported wallet, scanning back according to ``sync_mode``."""
        self.sync.is_registered = False
        return await self.register_account(sync_mode, custom_height)

    async def resync_account(self, sync_mode: SyncMode, custom_height: int | None = None) -> int:
        return await self.sync.resync(sync_mode, custom_height)

    async def force_reset_sync(self) -> int:
        """Drop all saved sync state and register again in RECENT mode."""
        logger.warning("Forcing sync reset")
        self.preferences.clear()
        self.sync.is_registered = False
        self.balance.set(None)
        height = await self.sync.register(SyncMode.RECENT)
        logger.info(f"Sync reset complete, registered as recent from block {height}")
        return height

    async def _ensure_registered(self) -> None:
        if not self.sync.is_registered:
            await self.register_account()

    # -- Queries -----------------------------------------------------------

    async def refresh_balance(self) -> BalanceSnapshot:
        await self._ensure_registered()
        snapshot = await self.reconciler.refresh_balance()
        self.balance.set(snapshot)
        return snapshot

    async def get_account_status(self) -> AccountStatus:
        status = await self.sync.get_account_status()
        self.account_status.set(status)
        return status

    async def get_cells(self, limit: int | None = None, cursor: str | None = None) -> CellsPage:
        await self._ensure_registered()
        return await self.reconciler.get_cells(limit or self.settings.wallet.page_limit, cursor)

    async def get_transactions(
        self, limit: int = DEFAULT_HISTORY_LIMIT, cursor: str | None = None
    ) -> TransactionsPage:
        await self._ensure_registered()
        return await self.reconciler.get_transactions(limit, cursor)

    async def get_transaction_status(self, tx_hash: str) -> TxStatusReport:
        return await self.tracker.check_status(tx_hash)

    # -- Sending -----------------------------------------------------------

    async def send_transaction(self, tx: Transaction, track: bool = True) -> str:
        """
        Broadcast a signed transaction.

        With ``track`` the tracker follows it to confirmation and then waits
        for the balance to move; progress is published on ``tracker.state``.
        """
        await self._ensure_registered()
        if not track:
            return await self.submitter.submit(tx)
        current = self.balance.value
        previous = current.capacity if current is not None else None
        return await self.tracker.send(tx, previous)

    def track_transaction(self, tx_hash: str) -> None:
        current = self.balance.value
        self.tracker.track(tx_hash, current.capacity if current is not None else None)

    def clear_transaction(self) -> None:
        self.tracker.clear()

    # -- Network -----------------------------------------------------------

    async def switch_network(self, target: NetworkType) -> None:
        """
        Switch to ``target``. Any in-flight send is cancelled first; the new
        network takes effect when the process relaunches.

        Raises:
            AlreadySwitchingError: If a switch is already in progress
        """
        if target == self.preferences.get_selected_network() and not self.node.is_switching:
            logger.info(f"{target.value} is already the selected network")
            return
        self.tracker.cancel_for_network_change()
        self._running = False
        await cancel_tasks(self._refresh_tasks)
        self._refresh_tasks = []
        await self.node.switch_network(target)

    # -- Background refresh ------------------------------------------------

    async def _refresh_once(self) -> None:
        await self.refresh_balance()
        await self.get_account_status()

    def start_auto_refresh(self, interval: float = DEFAULT_REFRESH_INTERVAL) -> asyncio.Task[None]:
        """Refresh balance and account status every ``interval`` seconds until closed."""
        self._running = True
        task = asyncio.create_task(
            run_periodic_task(
                "auto-refresh",
                self._refresh_once,
                interval,
                running_check=lambda: self._running,
            )
        )
        self._refresh_tasks.append(task)
        return task

    # -- Diagnostics -------------------------------------------------------

    async def get_peers(self) -> list[RemoteNode]:
        return await self.backend.get_peers()

    async def get_tip_header(self) -> HeaderView:
        return await self.backend.get_tip_header()

    async def call_rpc(self, method: str, params: list[Any] | None = None) -> Any:
        return await self.backend.call_rpc(method, params)


__all__ = ["AccountService", "DEFAULT_REFRESH_INTERVAL"]
