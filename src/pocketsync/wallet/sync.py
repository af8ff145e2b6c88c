"""
Script registration and sync-height resolution.

The light client indexes exactly one script for us, registered with
``set_scripts(..., "all")`` together with the block to start scanning from.
Re-registering replaces the previous registration, so every call here
decides the full tracking state rather than adding to it.
"""

from __future__ import annotations

import asyncio

from loguru import logger

from pocketsync.backends.base import LightClientBackend
from pocketsync.backends.models import Script, ScriptStatus
from pocketsync.constants import RECENT_BLOCKS_WINDOW, SYNC_TOLERANCE_BLOCKS, checkpoint_for
from pocketsync.errors import (
    NodeNotReadyError,
    QueryError,
    RegistrationError,
    SyncInProgressError,
)
from pocketsync.models import AccountStatus, NetworkType, SyncMode
from pocketsync.preferences import PreferenceStore
from pocketsync.wallet.node import NodeLifecycleManager


def resolve_start_block(
    mode: SyncMode,
    tip_height: int,
    checkpoint: int,
    custom_height: int | None = None,
) -> int:
    """
    Map a sync mode to the block the light client should start scanning from.

    Args:
        mode: Sync mode
        tip_height: Current tip (0 if unknown)
        checkpoint: Network checkpoint, used by NEW_WALLET when the tip is unknown
        custom_height: Start height for CUSTOM

    Returns:
        Start block height
    """
    if mode == SyncMode.NEW_WALLET:
        return tip_height if tip_height > 0 else checkpoint
    if mode == SyncMode.RECENT:
        return max(tip_height - RECENT_BLOCKS_WINDOW, 0)
    if mode == SyncMode.FULL_HISTORY:
        return 0
    return custom_height if custom_height is not None else 0


def compute_sync_progress(tip: int, synced: int) -> tuple[float, bool]:
    """
    Return ``(progress, is_synced)`` for a tip and a script's synced block.

    Progress is ``synced / tip`` clamped to [0, 1] and 0 when the tip is unknown.
    """
    if tip <= 0:
        return 0.0, False
    progress = min(max(synced / tip, 0.0), 1.0)
    return progress, abs(tip - synced) <= SYNC_TOLERANCE_BLOCKS


class SyncCoordinator:
    """
    Decides where the tracked script starts scanning and registers it.

    Registration and resync are serialized; a second request while one is
    running fails with ``SyncInProgressError`` instead of interleaving.
    """

    def __init__(
        self,
        backend: LightClientBackend,
        preferences: PreferenceStore,
        node: NodeLifecycleManager,
        lock_script: Script,
        network: NetworkType,
        address: str = "",
    ):
        self.backend = backend
        self.preferences = preferences
        self.node = node
        self.lock_script = lock_script
        self.network = network
        self.address = address
        self.checkpoint = checkpoint_for(network.value)

        self.is_registered = False
        self._lock = asyncio.Lock()

    def _script_status(self, block_number: int) -> ScriptStatus:
        return ScriptStatus(script=self.lock_script, script_type="lock", block_number=block_number)

    async def _tip_height(self) -> int:
        header = await self.backend.get_tip_header()
        return header.number

    async def tracked_script_block(self) -> int:
        """
        Block our script has been scanned up to, or 0 if it is not registered.

        Raises:
            QueryError: If the light client could not be queried
        """
        scripts = await self.backend.get_scripts()
        for status in scripts:
            if status.script_type == "lock" and status.script.matches(self.lock_script):
                return status.block_number
        return 0

    async def _existing_script_block(self) -> int:
        try:
            return await self.tracked_script_block()
        except QueryError as e:
            logger.warning(f"Could not read registered scripts, assuming none: {e}")
            return 0

    async def register(
        self,
        sync_mode: SyncMode | None = None,
        custom_height: int | None = None,
        save_preference: bool = True,
        force_resync: bool = False,
    ) -> int:
        """
        Register the tracked script with the light client.

        Without ``force_resync`` an existing resume point (saved progress or
        the block the light client already reached) always wins over the sync
        mode. The result is clamped to the tip, then lifted to the network
        checkpoint when it would otherwise scan from genesis.

        Args:
            sync_mode: Mode for this registration (default: saved mode)
            custom_height: Start height for CUSTOM (default: saved height)
            save_preference: Persist mode/height and mark initial sync completed
            force_resync: Ignore resume points and recompute from the mode

        Returns:
            The block height the script was registered at

        Raises:
            SyncInProgressError: If a registration is already running
            NodeNotReadyError: If the light client never came up
            RegistrationError: If the light client rejected the registration
        """
        if self._lock.locked():
            raise SyncInProgressError("A sync registration is already in progress")

        async with self._lock:
            return await self._register(sync_mode, custom_height, save_preference, force_resync)

    async def _register(
        self,
        sync_mode: SyncMode | None,
        custom_height: int | None,
        save_preference: bool,
        force_resync: bool,
    ) -> int:
        if not await self.node.await_ready():
            raise NodeNotReadyError("Light client is not running")

        mode = sync_mode or self.preferences.get_sync_mode(self.network)
        if custom_height is None and mode == SyncMode.CUSTOM:
            custom_height = self.preferences.get_custom_block_height(self.network)

        try:
            tip = await self._tip_height()
        except QueryError as e:
            raise RegistrationError(f"Could not read tip header: {e.message}") from e

        saved_block = self.preferences.get_last_synced_block(self.network)
        existing_block = await self._existing_script_block()

        if force_resync:
            start = resolve_start_block(mode, tip, self.checkpoint, custom_height)
            logger.info(f"Forced resync from mode {mode.value}: block {start}")
        elif saved_block > 0 or existing_block > 0:
            start = max(saved_block, existing_block)
            logger.info(
                f"Resuming sync from block {start} (saved={saved_block}, existing={existing_block})"
            )
        else:
            start = resolve_start_block(mode, tip, self.checkpoint, custom_height)
            logger.info(f"First sync with mode {mode.value}: block {start}")

        if tip > 0 and start > tip:
            clamped = max(tip - RECENT_BLOCKS_WINDOW, 0)
            logger.warning(f"Start block {start} is past tip {tip}, using {clamped}")
            start = clamped
        elif start == 0 and mode != SyncMode.FULL_HISTORY and self.checkpoint > 0:
            logger.info(f"Start block resolved to 0 in {mode.value} mode, using checkpoint")
            start = self.checkpoint

        logger.debug(f"Registering lock script {self.lock_script.args} at block {start} (tip={tip})")
        try:
            accepted = await self.backend.set_scripts([self._script_status(start)], "all")
        except QueryError as e:
            raise RegistrationError(f"Failed to register script: {e.message}") from e
        if not accepted:
            raise RegistrationError("Light client rejected script registration")

        self.is_registered = True
        if save_preference:
            self.preferences.set_sync_mode(mode, self.network)
            if mode == SyncMode.CUSTOM:
                self.preferences.set_custom_block_height(custom_height, self.network)
            self.preferences.set_initial_sync_completed(True, self.network)

        logger.info(f"Registered {self.network.value} wallet, scanning from block {start}")
        return start

    async def resync(self, sync_mode: SyncMode, custom_height: int | None = None) -> int:
        """Drop saved progress and re-register from ``sync_mode``."""
        if self._lock.locked():
            raise SyncInProgressError("A sync registration is already in progress")
        self.is_registered = False
        self.preferences.set_last_synced_block(0, self.network)
        return await self.register(sync_mode, custom_height, save_preference=True, force_resync=True)

    async def reregister_at(self, height: int, reason: str) -> None:
        """
        Move the tracked script's scan position to ``height`` and save it as
        the resume point.

        Waits for any registration in progress instead of failing, so a
        rescan lands after it rather than being overwritten by it.

        Raises:
            QueryError: If the light client could not be reached
            RegistrationError: If the light client rejected the registration
        """
        height = max(height, 0)
        async with self._lock:
            logger.info(f"Re-registering script at block {height}: {reason}")
            if not await self.backend.set_scripts([self._script_status(height)], "all"):
                raise RegistrationError("Light client rejected script registration")
            self.preferences.set_last_synced_block(height, self.network)

    async def get_account_status(self) -> AccountStatus:
        """
        Report sync progress, saving the script's block as the resume point
        when it has advanced.

        Raises:
            QueryError: If the light client could not be queried
        """
        tip = await self._tip_height()
        synced = await self.tracked_script_block()

        if synced > self.preferences.get_last_synced_block(self.network):
            self.preferences.set_last_synced_block(synced, self.network)
            logger.debug(f"Saved sync progress: block {synced}")

        progress, is_synced = compute_sync_progress(tip, synced)
        logger.debug(
            f"Sync status: tip={tip}, script={synced}, behind={max(tip - synced, 0)}, "
            f"{progress:.1%} synced"
        )
        return AccountStatus(
            address=self.address,
            is_registered=self.is_registered,
            tip_number=tip,
            synced_to_block=synced,
            sync_progress=progress,
            is_synced=is_synced,
        )


__all__ = ["SyncCoordinator", "resolve_start_block", "compute_sync_progress"]
