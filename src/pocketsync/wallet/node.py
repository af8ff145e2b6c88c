"""
Light client lifecycle: bring-up with bounded retries and network switching.

Readiness is a single signal. ``initialize`` resets it to unknown, then
settles it exactly once: True as soon as an attempt succeeds, False after the
last attempt fails. A False readiness is final for the life of the manager;
nothing retries on its own.
"""

from __future__ import annotations

import asyncio
import os
import sys
from collections.abc import Awaitable, Callable, Sequence

from loguru import logger

from pocketsync.backends.base import LightClientBackend
from pocketsync.constants import NODE_INIT_MAX_ATTEMPTS, NODE_INIT_RETRY_DELAYS
from pocketsync.errors import AlreadySwitchingError, EngineError
from pocketsync.models import NetworkType
from pocketsync.preferences import PreferenceStore

RestartHook = Callable[[NetworkType], Awaitable[None]]


class NodeLifecycleManager:
    def __init__(
        self,
        backend: LightClientBackend,
        preferences: PreferenceStore,
        max_attempts: int = NODE_INIT_MAX_ATTEMPTS,
        retry_delays: Sequence[float] = NODE_INIT_RETRY_DELAYS,
        restart_hook: RestartHook | None = None,
    ):
        self.backend = backend
        self.preferences = preferences
        self.max_attempts = max_attempts
        self.retry_delays = tuple(retry_delays) or (0.0,)
        self.restart_hook = restart_hook

        self._ready_event = asyncio.Event()
        self._ready: bool | None = None
        self._switching = False

    @property
    def ready(self) -> bool | None:
        """True/False once settled, None while unknown."""
        return self._ready

    @property
    def is_switching(self) -> bool:
        return self._switching

    def _settle(self, ready: bool) -> None:
        self._ready = ready
        self._ready_event.set()

    async def _attempt(self, config_path: str | None) -> bool:
        try:
            if not await self.backend.init(config_path):
                logger.error("Light client init returned failure")
                return False
            if not await self.backend.start():
                logger.error("Light client failed to start")
                return False
        except (EngineError, OSError) as e:
            logger.error(f"Light client bring-up raised: {e}")
            return False
        return True

    async def initialize(self, config_path: str | None = None) -> bool:
        """
        Bring the light client online.

        Tries init+start up to ``max_attempts`` times, sleeping
        ``retry_delays[n]`` between failed attempts.

        Returns:
            Final readiness
        """
        self._ready = None
        self._ready_event.clear()

        for attempt in range(1, self.max_attempts + 1):
            logger.info(f"Starting light client (attempt {attempt}/{self.max_attempts})")
            if await self._attempt(config_path):
                logger.info("Light client ready")
                self._settle(True)
                return True

            if attempt < self.max_attempts:
                delay = self.retry_delays[min(attempt - 1, len(self.retry_delays) - 1)]
                logger.warning(f"Light client not ready, retrying in {delay:.0f}s")
                await asyncio.sleep(delay)

        logger.error(
            f"Light client failed to start after {self.max_attempts} attempts; "
            "restart the application to try again"
        )
        self._settle(False)
        return False

    async def await_ready(self) -> bool:
        """Wait until readiness is settled and return it."""
        await self._ready_event.wait()
        return bool(self._ready)

    async def switch_network(self, target: NetworkType) -> None:
        """
        Persist ``target`` as the selected network and hand over to the restart hook.

        The light client cannot be re-initialized against another network in
        the same process, so the new network takes effect on relaunch. The
        selection is written durably before the hook runs.

        Raises:
            AlreadySwitchingError: If another switch is in progress
            PreferenceError: If the selection could not be persisted
        """
        if self._switching:
            raise AlreadySwitchingError("A network switch is already in progress")

        self._switching = True
        try:
            current = self.preferences.get_selected_network()
            logger.info(f"Switching network: {current.value} -> {target.value}")
            self.preferences.set_selected_network(target)

            if self.restart_hook is None:
                logger.info(f"Network set to {target.value}; restart to apply")
                self._switching = False
                return

            await self.restart_hook(target)
        except BaseException:
            self._switching = False
            raise


def relaunch_hook(argv: list[str] | None = None) -> RestartHook:
    """
    Build a restart hook that replaces the current process.

    Args:
        argv: Arguments for the new process (default: the current ``sys.argv``)
    """

    async def _relaunch(target: NetworkType) -> None:
        args = argv if argv is not None else sys.argv
        logger.info(f"Relaunching on {target.value}: {' '.join(args)}")
        sys.stdout.flush()
        sys.stderr.flush()
        os.execv(sys.executable, [sys.executable, *args])

    return _relaunch


__all__ = ["NodeLifecycleManager", "RestartHook", "relaunch_hook"]
