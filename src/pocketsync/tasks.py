"""
Shared async task utilities.

Provides the engine's patterns for background work: periodic refresh loops,
bounded polling with an explicit cancellation token, and fire-and-forget
tasks whose failures are logged rather than raised.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Coroutine
from typing import Any, TypeVar

from loguru import logger

from pocketsync.errors import PollTimeout

T = TypeVar("T")

# Strong references so fire-and-forget tasks are not garbage collected mid-flight
_background_tasks: set[asyncio.Task[Any]] = set()


class CancelToken:
    """
    Cooperative cancellation flag shared by the loops of one flow.

    ``sleep`` returns early once the token is cancelled, so a loop waiting
    between polls notices cancellation immediately.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self.reason: str | None = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str = "cancelled") -> None:
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    async def sleep(self, delay: float) -> bool:
        """
        Sleep for ``delay`` seconds unless cancelled first.

        Returns:
            True if the full delay elapsed, False if the token was cancelled
        """
        if self.cancelled:
            return False
        try:
            await asyncio.wait_for(self._event.wait(), timeout=delay)
        except TimeoutError:
            return True
        return False


async def run_periodic_task(
    name: str,
    callback: Callable[[], Coroutine[Any, Any, None]],
    interval: float,
    initial_delay: float = 0.0,
    running_check: Callable[[], bool] | None = None,
) -> None:
    """
    Run a callback periodically until cancelled or running_check returns False.

    Args:
        name: Human-readable task name for logging
        callback: Async function to call each interval
        interval: Seconds between invocations
        initial_delay: Seconds to wait before first invocation
        running_check: Optional callable returning False to stop the task
    """
    if initial_delay > 0:
        await asyncio.sleep(initial_delay)

    while running_check is None or running_check():
        try:
            await asyncio.sleep(interval)
            await callback()
        except asyncio.CancelledError:
            logger.info(f"{name} task cancelled")
            break
        except Exception as e:
            logger.error(f"Error in {name}: {e}")

    logger.info(f"{name} task stopped")


async def poll_until(
    name: str,
    probe: Callable[[int], Awaitable[T | None]],
    interval: float,
    max_attempts: int,
    token: CancelToken,
) -> T | None:
    """
    Call ``probe(attempt)`` every ``interval`` seconds until it returns a value.

    The first call happens after one interval. Exceptions raised by the probe
    are logged and count as an unsuccessful attempt.

    Args:
        name: Loop name for logging
        probe: Async callable receiving the 1-based attempt number; returns a
            non-None value to stop polling
        interval: Seconds between attempts
        max_attempts: Attempts before giving up
        token: Cancellation token shared with sibling loops

    Returns:
        The probe's result, or None if the token was cancelled

    Raises:
        PollTimeout: If ``max_attempts`` passed without a result
    """
    for attempt in range(1, max_attempts + 1):
        if not await token.sleep(interval):
            logger.debug(f"{name} cancelled ({token.reason}) after {attempt - 1} attempts")
            return None
        try:
            result = await probe(attempt)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning(f"{name} attempt #{attempt} failed: {e}")
            continue
        if result is not None:
            return result
        if token.cancelled:
            return None

    raise PollTimeout(f"{name} gave up after {max_attempts} attempts")


def spawn_background(
    name: str, coro: Coroutine[Any, Any, Any]
) -> asyncio.Task[Any]:
    """
    Start a detached task. Failures are logged, never propagated.
    """

    async def _runner() -> None:
        try:
            await coro
        except asyncio.CancelledError:
            logger.debug(f"Background task {name} cancelled")
        except Exception as e:
            logger.error(f"Background task {name} failed: {e}")

    task = asyncio.create_task(_runner(), name=name)
    _background_tasks.add(task)
    task.add_done_callback(_background_tasks.discard)
    return task


async def cancel_tasks(tasks: list[asyncio.Task[Any]]) -> None:
    """Cancel tasks and wait for them to finish."""
    for task in tasks:
        if not task.done():
            task.cancel()
    if tasks:
        await asyncio.gather(*tasks, return_exceptions=True)
