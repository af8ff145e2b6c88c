"""
Single-writer observable state.

A ``StateFlow`` holds the latest immutable snapshot of some engine state
(balance, account status, send progress). Only its owner calls ``set``;
consumers read ``value`` or iterate ``subscribe()`` to receive every new
snapshot. Subscribers that fall behind only see the most recent value.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Callable
from typing import Generic, TypeVar

from loguru import logger

T = TypeVar("T")


class StateFlow(Generic[T]):
    def __init__(self, initial: T, name: str = "state") -> None:
        self._value = initial
        self._name = name
        self._subscribers: set[asyncio.Queue[T]] = set()

    @property
    def value(self) -> T:
        return self._value

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def set(self, new_value: T) -> None:
        """Replace the current snapshot and notify subscribers."""
        if new_value == self._value:
            return
        self._value = new_value
        for queue in self._subscribers:
            # Conflate: drop the stale pending value, keep only the latest
            if queue.full():
                queue.get_nowait()
            queue.put_nowait(new_value)
        logger.trace(f"{self._name} updated: {new_value}")

    def update(self, fn: Callable[[T], T]) -> T:
        """Derive the next snapshot from the current one."""
        new_value = fn(self._value)
        self.set(new_value)
        return new_value

    async def subscribe(self) -> AsyncIterator[T]:
        """
        Yield the current value, then every subsequent value until cancelled.
        """
        queue: asyncio.Queue[T] = asyncio.Queue(maxsize=1)
        self._subscribers.add(queue)
        try:
            yield self._value
            while True:
                yield await queue.get()
        finally:
            self._subscribers.discard(queue)
