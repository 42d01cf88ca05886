"""Revalidation timers.

Polling and error retries are driven by explicit timer handles, one per
collection key, instead of free-running intervals. The clock is pluggable:
production code uses :class:`LoopTimer` (the asyncio event loop), tests pass
a virtual clock that implements :class:`Timer` and advance it by hand.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import Protocol

from fieldsync.cache.events import CollectionKey

_logger = logging.getLogger(__name__)


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


class Timer(Protocol):
    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle: ...


class LoopTimer:
    """:class:`Timer` backed by an asyncio event loop."""

    def __init__(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        self._loop = loop

    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        loop = self._loop or asyncio.get_running_loop()
        return loop.call_later(max(0.0, delay), callback)


class RevalidationScheduler:
    """Owns at most one pending timer per collection key.

    Scheduling a key that already has a timer replaces (cancels) the old
    one, so a key can never accumulate duplicate polls.
    """

    def __init__(self, timer: Timer | None = None) -> None:
        self._timer: Timer = timer or LoopTimer()
        self._handles: dict[CollectionKey, TimerHandle] = {}

    def schedule(self, key: CollectionKey, delay: float, callback: Callable[[], None]) -> None:
        self.cancel(key)

        def _fire() -> None:
            self._handles.pop(key, None)
            callback()

        self._handles[key] = self._timer.call_later(delay, _fire)
        _logger.debug("Scheduled revalidation of %s in %.2fs", key, delay)

    def cancel(self, key: CollectionKey) -> None:
        handle = self._handles.pop(key, None)
        if handle is not None:
            handle.cancel()

    def cancel_all(self) -> None:
        for key in list(self._handles):
            self.cancel(key)

    def is_scheduled(self, key: CollectionKey) -> bool:
        return key in self._handles
