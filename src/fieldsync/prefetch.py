"""Warm the cache ahead of navigation."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable
from typing import Any

from fieldsync._constants import ROUTE_PREFETCH
from fieldsync.cache.events import CollectionKey
from fieldsync.cache.store import CacheStore

_logger = logging.getLogger(__name__)


class PrefetchScheduler:
    """Fire-and-forget cache warming.

    Prefetches join an in-flight fetch instead of issuing a second one, and
    never raise: a failed prefetch is recorded on the cache entry like any
    other fetch failure.
    """

    def __init__(self, store: CacheStore, *, stagger: float = 0.05) -> None:
        self._store = store
        self._stagger = stagger
        self._tasks: set[asyncio.Task[Any]] = set()

    def _spawn(self, coro: Any, name: str) -> asyncio.Task[Any]:
        task = asyncio.get_running_loop().create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _warm(self, key: CollectionKey) -> None:
        try:
            await self._store.refresh(key)
        except Exception:
            _logger.debug("Prefetch of %s failed", key, exc_info=True)

    def prefetch(self, key: CollectionKey) -> asyncio.Task[None]:
        """Start warming *key* in the background and return the task."""
        return self._spawn(self._warm(key), f"fieldsync-prefetch-{key}")

    async def _staggered(self, keys: tuple[CollectionKey, ...]) -> None:
        started: list[asyncio.Task[None]] = []
        for index, key in enumerate(keys):
            if index and self._stagger > 0:
                await asyncio.sleep(self._stagger)
            started.append(self.prefetch(key))
        if started:
            await asyncio.gather(*started)

    def prefetch_many(self, keys: Iterable[CollectionKey]) -> asyncio.Task[None]:
        """Warm *keys* one after another, ``stagger`` seconds apart."""
        return self._spawn(self._staggered(tuple(keys)), "fieldsync-prefetch-batch")

    def prefetch_all(self) -> asyncio.Task[None]:
        """Warm every registered collection."""
        return self.prefetch_many(self._store.keys)

    def prefetch_route(self, route: str) -> asyncio.Task[None] | None:
        """Warm what the screen at *route* needs.

        ``"/"`` (the dashboard) needs everything; unknown routes warm
        nothing and return ``None``.
        """
        path = route.rstrip("/") or "/"
        if path == "/":
            return self.prefetch_all()
        keys = ROUTE_PREFETCH.get(path)
        if keys is None:
            _logger.debug("No prefetch plan for route %s", route)
            return None
        return self.prefetch_many(CollectionKey(key) for key in keys)

    def cancel(self) -> None:
        for task in list(self._tasks):
            task.cancel()
        self._tasks.clear()
