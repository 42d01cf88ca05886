"""In-memory cache of remote collections.

This is the only component that holds fetched collections. It enforces:

- one shared in-flight fetch per key (concurrent readers join it);
- stale-while-revalidate reads driven by per-key staleness windows;
- "stale data beats no data": a failed fetch never clears the last good
  collection, it only flips the status to ``error``;
- ordering: a fetch that started before the latest local mutation of its
  key, or before the last applied fetch, is discarded when it resolves.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Iterable, Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from fieldsync.cache.events import CacheView, CollectionKey, FetchStatus
from fieldsync.cache.policy import DEFAULT_POLICIES, CollectionPolicy, is_stale
from fieldsync.cache.scheduler import LoopTimer, RevalidationScheduler, Timer
from fieldsync.exceptions import FieldSyncError

_logger = logging.getLogger(__name__)

Fetcher = Callable[[], Awaitable[Iterable[Any]]]
Listener = Callable[[CacheView], None]


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _as_collection(data: Iterable[Any]) -> tuple[Any, ...]:
    # Keep identity when the caller already hands us a tuple.
    return data if isinstance(data, tuple) else tuple(data)


@dataclass(slots=True)
class _InFlight:
    task: asyncio.Task[tuple[Any, ...]]
    started_seq: int


@dataclass
class _Entry:
    data: tuple[Any, ...] | None = None
    status: FetchStatus = FetchStatus.IDLE
    last_fetched_at: datetime | None = None
    last_attempt_at: datetime | None = None
    error: BaseException | None = None
    last_mutation_seq: int = 0
    last_applied_seq: int = 0
    pending: int = 0
    failed_attempts: int = 0
    inflight: _InFlight | None = None
    listeners: list[Listener] = field(default_factory=list)


class CacheStore:
    """Per-key cache of immutable collections with fetch deduplication.

    The store is owned by the application's composition root. Call
    :meth:`init` from inside the running event loop before refreshing, and
    :meth:`clear` on logout/reset. Reads (:meth:`get`, :meth:`peek`),
    subscriptions and plain local mutations work before ``init``; anything
    that has to fetch raises :class:`FieldSyncError` until then.
    """

    def __init__(
        self,
        fetchers: Mapping[CollectionKey, Fetcher],
        *,
        policies: Mapping[CollectionKey, CollectionPolicy] | None = None,
        clock: Callable[[], datetime] = _utcnow,
        timer: Timer | None = None,
    ) -> None:
        self._fetchers = dict(fetchers)
        self._policies = {**DEFAULT_POLICIES, **(policies or {})}
        self._clock = clock
        self._timer = timer
        self._scheduler: RevalidationScheduler | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._entries: dict[CollectionKey, _Entry] = {}
        self._tasks: set[asyncio.Task[Any]] = set()
        self._seq = 0

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def init(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        """Bind the store to an event loop. Idempotent."""
        if self._loop is not None:
            return
        self._loop = loop or asyncio.get_running_loop()
        self._scheduler = RevalidationScheduler(self._timer or LoopTimer(self._loop))
        for key, entry in self._entries.items():
            if entry.listeners:
                self._rearm(key, entry)

    def clear(self) -> None:
        """Drop every entry, listener, timer and background fetch."""
        if self._scheduler is not None:
            self._scheduler.cancel_all()
        for task in list(self._tasks):
            task.cancel()
        self._tasks.clear()
        self._entries = {}

    @property
    def initialized(self) -> bool:
        return self._loop is not None

    @property
    def keys(self) -> tuple[CollectionKey, ...]:
        return tuple(self._fetchers)

    def policy(self, key: CollectionKey) -> CollectionPolicy:
        return self._policies[key]

    def is_scheduled(self, key: CollectionKey) -> bool:
        """Whether a poll or retry timer is pending for *key*."""
        return self._scheduler is not None and self._scheduler.is_scheduled(key)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _require_loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            raise FieldSyncError("Cache store not initialized. Call CacheStore.init() inside the event loop.")
        return self._loop

    def _fetcher(self, key: CollectionKey) -> Fetcher:
        fetcher = self._fetchers.get(key)
        if fetcher is None:
            raise FieldSyncError(f"No fetcher registered for {key}")
        return fetcher

    def _entry(self, key: CollectionKey) -> _Entry:
        entry = self._entries.get(key)
        if entry is None:
            entry = _Entry()
            self._entries[key] = entry
        return entry

    def _view(self, key: CollectionKey, entry: _Entry) -> CacheView:
        return CacheView(
            key=key,
            data=entry.data,
            status=entry.status,
            last_fetched_at=entry.last_fetched_at,
            error=entry.error,
        )

    def _notify(self, key: CollectionKey, entry: _Entry) -> None:
        view = self._view(key, entry)
        for listener in list(entry.listeners):
            try:
                listener(view)
            except Exception:
                _logger.debug("Cache listener for %s failed", key, exc_info=True)

    def _settle_status(self, entry: _Entry) -> None:
        if entry.pending > 0:
            entry.status = FetchStatus.LOADING
        elif entry.error is not None:
            entry.status = FetchStatus.ERROR
        elif entry.data is not None:
            entry.status = FetchStatus.READY
        else:
            entry.status = FetchStatus.IDLE

    def _track(self, task: asyncio.Task[Any]) -> None:
        self._tasks.add(task)

        def _done(t: asyncio.Task[Any]) -> None:
            self._tasks.discard(t)
            # Mark the outcome as retrieved; failures are already recorded on the entry.
            if not t.cancelled():
                t.exception()

        task.add_done_callback(_done)

    def _inflight(self, entry: _Entry) -> _InFlight | None:
        inflight = entry.inflight
        if inflight is None or inflight.task.done():
            return None
        return inflight

    def _start_fetch(self, key: CollectionKey) -> asyncio.Task[tuple[Any, ...]]:
        loop = self._require_loop()
        fetcher = self._fetcher(key)
        entry = self._entry(key)

        self._seq += 1
        seq = self._seq
        entry.pending += 1
        entry.status = FetchStatus.LOADING

        task = loop.create_task(self._run_fetch(key, entry, fetcher, seq), name=f"fieldsync-fetch-{key}")
        entry.inflight = _InFlight(task=task, started_seq=seq)
        self._track(task)
        self._notify(key, entry)
        return task

    async def _run_fetch(self, key: CollectionKey, entry: _Entry, fetcher: Fetcher, seq: int) -> tuple[Any, ...]:
        _logger.debug("Fetching %s", key)
        try:
            data = _as_collection(await fetcher())
        except Exception as exc:
            if self._entries.get(key) is entry:
                self._finish(key, entry, seq, error=exc)
            _logger.warning("Refreshing %s failed: %s", key, exc)
            raise

        if self._entries.get(key) is not entry:
            # Store was cleared while the fetch was in flight.
            return data
        self._finish(key, entry, seq, data=data)
        return data

    def _finish(
        self,
        key: CollectionKey,
        entry: _Entry,
        seq: int,
        *,
        data: tuple[Any, ...] | None = None,
        error: BaseException | None = None,
    ) -> None:
        entry.pending = max(0, entry.pending - 1)
        outdated = seq < entry.last_mutation_seq or seq < entry.last_applied_seq
        if outdated:
            _logger.debug("Discarding outdated %s fetch", key)
        else:
            now = self._clock()
            entry.last_attempt_at = now
            entry.last_applied_seq = seq
            if error is None:
                entry.data = data
                entry.error = None
                entry.last_fetched_at = now
                entry.failed_attempts = 0
            else:
                entry.error = error
                entry.failed_attempts += 1
        self._settle_status(entry)
        self._notify(key, entry)
        if entry.pending == 0:
            self._rearm(key, entry)

    def _retry_due(self, key: CollectionKey, entry: _Entry) -> bool:
        policy = self._policies[key]
        return entry.error is not None and 0 < entry.failed_attempts <= policy.error_retry_count

    def _rearm(self, key: CollectionKey, entry: _Entry) -> None:
        """Schedule the next retry or poll for *key*, or cancel its timer."""
        scheduler = self._scheduler
        if scheduler is None:
            return
        policy = self._policies[key]
        if self._retry_due(key, entry):
            scheduler.schedule(
                key,
                policy.error_retry_interval.total_seconds(),
                lambda: self._on_timer(key),
            )
            return
        if entry.listeners and policy.refresh_interval is not None:
            scheduler.schedule(
                key,
                policy.refresh_interval.total_seconds(),
                lambda: self._on_timer(key),
            )
            return
        scheduler.cancel(key)

    def _on_timer(self, key: CollectionKey) -> None:
        if key not in self._entries:
            return
        self.revalidate(key)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def peek(self, key: CollectionKey) -> CacheView:
        """Current view of *key* without triggering any fetch."""
        return self._view(key, self._entry(key))

    def get(self, key: CollectionKey) -> CacheView:
        """Current view of *key*; schedules a background refresh when stale.

        Never blocks and never raises for fetch failures. The staleness
        clock restarts after every completed attempt, successful or not,
        so a failing store is retried once per window rather than on every
        read.
        """
        entry = self._entry(key)
        if self.initialized and key in self._fetchers and self._inflight(entry) is None:
            policy = self._policies[key]
            if is_stale(self._clock(), entry.last_attempt_at, policy.staleness):
                self.revalidate(key)
        return self._view(key, entry)

    async def refresh(self, key: CollectionKey, *, force: bool = False) -> tuple[Any, ...]:
        """Fetch *key* from the remote store and return the collection.

        Without ``force`` a fetch already in flight is joined instead of
        issuing a second read. ``force=True`` always starts a new fetch
        (used after remote writes, when an older in-flight read may predate
        the write). Failures keep the cached data, set ``status=error`` and
        are re-raised. If the fetched result was superseded while in flight
        the current cached collection is returned instead.
        """
        entry = self._entry(key)
        inflight = None if force else self._inflight(entry)
        if inflight is not None:
            _logger.debug("Joining in-flight fetch of %s", key)
            task = inflight.task
        else:
            task = self._start_fetch(key)
        data = await asyncio.shield(task)
        current = self._entries.get(key)
        if current is not None and current.data is not None:
            return current.data
        return data

    def revalidate(self, key: CollectionKey, *, force: bool = False) -> asyncio.Task[tuple[Any, ...]]:
        """Start (or join) a background refresh and return its task.

        The caller never sees the failure; it is recorded on the entry.
        """
        entry = self._entry(key)
        inflight = None if force else self._inflight(entry)
        if inflight is not None:
            return inflight.task
        return self._start_fetch(key)

    def mutate_local(self, key: CollectionKey, data: Iterable[Any], *, revalidate: bool = False) -> None:
        """Replace the cached collection and notify subscribers synchronously.

        Any fetch already in flight for *key* is now outdated and its result
        will be discarded. With ``revalidate=True`` a fresh background fetch
        is started afterwards.
        """
        entry = self._entry(key)
        self._seq += 1
        entry.last_mutation_seq = self._seq
        entry.data = _as_collection(data)
        if entry.status == FetchStatus.IDLE:
            entry.status = FetchStatus.READY
        self._notify(key, entry)
        if revalidate:
            self.revalidate(key, force=True)

    def subscribe(self, key: CollectionKey, listener: Listener) -> Callable[[], None]:
        """Register *listener* for every change of *key*.

        The first subscriber arms polling (when the key's policy polls);
        the returned callable unsubscribes, and removing the last listener
        cancels the poll. In-flight fetches are never aborted.
        """
        entry = self._entry(key)
        entry.listeners.append(listener)
        if len(entry.listeners) == 1 and entry.pending == 0 and not self.is_scheduled(key):
            self._rearm(key, entry)

        def _unsubscribe() -> None:
            current = self._entries.get(key)
            if current is None or listener not in current.listeners:
                return
            current.listeners.remove(listener)
            if not current.listeners and self._scheduler is not None and not self._retry_due(key, current):
                self._scheduler.cancel(key)

        return _unsubscribe

    def snapshot(self) -> dict[CollectionKey, tuple[Any, ...]]:
        """Current collections of every key (empty tuples for unfetched keys)."""
        return {key: self._entry(key).data or () for key in self._fetchers}
