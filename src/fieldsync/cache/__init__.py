"""Cache layer.

This package is the single place where fetched collections live between
remote reads. Everything else (mutations, derived views, prefetching)
reads from or writes through :class:`CacheStore`.
"""

from fieldsync.cache.events import CacheView, CollectionKey, FetchStatus
from fieldsync.cache.policy import CollectionPolicy, build_policies
from fieldsync.cache.scheduler import LoopTimer, RevalidationScheduler, Timer, TimerHandle
from fieldsync.cache.store import CacheStore

__all__ = [
    "CacheStore",
    "CacheView",
    "CollectionKey",
    "CollectionPolicy",
    "FetchStatus",
    "LoopTimer",
    "RevalidationScheduler",
    "Timer",
    "TimerHandle",
    "build_policies",
]
