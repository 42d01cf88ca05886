"""Cache keys, fetch states and the read-only view handed to callers."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum
from typing import Any


class CollectionKey(StrEnum):
    VEHICLES = "vehicles"
    LOCATIONS = "locations"
    TEAM_MEMBERS = "team_members"
    TASKS = "tasks"
    PROJECT_SETTINGS = "project_settings"


class FetchStatus(StrEnum):
    IDLE = "idle"
    LOADING = "loading"
    ERROR = "error"
    READY = "ready"


@dataclass(frozen=True, slots=True)
class CacheView:
    """Snapshot of one cache entry.

    ``data`` is ``None`` until the first successful fetch (or local
    mutation); afterwards it always holds the last good collection, even
    while ``status`` is ``error``. The collection object is handed out as
    is, never copied, so its identity can key memoized computations.
    """

    key: CollectionKey
    data: tuple[Any, ...] | None = None
    status: FetchStatus = FetchStatus.IDLE
    last_fetched_at: datetime | None = None
    error: BaseException | None = None

    @property
    def is_loading(self) -> bool:
        """Loading with nothing to show yet."""
        return self.status == FetchStatus.LOADING and self.data is None

    @property
    def is_validating(self) -> bool:
        """A fetch is in flight (with or without data to show)."""
        return self.status == FetchStatus.LOADING

    def items(self) -> tuple[Any, ...]:
        """``data`` or an empty tuple."""
        return self.data if self.data is not None else ()
