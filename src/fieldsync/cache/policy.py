"""Per-collection freshness policy.

This module intentionally contains *no* I/O. The store asks it whether an
entry is stale and how to poll/retry; the values mirror how often each
collection changes in practice (tasks churn fastest, locations and team
members barely move).
"""

from __future__ import annotations

from collections.abc import Mapping
from datetime import datetime, timedelta

from pydantic import BaseModel, ConfigDict, Field

from fieldsync.cache.events import CollectionKey


class CollectionPolicy(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    staleness: timedelta
    """Age after which a read schedules a background refresh."""
    refresh_interval: timedelta | None = None
    """Polling period while the key has subscribers; ``None`` disables polling."""
    error_retry_count: int = Field(default=0, ge=0)
    error_retry_interval: timedelta = timedelta(seconds=5)


DEFAULT_POLICIES: dict[CollectionKey, CollectionPolicy] = {
    CollectionKey.TASKS: CollectionPolicy(
        staleness=timedelta(seconds=15),
        refresh_interval=timedelta(seconds=15),
    ),
    CollectionKey.VEHICLES: CollectionPolicy(
        staleness=timedelta(seconds=30),
        refresh_interval=timedelta(seconds=30),
        error_retry_count=2,
        error_retry_interval=timedelta(seconds=2),
    ),
    CollectionKey.LOCATIONS: CollectionPolicy(
        staleness=timedelta(seconds=60),
        refresh_interval=timedelta(seconds=60),
    ),
    CollectionKey.TEAM_MEMBERS: CollectionPolicy(
        staleness=timedelta(seconds=60),
        refresh_interval=timedelta(seconds=60),
    ),
    CollectionKey.PROJECT_SETTINGS: CollectionPolicy(
        staleness=timedelta(seconds=60),
        refresh_interval=timedelta(seconds=60),
    ),
}


def build_policies(
    staleness_overrides: Mapping[str, float] | None = None,
    *,
    polling_enabled: bool = True,
) -> dict[CollectionKey, CollectionPolicy]:
    """Apply configuration overrides (seconds, keyed by collection name) to the defaults.

    An overridden staleness window also becomes the polling period.
    Unknown collection names are ignored.
    """
    policies = dict(DEFAULT_POLICIES)
    for name, seconds in (staleness_overrides or {}).items():
        try:
            key = CollectionKey(name)
        except ValueError:
            continue
        window = timedelta(seconds=seconds)
        policies[key] = policies[key].model_copy(update={"staleness": window, "refresh_interval": window})
    if not polling_enabled:
        policies = {key: policy.model_copy(update={"refresh_interval": None}) for key, policy in policies.items()}
    return policies


def is_stale(now: datetime, last_fetched_at: datetime | None, staleness: timedelta) -> bool:
    if last_fetched_at is None:
        return True
    return now - last_fetched_at >= staleness
