"""Client configuration for fieldsync."""

from __future__ import annotations

import dataclasses
import os
from datetime import date
from typing import Any

from fieldsync._constants import DEFAULT_PROJECT_DAYS, DEFAULT_TIME_SLOTS


def _env_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "y", "on"}:
        return True
    if normalized in {"0", "false", "no", "n", "off"}:
        return False
    return default


def _env_slots(value: str | None) -> tuple[str, ...] | None:
    if value is None:
        return None
    slots = tuple(part.strip() for part in value.split(",") if part.strip())
    return slots or None


@dataclasses.dataclass(frozen=True)
class FieldSyncConfig:
    """Client configuration.

    Parameters
    ----------
    base_url : str
        Root URL of the remote store (the REST API lives under
        ``/rest/v1``).
    api_key : str
        Key sent as both ``apikey`` and bearer token.
    schema : str
        Database schema exposed by the REST API.
    request_timeout : float
        Total per-request timeout in seconds.
    project_days : int
        Nominal project length; bounds the calendar grid and the
        validator's accepted ``day`` range.
    time_slots : tuple[str, ...]
        Ordered slot labels used to bucket same-day installations.
    default_start_date : date or None
        Start date used when the store holds no project settings row.
        ``None`` falls back to today.
    staleness : dict[str, float]
        Per-collection staleness window overrides in seconds, keyed by
        collection name (``"tasks"``, ``"vehicles"``...).
    polling_enabled : bool
        Re-fetch subscribed collections on their refresh interval.
    prefetch_stagger : float
        Delay in seconds between consecutive keys in ``prefetch_all``.
    """

    base_url: str = ""
    api_key: str = ""
    schema: str = "public"
    request_timeout: float = 15.0
    project_days: int = DEFAULT_PROJECT_DAYS
    time_slots: tuple[str, ...] = DEFAULT_TIME_SLOTS
    default_start_date: date | None = None
    staleness: dict[str, float] = dataclasses.field(default_factory=dict)
    polling_enabled: bool = True
    prefetch_stagger: float = 0.05

    @classmethod
    def from_env(cls, **overrides: Any) -> FieldSyncConfig:
        """Create configuration from environment variables.

        Reads ``FIELDSYNC_BASE_URL``, ``FIELDSYNC_API_KEY`` and optional
        ``FIELDSYNC_*`` variables. ``FIELDSYNC_STALENESS_<KEY>`` sets the
        staleness window of one collection (e.g.
        ``FIELDSYNC_STALENESS_TASKS=10``). Explicit keyword arguments
        override environment values.
        """
        env = os.environ

        _ENV_CONFIG_MAP = {
            "FIELDSYNC_BASE_URL": "base_url",
            "FIELDSYNC_API_KEY": "api_key",
            "FIELDSYNC_SCHEMA": "schema",
        }
        config_kwargs: dict[str, Any] = {}
        for env_key, field_name in _ENV_CONFIG_MAP.items():
            val = env.get(env_key)
            if val is not None:
                config_kwargs[field_name] = val

        timeout_env = env.get("FIELDSYNC_REQUEST_TIMEOUT")
        if timeout_env is not None and "request_timeout" not in overrides:
            config_kwargs["request_timeout"] = float(timeout_env)

        days_env = env.get("FIELDSYNC_PROJECT_DAYS")
        if days_env is not None and "project_days" not in overrides:
            config_kwargs["project_days"] = int(days_env)

        slots = _env_slots(env.get("FIELDSYNC_TIME_SLOTS"))
        if slots is not None and "time_slots" not in overrides:
            config_kwargs["time_slots"] = slots

        start_env = env.get("FIELDSYNC_START_DATE")
        if start_env and "default_start_date" not in overrides:
            config_kwargs["default_start_date"] = date.fromisoformat(start_env.strip())

        staleness: dict[str, float] = {}
        prefix = "FIELDSYNC_STALENESS_"
        for env_key, val in env.items():
            if env_key.startswith(prefix) and val.strip():
                staleness[env_key[len(prefix) :].lower()] = float(val)
        if staleness and "staleness" not in overrides:
            config_kwargs["staleness"] = staleness

        if "polling_enabled" not in overrides:
            config_kwargs["polling_enabled"] = _env_bool(env.get("FIELDSYNC_POLLING_ENABLED"), True)

        stagger_env = env.get("FIELDSYNC_PREFETCH_STAGGER")
        if stagger_env is not None and "prefetch_stagger" not in overrides:
            config_kwargs["prefetch_stagger"] = float(stagger_env)

        config_kwargs.update(overrides)

        return cls(**config_kwargs)
