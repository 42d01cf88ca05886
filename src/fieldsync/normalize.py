"""Normalization helpers.

Centralizes tolerant parsing of loosely typed store rows and the
percentage rounding shared by every derived view.
"""

from __future__ import annotations

import math
from datetime import date, datetime
from typing import Any


def safe_float(value: Any) -> float | None:
    if value is None or value == "":
        return None
    try:
        result = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(result):
        return None
    return result


def safe_int(value: Any) -> int | None:
    parsed = safe_float(value)
    if parsed is None:
        return None
    return int(parsed)


def safe_str(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value)
    return text if text else None


def non_negative_or_zero(value: Any) -> int:
    parsed = safe_int(value)
    if parsed is None:
        return 0
    return 0 if parsed < 0 else parsed


def string_list(value: Any) -> list[str]:
    """Coerce ``None``, a scalar or a sequence into a list of strings."""
    if value is None:
        return []
    if isinstance(value, str):
        return [value] if value else []
    if isinstance(value, (list, tuple)):
        return [str(item) for item in value if item is not None and item != ""]
    return [str(value)]


def parse_date(value: Any) -> date | None:
    """Parse an ISO ``YYYY-MM-DD`` (or full timestamp) into a ``date``."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value).strip()
    if not text:
        return None
    return date.fromisoformat(text[:10])


def parse_timestamp(value: Any) -> datetime | None:
    """Parse an ISO-8601 timestamp, accepting a trailing ``Z``."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    text = str(value).strip()
    if text.endswith("Z"):
        text = f"{text[:-1]}+00:00"
    return datetime.fromisoformat(text)


def percent(part: int, total: int) -> int:
    """Whole-number percentage of *part* in *total*, rounding halves up.

    Returns ``0`` when *total* is zero.
    """
    if total <= 0:
        return 0
    return int(math.floor(part * 100 / total + 0.5))
