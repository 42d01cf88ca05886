"""Base model and enums for store rows.

Every entity model inherits from :class:`FieldSyncModel` which provides:

* frozen instances, so a cached collection can never be edited in place
  (a local change always produces a new collection object);
* ``extra="ignore"`` so columns the library does not know about are
  tolerated;
* :meth:`FieldSyncModel.to_row` which dumps the model back into the
  JSON shape the store expects.

Status enums are ``StrEnum`` subclasses whose values are the exact labels
stored in the database (``"In Progress"``, not ``IN_PROGRESS``).
"""

from __future__ import annotations

from datetime import date, datetime
from enum import StrEnum
from typing import Annotated, Any

from pydantic import BaseModel, BeforeValidator, ConfigDict

from fieldsync.normalize import non_negative_or_zero, parse_date, parse_timestamp, string_list


class VehicleStatus(StrEnum):
    PENDING = "Pending"
    IN_PROGRESS = "In Progress"
    COMPLETED = "Completed"


class TaskStatus(StrEnum):
    PENDING = "Pending"
    IN_PROGRESS = "In Progress"
    COMPLETED = "Completed"
    BLOCKED = "Blocked"


class TaskPriority(StrEnum):
    HIGH = "High"
    MEDIUM = "Medium"
    LOW = "Low"


Count = Annotated[int, BeforeValidator(non_negative_or_zero)]
"""Non-negative integer; ``None``, blanks and negatives coerce to ``0``."""

IsoDate = Annotated[date | None, BeforeValidator(parse_date)]
"""Calendar date parsed from ``YYYY-MM-DD`` (or a full timestamp)."""

Timestamp = Annotated[datetime | None, BeforeValidator(parse_timestamp)]
"""ISO-8601 timestamp; a trailing ``Z`` is accepted."""

StringList = Annotated[list[str], BeforeValidator(string_list)]
"""List of strings; ``None`` becomes an empty list."""


class FieldSyncModel(BaseModel):
    """Base for entity rows owned by the remote store."""

    model_config = ConfigDict(
        frozen=True,
        extra="ignore",
        populate_by_name=True,
    )

    def to_row(self, *, exclude: set[str] | None = None) -> dict[str, Any]:
        """Serialize into a JSON-ready row, dropping unset optional fields."""
        return self.model_dump(mode="json", exclude=exclude, exclude_none=True)

    def identity(self) -> str:
        """Primary key value of this row."""
        raise NotImplementedError
