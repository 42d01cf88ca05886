"""Task model."""

from __future__ import annotations

from pydantic import field_validator

from fieldsync.models._base import FieldSyncModel, IsoDate, StringList, TaskPriority, TaskStatus, Timestamp
from fieldsync.normalize import safe_int


class Task(FieldSyncModel):
    """A unit of installation work on one vehicle, assigned to one member."""

    id: str
    vehicle_id: str = ""
    name: str = ""
    description: str | None = None
    status: TaskStatus = TaskStatus.PENDING
    assigned_to: str = ""
    """:attr:`TeamMember.name` of the assignee (may dangle)."""
    priority: TaskPriority = TaskPriority.MEDIUM
    estimated_duration: int | None = None
    """Minutes."""
    start_date: IsoDate = None
    end_date: IsoDate = None
    duration_days: int | None = None
    notes: str | None = None
    tags: StringList = []
    created_at: Timestamp = None
    updated_at: Timestamp = None

    @field_validator("estimated_duration", "duration_days", mode="before")
    @classmethod
    def _coerce_ints(cls, value: object) -> int | None:
        return safe_int(value)

    def identity(self) -> str:
        return self.id
