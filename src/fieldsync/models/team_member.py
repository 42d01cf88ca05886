"""Team member model."""

from __future__ import annotations

from pydantic import field_validator

from fieldsync.models._base import FieldSyncModel, StringList, Timestamp
from fieldsync.normalize import safe_float


class TeamMember(FieldSyncModel):
    """A technician.

    Tasks reference members by ``name``, not ``id``. ``completion_rate``
    and ``quality_score`` are entered by hand and are unrelated to the
    completion rate derived from task rows.
    """

    id: str
    name: str
    role: str = ""
    specializations: StringList = []
    completion_rate: float = 0.0
    average_task_time: float = 0.0
    """Minutes."""
    quality_score: float = 0.0
    created_at: Timestamp = None

    @field_validator("completion_rate", "average_task_time", "quality_score", mode="before")
    @classmethod
    def _coerce_float(cls, value: object) -> float:
        parsed = safe_float(value)
        return parsed if parsed is not None else 0.0

    def identity(self) -> str:
        return self.id
