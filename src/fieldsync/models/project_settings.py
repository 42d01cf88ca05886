"""Project settings singleton."""

from __future__ import annotations

from datetime import date

from pydantic import field_validator

from fieldsync._constants import PROJECT_SETTINGS_ID
from fieldsync.models._base import FieldSyncModel, Timestamp
from fieldsync.normalize import parse_date


class ProjectSettings(FieldSyncModel):
    """Single row holding the date that day ``1`` maps to."""

    id: str = PROJECT_SETTINGS_ID
    project_start_date: date
    created_at: Timestamp = None
    updated_at: Timestamp = None

    @field_validator("project_start_date", mode="before")
    @classmethod
    def _parse_start(cls, value: object) -> date:
        parsed = parse_date(value)
        if parsed is None:
            raise ValueError("project_start_date must be a date")
        return parsed

    def identity(self) -> str:
        return self.id
