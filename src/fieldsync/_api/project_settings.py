"""Project settings table: ``project_settings`` (single ``default`` row)."""

from __future__ import annotations

from datetime import UTC, date, datetime

from fieldsync._api._common import select_rows, upsert_row
from fieldsync._constants import PROJECT_SETTINGS_ID, TABLE_PROJECT_SETTINGS
from fieldsync._transport import Transport
from fieldsync.models.project_settings import ProjectSettings


async def fetch_project_settings(transport: Transport) -> tuple[ProjectSettings, ...]:
    """Fetch the settings rows (normally zero or one)."""
    return await select_rows(transport, TABLE_PROJECT_SETTINGS, ProjectSettings)


async def upsert_project_start_date(transport: Transport, start_date: date) -> ProjectSettings:
    row = {
        "id": PROJECT_SETTINGS_ID,
        "project_start_date": start_date.isoformat(),
        "updated_at": datetime.now(UTC).isoformat(),
    }
    return await upsert_row(transport, TABLE_PROJECT_SETTINGS, ProjectSettings, row)
