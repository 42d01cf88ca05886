"""Task table: ``tasks``."""

from __future__ import annotations

from collections.abc import Mapping
from datetime import UTC, datetime
from typing import Any

from fieldsync._api._common import delete_row, insert_row, select_rows, update_row
from fieldsync._constants import TABLE_TASKS
from fieldsync._transport import Transport
from fieldsync.models.task import Task


async def fetch_tasks(transport: Transport) -> tuple[Task, ...]:
    """Fetch every task, newest first."""
    return await select_rows(transport, TABLE_TASKS, Task, order_by="created_at", ascending=False)


async def create_task(transport: Transport, task: Task) -> Task:
    return await insert_row(transport, TABLE_TASKS, Task, task.to_row(exclude={"created_at", "updated_at"}))


async def update_task(transport: Transport, task_id: str, changes: Mapping[str, Any]) -> Task:
    """Patch a task and stamp ``updated_at``."""
    row = dict(changes)
    row["updated_at"] = datetime.now(UTC).isoformat()
    return await update_row(transport, TABLE_TASKS, Task, task_id, row)


async def delete_task(transport: Transport, task_id: str) -> None:
    await delete_row(transport, TABLE_TASKS, task_id)
