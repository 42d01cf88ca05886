"""Comment model."""

from __future__ import annotations

from fieldsync.models._base import FieldSyncModel, Timestamp


class Comment(FieldSyncModel):
    """A collaboration note attached to a task. Only ``text`` is editable."""

    id: str
    task_id: str
    author: str = ""
    text: str = ""
    created_at: Timestamp = None

    def identity(self) -> str:
        return self.id
