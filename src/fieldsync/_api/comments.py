"""Comment table: ``comments``.

Comments are read per task rather than cached as a whole collection.
"""

from __future__ import annotations

from datetime import UTC, datetime

from fieldsync._api._common import delete_row, insert_row, select_rows, update_row
from fieldsync._constants import TABLE_COMMENTS
from fieldsync._transport import Transport
from fieldsync.models.comment import Comment


async def fetch_task_comments(transport: Transport, task_id: str) -> tuple[Comment, ...]:
    """Fetch the comments of one task, oldest first."""
    return await select_rows(
        transport,
        TABLE_COMMENTS,
        Comment,
        order_by="created_at",
        filters={"task_id": task_id},
    )


async def create_comment(transport: Transport, *, task_id: str, author: str, text: str) -> Comment:
    """Insert a comment; the store assigns ``id``."""
    row = {
        "task_id": task_id,
        "author": author,
        "text": text,
        "created_at": datetime.now(UTC).isoformat(),
    }
    return await insert_row(transport, TABLE_COMMENTS, Comment, row)


async def update_comment_text(transport: Transport, comment_id: str, text: str) -> Comment:
    return await update_row(transport, TABLE_COMMENTS, Comment, comment_id, {"text": text})


async def delete_comment(transport: Transport, comment_id: str) -> None:
    await delete_row(transport, TABLE_COMMENTS, comment_id)
