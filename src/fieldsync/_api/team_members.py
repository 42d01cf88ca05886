"""Team member table: ``team_members``."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from fieldsync._api._common import delete_row, insert_row, select_rows, update_row
from fieldsync._constants import TABLE_TEAM_MEMBERS
from fieldsync._transport import Transport
from fieldsync.models.team_member import TeamMember


async def fetch_team_members(transport: Transport) -> tuple[TeamMember, ...]:
    """Fetch every team member ordered by name."""
    return await select_rows(transport, TABLE_TEAM_MEMBERS, TeamMember, order_by="name")


async def create_team_member(transport: Transport, member: TeamMember) -> TeamMember:
    return await insert_row(transport, TABLE_TEAM_MEMBERS, TeamMember, member.to_row(exclude={"created_at"}))


async def update_team_member(transport: Transport, member_id: str, changes: Mapping[str, Any]) -> TeamMember:
    return await update_row(transport, TABLE_TEAM_MEMBERS, TeamMember, member_id, changes)


async def delete_team_member(transport: Transport, member_id: str) -> None:
    await delete_row(transport, TABLE_TEAM_MEMBERS, member_id)
