"""Location table: ``locations``.

Deleting a location never touches the vehicles that reference it.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from fieldsync._api._common import delete_row, insert_row, select_rows, update_row
from fieldsync._constants import TABLE_LOCATIONS
from fieldsync._transport import Transport
from fieldsync.models.location import Location


async def fetch_locations(transport: Transport) -> tuple[Location, ...]:
    return await select_rows(transport, TABLE_LOCATIONS, Location)


async def create_location(transport: Transport, location: Location) -> Location:
    return await insert_row(transport, TABLE_LOCATIONS, Location, location.to_row(exclude={"created_at"}))


async def update_location(transport: Transport, name: str, changes: Mapping[str, Any]) -> Location:
    return await update_row(transport, TABLE_LOCATIONS, Location, name, changes)


async def delete_location(transport: Transport, name: str) -> None:
    await delete_row(transport, TABLE_LOCATIONS, name)
