"""Vehicle table: ``vehicles``."""

from __future__ import annotations

from collections.abc import Mapping
from datetime import UTC, datetime
from typing import Any

from fieldsync._api._common import delete_row, insert_row, select_rows, update_row
from fieldsync._constants import TABLE_VEHICLES
from fieldsync._transport import Transport
from fieldsync.models.vehicle import Vehicle


async def fetch_vehicles(transport: Transport) -> tuple[Vehicle, ...]:
    """Fetch every vehicle ordered by project day."""
    return await select_rows(transport, TABLE_VEHICLES, Vehicle, order_by="day")


async def create_vehicle(transport: Transport, vehicle: Vehicle) -> Vehicle:
    return await insert_row(
        transport,
        TABLE_VEHICLES,
        Vehicle,
        vehicle.to_row(exclude={"created_at", "updated_at"}),
    )


async def update_vehicle(transport: Transport, vehicle_id: str, changes: Mapping[str, Any]) -> Vehicle:
    """Patch a vehicle and stamp ``updated_at``."""
    row = dict(changes)
    row["updated_at"] = datetime.now(UTC).isoformat()
    return await update_row(transport, TABLE_VEHICLES, Vehicle, vehicle_id, row)


async def delete_vehicle(transport: Transport, vehicle_id: str) -> None:
    await delete_row(transport, TABLE_VEHICLES, vehicle_id)
