"""Vehicle model."""

from __future__ import annotations

from pydantic import field_validator

from fieldsync.models._base import Count, FieldSyncModel, Timestamp, VehicleStatus
from fieldsync.normalize import safe_int


class Vehicle(FieldSyncModel):
    """A vehicle scheduled to receive GPS/fuel-sensor hardware.

    ``day`` is a project-relative day index (1-based), not a calendar
    date; see :func:`fieldsync.schedule.date_for_day`.
    """

    id: str
    type: str = ""
    """Vehicle kind as entered by the operator (e.g. ``"Truck"``)."""
    location: str = ""
    """Name of the :class:`~fieldsync.models.location.Location` (may dangle)."""
    day: int = 1
    time_slot: str = ""
    status: VehicleStatus = VehicleStatus.PENDING
    gps_required: Count = 0
    fuel_sensors: Count = 0
    fuel_tanks: Count = 0
    created_at: Timestamp = None
    updated_at: Timestamp = None

    @field_validator("day", mode="before")
    @classmethod
    def _coerce_day(cls, value: object) -> int:
        parsed = safe_int(value)
        return parsed if parsed is not None and parsed >= 1 else 1

    @property
    def needs_double_tank_kit(self) -> bool:
        """Whether the vehicle has more than one fuel tank."""
        return self.fuel_tanks > 1

    def identity(self) -> str:
        return self.id
