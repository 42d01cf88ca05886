"""Location model."""

from __future__ import annotations

from fieldsync.models._base import Count, FieldSyncModel, Timestamp


class Location(FieldSyncModel):
    """An installation site.

    ``vehicles``, ``gps_devices`` and ``fuel_sensors`` are counters stored
    on the row itself. They are not recomputed when vehicles change and can
    drift from the vehicle collection until an explicit sync overwrites
    them.
    """

    name: str
    duration: str = ""
    vehicles: Count = 0
    gps_devices: Count = 0
    fuel_sensors: Count = 0
    created_at: Timestamp = None

    def identity(self) -> str:
        return self.name
