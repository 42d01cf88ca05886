"""Project calendar and slot scheduling.

Vehicles carry a project-relative ``day`` index, never a calendar date.
The calendar date is always derived from the current project start date,
so moving the start date shifts every vehicle without touching any row.

A grid cell is a list: several vehicles may share a day and slot. Double
booking is allowed; :meth:`ScheduleEngine.preview` shows the vehicles
already in a target cell so an operator can decide before committing.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Awaitable, Callable, Iterable, Sequence
from datetime import UTC, date, datetime, timedelta

from pydantic import BaseModel, ConfigDict

from fieldsync._constants import DAYS_PER_WEEK, DEFAULT_TIME_SLOTS
from fieldsync.cache.events import CollectionKey
from fieldsync.cache.store import CacheStore
from fieldsync.exceptions import FieldSyncNotFoundError
from fieldsync.models import Vehicle, VehicleStatus
from fieldsync.mutations import OptimisticMutationController, patch_row
from fieldsync.validation import ensure_valid

_logger = logging.getLogger(__name__)

Grid = dict[int, dict[str, list[Vehicle]]]


def date_for_day(start_date: date, day: int) -> date:
    """Calendar date of project *day* (1-based): ``start + (day - 1)`` days.

    No range check and no business-day skipping; callers bound *day*.
    """
    return start_date + timedelta(days=day - 1)


def day_for_date(start_date: date, when: date) -> int:
    """Inverse of :func:`date_for_day`."""
    return (when - start_date).days + 1


def project_days(total_days: int) -> list[int]:
    return list(range(1, total_days + 1))


def week_count(total_days: int, days_per_week: int = DAYS_PER_WEEK) -> int:
    return math.ceil(total_days / days_per_week) if total_days > 0 else 0


def week_days(week_index: int, total_days: int, days_per_week: int = DAYS_PER_WEEK) -> list[int]:
    """Day indices shown on week *week_index* (0-based), clipped to the project."""
    start = week_index * days_per_week + 1
    end = min(start + days_per_week - 1, total_days)
    return list(range(start, end + 1))


def filter_vehicles(
    vehicles: Iterable[Vehicle],
    *,
    location: str | None = None,
    status: VehicleStatus | str | None = None,
    search: str | None = None,
) -> list[Vehicle]:
    """Calendar filters: exact location/status, case-insensitive search over id, type and location."""
    needle = search.strip().lower() if search else ""
    result: list[Vehicle] = []
    for vehicle in vehicles:
        if location is not None and vehicle.location != location:
            continue
        if status is not None and vehicle.status != status:
            continue
        if needle and not (
            needle in vehicle.id.lower() or needle in vehicle.type.lower() or needle in vehicle.location.lower()
        ):
            continue
        result.append(vehicle)
    return result


def build_grid(
    vehicles: Iterable[Vehicle],
    days: Iterable[int] | None = None,
    time_slots: Sequence[str] | None = None,
    *,
    location: str | None = None,
    status: VehicleStatus | str | None = None,
    search: str | None = None,
) -> Grid:
    """Bucket vehicles by day, then by time slot.

    With *days*, the grid holds exactly those days, each pre-filled with an
    empty list per slot, and vehicles on other days are left out. Without
    it, only days that have vehicles appear. A vehicle whose slot is not in
    *time_slots* still gets a cell under its own label.
    """
    slots = tuple(time_slots) if time_slots is not None else DEFAULT_TIME_SLOTS
    grid: Grid = {}
    if days is not None:
        for day in days:
            grid[day] = {slot: [] for slot in slots}

    for vehicle in filter_vehicles(vehicles, location=location, status=status, search=search):
        if days is not None and vehicle.day not in grid:
            continue
        cells = grid.setdefault(vehicle.day, {slot: [] for slot in slots})
        cells.setdefault(vehicle.time_slot, []).append(vehicle)
    return grid


class Timeline(BaseModel):
    model_config = ConfigDict(frozen=True)

    vehicles: tuple[Vehicle, ...] = ()
    days: tuple[int, ...] = (1,)
    min_day: int = 1
    max_day: int = 1


def timeline(vehicles: Sequence[Vehicle], location: str | None = None) -> Timeline:
    """Vehicles sorted by day plus the contiguous day span of the whole fleet."""
    if not vehicles:
        return Timeline()
    min_day = min(vehicle.day for vehicle in vehicles)
    max_day = max(vehicle.day for vehicle in vehicles)
    selected = filter_vehicles(vehicles, location=location)
    return Timeline(
        vehicles=tuple(sorted(selected, key=lambda vehicle: vehicle.day)),
        days=tuple(range(min_day, max_day + 1)),
        min_day=min_day,
        max_day=max_day,
    )


class Countdown(BaseModel):
    model_config = ConfigDict(frozen=True)

    days: int = 0
    hours: int = 0
    minutes: int = 0
    seconds: int = 0
    total_seconds: float = 0.0

    @property
    def started(self) -> bool:
        return self.total_seconds <= 0


def countdown(start_date: date, now: datetime | None = None) -> Countdown:
    """Time left until midnight UTC of *start_date*; all zero once started."""
    current = now or datetime.now(UTC)
    if current.tzinfo is None:
        current = current.replace(tzinfo=UTC)
    target = datetime(start_date.year, start_date.month, start_date.day, tzinfo=UTC)
    remaining = (target - current).total_seconds()
    if remaining <= 0:
        return Countdown()
    whole = int(remaining)
    return Countdown(
        days=whole // 86400,
        hours=(whole % 86400) // 3600,
        minutes=(whole % 3600) // 60,
        seconds=whole % 60,
        total_seconds=remaining,
    )


class ReschedulePreview(BaseModel):
    """What a reschedule would do, for operator confirmation."""

    model_config = ConfigDict(frozen=True)

    vehicle_id: str
    current_day: int
    current_slot: str
    new_day: int
    new_slot: str
    new_date: date
    is_noop: bool
    occupants: tuple[Vehicle, ...] = ()
    """Other vehicles already booked in the target cell."""


class ScheduleEngine:
    """Preview and commit day/slot changes through the mutation controller."""

    def __init__(
        self,
        store: CacheStore,
        controller: OptimisticMutationController,
        *,
        start_date: Callable[[], date],
        write: Callable[[str, dict[str, object]], Awaitable[Vehicle]],
        validate: Callable[[dict[str, object]], list[str]] | None = None,
    ) -> None:
        self._store = store
        self._controller = controller
        self._start_date = start_date
        self._write = write
        self._validate = validate

    def _vehicle(self, vehicle_id: str) -> Vehicle:
        for vehicle in self._store.peek(CollectionKey.VEHICLES).items():
            if vehicle.id == vehicle_id:
                return vehicle
        raise FieldSyncNotFoundError(f"Unknown vehicle {vehicle_id!r}", table=CollectionKey.VEHICLES.value)

    def preview(self, vehicle_id: str, new_day: int, new_slot: str) -> ReschedulePreview:
        vehicle = self._vehicle(vehicle_id)
        occupants = tuple(
            other
            for other in self._store.peek(CollectionKey.VEHICLES).items()
            if other.id != vehicle_id and other.day == new_day and other.time_slot == new_slot
        )
        return ReschedulePreview(
            vehicle_id=vehicle_id,
            current_day=vehicle.day,
            current_slot=vehicle.time_slot,
            new_day=new_day,
            new_slot=new_slot,
            new_date=date_for_day(self._start_date(), new_day),
            is_noop=(vehicle.day, vehicle.time_slot) == (new_day, new_slot),
            occupants=occupants,
        )

    async def reschedule(self, vehicle_id: str, new_day: int, new_slot: str) -> Vehicle | None:
        """Move a vehicle to *new_day*/*new_slot*.

        Returns ``None`` without writing when nothing changes; otherwise the
        vehicle row returned by the store.
        """
        vehicle = self._vehicle(vehicle_id)
        if (vehicle.day, vehicle.time_slot) == (new_day, new_slot):
            _logger.debug("Reschedule of %s is a no-op", vehicle_id)
            return None

        changes: dict[str, object] = {"day": new_day, "time_slot": new_slot}
        if self._validate is not None:
            ensure_valid(self._validate(changes), entity="vehicle")

        async def _remote() -> Vehicle:
            return await self._write(vehicle_id, changes)

        return await self._controller.apply_mutation(
            CollectionKey.VEHICLES,
            patch_row(vehicle_id, changes),
            _remote,
        )
