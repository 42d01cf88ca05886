"""Derived rollups over cached collections.

Every function here is pure and synchronous: it takes the current
collections and returns a new frozen result, with no I/O. Dangling
references (a vehicle whose location was deleted, a task whose vehicle or
assignee is gone) are never errors; they are left out of the referencing
side's denominator and reported as counts instead.

:class:`AggregationEngine` wraps the functions with a memo keyed by the
identity of the input collections. The cache hands out a new tuple after
every fetch or local mutation, so identity is a reliable change signal.
"""

from __future__ import annotations

from collections import OrderedDict
from collections.abc import Callable, Hashable, Sequence
from typing import Any, TypeVar

from pydantic import BaseModel, ConfigDict

from fieldsync._constants import DEFAULT_PROJECT_DAYS
from fieldsync.models import Location, Task, TaskStatus, TeamMember, Vehicle, VehicleStatus
from fieldsync.normalize import percent

R = TypeVar("R")


class _Result(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")


class FleetStats(_Result):
    total_vehicles: int = 0
    completed_vehicles: int = 0
    in_progress_vehicles: int = 0
    pending_vehicles: int = 0
    progress_percentage: int = 0
    total_gps_devices: int = 0
    """Declared demand: sum of the Location ``gps_devices`` counters."""
    total_fuel_sensors: int = 0
    """Declared demand: sum of the Location ``fuel_sensors`` counters."""
    special_requirements: int = 0
    """Vehicles with more than one fuel tank."""
    unassigned_vehicles: int = 0
    """Vehicles whose ``location`` matches no Location row."""


class LocationProgress(_Result):
    name: str
    known: bool = False
    total: int = 0
    completed: int = 0
    in_progress: int = 0
    pending: int = 0
    progress: int = 0
    actual_gps_devices: int = 0
    actual_fuel_sensors: int = 0
    cached_vehicles: int | None = None
    cached_gps_devices: int | None = None
    cached_fuel_sensors: int | None = None

    @property
    def vehicles_drift(self) -> bool:
        return self.cached_vehicles is not None and self.cached_vehicles != self.total

    @property
    def gps_drift(self) -> bool:
        return self.cached_gps_devices is not None and self.cached_gps_devices != self.actual_gps_devices

    @property
    def fuel_sensor_drift(self) -> bool:
        return self.cached_fuel_sensors is not None and self.cached_fuel_sensors != self.actual_fuel_sensors

    @property
    def needs_sync(self) -> bool:
        """Cached Location counters disagree with the vehicle rows."""
        return self.vehicles_drift or self.gps_drift or self.fuel_sensor_drift


class MemberWorkload(_Result):
    name: str
    known: bool = False
    total: int = 0
    completed: int = 0
    in_progress: int = 0
    pending: int = 0
    blocked: int = 0
    completion_rate: int = 0
    """Share of the member's resolvable tasks that are completed."""
    unresolved: int = 0
    """Tasks left out because their vehicle no longer exists."""


class IntegrityReport(_Result):
    missing_locations: tuple[str, ...] = ()
    """Location names referenced by vehicles but not defined."""
    invalid_task_vehicles: tuple[str, ...] = ()
    """Vehicle ids referenced by tasks but not present."""
    unknown_assignees: tuple[str, ...] = ()
    """Assignee names referenced by tasks but not present."""
    drifted_locations: tuple[str, ...] = ()
    invalid_vehicles: tuple[str, ...] = ()
    """Vehicles with a day outside the project or more sensors than tanks."""

    @property
    def ok(self) -> bool:
        return not (
            self.missing_locations
            or self.invalid_task_vehicles
            or self.unknown_assignees
            or self.drifted_locations
            or self.invalid_vehicles
        )


# ------------------------------------------------------------------
# Pure rollups
# ------------------------------------------------------------------


def _status_counts(vehicles: Sequence[Vehicle]) -> tuple[int, int, int]:
    completed = in_progress = pending = 0
    for vehicle in vehicles:
        if vehicle.status == VehicleStatus.COMPLETED:
            completed += 1
        elif vehicle.status == VehicleStatus.IN_PROGRESS:
            in_progress += 1
        else:
            pending += 1
    return completed, in_progress, pending


def fleet_stats(vehicles: Sequence[Vehicle], locations: Sequence[Location]) -> FleetStats:
    completed, in_progress, pending = _status_counts(vehicles)
    names = {location.name for location in locations}
    return FleetStats(
        total_vehicles=len(vehicles),
        completed_vehicles=completed,
        in_progress_vehicles=in_progress,
        pending_vehicles=pending,
        progress_percentage=percent(completed, len(vehicles)),
        total_gps_devices=sum(location.gps_devices for location in locations),
        total_fuel_sensors=sum(location.fuel_sensors for location in locations),
        special_requirements=sum(1 for vehicle in vehicles if vehicle.needs_double_tank_kit),
        unassigned_vehicles=sum(1 for vehicle in vehicles if vehicle.location not in names),
    )


def location_progress(name: str, vehicles: Sequence[Vehicle], locations: Sequence[Location]) -> LocationProgress:
    """Progress of one location; an unknown (e.g. deleted) name yields zeros."""
    location = next((loc for loc in locations if loc.name == name), None)
    if location is None:
        return LocationProgress(name=name)

    members = [vehicle for vehicle in vehicles if vehicle.location == name]
    completed, in_progress, pending = _status_counts(members)
    return LocationProgress(
        name=name,
        known=True,
        total=len(members),
        completed=completed,
        in_progress=in_progress,
        pending=pending,
        progress=percent(completed, len(members)),
        actual_gps_devices=sum(vehicle.gps_required for vehicle in members),
        actual_fuel_sensors=sum(vehicle.fuel_sensors for vehicle in members),
        cached_vehicles=location.vehicles,
        cached_gps_devices=location.gps_devices,
        cached_fuel_sensors=location.fuel_sensors,
    )


def locations_overview(vehicles: Sequence[Vehicle], locations: Sequence[Location]) -> tuple[LocationProgress, ...]:
    return tuple(location_progress(location.name, vehicles, locations) for location in locations)


def location_counter_sync(name: str, vehicles: Sequence[Vehicle]) -> dict[str, int]:
    """Counter values that resynchronize a Location with its vehicle rows."""
    members = [vehicle for vehicle in vehicles if vehicle.location == name]
    return {
        "vehicles": len(members),
        "gps_devices": sum(vehicle.gps_required for vehicle in members),
        "fuel_sensors": sum(vehicle.fuel_sensors for vehicle in members),
    }


def member_workload(
    name: str,
    tasks: Sequence[Task],
    members: Sequence[TeamMember],
    vehicles: Sequence[Vehicle] | None = None,
) -> MemberWorkload:
    """Task counts of one member.

    When *vehicles* is given, tasks on vehicles that no longer exist are
    counted as ``unresolved`` and excluded from the totals.
    """
    if not any(member.name == name for member in members):
        return MemberWorkload(name=name)

    vehicle_ids = {vehicle.id for vehicle in vehicles} if vehicles is not None else None
    counts = {status: 0 for status in TaskStatus}
    unresolved = 0
    for task in tasks:
        if task.assigned_to != name:
            continue
        if vehicle_ids is not None and task.vehicle_id not in vehicle_ids:
            unresolved += 1
            continue
        counts[task.status] += 1

    total = sum(counts.values())
    completed = counts[TaskStatus.COMPLETED]
    return MemberWorkload(
        name=name,
        known=True,
        total=total,
        completed=completed,
        in_progress=counts[TaskStatus.IN_PROGRESS],
        pending=counts[TaskStatus.PENDING],
        blocked=counts[TaskStatus.BLOCKED],
        completion_rate=percent(completed, total),
        unresolved=unresolved,
    )


def team_workload(
    members: Sequence[TeamMember],
    tasks: Sequence[Task],
    vehicles: Sequence[Vehicle] | None = None,
) -> tuple[MemberWorkload, ...]:
    return tuple(member_workload(member.name, tasks, members, vehicles) for member in members)


def integrity_report(
    vehicles: Sequence[Vehicle],
    locations: Sequence[Location],
    tasks: Sequence[Task],
    members: Sequence[TeamMember],
    *,
    project_days: int = DEFAULT_PROJECT_DAYS,
) -> IntegrityReport:
    location_names = {location.name for location in locations}
    vehicle_ids = {vehicle.id for vehicle in vehicles}
    member_names = {member.name for member in members}

    invalid_vehicles = [
        vehicle.id
        for vehicle in vehicles
        if not 1 <= vehicle.day <= project_days or vehicle.fuel_sensors > vehicle.fuel_tanks
    ]
    return IntegrityReport(
        missing_locations=tuple(sorted({v.location for v in vehicles if v.location not in location_names})),
        invalid_task_vehicles=tuple(sorted({t.vehicle_id for t in tasks if t.vehicle_id not in vehicle_ids})),
        unknown_assignees=tuple(
            sorted({t.assigned_to for t in tasks if t.assigned_to and t.assigned_to not in member_names})
        ),
        drifted_locations=tuple(p.name for p in locations_overview(vehicles, locations) if p.needs_sync),
        invalid_vehicles=tuple(invalid_vehicles),
    )


# ------------------------------------------------------------------
# Memoization
# ------------------------------------------------------------------


class Memo:
    """Bounded LRU memo keyed by the identity of the input collections.

    A hit requires every input to be the very same object as last time;
    equal-but-distinct collections recompute. References to the inputs are
    kept so their ids cannot be recycled while an entry lives.
    """

    def __init__(self, maxsize: int = 128) -> None:
        self._maxsize = maxsize
        self._entries: OrderedDict[Hashable, tuple[tuple[Any, ...], Any]] = OrderedDict()
        self.hits = 0
        self.misses = 0

    def __call__(self, name: str, inputs: tuple[Any, ...], args: tuple[Hashable, ...], compute: Callable[[], R]) -> R:
        key = (name, tuple(id(item) for item in inputs), args)
        cached = self._entries.get(key)
        if cached is not None and all(a is b for a, b in zip(cached[0], inputs, strict=True)):
            self._entries.move_to_end(key)
            self.hits += 1
            result: R = cached[1]
            return result

        self.misses += 1
        value = compute()
        self._entries[key] = (inputs, value)
        self._entries.move_to_end(key)
        while len(self._entries) > self._maxsize:
            self._entries.popitem(last=False)
        return value

    def clear(self) -> None:
        self._entries.clear()


class AggregationEngine:
    """Memoized front for the rollups above."""

    def __init__(self, *, project_days: int = DEFAULT_PROJECT_DAYS, memo: Memo | None = None) -> None:
        self._project_days = project_days
        self._memo = memo or Memo()

    @property
    def memo(self) -> Memo:
        return self._memo

    def fleet_stats(self, vehicles: Sequence[Vehicle], locations: Sequence[Location]) -> FleetStats:
        return self._memo("fleet_stats", (vehicles, locations), (), lambda: fleet_stats(vehicles, locations))

    def location_progress(
        self, name: str, vehicles: Sequence[Vehicle], locations: Sequence[Location]
    ) -> LocationProgress:
        return self._memo(
            "location_progress",
            (vehicles, locations),
            (name,),
            lambda: location_progress(name, vehicles, locations),
        )

    def locations_overview(
        self, vehicles: Sequence[Vehicle], locations: Sequence[Location]
    ) -> tuple[LocationProgress, ...]:
        return self._memo(
            "locations_overview",
            (vehicles, locations),
            (),
            lambda: locations_overview(vehicles, locations),
        )

    def team_workload(
        self,
        members: Sequence[TeamMember],
        tasks: Sequence[Task],
        vehicles: Sequence[Vehicle] | None = None,
    ) -> tuple[MemberWorkload, ...]:
        return self._memo(
            "team_workload",
            (members, tasks, vehicles),
            (),
            lambda: team_workload(members, tasks, vehicles),
        )

    def integrity_report(
        self,
        vehicles: Sequence[Vehicle],
        locations: Sequence[Location],
        tasks: Sequence[Task],
        members: Sequence[TeamMember],
    ) -> IntegrityReport:
        return self._memo(
            "integrity_report",
            (vehicles, locations, tasks, members),
            (self._project_days,),
            lambda: integrity_report(vehicles, locations, tasks, members, project_days=self._project_days),
        )
