"""High-level async client for the installation tracker."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Mapping
from datetime import UTC, date, datetime
from typing import Any, TypeVar

import aiohttp

from fieldsync._api import comments as _comments_api
from fieldsync._api import locations as _locations_api
from fieldsync._api import project_settings as _settings_api
from fieldsync._api import tasks as _tasks_api
from fieldsync._api import team_members as _members_api
from fieldsync._api import vehicles as _vehicles_api
from fieldsync._transport import RestTransport, Transport
from fieldsync.aggregation import (
    AggregationEngine,
    FleetStats,
    IntegrityReport,
    LocationProgress,
    MemberWorkload,
    location_counter_sync,
    member_workload,
)
from fieldsync.cache.events import CacheView, CollectionKey
from fieldsync.cache.policy import build_policies
from fieldsync.cache.scheduler import Timer
from fieldsync.cache.store import CacheStore, Listener
from fieldsync.config import FieldSyncConfig
from fieldsync.exceptions import FieldSyncError, FieldSyncNotFoundError
from fieldsync.models import (
    Comment,
    FieldSyncModel,
    Location,
    ProjectSettings,
    Task,
    TaskStatus,
    TeamMember,
    Vehicle,
    VehicleStatus,
)
from fieldsync.mutations import OptimisticMutationController, append_row, patch_row, remove_row
from fieldsync.prefetch import PrefetchScheduler
from fieldsync.schedule import (
    Countdown,
    Grid,
    ReschedulePreview,
    ScheduleEngine,
    Timeline,
    build_grid,
    countdown,
    project_days,
    timeline,
    week_days,
)
from fieldsync.schedule import date_for_day as _date_for_day
from fieldsync.validation import DefaultValidator, Validator, ensure_valid

_logger = logging.getLogger(__name__)

TModel = TypeVar("TModel", bound=FieldSyncModel)

# Fields validated against each other; a partial update of one is checked
# together with the cached value of the other.
_VEHICLE_LINKED_FIELDS = ("fuel_sensors", "fuel_tanks")
_TASK_LINKED_FIELDS = ("start_date", "end_date")


def _as_payload(model: type[TModel], data: TModel | Mapping[str, Any]) -> dict[str, Any]:
    if isinstance(data, model):
        return data.model_dump()
    return dict(data)


class FieldSyncClient:
    """Async client for the installation tracker's remote store.

    The client is the composition root: it owns the cache, the mutation
    controller, the derived-view engines and the prefetcher, and wires
    them to the per-table store modules.

    Usage::

        async with FieldSyncClient(FieldSyncConfig.from_env()) as client:
            await client.refresh(CollectionKey.VEHICLES)
            stats = client.fleet_stats()
            await client.update_vehicle_status("V001", VehicleStatus.IN_PROGRESS)
    """

    def __init__(
        self,
        config: FieldSyncConfig,
        *,
        session: aiohttp.ClientSession | None = None,
        transport: Transport | None = None,
        validator: Validator | None = None,
        clock: Callable[[], datetime] | None = None,
        timer: Timer | None = None,
    ) -> None:
        self._config = config
        self._external_session = session is not None
        self._http_session = session
        self._injected_transport = transport
        self._transport: Transport | None = None
        self._validator: Validator = validator or DefaultValidator(
            project_days=config.project_days,
            time_slots=config.time_slots,
        )

        store_kwargs: dict[str, Any] = {
            "policies": build_policies(config.staleness, polling_enabled=config.polling_enabled),
            "timer": timer,
        }
        if clock is not None:
            store_kwargs["clock"] = clock
        self._store = CacheStore(
            {
                CollectionKey.VEHICLES: self._fetch_vehicles,
                CollectionKey.LOCATIONS: self._fetch_locations,
                CollectionKey.TEAM_MEMBERS: self._fetch_team_members,
                CollectionKey.TASKS: self._fetch_tasks,
                CollectionKey.PROJECT_SETTINGS: self._fetch_project_settings,
            },
            **store_kwargs,
        )
        self._controller = OptimisticMutationController(self._store)
        self._aggregation = AggregationEngine(project_days=config.project_days)
        self._schedule = ScheduleEngine(
            self._store,
            self._controller,
            start_date=self.project_start_date,
            write=self._write_vehicle,
            validate=lambda changes: self._validator.validate_vehicle(changes, partial=True),
        )
        self._prefetcher = PrefetchScheduler(self._store, stagger=config.prefetch_stagger)

    # ------------------------------------------------------------------
    # Context manager lifecycle
    # ------------------------------------------------------------------

    async def __aenter__(self) -> FieldSyncClient:
        if self._injected_transport is not None:
            self._transport = self._injected_transport
        else:
            if self._http_session is None:
                self._http_session = aiohttp.ClientSession()
            self._transport = RestTransport(self._config, self._http_session)
        self._store.init(asyncio.get_running_loop())
        return self

    async def __aexit__(self, *exc: Any) -> None:
        self.clear()
        if not self._external_session and self._http_session is not None:
            await self._http_session.close()
            self._http_session = None
        self._transport = None

    def clear(self) -> None:
        """Forget every cached collection (logout/reset)."""
        self._prefetcher.cancel()
        self._store.clear()
        self._controller.reset()
        self._aggregation.memo.clear()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _require_transport(self) -> Transport:
        if self._transport is None:
            raise FieldSyncError("Client not initialized. Use 'async with FieldSyncClient(...) as client:'")
        return self._transport

    async def _fetch_vehicles(self) -> tuple[Vehicle, ...]:
        return await _vehicles_api.fetch_vehicles(self._require_transport())

    async def _fetch_locations(self) -> tuple[Location, ...]:
        return await _locations_api.fetch_locations(self._require_transport())

    async def _fetch_team_members(self) -> tuple[TeamMember, ...]:
        return await _members_api.fetch_team_members(self._require_transport())

    async def _fetch_tasks(self) -> tuple[Task, ...]:
        return await _tasks_api.fetch_tasks(self._require_transport())

    async def _fetch_project_settings(self) -> tuple[ProjectSettings, ...]:
        return await _settings_api.fetch_project_settings(self._require_transport())

    async def _write_vehicle(self, vehicle_id: str, changes: Mapping[str, Any]) -> Vehicle:
        return await _vehicles_api.update_vehicle(self._require_transport(), vehicle_id, changes)

    def _items(self, key: CollectionKey) -> tuple[Any, ...]:
        return self._store.get(key).items()

    def _loaded_vehicles(self) -> tuple[Vehicle, ...] | None:
        """Cached vehicles, or ``None`` before the first load."""
        return self._store.get(CollectionKey.VEHICLES).data

    def _with_linked(
        self,
        key: CollectionKey,
        identity: str,
        changes: Mapping[str, Any],
        linked: tuple[str, ...],
    ) -> dict[str, Any]:
        """*changes* completed with the cached values of its *linked* fields."""
        payload = dict(changes)
        if not any(name in payload for name in linked):
            return payload
        row = next((row for row in self._store.peek(key).items() if row.identity() == identity), None)
        if row is not None:
            for name in linked:
                payload.setdefault(name, getattr(row, name))
        return payload

    @property
    def config(self) -> FieldSyncConfig:
        return self._config

    @property
    def store(self) -> CacheStore:
        return self._store

    @property
    def mutations(self) -> OptimisticMutationController:
        return self._controller

    # ------------------------------------------------------------------
    # Cache access
    # ------------------------------------------------------------------

    def view(self, key: CollectionKey) -> CacheView:
        """Cached view of *key*; a stale entry is refreshed in the background."""
        return self._store.get(key)

    def subscribe(self, key: CollectionKey, listener: Listener) -> Callable[[], None]:
        return self._store.subscribe(key, listener)

    async def refresh(self, key: CollectionKey, *, force: bool = False) -> tuple[Any, ...]:
        return await self._store.refresh(key, force=force)

    # ------------------------------------------------------------------
    # Vehicles
    # ------------------------------------------------------------------

    async def create_vehicle(self, vehicle: Vehicle | Mapping[str, Any]) -> Vehicle:
        payload = _as_payload(Vehicle, vehicle)
        ensure_valid(self._validator.validate_vehicle(payload), entity="vehicle")
        row = vehicle if isinstance(vehicle, Vehicle) else Vehicle.model_validate(payload)
        transport = self._require_transport()
        return await self._controller.apply_mutation(
            CollectionKey.VEHICLES,
            append_row(row),
            lambda: _vehicles_api.create_vehicle(transport, row),
        )

    async def update_vehicle(self, vehicle_id: str, changes: Mapping[str, Any]) -> Vehicle:
        checked = self._with_linked(CollectionKey.VEHICLES, vehicle_id, changes, _VEHICLE_LINKED_FIELDS)
        ensure_valid(self._validator.validate_vehicle(checked, partial=True), entity="vehicle")
        return await self._controller.apply_mutation(
            CollectionKey.VEHICLES,
            patch_row(vehicle_id, dict(changes)),
            lambda: self._write_vehicle(vehicle_id, changes),
        )

    async def update_vehicle_status(self, vehicle_id: str, status: VehicleStatus | str) -> Vehicle:
        return await self.update_vehicle(vehicle_id, {"status": status})

    async def delete_vehicle(self, vehicle_id: str) -> None:
        """Delete a vehicle. Tasks referencing it are left dangling."""
        transport = self._require_transport()
        await self._controller.apply_mutation(
            CollectionKey.VEHICLES,
            remove_row(vehicle_id),
            lambda: _vehicles_api.delete_vehicle(transport, vehicle_id),
        )

    def preview_reschedule(self, vehicle_id: str, new_day: int, new_slot: str) -> ReschedulePreview:
        return self._schedule.preview(vehicle_id, new_day, new_slot)

    async def reschedule_vehicle(self, vehicle_id: str, new_day: int, new_slot: str) -> Vehicle | None:
        return await self._schedule.reschedule(vehicle_id, new_day, new_slot)

    # ------------------------------------------------------------------
    # Locations
    # ------------------------------------------------------------------

    async def create_location(self, location: Location | Mapping[str, Any]) -> Location:
        payload = _as_payload(Location, location)
        ensure_valid(self._validator.validate_location(payload), entity="location")
        row = location if isinstance(location, Location) else Location.model_validate(payload)
        transport = self._require_transport()
        return await self._controller.apply_mutation(
            CollectionKey.LOCATIONS,
            append_row(row),
            lambda: _locations_api.create_location(transport, row),
        )

    async def update_location(self, name: str, changes: Mapping[str, Any]) -> Location:
        ensure_valid(self._validator.validate_location(changes, partial=True), entity="location")
        transport = self._require_transport()
        return await self._controller.apply_mutation(
            CollectionKey.LOCATIONS,
            patch_row(name, dict(changes)),
            lambda: _locations_api.update_location(transport, name, changes),
        )

    async def delete_location(self, name: str) -> None:
        """Delete a location. Vehicles keep pointing at the old name."""
        transport = self._require_transport()
        await self._controller.apply_mutation(
            CollectionKey.LOCATIONS,
            remove_row(name),
            lambda: _locations_api.delete_location(transport, name),
        )

    async def sync_location_counts(self, name: str) -> Location:
        """Overwrite a location's counters with totals recomputed from its vehicles."""
        if not any(location.name == name for location in self._store.peek(CollectionKey.LOCATIONS).items()):
            raise FieldSyncNotFoundError(f"Unknown location {name!r}", table=CollectionKey.LOCATIONS.value)
        counts = location_counter_sync(name, self._store.peek(CollectionKey.VEHICLES).items())
        _logger.debug("Syncing counters of %s: %s", name, counts)
        return await self.update_location(name, counts)

    # ------------------------------------------------------------------
    # Team members
    # ------------------------------------------------------------------

    async def create_team_member(self, member: TeamMember | Mapping[str, Any]) -> TeamMember:
        payload = _as_payload(TeamMember, member)
        ensure_valid(self._validator.validate_team_member(payload), entity="team member")
        row = member if isinstance(member, TeamMember) else TeamMember.model_validate(payload)
        transport = self._require_transport()
        return await self._controller.apply_mutation(
            CollectionKey.TEAM_MEMBERS,
            append_row(row),
            lambda: _members_api.create_team_member(transport, row),
        )

    async def update_team_member(self, member_id: str, changes: Mapping[str, Any]) -> TeamMember:
        ensure_valid(self._validator.validate_team_member(changes, partial=True), entity="team member")
        transport = self._require_transport()
        return await self._controller.apply_mutation(
            CollectionKey.TEAM_MEMBERS,
            patch_row(member_id, dict(changes)),
            lambda: _members_api.update_team_member(transport, member_id, changes),
        )

    async def delete_team_member(self, member_id: str) -> None:
        transport = self._require_transport()
        await self._controller.apply_mutation(
            CollectionKey.TEAM_MEMBERS,
            remove_row(member_id),
            lambda: _members_api.delete_team_member(transport, member_id),
        )

    # ------------------------------------------------------------------
    # Tasks
    # ------------------------------------------------------------------

    async def create_task(self, task: Task | Mapping[str, Any]) -> Task:
        payload = _as_payload(Task, task)
        ensure_valid(self._validator.validate_task(payload), entity="task")
        row = task if isinstance(task, Task) else Task.model_validate(payload)
        transport = self._require_transport()
        return await self._controller.apply_mutation(
            CollectionKey.TASKS,
            # Newest first, like the fetch ordering.
            lambda rows: (row, *rows),
            lambda: _tasks_api.create_task(transport, row),
        )

    async def update_task(self, task_id: str, changes: Mapping[str, Any]) -> Task:
        checked = self._with_linked(CollectionKey.TASKS, task_id, changes, _TASK_LINKED_FIELDS)
        ensure_valid(self._validator.validate_task(checked, partial=True), entity="task")
        transport = self._require_transport()
        return await self._controller.apply_mutation(
            CollectionKey.TASKS,
            patch_row(task_id, dict(changes)),
            lambda: _tasks_api.update_task(transport, task_id, changes),
        )

    async def update_task_status(self, task_id: str, status: TaskStatus | str) -> Task:
        return await self.update_task(task_id, {"status": status})

    async def delete_task(self, task_id: str) -> None:
        transport = self._require_transport()
        await self._controller.apply_mutation(
            CollectionKey.TASKS,
            remove_row(task_id),
            lambda: _tasks_api.delete_task(transport, task_id),
        )

    # ------------------------------------------------------------------
    # Comments (read per task, not cached)
    # ------------------------------------------------------------------

    async def get_task_comments(self, task_id: str) -> tuple[Comment, ...]:
        return await _comments_api.fetch_task_comments(self._require_transport(), task_id)

    async def add_comment(self, task_id: str, author: str, text: str) -> Comment:
        payload = {"task_id": task_id, "author": author, "text": text}
        ensure_valid(self._validator.validate_comment(payload), entity="comment")
        return await _comments_api.create_comment(self._require_transport(), task_id=task_id, author=author, text=text)

    async def edit_comment(self, comment_id: str, text: str) -> Comment:
        ensure_valid(self._validator.validate_comment({"text": text}, partial=True), entity="comment")
        return await _comments_api.update_comment_text(self._require_transport(), comment_id, text)

    async def delete_comment(self, comment_id: str) -> None:
        await _comments_api.delete_comment(self._require_transport(), comment_id)

    # ------------------------------------------------------------------
    # Project settings
    # ------------------------------------------------------------------

    def project_start_date(self) -> date:
        """Current project start date.

        Read from the cached settings row; falls back to the configured
        default, then to today (UTC) while nothing has been stored.
        """
        settings = self._items(CollectionKey.PROJECT_SETTINGS)
        if settings:
            start: date = settings[0].project_start_date
            return start
        if self._config.default_start_date is not None:
            return self._config.default_start_date
        return datetime.now(UTC).date()

    async def update_project_start_date(self, start_date: date) -> ProjectSettings:
        """Move day ``1`` to *start_date*; every vehicle's date shifts with it."""
        transport = self._require_transport()
        row = ProjectSettings(project_start_date=start_date)
        return await self._controller.apply_mutation(
            CollectionKey.PROJECT_SETTINGS,
            lambda rows: (row,),
            lambda: _settings_api.upsert_project_start_date(transport, start_date),
        )

    def date_for_day(self, day: int) -> date:
        return _date_for_day(self.project_start_date(), day)

    def countdown(self, now: datetime | None = None) -> Countdown:
        return countdown(self.project_start_date(), now)

    # ------------------------------------------------------------------
    # Derived views
    # ------------------------------------------------------------------

    def fleet_stats(self) -> FleetStats:
        return self._aggregation.fleet_stats(
            self._items(CollectionKey.VEHICLES),
            self._items(CollectionKey.LOCATIONS),
        )

    def location_progress(self, name: str) -> LocationProgress:
        return self._aggregation.location_progress(
            name,
            self._items(CollectionKey.VEHICLES),
            self._items(CollectionKey.LOCATIONS),
        )

    def locations_overview(self) -> tuple[LocationProgress, ...]:
        return self._aggregation.locations_overview(
            self._items(CollectionKey.VEHICLES),
            self._items(CollectionKey.LOCATIONS),
        )

    def member_workload(self, name: str) -> MemberWorkload:
        """Task counts of one member; dangling vehicles are only detected once vehicles are loaded."""
        return member_workload(
            name,
            self._items(CollectionKey.TASKS),
            self._items(CollectionKey.TEAM_MEMBERS),
            self._loaded_vehicles(),
        )

    def team_workload(self) -> tuple[MemberWorkload, ...]:
        return self._aggregation.team_workload(
            self._items(CollectionKey.TEAM_MEMBERS),
            self._items(CollectionKey.TASKS),
            self._loaded_vehicles(),
        )

    def integrity_report(self) -> IntegrityReport:
        return self._aggregation.integrity_report(
            self._items(CollectionKey.VEHICLES),
            self._items(CollectionKey.LOCATIONS),
            self._items(CollectionKey.TASKS),
            self._items(CollectionKey.TEAM_MEMBERS),
        )

    def schedule_grid(
        self,
        *,
        week: int | None = None,
        location: str | None = None,
        status: VehicleStatus | str | None = None,
        search: str | None = None,
    ) -> Grid:
        """Calendar grid of the whole project, or of one 0-based *week*."""
        total = self._config.project_days
        days = project_days(total) if week is None else week_days(week, total)
        return build_grid(
            self._items(CollectionKey.VEHICLES),
            days,
            self._config.time_slots,
            location=location,
            status=status,
            search=search,
        )

    def timeline(self, location: str | None = None) -> Timeline:
        return timeline(self._items(CollectionKey.VEHICLES), location)

    # ------------------------------------------------------------------
    # Prefetch
    # ------------------------------------------------------------------

    def prefetch(self, key: CollectionKey) -> asyncio.Task[None]:
        return self._prefetcher.prefetch(key)

    def prefetch_all(self) -> asyncio.Task[None]:
        return self._prefetcher.prefetch_all()

    def prefetch_route(self, route: str) -> asyncio.Task[None] | None:
        return self._prefetcher.prefetch_route(route)
