from __future__ import annotations

import asyncio
import copy
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Any

import pytest

from fieldsync._api.locations import fetch_locations
from fieldsync._api.project_settings import fetch_project_settings
from fieldsync._api.tasks import fetch_tasks
from fieldsync._api.team_members import fetch_team_members
from fieldsync._api.vehicles import fetch_vehicles
from fieldsync._constants import PRIMARY_KEYS
from fieldsync._transport import raise_for_store_error
from fieldsync.cache.events import CollectionKey
from fieldsync.cache.store import CacheStore


@dataclass
class _VirtualHandle:
    when: float
    callback: Callable[[], None]
    cancelled: bool = False

    def cancel(self) -> None:
        self.cancelled = True


class VirtualClock:
    """Manually advanced clock implementing both ``now()`` and ``call_later()``."""

    def __init__(self, start: datetime | None = None) -> None:
        self._start = start or datetime(2025, 1, 6, 8, 0, tzinfo=UTC)
        self.elapsed = 0.0
        self._handles: list[_VirtualHandle] = []

    def now(self) -> datetime:
        return self._start + timedelta(seconds=self.elapsed)

    def call_later(self, delay: float, callback: Callable[[], None]) -> _VirtualHandle:
        handle = _VirtualHandle(when=self.elapsed + max(0.0, delay), callback=callback)
        self._handles.append(handle)
        return handle

    @property
    def pending(self) -> list[float]:
        """Due times of the timers that are still armed."""
        return sorted(h.when for h in self._handles if not h.cancelled)

    def advance(self, seconds: float) -> None:
        target = self.elapsed + seconds
        while True:
            due = [h for h in self._handles if not h.cancelled and h.when <= target]
            if not due:
                break
            handle = min(due, key=lambda h: h.when)
            self._handles.remove(handle)
            self.elapsed = handle.when
            handle.callback()
        self.elapsed = target


@dataclass
class FakeStore:
    """In-memory stand-in for the REST API, implementing ``Transport``."""

    tables: dict[str, list[dict[str, Any]]] = field(default_factory=dict)
    calls: list[tuple[str, str]] = field(default_factory=list)
    failures: dict[tuple[str, str], Exception] = field(default_factory=dict)
    gates: dict[tuple[str, str], asyncio.Event] = field(default_factory=dict)
    last_params: dict[tuple[str, str], dict[str, str]] = field(default_factory=dict)
    _next_id: int = 0

    def count(self, method: str, table: str) -> int:
        return sum(1 for call in self.calls if call == (method, table))

    def rows(self, table: str) -> list[dict[str, Any]]:
        return self.tables.setdefault(table, [])

    def find(self, table: str, identity: str) -> dict[str, Any] | None:
        pk = PRIMARY_KEYS[table]
        return next((row for row in self.rows(table) if str(row.get(pk)) == identity), None)

    def _matches(self, row: Mapping[str, Any], params: Mapping[str, str]) -> bool:
        for column, condition in params.items():
            if column in {"select", "order"} or not condition.startswith("eq."):
                continue
            if str(row.get(column)) != condition[3:]:
                return False
        return True

    async def request(
        self,
        method: str,
        table: str,
        *,
        params: Mapping[str, str] | None = None,
        body: Any = None,
        prefer: str | None = None,
    ) -> Any:
        self.calls.append((method, table))
        params = dict(params or {})
        self.last_params[(method, table)] = params

        gate = self.gates.get((method, table))
        if gate is not None:
            await gate.wait()
        failure = self.failures.get((method, table))
        if failure is not None:
            raise failure

        rows = self.rows(table)
        pk = PRIMARY_KEYS[table]

        if method == "GET":
            selected = [copy.deepcopy(row) for row in rows if self._matches(row, params)]
            order = params.get("order")
            if order:
                column, direction = order.rsplit(".", 1)
                selected.sort(key=lambda row: (row.get(column) is None, row.get(column)), reverse=direction == "desc")
            return selected

        if method == "POST":
            created = []
            for incoming in body:
                row = dict(incoming)
                if pk not in row:
                    self._next_id += 1
                    row[pk] = f"{table}-{self._next_id}"
                row.setdefault("created_at", "2025-01-06T08:00:00Z")
                existing = self.find(table, str(row[pk]))
                if existing is not None:
                    if prefer and "merge-duplicates" in prefer:
                        existing.update(row)
                        created.append(copy.deepcopy(existing))
                        continue
                    raise_for_store_error(table, 409, {"code": "23505", "message": "duplicate key value"})
                rows.append(row)
                created.append(copy.deepcopy(row))
            return created

        if method == "PATCH":
            updated = []
            for row in rows:
                if self._matches(row, params):
                    row.update(body)
                    updated.append(copy.deepcopy(row))
            return updated

        if method == "DELETE":
            self.tables[table] = [row for row in rows if not self._matches(row, params)]
            return None

        raise AssertionError(f"unexpected method {method}")


async def drain(rounds: int = 10) -> None:
    """Let background tasks scheduled on the loop run to completion."""
    for _ in range(rounds):
        await asyncio.sleep(0)


def seed_rows() -> dict[str, list[dict[str, Any]]]:
    return {
        "vehicles": [
            {
                "id": "V001",
                "type": "Truck",
                "location": "Bahir Dar",
                "day": 3,
                "time_slot": "08:00-10:00",
                "status": "Pending",
                "gps_required": 1,
                "fuel_sensors": 1,
                "fuel_tanks": 1,
            },
            {
                "id": "V002",
                "type": "Pickup",
                "location": "Bahir Dar",
                "day": 3,
                "time_slot": "08:00-10:00",
                "status": "Completed",
                "gps_required": 1,
                "fuel_sensors": 2,
                "fuel_tanks": 2,
            },
            {
                "id": "V003",
                "type": "Bus",
                "location": "Adama",
                "day": 5,
                "time_slot": "10:00-12:00",
                "status": "In Progress",
                "gps_required": 1,
                "fuel_sensors": 0,
                "fuel_tanks": 1,
            },
        ],
        "locations": [
            {"name": "Bahir Dar", "duration": "3 days", "vehicles": 2, "gps_devices": 2, "fuel_sensors": 3},
            {"name": "Adama", "duration": "2 days", "vehicles": 4, "gps_devices": 4, "fuel_sensors": 4},
        ],
        "team_members": [
            {"id": "M1", "name": "Abebe", "role": "Technician", "specializations": ["GPS"]},
            {"id": "M2", "name": "Sara", "role": "Lead", "specializations": ["Fuel sensors", "GPS"]},
        ],
        "tasks": [
            {
                "id": "T1",
                "vehicle_id": "V001",
                "name": "Install GPS",
                "status": "Pending",
                "assigned_to": "Abebe",
                "priority": "High",
                "created_at": "2025-01-05T09:00:00Z",
            },
            {
                "id": "T2",
                "vehicle_id": "V002",
                "name": "Install sensors",
                "status": "Completed",
                "assigned_to": "Abebe",
                "priority": "Medium",
                "created_at": "2025-01-05T10:00:00Z",
            },
        ],
        "project_settings": [{"id": "default", "project_start_date": "2025-01-06"}],
        "comments": [],
    }


@pytest.fixture
def clock() -> VirtualClock:
    return VirtualClock()


@pytest.fixture
def backend() -> FakeStore:
    return FakeStore(tables=seed_rows())


@pytest.fixture
def store(backend: FakeStore, clock: VirtualClock) -> CacheStore:
    """A cache over the fake backend; tests call ``store.init()`` inside the loop."""

    async def _vehicles() -> Any:
        return await fetch_vehicles(backend)

    async def _locations() -> Any:
        return await fetch_locations(backend)

    async def _members() -> Any:
        return await fetch_team_members(backend)

    async def _tasks() -> Any:
        return await fetch_tasks(backend)

    async def _settings() -> Any:
        return await fetch_project_settings(backend)

    return CacheStore(
        {
            CollectionKey.VEHICLES: _vehicles,
            CollectionKey.LOCATIONS: _locations,
            CollectionKey.TEAM_MEMBERS: _members,
            CollectionKey.TASKS: _tasks,
            CollectionKey.PROJECT_SETTINGS: _settings,
        },
        clock=clock.now,
        timer=clock,
    )


@pytest.fixture
def settle() -> Callable[..., Awaitable[None]]:
    return drain
