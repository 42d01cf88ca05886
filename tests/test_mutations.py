from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable

import pytest

from fieldsync._api.vehicles import update_vehicle
from fieldsync.cache.events import CollectionKey, FetchStatus
from fieldsync.cache.store import CacheStore
from fieldsync.exceptions import FieldSyncError, FieldSyncStoreError, FieldSyncTransportError
from fieldsync.models import Vehicle, VehicleStatus
from fieldsync.mutations import (
    MutationPhase,
    OptimisticMutationController,
    append_row,
    can_transition,
    patch_row,
    remove_row,
)

VEHICLES = CollectionKey.VEHICLES

Settle = Callable[..., Awaitable[None]]


def _status_of(store: CacheStore, vehicle_id: str) -> VehicleStatus:
    return next(v.status for v in store.peek(VEHICLES).items() if v.id == vehicle_id)


def test_transition_table() -> None:
    assert can_transition(MutationPhase.IDLE, MutationPhase.OPTIMISTIC_PENDING)
    assert can_transition(MutationPhase.OPTIMISTIC_PENDING, MutationPhase.ROLLED_BACK)
    assert can_transition(MutationPhase.CONFIRMED, MutationPhase.OPTIMISTIC_PENDING)
    assert not can_transition(MutationPhase.IDLE, MutationPhase.CONFIRMED)
    assert not can_transition(MutationPhase.ROLLED_BACK, MutationPhase.CONFIRMED)


def test_row_transforms() -> None:
    rows = (
        Vehicle(id="V001", location="Bahir Dar", day=3, time_slot="08:00-10:00"),
        Vehicle(id="V002", location="Bahir Dar", day=3, time_slot="08:00-10:00"),
    )

    patched = patch_row("V001", {"status": "In Progress", "day": 4})(rows)
    assert patched[0].status == VehicleStatus.IN_PROGRESS
    assert patched[0].day == 4
    assert patched[1] is rows[1]

    added = Vehicle(id="V009", location="Adama")
    assert append_row(added)(rows)[-1] is added
    assert [v.id for v in remove_row("V001")(rows)] == ["V002"]


@pytest.mark.asyncio
async def test_optimistic_update_is_visible_before_write_resolves(store: CacheStore, backend) -> None:
    store.init()
    await store.refresh(VEHICLES)
    controller = OptimisticMutationController(store)
    gate = asyncio.Event()
    backend.gates[("PATCH", "vehicles")] = gate
    changes = {"status": VehicleStatus.IN_PROGRESS}

    pending = asyncio.create_task(
        controller.apply_mutation(
            VEHICLES,
            patch_row("V001", changes),
            lambda: update_vehicle(backend, "V001", changes),
        )
    )
    await asyncio.sleep(0)

    assert _status_of(store, "V001") == VehicleStatus.IN_PROGRESS
    assert controller.phase(VEHICLES) == MutationPhase.OPTIMISTIC_PENDING
    assert controller.pending(VEHICLES) == 1

    gate.set()
    result = await pending

    assert result.status == VehicleStatus.IN_PROGRESS
    assert controller.phase(VEHICLES) == MutationPhase.CONFIRMED
    assert controller.pending(VEHICLES) == 0
    assert backend.find("vehicles", "V001")["status"] == "In Progress"
    assert _status_of(store, "V001") == VehicleStatus.IN_PROGRESS
    # Confirmed by a forced refresh after the write.
    assert backend.count("GET", "vehicles") == 2


@pytest.mark.asyncio
async def test_failed_write_rolls_back_and_raises(store: CacheStore, backend) -> None:
    store.init()
    await store.refresh(VEHICLES)
    controller = OptimisticMutationController(store)
    backend.failures[("PATCH", "vehicles")] = FieldSyncStoreError("permission denied", status_code=403)
    seen: list[VehicleStatus] = []
    store.subscribe(VEHICLES, lambda view: seen.append(next(v.status for v in view.items() if v.id == "V001")))
    changes = {"status": VehicleStatus.IN_PROGRESS}

    with pytest.raises(FieldSyncStoreError, match="permission denied"):
        await controller.apply_mutation(
            VEHICLES,
            patch_row("V001", changes),
            lambda: update_vehicle(backend, "V001", changes),
        )

    assert VehicleStatus.IN_PROGRESS in seen
    assert _status_of(store, "V001") == VehicleStatus.PENDING
    assert controller.phase(VEHICLES) == MutationPhase.ROLLED_BACK
    state = controller.state(VEHICLES)
    assert isinstance(state.last_error, FieldSyncStoreError)
    assert backend.find("vehicles", "V001")["status"] == "Pending"


@pytest.mark.asyncio
async def test_reconcile_failure_after_successful_write_is_not_raised(store: CacheStore, backend) -> None:
    store.init()
    await store.refresh(VEHICLES)
    controller = OptimisticMutationController(store)
    backend.failures[("GET", "vehicles")] = FieldSyncTransportError("offline", table="vehicles")
    changes = {"day": 7}

    result = await controller.apply_mutation(
        VEHICLES,
        patch_row("V003", changes),
        lambda: update_vehicle(backend, "V003", changes),
    )

    assert result.day == 7
    assert controller.phase(VEHICLES) == MutationPhase.CONFIRMED
    view = store.peek(VEHICLES)
    assert view.status == FetchStatus.ERROR
    assert next(v.day for v in view.items() if v.id == "V003") == 7


@pytest.mark.asyncio
async def test_rollback_skips_when_newer_local_state_exists(store: CacheStore, backend, settle: Settle) -> None:
    store.init()
    await store.refresh(VEHICLES)
    controller = OptimisticMutationController(store)
    gate = asyncio.Event()
    backend.gates[("PATCH", "vehicles")] = gate
    backend.failures[("PATCH", "vehicles")] = FieldSyncStoreError("conflict", status_code=409)
    newer = (Vehicle(id="V001", location="Adama", day=9, time_slot="08:00-10:00"),)

    pending = asyncio.create_task(
        controller.apply_mutation(
            VEHICLES,
            remove_row("V002"),
            lambda: update_vehicle(backend, "V002", {"day": 2}),
        )
    )
    await settle()
    store.mutate_local(VEHICLES, newer)
    gate.set()

    with pytest.raises(FieldSyncStoreError):
        await pending

    assert controller.phase(VEHICLES) == MutationPhase.ROLLED_BACK
    # Server truth after the forced refresh.
    assert [v.id for v in store.peek(VEHICLES).items()] == ["V001", "V002", "V003"]


@pytest.mark.asyncio
async def test_overlapping_mutations_stay_pending_until_last_settles(store: CacheStore, backend) -> None:
    store.init()
    await store.refresh(VEHICLES)
    controller = OptimisticMutationController(store)
    gate = asyncio.Event()
    backend.gates[("PATCH", "vehicles")] = gate

    first = asyncio.create_task(
        controller.apply_mutation(
            VEHICLES,
            patch_row("V001", {"day": 4}),
            lambda: update_vehicle(backend, "V001", {"day": 4}),
        )
    )
    second = asyncio.create_task(
        controller.apply_mutation(
            VEHICLES,
            patch_row("V002", {"day": 6}),
            lambda: update_vehicle(backend, "V002", {"day": 6}),
        )
    )
    await asyncio.sleep(0)
    assert controller.pending(VEHICLES) == 2
    days = {v.id: v.day for v in store.peek(VEHICLES).items()}
    assert days["V001"] == 4
    assert days["V002"] == 6

    gate.set()
    await asyncio.gather(first, second)

    assert controller.pending(VEHICLES) == 0
    assert controller.phase(VEHICLES) == MutationPhase.CONFIRMED
    days = {v.id: v.day for v in store.peek(VEHICLES).items()}
    assert days == {"V001": 4, "V002": 6, "V003": 5}


@pytest.mark.asyncio
async def test_apply_mutation_requires_initialized_store(store: CacheStore) -> None:
    controller = OptimisticMutationController(store)

    async def _write() -> None:
        return None

    with pytest.raises(FieldSyncError, match="not initialized"):
        await controller.apply_mutation(VEHICLES, remove_row("V001"), _write)
    assert controller.phase(VEHICLES) == MutationPhase.IDLE


@pytest.mark.asyncio
async def test_cancelled_write_rolls_back_and_reconciles(store: CacheStore, backend, settle: Settle) -> None:
    store.init()
    await store.refresh(VEHICLES)
    controller = OptimisticMutationController(store)
    gate = asyncio.Event()
    backend.gates[("PATCH", "vehicles")] = gate
    changes = {"status": VehicleStatus.COMPLETED}

    pending = asyncio.create_task(
        controller.apply_mutation(
            VEHICLES,
            patch_row("V001", changes),
            lambda: update_vehicle(backend, "V001", changes),
        )
    )
    await asyncio.sleep(0)
    assert _status_of(store, "V001") == VehicleStatus.COMPLETED

    pending.cancel()
    with pytest.raises(asyncio.CancelledError):
        await pending

    assert _status_of(store, "V001") == VehicleStatus.PENDING
    assert len(store.peek(VEHICLES).items()) == 3
    assert controller.pending(VEHICLES) == 0
    assert controller.phase(VEHICLES) == MutationPhase.ROLLED_BACK

    await settle()
    assert backend.count("GET", "vehicles") == 2
    assert store.peek(VEHICLES).status == FetchStatus.READY


@pytest.mark.asyncio
async def test_reset_during_write_keeps_successful_result(store: CacheStore, backend) -> None:
    store.init()
    await store.refresh(VEHICLES)
    controller = OptimisticMutationController(store)
    gate = asyncio.Event()
    backend.gates[("PATCH", "vehicles")] = gate

    pending = asyncio.create_task(
        controller.apply_mutation(
            VEHICLES,
            patch_row("V001", {"day": 4}),
            lambda: update_vehicle(backend, "V001", {"day": 4}),
        )
    )
    await asyncio.sleep(0)
    store.clear()
    controller.reset()
    gate.set()

    result = await pending

    assert result.day == 4
    assert controller.phase(VEHICLES) == MutationPhase.IDLE
    assert controller.pending(VEHICLES) == 0
    assert store.peek(VEHICLES).data is None
    assert backend.count("GET", "vehicles") == 1


@pytest.mark.asyncio
async def test_reset_during_failed_write_raises_the_write_error(store: CacheStore, backend) -> None:
    store.init()
    await store.refresh(VEHICLES)
    controller = OptimisticMutationController(store)
    gate = asyncio.Event()
    backend.gates[("PATCH", "vehicles")] = gate
    backend.failures[("PATCH", "vehicles")] = FieldSyncStoreError("row locked", status_code=423)

    pending = asyncio.create_task(
        controller.apply_mutation(
            VEHICLES,
            patch_row("V001", {"day": 4}),
            lambda: update_vehicle(backend, "V001", {"day": 4}),
        )
    )
    await asyncio.sleep(0)
    store.clear()
    controller.reset()
    gate.set()

    with pytest.raises(FieldSyncStoreError, match="row locked"):
        await pending

    assert controller.phase(VEHICLES) == MutationPhase.IDLE
    assert store.peek(VEHICLES).data is None
