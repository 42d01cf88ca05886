"""Optimistic mutations.

A mutation is applied to the cache first and written to the remote store
second. Every mutation ends with a forced refresh of its key, so the
optimistic collection is only ever a placeholder until the store's own
state replaces it:

- write succeeded: the refresh pulls the canonical rows (the store may
  normalize fields such as ``updated_at``);
- write failed: the optimistic collection is swapped back for the
  pre-mutation snapshot (unless something newer already replaced it), the
  refresh pulls server truth and the write error is raised to the caller.

Each key runs a small state machine::

    IDLE -> OPTIMISTIC_PENDING -> CONFIRMED | ROLLED_BACK
                  ^                        |
                  +------------------------+

Remote writes are not serialized against each other. Local transforms
apply in call order; the final state is whatever the last refresh to
resolve returns.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass
from enum import StrEnum
from typing import Any, TypeVar

from fieldsync.cache.events import CollectionKey
from fieldsync.cache.store import CacheStore
from fieldsync.exceptions import FieldSyncError

_logger = logging.getLogger(__name__)

T = TypeVar("T")

LocalTransform = Callable[[tuple[Any, ...]], Iterable[Any]]


class MutationPhase(StrEnum):
    IDLE = "idle"
    OPTIMISTIC_PENDING = "optimistic_pending"
    CONFIRMED = "confirmed"
    ROLLED_BACK = "rolled_back"


_TRANSITIONS: dict[MutationPhase, frozenset[MutationPhase]] = {
    MutationPhase.IDLE: frozenset({MutationPhase.OPTIMISTIC_PENDING}),
    MutationPhase.OPTIMISTIC_PENDING: frozenset(
        {MutationPhase.OPTIMISTIC_PENDING, MutationPhase.CONFIRMED, MutationPhase.ROLLED_BACK}
    ),
    MutationPhase.CONFIRMED: frozenset({MutationPhase.OPTIMISTIC_PENDING, MutationPhase.IDLE}),
    MutationPhase.ROLLED_BACK: frozenset({MutationPhase.OPTIMISTIC_PENDING, MutationPhase.IDLE}),
}


def can_transition(current: MutationPhase, target: MutationPhase) -> bool:
    return target in _TRANSITIONS[current]


@dataclass(slots=True)
class MutationState:
    """Reconciliation state of one cache key."""

    phase: MutationPhase = MutationPhase.IDLE
    pending: int = 0
    last_error: BaseException | None = None


class OptimisticMutationController:
    """Apply local-first mutations through a :class:`CacheStore`."""

    def __init__(self, store: CacheStore) -> None:
        self._store = store
        self._states: dict[CollectionKey, MutationState] = {}

    def _state(self, key: CollectionKey) -> MutationState:
        state = self._states.get(key)
        if state is None:
            state = MutationState()
            self._states[key] = state
        return state

    def _transition(self, key: CollectionKey, target: MutationPhase) -> None:
        state = self._state(key)
        if not can_transition(state.phase, target):
            raise FieldSyncError(f"Invalid mutation transition for {key}: {state.phase} -> {target}")
        _logger.debug("Mutation state of %s: %s -> %s", key, state.phase, target)
        state.phase = target

    def phase(self, key: CollectionKey) -> MutationPhase:
        return self._state(key).phase

    def pending(self, key: CollectionKey) -> int:
        """Number of mutations on *key* that have not been reconciled yet."""
        return self._state(key).pending

    def state(self, key: CollectionKey) -> MutationState:
        current = self._state(key)
        return MutationState(phase=current.phase, pending=current.pending, last_error=current.last_error)

    def reset(self) -> None:
        """Forget every key's state (used together with ``CacheStore.clear``).

        Mutations still in flight finish against the state they started
        with and leave the fresh state untouched.
        """
        self._states.clear()

    def _is_current(self, key: CollectionKey, state: MutationState) -> bool:
        return self._states.get(key) is state

    async def _reconcile(self, key: CollectionKey) -> None:
        try:
            await self._store.refresh(key, force=True)
        except Exception:
            # Already recorded as the key's error status by the store.
            _logger.debug("Reconciling %s after mutation failed", key, exc_info=True)

    def _rollback(self, key: CollectionKey, before: tuple[Any, ...] | None, optimistic: tuple[Any, ...]) -> None:
        if self._store.peek(key).data is optimistic:
            self._store.mutate_local(key, before if before is not None else (), revalidate=False)

    def _settle(
        self,
        key: CollectionKey,
        state: MutationState,
        outcome: MutationPhase,
        error: BaseException | None,
    ) -> None:
        state.pending = max(0, state.pending - 1)
        state.last_error = error
        if not self._is_current(key, state):
            _logger.debug("Mutation state of %s was reset while a write was in flight", key)
            return
        if state.pending > 0:
            self._transition(key, MutationPhase.OPTIMISTIC_PENDING)
        else:
            self._transition(key, outcome)

    async def apply_mutation(
        self,
        key: CollectionKey,
        local_transform: LocalTransform,
        remote_write: Callable[[], Awaitable[T]],
    ) -> T:
        """Apply *local_transform* to the cache, then run *remote_write*.

        The cache reflects the transform before this coroutine first
        suspends. Returns whatever *remote_write* returns; re-raises its
        exception after rolling back. A cancelled write is rolled back too
        and reconciled in the background.
        """
        if not self._store.initialized:
            raise FieldSyncError("Cache store not initialized. Call CacheStore.init() inside the event loop.")

        before = self._store.peek(key).data
        optimistic = tuple(local_transform(before if before is not None else ()))

        self._transition(key, MutationPhase.OPTIMISTIC_PENDING)
        state = self._state(key)
        state.pending += 1
        self._store.mutate_local(key, optimistic, revalidate=False)

        try:
            result = await remote_write()
        except asyncio.CancelledError:
            _logger.warning("Optimistic write to %s cancelled, rolling back", key)
            if self._is_current(key, state):
                self._rollback(key, before, optimistic)
                self._store.revalidate(key, force=True)
            self._settle(key, state, MutationPhase.ROLLED_BACK, None)
            raise
        except Exception as exc:
            _logger.warning("Optimistic write to %s failed, rolling back: %s", key, exc)
            try:
                if self._is_current(key, state):
                    self._rollback(key, before, optimistic)
                    await self._reconcile(key)
            finally:
                self._settle(key, state, MutationPhase.ROLLED_BACK, exc)
            raise

        try:
            if self._is_current(key, state):
                await self._reconcile(key)
        finally:
            self._settle(key, state, MutationPhase.CONFIRMED, None)
        return result


# ------------------------------------------------------------------
# Local transforms for row-keyed collections
# ------------------------------------------------------------------


def replace_row(identity: str, update: Callable[[Any], Any]) -> LocalTransform:
    """Transform replacing the row whose ``identity()`` matches."""

    def _transform(rows: tuple[Any, ...]) -> tuple[Any, ...]:
        return tuple(update(row) if row.identity() == identity else row for row in rows)

    return _transform


def patch_row(identity: str, changes: dict[str, Any]) -> LocalTransform:
    """Transform applying *changes* (field -> value) to one row, re-validated."""
    return replace_row(identity, lambda row: type(row).model_validate({**row.model_dump(), **changes}))


def append_row(row: Any) -> LocalTransform:
    def _transform(rows: tuple[Any, ...]) -> tuple[Any, ...]:
        return (*rows, row)

    return _transform


def remove_row(identity: str) -> LocalTransform:
    def _transform(rows: tuple[Any, ...]) -> tuple[Any, ...]:
        return tuple(row for row in rows if row.identity() != identity)

    return _transform
