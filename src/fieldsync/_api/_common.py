"""Shared helpers for the per-table store modules.

This module centralizes the repeated patterns:
- building ``select``/``order``/``eq`` filter params
- decoding row lists into typed models
- row-level insert/update/delete by primary key

It is internal to fieldsync and may change at any time.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any, TypeVar

from pydantic_core import to_jsonable_python

from fieldsync._constants import PRIMARY_KEYS
from fieldsync._transport import Transport
from fieldsync.exceptions import FieldSyncNotFoundError, FieldSyncTransportError
from fieldsync.models._base import FieldSyncModel

TModel = TypeVar("TModel", bound=FieldSyncModel)

RETURN_REPRESENTATION = "return=representation"
UPSERT_REPRESENTATION = "resolution=merge-duplicates,return=representation"


def eq(value: str) -> str:
    return f"eq.{value}"


def select_params(
    *,
    order_by: str | None = None,
    ascending: bool = True,
    filters: Mapping[str, str] | None = None,
) -> dict[str, str]:
    params: dict[str, str] = {"select": "*"}
    if order_by:
        params["order"] = f"{order_by}.{'asc' if ascending else 'desc'}"
    if filters:
        params.update({column: eq(value) for column, value in filters.items()})
    return params


def _rows(table: str, payload: Any) -> list[dict[str, Any]]:
    if payload is None:
        return []
    if not isinstance(payload, list):
        raise FieldSyncTransportError(f"Expected a row list from {table}, got {type(payload).__name__}", table=table)
    return [row for row in payload if isinstance(row, dict)]


async def select_rows(
    transport: Transport,
    table: str,
    model: type[TModel],
    *,
    order_by: str | None = None,
    ascending: bool = True,
    filters: Mapping[str, str] | None = None,
) -> tuple[TModel, ...]:
    """Fetch a whole table (optionally filtered) as an immutable tuple of models."""
    payload = await transport.request(
        "GET",
        table,
        params=select_params(order_by=order_by, ascending=ascending, filters=filters),
    )
    return tuple(model.model_validate(row) for row in _rows(table, payload))


def _json_row(row: Mapping[str, Any]) -> dict[str, Any]:
    """Dates, timestamps and enums in *row* as JSON-ready values."""
    result: dict[str, Any] = to_jsonable_python(dict(row))
    return result


def _single(table: str, payload: Any, *, identity: str | None = None) -> dict[str, Any]:
    rows = _rows(table, payload)
    if not rows:
        suffix = f" {identity!r}" if identity is not None else ""
        raise FieldSyncNotFoundError(f"{table}: no row{suffix}", table=table)
    return rows[0]


async def insert_row(transport: Transport, table: str, model: type[TModel], row: Mapping[str, Any]) -> TModel:
    payload = await transport.request("POST", table, body=[_json_row(row)], prefer=RETURN_REPRESENTATION)
    return model.model_validate(_single(table, payload))


async def upsert_row(transport: Transport, table: str, model: type[TModel], row: Mapping[str, Any]) -> TModel:
    payload = await transport.request("POST", table, body=[_json_row(row)], prefer=UPSERT_REPRESENTATION)
    return model.model_validate(_single(table, payload))


async def update_row(
    transport: Transport,
    table: str,
    model: type[TModel],
    identity: str,
    changes: Mapping[str, Any],
) -> TModel:
    """Update one row by primary key; raises if the row does not exist."""
    pk = PRIMARY_KEYS[table]
    payload = await transport.request(
        "PATCH",
        table,
        params={pk: eq(identity)},
        body=_json_row(changes),
        prefer=RETURN_REPRESENTATION,
    )
    return model.model_validate(_single(table, payload, identity=identity))


async def delete_row(transport: Transport, table: str, identity: str) -> None:
    """Delete one row by primary key. Deleting a missing row is a no-op."""
    pk = PRIMARY_KEYS[table]
    await transport.request("DELETE", table, params={pk: eq(identity)})
