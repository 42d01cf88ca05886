"""REST transport and per-table store modules."""

from __future__ import annotations

import contextlib
import json
from collections.abc import AsyncIterator
from datetime import date
from typing import Any

import aiohttp
import pytest

from fieldsync._api._common import select_params
from fieldsync._api.comments import create_comment, fetch_task_comments
from fieldsync._api.locations import create_location, delete_location
from fieldsync._api.project_settings import upsert_project_start_date
from fieldsync._api.tasks import update_task
from fieldsync._api.vehicles import create_vehicle, update_vehicle
from fieldsync._transport import RestTransport, raise_for_store_error
from fieldsync.config import FieldSyncConfig
from fieldsync.exceptions import (
    FieldSyncConfigError,
    FieldSyncDuplicateError,
    FieldSyncNotFoundError,
    FieldSyncStoreError,
    FieldSyncTransportError,
)
from fieldsync.models import Location, TaskStatus, Vehicle


class _FakeResponse:
    def __init__(self, status: int, text: str) -> None:
        self.status = status
        self._text = text

    async def text(self) -> str:
        return self._text


class _FakeHttp:
    def __init__(self, status: int = 200, text: str = "[]", exc: BaseException | None = None) -> None:
        self.status = status
        self.text = text
        self.exc = exc
        self.requests: list[tuple[str, str, dict[str, Any]]] = []

    @contextlib.asynccontextmanager
    async def _respond(self) -> AsyncIterator[_FakeResponse]:
        yield _FakeResponse(self.status, self.text)

    def request(self, method: str, url: str, **kwargs: Any) -> Any:
        self.requests.append((method, url, kwargs))
        if self.exc is not None:
            raise self.exc
        return self._respond()


CONFIG = FieldSyncConfig(base_url="https://store.example.com/", api_key="anon-key", schema="tracker")


def _transport(http: _FakeHttp) -> RestTransport:
    return RestTransport(CONFIG, http)  # type: ignore[arg-type]


def test_missing_credentials_raise_config_error() -> None:
    with pytest.raises(FieldSyncConfigError, match="base_url"):
        RestTransport(FieldSyncConfig(api_key="k"), _FakeHttp())  # type: ignore[arg-type]
    with pytest.raises(FieldSyncConfigError, match="api_key"):
        RestTransport(FieldSyncConfig(base_url="https://x"), _FakeHttp())  # type: ignore[arg-type]


def test_select_params() -> None:
    assert select_params() == {"select": "*"}
    assert select_params(order_by="created_at", ascending=False, filters={"task_id": "T1"}) == {
        "select": "*",
        "order": "created_at.desc",
        "task_id": "eq.T1",
    }


@pytest.mark.asyncio
async def test_request_builds_url_headers_and_body() -> None:
    http = _FakeHttp(text='[{"id": "V001"}]')
    transport = _transport(http)

    payload = await transport.request(
        "PATCH",
        "vehicles",
        params={"id": "eq.V001"},
        body={"day": 4},
        prefer="return=representation",
    )

    assert payload == [{"id": "V001"}]
    method, url, kwargs = http.requests[0]
    assert method == "PATCH"
    assert url == "https://store.example.com/rest/v1/vehicles"
    assert kwargs["params"] == {"id": "eq.V001"}
    assert json.loads(kwargs["data"]) == {"day": 4}
    headers = kwargs["headers"]
    assert headers["apikey"] == "anon-key"
    assert headers["authorization"] == "Bearer anon-key"
    assert headers["accept-profile"] == "tracker"
    assert headers["prefer"] == "return=representation"


@pytest.mark.asyncio
async def test_empty_body_decodes_to_none() -> None:
    transport = _transport(_FakeHttp(status=204, text=""))

    assert await transport.request("DELETE", "vehicles", params={"id": "eq.V001"}) is None


@pytest.mark.asyncio
async def test_client_error_becomes_transport_error() -> None:
    transport = _transport(_FakeHttp(exc=aiohttp.ClientConnectionError("refused")))

    with pytest.raises(FieldSyncTransportError, match="GET vehicles failed") as excinfo:
        await transport.request("GET", "vehicles")
    assert excinfo.value.table == "vehicles"


@pytest.mark.asyncio
async def test_timeout_becomes_transport_error() -> None:
    transport = _transport(_FakeHttp(exc=TimeoutError()))

    with pytest.raises(FieldSyncTransportError, match="timed out"):
        await transport.request("GET", "tasks")


@pytest.mark.asyncio
async def test_invalid_json_on_success_is_a_transport_error() -> None:
    transport = _transport(_FakeHttp(text="<html>oops</html>"))

    with pytest.raises(FieldSyncTransportError, match="Invalid JSON"):
        await transport.request("GET", "tasks")


@pytest.mark.asyncio
async def test_error_status_maps_to_store_error() -> None:
    body = json.dumps({"code": "42501", "message": "permission denied for table vehicles"})
    transport = _transport(_FakeHttp(status=403, text=body))

    with pytest.raises(FieldSyncStoreError) as excinfo:
        await transport.request("GET", "vehicles")

    assert excinfo.value.status_code == 403
    assert excinfo.value.code == "42501"
    assert "permission denied" in str(excinfo.value)


def test_store_error_mapping() -> None:
    with pytest.raises(FieldSyncDuplicateError):
        raise_for_store_error("vehicles", 409, {"code": "23505"})
    with pytest.raises(FieldSyncDuplicateError):
        raise_for_store_error("vehicles", 400, {"code": "23505", "message": "duplicate key"})
    with pytest.raises(FieldSyncNotFoundError):
        raise_for_store_error("vehicles", 404, "Not Found")
    with pytest.raises(FieldSyncStoreError, match="HTTP 500"):
        raise_for_store_error("vehicles", 500, None)


# ------------------------------------------------------------------
# Table modules over the in-memory store
# ------------------------------------------------------------------


@pytest.mark.asyncio
async def test_create_vehicle_sends_row_without_timestamps(backend) -> None:
    vehicle = Vehicle(id="V010", type="Truck", location="Adama", day=2, time_slot="10:00-12:00", fuel_tanks=2)

    created = await create_vehicle(backend, vehicle)

    assert created.id == "V010"
    row = backend.find("vehicles", "V010")
    assert row["status"] == "Pending"
    assert row["fuel_tanks"] == 2
    assert "updated_at" not in row


@pytest.mark.asyncio
async def test_duplicate_vehicle_is_rejected(backend) -> None:
    with pytest.raises(FieldSyncDuplicateError):
        await create_vehicle(backend, Vehicle(id="V001", location="Adama"))


@pytest.mark.asyncio
async def test_update_stamps_updated_at_and_serializes_enums(backend) -> None:
    updated = await update_task(backend, "T1", {"status": TaskStatus.BLOCKED, "start_date": date(2025, 1, 7)})

    assert updated.status == TaskStatus.BLOCKED
    row = backend.find("tasks", "T1")
    assert row["status"] == "Blocked"
    assert row["start_date"] == "2025-01-07"
    assert row["updated_at"]


@pytest.mark.asyncio
async def test_updating_a_missing_row_raises_not_found(backend) -> None:
    with pytest.raises(FieldSyncNotFoundError, match="V404"):
        await update_vehicle(backend, "V404", {"day": 2})


@pytest.mark.asyncio
async def test_deleting_a_missing_row_is_a_noop(backend) -> None:
    await delete_location(backend, "Nowhere")
    await create_location(backend, Location(name="Gondar"))
    await delete_location(backend, "Gondar")

    assert backend.find("locations", "Gondar") is None


@pytest.mark.asyncio
async def test_comments_are_read_per_task_oldest_first(backend) -> None:
    await create_comment(backend, task_id="T1", author="Abebe", text="Bracket missing")
    await create_comment(backend, task_id="T2", author="Sara", text="Done")
    backend.rows("comments").append(
        {"id": "c0", "task_id": "T1", "author": "Sara", "text": "Earlier", "created_at": "2025-01-01T00:00:00Z"}
    )

    comments = await fetch_task_comments(backend, "T1")

    assert [comment.text for comment in comments] == ["Earlier", "Bracket missing"]
    assert backend.last_params[("GET", "comments")]["task_id"] == "eq.T1"


@pytest.mark.asyncio
async def test_upsert_project_start_date_replaces_singleton(backend) -> None:
    settings = await upsert_project_start_date(backend, date(2025, 2, 3))

    assert settings.project_start_date == date(2025, 2, 3)
    assert len(backend.rows("project_settings")) == 1
