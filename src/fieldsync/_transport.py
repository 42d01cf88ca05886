"""HTTP transport for the row-level REST API of the remote store."""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from typing import Any, Protocol

import aiohttp

from fieldsync._constants import REST_PREFIX, UNIQUE_VIOLATION_CODE, USER_AGENT
from fieldsync.config import FieldSyncConfig
from fieldsync.exceptions import (
    FieldSyncConfigError,
    FieldSyncDuplicateError,
    FieldSyncNotFoundError,
    FieldSyncStoreError,
    FieldSyncTransportError,
)

_logger = logging.getLogger(__name__)


class Transport(Protocol):
    """Structural transport interface used by the table modules.

    Having a protocol here makes it easy to pass in-memory test doubles
    while keeping the production implementation (`RestTransport`) concrete.
    """

    async def request(
        self,
        method: str,
        table: str,
        *,
        params: Mapping[str, str] | None = None,
        body: Any = None,
        prefer: str | None = None,
    ) -> Any: ...


def raise_for_store_error(table: str, status: int, payload: Any) -> None:
    """Map a non-2xx store response onto the exception hierarchy."""
    code = ""
    message = ""
    if isinstance(payload, dict):
        code = str(payload.get("code") or "")
        message = str(payload.get("message") or payload.get("hint") or "")
    elif payload:
        message = str(payload)[:200]

    text = f"{table}: HTTP {status}"
    if code:
        text += f" code={code}"
    if message:
        text += f" message={message}"

    if status == 409 or code == UNIQUE_VIOLATION_CODE:
        raise FieldSyncDuplicateError(text, status_code=status, code=code, table=table)
    if status == 404:
        raise FieldSyncNotFoundError(text, status_code=status, code=code, table=table)
    raise FieldSyncStoreError(text, status_code=status, code=code, table=table)


class RestTransport:
    """PostgREST-style transport over a shared :class:`aiohttp.ClientSession`."""

    def __init__(self, config: FieldSyncConfig, http_session: aiohttp.ClientSession) -> None:
        if not config.base_url:
            raise FieldSyncConfigError("base_url is required for the REST transport")
        if not config.api_key:
            raise FieldSyncConfigError("api_key is required for the REST transport")
        self._config = config
        self._http = http_session
        self._timeout = aiohttp.ClientTimeout(total=config.request_timeout)

    def _headers(self, prefer: str | None) -> dict[str, str]:
        headers: dict[str, str] = {
            "apikey": self._config.api_key,
            "authorization": f"Bearer {self._config.api_key}",
            "accept": "application/json",
            "content-type": "application/json",
            "accept-profile": self._config.schema,
            "content-profile": self._config.schema,
            "user-agent": USER_AGENT,
        }
        if prefer:
            headers["prefer"] = prefer
        return headers

    def url_for(self, table: str) -> str:
        return f"{self._config.base_url.rstrip('/')}{REST_PREFIX}/{table}"

    async def request(
        self,
        method: str,
        table: str,
        *,
        params: Mapping[str, str] | None = None,
        body: Any = None,
        prefer: str | None = None,
    ) -> Any:
        """Send one request and return the decoded JSON body (``None`` if empty)."""
        url = self.url_for(table)
        data = json.dumps(body, separators=(",", ":")) if body is not None else None

        _logger.debug("%s %s %s", method, url, dict(params or {}))

        try:
            async with self._http.request(
                method,
                url,
                params=dict(params or {}),
                data=data,
                headers=self._headers(prefer),
                timeout=self._timeout,
            ) as resp:
                text = await resp.text()
                status = resp.status
        except aiohttp.ClientError as exc:
            raise FieldSyncTransportError(f"{method} {table} failed: {exc}", table=table) from exc
        except TimeoutError as exc:
            raise FieldSyncTransportError(f"{method} {table} timed out", table=table) from exc

        payload: Any = None
        if text.strip():
            try:
                payload = json.loads(text)
            except json.JSONDecodeError as exc:
                if 200 <= status < 300:
                    raise FieldSyncTransportError(
                        f"Invalid JSON from {table}: {text[:200]}",
                        status_code=status,
                        table=table,
                    ) from exc
                payload = text

        if not 200 <= status < 300:
            raise_for_store_error(table, status, payload)
        return payload
