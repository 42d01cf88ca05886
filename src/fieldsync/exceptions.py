"""Custom exception hierarchy for fieldsync."""

from __future__ import annotations


class FieldSyncError(Exception):
    """Base exception for all fieldsync errors."""


class FieldSyncConfigError(FieldSyncError):
    """Invalid or missing configuration."""


class FieldSyncTransportError(FieldSyncError):
    """Network-level failure (connection error, timeout, invalid JSON)."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        table: str = "",
    ) -> None:
        self.status_code = status_code
        self.table = table
        super().__init__(message)


class FieldSyncStoreError(FieldSyncError):
    """The remote store rejected a request (non-2xx response)."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        code: str = "",
        table: str = "",
    ) -> None:
        self.status_code = status_code
        self.code = code
        self.table = table
        super().__init__(message)


class FieldSyncDuplicateError(FieldSyncStoreError):
    """Insert rejected because a row with the same identity already exists.

    Raised for HTTP ``409`` responses and for the Postgres unique-violation
    code ``23505``.
    """


class FieldSyncNotFoundError(FieldSyncStoreError):
    """A row addressed by primary key does not exist.

    Also raised locally when an operation refers to an entity that is not
    present in the cached collection (for example rescheduling an unknown
    vehicle id).
    """


class FieldSyncValidationError(FieldSyncError):
    """A create/update payload failed validation.

    The mutation never reaches the cache or the remote store. ``errors``
    holds the human-readable messages returned by the validator.
    """

    def __init__(self, errors: list[str], *, entity: str = "") -> None:
        self.errors = list(errors)
        self.entity = entity
        prefix = f"Invalid {entity}" if entity else "Validation failed"
        super().__init__(f"{prefix}: {'; '.join(self.errors)}")
