"""Failure modes of a catalog sync run.

Everything except ``PersistenceError`` aborts the operation it occurs in and
is reported to the caller as a failed run. ``PersistenceError`` is recovered
inside the write loop: the record is skipped and the step carries on.
"""

from __future__ import annotations


class SyncError(Exception):
    """Base exception for catalog synchronization failures."""


class ConfigurationMissing(SyncError):
    """Raised when no active integration configuration exists."""

    def __init__(self, integration_name: str) -> None:
        super().__init__(
            f"Integration configuration '{integration_name}' not found or inactive"
        )
        self.integration_name = integration_name


class UpstreamFetchError(SyncError):
    """Raised when the catalog API answers with a failure."""

    def __init__(self, message: str, *, url: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.url = url
        self.status_code = status_code


class ParentNotFound(SyncError):
    """Raised when a child record is synced before its parent exists locally."""

    def __init__(self, entity: str, external_id: str) -> None:
        super().__init__(f"{entity} '{external_id}' not found in local store")
        self.entity = entity
        self.external_id = external_id


class PersistenceError(SyncError):
    """Raised when a single record cannot be written."""

    def __init__(self, entity: str, external_id: str | None, reason: str) -> None:
        super().__init__(f"Failed to upsert {entity} '{external_id}': {reason}")
        self.entity = entity
        self.external_id = external_id
        self.reason = reason


class InvalidSyncRequest(SyncError):
    """Raised for an unknown action or a detail action without an id."""
