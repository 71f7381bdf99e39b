"""Shared enums for the URL shortener application.

This module defines all status and state enums used across the codebase.
Using enums instead of string literals provides type safety and prevents typos.
"""

from enum import StrEnum

__all__ = ["HealthStatus", "StorageBackend", "BatchState", "RequestStatus"]


class HealthStatus(StrEnum):
    """Health check status values."""

    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"


class StorageBackend(StrEnum):
    """Backing implementation of the mapping store."""

    SQL = "sql"
    FILE = "file"


class BatchState(StrEnum):
    """Lifecycle of a deletion batch.

    ``submitted -> queued -> applying -> applied`` on success,
    ``applying -> failed`` otherwise. Both ``applied`` and ``failed`` are terminal.
    """

    SUBMITTED = "submitted"
    QUEUED = "queued"
    APPLYING = "applying"
    APPLIED = "applied"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (BatchState.APPLIED, BatchState.FAILED)


class RequestStatus(StrEnum):
    """Request status values for metrics and logging."""

    SUCCESS = "success"
    CONFLICT = "conflict"
    NOT_FOUND = "not_found"
    GONE = "gone"
    TIMEOUT = "timeout"
    ERROR = "error"
