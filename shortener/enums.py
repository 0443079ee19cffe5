"""Shared enums for the URL shortener application.

This module defines all status and state enums used across the codebase.
Using enums instead of string literals provides type safety and prevents typos.
"""

from enum import StrEnum

__all__ = ["HealthStatus", "LinkStoreBackend", "RequestStatus", "Role"]


class HealthStatus(StrEnum):
    """Health check status values."""

    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"

    @classmethod
    def from_str(cls, value: str) -> "HealthStatus":
        """Safely parse from string, falling back to UNHEALTHY for unknown values."""
        try:
            return cls(value)
        except ValueError:
            return cls.UNHEALTHY


class Role(StrEnum):
    """Roles a principal can hold."""

    USER = "User"
    ADMIN = "Admin"

    @classmethod
    def from_str(cls, value: str) -> "Role":
        """Safely parse from string, falling back to USER for unknown values."""
        try:
            return cls(value)
        except ValueError:
            return cls.USER


class LinkStoreBackend(StrEnum):
    """Storage backends a link store can be built on."""

    SQL = "sql"
    REDIS = "redis"
    MEMORY = "memory"


class RequestStatus(StrEnum):
    """Request status values for metrics and logging."""

    SUCCESS = "success"
    VALIDATION_ERROR = "validation_error"
    DUPLICATE = "duplicate"
    FORBIDDEN = "forbidden"
    NOT_FOUND = "not_found"
    UNAVAILABLE = "unavailable"
    ERROR = "error"

    @classmethod
    def from_str(cls, value: str) -> "RequestStatus":
        """Safely parse from string, falling back to ERROR for unknown values."""
        try:
            return cls(value)
        except ValueError:
            return cls.ERROR
