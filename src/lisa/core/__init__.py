"""Shared infrastructure: errors, database helpers, resilience and caller context."""

from .context import IActivitySink, LoggingActivitySink, UserContext, UserRole
from .exceptions import (
    ConfigurationError,
    ConflictError,
    LisaError,
    NotFoundError,
    PersistenceError,
    RemoteProviderError,
    ValidationError,
)

__all__ = [
    "ConfigurationError",
    "ConflictError",
    "IActivitySink",
    "LisaError",
    "LoggingActivitySink",
    "NotFoundError",
    "PersistenceError",
    "RemoteProviderError",
    "UserContext",
    "UserRole",
    "ValidationError",
]
