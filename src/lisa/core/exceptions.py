#!/usr/bin/env python3
"""Exception Hierarchy for the Lisa assistant core.

Every operation of the agent orchestrator and the conversation store either
returns a result or raises one of the errors below. Handlers outside the core
translate them into external responses.

Design Principles:
    - All exceptions inherit from LisaError
    - Exceptions preserve context (original error, timestamp, details)
    - Exceptions are categorized by recoverability
    - Ownership-scoped lookups raise NotFoundError, never a "forbidden" error

Exception Hierarchy:
    LisaError (base)
    ├── ConfigurationError (unrecoverable - fix config)
    ├── ValidationError (malformed or missing input)
    ├── NotFoundError (no record scoped to the caller)
    ├── ConflictError (duplicate key, referenced resource)
    ├── RemoteProviderError (assistant provider call failed)
    │   ├── RemoteTimeoutError
    │   └── RemoteUnavailableError
    ├── PersistenceError (may be recoverable)
    │   ├── ConnectionPoolError
    │   ├── TransactionError
    │   └── IntegrityError
    └── CircuitOpenError
"""
from datetime import datetime, timezone
from typing import Any, Optional

# ============================================
# Base Exception
# ============================================

class LisaError(Exception):
    """Base exception for all Lisa core errors.

    Attributes:
        message: Human-readable error description
        code: Machine-readable error code (e.g., "NOT_FOUND")
        details: Additional context as a dictionary
        timestamp: When the error occurred
        cause: The original exception that caused this error
        recoverable: Whether this error might be recoverable with retry
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
        cause: Optional[Exception] = None,
        recoverable: bool = False,
    ):
        super().__init__(message)
        self.message = message
        self.code = code or self.__class__.__name__.upper()
        self.details = details or {}
        self.timestamp = datetime.now(timezone.utc)
        self.cause = cause
        self.recoverable = recoverable

        if cause:
            self.__cause__ = cause

    def __str__(self) -> str:
        parts = [self.message]
        if self.code:
            parts.insert(0, f"[{self.code}]")
        if self.details:
            detail_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            parts.append(f"({detail_str})")
        return " ".join(parts)

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}("
            f"message={self.message!r}, "
            f"code={self.code!r}, "
            f"details={self.details!r}, "
            f"recoverable={self.recoverable})"
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to dictionary for logging/serialization."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "code": self.code,
            "details": self.details,
            "timestamp": self.timestamp.isoformat(),
            "recoverable": self.recoverable,
            "cause": str(self.cause) if self.cause else None,
        }


# ============================================
# Configuration Errors (Unrecoverable)
# ============================================

class ConfigurationError(LisaError):
    """Raised when configuration is missing or invalid."""

    def __init__(
        self,
        message: str,
        missing_keys: Optional[list[str]] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if missing_keys:
            details["missing_keys"] = missing_keys
        super().__init__(
            message,
            code="CONFIGURATION_ERROR",
            details=details,
            recoverable=False,
            **kwargs,
        )


# ============================================
# Input and Lookup Errors
# ============================================

class ValidationError(LisaError):
    """Raised when an argument is malformed or a required value is missing."""

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if field:
            details["field"] = field
        super().__init__(
            message,
            code="VALIDATION_ERROR",
            details=details,
            recoverable=False,
            **kwargs,
        )
        self.field = field


class NotFoundError(LisaError):
    """Raised when no local record matches an id scoped to the caller."""

    def __init__(
        self,
        resource_type: str,
        resource_id: Optional[Any] = None,
        **kwargs,
    ):
        message = f"{resource_type} not found"
        if resource_id is not None:
            message = f"{resource_type} '{resource_id}' not found"

        details = kwargs.pop("details", {})
        details["resource_type"] = resource_type
        if resource_id is not None:
            details["resource_id"] = resource_id

        super().__init__(
            message,
            code="NOT_FOUND",
            details=details,
            recoverable=False,
            **kwargs,
        )
        self.resource_type = resource_type
        self.resource_id = resource_id


class ConflictError(LisaError):
    """Raised on a duplicate unique key or when a referenced resource blocks deletion."""

    def __init__(
        self,
        message: str,
        resource_type: Optional[str] = None,
        resource_id: Optional[Any] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if resource_type:
            details["resource_type"] = resource_type
        if resource_id is not None:
            details["resource_id"] = resource_id
        super().__init__(
            message,
            code="CONFLICT",
            details=details,
            recoverable=False,
            **kwargs,
        )
        self.resource_type = resource_type
        self.resource_id = resource_id


# ============================================
# Remote Provider Errors
# ============================================

class RemoteProviderError(LisaError):
    """Raised when a call to the assistant provider fails.

    Attributes:
        operation: Provider operation that was attempted (e.g. "create_assistant")
        status_code: HTTP status returned by the provider, if any
    """

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        status_code: Optional[int] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if operation:
            details["operation"] = operation
        if status_code:
            details["status_code"] = status_code

        kwargs.setdefault(
            "recoverable", status_code in (408, 409, 429, 500, 502, 503, 504)
        )
        kwargs.setdefault("code", "REMOTE_PROVIDER_ERROR")

        super().__init__(message, details=details, **kwargs)
        self.operation = operation
        self.status_code = status_code


class RemoteTimeoutError(RemoteProviderError):
    """Raised when a provider call exceeds its deadline."""

    def __init__(
        self,
        message: str = "Provider call timed out",
        timeout_seconds: Optional[float] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if timeout_seconds:
            details["timeout_seconds"] = timeout_seconds
        super().__init__(
            message,
            code="REMOTE_TIMEOUT",
            details=details,
            recoverable=True,
            **kwargs,
        )
        self.timeout_seconds = timeout_seconds


class RemoteUnavailableError(RemoteProviderError):
    """Raised on rate limiting, connection failures and 5xx responses."""

    def __init__(
        self,
        message: str = "Provider unavailable",
        retry_after: Optional[float] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if retry_after:
            details["retry_after_seconds"] = retry_after
        super().__init__(
            message,
            code="REMOTE_UNAVAILABLE",
            details=details,
            recoverable=True,
            **kwargs,
        )
        self.retry_after = retry_after


# ============================================
# Persistence Errors
# ============================================

class PersistenceError(LisaError):
    """Base class for transaction and query failures."""

    def __init__(self, message: str, **kwargs):
        kwargs.setdefault("recoverable", True)
        kwargs.setdefault("code", "PERSISTENCE_ERROR")
        super().__init__(message, **kwargs)


class ConnectionPoolError(PersistenceError):
    """Raised when the connection pool is exhausted or unavailable."""

    def __init__(
        self,
        message: str = "Database connection pool error",
        **kwargs,
    ):
        super().__init__(message, code="CONNECTION_POOL_ERROR", **kwargs)


class TransactionError(PersistenceError):
    """Raised when a database transaction fails."""

    def __init__(
        self,
        message: str = "Database transaction failed",
        operation: Optional[str] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if operation:
            details["operation"] = operation
        super().__init__(
            message,
            code="TRANSACTION_ERROR",
            details=details,
            **kwargs,
        )


class IntegrityError(PersistenceError):
    """Raised when a database integrity constraint is violated."""

    def __init__(
        self,
        message: str = "Database integrity error",
        constraint: Optional[str] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if constraint:
            details["constraint"] = constraint
        super().__init__(
            message,
            code="INTEGRITY_ERROR",
            details=details,
            recoverable=False,
            **kwargs,
        )
        self.constraint = constraint


# ============================================
# Resilience Errors
# ============================================

class CircuitOpenError(LisaError):
    """Raised when the circuit breaker is open and calls are being rejected.

    Attributes:
        reset_at: When the circuit breaker will attempt to close
    """

    def __init__(
        self,
        message: str = "Circuit breaker is open, requests rejected",
        reset_at: Optional[datetime] = None,
        failure_count: int = 0,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if reset_at:
            details["reset_at"] = reset_at.isoformat()
        details["failure_count"] = failure_count

        super().__init__(
            message,
            code="CIRCUIT_OPEN",
            details=details,
            recoverable=True,
            **kwargs,
        )
        self.reset_at = reset_at
        self.failure_count = failure_count


# ============================================
# Exports
# ============================================

__all__ = [
    # Base
    "LisaError",
    # Configuration
    "ConfigurationError",
    # Input / lookup
    "ValidationError",
    "NotFoundError",
    "ConflictError",
    # Remote provider
    "RemoteProviderError",
    "RemoteTimeoutError",
    "RemoteUnavailableError",
    # Persistence
    "PersistenceError",
    "ConnectionPoolError",
    "TransactionError",
    "IntegrityError",
    # Resilience
    "CircuitOpenError",
]
