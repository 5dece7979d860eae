"""
Identity context and activity sink consumed by the core.

Authentication, route guards and activity persistence live outside this
package. Callers hand the core a UserContext; the core reports notable
actions to whatever IActivitySink it was given.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

logger = logging.getLogger(__name__)


# ============================================
# User Context
# ============================================


class UserRole(str, Enum):
    """Role of an authenticated user."""

    USER = "user"
    ADMIN = "admin"


@dataclass(frozen=True)
class UserContext:
    """Authenticated caller identity.

    Attributes:
        user_id: Identifier of the user issuing the request
        role: Role granted by the identity subsystem
        request_id: Optional request ID for tracing
    """

    user_id: int
    role: UserRole = UserRole.USER
    request_id: Optional[str] = None

    def __post_init__(self):
        if self.user_id is None or isinstance(self.user_id, bool):
            raise ValueError("user_id is required")
        if not isinstance(self.role, UserRole):
            object.__setattr__(self, "role", UserRole(self.role))

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN


# ============================================
# Activity Sink
# ============================================


class IActivitySink(ABC):
    """Append-only sink for user and admin activity."""

    @abstractmethod
    async def record(
        self,
        user_id: Optional[int],
        action: str,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        """Append one activity entry."""
        pass


class LoggingActivitySink(IActivitySink):
    """Activity sink that writes entries to the application log."""

    def __init__(self, log: Optional[logging.Logger] = None):
        self._log = log or logger

    async def record(
        self,
        user_id: Optional[int],
        action: str,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        self._log.info(f"activity user={user_id} action={action} details={details or {}}")


async def record_activity(
    sink: Optional[IActivitySink],
    user_id: Optional[int],
    action: str,
    details: Optional[dict[str, Any]] = None,
) -> None:
    """Record activity without letting a sink failure break the operation."""
    if sink is None:
        return
    try:
        await sink.record(user_id, action, details)
    except Exception as e:
        logger.warning(f"Failed to record activity '{action}' for user {user_id}: {e}")
