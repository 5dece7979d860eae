"""
Domain entities for the Conversation Store.

Conversations are chat transcripts scoped to one user and addressed by an
opaque thread id. Messages carry an optional attachment (the train part a
reply refers to) stored as serialized JSON text.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any, Mapping, Optional

from ..core.exceptions import ValidationError

logger = logging.getLogger(__name__)

DEFAULT_TITLE = "New conversation"
TITLE_FROM_MESSAGE_LENGTH = 50
SNIPPET_LENGTH = 200
SNIPPET_ELLIPSIS = "..."
MIN_SEARCH_TEXT_LENGTH = 2
NO_MESSAGES_PREVIEW = "No messages"


# ============================================
# Enums
# ============================================


class MessageRole(str, Enum):
    """Author of a message."""

    USER = "user"
    ASSISTANT = "assistant"


class DateRange(str, Enum):
    """Window on conversation updated_at used by search."""

    ALL = "all"
    TODAY = "today"
    WEEK = "week"
    MONTH = "month"
    QUARTER = "quarter"
    YEAR = "year"

    @property
    def days(self) -> Optional[int]:
        """Window length in days; None for ALL and TODAY."""
        return _DATE_RANGE_DAYS.get(self)


_DATE_RANGE_DAYS = {
    DateRange.WEEK: 7,
    DateRange.MONTH: 30,
    DateRange.QUARTER: 90,
    DateRange.YEAR: 365,
}


class MessageType(str, Enum):
    """Which messages count as a search hit."""

    ALL = "all"
    USER = "user"
    ASSISTANT = "assistant"
    IMAGES = "images"
    SCHEMATICS = "schematics"


SCHEMATIC_KEYWORDS = ("schematic", "diagram", "blueprint", "wiring")


class SortOrder(str, Enum):
    """Ordering of search hits."""

    NEWEST = "newest"
    OLDEST = "oldest"
    LENGTH = "length"
    RELEVANCE = "relevance"


class ExportFormat(str, Enum):
    """Transcript export formats."""

    JSON = "json"
    TEXT = "text"

    @classmethod
    def parse(cls, value: Any) -> "ExportFormat":
        """Parse a format name; ``txt`` is accepted for TEXT.

        Raises:
            ValidationError: If the format is not supported
        """
        if isinstance(value, ExportFormat):
            return value
        name = str(value or "").strip().lower()
        if name == "txt":
            return cls.TEXT
        try:
            return cls(name)
        except ValueError:
            raise ValidationError(
                f"Unsupported export format: {value!r}", field="format"
            ) from None


# ============================================
# Attachments
# ============================================


def encode_attachment(value: Any) -> Optional[str]:
    """Serialize an attachment for storage. Strings are stored as given."""
    if value is None:
        return None
    if isinstance(value, str):
        return value
    return json.dumps(value)


def decode_attachment(raw: Optional[str]) -> Optional[Any]:
    """Parse a stored attachment; payloads that do not parse are dropped."""
    if raw is None:
        return None
    try:
        return json.loads(raw)
    except (TypeError, ValueError) as e:
        logger.warning(f"Dropping unparseable attachment: {e}")
        return None


# ============================================
# Conversations and Messages
# ============================================


@dataclass
class Message:
    """One message of a conversation.

    Attributes:
        role: Author of the message
        content: Message text
        attachment: Parsed attachment payload, if any
        assistant_type: Assistant variant that produced the reply
        position: 0-based index within the saved message list
        created_at: Insert timestamp
    """

    role: MessageRole
    content: str
    attachment: Optional[Any] = None
    assistant_type: Optional[str] = None
    position: int = 0
    created_at: Optional[datetime] = None

    def __post_init__(self):
        if not isinstance(self.role, MessageRole):
            try:
                self.role = MessageRole(self.role)
            except ValueError:
                raise ValidationError(
                    f"Invalid message role: {self.role!r}", field="role"
                ) from None
        if not isinstance(self.content, str):
            raise ValidationError("Message content must be text", field="content")

    @property
    def has_attachment(self) -> bool:
        return self.attachment is not None

    def to_dict(self) -> dict[str, Any]:
        return {
            "role": self.role.value,
            "content": self.content,
            "attachment": self.attachment,
            "assistant_type": self.assistant_type,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


@dataclass
class Conversation:
    """A chat transcript owned by one user."""

    user_id: int
    thread_id: str
    title: str = ""
    id: Optional[int] = None
    username: Optional[str] = None
    message_count: int = 0
    messages: list[Message] = field(default_factory=list)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def to_dict(self, include_messages: bool = True) -> dict[str, Any]:
        data = {
            "thread_id": self.thread_id,
            "title": self.title,
            "username": self.username,
            "message_count": self.message_count,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
        if include_messages:
            data["messages"] = [m.to_dict() for m in self.messages]
        return data


def default_title(messages: list[Message]) -> str:
    """Title for a conversation saved without one."""
    for message in messages:
        if message.role == MessageRole.USER and message.content.strip():
            return message.content.strip()[:TITLE_FROM_MESSAGE_LENGTH]
    return DEFAULT_TITLE


@dataclass
class ConversationSummary:
    """A row of a user's conversation history."""

    thread_id: str
    title: str
    message_count: int
    created_at: Optional[datetime]
    updated_at: Optional[datetime]
    last_message: str = NO_MESSAGES_PREVIEW
    last_message_at: Optional[datetime] = None


# ============================================
# Search
# ============================================


@dataclass(frozen=True)
class SearchFilters:
    """Filters applied to a conversation search."""

    date_range: DateRange = DateRange.ALL
    message_type: MessageType = MessageType.ALL
    sort: SortOrder = SortOrder.NEWEST

    def __post_init__(self):
        for name, enum_cls in (
            ("date_range", DateRange),
            ("message_type", MessageType),
            ("sort", SortOrder),
        ):
            value = getattr(self, name)
            if isinstance(value, enum_cls):
                continue
            try:
                object.__setattr__(self, name, enum_cls(value))
            except ValueError:
                raise ValidationError(
                    f"Invalid {name}: {value!r}", field=name
                ) from None

    @classmethod
    def from_mapping(cls, data: Optional[Mapping[str, Any]]) -> "SearchFilters":
        """Build filters from request parameters (camelCase or snake_case)."""
        data = data or {}
        return cls(
            date_range=data.get("dateRange") or data.get("date_range") or DateRange.ALL,
            message_type=data.get("messageType") or data.get("message_type") or MessageType.ALL,
            sort=data.get("sortBy") or data.get("sort") or SortOrder.NEWEST,
        )


@dataclass
class SearchHit:
    """One matching row returned by the repository."""

    thread_id: str
    title: str
    updated_at: Optional[datetime]
    message_count: int
    role: MessageRole
    content: str
    created_at: Optional[datetime]
    content_match: bool = True


@dataclass
class MatchingMessage:
    role: MessageRole
    snippet: str
    created_at: Optional[datetime]


def make_snippet(content: str, length: int = SNIPPET_LENGTH) -> str:
    if len(content) <= length:
        return content
    return content[:length] + SNIPPET_ELLIPSIS


@dataclass
class SearchResultGroup:
    """Search hits of one conversation."""

    thread_id: str
    title: str
    updated_at: Optional[datetime]
    message_count: int
    matching_messages: list[MatchingMessage] = field(default_factory=list)


def group_hits(hits: list[SearchHit]) -> list[SearchResultGroup]:
    """Group hits by thread, keeping the order in which threads first appear."""
    groups: dict[str, SearchResultGroup] = {}
    for hit in hits:
        group = groups.get(hit.thread_id)
        if group is None:
            group = groups[hit.thread_id] = SearchResultGroup(
                thread_id=hit.thread_id,
                title=hit.title,
                updated_at=hit.updated_at,
                message_count=hit.message_count,
            )
        if hit.content_match:
            group.matching_messages.append(
                MatchingMessage(
                    role=hit.role,
                    snippet=make_snippet(hit.content),
                    created_at=hit.created_at,
                )
            )
    return list(groups.values())


# ============================================
# Statistics
# ============================================


@dataclass
class DailyActivity:
    day: date
    conversations_created: int


@dataclass
class ConversationStats:
    """Aggregate history numbers for one user."""

    total_conversations: int = 0
    total_messages: int = 0
    avg_messages_per_conversation: float = 0.0
    first_conversation_at: Optional[datetime] = None
    last_activity_at: Optional[datetime] = None
    recent_activity: list[DailyActivity] = field(default_factory=list)
