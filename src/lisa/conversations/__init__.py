"""Conversation Store module.

Atomic save/replace of chat transcripts, history listing, grouped search,
transcript export and per-user statistics.
"""

from .entities import (
    Conversation,
    ConversationStats,
    ConversationSummary,
    DateRange,
    ExportFormat,
    Message,
    MessageRole,
    MessageType,
    SearchFilters,
    SearchResultGroup,
    SortOrder,
)
from .ports import IConversationRepository
from .store import ConversationStore

__all__ = [
    "Conversation",
    "ConversationStats",
    "ConversationStore",
    "ConversationSummary",
    "DateRange",
    "ExportFormat",
    "IConversationRepository",
    "Message",
    "MessageRole",
    "MessageType",
    "SearchFilters",
    "SearchResultGroup",
    "SortOrder",
]
