"""
Port interface for conversation persistence.

Every method is scoped by user id; a row that belongs to another user is
indistinguishable from a missing one.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Optional

from .entities import (
    Conversation,
    ConversationStats,
    ConversationSummary,
    Message,
    SearchFilters,
    SearchHit,
)


class IConversationRepository(ABC):
    """Persistence of conversations and their messages."""

    @abstractmethod
    async def replace(
        self,
        user_id: int,
        thread_id: str,
        title: str,
        messages: list[Message],
    ) -> Conversation:
        """Create or fully replace a conversation in one transaction.

        If any message fails to insert nothing is changed.
        """
        pass

    @abstractmethod
    async def get(self, user_id: int, thread_id: str) -> Optional[Conversation]:
        """Get a conversation with its messages in order."""
        pass

    @abstractmethod
    async def delete(self, user_id: int, thread_id: str) -> bool:
        """Delete a conversation and its messages. Returns False if absent."""
        pass

    @abstractmethod
    async def list_summaries(
        self, user_id: int, limit: int, offset: int
    ) -> list[ConversationSummary]:
        """List conversations, most recently updated first."""
        pass

    @abstractmethod
    async def search(
        self,
        user_id: int,
        text: str,
        filters: SearchFilters,
        limit: int,
    ) -> list[SearchHit]:
        """Return matching message rows in result order."""
        pass

    @abstractmethod
    async def stats(self, user_id: int, recent_days: int = 30) -> ConversationStats:
        pass
