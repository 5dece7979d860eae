"""In-memory conversation repository shared by the conversation tests."""

from dataclasses import replace
from datetime import datetime, timedelta, timezone
from itertools import count
from typing import Optional
from unittest.mock import AsyncMock

import pytest

from lisa.conversations.entities import (
    SCHEMATIC_KEYWORDS,
    Conversation,
    ConversationStats,
    ConversationSummary,
    DailyActivity,
    MessageType,
    SearchHit,
    SortOrder,
)
from lisa.conversations.ports import IConversationRepository
from lisa.conversations.store import ConversationStore
from lisa.core.context import UserContext
from lisa.core.exceptions import PersistenceError


class MockConversationRepository(IConversationRepository):
    """Mock implementation of IConversationRepository for testing.

    Conversations are keyed by (user_id, thread_id). ``fail_on_message``
    makes replace fail when it reaches that message position, after which
    the stored state must be unchanged.
    """

    def __init__(self):
        self._ids = count(1)
        self.conversations: dict[tuple[int, str], Conversation] = {}
        self.usernames: dict[int, str] = {}
        self.fail_on_message: Optional[int] = None

    async def replace(self, user_id, thread_id, title, messages):
        now = datetime.now(timezone.utc)
        stored = []
        for position, message in enumerate(messages):
            if self.fail_on_message == position:
                raise PersistenceError(f"insert of message {position} failed")
            stored.append(replace(message, position=position, created_at=now))

        existing = self.conversations.get((user_id, thread_id))
        conversation = Conversation(
            id=existing.id if existing else next(self._ids),
            user_id=user_id,
            thread_id=thread_id,
            title=title,
            username=self.usernames.get(user_id),
            message_count=len(stored),
            messages=stored,
            created_at=existing.created_at if existing else now,
            updated_at=now,
        )
        self.conversations[(user_id, thread_id)] = conversation
        return replace(conversation, messages=list(stored))

    async def get(self, user_id, thread_id):
        conversation = self.conversations.get((user_id, thread_id))
        if conversation is None:
            return None
        return replace(
            conversation,
            messages=sorted(conversation.messages, key=lambda m: (m.created_at, m.position)),
        )

    async def delete(self, user_id, thread_id):
        return self.conversations.pop((user_id, thread_id), None) is not None

    def _owned(self, user_id):
        return sorted(
            (c for (owner, _), c in self.conversations.items() if owner == user_id),
            key=lambda c: c.updated_at,
            reverse=True,
        )

    async def list_summaries(self, user_id, limit, offset):
        summaries = []
        for c in self._owned(user_id)[offset:offset + limit]:
            summary = ConversationSummary(
                thread_id=c.thread_id,
                title=c.title,
                message_count=c.message_count,
                created_at=c.created_at,
                updated_at=c.updated_at,
                last_message_at=c.created_at,
            )
            if c.messages:
                summary.last_message = c.messages[-1].content
                summary.last_message_at = c.messages[-1].created_at
            summaries.append(summary)
        return summaries

    async def search(self, user_id, text, filters, limit):
        needle = text.lower()
        cutoff = None
        if filters.date_range.days:
            cutoff = datetime.now(timezone.utc) - timedelta(days=filters.date_range.days)

        hits = []
        for c in self._owned(user_id):
            if cutoff and c.updated_at < cutoff:
                continue
            for m in c.messages:
                content_match = needle in m.content.lower()
                if not (content_match or needle in c.title.lower()):
                    continue
                if filters.message_type in (MessageType.USER, MessageType.ASSISTANT):
                    if m.role.value != filters.message_type.value:
                        continue
                elif filters.message_type == MessageType.IMAGES:
                    if m.attachment is None:
                        continue
                elif filters.message_type == MessageType.SCHEMATICS:
                    if not any(k in m.content.lower() for k in SCHEMATIC_KEYWORDS):
                        continue
                hits.append(
                    SearchHit(
                        thread_id=c.thread_id,
                        title=c.title,
                        updated_at=c.updated_at,
                        message_count=c.message_count,
                        role=m.role,
                        content=m.content,
                        created_at=m.created_at,
                        content_match=content_match,
                    )
                )
        if filters.sort == SortOrder.OLDEST:
            hits.sort(key=lambda h: h.updated_at)
        elif filters.sort == SortOrder.LENGTH:
            hits.sort(key=lambda h: len(h.content), reverse=True)
        return hits[:limit]

    async def stats(self, user_id, recent_days=30):
        owned = self._owned(user_id)
        if not owned:
            return ConversationStats()
        total_messages = sum(c.message_count for c in owned)
        by_day: dict = {}
        for c in owned:
            by_day[c.created_at.date()] = by_day.get(c.created_at.date(), 0) + 1
        return ConversationStats(
            total_conversations=len(owned),
            total_messages=total_messages,
            avg_messages_per_conversation=round(total_messages / len(owned), 2),
            first_conversation_at=min(c.created_at for c in owned),
            last_activity_at=max(c.updated_at for c in owned),
            recent_activity=[DailyActivity(day=d, conversations_created=n) for d, n in by_day.items()],
        )


# ============================================
# Fixtures
# ============================================


@pytest.fixture
def conversation_repo():
    return MockConversationRepository()


@pytest.fixture
def activity():
    sink = AsyncMock()
    sink.record = AsyncMock()
    return sink


@pytest.fixture
def store(conversation_repo, activity):
    return ConversationStore(conversation_repo, activity_sink=activity)


@pytest.fixture
def alice():
    return UserContext(user_id=1)


@pytest.fixture
def bob():
    return UserContext(user_id=2)

