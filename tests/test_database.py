#!/usr/bin/env python3
"""Integration tests for the PostgreSQL repositories.

Tests cover:
    - Schema bootstrap
    - Conversation replace, ordering and ownership scoping
    - Concurrent first saves and rollback of a failed save
    - Search and stats queries
    - Provision claims serialized per owner

BEST PRACTICES FOR TEST ISOLATION:
    1. Every test creates its own 'test-' prefixed user
    2. The user is deleted afterwards; rows cascade with it
    3. DATABASE_URL loaded from .env for local dev
    4. CI/CD should set DATABASE_URL explicitly or skip these tests

NOTE: Requires a running PostgreSQL instance.
"""
import asyncio
import os
from uuid import uuid4

import pytest
import pytest_asyncio
from dotenv import load_dotenv

from lisa.agents.adapters.postgres_agent_repo import PostgresAgentRepository
from lisa.conversations.entities import Message, MessageType, SearchFilters
from lisa.conversations.postgres_repo import PostgresConversationRepository
from lisa.core.database import apply_schema, close_pool, create_pool
from lisa.core.exceptions import ConflictError, PersistenceError

load_dotenv()

pytestmark = [
    pytest.mark.integration,
    pytest.mark.skipif(not os.getenv("DATABASE_URL"), reason="DATABASE_URL not set"),
]


# ============================================
# Fixtures
# ============================================

@pytest_asyncio.fixture
async def db_pool():
    """Create a connection pool and make sure the schema exists."""
    pool = await create_pool(os.getenv("DATABASE_URL"), min_size=1, max_size=5)
    await apply_schema(pool)
    yield pool
    await close_pool(pool)


@pytest_asyncio.fixture
async def user_id(db_pool):
    """Insert a throwaway user and delete it (with its rows) afterwards."""
    username = f"test-{uuid4().hex[:12]}"
    async with db_pool.acquire() as conn:
        uid = await conn.fetchval(
            "INSERT INTO users (username) VALUES ($1) RETURNING id", username
        )
    yield uid
    async with db_pool.acquire() as conn:
        await conn.execute("DELETE FROM users WHERE id = $1", uid)


def _messages(*pairs):
    return [Message(role=role, content=content) for role, content in pairs]


# ============================================
# Conversation Repository
# ============================================

class TestConversationRepository:
    """Test PostgresConversationRepository against a real database."""

    @pytest.mark.asyncio
    async def test_replace_and_get_keep_order(self, db_pool, user_id):
        repo = PostgresConversationRepository(db_pool)
        messages = _messages(("user", "hi"), ("assistant", "hello"), ("user", "thanks"))
        messages[1].attachment = {"name": "Brake caliper"}

        await repo.replace(user_id, "thread-1", "Brakes", messages)
        conversation = await repo.get(user_id, "thread-1")

        assert [m.content for m in conversation.messages] == ["hi", "hello", "thanks"]
        assert conversation.messages[1].attachment == {"name": "Brake caliper"}
        assert conversation.message_count == 3
        assert conversation.username.startswith("test-")

    @pytest.mark.asyncio
    async def test_replace_overwrites_messages(self, db_pool, user_id):
        repo = PostgresConversationRepository(db_pool)
        await repo.replace(user_id, "thread-1", "Brakes", _messages(("user", "a"), ("user", "b")))

        await repo.replace(user_id, "thread-1", "Brakes", _messages(("user", "c")))
        conversation = await repo.get(user_id, "thread-1")

        assert [m.content for m in conversation.messages] == ["c"]
        async with db_pool.acquire() as conn:
            count = await conn.fetchval(
                "SELECT COUNT(*) FROM conversation_messages WHERE conversation_id = $1",
                conversation.id,
            )
        assert count == 1

    @pytest.mark.asyncio
    async def test_scoped_to_owner(self, db_pool, user_id):
        repo = PostgresConversationRepository(db_pool)
        await repo.replace(user_id, "thread-1", "Brakes", [])

        assert await repo.get(user_id + 100000, "thread-1") is None
        assert await repo.delete(user_id + 100000, "thread-1") is False
        assert await repo.delete(user_id, "thread-1") is True

    @pytest.mark.asyncio
    async def test_list_preview(self, db_pool, user_id):
        repo = PostgresConversationRepository(db_pool)
        await repo.replace(user_id, "thread-1", "Brakes", _messages(("user", "a"), ("assistant", "b")))
        await repo.replace(user_id, "thread-2", "Empty", [])

        summaries = await repo.list_summaries(user_id, 10, 0)

        previews = {s.thread_id: s.last_message for s in summaries}
        assert previews == {"thread-1": "b", "thread-2": "No messages"}

    @pytest.mark.asyncio
    async def test_search_and_stats(self, db_pool, user_id):
        repo = PostgresConversationRepository(db_pool)
        await repo.replace(
            user_id, "thread-1", "Brakes",
            _messages(("user", "caliper 100% worn"), ("assistant", "replace it")),
        )

        hits = await repo.search(user_id, "100%", SearchFilters(), 50)
        stats = await repo.stats(user_id)

        assert [h.content for h in hits] == ["caliper 100% worn"]
        assert hits[0].content_match
        assert stats.total_conversations == 1
        assert stats.total_messages == 2

    @pytest.mark.asyncio
    async def test_concurrent_first_saves_share_one_conversation(self, db_pool, user_id):
        repo = PostgresConversationRepository(db_pool)

        first, second = await asyncio.gather(
            repo.replace(user_id, "thread-1", "A", _messages(("user", "a"))),
            repo.replace(user_id, "thread-1", "B", _messages(("user", "b"), ("assistant", "c"))),
        )
        conversation = await repo.get(user_id, "thread-1")

        assert first.id == second.id == conversation.id
        assert conversation.message_count == len(conversation.messages)
        async with db_pool.acquire() as conn:
            count = await conn.fetchval(
                "SELECT COUNT(*) FROM conversations WHERE user_id = $1", user_id
            )
        assert count == 1

    @pytest.mark.asyncio
    async def test_failed_insert_keeps_previous_messages(self, db_pool, user_id):
        repo = PostgresConversationRepository(db_pool)
        await repo.replace(
            user_id, "thread-1", "Brakes", _messages(("user", "hi"), ("assistant", "hello"))
        )
        messages = _messages(("user", "new"), ("assistant", "reply"))
        messages[1].assistant_type = "x" * 21

        with pytest.raises(PersistenceError):
            await repo.replace(user_id, "thread-1", "Changed", messages)

        conversation = await repo.get(user_id, "thread-1")
        assert conversation.title == "Brakes"
        assert [m.content for m in conversation.messages] == ["hi", "hello"]
        assert conversation.message_count == 2

    @pytest.mark.asyncio
    async def test_failed_first_save_creates_nothing(self, db_pool, user_id):
        repo = PostgresConversationRepository(db_pool)
        messages = _messages(("user", "new"))
        messages[0].assistant_type = "x" * 21

        with pytest.raises(PersistenceError):
            await repo.replace(user_id, "thread-1", "Brakes", messages)

        assert await repo.get(user_id, "thread-1") is None

    @pytest.mark.asyncio
    async def test_images_search_needs_text_and_attachment_on_one_message(
        self, db_pool, user_id
    ):
        repo = PostgresConversationRepository(db_pool)
        part = {"name": "Brake caliper"}
        matching = _messages(("user", "caliper?"), ("assistant", "See the schematic"))
        matching[1].attachment = part
        split = _messages(("user", "door schematic please"), ("assistant", "Here is the seal"))
        split[1].attachment = part
        await repo.replace(user_id, "thread-1", "Brakes", matching)
        await repo.replace(user_id, "thread-2", "Doors", split)
        await repo.replace(user_id, "thread-3", "Wheels", _messages(("user", "wheel schematic")))

        hits = await repo.search(
            user_id, "schematic", SearchFilters(message_type=MessageType.IMAGES), 50
        )

        assert [(h.thread_id, h.content) for h in hits] == [("thread-1", "See the schematic")]


# ============================================
# Agent Repository
# ============================================

class TestAgentRepository:
    """Test provision claims against the partial unique index."""

    @pytest.mark.asyncio
    async def test_second_claim_conflicts(self, db_pool, user_id):
        repo = PostgresAgentRepository(db_pool)
        record = await repo.claim_provision(user_id)

        with pytest.raises(ConflictError):
            await repo.claim_provision(user_id)

        await repo.fail_provision(record.id, "test")
        retry = await repo.claim_provision(user_id)
        assert retry.id != record.id
