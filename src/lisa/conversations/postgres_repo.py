"""PostgreSQL repository adapter for conversations.

Implements IConversationRepository over the conversations and
conversation_messages tables. A save deletes and re-inserts the whole
message set inside one database_transaction, so message_count always
matches the stored rows.
"""

import dataclasses
import logging
from typing import TYPE_CHECKING, Optional

from ..core.database import database_connection, database_transaction
from .entities import (
    Conversation,
    ConversationStats,
    ConversationSummary,
    DailyActivity,
    Message,
    MessageRole,
    SearchFilters,
    SearchHit,
    decode_attachment,
    encode_attachment,
)
from .ports import IConversationRepository
from .query_builder import SearchQueryBuilder

if TYPE_CHECKING:
    import asyncpg

logger = logging.getLogger(__name__)


class PostgresConversationRepository(IConversationRepository):
    """PostgreSQL implementation of IConversationRepository."""

    def __init__(self, pool: "asyncpg.Pool"):
        """Initialize the repository.

        Args:
            pool: asyncpg connection pool for database operations
        """
        self.pool = pool

    async def replace(
        self,
        user_id: int,
        thread_id: str,
        title: str,
        messages: list[Message],
    ) -> Conversation:
        stored: list[Message] = []
        async with database_transaction(self.pool) as conn:
            # The upsert row-locks the conversation, so concurrent first
            # saves of one thread serialize instead of violating the key.
            row = await conn.fetchrow(
                """
                INSERT INTO conversations (user_id, thread_id, title, message_count)
                VALUES ($1, $2, $3, $4)
                ON CONFLICT (user_id, thread_id) DO UPDATE
                SET title = EXCLUDED.title,
                    message_count = EXCLUDED.message_count,
                    updated_at = NOW()
                RETURNING id, created_at, updated_at
                """,
                user_id,
                thread_id,
                title,
                len(messages),
            )
            conversation_id = row["id"]
            await conn.execute(
                "DELETE FROM conversation_messages WHERE conversation_id = $1",
                conversation_id,
            )

            for position, message in enumerate(messages):
                created_at = await conn.fetchval(
                    """
                    INSERT INTO conversation_messages (
                        conversation_id, position, role, content,
                        train_part_data, assistant_type
                    ) VALUES ($1, $2, $3, $4, $5, $6)
                    RETURNING created_at
                    """,
                    conversation_id,
                    position,
                    message.role.value,
                    message.content,
                    encode_attachment(message.attachment),
                    message.assistant_type,
                )
                stored.append(
                    dataclasses.replace(message, position=position, created_at=created_at)
                )

        logger.debug(
            f"Replaced conversation {thread_id} of user {user_id} "
            f"with {len(stored)} messages"
        )
        return Conversation(
            id=conversation_id,
            user_id=user_id,
            thread_id=thread_id,
            title=title,
            message_count=len(stored),
            messages=stored,
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    async def get(self, user_id: int, thread_id: str) -> Optional[Conversation]:
        async with database_connection(self.pool) as conn:
            row = await conn.fetchrow(
                """
                SELECT c.id, c.user_id, c.thread_id, c.title, c.message_count,
                       c.created_at, c.updated_at, u.username
                FROM conversations c
                LEFT JOIN users u ON u.id = c.user_id
                WHERE c.user_id = $1 AND c.thread_id = $2
                """,
                user_id,
                thread_id,
            )
            if not row:
                return None

            message_rows = await conn.fetch(
                """
                SELECT position, role, content, train_part_data, assistant_type,
                       created_at
                FROM conversation_messages
                WHERE conversation_id = $1
                ORDER BY created_at ASC, position ASC
                """,
                row["id"],
            )

        return Conversation(
            id=row["id"],
            user_id=row["user_id"],
            thread_id=row["thread_id"],
            title=row["title"],
            username=row["username"],
            message_count=row["message_count"],
            messages=[self._row_to_message(r) for r in message_rows],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    async def delete(self, user_id: int, thread_id: str) -> bool:
        async with database_transaction(self.pool) as conn:
            conversation_id = await conn.fetchval(
                "SELECT id FROM conversations WHERE user_id = $1 AND thread_id = $2",
                user_id,
                thread_id,
            )
            if conversation_id is None:
                return False
            await conn.execute(
                "DELETE FROM conversation_messages WHERE conversation_id = $1",
                conversation_id,
            )
            result = await conn.execute(
                "DELETE FROM conversations WHERE id = $1", conversation_id
            )
        return result == "DELETE 1"

    async def list_summaries(
        self, user_id: int, limit: int, offset: int
    ) -> list[ConversationSummary]:
        async with database_connection(self.pool) as conn:
            rows = await conn.fetch(
                """
                SELECT c.thread_id, c.title, c.message_count, c.created_at, c.updated_at,
                       last.content AS last_message,
                       COALESCE(last.created_at, c.created_at) AS last_message_at
                FROM conversations c
                LEFT JOIN LATERAL (
                    SELECT cm.content, cm.created_at
                    FROM conversation_messages cm
                    WHERE cm.conversation_id = c.id
                    ORDER BY cm.created_at DESC, cm.position DESC
                    LIMIT 1
                ) last ON TRUE
                WHERE c.user_id = $1
                ORDER BY c.updated_at DESC
                LIMIT $2 OFFSET $3
                """,
                user_id,
                limit,
                offset,
            )

        summaries = []
        for row in rows:
            summary = ConversationSummary(
                thread_id=row["thread_id"],
                title=row["title"],
                message_count=row["message_count"],
                created_at=row["created_at"],
                updated_at=row["updated_at"],
                last_message_at=row["last_message_at"],
            )
            if row["last_message"] is not None:
                summary.last_message = row["last_message"]
            summaries.append(summary)
        return summaries

    async def search(
        self,
        user_id: int,
        text: str,
        filters: SearchFilters,
        limit: int,
    ) -> list[SearchHit]:
        sql, params = SearchQueryBuilder().build_query(user_id, text, filters, limit)
        async with database_connection(self.pool) as conn:
            rows = await conn.fetch(sql, *params)

        return [
            SearchHit(
                thread_id=row["thread_id"],
                title=row["title"],
                updated_at=row["updated_at"],
                message_count=row["message_count"],
                role=MessageRole(row["role"]),
                content=row["content"],
                created_at=row["created_at"],
                content_match=bool(row["content_match"]),
            )
            for row in rows
        ]

    async def stats(self, user_id: int, recent_days: int = 30) -> ConversationStats:
        async with database_connection(self.pool) as conn:
            row = await conn.fetchrow(
                """
                SELECT COUNT(*) AS total_conversations,
                       COALESCE(SUM(message_count), 0) AS total_messages,
                       COALESCE(AVG(message_count), 0) AS avg_messages,
                       MIN(created_at) AS first_conversation_at,
                       MAX(updated_at) AS last_activity_at
                FROM conversations
                WHERE user_id = $1
                """,
                user_id,
            )
            daily = await conn.fetch(
                """
                SELECT DATE(created_at) AS day, COUNT(*) AS conversations_created
                FROM conversations
                WHERE user_id = $1
                  AND created_at >= CURRENT_DATE - make_interval(days => $2)
                GROUP BY DATE(created_at)
                ORDER BY day DESC
                """,
                user_id,
                recent_days,
            )

        return ConversationStats(
            total_conversations=row["total_conversations"],
            total_messages=int(row["total_messages"]),
            avg_messages_per_conversation=round(float(row["avg_messages"]), 2),
            first_conversation_at=row["first_conversation_at"],
            last_activity_at=row["last_activity_at"],
            recent_activity=[
                DailyActivity(day=r["day"], conversations_created=r["conversations_created"])
                for r in daily
            ],
        )

    @staticmethod
    def _row_to_message(row) -> Message:
        return Message(
            role=MessageRole(row["role"]),
            content=row["content"],
            attachment=decode_attachment(row["train_part_data"]),
            assistant_type=row["assistant_type"],
            position=row["position"],
            created_at=row["created_at"],
        )
