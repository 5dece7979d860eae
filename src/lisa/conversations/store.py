"""
Conversation Store.

Durable, atomic persistence and retrieval of chat transcripts scoped to the
calling user. The user id always comes from the UserContext, never from the
payload.
"""

from __future__ import annotations

import dataclasses
import json
import logging
from typing import TYPE_CHECKING, Any, Mapping, Optional, Sequence, Union

from pydantic import ValidationError as PydanticValidationError

from ..core.context import IActivitySink, UserContext, record_activity
from ..core.exceptions import NotFoundError, ValidationError
from .entities import (
    MIN_SEARCH_TEXT_LENGTH,
    Conversation,
    ConversationStats,
    ConversationSummary,
    ExportFormat,
    Message,
    SearchFilters,
    SearchResultGroup,
    default_title,
    group_hits,
)
from .ports import IConversationRepository
from .query_builder import MAX_SEARCH_LIMIT
from .schemas import MessagePayload

if TYPE_CHECKING:
    import asyncpg

logger = logging.getLogger(__name__)

MAX_LIST_LIMIT = 100
RECENT_ACTIVITY_DAYS = 30
TEXT_EXPORT_RULE = "=" * 50

MessageInput = Union[Message, Mapping[str, Any]]


class ConversationStore:
    """Per-user chat history.

    Usage:
        store = ConversationStore.from_pool(pool)
        ctx = UserContext(user_id=7)

        await store.save(ctx, "thread-1", "Brakes", [
            {"role": "user", "content": "hi"},
            {"role": "assistant", "content": "hello"},
        ])
        conversation = await store.get(ctx, "thread-1")
        data = await store.export(ctx, "thread-1", "txt")
    """

    def __init__(
        self,
        repository: IConversationRepository,
        activity_sink: Optional[IActivitySink] = None,
    ):
        self.repo = repository
        self.activity = activity_sink

    @classmethod
    def from_pool(
        cls, pool: "asyncpg.Pool", activity_sink: Optional[IActivitySink] = None
    ) -> "ConversationStore":
        from .postgres_repo import PostgresConversationRepository

        return cls(PostgresConversationRepository(pool), activity_sink)

    async def save(
        self,
        context: UserContext,
        thread_id: str,
        title: Optional[str],
        messages: Sequence[MessageInput],
    ) -> Conversation:
        """Replace the conversation's message set with ``messages``.

        Raises:
            ValidationError: If the thread id is blank or a message is invalid
            PersistenceError: If the transaction fails; nothing is changed
        """
        thread_id = self._require_thread_id(thread_id)
        if messages is None or isinstance(messages, (str, bytes, Mapping)) or not isinstance(
            messages, Sequence
        ):
            raise ValidationError("messages must be a list", field="messages")

        parsed = [self._parse_message(m, i) for i, m in enumerate(messages)]
        title = (title or "").strip() or default_title(parsed)

        conversation = await self.repo.replace(context.user_id, thread_id, title, parsed)
        logger.info(
            f"Saved conversation {thread_id} for user {context.user_id} "
            f"({len(parsed)} messages)"
        )
        await record_activity(
            self.activity,
            context.user_id,
            "chat_history_save",
            {"thread_id": thread_id, "message_count": len(parsed)},
        )
        return conversation

    async def get(self, context: UserContext, thread_id: str) -> Conversation:
        """
        Raises:
            NotFoundError: If the caller has no conversation with this thread id
        """
        thread_id = self._require_thread_id(thread_id)
        conversation = await self.repo.get(context.user_id, thread_id)
        if conversation is None:
            raise NotFoundError("Conversation", thread_id)
        return conversation

    async def delete(self, context: UserContext, thread_id: str) -> None:
        thread_id = self._require_thread_id(thread_id)
        if not await self.repo.delete(context.user_id, thread_id):
            raise NotFoundError("Conversation", thread_id)
        logger.info(f"Deleted conversation {thread_id} of user {context.user_id}")
        await record_activity(
            self.activity, context.user_id, "chat_history_delete", {"thread_id": thread_id}
        )

    async def list_for_user(
        self, context: UserContext, limit: int = 20, offset: int = 0
    ) -> list[ConversationSummary]:
        if limit < 1 or limit > MAX_LIST_LIMIT:
            raise ValidationError(
                f"limit must be between 1 and {MAX_LIST_LIMIT}", field="limit"
            )
        if offset < 0:
            raise ValidationError("offset cannot be negative", field="offset")
        return await self.repo.list_summaries(context.user_id, limit, offset)

    async def search(
        self,
        context: UserContext,
        text: str,
        filters: Optional[SearchFilters] = None,
        limit: int = 50,
    ) -> list[SearchResultGroup]:
        """Search titles and message contents, grouped by conversation.

        Raises:
            ValidationError: If the text is shorter than two characters or
                the limit is out of range
        """
        text = (text or "").strip()
        if len(text) < MIN_SEARCH_TEXT_LENGTH:
            raise ValidationError(
                f"Search text must be at least {MIN_SEARCH_TEXT_LENGTH} characters",
                field="text",
            )
        if limit < 1 or limit > MAX_SEARCH_LIMIT:
            raise ValidationError(
                f"limit must be between 1 and {MAX_SEARCH_LIMIT}", field="limit"
            )
        filters = filters or SearchFilters()

        hits = await self.repo.search(context.user_id, text, filters, limit)
        groups = group_hits(hits)
        await record_activity(
            self.activity,
            context.user_id,
            "search_chat_history",
            {"text": text, "results": len(groups)},
        )
        return groups

    async def export(
        self,
        context: UserContext,
        thread_id: str,
        format: Union[str, ExportFormat] = ExportFormat.JSON,
    ) -> bytes:
        """Render a transcript as UTF-8 bytes.

        Raises:
            ValidationError: If the format is not supported
            NotFoundError: If the caller has no conversation with this thread id
        """
        export_format = ExportFormat.parse(format)
        conversation = await self.get(context, thread_id)

        if export_format == ExportFormat.JSON:
            body = render_json(conversation)
        else:
            body = render_text(conversation)

        await record_activity(
            self.activity,
            context.user_id,
            "chat_export",
            {"thread_id": conversation.thread_id, "format": export_format.value},
        )
        return body.encode("utf-8")

    async def stats(self, context: UserContext) -> ConversationStats:
        return await self.repo.stats(context.user_id, RECENT_ACTIVITY_DAYS)

    @staticmethod
    def _require_thread_id(thread_id: Any) -> str:
        if not isinstance(thread_id, str) or not thread_id.strip():
            raise ValidationError("thread_id is required", field="thread_id")
        return thread_id.strip()

    @staticmethod
    def _parse_message(raw: MessageInput, position: int) -> Message:
        if isinstance(raw, Message):
            return dataclasses.replace(raw, position=position)
        if not isinstance(raw, Mapping):
            raise ValidationError(
                f"Message {position + 1} must be an object", field="messages"
            )
        try:
            return MessagePayload.model_validate(dict(raw)).to_message(position)
        except PydanticValidationError as e:
            error = e.errors()[0]
            location = ".".join(str(part) for part in error["loc"])
            raise ValidationError(
                f"Message {position + 1} is invalid: {location}: {error['msg']}",
                field=location or "messages",
                cause=e,
            ) from e


# ============================================
# Export Rendering
# ============================================


def render_json(conversation: Conversation) -> str:
    data = {
        "conversation": conversation.to_dict(include_messages=False),
        "messages": [m.to_dict() for m in conversation.messages],
    }
    return json.dumps(data, indent=2, default=str)


def render_text(conversation: Conversation) -> str:
    created = conversation.created_at.isoformat() if conversation.created_at else ""
    lines = [
        f"Conversation: {conversation.title}",
        f"User: {conversation.username or conversation.user_id}",
        f"Created: {created}",
        f"Messages: {conversation.message_count}",
        "",
        TEXT_EXPORT_RULE,
        "",
    ]
    for message in conversation.messages:
        stamp = message.created_at.isoformat() if message.created_at else ""
        lines.append(f"[{stamp}] {message.role.value.upper()}:")
        lines.append(message.content)
        lines.append("")
    return "\n".join(lines) + "\n"
