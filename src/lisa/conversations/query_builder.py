"""Query builder for conversation history search.

Produces a parameterized PostgreSQL query from SearchFilters. Every SQL
fragment comes from a fixed whitelist keyed by enum member; user text only
ever reaches the database as a bound parameter.
"""

import logging
from typing import Any

from .entities import (
    SCHEMATIC_KEYWORDS,
    DateRange,
    MessageType,
    SearchFilters,
    SortOrder,
)

logger = logging.getLogger(__name__)

MAX_SEARCH_LIMIT = 200


# ============================================
# Whitelisted SQL fragments
# ============================================

SELECT_CLAUSE = """SELECT c.thread_id, c.title, c.updated_at, c.message_count,
       cm.role, cm.content, cm.created_at,
       (cm.content ILIKE {text} ESCAPE '\\') AS content_match"""

FROM_CLAUSE = """FROM conversations c
JOIN conversation_messages cm ON cm.conversation_id = c.id"""

ORDER_BY = {
    SortOrder.NEWEST: "ORDER BY c.updated_at DESC, cm.created_at ASC, cm.position ASC",
    SortOrder.OLDEST: "ORDER BY c.updated_at ASC, cm.created_at ASC, cm.position ASC",
    SortOrder.LENGTH: "ORDER BY LENGTH(cm.content) DESC, c.updated_at DESC",
    SortOrder.RELEVANCE: (
        "ORDER BY CASE WHEN c.title ILIKE {text} ESCAPE '\\' THEN 1 ELSE 2 END, "
        "c.updated_at DESC, cm.created_at ASC, cm.position ASC"
    ),
}


class SearchQueryError(Exception):
    """Raised when a search query cannot be built."""

    pass


def escape_like(text: str) -> str:
    """Escape LIKE wildcards so the text matches literally."""
    return text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class SearchQueryBuilder:
    """Builds the grouped-search query for one user.

    Example:
        builder = SearchQueryBuilder()
        sql, params = builder.build_query(7, "schematic", SearchFilters(
            message_type=MessageType.IMAGES,
        ))
        rows = await conn.fetch(sql, *params)
    """

    def __init__(self):
        self.params: list[Any] = []

    def _add_param(self, value: Any) -> str:
        self.params.append(value)
        return f"${len(self.params)}"

    def build_query(
        self,
        user_id: int,
        text: str,
        filters: SearchFilters,
        limit: int = 50,
    ) -> tuple[str, list[Any]]:
        """Build the search query.

        Returns:
            A tuple of (sql_query, positional_parameters)

        Raises:
            SearchQueryError: If a filter value is outside the whitelist
        """
        self.params = []
        self._validate(filters, limit)

        user_param = self._add_param(user_id)
        text_param = self._add_param(f"%{escape_like(text)}%")

        conditions = [
            f"c.user_id = {user_param}",
            f"(c.title ILIKE {text_param} ESCAPE '\\' "
            f"OR cm.content ILIKE {text_param} ESCAPE '\\')",
        ]
        conditions.extend(self._build_date_conditions(filters.date_range))
        conditions.extend(self._build_type_conditions(filters.message_type))

        query_parts = [
            SELECT_CLAUSE.format(text=text_param),
            FROM_CLAUSE,
            "WHERE " + "\n  AND ".join(conditions),
            ORDER_BY[filters.sort].format(text=text_param),
            f"LIMIT {self._add_param(limit)}",
        ]
        sql = "\n".join(query_parts)

        logger.debug(f"Generated SQL: {sql}")
        logger.debug(f"Parameters: {self.params}")
        return sql, self.params

    def _validate(self, filters: SearchFilters, limit: int) -> None:
        if not isinstance(filters.date_range, DateRange):
            raise SearchQueryError(f"Invalid date range: {filters.date_range!r}")
        if not isinstance(filters.message_type, MessageType):
            raise SearchQueryError(f"Invalid message type: {filters.message_type!r}")
        if filters.sort not in ORDER_BY:
            raise SearchQueryError(f"Invalid sort order: {filters.sort!r}")
        if isinstance(limit, bool) or not isinstance(limit, int):
            raise SearchQueryError(f"Invalid limit: {limit!r}")
        if limit < 1 or limit > MAX_SEARCH_LIMIT:
            raise SearchQueryError(f"Limit must be between 1 and {MAX_SEARCH_LIMIT}")

    def _build_date_conditions(self, date_range: DateRange) -> list[str]:
        if date_range == DateRange.ALL:
            return []
        if date_range == DateRange.TODAY:
            return ["c.updated_at >= CURRENT_DATE"]
        days = self._add_param(date_range.days)
        return [f"c.updated_at >= NOW() - make_interval(days => {days})"]

    def _build_type_conditions(self, message_type: MessageType) -> list[str]:
        if message_type in (MessageType.USER, MessageType.ASSISTANT):
            return [f"cm.role = {self._add_param(message_type.value)}"]
        if message_type == MessageType.IMAGES:
            return ["cm.train_part_data IS NOT NULL"]
        if message_type == MessageType.SCHEMATICS:
            keywords = [
                f"cm.content ILIKE {self._add_param(f'%{keyword}%')}"
                for keyword in SCHEMATIC_KEYWORDS
            ]
            return ["(" + " OR ".join(keywords) + ")"]
        return []
