"""PostgreSQL repository adapter for assistants, knowledge stores and
provisioning records.

This adapter implements IAgentRepository. Multi-row changes (committing a
provision, deleting an assistant together with the user references to it)
run inside a single database_transaction.
"""

import logging
from typing import TYPE_CHECKING, Any, Optional
from uuid import UUID

from ...core.database import database_connection, database_transaction
from ...core.exceptions import ConflictError, IntegrityError, NotFoundError
from ..domain.entities import (
    AgentStatus,
    Assistant,
    AssistantSummary,
    KnowledgeStore,
    ProvisionRecord,
    ProvisionStatus,
    UserAgent,
    UserRecord,
)
from ..domain.ports import IAgentRepository

if TYPE_CHECKING:
    import asyncpg

logger = logging.getLogger(__name__)

# Column name in openai_assistants for each updatable field
_ASSISTANT_COLUMNS = {
    "name": "assistant_name",
    "instructions": "instructions",
    "model": "model",
    "store_id": "vector_store_id",
}

_ASSISTANT_SELECT = """
    SELECT assistant_id, assistant_name, instructions, model, vector_store_id,
           user_id, status, created_at, updated_at
    FROM openai_assistants
"""

_STORE_SELECT = """
    SELECT store_id, store_name, description, user_id, file_count, status,
           created_at, updated_at
    FROM vector_stores
"""

_PROVISION_SELECT = """
    SELECT id, owner_id, status, store_id, assistant_id, error,
           created_at, updated_at
    FROM agent_provisions
"""


class PostgresAgentRepository(IAgentRepository):
    """PostgreSQL implementation of IAgentRepository."""

    def __init__(self, pool: "asyncpg.Pool"):
        """Initialize the repository.

        Args:
            pool: asyncpg connection pool for database operations
        """
        self.pool = pool

    # ============================================
    # Assistants
    # ============================================

    async def get_assistant(self, assistant_id: str) -> Optional[Assistant]:
        async with database_connection(self.pool) as conn:
            row = await conn.fetchrow(
                _ASSISTANT_SELECT + " WHERE assistant_id = $1", assistant_id
            )
        return self._row_to_assistant(row) if row else None

    async def list_assistants(self) -> list[Assistant]:
        async with database_connection(self.pool) as conn:
            rows = await conn.fetch(_ASSISTANT_SELECT + " ORDER BY created_at DESC")
        return [self._row_to_assistant(r) for r in rows]

    async def list_assistant_summaries(self) -> list[AssistantSummary]:
        async with database_connection(self.pool) as conn:
            rows = await conn.fetch(
                """
                SELECT a.assistant_id, a.assistant_name, a.instructions, a.model,
                       a.vector_store_id, a.user_id, a.status,
                       a.created_at, a.updated_at,
                       vs.store_name,
                       COUNT(u.id) AS user_count
                FROM openai_assistants a
                LEFT JOIN vector_stores vs ON vs.store_id = a.vector_store_id
                LEFT JOIN users u ON u.openai_assistant_id = a.assistant_id
                GROUP BY a.assistant_id, vs.store_name
                ORDER BY a.created_at DESC
                """
            )
        return [
            AssistantSummary(
                assistant=self._row_to_assistant(r),
                store_name=r["store_name"],
                user_count=r["user_count"],
            )
            for r in rows
        ]

    async def list_assistants_by_status(self, status: AgentStatus) -> list[Assistant]:
        async with database_connection(self.pool) as conn:
            rows = await conn.fetch(
                _ASSISTANT_SELECT + " WHERE status = $1 ORDER BY updated_at",
                AgentStatus(status).value,
            )
        return [self._row_to_assistant(r) for r in rows]

    async def insert_assistant(self, assistant: Assistant) -> Assistant:
        async with database_transaction(self.pool) as conn:
            await self._insert_assistant(conn, assistant)
        return assistant

    async def set_assistant_status(self, assistant_id: str, status: AgentStatus) -> None:
        async with database_transaction(self.pool) as conn:
            result = await conn.execute(
                """
                UPDATE openai_assistants
                SET status = $2, updated_at = NOW()
                WHERE assistant_id = $1
                """,
                assistant_id,
                AgentStatus(status).value,
            )
        if result == "UPDATE 0":
            raise NotFoundError("Assistant", assistant_id)

    async def update_assistant_fields(
        self, assistant_id: str, fields: dict[str, Any]
    ) -> Assistant:
        assignments = []
        values: list[Any] = [assistant_id]
        for name, value in fields.items():
            column = _ASSISTANT_COLUMNS.get(name)
            if column is None:
                raise ValueError(f"Unknown assistant field: {name}")
            values.append(value)
            assignments.append(f"{column} = ${len(values)}")
        assignments.append("status = 'active'")
        assignments.append("updated_at = NOW()")

        async with database_transaction(self.pool) as conn:
            row = await conn.fetchrow(
                f"""
                UPDATE openai_assistants
                SET {", ".join(assignments)}
                WHERE assistant_id = $1
                RETURNING assistant_id, assistant_name, instructions, model,
                          vector_store_id, user_id, status, created_at, updated_at
                """,
                *values,
            )
        if row is None:
            raise NotFoundError("Assistant", assistant_id)
        return self._row_to_assistant(row)

    async def delete_assistant(self, assistant_id: str) -> bool:
        async with database_transaction(self.pool) as conn:
            await conn.execute(
                """
                UPDATE users
                SET openai_assistant_id = NULL, updated_at = NOW()
                WHERE openai_assistant_id = $1
                """,
                assistant_id,
            )
            await conn.execute(
                """
                UPDATE agent_provisions
                SET status = 'released', updated_at = NOW()
                WHERE assistant_id = $1 AND status = 'active'
                """,
                assistant_id,
            )
            result = await conn.execute(
                "DELETE FROM openai_assistants WHERE assistant_id = $1",
                assistant_id,
            )
        return result == "DELETE 1"

    # ============================================
    # Knowledge stores
    # ============================================

    async def get_store(self, store_id: str) -> Optional[KnowledgeStore]:
        async with database_connection(self.pool) as conn:
            row = await conn.fetchrow(_STORE_SELECT + " WHERE store_id = $1", store_id)
        return self._row_to_store(row) if row else None

    async def list_stores(self) -> list[KnowledgeStore]:
        async with database_connection(self.pool) as conn:
            rows = await conn.fetch(_STORE_SELECT + " ORDER BY created_at DESC")
        return [self._row_to_store(r) for r in rows]

    async def insert_store(self, store: KnowledgeStore) -> KnowledgeStore:
        async with database_transaction(self.pool) as conn:
            await self._insert_store(conn, store)
        return store

    async def set_store_file_count(self, store_id: str, file_count: int) -> None:
        async with database_transaction(self.pool) as conn:
            result = await conn.execute(
                """
                UPDATE vector_stores
                SET file_count = $2, updated_at = NOW()
                WHERE store_id = $1
                """,
                store_id,
                file_count,
            )
        if result == "UPDATE 0":
            raise NotFoundError("KnowledgeStore", store_id)

    async def count_assistants_using_store(self, store_id: str) -> int:
        async with database_connection(self.pool) as conn:
            return await conn.fetchval(
                "SELECT COUNT(*) FROM openai_assistants WHERE vector_store_id = $1",
                store_id,
            )

    async def delete_store(self, store_id: str) -> bool:
        async with database_transaction(self.pool) as conn:
            await conn.execute(
                """
                UPDATE users
                SET vector_store_id = NULL, updated_at = NOW()
                WHERE vector_store_id = $1
                """,
                store_id,
            )
            result = await conn.execute(
                "DELETE FROM vector_stores WHERE store_id = $1",
                store_id,
            )
        return result == "DELETE 1"

    # ============================================
    # Users
    # ============================================

    async def get_user(self, user_id: int) -> Optional[UserRecord]:
        async with database_connection(self.pool) as conn:
            row = await conn.fetchrow(
                """
                SELECT id, username, role, status, openai_assistant_id, vector_store_id
                FROM users
                WHERE id = $1
                """,
                user_id,
            )
        if row is None:
            return None
        return UserRecord(
            id=row["id"],
            username=row["username"],
            role=row["role"],
            status=row["status"],
            assistant_ref=row["openai_assistant_id"],
            store_ref=row["vector_store_id"],
        )

    async def get_user_agent(self, user_id: int) -> UserAgent:
        user = await self.get_user(user_id)
        if user is None:
            raise NotFoundError("User", user_id)

        assistant = None
        store = None
        if user.assistant_ref:
            assistant = await self.get_assistant(user.assistant_ref)
        if user.store_ref:
            store = await self.get_store(user.store_ref)
        return UserAgent(user_id=user_id, assistant=assistant, store=store)

    async def set_user_assistant(self, user_id: int, assistant_id: Optional[str]) -> None:
        async with database_transaction(self.pool) as conn:
            result = await conn.execute(
                """
                UPDATE users
                SET openai_assistant_id = $2, updated_at = NOW()
                WHERE id = $1
                """,
                user_id,
                assistant_id,
            )
        if result == "UPDATE 0":
            raise NotFoundError("User", user_id)

    # ============================================
    # Provisioning
    # ============================================

    async def claim_provision(self, owner_id: Optional[int]) -> ProvisionRecord:
        record = ProvisionRecord(owner_id=owner_id)
        try:
            async with database_transaction(self.pool) as conn:
                await conn.execute(
                    """
                    INSERT INTO agent_provisions (id, owner_id, status, created_at, updated_at)
                    VALUES ($1, $2, 'provisioning', NOW(), NOW())
                    """,
                    record.id,
                    owner_id,
                )
        except IntegrityError as e:
            if e.constraint not in ("uq_agent_provisions_owner_live", "unique"):
                raise
            raise ConflictError(
                f"Agent provisioning for user {owner_id} is already in progress or complete",
                resource_type="AgentProvision",
                resource_id=owner_id,
                cause=e,
            )
        return record

    async def record_provision_remote(
        self,
        record_id: UUID,
        store_id: Optional[str] = None,
        assistant_id: Optional[str] = None,
    ) -> None:
        async with database_transaction(self.pool) as conn:
            await conn.execute(
                """
                UPDATE agent_provisions
                SET store_id = COALESCE($2, store_id),
                    assistant_id = COALESCE($3, assistant_id),
                    updated_at = NOW()
                WHERE id = $1
                """,
                record_id,
                store_id,
                assistant_id,
            )

    async def fail_provision(self, record_id: UUID, error: str) -> None:
        async with database_transaction(self.pool) as conn:
            await conn.execute(
                """
                UPDATE agent_provisions
                SET status = 'failed', error = $2, updated_at = NOW()
                WHERE id = $1
                """,
                record_id,
                error[:2000],
            )

    async def commit_provision(
        self,
        record_id: UUID,
        assistant: Assistant,
        store: KnowledgeStore,
    ) -> None:
        async with database_transaction(self.pool) as conn:
            await self._insert_store(conn, store)
            await self._insert_assistant(conn, assistant)

            if assistant.owner_id is not None:
                result = await conn.execute(
                    """
                    UPDATE users
                    SET openai_assistant_id = $1, vector_store_id = $2,
                        updated_at = NOW()
                    WHERE id = $3
                    """,
                    assistant.id,
                    store.id,
                    assistant.owner_id,
                )
                if result == "UPDATE 0":
                    raise NotFoundError("User", assistant.owner_id)

            await conn.execute(
                """
                UPDATE agent_provisions
                SET status = 'active', store_id = $2, assistant_id = $3,
                    error = NULL, updated_at = NOW()
                WHERE id = $1
                """,
                record_id,
                store.id,
                assistant.id,
            )

    async def list_reconcilable_provisions(
        self, stale_after_seconds: float
    ) -> list[ProvisionRecord]:
        async with database_connection(self.pool) as conn:
            rows = await conn.fetch(
                _PROVISION_SELECT
                + """
                WHERE status = 'failed'
                   OR (status = 'provisioning'
                       AND updated_at < NOW() - make_interval(secs => $1))
                ORDER BY created_at
                """,
                float(stale_after_seconds),
            )
        return [self._row_to_provision(r) for r in rows]

    async def abandon_provision(self, record_id: UUID) -> None:
        async with database_transaction(self.pool) as conn:
            await conn.execute(
                """
                UPDATE agent_provisions
                SET status = 'abandoned', updated_at = NOW()
                WHERE id = $1
                """,
                record_id,
            )

    # ============================================
    # Helpers
    # ============================================

    @staticmethod
    async def _insert_assistant(conn, assistant: Assistant) -> None:
        await conn.execute(
            """
            INSERT INTO openai_assistants (
                assistant_id, user_id, assistant_name, instructions, model,
                vector_store_id, status, created_at, updated_at
            ) VALUES ($1, $2, $3, $4, $5, $6, $7, NOW(), NOW())
            """,
            assistant.id,
            assistant.owner_id,
            assistant.name,
            assistant.instructions,
            assistant.model,
            assistant.store_id,
            AgentStatus(assistant.status).value,
        )

    @staticmethod
    async def _insert_store(conn, store: KnowledgeStore) -> None:
        await conn.execute(
            """
            INSERT INTO vector_stores (
                store_id, user_id, store_name, description, file_count,
                status, created_at, updated_at
            ) VALUES ($1, $2, $3, $4, $5, $6, NOW(), NOW())
            """,
            store.id,
            store.owner_id,
            store.name,
            store.description or "",
            store.file_count,
            AgentStatus(store.status).value,
        )

    @staticmethod
    def _row_to_assistant(row) -> Assistant:
        return Assistant(
            id=row["assistant_id"],
            name=row["assistant_name"],
            instructions=row["instructions"],
            model=row["model"],
            store_id=row["vector_store_id"],
            owner_id=row["user_id"],
            status=AgentStatus(row["status"]),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    @staticmethod
    def _row_to_store(row) -> KnowledgeStore:
        return KnowledgeStore(
            id=row["store_id"],
            name=row["store_name"],
            description=row["description"],
            owner_id=row["user_id"],
            file_count=row["file_count"],
            status=AgentStatus(row["status"]),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    @staticmethod
    def _row_to_provision(row) -> ProvisionRecord:
        return ProvisionRecord(
            id=row["id"],
            owner_id=row["owner_id"],
            status=ProvisionStatus(row["status"]),
            store_id=row["store_id"],
            assistant_id=row["assistant_id"],
            error=row["error"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )
