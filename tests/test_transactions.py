#!/usr/bin/env python3
"""Unit tests for the transaction helpers and driver error conversion.

The pool and connection are mocks; no PostgreSQL instance is needed.
"""
import asyncio
from unittest.mock import AsyncMock, MagicMock

import asyncpg
import pytest

from lisa.core.database import (
    REQUIRED_TABLES,
    _convert_db_exception,
    apply_schema,
    check_database_health,
    database_connection,
    database_transaction,
    load_schema,
)
from lisa.core.exceptions import (
    ConnectionPoolError,
    IntegrityError,
    NotFoundError,
    PersistenceError,
    TransactionError,
)


@pytest.fixture
def transaction():
    tx = MagicMock()
    tx.start = AsyncMock()
    tx.commit = AsyncMock()
    tx.rollback = AsyncMock()
    return tx


@pytest.fixture
def pool(transaction):
    conn = MagicMock()
    conn.transaction = MagicMock(return_value=transaction)
    conn.execute = AsyncMock()
    pool = MagicMock()
    pool.acquire = AsyncMock(return_value=conn)
    pool.release = AsyncMock()
    pool.conn = conn
    return pool


class TestDatabaseTransaction:
    """Test commit/rollback behavior of database_transaction."""

    @pytest.mark.asyncio
    async def test_commits_on_success(self, pool, transaction):
        async with database_transaction(pool) as conn:
            await conn.execute("DELETE FROM conversation_messages")

        transaction.commit.assert_awaited_once()
        transaction.rollback.assert_not_awaited()
        pool.release.assert_awaited_once_with(pool.conn)

    @pytest.mark.asyncio
    async def test_core_errors_roll_back_unchanged(self, pool, transaction):
        with pytest.raises(NotFoundError):
            async with database_transaction(pool):
                raise NotFoundError("Conversation", "thread-1")

        transaction.rollback.assert_awaited_once()
        transaction.commit.assert_not_awaited()
        pool.release.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_driver_errors_are_converted(self, pool, transaction):
        with pytest.raises(IntegrityError):
            async with database_transaction(pool):
                raise asyncpg.UniqueViolationError("duplicate key")

        transaction.rollback.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_missing_pool(self):
        with pytest.raises(ConnectionPoolError):
            async with database_transaction(None):
                pass

    @pytest.mark.asyncio
    async def test_acquire_failure(self, pool):
        pool.acquire = AsyncMock(side_effect=OSError("connection refused"))

        with pytest.raises(ConnectionPoolError):
            async with database_transaction(pool):
                pass

        pool.release.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_start_failure(self, pool, transaction):
        transaction.start = AsyncMock(side_effect=RuntimeError("boom"))

        with pytest.raises(TransactionError):
            async with database_transaction(pool):
                pass

        pool.release.assert_awaited_once()


class TestDatabaseConnection:
    @pytest.mark.asyncio
    async def test_releases_connection(self, pool):
        async with database_connection(pool) as conn:
            assert conn is pool.conn

        pool.release.assert_awaited_once_with(pool.conn)


class TestConvertDbException:
    """Test mapping of asyncpg errors onto PersistenceError subtypes."""

    def test_unique_violation(self):
        error = _convert_db_exception(asyncpg.UniqueViolationError("dup"))
        assert isinstance(error, IntegrityError)
        assert not error.recoverable

    def test_foreign_key_violation(self):
        error = _convert_db_exception(asyncpg.ForeignKeyViolationError("fk"))
        assert isinstance(error, IntegrityError)
        assert error.constraint == "foreign_key"

    def test_check_violation(self):
        error = _convert_db_exception(asyncpg.CheckViolationError("role"))
        assert error.constraint == "check"

    def test_deadlock(self):
        error = _convert_db_exception(asyncpg.DeadlockDetectedError("deadlock"))
        assert isinstance(error, TransactionError)
        assert error.recoverable

    def test_timeout(self):
        assert isinstance(_convert_db_exception(asyncio.TimeoutError()), TransactionError)

    def test_core_error_passes_through(self):
        original = NotFoundError("Conversation", "t1")
        assert _convert_db_exception(original) is original

    def test_unknown_error(self):
        error = _convert_db_exception(RuntimeError("lost connection"))
        assert type(error) is PersistenceError
        assert "lost connection" in str(error)


class TestSchema:
    """Test loading the packaged DDL."""

    def test_packaged_schema(self):
        sql = load_schema()

        for table in REQUIRED_TABLES:
            assert f"CREATE TABLE IF NOT EXISTS {table} " in sql

    def test_explicit_path(self, tmp_path):
        ddl = tmp_path / "custom.sql"
        ddl.write_text("CREATE TABLE t (id INT);")

        assert load_schema(ddl) == "CREATE TABLE t (id INT);"

    def test_missing_path(self, tmp_path):
        with pytest.raises(PersistenceError, match="Schema file not found"):
            load_schema(tmp_path / "missing.sql")

    @pytest.mark.asyncio
    async def test_apply_schema_executes_packaged_ddl(self, pool):
        await apply_schema(pool)

        pool.conn.execute.assert_awaited_once_with(load_schema())


class TestHealthCheck:
    """Test check_database_health against a mocked pool."""

    @pytest.fixture
    def health_pool(self, pool):
        pool.conn.fetchval = AsyncMock(return_value=1)
        pool.get_size = MagicMock(return_value=5)
        pool.get_idle_size = MagicMock(return_value=3)
        return pool

    @pytest.mark.asyncio
    async def test_healthy(self, health_pool):
        health_pool.conn.fetch = AsyncMock(
            return_value=[{"table_name": t} for t in REQUIRED_TABLES]
        )

        health = await check_database_health(health_pool)

        assert health["healthy"]
        assert health["missing_tables"] == []
        assert health["pool_used"] == 2

    @pytest.mark.asyncio
    async def test_missing_tables(self, health_pool):
        health_pool.conn.fetch = AsyncMock(return_value=[{"table_name": "users"}])

        health = await check_database_health(health_pool)

        assert not health["healthy"]
        assert "conversations" in health["missing_tables"]
        assert "users" not in health["missing_tables"]

    @pytest.mark.asyncio
    async def test_query_failure(self, health_pool):
        health_pool.conn.fetchval = AsyncMock(side_effect=OSError("connection reset"))

        health = await check_database_health(health_pool)

        assert not health["healthy"]
        assert "connection reset" in health["error"]

    @pytest.mark.asyncio
    async def test_missing_pool(self):
        assert (await check_database_health(None))["healthy"] is False
