#!/usr/bin/env python3
"""Database Utilities for the Lisa assistant core.

This module provides database utilities including:
    - Transaction context managers with automatic commit/rollback
    - Connection pool management
    - Schema bootstrap
    - Conversion of driver errors into PersistenceError subtypes

Example:
    async with database_transaction(pool) as conn:
        await conn.execute("DELETE FROM conversation_messages ...")
        await conn.execute("INSERT INTO conversation_messages ...")
        # Automatic commit on success, rollback on exception
"""
import asyncio
import logging
from contextlib import asynccontextmanager
from importlib import resources
from pathlib import Path
from typing import Any, AsyncIterator, Optional

import asyncpg

from .exceptions import (
    ConnectionPoolError,
    IntegrityError,
    LisaError,
    PersistenceError,
    TransactionError,
)

logger = logging.getLogger(__name__)

ACQUIRE_TIMEOUT_SECONDS = 30.0

SCHEMA_PACKAGE = "lisa.db"
SCHEMA_FILE = "schema.sql"

REQUIRED_TABLES = (
    "users",
    "vector_stores",
    "openai_assistants",
    "agent_provisions",
    "conversations",
    "conversation_messages",
)


# ============================================
# Transaction Context Managers
# ============================================

@asynccontextmanager
async def database_transaction(
    pool,
    isolation: str = "read_committed",
    readonly: bool = False,
) -> AsyncIterator[Any]:
    """Context manager for database transactions with automatic commit/rollback.

    Acquires a connection from the pool, starts a transaction, and ensures
    commit on success or rollback on exception. Core errors raised inside the
    block (NotFoundError, ValidationError, ...) roll back and propagate
    unchanged; driver errors are converted to PersistenceError subtypes.

    Args:
        pool: asyncpg connection pool
        isolation: Transaction isolation level
            ("serializable", "repeatable_read", "read_committed")
        readonly: If True, transaction is read-only

    Yields:
        Database connection within transaction

    Raises:
        ConnectionPoolError: If connection cannot be acquired
        TransactionError: If transaction fails
        IntegrityError: If integrity constraint violated

    Example:
        async with database_transaction(pool) as conn:
            await conn.execute("INSERT INTO assistants ...")
            await conn.execute("UPDATE users ...")
    """
    if pool is None:
        raise ConnectionPoolError("Database connection pool is not initialized")

    conn = None
    try:
        try:
            conn = await asyncio.wait_for(
                pool.acquire(),
                timeout=ACQUIRE_TIMEOUT_SECONDS,
            )
        except asyncio.TimeoutError:
            raise ConnectionPoolError(
                "Timeout acquiring database connection",
                details={"timeout_seconds": ACQUIRE_TIMEOUT_SECONDS},
            )
        except Exception as e:
            raise ConnectionPoolError(
                f"Failed to acquire database connection: {e}",
                cause=e,
            )

        transaction = conn.transaction(isolation=isolation, readonly=readonly)

        try:
            await transaction.start()
        except Exception as e:
            raise TransactionError(
                f"Failed to start transaction: {e}",
                cause=e,
            )

        try:
            yield conn
            await transaction.commit()
            logger.debug("Transaction committed successfully")

        except BaseException as e:
            try:
                await transaction.rollback()
                logger.debug("Transaction rolled back due to exception")
            except Exception as rollback_error:
                logger.error(f"Rollback failed: {rollback_error}")

            if isinstance(e, Exception):
                raise _convert_db_exception(e)
            raise

    finally:
        if conn:
            await pool.release(conn)


@asynccontextmanager
async def database_connection(pool) -> AsyncIterator[Any]:
    """Simple context manager for a pooled connection without a transaction.

    Use this for read-only operations.

    Example:
        async with database_connection(pool) as conn:
            rows = await conn.fetch("SELECT * FROM assistants")
    """
    if pool is None:
        raise ConnectionPoolError("Database connection pool is not initialized")

    conn = None
    try:
        try:
            conn = await asyncio.wait_for(
                pool.acquire(), timeout=ACQUIRE_TIMEOUT_SECONDS
            )
        except asyncio.TimeoutError:
            raise ConnectionPoolError(
                "Timeout acquiring database connection",
                details={"timeout_seconds": ACQUIRE_TIMEOUT_SECONDS},
            )
        try:
            yield conn
        except Exception as e:
            raise _convert_db_exception(e)
    finally:
        if conn:
            await pool.release(conn)


# ============================================
# Error Conversion
# ============================================

def _convert_db_exception(e: Exception) -> Exception:
    """Convert a driver exception to the matching PersistenceError subtype.

    Core errors pass through untouched.
    """
    if isinstance(e, LisaError):
        return e

    if isinstance(e, asyncpg.UniqueViolationError):
        return IntegrityError(
            f"Duplicate entry: {e}",
            constraint=getattr(e, "constraint_name", None) or "unique",
            cause=e,
        )

    if isinstance(e, asyncpg.ForeignKeyViolationError):
        return IntegrityError(
            f"Foreign key violation: {e}",
            constraint="foreign_key",
            cause=e,
        )

    if isinstance(e, asyncpg.NotNullViolationError):
        return IntegrityError(
            f"Not null violation: {e}",
            constraint="not_null",
            cause=e,
        )

    if isinstance(e, asyncpg.CheckViolationError):
        return IntegrityError(
            f"Check constraint violation: {e}",
            constraint="check",
            cause=e,
        )

    if isinstance(e, asyncpg.DeadlockDetectedError):
        return TransactionError(
            f"Deadlock detected: {e}",
            operation="transaction",
            cause=e,
        )

    if isinstance(e, (asyncio.TimeoutError, asyncpg.QueryCanceledError)):
        return TransactionError(
            f"Database operation timed out: {e}",
            operation="query",
            cause=e,
        )

    return PersistenceError(
        f"Database operation failed: {e}",
        cause=e,
    )


# ============================================
# Connection Pool Helpers
# ============================================

async def create_pool(
    database_url: str,
    min_size: int = 2,
    max_size: int = 10,
    command_timeout: float = 60.0,
    **kwargs,
) -> "asyncpg.Pool":
    """Create a database connection pool with error handling.

    Args:
        database_url: PostgreSQL connection string
        min_size: Minimum pool connections
        max_size: Maximum pool connections
        command_timeout: Default query timeout in seconds
        **kwargs: Additional asyncpg.create_pool arguments

    Returns:
        asyncpg.Pool instance

    Raises:
        ConnectionPoolError: If pool creation fails
    """
    try:
        pool = await asyncpg.create_pool(
            database_url,
            min_size=min_size,
            max_size=max_size,
            command_timeout=command_timeout,
            **kwargs,
        )
        logger.info(f"Database pool created (min={min_size}, max={max_size})")
        return pool
    except Exception as e:
        raise ConnectionPoolError(
            f"Failed to create database pool: {e}",
            cause=e,
        )


async def close_pool(pool, timeout: float = 10.0):
    """Close database pool gracefully, terminating it after ``timeout``."""
    if pool is None:
        return

    try:
        await asyncio.wait_for(pool.close(), timeout=timeout)
        logger.info("Database pool closed")
    except asyncio.TimeoutError:
        logger.warning(f"Pool close timed out after {timeout}s, terminating")
        pool.terminate()
    except Exception as e:
        logger.error(f"Error closing pool: {e}")
        pool.terminate()


def load_schema(schema_path: Optional[Path] = None) -> str:
    """Return the DDL script, from ``schema_path`` or the packaged schema.sql.

    Raises:
        PersistenceError: If the file does not exist
    """
    if schema_path is not None:
        path = Path(schema_path)
        if not path.is_file():
            raise PersistenceError(f"Schema file not found: {path}")
        return path.read_text(encoding="utf-8")

    resource = resources.files(SCHEMA_PACKAGE).joinpath(SCHEMA_FILE)
    if not resource.is_file():
        raise PersistenceError(f"Schema file not found: {SCHEMA_PACKAGE}/{SCHEMA_FILE}")
    return resource.read_text(encoding="utf-8")


async def apply_schema(pool, schema_path: Optional[Path] = None) -> None:
    """Execute the DDL script against the pool (idempotent statements only)."""
    sql = load_schema(schema_path)
    async with database_connection(pool) as conn:
        await conn.execute(sql)
    source = schema_path or f"{SCHEMA_PACKAGE}/{SCHEMA_FILE}"
    logger.info(f"Applied schema from {source}")


# ============================================
# Health Check
# ============================================

async def check_database_health(pool) -> dict[str, Any]:
    """Check connectivity, pool usage and that every Lisa table exists."""
    if pool is None:
        return {
            "healthy": False,
            "error": "Pool not initialized",
        }

    try:
        async with database_connection(pool) as conn:
            result = await conn.fetchval("SELECT 1")
            present = await conn.fetch(
                """
                SELECT table_name FROM information_schema.tables
                WHERE table_schema = current_schema() AND table_name = ANY($1::text[])
                """,
                list(REQUIRED_TABLES),
            )
            pool_size = pool.get_size()
            pool_free = pool.get_idle_size()

        missing = sorted(set(REQUIRED_TABLES) - {row["table_name"] for row in present})
        return {
            "healthy": result == 1 and not missing,
            "missing_tables": missing,
            "pool_size": pool_size,
            "pool_free": pool_free,
            "pool_used": pool_size - pool_free,
        }

    except Exception as e:
        return {
            "healthy": False,
            "error": str(e),
        }


# ============================================
# Exports
# ============================================

__all__ = [
    "database_transaction",
    "database_connection",
    "create_pool",
    "close_pool",
    "load_schema",
    "apply_schema",
    "check_database_health",
]
