# =============================================================================
# File: app/infra/persistence/pg_client.py
# =============================================================================
# AsyncPG pool helper for the durable message store
# =============================================================================

from __future__ import annotations

import asyncio
import json
import pathlib
import time
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Optional

import asyncpg

from app.config.logging_config import get_logger
from app.config.pg_client_config import DatabaseConfig, get_database_config
from app.config.reliability_config import ReliabilityConfigs
from app.infra.reliability.retry import retry_async

log = get_logger("campus.infra.pg_client")

# Arbitrary constant shared by every instance; serializes schema application
_SCHEMA_ADVISORY_LOCK_KEY = 72_410_001

_POOL: Optional[asyncpg.Pool] = None
_POOL_LOCK = asyncio.Lock()


async def _init_connection(conn: asyncpg.Connection) -> None:
    """Initialize connection with JSONB codec for automatic dict<->JSONB conversion"""
    await conn.set_type_codec(
        'jsonb',
        encoder=json.dumps,
        decoder=json.loads,
        schema='pg_catalog'
    )


async def init_db_pool(config: Optional[DatabaseConfig] = None, **pool_kwargs: Any) -> asyncpg.Pool:
    """Initialize the global pool (idempotent)."""
    global _POOL

    config = config or get_database_config()

    async with _POOL_LOCK:
        if _POOL is not None and not _POOL.is_closing():
            return _POOL

        dsn = config.get_dsn()
        params = config.pool.to_asyncpg_params()
        params.update({"init": _init_connection, **pool_kwargs})

        log.info(f"Initializing PostgreSQL pool (hidden DSN): {dsn.split('@')[-1]}")

        async def create_pool() -> asyncpg.Pool:
            pool = await asyncpg.create_pool(dsn=dsn, **params)
            async with pool.acquire() as conn:
                await conn.fetchval("SELECT 1")
            return pool

        try:
            _POOL = await retry_async(
                create_pool,
                retry_config=ReliabilityConfigs.postgres_retry(),
                context="PostgreSQL pool initialization"
            )
        except (OSError, asyncpg.PostgresError) as e:
            log.critical(f"Failed to init PostgreSQL pool: {e}", exc_info=True)
            _POOL = None
            raise RuntimeError(f"PostgreSQL pool init error: {e}") from e

        log.info(f"PostgreSQL pool ready. Min/Max size: {params['min_size']}/{params['max_size']}")

    return _POOL


async def get_pool() -> asyncpg.Pool:
    """Get the global pool, initializing it if needed."""
    if _POOL is None or _POOL.is_closing():
        return await init_db_pool()
    return _POOL


async def close_db_pool() -> None:
    global _POOL
    async with _POOL_LOCK:
        if _POOL is not None:
            await _POOL.close()
            log.info("PostgreSQL pool closed")
        _POOL = None


@asynccontextmanager
async def acquire_connection(timeout: Optional[float] = None) -> AsyncIterator[asyncpg.Connection]:
    pool = await get_pool()
    async with pool.acquire(timeout=timeout) as conn:
        yield conn


@asynccontextmanager
async def transaction(timeout: Optional[float] = None) -> AsyncIterator[asyncpg.Connection]:
    """
    Transaction context manager. Commits on clean exit, rolls back on exception.

    Usage:
        async with transaction() as conn:
            await conn.execute("INSERT INTO ...")
    """
    async with acquire_connection(timeout=timeout) as conn:
        async with conn.transaction():
            yield conn


# =============================================================================
# Statement helpers (pool-level, one connection per call)
# =============================================================================

def _log_if_slow(kind: str, query: str, started: float) -> None:
    elapsed_ms = (time.monotonic() - started) * 1000
    if elapsed_ms > get_database_config().slow_query_threshold_ms:
        log.warning(f"[SLOW QUERY] {kind} took {elapsed_ms:.1f}ms: {query[:150]}...")


async def fetch(query: str, *args: Any, timeout: Optional[float] = None) -> List[asyncpg.Record]:
    """Execute the query and return all rows."""
    started = time.monotonic()
    async with acquire_connection() as conn:
        rows = await conn.fetch(query, *args, timeout=timeout)
    _log_if_slow("FETCH", query, started)
    return rows


async def fetchrow(query: str, *args: Any, timeout: Optional[float] = None) -> Optional[asyncpg.Record]:
    """Execute the query and return the first row."""
    started = time.monotonic()
    async with acquire_connection() as conn:
        row = await conn.fetchrow(query, *args, timeout=timeout)
    _log_if_slow("FETCHROW", query, started)
    return row


async def fetchval(query: str, *args: Any, column: int = 0, timeout: Optional[float] = None) -> Any:
    started = time.monotonic()
    async with acquire_connection() as conn:
        value = await conn.fetchval(query, *args, column=column, timeout=timeout)
    _log_if_slow("FETCHVAL", query, started)
    return value


async def execute(query: str, *args: Any, timeout: Optional[float] = None) -> str:
    """Execute a statement and return the status string."""
    started = time.monotonic()
    async with acquire_connection() as conn:
        status = await conn.execute(query, *args, timeout=timeout)
    _log_if_slow("EXECUTE", query, started)
    return status


async def run_schema_from_file(file_path_str: str = "app/database/messaging.sql") -> None:
    """Execute DDL statements from a SQL file under an advisory lock."""
    path = pathlib.Path(file_path_str)
    if not path.is_file():
        raise FileNotFoundError(f"Schema file not found: {file_path_str}")

    sql = path.read_text(encoding="utf-8").strip()
    if not sql:
        log.warning(f"Schema file {file_path_str} is empty")
        return

    async with acquire_connection() as conn:
        await conn.execute("SELECT pg_advisory_lock($1)", _SCHEMA_ADVISORY_LOCK_KEY)
        try:
            await conn.execute(sql)
        finally:
            await conn.execute("SELECT pg_advisory_unlock($1)", _SCHEMA_ADVISORY_LOCK_KEY)

    log.info(f"Schema from {file_path_str} applied successfully")


async def health_check() -> Dict[str, Any]:
    if _POOL is None:
        return {"status": "not_initialized"}
    try:
        async with acquire_connection(timeout=2.0) as conn:
            await conn.fetchval("SELECT 1")
        return {
            "status": "healthy",
            "size": _POOL.get_size(),
            "idle": _POOL.get_idle_size(),
        }
    except (OSError, asyncio.TimeoutError, asyncpg.PostgresError) as e:
        return {"status": "unhealthy", "error": str(e)}
