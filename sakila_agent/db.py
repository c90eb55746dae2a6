import asyncio
import logging
import time as clock
from datetime import date, datetime, time, timedelta
from decimal import Decimal
from typing import Any, Awaitable, Callable, Dict, List, Mapping

from sqlalchemy import text
from sqlalchemy.ext.asyncio import create_async_engine

from sakila_agent.config import DATABASE_URL, QUERY_TIMEOUT_MS
from sakila_agent.errors import ExecutionError, ExecutionTimeoutError
from sakila_agent.models import Cell, Row

logger = logging.getLogger(__name__)

# Shared pool; no connection is opened until the first query
engine = create_async_engine(DATABASE_URL, pool_pre_ping=True)

DatabaseCall = Callable[[str], Awaitable[List[Mapping[str, Any]]]]

_PASSTHROUGH = (bool, int, float, Decimal, str, datetime, date, time, timedelta)


def to_cell(value: Any) -> Cell:
    if value is None or isinstance(value, _PASSTHROUGH):
        return value
    if isinstance(value, (bytes, bytearray)):
        return bytes(value).decode("utf-8", errors="replace")
    return str(value)


def to_row(mapping: Mapping[str, Any]) -> Row:
    return {str(key): to_cell(value) for key, value in mapping.items()}


async def run_sql(sql: str) -> List[Mapping[str, Any]]:
    async with engine.connect() as conn:
        result = await conn.execute(text(sql))
        return list(result.mappings().all())


async def fetch_column_metadata() -> List[Dict[str, Any]]:
    sql = text(
        """
        SELECT table_name AS table_name,
               column_name AS column_name,
               column_type AS column_type,
               is_nullable AS is_nullable,
               column_key AS column_key
        FROM information_schema.columns
        WHERE table_schema = DATABASE()
        ORDER BY table_name, ordinal_position
        """
    )
    async with engine.connect() as conn:
        result = await conn.execute(sql)
        return [dict(r) for r in result.mappings().all()]


async def execute_query(
    sql: str,
    timeout_ms: int = QUERY_TIMEOUT_MS,
    database: DatabaseCall = run_sql,
) -> List[Row]:
    """Run a validated SELECT and return its rows, or fail within ``timeout_ms``.

    ``wait_for`` cancels the database call when the timer wins and drops the
    timer when the call settles first, so nothing is left running either way.
    """
    started = clock.monotonic()
    try:
        raw_rows = await asyncio.wait_for(database(sql), timeout=timeout_ms / 1000)
    except asyncio.TimeoutError as exc:
        logger.error("Query timed out after %d ms", timeout_ms)
        raise ExecutionTimeoutError(timeout_ms) from exc
    except Exception as exc:
        elapsed = (clock.monotonic() - started) * 1000
        logger.error("Database query failed after %.0f ms: %s", elapsed, exc)
        raise ExecutionError(f"Database error: {exc}") from exc

    rows = [to_row(r) for r in raw_rows]
    elapsed = (clock.monotonic() - started) * 1000
    logger.info("Database query executed in %.0f ms, returned %d rows", elapsed, len(rows))
    return rows


async def dispose_engine() -> None:
    await engine.dispose()
