"""
Retry helpers for transient database failures.

Video records are small and writes are rare, but SQLite serializes writers
and an upload that finished minutes of ffmpeg work should not be lost to a
momentary "database is locked". Retryable conditions:

SQLite:
- "database is locked" / "database table is locked"
- SQLITE_BUSY / SQLITE_LOCKED

PostgreSQL:
- deadlocks (40P01) and serialization failures (40001)
- lock timeouts and dropped connections
"""

import asyncio
import logging
import random
import time
from typing import Awaitable, Callable, Optional, TypeVar

from config import (
    DB_RETRY_BASE_DELAY,
    DB_RETRY_MAX_ATTEMPTS,
    DB_RETRY_MAX_DELAY,
    DB_SLOW_QUERY_THRESHOLD,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

EXPONENTIAL_BASE = 2

_RETRYABLE_PATTERNS = (
    "database is locked",
    "database table is locked",
    "sqlite_busy",
    "sqlite_locked",
    "deadlock detected",
    "could not serialize access",
    "could not obtain lock",
    "lock timeout",
    "connection refused",
    "connection reset",
    "server closed the connection unexpectedly",
)

_RETRYABLE_SQLSTATES = ("40P01", "40001")


class DatabaseRetryableError(Exception):
    """Raised when a database operation still fails after all retries."""


def is_retryable_database_error(exc: BaseException) -> bool:
    """Check whether an exception (or its cause chain) is a transient database error."""
    message = str(exc).lower()
    if any(pattern in message for pattern in _RETRYABLE_PATTERNS):
        return True

    if getattr(exc, "sqlstate", None) in _RETRYABLE_SQLSTATES:
        return True

    # The databases library wraps driver exceptions
    if exc.__cause__ is not None:
        return is_retryable_database_error(exc.__cause__)

    return False


def _backoff_delay(attempt: int, base_delay: float, max_delay: float) -> float:
    delay = min(base_delay * (EXPONENTIAL_BASE**attempt), max_delay)
    # +/-25% jitter
    jitter = delay * 0.25 * (2 * random.random() - 1)
    return max(0.01, delay + jitter)


async def execute_with_retry(
    func: Callable[..., Awaitable[T]],
    *args,
    max_attempts: Optional[int] = None,
    base_delay: Optional[float] = None,
    max_delay: Optional[float] = None,
    **kwargs,
) -> T:
    """
    Await ``func(*args, **kwargs)``, retrying transient database errors with
    exponential backoff.

    Non-retryable exceptions propagate immediately.

    Raises:
        DatabaseRetryableError: if every attempt failed with a retryable error
    """
    attempts = max_attempts if max_attempts is not None else DB_RETRY_MAX_ATTEMPTS
    base = base_delay if base_delay is not None else DB_RETRY_BASE_DELAY
    ceiling = max_delay if max_delay is not None else DB_RETRY_MAX_DELAY

    last_exception: Optional[Exception] = None
    for attempt in range(attempts):
        try:
            return await func(*args, **kwargs)
        except Exception as e:
            if not is_retryable_database_error(e):
                raise
            last_exception = e

            if attempt + 1 < attempts:
                delay = _backoff_delay(attempt, base, ceiling)
                logger.warning(
                    f"Database error (attempt {attempt + 1}/{attempts}), retrying in {delay:.2f}s: {e}"
                )
                await asyncio.sleep(delay)
            else:
                logger.error(f"Database error after {attempts} attempts, giving up: {e}")

    raise DatabaseRetryableError(f"Database operation failed after {attempts} attempts: {last_exception}")


async def _timed(operation: str, query, call: Callable[[], Awaitable[T]]) -> T:
    start = time.monotonic()
    result = await call()
    elapsed = time.monotonic() - start
    if elapsed >= DB_SLOW_QUERY_THRESHOLD:
        logger.warning(f"Slow {operation} ({elapsed:.2f}s): {str(query)[:500]}")
    return result


async def fetch_one_with_retry(query):
    """Run ``database.fetch_one`` with retry. Returns a row or None."""
    from api.database import database

    return await execute_with_retry(_timed, "fetch_one", query, lambda: database.fetch_one(query))


async def fetch_all_with_retry(query):
    """Run ``database.fetch_all`` with retry. Returns a list of rows."""
    from api.database import database

    return await execute_with_retry(_timed, "fetch_all", query, lambda: database.fetch_all(query))


async def db_execute_with_retry(query, values=None):
    """Run a write query with retry."""
    from api.database import database

    async def _execute():
        if values is not None:
            return await database.execute(query, values)
        return await database.execute(query)

    return await execute_with_retry(_timed, "execute", query, _execute)
