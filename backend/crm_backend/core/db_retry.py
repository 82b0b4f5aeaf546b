"""Retry wrapper for campaign writes that lose a lock race.

Campaign status and stats rows are written from background fan-outs while
API requests may touch the same rows, so deadlocks and lock-wait timeouts
are retried with exponential backoff. Everything else propagates at once.
"""

from __future__ import annotations

import asyncio
import random
from typing import Any, Awaitable, Callable, TypeVar

from loguru import logger
from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncSession

from crm_backend.core.config import settings

T = TypeVar("T")

# 1205 lock wait timeout, 1213 deadlock
TRANSIENT_MYSQL_CODES = frozenset({1205, 1213})
TRANSIENT_SQLSTATES = frozenset({"40001"})
TRANSIENT_MESSAGES = ("deadlock", "lock wait timeout", "database is locked")


def is_transient(exc: DBAPIError) -> bool:
    orig: Any = getattr(exc, "orig", None)
    if orig is None:
        return False
    if getattr(orig, "sqlstate", None) in TRANSIENT_SQLSTATES:
        return True
    args = getattr(orig, "args", ())
    if args and isinstance(args[0], int) and args[0] in TRANSIENT_MYSQL_CODES:
        return True
    text = str(orig).lower()
    return any(marker in text for marker in TRANSIENT_MESSAGES)


def backoff_delay(attempt: int, base_delay: float, jitter: float) -> float:
    return base_delay * (2 ** (attempt - 1)) + random.uniform(0, jitter)


async def with_db_retry(
    session: AsyncSession,
    operation: Callable[[], Awaitable[T]],
    *,
    label: str = "db_write",
    attempts: int | None = None,
    base_delay: float | None = None,
    jitter: float | None = None,
) -> T:
    """Await ``operation``, rolling back and retrying transient lock failures.

    ``label`` names the write in the retry log. The last error is re-raised
    once ``attempts`` is used up.
    """

    attempts = attempts or settings.DB_RETRY_ATTEMPTS
    base_delay = settings.DB_RETRY_BASE_DELAY if base_delay is None else base_delay
    jitter = settings.DB_RETRY_JITTER if jitter is None else jitter

    attempt = 1
    while True:
        try:
            return await operation()
        except DBAPIError as exc:
            if attempt >= attempts or not is_transient(exc):
                raise
            await session.rollback()
            delay = backoff_delay(attempt, base_delay, jitter)
            logger.bind(
                label=label,
                attempt=attempt,
                max_attempts=attempts,
                sleep=round(delay, 3),
                error=str(exc.orig),
            ).warning("db_write_retry")
            attempt += 1
            await asyncio.sleep(delay)
