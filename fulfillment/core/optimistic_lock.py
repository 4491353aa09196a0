"""
Fulfillment Service — Optimistic locking retry decorator

Uses exponential backoff + jitter to handle StaleDataError.
StaleDataError is raised when a conditional UPDATE matched no row because
another transaction changed the row (its version_id or status) between our
read and our write.
"""
import asyncio
import random
import functools
import logging

from fulfillment.core.config import get_settings
from fulfillment.core.errors import ConcurrencyConflict

settings = get_settings()
logger = logging.getLogger(__name__)


class StaleDataError(Exception):
    """A concurrent transaction won the race for the same row."""


def backoff_delay(attempt: int) -> float:
    base_delay = settings.OPT_LOCK_BASE_DELAY_MS / 1000.0
    max_delay = settings.OPT_LOCK_MAX_DELAY_MS / 1000.0
    jitter = random.uniform(0, settings.OPT_LOCK_JITTER_MS / 1000.0)
    return min(base_delay * (2 ** attempt), max_delay) + jitter


def with_optimistic_retry(max_retries: int | None = None):
    """
    Decorator for async unit-of-work functions that perform optimistic-lock
    writes. The wrapped function must roll back its own transaction before
    letting StaleDataError escape, so every attempt starts from a clean
    session and re-reads current state.

    Usage:
        @with_optimistic_retry()
        async def place_order(db, ...):
            ...
    """

    def decorator(func):
        @functools.wraps(func)
        async def wrapper(*args, **kwargs):
            attempts = max_retries or settings.OPT_LOCK_MAX_RETRIES
            for attempt in range(1, attempts + 1):
                try:
                    return await func(*args, **kwargs)
                except StaleDataError:
                    if attempt == attempts:
                        logger.error(
                            "Optimistic lock conflict unresolved after %d retries for %s",
                            attempts, func.__name__,
                        )
                        raise ConcurrencyConflict(
                            "The request conflicted with concurrent updates. Query the current state before retrying."
                        )
                    delay = backoff_delay(attempt)
                    logger.warning(
                        "StaleDataError in %s on attempt %d/%d, retrying in %.3fs",
                        func.__name__, attempt, attempts, delay,
                    )
                    await asyncio.sleep(delay)
        return wrapper
    return decorator
