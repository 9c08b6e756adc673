"""Retry utilities for storage operations.

SQLite allows a single writer at a time; a concurrent writer from another
process surfaces as ``OperationalError: database is locked``. Those are
retried with exponential backoff. Every other database error propagates.
"""

from __future__ import annotations

import logging

from sqlalchemy.exc import OperationalError
from tenacity import (
    RetryCallState,
    retry,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

logger = logging.getLogger(__name__)


def _is_locked(exc: BaseException) -> bool:
    return isinstance(exc, OperationalError) and "locked" in str(exc).lower()


def _log_retry(retry_state: RetryCallState) -> None:
    """Log retry attempts with context.

    Args:
        retry_state: Current retry state from tenacity.
    """
    logger.warning(
        "Retrying storage operation",
        extra={
            "attempt": retry_state.attempt_number,
            "fn_name": retry_state.fn.__name__ if retry_state.fn else "unknown",
            "exception": str(retry_state.outcome.exception()) if retry_state.outcome else None,
        },
    )


# Decorator for retrying transient SQLite lock contention
storage_retry = retry(
    stop=stop_after_attempt(5),
    wait=wait_exponential(multiplier=0.05, min=0.05, max=1),
    retry=retry_if_exception(_is_locked),
    before_sleep=_log_retry,
    reraise=True,
)
