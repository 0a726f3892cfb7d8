"""
Infrastructure-specific decorators, providing cross-cutting concerns like
retry logic for network and store operations.
"""

import asyncio
import logging

import httpx
from sqlalchemy.exc import OperationalError
from tenacity import (
    AsyncRetrying,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_fixed,
    wait_incrementing,
)

from ..application.exceptions import DownloadError, IntegrityError

logger = logging.getLogger(__name__)

# --- Constants for Retry Logic ---
_FETCH_ATTEMPTS = 3
_FETCH_BACKOFF_STEP_SECONDS = 5
_STORE_READY_ATTEMPTS = 30
_STORE_READY_WAIT_SECONDS = 2

RETRYABLE_FETCH_ERRORS = (
    httpx.HTTPError,
    DownloadError,
    IntegrityError,
    asyncio.TimeoutError,
    OSError,
)


def _log_before_retry(retry_state):
    """Log the retry attempt with details about the exception and wait time."""
    exception = retry_state.outcome.exception()
    next_attempt_in = retry_state.next_action.sleep
    name = retry_state.fn.__name__ if retry_state.fn else "fetch"
    logger.warning(
        f"Retrying {name} in {next_attempt_in:.2f}s due to "
        f"{type(exception).__name__}: {exception} "
        f"(attempt {retry_state.attempt_number})..."
    )


def linear_backoff_retrying(
    attempts: int = _FETCH_ATTEMPTS,
    step_seconds: float = _FETCH_BACKOFF_STEP_SECONDS,
) -> AsyncRetrying:
    """
    Build an async retry controller that waits attempt x step between tries.

    The last exception is re-raised once all attempts are exhausted.
    """
    return AsyncRetrying(
        stop=stop_after_attempt(attempts),
        wait=wait_incrementing(start=step_seconds, increment=step_seconds),
        retry=retry_if_exception_type(RETRYABLE_FETCH_ERRORS),
        before_sleep=_log_before_retry,
        reraise=True,
    )


# A pre-configured decorator for waiting on the store to accept connections
retry_until_store_ready = retry(
    stop=stop_after_attempt(_STORE_READY_ATTEMPTS),
    wait=wait_fixed(_STORE_READY_WAIT_SECONDS),
    retry=retry_if_exception_type((OperationalError, OSError)),
    before_sleep=_log_before_retry,
    reraise=True,
)
