"""Retry with exponential backoff for flaky network reads."""

from __future__ import annotations

import logging
import time
from typing import Callable, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

_RETRYABLE_MARKERS = ("timeout", "timed out", "network", "econnrefused", "econnreset", "connection reset")


def is_retryable_error(error: BaseException) -> bool:
    """Transient transport failures are worth retrying; everything else is not."""
    if isinstance(error, (ConnectionError, TimeoutError)):
        return True
    message = str(error).lower()
    return any(marker in message for marker in _RETRYABLE_MARKERS)


def backoff_delay(attempt: int, base_delay: float, max_delay: float) -> float:
    return min(base_delay * 2**attempt, max_delay)


def with_retry(
    fn: Callable[[], T],
    max_retries: int = 3,
    base_delay: float = 1.0,
    max_delay: float = 30.0,
    should_retry: Callable[[BaseException], bool] = is_retryable_error,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Call ``fn`` until it succeeds, retrying at most ``max_retries`` times.

    The last exception is re-raised once retries are exhausted or when
    ``should_retry`` rejects it.
    """
    attempt = 0
    while True:
        try:
            return fn()
        except Exception as e:
            if attempt >= max_retries or not should_retry(e):
                raise
            delay = backoff_delay(attempt, base_delay, max_delay)
            logger.warning("Retry %d/%d in %.1fs: %s", attempt + 1, max_retries, delay, e)
            sleep(delay)
            attempt += 1
