"""Bounded retry with exponential backoff for store calls"""
import time
from typing import Callable, Optional, TypeVar

from tokencart.errors import StoreUnavailableError
from tokencart.utils.logger import logger

T = TypeVar("T")

MAX_DELAY_SECONDS = 2.0


def backoff_delay(attempt: int, initial: float, max_delay: float = MAX_DELAY_SECONDS) -> float:
    """delay = min(initial * 2 ** attempt, max_delay)"""
    return min(initial * (2 ** attempt), max_delay)


def call_with_retry(
    func: Callable[[], T],
    attempts: int = 3,
    initial_delay: float = 0.05,
    operation: Optional[str] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Run ``func``, retrying only on :class:`StoreUnavailableError`.

    Authentication and authorization errors are never retried. After the last
    attempt the store error propagates to the caller.
    """
    if attempts < 1:
        raise ValueError("attempts must be >= 1")

    for attempt in range(attempts):
        try:
            return func()
        except StoreUnavailableError as exc:
            if exc.operation is None:
                exc.operation = operation
            if attempt == attempts - 1:
                logger.error(
                    f"Store unavailable after {attempts} attempts: {exc}",
                    extra={"operation": operation, "action": "store_retry"},
                )
                raise
            delay = backoff_delay(attempt, initial_delay)
            logger.warning(
                f"Store unavailable (attempt {attempt + 1}/{attempts}), retrying in {delay:.2f}s",
                extra={"operation": operation, "action": "store_retry"},
            )
            sleep(delay)
    raise AssertionError("unreachable")  # loop always returns or raises
