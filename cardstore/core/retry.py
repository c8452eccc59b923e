"""Bounded retry with exponential backoff for vector index calls.

``add`` is an upsert by id and ``remove_where`` deletes nothing when the
records are already gone, so both are safe to repeat.
"""

import time
from typing import Callable, Tuple, Type, TypeVar

from .config import INDEX_RETRY_ATTEMPTS, INDEX_RETRY_DELAY_SEC
from .errors import VectorIndexError
from ..util.logging import logger

T = TypeVar("T")


def with_retry(
    operation: Callable[[], T],
    description: str,
    attempts: int = INDEX_RETRY_ATTEMPTS,
    initial_delay: float = INDEX_RETRY_DELAY_SEC,
    retry_on: Tuple[Type[BaseException], ...] = (VectorIndexError,),
) -> T:
    """Call ``operation`` until it succeeds or ``attempts`` are used up.

    Args:
        operation: Zero-argument callable to run.
        description: Label used in log lines.
        attempts: Maximum number of calls, at least one.
        initial_delay: Delay in seconds before the first retry; doubled after each failure.
        retry_on: Exception types that trigger a retry. Anything else propagates at once.

    Raises:
        The last exception raised by ``operation`` once attempts are exhausted.
    """
    attempts = max(1, attempts)
    delay = initial_delay
    for attempt in range(1, attempts + 1):
        try:
            return operation()
        except retry_on as e:
            if attempt == attempts:
                logger.log_operation(description, "failed", {"attempts": attempt, "error": str(e)[:100]})
                raise

            logger.log_operation(description, "retrying", {"attempt": attempt, "delay_sec": delay, "error": str(e)[:100]})
            time.sleep(delay)
            delay *= 2
