"""
Bounded retry for read-only store calls.
"""

import logging
import time
from typing import Callable, TypeVar

from ..domain.exceptions import StoreUnavailable

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ReadRetry:
    """
    Runs a read-only store call, retrying on StoreUnavailable with
    exponential backoff. Never used for a commit step.
    """

    def __init__(
        self,
        attempts: int = 3,
        backoff_seconds: float = 0.1,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if attempts < 1:
            raise ValueError("retry attempts must be at least 1")

        self.attempts = attempts
        self.backoff_seconds = backoff_seconds
        self._sleep = sleep

    def __call__(self, operation: Callable[[], T]) -> T:
        for attempt in range(1, self.attempts + 1):
            try:
                return operation()
            except StoreUnavailable as exc:
                if attempt == self.attempts:
                    raise
                delay = self.backoff_seconds * (2 ** (attempt - 1))
                logger.warning(
                    "Store unavailable (attempt %d/%d), retrying in %.2fs: %s",
                    attempt,
                    self.attempts,
                    delay,
                    exc,
                )
                self._sleep(delay)

        raise AssertionError("unreachable")  # pragma: no cover
