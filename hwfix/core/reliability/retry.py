"""
Retry policy — exponential backoff with jitter for retriable steps.

Only TransientFailure is retried. Everything else fails the step on
the first attempt.
"""

from __future__ import annotations

import logging
import random
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TypeVar

from hwfix.core.errors import TransientFailure

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class RetryPolicy:
    """How many times, and how far apart, to retry a transient failure."""

    max_attempts: int = 3
    base_delay: float = 2.0
    max_delay: float = 30.0
    sleep: Callable[[float], None] = field(default=time.sleep, repr=False)

    def delay_for(self, attempt: int) -> float:
        """Backoff before retry number ``attempt`` (1-based)."""
        delay = min(self.base_delay * (2 ** (attempt - 1)), self.max_delay)
        jitter = random.uniform(0, delay * 0.3)
        return delay + jitter

    def call(self, fn: Callable[[], T], label: str = "") -> tuple[T, int]:
        """Call ``fn``, retrying on TransientFailure.

        Returns:
            (result, attempts)

        Raises:
            TransientFailure: When every attempt failed. ``attempts`` is
                attached to the exception.
        """
        attempt = 0
        while True:
            attempt += 1
            try:
                return fn(), attempt
            except TransientFailure as e:
                e.attempts = attempt
                if attempt >= self.max_attempts:
                    logger.warning("'%s' exhausted after %d attempts: %s", label, attempt, e)
                    raise
                delay = self.delay_for(attempt)
                logger.info(
                    "'%s' failed transiently (attempt %d/%d), retrying in %.1fs: %s",
                    label, attempt, self.max_attempts, delay, e,
                )
                self.sleep(delay)

    @classmethod
    def once(cls) -> RetryPolicy:
        """Policy that never retries."""
        return cls(max_attempts=1, base_delay=0.0, max_delay=0.0)
