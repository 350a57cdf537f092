"""Classification-aware retry with capped exponential backoff."""

from __future__ import annotations

import logging
import random
import time
from dataclasses import dataclass
from typing import Callable, TypeVar

from .errors import is_retryable

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """Backoff parameters for one upstream operation.

    Attributes:
        max_attempts: Total attempts including the first one.
        base_delay_seconds: Delay before the second attempt.
        max_delay_seconds: Upper bound for any single delay, jitter included.
        jitter_ratio: Symmetric jitter applied to each delay (0.2 means +/-20%).
    """

    max_attempts: int = 5
    base_delay_seconds: float = 1.0
    max_delay_seconds: float = 30.0
    jitter_ratio: float = 0.2

    def delay_for(self, retry_number: int, rng: random.Random) -> float:
        """Return the sleep before retry `retry_number` (1-based)."""
        raw_delay = min(self.base_delay_seconds * (2 ** (retry_number - 1)), self.max_delay_seconds)
        jitter = 1.0 + rng.uniform(-self.jitter_ratio, self.jitter_ratio)
        return min(raw_delay * jitter, self.max_delay_seconds)


class RetryExecutor:
    """Runs read-only upstream operations, retrying transient failures.

    Non-retryable errors propagate immediately. When attempts are exhausted
    the last error is re-raised unchanged so callers can tell exhaustion of a
    transient condition apart from a hard failure by its type.
    """

    def __init__(
        self,
        policy: RetryPolicy | None = None,
        sleep: Callable[[float], None] = time.sleep,
        rng: random.Random | None = None,
    ) -> None:
        self._policy = policy or RetryPolicy()
        self._sleep = sleep
        self._rng = rng or random.Random()

    @property
    def policy(self) -> RetryPolicy:
        return self._policy

    def run(self, operation: Callable[[], T], description: str = "upstream call") -> T:
        """Invoke `operation` until it succeeds, fails hard, or attempts run out."""
        attempt = 1
        while True:
            try:
                return operation()
            except Exception as exc:
                if not is_retryable(exc) or attempt >= self._policy.max_attempts:
                    if attempt > 1:
                        LOGGER.warning("%s failed after %d attempts: %s", description, attempt, exc)
                    raise
                delay = self._delay_for(attempt, exc)
                LOGGER.info(
                    "%s failed on attempt %d/%d (%s); retrying in %.2fs.",
                    description,
                    attempt,
                    self._policy.max_attempts,
                    exc,
                    delay,
                )
                self._sleep(delay)
                attempt += 1

    def _delay_for(self, attempt: int, exc: Exception) -> float:
        delay = self._policy.delay_for(attempt, self._rng)
        retry_after = getattr(exc, "retry_after", None)
        if retry_after is not None:
            delay = max(delay, min(float(retry_after), self._policy.max_delay_seconds))
        return delay
