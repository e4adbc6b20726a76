"""Bounded retry policy for transient provider failures."""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass, field

from model_relay.config import RetrySettings
from model_relay.orchestrator.failure_classifier import is_transient_failure


@dataclass(slots=True)
class RetryPolicy:
    """How many times one role is attempted and which errors are retryable.

    `max_attempts` counts the first call, so `max_attempts=3` means one call
    plus two retries on the same provider.
    """

    max_attempts: int = 3
    classifier: Callable[[BaseException], bool] = is_transient_failure
    base_delay_seconds: float = 1.0
    max_delay_seconds: float = 30.0
    sleep: Callable[[float], None] = field(default=time.sleep, repr=False)

    def __post_init__(self) -> None:
        if self.max_attempts <= 0:
            raise ValueError("max_attempts must be > 0.")

    @classmethod
    def from_settings(cls, settings: RetrySettings) -> RetryPolicy:
        """Build policy from retry settings."""

        return cls(
            max_attempts=settings.max_attempts,
            base_delay_seconds=settings.base_delay_seconds,
            max_delay_seconds=settings.max_delay_seconds,
        )

    def is_retryable(self, error: BaseException) -> bool:
        """Return True if the error is classified as transient."""

        return self.classifier(error)

    def delay_for(self, retry_no: int) -> float:
        """Exponential backoff delay before retry number `retry_no` (1-based)."""

        delay = self.base_delay_seconds * (2 ** max(retry_no - 1, 0))
        return min(delay, self.max_delay_seconds)

    def wait(self, retry_no: int) -> None:
        delay = self.delay_for(retry_no)
        if delay > 0:
            self.sleep(delay)
