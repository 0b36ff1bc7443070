"""Retry policy used by the execution engine for failed tasks."""

import random
from typing import Optional

from ..config import AppConfig


class RetryConfig:
    """Configuration for retry behavior.

    ``max_attempts`` counts the first attempt, so ``max_attempts=1`` disables
    retries altogether.
    """

    def __init__(
        self,
        max_attempts: int = 3,
        base_delay: float = 1.0,
        max_delay: float = 60.0,
        exponential_base: float = 2.0,
        jitter: bool = True,
        retry_on_client_errors: bool = False
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.exponential_base = exponential_base
        self.jitter = jitter
        self.retry_on_client_errors = retry_on_client_errors

    @classmethod
    def from_config(cls, config: AppConfig) -> 'RetryConfig':
        return cls(
            max_attempts=config.task_retry_max_attempts,
            base_delay=config.task_retry_base_delay,
            max_delay=config.task_retry_max_delay
        )

    def should_retry(self, status_code: Optional[int], attempt: int) -> bool:
        """Decide whether a failed task attempt is worth repeating.

        Transport failures (no status code) and server errors are retried;
        4xx responses are only retried when ``retry_on_client_errors`` is set.
        """
        if attempt >= self.max_attempts:
            return False
        if status_code is None or status_code >= 500:
            return True
        return self.retry_on_client_errors

    def get_delay(self, attempt: int) -> float:
        """Calculate delay before the attempt following ``attempt``."""
        delay = self.base_delay * (self.exponential_base ** (attempt - 1))
        delay = min(delay, self.max_delay)

        if self.jitter:
            delay *= (0.5 + random.random() * 0.5)

        return delay
