"""Retry policy for chunk transfers."""

import math
from enum import Enum

from videohost.core.config import Settings, settings


class BackoffStrategy(str, Enum):
    LINEAR = "linear"
    EXPONENTIAL = "exponential"


class RetryConfig:
    """Configuration for retry behavior.

    Linear backoff waits ``attempt * initial_delay``; exponential backoff
    waits ``initial_delay * backoff_multiplier ** (attempt - 1)``. Both are
    capped at ``max_delay``.
    """

    def __init__(
        self,
        max_attempts: int = 3,
        initial_delay: float = 1.0,
        max_delay: float = 30.0,
        strategy: BackoffStrategy = BackoffStrategy.LINEAR,
        backoff_multiplier: float = 2.0,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.max_attempts = max_attempts
        self.initial_delay = initial_delay
        self.max_delay = max_delay
        self.strategy = BackoffStrategy(strategy)
        self.backoff_multiplier = backoff_multiplier

    @classmethod
    def from_settings(cls, config: Settings = settings) -> "RetryConfig":
        return cls(
            max_attempts=config.UPLOAD_MAX_ATTEMPTS,
            initial_delay=config.UPLOAD_RETRY_DELAY_SECONDS,
            max_delay=config.UPLOAD_RETRY_MAX_DELAY_SECONDS,
            strategy=BackoffStrategy(config.UPLOAD_RETRY_STRATEGY.lower()),
        )

    def calculate_delay(self, attempt: int) -> float:
        """Calculate delay after a failed attempt.

        Args:
            attempt: The failed attempt number (1-indexed).

        Returns:
            The delay in seconds, capped at max_delay.
        """
        if attempt < 1:
            return min(self.initial_delay, self.max_delay)

        if self.strategy == BackoffStrategy.LINEAR:
            delay = self.initial_delay * attempt
        else:
            delay = self.initial_delay * math.pow(self.backoff_multiplier, attempt - 1)
        return min(delay, self.max_delay)

    def should_retry(self, attempt: int) -> bool:
        """Check if another attempt is allowed after ``attempt`` failed."""
        return attempt < self.max_attempts

    def __repr__(self) -> str:
        return (
            f"RetryConfig(max_attempts={self.max_attempts}, "
            f"initial_delay={self.initial_delay}, strategy={self.strategy.value})"
        )
