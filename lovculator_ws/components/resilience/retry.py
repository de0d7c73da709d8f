"""
Retry delays with exponential backoff and jitter.

Jitter keeps every gateway node from reconnecting to Redis in the same
instant after a failover.
"""

from __future__ import annotations

import random
from dataclasses import dataclass
from typing import Final

from lovculator_ws.components.core.constants import WSConstants


# Default jitter range: +/-25% of calculated delay
DEFAULT_JITTER_FACTOR: Final[float] = 0.25


@dataclass(frozen=True, slots=True)
class RetryConfig:
    """
    Configuration for retry behavior.

    Attributes:
        initial_delay: Base delay in seconds.
        max_delay: Maximum delay cap in seconds.
        backoff_base: Exponential backoff multiplier.
        jitter_factor: Random jitter range as fraction (0.25 = +/-25%).
        max_attempts: Maximum retry attempts.
    """

    initial_delay: float = 1.0
    max_delay: float = WSConstants.MAX_RECONNECT_DELAY
    backoff_base: float = 2.0
    jitter_factor: float = DEFAULT_JITTER_FACTOR
    max_attempts: int = 10

    def __post_init__(self) -> None:
        if self.initial_delay <= 0:
            raise ValueError("initial_delay must be positive")
        if self.max_delay < self.initial_delay:
            raise ValueError("max_delay must be >= initial_delay")
        if self.backoff_base < 1:
            raise ValueError("backoff_base must be >= 1")
        if not 0 <= self.jitter_factor <= 1:
            raise ValueError("jitter_factor must be between 0 and 1")
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")


def calculate_delay_with_jitter(
    attempt: int,
    config: RetryConfig | None = None,
) -> float:
    """
    Delay before retry ``attempt`` (0-indexed).

        base   = initial_delay * backoff_base ** attempt
        capped = min(base, max_delay)
        delay  = capped * (1 +/- jitter_factor)

    Example:
        >>> config = RetryConfig(initial_delay=1.0, max_delay=30.0)
        >>> calculate_delay_with_jitter(0, config)  # ~1.0s +/- 25%
        >>> calculate_delay_with_jitter(5, config)  # ~30.0s +/- 25% (capped)
    """
    if config is None:
        config = RetryConfig()

    capped_delay = min(config.initial_delay * (config.backoff_base ** attempt), config.max_delay)
    jitter_range = capped_delay * config.jitter_factor
    return max(0.0, capped_delay + random.uniform(-jitter_range, jitter_range))


def create_redis_retry_config(
    max_attempts: int,
    max_delay: float = WSConstants.MAX_RECONNECT_DELAY,
) -> RetryConfig:
    """Retry configuration for backplane reconnection."""
    return RetryConfig(
        initial_delay=1.0,
        max_delay=max_delay,
        backoff_base=2.0,
        jitter_factor=DEFAULT_JITTER_FACTOR,
        max_attempts=max_attempts,
    )
