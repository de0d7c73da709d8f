"""
Resilience components.

Fault tolerance: circuit breaker and retry with jitter.
"""

from lovculator_ws.components.resilience.circuit_breaker import (
    CircuitBreaker,
    CircuitOpenError,
    CircuitState,
)
from lovculator_ws.components.resilience.retry import (
    RetryConfig,
    calculate_delay_with_jitter,
    create_redis_retry_config,
)

__all__ = [
    # Circuit breaker
    "CircuitBreaker",
    "CircuitOpenError",
    "CircuitState",
    # Retry utilities
    "RetryConfig",
    "calculate_delay_with_jitter",
    "create_redis_retry_config",
]
