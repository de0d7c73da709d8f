"""
Circuit Breaker for the Redis backplane.

Stops publish attempts (and the log flood that comes with them) while Redis
is down, and lets a single probe through after the recovery timeout.
"""

from __future__ import annotations

import logging
import time
from enum import Enum
from typing import Any, Callable

from lovculator_shared.config.logging import get_logger
from lovculator_ws.components.core.constants import WSConstants

logger = get_logger(__name__)


class CircuitState(Enum):
    """States of the circuit breaker."""
    CLOSED = "closed"  # Normal operation - calls pass through
    OPEN = "open"  # Failure mode - calls are rejected immediately
    HALF_OPEN = "half_open"  # Recovery testing - limited calls allowed


class CircuitOpenError(Exception):
    """Raised when circuit breaker is open and rejecting calls."""


class CircuitBreaker:
    """
    Circuit Breaker for async operations.

    States:
    - CLOSED: Normal operation. Consecutive failures are counted.
    - OPEN: All calls fail fast with CircuitOpenError. Moves to HALF_OPEN
            after the recovery timeout.
    - HALF_OPEN: A limited number of probe calls. Success closes the
                 circuit, failure opens it again.

    Everything runs on the event loop thread, so no lock is needed.

    Usage:
        breaker = CircuitBreaker("redis_publish")

        async with breaker:
            await redis.publish(channel, data)
    """

    def __init__(
        self,
        name: str,
        failure_threshold: int = WSConstants.CIRCUIT_FAILURE_THRESHOLD,
        recovery_timeout: float = WSConstants.CIRCUIT_RECOVERY_TIMEOUT,
        half_open_max_calls: int = WSConstants.CIRCUIT_HALF_OPEN_MAX_CALLS,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Args:
            name: Name for logging and identification.
            failure_threshold: Consecutive failures before opening circuit.
            recovery_timeout: Seconds to wait in OPEN before trying recovery.
            half_open_max_calls: Max calls allowed in HALF_OPEN state.
            clock: Monotonic time source, injectable for tests.
        """
        self._name = name
        self._failure_threshold = failure_threshold
        self._recovery_timeout = recovery_timeout
        self._half_open_max_calls = half_open_max_calls
        self._clock = clock

        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._last_failure_time: float | None = None
        self._half_open_calls = 0

        # Metrics
        self._total_calls = 0
        self._failed_calls = 0
        self._rejected_calls = 0
        self._state_changes = 0

    @property
    def name(self) -> str:
        return self._name

    @property
    def state(self) -> CircuitState:
        return self._state

    @property
    def is_open(self) -> bool:
        return self._state == CircuitState.OPEN

    async def __aenter__(self) -> "CircuitBreaker":
        self.before_call()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: Any,
    ) -> bool:
        if exc_type is None:
            self.record_success()
        elif not issubclass(exc_type, CircuitOpenError):
            self.record_failure(exc_val)
        return False  # Don't suppress exceptions

    def before_call(self) -> None:
        """
        Check whether a call may proceed, moving OPEN -> HALF_OPEN when due.

        Raises:
            CircuitOpenError: If the circuit is rejecting calls.
        """
        self._total_calls += 1

        if self._state == CircuitState.OPEN:
            elapsed = self._clock() - (self._last_failure_time or 0.0)
            if elapsed >= self._recovery_timeout:
                self._transition_to(CircuitState.HALF_OPEN)
            else:
                self._rejected_calls += 1
                raise CircuitOpenError(
                    f"Circuit breaker '{self._name}' is OPEN. "
                    f"Recovery in {self._recovery_timeout - elapsed:.1f}s"
                )

        if self._state == CircuitState.HALF_OPEN:
            if self._half_open_calls >= self._half_open_max_calls:
                self._rejected_calls += 1
                raise CircuitOpenError(
                    f"Circuit breaker '{self._name}' is HALF_OPEN and at max test calls"
                )
            self._half_open_calls += 1

    def record_failure(self, error: BaseException | None = None) -> None:
        self._failed_calls += 1
        self._failure_count += 1
        self._last_failure_time = self._clock()

        if self._state == CircuitState.HALF_OPEN:
            self._transition_to(CircuitState.OPEN, error)
        elif (
            self._state == CircuitState.CLOSED
            and self._failure_count >= self._failure_threshold
        ):
            self._transition_to(CircuitState.OPEN, error)

    def record_success(self) -> None:
        if self._state == CircuitState.HALF_OPEN:
            self._transition_to(CircuitState.CLOSED)
        elif self._state == CircuitState.CLOSED:
            self._failure_count = 0

    def reset(self) -> None:
        """Manually reset the circuit breaker to CLOSED state."""
        self._transition_to(CircuitState.CLOSED)
        self._failure_count = 0

    def _transition_to(self, new_state: CircuitState, error: BaseException | None = None) -> None:
        old_state = self._state
        if old_state == new_state:
            return

        self._state = new_state
        self._state_changes += 1
        self._half_open_calls = 0
        if new_state == CircuitState.CLOSED:
            self._failure_count = 0

        level = logging.WARNING
        if new_state == CircuitState.CLOSED:
            level = logging.INFO
        elif new_state == CircuitState.OPEN:
            level = logging.ERROR

        logger.log(
            level,
            "Circuit breaker state change",
            name=self._name,
            from_state=old_state.value,
            to_state=new_state.value,
            failure_count=self._failure_count,
            error=str(error) if error else None,
        )

    def get_stats(self) -> dict[str, Any]:
        return {
            "name": self._name,
            "state": self._state.value,
            "failure_count": self._failure_count,
            "failure_threshold": self._failure_threshold,
            "recovery_timeout": self._recovery_timeout,
            "total_calls": self._total_calls,
            "failed_calls": self._failed_calls,
            "rejected_calls": self._rejected_calls,
            "state_changes": self._state_changes,
        }
