"""
Connection Rate Limiter.

Per-origin-address sliding window for new upgrade attempts. Runs before
authentication, so it is the first line of defence against reconnect
storms and scripted floods.
"""

from __future__ import annotations

import time
from collections import deque
from typing import Callable

from lovculator_shared.config.logging import get_logger
from lovculator_ws.components.core.constants import WSConstants

logger = get_logger(__name__)


class ConnectionRateLimiter:
    """
    Sliding-window admission control keyed by origin address.

    Each address keeps the timestamps of its admitted attempts within the
    trailing window. An attempt is rejected when the window already holds
    ``max_attempts`` entries. Rejected attempts are NOT recorded: an address
    being hammered regains access as soon as its admitted attempts age out,
    instead of being locked out for as long as the flood continues.

    All methods are synchronous; the event loop serializes access.
    """

    def __init__(
        self,
        max_attempts: int,
        window_seconds: float,
        max_tracked: int = WSConstants.MAX_TRACKED_ADDRESSES,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize the rate limiter.

        Args:
            max_attempts: Attempts allowed per window (per address).
            window_seconds: Window size in seconds.
            max_tracked: Maximum addresses held between sweeps.
            clock: Monotonic time source, injectable for tests.
        """
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if window_seconds <= 0:
            raise ValueError("window_seconds must be positive")

        self._max_attempts = max_attempts
        self._window_seconds = window_seconds
        self._max_tracked = max_tracked
        self._clock = clock

        self._windows: dict[str, deque[float]] = {}

        # Metrics
        self._total_allowed = 0
        self._total_rejected = 0
        self._evictions = 0

    @property
    def max_attempts(self) -> int:
        return self._max_attempts

    @property
    def window_seconds(self) -> float:
        return self._window_seconds

    @property
    def tracked_count(self) -> int:
        """Number of addresses currently holding a window."""
        return len(self._windows)

    def allow(self, address: str | None) -> bool:
        """
        Check whether a new connection attempt from this address is allowed.

        Unknown addresses (no peer info) share a single bucket.

        Returns:
            True if admitted (and recorded), False if rate limited.
        """
        key = address or "<unknown>"
        now = self._clock()
        window_start = now - self._window_seconds

        window = self._windows.get(key)
        if window is None:
            if len(self._windows) >= self._max_tracked:
                self._make_room(now)
            window = deque()
            self._windows[key] = window

        while window and window[0] <= window_start:
            window.popleft()

        if len(window) >= self._max_attempts:
            self._total_rejected += 1
            return False

        window.append(now)
        self._total_allowed += 1
        return True

    def retry_after(self, address: str | None) -> float:
        """Seconds until the address's oldest admitted attempt leaves the window."""
        window = self._windows.get(address or "<unknown>")
        if not window or len(window) < self._max_attempts:
            return 0.0
        return max(0.0, window[0] + self._window_seconds - self._clock())

    def sweep(self) -> int:
        """
        Drop expired timestamps and delete addresses with none left.

        Returns:
            Number of addresses removed.
        """
        window_start = self._clock() - self._window_seconds
        to_remove: list[str] = []

        for key, window in self._windows.items():
            while window and window[0] <= window_start:
                window.popleft()
            if not window:
                to_remove.append(key)

        for key in to_remove:
            del self._windows[key]

        if to_remove:
            logger.debug(
                "Rate limiter sweep",
                removed=len(to_remove),
                remaining=len(self._windows),
            )
        return len(to_remove)

    def _make_room(self, now: float) -> None:
        """Sweep, then evict the least recently active address if still full."""
        self.sweep()
        if len(self._windows) < self._max_tracked:
            return

        logger.warning(
            "Rate limiter at capacity, evicting least recent address",
            max_tracked=self._max_tracked,
        )
        oldest = min(self._windows, key=lambda k: self._windows[k][-1] if self._windows[k] else now)
        del self._windows[oldest]
        self._evictions += 1

    def get_stats(self) -> dict[str, int | float]:
        """Get rate limiter statistics."""
        return {
            "tracked_addresses": len(self._windows),
            "max_tracked": self._max_tracked,
            "max_attempts_per_window": self._max_attempts,
            "window_seconds": self._window_seconds,
            "total_allowed": self._total_allowed,
            "total_rejected": self._total_rejected,
            "evictions": self._evictions,
        }
