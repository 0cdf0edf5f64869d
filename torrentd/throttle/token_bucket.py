"""Token bucket enforcing a RateLimiterSpec on a byte-transfer path."""

from __future__ import annotations

import asyncio
import threading
import time
from typing import Callable

from torrentd.throttle.rate_limiter import RateLimiterSpec


class TokenBucket:
    """Token bucket limiter.

    The bucket starts full. Tokens refill at ``spec.rate`` per second up to
    ``spec.burst``; sending ``n`` bytes consumes ``n`` tokens.
    """

    def __init__(
        self,
        spec: RateLimiterSpec,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize token bucket.

        Args:
            spec: Rate and burst to enforce
            clock: Monotonic time source in seconds

        """
        self._clock = clock
        self._lock = threading.Lock()
        self._spec = spec
        self._tokens = float(spec.burst)
        self._last = clock()

    @property
    def spec(self) -> RateLimiterSpec:
        """Currently enforced spec."""
        return self._spec

    @property
    def tokens(self) -> float:
        """Tokens available right now."""
        with self._lock:
            self._refill()
            return self._tokens

    def _refill(self) -> None:
        now = self._clock()
        elapsed = max(0.0, now - self._last)
        self._last = now
        if self._spec.unlimited:
            return
        self._tokens = min(
            float(self._spec.burst), self._tokens + elapsed * self._spec.rate
        )

    def reconfigure(self, spec: RateLimiterSpec) -> None:
        """Switch to a new spec, keeping accumulated tokens up to the new burst."""
        with self._lock:
            self._refill()
            self._spec = spec
            self._tokens = min(self._tokens, float(spec.burst))

    def allow(self, n: int = 1) -> bool:
        """Take ``n`` tokens if they are available right now."""
        with self._lock:
            if self._spec.unlimited:
                return True
            self._refill()
            if self._tokens >= n:
                self._tokens -= n
                return True
            return False

    def _reserve(self, n: int) -> float:
        """Take ``n`` tokens, possibly going negative; return the wait in seconds."""
        with self._lock:
            if self._spec.unlimited:
                return 0.0
            if n > self._spec.burst:
                msg = f"request of {n} exceeds limiter burst {self._spec.burst}"
                raise ValueError(msg)
            self._refill()
            self._tokens -= n
            if self._tokens >= 0:
                return 0.0
            return -self._tokens / self._spec.rate

    def _refund(self, n: int) -> None:
        with self._lock:
            self._refill()
            self._tokens = min(float(self._spec.burst), self._tokens + n)

    async def wait(self, n: int = 1) -> None:
        """Block until ``n`` tokens have been taken.

        A cancelled wait gives its reservation back.

        Raises:
            ValueError: ``n`` is larger than the burst, so it can never succeed.

        """
        delay = self._reserve(n)
        if delay > 0:
            try:
                await asyncio.sleep(delay)
            except asyncio.CancelledError:
                self._refund(n)
                raise
