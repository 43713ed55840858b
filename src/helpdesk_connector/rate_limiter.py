"""
Request pacing for one source connection.

Two independent brakes, both applied before every attempt:
- a fixed pre-request delay, for sources with a small global quota (Groove)
- a token bucket holding the sustained requests-per-minute budget

Each RateLimitedClient owns one limiter, so pagination, hydration, lookups
and write-back calls of a source instance all draw from the same budget.
"""

import threading
import time
from collections.abc import Callable
from dataclasses import dataclass


@dataclass
class RateLimiterStats:
    """Statistics for monitoring rate limiter behavior."""
    requests_made: int = 0
    requests_throttled: int = 0
    total_wait_time: float = 0.0
    fixed_delay_time: float = 0.0


class TokenBucketRateLimiter:
    """
    Thread-safe pacing gate: fixed delay first, then one bucket token.

    The bucket holds up to `capacity` tokens and refills at
    `requests_per_minute / 60` tokens per second. With no per-minute budget
    only the fixed delay applies.

    Example:
        limiter = TokenBucketRateLimiter(requests_per_minute=120, pre_request_delay=0.5)

        limiter.acquire()  # Blocks until this request may go out
        send_request()
    """

    def __init__(
        self,
        requests_per_minute: int | None = None,
        burst_capacity: int | None = None,
        pre_request_delay: float = 0.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Initialize rate limiter.

        Args:
            requests_per_minute: Sustained request rate (None disables the bucket)
            burst_capacity: Max burst size (defaults to 10% of per-minute rate, min 1)
            pre_request_delay: Seconds to wait before every request
            clock: Monotonic time source (replaced in tests)
            sleep: Wait function; the client passes its cancellable sleep
        """
        if requests_per_minute is not None and requests_per_minute <= 0:
            raise ValueError("requests_per_minute must be positive")
        if pre_request_delay < 0:
            raise ValueError("pre_request_delay must not be negative")

        self.rate = requests_per_minute / 60.0 if requests_per_minute else None
        self.capacity = burst_capacity or max(1, (requests_per_minute or 0) // 10)
        self.pre_request_delay = pre_request_delay

        self._clock = clock
        self._sleep = sleep
        self._tokens = float(self.capacity)
        self._last_refill = clock()
        self._lock = threading.Lock()

        self.stats = RateLimiterStats()

    def _refill(self) -> None:
        """Add tokens for the time elapsed. Must hold lock."""
        now = self._clock()
        self._tokens = min(self.capacity, self._tokens + (now - self._last_refill) * self.rate)
        self._last_refill = now

    def _take_token(self) -> float:
        """Take a token if one is ready; otherwise return seconds until one is."""
        with self._lock:
            self._refill()
            if self._tokens >= 1.0:
                self._tokens -= 1.0
                return 0.0
            return (1.0 - self._tokens) / self.rate

    def acquire(self) -> None:
        """
        Block until the next request may be sent.

        Raises:
            ExportCancelled: If the sleep function was given a cancelled token
        """
        if self.pre_request_delay > 0:
            self.stats.fixed_delay_time += self.pre_request_delay
            self._sleep(self.pre_request_delay)

        if self.rate is not None:
            wait_time = self._take_token()
            if wait_time > 0:
                self.stats.requests_throttled += 1
            while wait_time > 0:
                self.stats.total_wait_time += wait_time
                # Wait outside the lock
                self._sleep(wait_time)
                wait_time = self._take_token()

        self.stats.requests_made += 1

    @property
    def available_tokens(self) -> float | None:
        """Tokens in the bucket, or None without a per-minute budget."""
        if self.rate is None:
            return None
        with self._lock:
            self._refill()
            return self._tokens

    def get_stats(self) -> dict:
        """Get rate limiter statistics for monitoring."""
        tokens = self.available_tokens
        return {
            "requests_made": self.stats.requests_made,
            "requests_throttled": self.stats.requests_throttled,
            "total_wait_time_seconds": round(self.stats.total_wait_time, 2),
            "fixed_delay_seconds": round(self.stats.fixed_delay_time, 2),
            "available_tokens": None if tokens is None else round(tokens, 1),
            "rate_per_minute": None if self.rate is None else round(self.rate * 60, 1),
        }
