"""Shared rate limiting and bounded retries for external calls."""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, TypeVar

from triage_bot.errors import TransientError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class TokenBucket:
    """Thread-safe token bucket; ``acquire`` blocks until a token is available."""

    def __init__(
        self,
        rate_per_s: float,
        capacity: int,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if rate_per_s <= 0:
            raise ValueError("rate_per_s must be positive")
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self.rate_per_s = float(rate_per_s)
        self.capacity = int(capacity)
        self._clock = clock
        self._sleep = sleep
        self._tokens = float(capacity)
        self._updated = clock()
        self._lock = threading.Lock()

    def _refill(self) -> None:
        now = self._clock()
        elapsed = max(0.0, now - self._updated)
        self._tokens = min(float(self.capacity), self._tokens + elapsed * self.rate_per_s)
        self._updated = now

    def try_acquire(self) -> bool:
        with self._lock:
            self._refill()
            if self._tokens >= 1.0:
                self._tokens -= 1.0
                return True
            return False

    def acquire(self) -> float:
        """Take one token and return the number of seconds spent waiting."""
        waited = 0.0
        while True:
            with self._lock:
                self._refill()
                if self._tokens >= 1.0:
                    self._tokens -= 1.0
                    return waited
                wait = (1.0 - self._tokens) / self.rate_per_s
            self._sleep(wait)
            waited += wait


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    base_delay_s: float = 1.0
    max_delay_s: float = 30.0

    def delay_for(self, attempt: int, retry_after_s: float | None = None) -> float:
        """Backoff before retry number ``attempt`` (1-based)."""
        delay = self.base_delay_s * (2 ** (attempt - 1))
        if retry_after_s is not None:
            delay = max(delay, retry_after_s)
        return min(delay, self.max_delay_s)


class ResilientCaller:
    """Wraps every external call with the shared rate limiter and the retry policy.

    Only ``TransientError`` is retried; anything else propagates on the first
    failure. When attempts run out the last ``TransientError`` is re-raised.
    """

    def __init__(
        self,
        limiter: TokenBucket | None = None,
        policy: RetryPolicy | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.limiter = limiter
        self.policy = policy or RetryPolicy()
        self._sleep = sleep

    def without_limiter(self) -> ResilientCaller:
        """Same retry policy, no rate limiting; for local writes such as the database."""
        return ResilientCaller(limiter=None, policy=self.policy, sleep=self._sleep)

    def call(self, operation: str, fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        attempt = 0
        while True:
            attempt += 1
            if self.limiter is not None:
                self.limiter.acquire()
            try:
                return fn(*args, **kwargs)
            except TransientError as exc:
                if attempt >= self.policy.max_attempts:
                    logger.error(
                        "%s failed after %d attempts (%s): %s",
                        operation,
                        attempt,
                        exc.reason_code,
                        exc,
                    )
                    raise
                delay = self.policy.delay_for(attempt, exc.retry_after_s)
                logger.warning(
                    "%s transient failure (%s), retrying in %.1fs (attempt %d/%d)",
                    operation,
                    exc.reason_code,
                    delay,
                    attempt + 1,
                    self.policy.max_attempts,
                )
                self._sleep(delay)
