"""Async token bucket limiting outbound web-research requests per minute."""

import asyncio
import logging
import time

logger = logging.getLogger(__name__)


class TokenBucket:
    def __init__(
        self,
        capacity: int,
        refill_per_minute: float,
        max_wait_s: float = 30.0,
    ) -> None:
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self.capacity = capacity
        self.refill_per_minute = refill_per_minute
        self.max_wait_s = max_wait_s
        self._tokens = float(capacity)
        self._last_refill = time.monotonic()
        self._lock = asyncio.Lock()

    @property
    def available(self) -> int:
        self._refill()
        return int(self._tokens)

    def _refill(self) -> None:
        now = time.monotonic()
        elapsed = now - self._last_refill
        self._tokens = min(
            float(self.capacity),
            self._tokens + elapsed / 60.0 * self.refill_per_minute,
        )
        self._last_refill = now

    def try_acquire(self) -> bool:
        self._refill()
        if self._tokens >= 1:
            self._tokens -= 1
            return True
        return False

    async def acquire(self) -> None:
        """Wait for a token; raises TimeoutError after ``max_wait_s``."""
        deadline = time.monotonic() + self.max_wait_s
        async with self._lock:
            while not self.try_acquire():
                wait = (1 - self._tokens) * 60.0 / self.refill_per_minute
                if time.monotonic() + wait > deadline:
                    raise TimeoutError(
                        f"Rate limit wait exceeds {self.max_wait_s:.0f}s"
                    )
                logger.debug("Rate limited, waiting %.2fs", wait)
                await asyncio.sleep(wait)
