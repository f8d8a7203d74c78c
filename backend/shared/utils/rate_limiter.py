"""
Token bucket request budget for the upstream provider.
Safe for asyncio; one bucket per client instance.
"""
from __future__ import annotations

import asyncio
import time
from typing import Optional

from shared.utils.logging import get_logger

logger = get_logger(__name__)


class TokenBucket:
    """
    In-process token bucket.
    Refills at rpm / 60 tokens per second; max burst = burst.
    """

    def __init__(self, rpm: int, burst: int) -> None:
        self._rpm = max(1, rpm)
        self._burst = max(1, burst)
        self._tokens = float(self._burst)
        self._last_refill = time.monotonic()
        self._lock = asyncio.Lock()

    async def acquire(self) -> bool:
        """Consume one token if available. Returns True if allowed, False if rate limited."""
        async with self._lock:
            now = time.monotonic()
            elapsed = now - self._last_refill
            refill = elapsed * (self._rpm / 60.0)
            self._tokens = min(self._burst, self._tokens + refill)
            self._last_refill = now
            if self._tokens >= 1:
                self._tokens -= 1
                return True
            return False

    async def wait_until_available(self, timeout_s: Optional[float] = None) -> bool:
        """Wait until a token is available or timeout. Returns True if token acquired."""
        deadline = (time.monotonic() + timeout_s) if timeout_s else None
        while True:
            if await self.acquire():
                return True
            if deadline is not None and time.monotonic() >= deadline:
                logger.warning("rate_limit_wait_timeout", rpm=self._rpm, timeout_s=timeout_s)
                return False
            await asyncio.sleep(60.0 / self._rpm)
