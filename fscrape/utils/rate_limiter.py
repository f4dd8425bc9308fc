import asyncio
import time
from typing import Awaitable, Callable

import structlog

logger = structlog.get_logger()


class RateLimiter:
    """Token bucket shared by every request a source adapter makes"""

    def __init__(
        self,
        requests_per_minute: int = 60,
        burst_size: int = 10,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.rate = requests_per_minute / 60.0
        self.burst_size = burst_size
        self.tokens = float(burst_size)
        self._clock = clock
        self._sleep = sleep
        self.last_update = clock()
        self._lock = asyncio.Lock()

    async def acquire(self, source: str = "unknown") -> float:
        """Take one token, sleeping until one is available.

        Returns:
            Seconds spent waiting
        """
        async with self._lock:
            now = self._clock()
            elapsed = now - self.last_update
            self.tokens = min(self.burst_size, self.tokens + elapsed * self.rate)
            self.last_update = now

            if self.tokens >= 1:
                self.tokens -= 1
                return 0.0

            wait_time = (1 - self.tokens) / self.rate
            logger.debug("rate_limit_wait", source=source, wait_seconds=wait_time)
            await self._sleep(wait_time)

            self.tokens = 0
            self.last_update = self._clock()
            return wait_time
