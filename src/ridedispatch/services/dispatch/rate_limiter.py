"""Rolling-window limits on dispatch job starts."""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from collections import deque
from typing import Awaitable, Callable, Protocol

from redis.asyncio import Redis

logger = logging.getLogger(__name__)

# Returns 0 when a start slot was taken, otherwise the seconds to wait until the
# oldest start leaves the window. Returned as a string so Redis keeps fractions.
SLIDING_WINDOW_SCRIPT = """
local key = KEYS[1]
local now = tonumber(ARGV[1])
local window = tonumber(ARGV[2])
local limit = tonumber(ARGV[3])
redis.call('ZREMRANGEBYSCORE', key, '-inf', now - window)
if redis.call('ZCARD', key) < limit then
  redis.call('ZADD', key, now, ARGV[4])
  redis.call('PEXPIRE', key, math.ceil(window * 1000))
  return '0'
end
local oldest = redis.call('ZRANGE', key, 0, 0, 'WITHSCORES')
return tostring(tonumber(oldest[2]) + window - now)
"""


class RateLimiter(Protocol):
    async def acquire(self) -> None:
        ...


class SlidingWindowRateLimiter:
    """In-process limiter: at most ``limit`` acquisitions per rolling ``window_seconds``."""

    def __init__(
        self,
        limit: int,
        window_seconds: float,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if limit < 1:
            raise ValueError("Rate limit must allow at least one start per window.")
        self.limit = limit
        self.window_seconds = window_seconds
        self._clock = clock
        self._sleep = sleep
        self._starts: deque[float] = deque()
        self._lock = asyncio.Lock()

    async def acquire(self) -> None:
        async with self._lock:
            while True:
                now = self._clock()
                while self._starts and now - self._starts[0] >= self.window_seconds:
                    self._starts.popleft()
                if len(self._starts) < self.limit:
                    self._starts.append(now)
                    return
                wait_time = self._starts[0] + self.window_seconds - now
                logger.debug(f"Dispatch rate limit reached; waiting {wait_time:.2f}s")
                await self._sleep(wait_time)


class RedisRateLimiter:
    """Limiter shared by every worker process through one Redis sorted set."""

    def __init__(
        self,
        redis: Redis,
        key: str,
        limit: int,
        window_seconds: float,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.redis = redis
        self.key = key
        self.limit = limit
        self.window_seconds = window_seconds
        self._clock = clock
        self._sleep = sleep
        self._script = redis.register_script(SLIDING_WINDOW_SCRIPT)

    async def acquire(self) -> None:
        while True:
            member = uuid.uuid4().hex
            reply = await self._script(
                keys=[self.key],
                args=[repr(self._clock()), self.window_seconds, self.limit, member],
            )
            wait_time = float(reply)
            if wait_time <= 0:
                return
            logger.debug(f"Dispatch rate limit reached; waiting {wait_time:.2f}s")
            await self._sleep(wait_time)
