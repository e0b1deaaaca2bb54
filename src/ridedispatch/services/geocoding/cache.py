"""Cache-backed address resolution.

``AddressCache`` sits in front of the upstream geocoder. Results are stored in
a shared key-value store under ``geo:<raw address>`` with a fixed TTL, so a
repeated address costs one upstream lookup per TTL window. Concurrent misses for
the same address inside one process share a single in-flight lookup.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from typing import Callable, Protocol

from redis.asyncio import Redis

from ...errors import ResolutionError
from ...models.domain import ResolvedLocation
from .geocoder import Geocoder

CACHE_KEY_PREFIX = "geo:"
DEFAULT_TTL_SECONDS = 24 * 60 * 60

logger = logging.getLogger(__name__)


class KeyValueStore(Protocol):
    async def get(self, key: str) -> str | None:
        ...

    async def set_with_ttl(self, key: str, value: str, ttl_seconds: int) -> None:
        ...


class RedisKeyValueStore:
    """Key-value store backed by Redis ``GET``/``SET EX``."""

    def __init__(self, redis: Redis) -> None:
        self.redis = redis

    async def get(self, key: str) -> str | None:
        return await self.redis.get(key)

    async def set_with_ttl(self, key: str, value: str, ttl_seconds: int) -> None:
        await self.redis.set(key, value, ex=ttl_seconds)


class InMemoryKeyValueStore:
    """Process-local store with per-entry expiry, for single-process runs and tests."""

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._entries: dict[str, tuple[str, float]] = {}

    async def get(self, key: str) -> str | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if self._clock() >= expires_at:
            del self._entries[key]
            return None
        return value

    async def set_with_ttl(self, key: str, value: str, ttl_seconds: int) -> None:
        self._entries[key] = (value, self._clock() + ttl_seconds)


class AddressCache:
    def __init__(
        self,
        store: KeyValueStore,
        upstream: Geocoder,
        ttl_seconds: int = DEFAULT_TTL_SECONDS,
    ) -> None:
        self.store = store
        self.upstream = upstream
        self.ttl_seconds = ttl_seconds
        self._in_flight: dict[str, asyncio.Future[ResolvedLocation]] = {}

    async def resolve(self, address: str) -> ResolvedLocation:
        key = f"{CACHE_KEY_PREFIX}{address}"
        cached = await self.store.get(key)
        if cached is not None:
            try:
                return ResolvedLocation.from_dict(json.loads(cached))
            except (ValueError, KeyError, TypeError):
                logger.warning(f"Discarding unreadable cache entry for '{address}'")

        while True:
            pending = self._in_flight.get(key)
            if pending is None:
                return await self._lead(key, address)
            try:
                return await asyncio.shield(pending)
            except asyncio.CancelledError:
                # Only the leading task was cancelled; look the address up again.
                if not pending.cancelled():
                    raise

    async def _lead(self, key: str, address: str) -> ResolvedLocation:
        future: asyncio.Future[ResolvedLocation] = asyncio.get_running_loop().create_future()
        self._in_flight[key] = future
        try:
            location = await self._lookup(address)
            await self._store(key, address, location)
        except asyncio.CancelledError:
            future.cancel()
            raise
        except Exception as exc:
            future.set_exception(exc)
            # Mark retrieved so a miss with no concurrent waiters does not warn.
            future.exception()
            raise
        else:
            future.set_result(location)
        finally:
            self._in_flight.pop(key, None)
        return location

    async def _store(self, key: str, address: str, location: ResolvedLocation) -> None:
        try:
            await self.store.set_with_ttl(key, json.dumps(location.to_dict(), ensure_ascii=False), self.ttl_seconds)
        except Exception as exc:
            logger.warning(f"Failed to cache geocode result for '{address}': {exc}")

    async def _lookup(self, address: str) -> ResolvedLocation:
        if not address or not address.strip():
            raise ResolutionError(address, "address is empty")
        logger.debug(f"Geocode cache miss for '{address}'")
        try:
            return await self.upstream.geocode(address)
        except ResolutionError:
            raise
        except Exception as exc:
            raise ResolutionError(address, str(exc)) from exc
