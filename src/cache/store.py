import asyncio
import time
from abc import ABC, abstractmethod
from collections.abc import Callable

import redis.asyncio as redis


class KeyValueStore(ABC):
    """Minimal shared store used for namespace counters and cached payloads."""

    @abstractmethod
    async def get(self, key: str) -> str | None:
        raise NotImplementedError

    @abstractmethod
    async def set(self, key: str, value: str, ttl_seconds: int | None = None) -> None:
        raise NotImplementedError

    @abstractmethod
    async def set_if_absent(self, key: str, value: str) -> bool:
        """Store ``value`` only if ``key`` is missing. Returns True if it was stored."""
        raise NotImplementedError

    @abstractmethod
    async def incr(self, key: str) -> int:
        """Atomically increment an integer counter, creating it at 0 first if missing."""
        raise NotImplementedError


class RedisKeyValueStore(KeyValueStore):
    def __init__(self, client: redis.Redis):
        self._client = client

    @classmethod
    def from_url(cls, url: str) -> "RedisKeyValueStore":
        return cls(redis.from_url(url, decode_responses=True))

    async def get(self, key: str) -> str | None:
        return await self._client.get(key)

    async def set(self, key: str, value: str, ttl_seconds: int | None = None) -> None:
        await self._client.set(key, value, ex=ttl_seconds)

    async def set_if_absent(self, key: str, value: str) -> bool:
        return bool(await self._client.set(key, value, nx=True))

    async def incr(self, key: str) -> int:
        return int(await self._client.incr(key))


class InMemoryKeyValueStore(KeyValueStore):
    """Process-local store, for single-process deployments and tests.

    Expired entries are swept periodically. Past ``max_entries`` the oldest
    entries that carry a TTL are evicted; keys without a TTL (the namespace
    version counters) are never evicted, so a version cannot move backwards.
    """

    def __init__(
        self,
        clock: Callable[[], float] = time.monotonic,
        max_entries: int = 10_000,
        sweep_interval_seconds: float = 60,
    ):
        self._clock = clock
        self._max_entries = max_entries
        self._sweep_interval_seconds = sweep_interval_seconds
        self._next_sweep_at = clock() + sweep_interval_seconds
        self._values: dict[str, tuple[str, float | None]] = {}
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._values)

    def _live(self, key: str) -> str | None:
        item = self._values.get(key)
        if item is None:
            return None
        value, expires_at = item
        if expires_at is not None and self._clock() >= expires_at:
            del self._values[key]
            return None
        return value

    def _sweep(self) -> None:
        now = self._clock()
        expired = [
            key
            for key, (_, expires_at) in self._values.items()
            if expires_at is not None and now >= expires_at
        ]
        for key in expired:
            del self._values[key]
        self._next_sweep_at = now + self._sweep_interval_seconds

    def _evict(self) -> None:
        # dicts keep insertion order, so the first expiring keys are the oldest writes
        overflow = len(self._values) - self._max_entries
        if overflow <= 0:
            return
        oldest = [key for key, (_, expires_at) in self._values.items() if expires_at is not None]
        for key in oldest[:overflow]:
            del self._values[key]

    async def get(self, key: str) -> str | None:
        return self._live(key)

    async def set(self, key: str, value: str, ttl_seconds: int | None = None) -> None:
        if self._clock() >= self._next_sweep_at or len(self._values) >= self._max_entries:
            self._sweep()
        expires_at = self._clock() + ttl_seconds if ttl_seconds else None
        # Re-insert so the key counts as the newest write
        self._values.pop(key, None)
        self._values[key] = (value, expires_at)
        self._evict()

    async def set_if_absent(self, key: str, value: str) -> bool:
        async with self._lock:
            if self._live(key) is not None:
                return False
            self._values[key] = (value, None)
            return True

    async def incr(self, key: str) -> int:
        async with self._lock:
            current = int(self._live(key) or 0) + 1
            self._values[key] = (str(current), None)
            return current
