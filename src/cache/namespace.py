"""Per-wedding versioned cache namespaces.

Each wedding owns one integer counter. Cached reads are stored under a key
that embeds the counter value seen at read time, so bumping the counter
invalidates every cached read of that wedding at once without tracking
individual keys. The counter only moves forward.
"""

import json
import logging
import random
from collections.abc import Awaitable, Callable
from functools import lru_cache
from typing import Any
from uuid import UUID

from src.cache.store import InMemoryKeyValueStore, KeyValueStore, RedisKeyValueStore
from src.config.settings import settings

logger = logging.getLogger(__name__)

MIN_TTL_SECONDS = 30


def with_jitter(ttl_seconds: int, jitter_seconds: int) -> int:
    jitter = random.randint(-jitter_seconds, jitter_seconds) if jitter_seconds else 0
    return max(MIN_TTL_SECONDS, ttl_seconds + jitter)


def _to_json_compatible(payload: Any) -> Any:
    return json.loads(json.dumps(payload, default=str))


class CacheNamespaceManager:
    def __init__(
        self,
        store: KeyValueStore,
        namespace: str = "wg",
        ttl_seconds: int = 120,
        jitter_seconds: int = 20,
    ):
        self._store = store
        self._namespace = namespace
        self._ttl_seconds = ttl_seconds
        self._jitter_seconds = jitter_seconds

    async def ping(self) -> bool:
        try:
            await self._store.get(f"{self._namespace}:ping")
        except Exception as e:
            logger.warning(f"Cache store unreachable: {e}")
            return False
        return True

    def _version_key(self, wedding_id: UUID) -> str:
        return f"{self._namespace}:{wedding_id}:version"

    def _entry_key(self, wedding_id: UUID, version: int, key: str) -> str:
        return f"{self._namespace}:{wedding_id}:v{version}:{key}"

    async def current_version(self, wedding_id: UUID) -> int:
        version_key = self._version_key(wedding_id)
        value = await self._store.get(version_key)
        if value is None:
            # first touch of this namespace
            await self._store.set_if_absent(version_key, "1")
            value = await self._store.get(version_key)
        return int(value or 1)

    async def bump_namespace_version(self, wedding_id: UUID) -> int:
        """Invalidate every cached read of the wedding.

        Call only after the mutation committed, otherwise a reader can cache
        stale data under the new version.
        """
        version = await self._store.incr(self._version_key(wedding_id))
        logger.debug(f"Cache namespace of wedding {wedding_id} bumped to v{version}")
        return version

    async def bump_after_commit(self, wedding_id: UUID) -> None:
        """Bump for a write that is already durable; a store outage must not fail it."""
        try:
            await self.bump_namespace_version(wedding_id)
        except Exception:
            logger.exception(f"Failed to bump cache namespace of wedding {wedding_id}")

    async def cached(
        self,
        wedding_id: UUID,
        key: str,
        fetcher: Callable[[], Awaitable[Any]],
        ttl_seconds: int | None = None,
    ) -> Any:
        """Return the cached payload for ``key`` or fetch and cache it.

        Payloads round-trip through JSON, so hits and misses return the same
        shapes (UUIDs and datetimes become strings).
        """
        try:
            version = await self.current_version(wedding_id)
            entry_key = self._entry_key(wedding_id, version, key)
            raw = await self._store.get(entry_key)
        except Exception as e:
            logger.warning(f"Cache read error for {key}: {e}")
            return _to_json_compatible(await fetcher())

        if raw is not None:
            entry = json.loads(raw)
            if entry.get("wedding_id") == str(wedding_id) and entry.get("version") == version:
                logger.debug(f"Cache HIT: {key}")
                return entry["payload"]

        logger.debug(f"Cache MISS: {key}")
        payload = _to_json_compatible(await fetcher())
        entry = {"wedding_id": str(wedding_id), "version": version, "payload": payload}
        try:
            await self._store.set(
                entry_key,
                json.dumps(entry),
                with_jitter(ttl_seconds or self._ttl_seconds, self._jitter_seconds),
            )
        except Exception as e:
            logger.warning(f"Cache write error for {key}: {e}")
        return payload


@lru_cache
def get_cache_manager() -> CacheNamespaceManager:
    if settings.redis_url:
        store: KeyValueStore = RedisKeyValueStore.from_url(settings.redis_url)
    else:
        store = InMemoryKeyValueStore()
    return CacheNamespaceManager(
        store=store,
        namespace=settings.cache_namespace,
        ttl_seconds=settings.cache_ttl_seconds,
        jitter_seconds=settings.cache_jitter_seconds,
    )
