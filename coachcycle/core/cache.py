"""Read-through caching with explicit invalidation and in-flight request coalescing."""
import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Generic, Protocol, TypeVar

import redis.asyncio as redis
from pydantic import TypeAdapter

from coachcycle.config.settings import get_settings
from coachcycle.core.logging import get_logger
from coachcycle.core.metrics import (
    track_cache_coalesced,
    track_cache_hit,
    track_cache_invalidation,
    track_cache_miss,
)

T = TypeVar('T')

logger = get_logger(__name__)


class CacheKind(str, Enum):
    MICROCYCLE = "microcycle"
    PHASE = "phase"
    PROGRAM = "program"
    CATALOG = "catalog"
    MUSCLE_GROUPS = "muscle_groups"
    DASHBOARD = "dashboard"
    HISTORY = "history"


# Key used by kinds that hold a single account-wide value
ALL = "all"


@dataclass(frozen=True)
class CacheKey:
    kind: CacheKind
    id: int | str = ALL

    def __str__(self) -> str:
        return f"{self.kind.value}:{self.id}"


class CacheStore(Protocol):
    """Raw string storage behind an ``EntityCache``. No expiry."""

    async def get(self, key: str) -> str | None: ...

    async def set(self, key: str, value: str) -> None: ...

    async def delete(self, key: str) -> None: ...

    async def delete_prefix(self, prefix: str) -> None: ...


class InMemoryCacheStore:
    """Process-wide dictionary store."""

    def __init__(self):
        self._data: dict[str, str] = {}

    async def get(self, key: str) -> str | None:
        return self._data.get(key)

    async def set(self, key: str, value: str) -> None:
        self._data[key] = value

    async def delete(self, key: str) -> None:
        self._data.pop(key, None)

    async def delete_prefix(self, prefix: str) -> None:
        for key in [k for k in self._data if k.startswith(prefix)]:
            del self._data[key]

    def __len__(self) -> int:
        return len(self._data)


class RedisCacheStore:
    """Redis-backed store. Entries are written without a TTL."""

    def __init__(self, client: redis.Redis):
        self._client = client

    async def get(self, key: str) -> str | None:
        return await self._client.get(key)

    async def set(self, key: str, value: str) -> None:
        await self._client.set(key, value)

    async def delete(self, key: str) -> None:
        await self._client.delete(key)

    async def delete_prefix(self, prefix: str) -> None:
        keys = await self._client.keys(f"{prefix}*")
        if keys:
            await self._client.delete(*keys)


def get_redis() -> redis.Redis:
    """Get Redis client instance."""
    return redis.from_url(get_settings().redis_url, decode_responses=True)


def build_store() -> CacheStore:
    """Store selected by ``settings.cache_backend``."""
    if get_settings().cache_backend == "redis":
        return RedisCacheStore(get_redis())
    return InMemoryCacheStore()


class EntityCache(Generic[T]):
    """
    Cache for one entity kind.

    Values are JSON-encoded on ``set`` and decoded on every ``get``, so each
    reader receives its own copy and nothing can edit a cached value in place.

    ``get_or_fetch`` is the read-through path. Concurrent calls for the same
    key share a single loader invocation. An ``invalidate`` issued while a
    load is in flight detaches that load: its waiters still get the result,
    but it is not written back, and later readers start a fresh load.

    Generation counters only exist for keys with a load running (attached or
    detached), so bookkeeping stays proportional to concurrent loads.
    """

    def __init__(self, kind: CacheKind, value_type: Any, store: CacheStore, namespace: str):
        self.kind = kind
        self._adapter: TypeAdapter[T] = TypeAdapter(value_type)
        self._store = store
        self._prefix = f"{namespace}:{kind.value}:"
        self._inflight: dict[str, asyncio.Future[T]] = {}
        self._loading: dict[str, int] = {}
        self._generations: dict[str, int] = {}
        self._epoch = 0

    def _key(self, key: int | str) -> str:
        return f"{self._prefix}{key}"

    def _generation(self, store_key: str) -> tuple[int, int]:
        return self._epoch, self._generations.get(store_key, 0)

    async def get(self, key: int | str = ALL) -> T | None:
        raw = await self._store.get(self._key(key))
        if raw is None:
            return None
        return self._adapter.validate_json(raw)

    async def set(self, key: int | str, value: T) -> None:
        """Unconditional overwrite. Supersedes any load of the same key in flight."""
        self._detach(self._key(key))
        await self._write(key, value)

    async def _write(self, key: int | str, value: T) -> None:
        await self._store.set(self._key(key), self._adapter.dump_json(value).decode())

    def _detach(self, store_key: str) -> None:
        self._inflight.pop(store_key, None)
        if self._loading.get(store_key):
            self._generations[store_key] = self._generations.get(store_key, 0) + 1

    def _finish_load(self, store_key: str) -> None:
        remaining = self._loading.get(store_key, 1) - 1
        if remaining > 0:
            self._loading[store_key] = remaining
            return
        self._loading.pop(store_key, None)
        self._generations.pop(store_key, None)

    async def invalidate(self, key: int | str = ALL) -> None:
        store_key = self._key(key)
        self._detach(store_key)
        await self._store.delete(store_key)
        track_cache_invalidation(self.kind.value)
        logger.debug("cache_invalidated", kind=self.kind.value, key=key)

    async def invalidate_all(self) -> None:
        self._epoch += 1
        self._inflight.clear()
        await self._store.delete_prefix(self._prefix)
        track_cache_invalidation(self.kind.value)
        logger.debug("cache_cleared", kind=self.kind.value)

    async def get_or_fetch(
        self,
        key: int | str,
        loader: Callable[[], Awaitable[T]],
        on_populate: Callable[[T], Awaitable[None]] | None = None,
    ) -> T:
        """
        Return the cached value, loading and storing it on a miss.

        Args:
            key: Entity key within this kind
            loader: Coroutine factory fetching the authoritative value
            on_populate: Side effect run once per completed load (by the
                caller that started it), e.g. populating a derived cache

        Returns:
            The cached or freshly loaded value
        """
        store_key = self._key(key)

        pending = self._inflight.get(store_key)
        if pending is not None:
            track_cache_coalesced(self.kind.value)
            return await asyncio.shield(pending)

        cached = await self.get(key)
        if cached is not None:
            track_cache_hit(self.kind.value)
            return cached

        # The store read may have suspended; another caller can have
        # started the load meanwhile.
        pending = self._inflight.get(store_key)
        if pending is not None:
            track_cache_coalesced(self.kind.value)
            return await asyncio.shield(pending)

        track_cache_miss(self.kind.value)
        task = asyncio.ensure_future(self._populate(key, loader, on_populate))
        self._inflight[store_key] = task

        def _done(finished: asyncio.Future) -> None:
            if self._inflight.get(store_key) is finished:
                del self._inflight[store_key]
            if not finished.cancelled() and finished.exception() is not None:
                logger.warning(
                    "cache_population_failed",
                    kind=self.kind.value,
                    key=key,
                    error=str(finished.exception()),
                )

        task.add_done_callback(_done)
        return await asyncio.shield(task)

    async def _populate(
        self,
        key: int | str,
        loader: Callable[[], Awaitable[T]],
        on_populate: Callable[[T], Awaitable[None]] | None,
    ) -> T:
        store_key = self._key(key)
        self._loading[store_key] = self._loading.get(store_key, 0) + 1
        try:
            started = self._generation(store_key)
            value = await loader()
            if self._generation(store_key) != started:
                logger.debug("cache_population_discarded", kind=self.kind.value, key=key)
                return value
            await self._write(key, value)
        finally:
            self._finish_load(store_key)
        if on_populate is not None:
            await on_populate(value)
        return value

    def is_loading(self, key: int | str = ALL) -> bool:
        return self._key(key) in self._inflight
