"""In-memory read-through caches with TTL freshness and single-flight refreshes."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, Generic, Optional, TypeVar

logger = logging.getLogger("mission_control.cache")

T = TypeVar("T")
FetchFn = Callable[[], Awaitable[T]]
Clock = Callable[[], float]


@dataclass(frozen=True)
class CacheEntry(Generic[T]):
    data: T
    fetched_at: float


class SingleFlight:
    """Collapses concurrent fetches for the same key into one shared task."""

    def __init__(self) -> None:
        self._inflight: dict[str, asyncio.Future[Any]] = {}

    def in_flight(self, key: str) -> bool:
        return key in self._inflight

    async def get_or_fetch(self, key: str, fetch_fn: FetchFn[T]) -> T:
        task = self._inflight.get(key)
        if task is None:
            task = asyncio.ensure_future(fetch_fn())
            self._inflight[key] = task
            # Registered before any waiter, so the marker is gone before callers resume.
            task.add_done_callback(lambda done, key=key: self._release(key, done))
        # A cancelled caller must not cancel the fetch the other callers joined.
        return await asyncio.shield(task)

    async def wait_settled(self, key: str) -> None:
        """Wait for the in-flight fetch for *key*, if any, ignoring its outcome."""
        task = self._inflight.get(key)
        if task is not None:
            await asyncio.wait([task])

    def _release(self, key: str, task: asyncio.Future[Any]) -> None:
        if self._inflight.get(key) is task:
            del self._inflight[key]
        if not task.cancelled():
            task.exception()


class TTLCache(Generic[T]):
    """One cached dataset: a fetch function, a TTL and the last good entry."""

    def __init__(
        self,
        key: str,
        fetch: FetchFn[T],
        ttl_seconds: float,
        *,
        clock: Clock = time.monotonic,
        single_flight: SingleFlight | None = None,
    ) -> None:
        self.key = key
        self.ttl_seconds = ttl_seconds
        self._fetch = fetch
        self._clock = clock
        self._single_flight = single_flight or SingleFlight()
        self._entry: Optional[CacheEntry[T]] = None
        self._expired = False
        self._generation = 0
        self._flight_generation = 0
        self._background: set[asyncio.Task[Any]] = set()

    @property
    def entry(self) -> Optional[CacheEntry[T]]:
        return self._entry

    def is_fresh(self) -> bool:
        entry = self._entry
        if entry is None or self._expired:
            return False
        return (self._clock() - entry.fetched_at) < self.ttl_seconds

    def in_flight(self) -> bool:
        return self._single_flight.in_flight(self.key)

    async def read(self) -> T:
        if self.is_fresh():
            return self._entry.data
        generation = self._generation
        # A fetch started before the last invalidate may predate the mutation.
        # Let it finish, then start the follow-up; never run two at once.
        while self._single_flight.in_flight(self.key) and self._flight_generation < generation:
            await self._single_flight.wait_settled(self.key)
        if not self._single_flight.in_flight(self.key):
            self._flight_generation = generation
        return await self._single_flight.get_or_fetch(self.key, lambda: self._refresh(generation))

    def invalidate(self) -> None:
        """Force the next read to refetch; the last good data stays available."""
        self._expired = True
        self._generation += 1

    def read_stale_while_revalidate(self) -> Optional[T]:
        """Return whatever is cached now and refresh in the background."""
        entry = self._entry
        if not self.is_fresh():
            task = asyncio.get_running_loop().create_task(
                self._background_read(),
                name=f"cache-revalidate-{self.key}",
            )
            self._background.add(task)
            task.add_done_callback(self._background.discard)
        return entry.data if entry is not None else None

    async def _refresh(self, generation: int) -> T:
        data = await self._fetch()
        # A fetch that started before an invalidate must not repopulate the cache.
        if generation == self._generation:
            previous = self._entry
            fetched_at = self._clock()
            if previous is not None and previous.fetched_at > fetched_at:
                fetched_at = previous.fetched_at
            self._entry = CacheEntry(data=data, fetched_at=fetched_at)
            self._expired = False
        return data

    async def _background_read(self) -> None:
        try:
            await self.read()
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.warning("Background refresh for %s failed: %s", self.key, exc)


class CacheRegistry:
    """Process-wide set of keyed caches sharing one single-flight table."""

    def __init__(self, *, clock: Clock = time.monotonic) -> None:
        self._clock = clock
        self._single_flight = SingleFlight()
        self._caches: dict[str, TTLCache[Any]] = {}

    def register(self, key: str, fetch: FetchFn[T], ttl_seconds: float) -> TTLCache[T]:
        if key in self._caches:
            raise ValueError(f"Cache key {key!r} is already registered")
        cache: TTLCache[T] = TTLCache(
            key,
            fetch,
            ttl_seconds,
            clock=self._clock,
            single_flight=self._single_flight,
        )
        self._caches[key] = cache
        return cache

    def _get(self, key: str) -> TTLCache[Any]:
        try:
            return self._caches[key]
        except KeyError:
            raise KeyError(f"Unknown cache key {key!r}") from None

    def keys(self) -> list[str]:
        return list(self._caches)

    async def read(self, key: str) -> Any:
        return await self._get(key).read()

    def invalidate(self, key: str) -> None:
        self._get(key).invalidate()

    def read_stale_while_revalidate(self, key: str) -> Any:
        return self._get(key).read_stale_while_revalidate()

    def peek(self, key: str) -> Any:
        """Last good data for *key* without triggering a fetch."""
        entry = self._get(key).entry
        return entry.data if entry is not None else None

    def stats(self) -> dict[str, dict[str, Any]]:
        now = self._clock()
        output: dict[str, dict[str, Any]] = {}
        for key, cache in self._caches.items():
            entry = cache.entry
            output[key] = {
                "ttl_seconds": cache.ttl_seconds,
                "cached": entry is not None,
                "age_seconds": round(now - entry.fetched_at, 3) if entry is not None else None,
                "fresh": cache.is_fresh(),
                "in_flight": cache.in_flight(),
            }
        return output
