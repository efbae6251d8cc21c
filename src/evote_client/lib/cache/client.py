"""TTL cache, in-flight collapsing, debounced refresh and stale serving.

``CacheClient`` is the single point of network access for read paths.
Each key has one registered loader. A fetch either replaces the whole
entry or leaves it untouched, and callers always receive deep copies so
nothing downstream can mutate cached authority data.
"""

import asyncio
import copy
import time
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from typing import Any

from loguru import logger

from evote_client.core.scheduler import ScheduledTask, TaskScheduler
from evote_client.lib.cache.retry import DEFAULT_RETRY_DELAYS, call_with_retry

Loader = Callable[[], Awaitable[Any]]

DEFAULT_DEBOUNCE_SECONDS = 2.0


@dataclass(frozen=True)
class CacheEntry:
    """A cached value and the monotonic time it was stored."""

    data: Any
    timestamp: float


class CacheClosedError(RuntimeError):
    """Raised when a disposed cache client is used."""


class CacheClient:
    """Keyed cache in front of network loaders.

    Args:
        retry_delays: Backoff table used when a key has no cached value.
        debounce: Trailing-edge window for ``refresh`` in seconds.
        should_retry: Predicate deciding whether a loader failure is transient.
        clock: Monotonic clock in seconds, injectable for tests.
        sleep: Awaitable sleep used between retries, injectable for tests.
        scheduler: Owner of the debounce timers; a private one is created if omitted.
    """

    def __init__(
        self,
        *,
        retry_delays: Sequence[float] = DEFAULT_RETRY_DELAYS,
        debounce: float = DEFAULT_DEBOUNCE_SECONDS,
        should_retry: Callable[[Exception], bool] | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        scheduler: TaskScheduler | None = None,
    ) -> None:
        self._retry_delays = tuple(retry_delays)
        self._debounce = debounce
        self._should_retry = should_retry
        self._clock = clock
        self._sleep = sleep
        self._scheduler = scheduler or TaskScheduler()
        self._owns_scheduler = scheduler is None
        self._loaders: dict[str, Loader] = {}
        self._entries: dict[str, CacheEntry] = {}
        self._in_flight: dict[str, asyncio.Task[Any]] = {}
        self._pending_refresh: dict[str, tuple[ScheduledTask, asyncio.Future[Any]]] = {}
        self._closed = False

    def register(self, key: str, loader: Loader) -> None:
        """Register the loader that fetches ``key`` from the network."""
        self._loaders[key] = loader

    def is_registered(self, key: str) -> bool:
        return key in self._loaders

    def get_entry(self, key: str) -> CacheEntry | None:
        """Return a copy of the current entry for ``key`` without fetching."""
        entry = self._entries.get(key)
        if entry is None:
            return None
        return CacheEntry(data=copy.deepcopy(entry.data), timestamp=entry.timestamp)

    def put(self, key: str, data: Any) -> None:
        """Replace the entry for ``key`` with locally known data."""
        self._ensure_open()
        self._entries[key] = CacheEntry(data=copy.deepcopy(data), timestamp=self._clock())

    def invalidate(self, key: str) -> None:
        """Drop the entry for ``key`` so the next fetch goes to the network."""
        self._entries.pop(key, None)

    def is_in_flight(self, key: str) -> bool:
        return key in self._in_flight

    async def fetch(self, key: str, ttl: float, *, forced: bool = False) -> Any:
        """Return the value for ``key``, from cache when fresh.

        A fresh entry (younger than ``ttl`` seconds) is returned without a
        network call unless ``forced``. Otherwise one round trip is made;
        concurrent fetches of the same key share it. If the round trip fails
        and a cached value exists, that stale value is returned and the
        failure is only logged. Without a cached value the loader is retried
        with backoff and the final error is raised.

        Args:
            key: Registered cache key.
            ttl: Freshness window in seconds.
            forced: Skip the freshness check.

        Returns:
            A deep copy of the cached or freshly fetched value.

        Raises:
            KeyError: If no loader is registered for ``key``.
            CacheClosedError: If the client has been closed.
        """
        self._ensure_open()
        loader = self._get_loader(key)

        entry = self._entries.get(key)
        if not forced and entry is not None and self._clock() - entry.timestamp < ttl:
            logger.debug("Cache hit for {}", key)
            return copy.deepcopy(entry.data)

        task = self._in_flight.get(key)
        if task is None:
            task = asyncio.create_task(self._load(key, loader), name=f"cache:{key}")
            self._in_flight[key] = task
            task.add_done_callback(lambda t, k=key: self._release(k, t))
        else:
            logger.debug("Joining in-flight fetch for {}", key)

        data = await asyncio.shield(task)
        return copy.deepcopy(data)

    def refresh(self, key: str) -> asyncio.Future[Any]:
        """Request a forced fetch of ``key`` after the debounce window.

        Calls arriving before the window elapses restart it, so a burst of
        calls produces a single forced fetch once the burst goes quiet.

        Returns:
            A future resolved with the collapsed fetch's value (or error).
        """
        self._ensure_open()
        self._get_loader(key)

        pending = self._pending_refresh.get(key)
        if pending is None:
            waiter: asyncio.Future[Any] = asyncio.get_running_loop().create_future()
        else:
            handle, waiter = pending
            handle.cancel()

        handle = self._scheduler.call_later(self._debounce, lambda: self._run_refresh(key))
        self._pending_refresh[key] = (handle, waiter)
        logger.debug("Refresh of {} scheduled in {}s", key, self._debounce)
        return waiter

    def close(self) -> None:
        """Cancel pending refreshes and in-flight fetches; refuse further use."""
        self._closed = True
        for handle, waiter in self._pending_refresh.values():
            handle.cancel()
            if not waiter.done():
                waiter.cancel()
        self._pending_refresh.clear()
        for task in self._in_flight.values():
            task.cancel()
        self._in_flight.clear()
        if self._owns_scheduler:
            self._scheduler.close()

    async def _run_refresh(self, key: str) -> None:
        pending = self._pending_refresh.pop(key, None)
        if pending is None:
            return
        _handle, waiter = pending
        try:
            data = await self.fetch(key, ttl=0, forced=True)
        except asyncio.CancelledError:
            waiter.cancel()
            raise
        except Exception as exc:
            if not waiter.done():
                waiter.set_exception(exc)
            return
        if not waiter.done():
            waiter.set_result(data)

    async def _load(self, key: str, loader: Loader) -> Any:
        entry = self._entries.get(key)
        try:
            if entry is None:
                kwargs: dict[str, Any] = {}
                if self._should_retry is not None:
                    kwargs["should_retry"] = self._should_retry
                data = await call_with_retry(
                    loader,
                    delays=self._retry_delays,
                    sleep=self._sleep,
                    label=f"Fetch of {key}",
                    **kwargs,
                )
            else:
                data = await loader()
        except Exception as exc:
            if entry is None:
                logger.error("Fetch of {} failed with no cached value: {}", key, exc)
                raise
            age = self._clock() - entry.timestamp
            logger.warning("Fetch of {} failed, serving value cached {:.1f}s ago: {}", key, age, exc)
            return entry.data

        self._entries[key] = CacheEntry(data=data, timestamp=self._clock())
        return data

    def _release(self, key: str, task: asyncio.Task[Any]) -> None:
        if self._in_flight.get(key) is task:
            del self._in_flight[key]
        if not task.cancelled():
            # Mark the exception retrieved; every awaiting caller re-raises it.
            task.exception()

    def _get_loader(self, key: str) -> Loader:
        try:
            return self._loaders[key]
        except KeyError:
            msg = f"No loader registered for cache key {key!r}"
            raise KeyError(msg) from None

    def _ensure_open(self) -> None:
        if self._closed:
            msg = "cache client is closed"
            raise CacheClosedError(msg)
