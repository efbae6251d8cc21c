"""Election results retrieval and aggregation.

Results are fetched only after the election has ended by either signal:
the time window has passed, or the backend has cleared ``isActive``.
"""

import inspect
from collections.abc import Awaitable, Callable
from typing import Any

from loguru import logger

from evote_client.core.scheduler import ScheduledTask, TaskScheduler
from evote_client.lib.backend import BackendClient, FetchError, ResultsPayload
from evote_client.lib.cache import CacheClient
from evote_client.lib.results import aggregate
from evote_client.schemas.results import Position, ResultsSnapshot
from evote_client.services.election_status import ElectionStatusMachine

RESULTS_CACHE_KEY = "results"
POSITIONS_CACHE_KEY = "positions"

SnapshotCallback = Callable[[ResultsSnapshot], Any | Awaitable[Any]]


class ResultsUnavailableError(Exception):
    """Raised when results are requested while the election is still running."""


class ResultsAggregator:
    """Fetches, aggregates and optionally polls election results.

    Args:
        backend: Backend client used as the results and positions loader.
        cache: Cache holding the ``"results"`` and ``"positions"`` entries.
        status: Status machine deciding whether results may be fetched.
        scheduler: Owner of the polling timer; private if omitted.
        results_ttl: Freshness window of cached results in seconds.
        positions_ttl: Freshness window of cached positions in seconds.
        poll_interval: Seconds between polls in ``start_polling``.
    """

    def __init__(
        self,
        backend: BackendClient,
        cache: CacheClient,
        status: ElectionStatusMachine,
        *,
        scheduler: TaskScheduler | None = None,
        results_ttl: float = 10.0,
        positions_ttl: float = 300.0,
        poll_interval: float = 10.0,
    ) -> None:
        self._backend = backend
        self._cache = cache
        self._status = status
        self._scheduler = scheduler or TaskScheduler()
        self._owns_scheduler = scheduler is None
        self._results_ttl = results_ttl
        self._positions_ttl = positions_ttl
        self._poll_interval = poll_interval
        self._poll_handle: ScheduledTask | None = None

        self._cache.register(RESULTS_CACHE_KEY, self._load_results)
        self._cache.register(POSITIONS_CACHE_KEY, backend.get_positions)

    async def fetch_results(self, *, forced: bool = False) -> ResultsSnapshot:
        """Return aggregated results and turnout figures.

        Loads the election status first if none was fetched yet.

        Raises:
            ResultsUnavailableError: While the election is still running.
            FetchError: If results cannot be fetched and nothing is cached.
        """
        if not self._status.has_real_status:
            await self._status.refresh_status()
        if not self._status.results_available:
            msg = "Results can only be viewed after the election ends"
            raise ResultsUnavailableError(msg)

        payload: ResultsPayload = await self._cache.fetch(RESULTS_CACHE_KEY, self._results_ttl, forced=forced)
        results = aggregate(payload.results)
        logger.debug("Aggregated {} raw result rows into {} positions", len(payload.results), len(results))
        return ResultsSnapshot(results=tuple(results), stats=payload.stats)

    async def fetch_positions(self) -> list[Position]:
        """Return positions for filtering; an empty list when unavailable."""
        try:
            positions: list[Position] = await self._cache.fetch(POSITIONS_CACHE_KEY, self._positions_ttl)
        except FetchError as exc:
            logger.warning("Positions unavailable: {}", exc)
            return []
        return sorted(positions, key=lambda position: position.priority)

    def start_polling(self, on_update: SnapshotCallback) -> ScheduledTask:
        """Refetch results every ``poll_interval`` seconds and pass them to ``on_update``.

        Polls are skipped while the election is still running.
        """
        if self._poll_handle is not None and not self._poll_handle.done:
            return self._poll_handle

        async def poll() -> None:
            if not self._status.results_available:
                logger.debug("Skipping results poll: election still running")
                return
            snapshot = await self.fetch_results(forced=True)
            outcome = on_update(snapshot)
            if inspect.isawaitable(outcome):
                await outcome

        self._poll_handle = self._scheduler.call_every(
            self._poll_interval,
            poll,
            name="results-poll",
            immediate=True,
        )
        return self._poll_handle

    def stop_polling(self) -> None:
        if self._poll_handle is not None:
            self._poll_handle.cancel()
            self._poll_handle = None

    def dispose(self) -> None:
        """Stop polling and cancel every timer this aggregator owns."""
        self.stop_polling()
        if self._owns_scheduler:
            self._scheduler.close()

    async def _load_results(self) -> ResultsPayload:
        status = self._status.last_known_status
        return await self._backend.get_results(status.election_id if status else None)
