"""Election status machine.

Polls election status through the cache layer and re-derives the phase on
a fast tick. Phase is always computed from the current instant and the
last fetched boundary, never from the previous phase, so the tick can run
indefinitely without drift. Vote acceptance requires both the backend's
``isActive`` flag and an active time window.
"""

from collections.abc import Callable
from datetime import UTC, date, datetime, timezone

from loguru import logger

from evote_client.core.config import Settings
from evote_client.core.scheduler import ScheduledTask, TaskScheduler
from evote_client.lib.backend import BackendClient, ElectionStatusPayload, FetchError
from evote_client.lib.cache import CacheClient
from evote_client.lib.time_window import (
    MalformedTimeInput,
    Phase,
    TimeBoundary,
    TimeWindowError,
    derive_phase,
    format_remaining,
    parse_date,
    parse_time_of_day,
    reference_timezone,
    time_to_next_transition,
)
from evote_client.schemas.election import ElectionStatus

STATUS_CACHE_KEY = "election_status"
DEFAULT_START_TIME = "08:00"
DEFAULT_END_TIME = "17:00"
LOADING_MESSAGE = "Loading..."
ENDED_MESSAGE = "Election has ended"

PhaseListener = Callable[[Phase | None, Phase], None]


def _date_or_today(value: str, today: date, field: str) -> str:
    if value:
        try:
            parse_date(value)
            return value
        except MalformedTimeInput:
            logger.warning("Malformed voting {} date {!r}, using {}", field, value, today.isoformat())
    return today.isoformat()


def _time_or_default(value: str, default: str, field: str) -> str:
    if value:
        try:
            parse_time_of_day(value)
            return value
        except MalformedTimeInput:
            logger.warning("Malformed voting {} time {!r}, using {}", field, value, default)
    return default


def build_election_status(
    payload: ElectionStatusPayload,
    *,
    today: date,
    tz: timezone = UTC,
    default_start_time: str = DEFAULT_START_TIME,
    default_end_time: str = DEFAULT_END_TIME,
) -> ElectionStatus:
    """Convert a status payload into an ``ElectionStatus``.

    Missing or malformed dates fall back to ``today`` and missing or
    malformed times to the default window, so bad input never reaches the
    caller as an exception.

    Raises:
        InvalidBoundaryError: If the resulting window starts after it ends.
    """
    boundary = TimeBoundary.from_strings(
        _date_or_today(payload.start_date, today, "start"),
        _date_or_today(payload.end_date, today, "end"),
        _time_or_default(payload.start_time, default_start_time, "start"),
        _time_or_default(payload.end_time, default_end_time, "end"),
        tz,
    )
    return ElectionStatus(
        election_id=payload.id,
        title=payload.title,
        is_active=payload.isActive,
        boundary=boundary,
        results_published=payload.resultsPublished,
    )


def fallback_status(
    *,
    today: date,
    tz: timezone = UTC,
    default_start_time: str = DEFAULT_START_TIME,
    default_end_time: str = DEFAULT_END_TIME,
) -> ElectionStatus:
    """Conservative status used when no status was ever fetched.

    Inactive, today's default window. Never permits a vote.
    """
    return ElectionStatus(
        title="Election",
        is_active=False,
        boundary=TimeBoundary.from_strings(
            today.isoformat(),
            today.isoformat(),
            default_start_time,
            default_end_time,
            tz,
        ),
        is_fallback=True,
    )


class ElectionStatusMachine:
    """Tracks the election status and its derived phase.

    Args:
        backend: Backend client used as the status loader.
        cache: Cache through which every status fetch goes.
        scheduler: Owner of the timers; a private one is created if omitted.
        refresh_interval: Seconds between status refetches.
        tick_interval: Seconds between phase recomputations.
        tz: Reference zone of the backend's dates and times.
        default_start_time: Voting start assumed when missing or malformed.
        default_end_time: Voting end assumed when missing or malformed.
        use_server_clock: Correct ``now`` by the backend's clock offset.
        clock: Returns the current UTC instant, injectable for tests.
    """

    def __init__(
        self,
        backend: BackendClient,
        cache: CacheClient,
        *,
        scheduler: TaskScheduler | None = None,
        refresh_interval: float = 30.0,
        tick_interval: float = 1.0,
        tz: timezone = UTC,
        default_start_time: str = DEFAULT_START_TIME,
        default_end_time: str = DEFAULT_END_TIME,
        use_server_clock: bool = True,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._backend = backend
        self._cache = cache
        self._scheduler = scheduler or TaskScheduler()
        self._owns_scheduler = scheduler is None
        self._refresh_interval = refresh_interval
        self._tick_interval = tick_interval
        self._tz = tz
        self._default_start_time = default_start_time
        self._default_end_time = default_end_time
        self._use_server_clock = use_server_clock
        self._clock = clock or (lambda: datetime.now(UTC))
        self._handles: list[ScheduledTask] = []
        self._listeners: list[PhaseListener] = []
        self._disposed = False

        self.last_known_status: ElectionStatus | None = None
        self.phase: Phase | None = None
        self.status_loading = False
        self.time_remaining = LOADING_MESSAGE

        self._cache.register(STATUS_CACHE_KEY, self._backend.get_election_status)

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        backend: BackendClient,
        cache: CacheClient,
        **kwargs: object,
    ) -> "ElectionStatusMachine":
        """Build a machine with timers and defaults taken from ``Settings``."""
        return cls(
            backend,
            cache,
            refresh_interval=settings.status_refresh_interval,
            tick_interval=settings.phase_tick_interval,
            tz=reference_timezone(settings.election_utc_offset_minutes),
            default_start_time=settings.fallback_start_time,
            default_end_time=settings.fallback_end_time,
            use_server_clock=settings.use_server_clock,
            **kwargs,  # type: ignore[arg-type]
        )

    @property
    def disposed(self) -> bool:
        return self._disposed

    def add_listener(self, listener: PhaseListener) -> None:
        """Call ``listener(previous, current)`` whenever the phase changes."""
        self._listeners.append(listener)

    def start(self) -> None:
        """Fetch status now and every ``refresh_interval``; tick every ``tick_interval``."""
        if self._disposed:
            msg = "status machine has been disposed"
            raise RuntimeError(msg)
        if self._handles:
            return
        self.status_loading = True
        self._handles = [
            self._scheduler.call_every(
                self._refresh_interval,
                self.refresh_status,
                name="election-status-refresh",
                immediate=True,
            ),
            self._scheduler.call_every(self._tick_interval, self.recompute, name="election-phase-tick"),
        ]
        logger.info(
            "Election status machine started (refresh={}s, tick={}s)",
            self._refresh_interval,
            self._tick_interval,
        )

    def dispose(self) -> None:
        """Cancel every timer. Nothing scheduled by this machine fires afterwards."""
        self._disposed = True
        for handle in self._handles:
            handle.cancel()
        self._handles = []
        if self._owns_scheduler:
            self._scheduler.close()
        logger.debug("Election status machine disposed")

    def now(self) -> datetime:
        """Current instant, corrected by the backend clock offset when enabled."""
        now = self._clock()
        if self._use_server_clock:
            now += self._backend.server_clock_offset
        return now

    def today(self) -> date:
        """Today's date in the reference zone."""
        return self.now().astimezone(self._tz).date()

    async def refresh_status(self) -> ElectionStatus:
        """Fetch the status once (forced) and recompute the phase.

        A failed fetch keeps the last known status; if none was ever
        obtained, the conservative fallback status is used instead.
        """
        try:
            payload = await self._cache.fetch(STATUS_CACHE_KEY, ttl=0, forced=True)
            status = build_election_status(
                payload,
                today=self.today(),
                tz=self._tz,
                default_start_time=self._default_start_time,
                default_end_time=self._default_end_time,
            )
        except (FetchError, TimeWindowError) as exc:
            if self.last_known_status is None:
                logger.warning("Election status unavailable, using fallback window: {}", exc)
                self.last_known_status = fallback_status(
                    today=self.today(),
                    tz=self._tz,
                    default_start_time=self._default_start_time,
                    default_end_time=self._default_end_time,
                )
            else:
                logger.warning("Election status refresh failed, keeping last known status: {}", exc)
        else:
            self.last_known_status = status

        self.recompute()
        return self.last_known_status

    def recompute(self) -> Phase | None:
        """Re-derive the phase and remaining time from ``now`` and the last boundary."""
        status = self.last_known_status
        if status is None:
            self.time_remaining = LOADING_MESSAGE
            return None

        now = self.now()
        phase = derive_phase(now, status.boundary)
        remaining = time_to_next_transition(now, status.boundary)
        self.time_remaining = (
            ENDED_MESSAGE if remaining is None else format_remaining(remaining.total_seconds() * 1000)
        )
        self.status_loading = False

        if phase != self.phase:
            previous, self.phase = self.phase, phase
            logger.info("Election phase changed: {} -> {}", previous, phase)
            for listener in list(self._listeners):
                try:
                    listener(previous, phase)
                except Exception:
                    logger.exception("Phase listener {!r} failed", listener)
        return phase

    def current_phase(self) -> Phase | None:
        """Phase derived for this exact instant, without touching state."""
        status = self.last_known_status
        if status is None:
            return None
        return derive_phase(self.now(), status.boundary)

    @property
    def has_real_status(self) -> bool:
        """Whether a status was ever fetched from the backend."""
        return self.last_known_status is not None and not self.last_known_status.is_fallback

    @property
    def accepts_votes(self) -> bool:
        """True only when the backend flag and the time window both say active."""
        status = self.last_known_status
        return (
            self.has_real_status
            and status is not None
            and status.is_active
            and self.current_phase() is Phase.ACTIVE
        )

    @property
    def results_available(self) -> bool:
        """True once the election ended by either signal: time window passed or flag cleared."""
        status = self.last_known_status
        if not self.has_real_status or status is None:
            return False
        return self.current_phase() is Phase.ENDED or not status.is_active
