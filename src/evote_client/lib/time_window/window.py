"""Voting window arithmetic.

Calendar dates and times of day from the backend are interpreted in a
single fixed reference zone and compared as absolute instants, never as
strings. Everything here is pure.
"""

import re
from dataclasses import dataclass
from datetime import UTC, date, datetime, time, timedelta, timezone
from enum import StrEnum

_DATE_PATTERN = re.compile(r"^(\d{4})-(\d{2})-(\d{2})$")
_TIME_PATTERN = re.compile(r"^(\d{2}):(\d{2})(?::(\d{2}))?$")

_MS_PER_SECOND = 1000
_SECONDS_PER_MINUTE = 60
_SECONDS_PER_HOUR = 60 * _SECONDS_PER_MINUTE
_SECONDS_PER_DAY = 24 * _SECONDS_PER_HOUR


class Phase(StrEnum):
    """Election phase derived from the current instant and the voting window."""

    NOT_STARTED = "not-started"
    ACTIVE = "active"
    ENDED = "ended"


class TimeWindowError(ValueError):
    """Base error for voting window input problems."""


class MalformedTimeInput(TimeWindowError):
    """Raised when a date or time-of-day string does not match its format."""

    def __init__(self, field: str, value: str) -> None:
        self.field = field
        self.value = value
        super().__init__(f"Malformed {field}: {value!r}")


class InvalidBoundaryError(TimeWindowError):
    """Raised when a voting window starts after it ends."""

    def __init__(self, start: datetime, end: datetime) -> None:
        self.start = start
        self.end = end
        super().__init__(f"Voting window starts after it ends ({start.isoformat()} > {end.isoformat()})")


def reference_timezone(utc_offset_minutes: int = 0) -> timezone:
    """Return the fixed reference zone for a UTC offset in minutes."""
    if utc_offset_minutes == 0:
        return UTC
    return timezone(timedelta(minutes=utc_offset_minutes))


def parse_date(date_str: str) -> date:
    """Parse a ``YYYY-MM-DD`` calendar date.

    Raises:
        MalformedTimeInput: If the string is not a valid calendar date.
    """
    match = _DATE_PATTERN.match(date_str.strip()) if isinstance(date_str, str) else None
    if match is None:
        raise MalformedTimeInput("date", str(date_str))
    try:
        return date(int(match.group(1)), int(match.group(2)), int(match.group(3)))
    except ValueError as exc:
        raise MalformedTimeInput("date", date_str) from exc


def parse_time_of_day(time_str: str) -> time:
    """Parse an ``HH:MM`` or ``HH:MM:SS`` time of day.

    Raises:
        MalformedTimeInput: If the string is not a valid time of day.
    """
    match = _TIME_PATTERN.match(time_str.strip()) if isinstance(time_str, str) else None
    if match is None:
        raise MalformedTimeInput("time", str(time_str))
    try:
        return time(int(match.group(1)), int(match.group(2)), int(match.group(3) or 0))
    except ValueError as exc:
        raise MalformedTimeInput("time", time_str) from exc


def parse_boundary(date_str: str, time_str: str, tz: timezone = UTC) -> datetime:
    """Combine a calendar date and a time of day into an absolute instant.

    Args:
        date_str: Date in ``YYYY-MM-DD`` format.
        time_str: Time in ``HH:MM`` or ``HH:MM:SS`` format.
        tz: Reference zone the strings are expressed in.

    Returns:
        A timezone-aware datetime.

    Raises:
        MalformedTimeInput: If either string does not match its format.
    """
    return datetime.combine(parse_date(date_str), parse_time_of_day(time_str), tzinfo=tz)


@dataclass(frozen=True)
class TimeBoundary:
    """The start/end instant pair defining the voting window."""

    start: datetime
    end: datetime

    def __post_init__(self) -> None:
        if self.start.tzinfo is None or self.end.tzinfo is None:
            msg = "TimeBoundary instants must be timezone-aware"
            raise TimeWindowError(msg)
        if self.start > self.end:
            raise InvalidBoundaryError(self.start, self.end)

    @classmethod
    def from_strings(
        cls,
        start_date: str,
        end_date: str,
        start_time: str,
        end_time: str,
        tz: timezone = UTC,
    ) -> "TimeBoundary":
        """Build a boundary from the backend's four date/time strings.

        Raises:
            MalformedTimeInput: If any string is malformed.
            InvalidBoundaryError: If the window starts after it ends.
        """
        return cls(
            start=parse_boundary(start_date, start_time, tz),
            end=parse_boundary(end_date, end_time, tz),
        )


def derive_phase(now: datetime, boundary: TimeBoundary) -> Phase:
    """Derive the election phase for an instant.

    The end instant is exclusive: at ``now == end`` the election has ended.
    """
    if now >= boundary.end:
        return Phase.ENDED
    if now >= boundary.start:
        return Phase.ACTIVE
    return Phase.NOT_STARTED


def time_to_next_transition(now: datetime, boundary: TimeBoundary) -> timedelta | None:
    """Return the time until the next phase change, or ``None`` once ended."""
    phase = derive_phase(now, boundary)
    if phase is Phase.NOT_STARTED:
        return boundary.start - now
    if phase is Phase.ACTIVE:
        return boundary.end - now
    return None


def format_remaining(delta_ms: float) -> str:
    """Render a duration as a compact ``_d _h _m _s`` string.

    Zero-valued leading units are omitted; once a unit is shown every
    smaller unit follows it. Seconds are always shown.

    Raises:
        ValueError: If ``delta_ms`` is negative.
    """
    if delta_ms < 0:
        msg = f"Remaining duration must not be negative, got {delta_ms}ms"
        raise ValueError(msg)

    total_seconds = int(delta_ms // _MS_PER_SECOND)
    days, rest = divmod(total_seconds, _SECONDS_PER_DAY)
    hours, rest = divmod(rest, _SECONDS_PER_HOUR)
    minutes, seconds = divmod(rest, _SECONDS_PER_MINUTE)

    parts: list[str] = []
    for value, suffix in ((days, "d"), (hours, "h"), (minutes, "m")):
        if parts or value > 0:
            parts.append(f"{value}{suffix}")
    parts.append(f"{seconds}s")
    return " ".join(parts)


def format_date_for_display(instant: datetime, tz: timezone = UTC) -> str:
    """Format an instant's date in the reference zone, e.g. ``17 May 2025``."""
    local = instant.astimezone(tz)
    return f"{local.day} {local:%B %Y}"


def format_time_for_display(instant: datetime, tz: timezone = UTC) -> str:
    """Format an instant's time in the reference zone, e.g. ``8:00 AM``."""
    local = instant.astimezone(tz)
    hour = local.hour % 12 or 12
    meridiem = "AM" if local.hour < 12 else "PM"
    return f"{hour}:{local.minute:02d} {meridiem}"
