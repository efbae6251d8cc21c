"""Voting window library: parse, compare, and format election time boundaries.

Public API:
    - parse_boundary: Combine a date and a time of day into an instant
    - TimeBoundary: Validated start/end instant pair
    - derive_phase: NotStarted / Active / Ended for an instant
    - format_remaining: Compact ``_d _h _m _s`` duration string
    - MalformedTimeInput / InvalidBoundaryError: Input error types
"""

from evote_client.lib.time_window.window import (
    InvalidBoundaryError,
    MalformedTimeInput,
    Phase,
    TimeBoundary,
    TimeWindowError,
    derive_phase,
    format_date_for_display,
    format_remaining,
    format_time_for_display,
    parse_boundary,
    parse_date,
    parse_time_of_day,
    reference_timezone,
    time_to_next_transition,
)

__all__ = [
    "InvalidBoundaryError",
    "MalformedTimeInput",
    "Phase",
    "TimeBoundary",
    "TimeWindowError",
    "derive_phase",
    "format_date_for_display",
    "format_remaining",
    "format_time_for_display",
    "parse_boundary",
    "parse_date",
    "parse_time_of_day",
    "reference_timezone",
    "time_to_next_transition",
]
