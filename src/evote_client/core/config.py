"""Client configuration via Pydantic Settings.

All configuration is loaded from environment variables (or a local ``.env``
file). Components take plain values in their constructors; this module is
the single place those values come from in the CLI.
"""

import re

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_TIME_OF_DAY = re.compile(r"^([01]\d|2[0-3]):[0-5]\d(:[0-5]\d)?$")


class Settings(BaseSettings):
    """Client settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Backend
    api_base_url: str = Field(
        default="http://localhost:5000",
        description="Base URL of the election backend",
    )

    @field_validator("api_base_url")
    @classmethod
    def validate_api_base_url(cls, v: str) -> str:
        if not v.startswith(("http://", "https://")):
            msg = "api_base_url must use http or https"
            raise ValueError(msg)
        return v.rstrip("/")

    # Deadlines (seconds)
    request_timeout: float = Field(default=15.0, description="Deadline for generic read requests", gt=0)
    status_timeout: float = Field(default=10.0, description="Deadline for the election status request", gt=0)
    quick_status_timeout: float = Field(
        default=3.0,
        description="Deadline for the fast election status endpoint before falling back",
        gt=0,
    )
    validation_timeout: float = Field(default=10.0, description="Deadline for voter validation", gt=0)
    submission_timeout: float = Field(default=10.0, description="Deadline for vote submission", gt=0)

    # Timers (seconds)
    status_refresh_interval: float = Field(
        default=30.0,
        description="Interval between election status refetches",
        gt=0,
    )
    phase_tick_interval: float = Field(
        default=1.0,
        description="Interval between phase recomputations",
        gt=0,
    )
    results_poll_interval: float = Field(
        default=10.0,
        description="Interval between results refetches while polling",
        gt=0,
    )

    # Cache (seconds)
    settings_cache_ttl: float = Field(default=60.0, description="TTL of the cached election settings", gt=0)
    results_cache_ttl: float = Field(default=10.0, description="TTL of the cached results", gt=0)
    positions_cache_ttl: float = Field(default=300.0, description="TTL of the cached positions", gt=0)
    refresh_debounce: float = Field(
        default=2.0,
        description="Debounce window that collapses repeated refresh requests",
        gt=0,
    )
    retry_delays: str = Field(
        default="1,2,4",
        description="Comma-separated backoff delays (seconds) between read retries",
    )

    @field_validator("retry_delays")
    @classmethod
    def validate_retry_delays(cls, v: str) -> str:
        try:
            delays = [float(d) for d in v.split(",") if d.strip()]
        except ValueError as exc:
            msg = "retry_delays must be a comma-separated list of numbers"
            raise ValueError(msg) from exc
        if any(d < 0 for d in delays):
            msg = "retry_delays must not contain negative values"
            raise ValueError(msg)
        return v

    @property
    def retry_delay_list(self) -> tuple[float, ...]:
        """Parse the retry delay string into a tuple of seconds."""
        return tuple(float(d) for d in self.retry_delays.split(",") if d.strip())

    # Election window
    election_utc_offset_minutes: int = Field(
        default=0,
        description="UTC offset of the institution's time zone in minutes (Africa/Accra is 0)",
        ge=-14 * 60,
        le=14 * 60,
    )
    fallback_start_time: str = Field(
        default="08:00",
        description="Voting start time assumed when the backend omits or garbles it",
    )
    fallback_end_time: str = Field(
        default="17:00",
        description="Voting end time assumed when the backend omits or garbles it",
    )

    @field_validator("fallback_start_time", "fallback_end_time")
    @classmethod
    def validate_fallback_time(cls, v: str) -> str:
        if not _TIME_OF_DAY.match(v):
            msg = "fallback times must be HH:MM or HH:MM:SS"
            raise ValueError(msg)
        return v

    default_max_votes: int = Field(
        default=1,
        description="Votes per voter assumed when neither voter nor settings carry a limit",
        gt=0,
    )
    use_server_clock: bool = Field(
        default=True,
        description="Correct the local clock with the backend's Date header when deriving phase",
    )

    # Logging
    log_level: str = Field(
        default="INFO",
        description="Logging level",
    )
    log_dir: str | None = Field(
        default=None,
        description="Directory for log files (enables file logging with 24h rotation when set)",
    )
    log_json: bool = Field(
        default=False,
        description="Write log records to stderr as JSON",
    )


def get_settings() -> Settings:
    """Create and return client settings."""
    return Settings()
