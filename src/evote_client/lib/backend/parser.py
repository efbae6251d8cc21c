"""Backend JSON envelopes and Pydantic validation models.

Field names use camelCase to match the backend's JSON structure; the
records they carry are the snake_case domain models from
``evote_client.schemas``.
"""

# ruff: noqa: N815

from datetime import datetime
from typing import Any

from pydantic import AliasChoices, BaseModel, Field, TypeAdapter, field_validator

from evote_client.schemas.election import ElectionSettings
from evote_client.schemas.results import Position, ResultItem, VoterStats
from evote_client.schemas.voter import Voter

ALREADY_VOTED = "ALREADY_VOTED"
WRONG_ELECTION = "WRONG_ELECTION"


def _coerce_null_to_str(v: Any) -> Any:
    """Coerce explicit JSON null to empty string."""
    return v if v is not None else ""


def _coerce_null_to_list(v: Any) -> Any:
    """Coerce explicit JSON null to empty list."""
    return v if v is not None else []


class ElectionStatusPayload(BaseModel):
    """Response of the election status endpoints.

    Older deployments send ``startDate``/``startTime``/``date`` instead of
    the ``voting*`` fields; the properties resolve whichever is present.
    """

    id: str | None = Field(default=None, validation_alias=AliasChoices("_id", "id"))
    title: str = ""
    isActive: bool = False
    resultsPublished: bool = False
    votingStartDate: str = ""
    votingEndDate: str = ""
    votingStartTime: str = ""
    votingEndTime: str = ""
    startDate: str = ""
    endDate: str = ""
    startTime: str = ""
    endTime: str = ""
    date: str = ""

    @field_validator(
        "title",
        "votingStartDate",
        "votingEndDate",
        "votingStartTime",
        "votingEndTime",
        "startDate",
        "endDate",
        "startTime",
        "endTime",
        "date",
        mode="before",
    )
    @classmethod
    def _coerce_text(cls, v: Any) -> Any:
        return _coerce_null_to_str(v)

    @field_validator("isActive", "resultsPublished", mode="before")
    @classmethod
    def _coerce_flag(cls, v: Any) -> Any:
        return False if v is None else v

    @property
    def start_date(self) -> str:
        return (self.votingStartDate or self.startDate or self.date)[:10]

    @property
    def end_date(self) -> str:
        return (self.votingEndDate or self.endDate or self.date)[:10]

    @property
    def start_time(self) -> str:
        return self.votingStartTime or self.startTime

    @property
    def end_time(self) -> str:
        return self.votingEndTime or self.endTime


class ValidateVoterResponse(BaseModel):
    """Response of ``POST /api/voters/validate`` (success or coded error)."""

    success: bool = False
    errorCode: str | None = None
    message: str = ""
    voter: Voter | None = None

    @field_validator("message", mode="before")
    @classmethod
    def _coerce_message(cls, v: Any) -> Any:
        return _coerce_null_to_str(v)


class SubmitVoteResponse(BaseModel):
    """Response of ``POST /api/votes``."""

    success: bool = False
    errorCode: str | None = None
    voteToken: str | None = None
    timestamp: datetime | None = None
    message: str = ""
    voter: Voter | None = None

    @field_validator("message", mode="before")
    @classmethod
    def _coerce_message(cls, v: Any) -> Any:
        return _coerce_null_to_str(v)


class ResultsPayload(BaseModel):
    """Response of ``GET /api/results``."""

    results: list[ResultItem] = Field(default_factory=list)
    stats: VoterStats = Field(default_factory=VoterStats)

    @field_validator("results", mode="before")
    @classmethod
    def _coerce_results(cls, v: Any) -> Any:
        return _coerce_null_to_list(v)

    @field_validator("stats", mode="before")
    @classmethod
    def _coerce_stats(cls, v: Any) -> Any:
        return v if v is not None else {}


_POSITIONS = TypeAdapter(list[Position])


def parse_election_status(raw_json: dict) -> ElectionStatusPayload:
    """Parse and validate an election status response.

    Raises:
        pydantic.ValidationError: If the JSON structure is invalid.
    """
    return ElectionStatusPayload.model_validate(raw_json)


def parse_validate_response(raw_json: dict) -> ValidateVoterResponse:
    """Parse and validate a voter validation response.

    Raises:
        pydantic.ValidationError: If the JSON structure is invalid.
    """
    return ValidateVoterResponse.model_validate(raw_json)


def parse_submit_response(raw_json: dict) -> SubmitVoteResponse:
    """Parse and validate a vote submission response.

    Raises:
        pydantic.ValidationError: If the JSON structure is invalid.
    """
    return SubmitVoteResponse.model_validate(raw_json)


def parse_results(raw_json: dict) -> ResultsPayload:
    """Parse and validate a results response.

    Raises:
        pydantic.ValidationError: If the JSON structure is invalid.
    """
    return ResultsPayload.model_validate(raw_json)


def parse_positions(raw_json: list) -> list[Position]:
    """Parse and validate a positions list.

    Raises:
        pydantic.ValidationError: If the JSON structure is invalid.
    """
    return _POSITIONS.validate_python(raw_json)


def parse_settings(raw_json: dict) -> ElectionSettings:
    """Parse and validate an election settings response.

    Raises:
        pydantic.ValidationError: If the JSON structure is invalid.
    """
    return ElectionSettings.model_validate(raw_json)
