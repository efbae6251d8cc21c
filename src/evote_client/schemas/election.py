"""Pydantic v2 models for election status and election settings."""

from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationInfo, field_validator

from evote_client.lib.time_window import TimeBoundary

_DEFAULT_TIMES = {"voting_start_time": "08:00", "voting_end_time": "16:00"}


class ElectionStatus(BaseModel):
    """Last known election status.

    ``is_active`` is the backend's authority flag and ``boundary`` the voting
    window; the two are tracked separately and may disagree.
    """

    model_config = ConfigDict(frozen=True)

    election_id: str | None = None
    title: str = ""
    is_active: bool
    boundary: TimeBoundary
    results_published: bool = False
    is_fallback: bool = Field(
        default=False,
        description="Synthesized locally because no status was ever fetched",
    )


class ElectionSettings(BaseModel):
    """Election settings as published by the backend.

    Cached under the ``"settings"`` key for display and vote limits; never
    consulted to decide whether voting is open.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="allow")

    is_active: bool = Field(default=False, validation_alias=AliasChoices("is_active", "isActive"))
    voting_start_date: str = Field(
        default="",
        validation_alias=AliasChoices("voting_start_date", "votingStartDate"),
    )
    voting_end_date: str = Field(default="", validation_alias=AliasChoices("voting_end_date", "votingEndDate"))
    voting_start_time: str = Field(
        default="08:00",
        validation_alias=AliasChoices("voting_start_time", "votingStartTime"),
    )
    voting_end_time: str = Field(
        default="16:00",
        validation_alias=AliasChoices("voting_end_time", "votingEndTime"),
    )
    results_published: bool = Field(
        default=False,
        validation_alias=AliasChoices("results_published", "resultsPublished"),
    )
    allow_voter_registration: bool = Field(
        default=False,
        validation_alias=AliasChoices("allow_voter_registration", "allowVoterRegistration"),
    )
    require_email_verification: bool = Field(
        default=True,
        validation_alias=AliasChoices("require_email_verification", "requireEmailVerification"),
    )
    max_votes_per_voter: int = Field(
        default=1,
        validation_alias=AliasChoices("max_votes_per_voter", "maxVotesPerVoter"),
    )
    system_name: str = Field(default="", validation_alias=AliasChoices("system_name", "systemName"))
    election_title: str = Field(
        default="Student Council Election",
        validation_alias=AliasChoices("election_title", "electionTitle"),
    )
    school_name: str = Field(default="", validation_alias=AliasChoices("school_name", "schoolName"))
    company_name: str = Field(default="", validation_alias=AliasChoices("company_name", "companyName"))

    @field_validator("voting_start_time", "voting_end_time", mode="before")
    @classmethod
    def _truncate_seconds(cls, v: Any, info: ValidationInfo) -> Any:
        if not v:
            return _DEFAULT_TIMES[info.field_name]
        return str(v)[:5]

    @field_validator("max_votes_per_voter", mode="before")
    @classmethod
    def _coerce_max_votes(cls, v: Any) -> Any:
        return v if v else 1

    @field_validator(
        "voting_start_date",
        "voting_end_date",
        "system_name",
        "school_name",
        "company_name",
        mode="before",
    )
    @classmethod
    def _coerce_text(cls, v: Any) -> Any:
        return v if v is not None else ""

    @field_validator("election_title", mode="before")
    @classmethod
    def _default_title(cls, v: Any) -> Any:
        return v or "Student Council Election"

    @property
    def display_name(self) -> str:
        """Name shown in headers: company name, then system name."""
        return self.company_name or self.system_name
