"""Pydantic v2 models for election results.

Models accept both the backend's camelCase JSON (including the nested
``{"candidate": {...}, "voteCount": n}`` tally shape) and snake_case
keyword construction.
"""

from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator

# Candidate names that mark an explicit abstention row (compared case-insensitively).
ABSTENTION_NAMES = frozenset({"none", "none of the listed", "abstain"})


def _coerce_null_to_int(v: Any) -> Any:
    """Coerce explicit JSON null to 0."""
    return v if v is not None else 0


def _coerce_null_to_str(v: Any) -> Any:
    """Coerce explicit JSON null to empty string."""
    return v if v is not None else ""


class Position(BaseModel):
    """An office being elected."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    id: str = Field(validation_alias=AliasChoices("id", "_id"))
    title: str
    priority: int = 0
    max_votes: int = Field(default=1, validation_alias=AliasChoices("max_votes", "maxVotes"))
    is_active: bool = Field(default=True, validation_alias=AliasChoices("is_active", "isActive"))

    @field_validator("priority", mode="before")
    @classmethod
    def _coerce_priority(cls, v: Any) -> Any:
        return _coerce_null_to_int(v)

    @field_validator("max_votes", mode="before")
    @classmethod
    def _coerce_max_votes(cls, v: Any) -> Any:
        return v if v else 1


class CandidateTally(BaseModel):
    """Votes received by one candidate for a position."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    candidate_id: str = Field(
        default="",
        validation_alias=AliasChoices("candidate_id", "candidateId", "_id", "id"),
    )
    name: str = ""
    vote_count: int = Field(default=0, validation_alias=AliasChoices("vote_count", "voteCount"))
    percentage: float | None = None
    is_abstention: bool = Field(default=False, validation_alias=AliasChoices("is_abstention", "isAbstention"))

    @model_validator(mode="before")
    @classmethod
    def _flatten_nested_candidate(cls, data: Any) -> Any:
        if not isinstance(data, dict) or not isinstance(data.get("candidate"), dict):
            return data
        candidate = data["candidate"]
        flat = {key: value for key, value in data.items() if key != "candidate"}
        flat.setdefault("candidateId", candidate.get("_id") or candidate.get("id") or "")
        flat.setdefault("name", candidate.get("name"))
        flat.setdefault("isAbstention", candidate.get("isAbstention") or False)
        return flat

    @field_validator("vote_count", mode="before")
    @classmethod
    def _coerce_vote_count(cls, v: Any) -> Any:
        return _coerce_null_to_int(v)

    @field_validator("name", "candidate_id", mode="before")
    @classmethod
    def _coerce_text(cls, v: Any) -> Any:
        return _coerce_null_to_str(v)

    @property
    def marks_abstention(self) -> bool:
        """Whether this row is an abstention pseudo-candidate."""
        return self.is_abstention or self.name.strip().lower() in ABSTENTION_NAMES


class AbstentionTally(BaseModel):
    """Abstentions for a position, explicit or inferred from a vote shortfall."""

    model_config = ConfigDict(frozen=True)

    vote_count: int
    percentage: float
    explicit: bool


class ResultItem(BaseModel):
    """Tallies for one position."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    position: Position
    candidates: tuple[CandidateTally, ...] = ()
    total_votes: int = Field(default=0, validation_alias=AliasChoices("total_votes", "totalVotes"))
    abstention: AbstentionTally | None = None

    @field_validator("candidates", mode="before")
    @classmethod
    def _coerce_candidates(cls, v: Any) -> Any:
        return v if v is not None else ()

    @field_validator("total_votes", mode="before")
    @classmethod
    def _coerce_total_votes(cls, v: Any) -> Any:
        return _coerce_null_to_int(v)

    @property
    def candidate_vote_sum(self) -> int:
        return sum(candidate.vote_count for candidate in self.candidates)


class VoterStats(BaseModel):
    """Turnout figures reported alongside results."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    total: int = 0
    voted: int = 0
    not_voted: int = Field(default=0, validation_alias=AliasChoices("not_voted", "notVoted"))
    percentage: float = 0.0

    @field_validator("total", "voted", "not_voted", mode="before")
    @classmethod
    def _coerce_counts(cls, v: Any) -> Any:
        return _coerce_null_to_int(v)

    @field_validator("percentage", mode="before")
    @classmethod
    def _coerce_percentage(cls, v: Any) -> Any:
        return v if v is not None else 0.0


class ResultsSnapshot(BaseModel):
    """Aggregated results and turnout as returned to callers."""

    model_config = ConfigDict(frozen=True)

    results: tuple[ResultItem, ...] = ()
    stats: VoterStats = Field(default_factory=VoterStats)
