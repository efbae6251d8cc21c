"""Pydantic v2 models for voters, vote tokens, and vote receipts."""

from datetime import datetime
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator


class VoteToken(BaseModel):
    """Opaque proof-of-vote issued by the backend for one submission."""

    model_config = ConfigDict(frozen=True)

    token: str
    timestamp: datetime | None = None


class Voter(BaseModel):
    """A voter as reported by the validation endpoint.

    ``vote_tokens`` is append-only: new tokens are added through
    ``with_recorded_vote`` and existing ones are never dropped or reordered.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    id: str = Field(validation_alias=AliasChoices("id", "voterId", "voter_id", "_id"))
    name: str = ""
    has_voted: bool = Field(default=False, validation_alias=AliasChoices("has_voted", "hasVoted"))
    vote_count: int = Field(default=0, ge=0, validation_alias=AliasChoices("vote_count", "voteCount"))
    max_votes: int | None = Field(default=None, validation_alias=AliasChoices("max_votes", "maxVotes"))
    voted_at: datetime | None = Field(default=None, validation_alias=AliasChoices("voted_at", "votedAt"))
    vote_tokens: tuple[VoteToken, ...] = Field(
        default=(),
        validation_alias=AliasChoices("vote_tokens", "voteTokens"),
    )

    @model_validator(mode="before")
    @classmethod
    def _normalize_wire_record(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = dict(data)
        # Both ids present: the public voter code wins over the database id.
        if data.get("voterId"):
            data.pop("id", None)
            data.pop("_id", None)
        tokens = data.get("voteTokens") or data.get("vote_tokens")
        if not tokens and data.get("voteToken"):
            data["voteTokens"] = [{"token": data["voteToken"], "timestamp": data.get("votedAt")}]
        has_voted = data.get("hasVoted", data.get("has_voted"))
        count = data.get("voteCount", data.get("vote_count"))
        if has_voted and not count:
            data["voteCount"] = max(1, len(data.get("voteTokens") or data.get("vote_tokens") or ()))
            data.pop("vote_count", None)
        return data

    @field_validator("name", mode="before")
    @classmethod
    def _coerce_name(cls, v: Any) -> Any:
        return v if v is not None else ""

    @field_validator("vote_count", mode="before")
    @classmethod
    def _coerce_vote_count(cls, v: Any) -> Any:
        return v if v is not None else 0

    @field_validator("vote_tokens", mode="before")
    @classmethod
    def _coerce_vote_tokens(cls, v: Any) -> Any:
        return v if v is not None else ()

    @property
    def last_token(self) -> VoteToken | None:
        """The most recently issued vote token, if any."""
        return self.vote_tokens[-1] if self.vote_tokens else None

    def limit(self, default_max_votes: int) -> int:
        """Return the voter's vote limit, falling back to ``default_max_votes``."""
        return self.max_votes if self.max_votes else default_max_votes

    def with_recorded_vote(self, token: VoteToken) -> "Voter":
        """Return a copy with ``token`` appended and the vote count incremented."""
        return self.model_copy(
            update={
                "has_voted": True,
                "vote_count": self.vote_count + 1,
                "voted_at": token.timestamp or self.voted_at,
                "vote_tokens": (*self.vote_tokens, token),
            }
        )


class VoterSession(BaseModel):
    """Minimal voter identity kept for the candidate-selection step."""

    model_config = ConfigDict(frozen=True)

    voter_id: str
    name: str
    vote_count: int
    max_votes: int


class VoteReceipt(BaseModel):
    """Proof returned to the caller after a successful submission."""

    model_config = ConfigDict(frozen=True)

    voter_id: str
    name: str
    token: VoteToken
    vote_count: int
    max_votes: int
    vote_tokens: tuple[VoteToken, ...]
