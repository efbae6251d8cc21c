"""Voter validation and vote submission.

Attempt states: ``idle -> validating -> accepted | already_voted | rejected``,
and ``accepted -> submitted``. Validation is read-only on the backend; the
vote limit is re-checked locally before every submission, and neither
validation nor submission is ever retried automatically.
"""

import asyncio
import enum
from collections.abc import Mapping, Sequence
from datetime import UTC, datetime

from evote_client.core.logging import voter_logger
from evote_client.core.scheduler import ScheduledTask, TaskScheduler
from evote_client.lib.backend import (
    ALREADY_VOTED,
    WRONG_ELECTION,
    BackendClient,
    FetchError,
    FetchTimeoutError,
)
from evote_client.schemas.voter import Voter, VoterSession, VoteReceipt, VoteToken
from evote_client.services.election_status import ElectionStatusMachine

WRONG_ELECTION_MESSAGE = "This voter ID is not registered for the current election."


class AttemptState(enum.StrEnum):
    """State of the current voting attempt."""

    IDLE = "idle"
    VALIDATING = "validating"
    ACCEPTED = "accepted"
    ALREADY_VOTED = "already_voted"
    REJECTED = "rejected"
    SUBMITTED = "submitted"


class VoteProtocolError(Exception):
    """Base error for the voting flow; always carries the voter id."""

    def __init__(self, message: str, voter_id: str) -> None:
        super().__init__(message)
        self.voter_id = voter_id


class InvalidVoterIdError(VoteProtocolError):
    """The voter id is empty or malformed."""


class VoterNotFoundError(VoteProtocolError):
    """The backend does not know the voter id."""


class AuthorityConflictError(VoteProtocolError):
    """The voter belongs to a different election (``WRONG_ELECTION``)."""


class ElectionClosedError(VoteProtocolError):
    """The election is not accepting votes right now."""


class VoteLimitReachedError(VoteProtocolError):
    """The voter has used every allowed vote; carries the last proof of vote."""

    def __init__(self, voter: Voter, max_votes: int) -> None:
        last = voter.last_token
        self.vote_count = voter.vote_count
        self.max_votes = max_votes
        self.last_token = last
        self.voted_at = (last.timestamp if last else None) or voter.voted_at
        message = f"Voter {voter.id} has already cast {voter.vote_count} of {max_votes} allowed vote(s)"
        if last is not None:
            message += f" (last token {last.token}"
            message += f" at {self.voted_at.isoformat()})" if self.voted_at else ")"
        super().__init__(message, voter.id)


class SubmissionError(VoteProtocolError):
    """The ballot was not recorded. Resubmitting is the user's decision."""

    def __init__(self, message: str, voter_id: str, *, timed_out: bool = False) -> None:
        super().__init__(message, voter_id)
        self.timed_out = timed_out


class VoteProtocol:
    """Drives one voter at a time through validation and submission.

    Args:
        backend: Backend client for validation, submission and prefetch.
        status: Status machine gating the flow.
        scheduler: Owner of fire-and-forget prefetches; private if omitted.
        default_max_votes: Vote limit when neither voter nor settings give one.
    """

    def __init__(
        self,
        backend: BackendClient,
        status: ElectionStatusMachine,
        *,
        scheduler: TaskScheduler | None = None,
        default_max_votes: int = 1,
    ) -> None:
        self._backend = backend
        self._status = status
        self._scheduler = scheduler or TaskScheduler()
        self._owns_scheduler = scheduler is None
        self._default_max_votes = default_max_votes
        self._prefetch: ScheduledTask | None = None
        self.state = AttemptState.IDLE
        self.session: VoterSession | None = None
        self.voter: Voter | None = None

    def set_default_max_votes(self, max_votes: int) -> None:
        """Update the fallback vote limit (e.g. from the cached election settings)."""
        self._default_max_votes = max(1, max_votes)

    def max_votes_for(self, voter: Voter) -> int:
        return voter.limit(self._default_max_votes)

    async def validate(self, voter_id: str) -> Voter:
        """Validate a voter id with one backend round trip.

        Returns the voter record. For ``ALREADY_VOTED`` the record is
        returned with ``has_voted=True`` instead of raising, so the caller
        can check for remaining votes.

        Raises:
            InvalidVoterIdError: If the id is blank.
            ElectionClosedError: If the election is not accepting votes.
            VoterNotFoundError: If the backend rejects the id.
            AuthorityConflictError: If the voter belongs to another election.
            FetchTimeoutError: If the backend does not answer in time.
            FetchError: For any other transport failure.
        """
        normalized = (voter_id or "").strip()
        if not normalized:
            self.state = AttemptState.REJECTED
            msg = "Please enter your Voter ID"
            raise InvalidVoterIdError(msg, voter_id or "")

        self._ensure_open(normalized)

        self.state = AttemptState.VALIDATING
        election_id = self._status.last_known_status.election_id if self._status.last_known_status else None
        try:
            response = await self._backend.validate_voter(normalized, election_id)
        except FetchTimeoutError:
            self.state = AttemptState.REJECTED
            voter_logger(normalized).warning("Validation timed out")
            raise
        except FetchError:
            self.state = AttemptState.REJECTED
            voter_logger(normalized).warning("Validation failed")
            raise

        if response.errorCode == WRONG_ELECTION:
            self.state = AttemptState.REJECTED
            raise AuthorityConflictError(response.message or WRONG_ELECTION_MESSAGE, normalized)

        if response.errorCode == ALREADY_VOTED and response.voter is not None:
            voter = self._with_limit(response.voter.model_copy(update={"has_voted": True}))
            self.voter = voter
            self.state = AttemptState.ALREADY_VOTED
            voter_logger(voter.id).info(
                "Voter already voted ({}/{})",
                voter.vote_count,
                self.max_votes_for(voter),
            )
            return voter

        if not response.success or response.voter is None:
            self.state = AttemptState.REJECTED
            raise VoterNotFoundError(response.message or "Invalid Voter ID. Please check and try again.", normalized)

        voter = self._with_limit(response.voter)
        self.voter = voter
        if voter.has_voted:
            self.state = AttemptState.ALREADY_VOTED
            return voter

        self.state = AttemptState.ACCEPTED
        self.session = VoterSession(
            voter_id=voter.id,
            name=voter.name,
            vote_count=voter.vote_count,
            max_votes=self.max_votes_for(voter),
        )
        self._start_prefetch(voter.id)
        return voter

    def ensure_can_submit(self, voter: Voter) -> None:
        """Refuse locally, without a network call, when the vote limit is used up.

        Raises:
            VoteLimitReachedError: Carrying the last known vote token.
        """
        max_votes = self.max_votes_for(voter)
        if voter.vote_count >= max_votes:
            raise VoteLimitReachedError(voter, max_votes)

    def can_submit(self, voter: Voter) -> bool:
        return voter.vote_count < self.max_votes_for(voter)

    async def submit(self, voter: Voter, selections: Mapping[str, Sequence[str]]) -> VoteReceipt:
        """Submit a ballot for a validated voter. Never retried automatically.

        Args:
            voter: The voter last returned by ``validate``; any other id is refused.
            selections: Candidate ids chosen per position id.

        Returns:
            A receipt with the newly issued token and every token so far.

        Raises:
            VoteLimitReachedError: If no votes remain (no network call is made).
            ElectionClosedError: If the election stopped accepting votes.
            SubmissionError: If the backend did not record the ballot.
            VoteProtocolError: If ``voter`` is not the validated voter.
        """
        current = self.voter
        if current is None or self.state not in (
            AttemptState.ACCEPTED,
            AttemptState.ALREADY_VOTED,
            AttemptState.SUBMITTED,
        ):
            msg = f"Voter {voter.id} must be validated before submitting"
            raise VoteProtocolError(msg, voter.id)
        if voter.id != current.id:
            msg = f"Voter {voter.id} is not the validated voter {current.id}"
            raise VoteProtocolError(msg, voter.id)
        # The caller's copy may predate the last recorded vote.
        if voter.vote_count > current.vote_count:
            current = voter
        self.ensure_can_submit(current)
        self._ensure_open(current.id)
        voter = current

        election_id = self._status.last_known_status.election_id if self._status.last_known_status else None
        try:
            response = await self._backend.submit_vote(voter.id, selections, election_id)
        except FetchTimeoutError as exc:
            msg = f"Vote submission for {voter.id} timed out; check your receipt before trying again"
            raise SubmissionError(msg, voter.id, timed_out=True) from exc
        except FetchError as exc:
            msg = f"Vote submission for {voter.id} failed: {exc}"
            raise SubmissionError(msg, voter.id) from exc

        if response.errorCode == ALREADY_VOTED:
            refreshed = self._with_limit(response.voter) if response.voter else voter
            raise VoteLimitReachedError(refreshed, self.max_votes_for(refreshed))
        if not response.success or not response.voteToken:
            msg = response.message or f"Vote submission for {voter.id} was not accepted"
            raise SubmissionError(msg, voter.id)

        token = VoteToken(token=response.voteToken, timestamp=response.timestamp or datetime.now(UTC))
        updated = voter.with_recorded_vote(token)
        max_votes = self.max_votes_for(updated)
        self.voter = updated
        self.state = AttemptState.SUBMITTED
        self.session = VoterSession(
            voter_id=updated.id,
            name=updated.name,
            vote_count=updated.vote_count,
            max_votes=max_votes,
        )
        voter_logger(updated.id).info("Vote recorded ({}/{})", updated.vote_count, max_votes)
        return VoteReceipt(
            voter_id=updated.id,
            name=updated.name,
            token=token,
            vote_count=updated.vote_count,
            max_votes=max_votes,
            vote_tokens=updated.vote_tokens,
        )

    def reset(self) -> None:
        """Forget the current voter and return to ``idle``."""
        self.state = AttemptState.IDLE
        self.session = None
        self.voter = None

    async def wait_for_prefetch(self) -> None:
        """Wait for the pending candidate prefetch, if any."""
        if self._prefetch is not None:
            await self._prefetch.wait()

    def dispose(self) -> None:
        if self._prefetch is not None:
            self._prefetch.cancel()
            self._prefetch = None
        if self._owns_scheduler:
            self._scheduler.close()

    def _with_limit(self, voter: Voter) -> Voter:
        if voter.max_votes:
            return voter
        return voter.model_copy(update={"max_votes": self._default_max_votes})

    def _ensure_open(self, voter_id: str) -> None:
        if self._status.accepts_votes:
            return
        status = self._status.last_known_status
        if status is None or status.is_fallback:
            msg = "Election information not available. Please try again shortly."
        else:
            msg = "Election is not currently active. Please try again later."
        raise ElectionClosedError(msg, voter_id)

    def _start_prefetch(self, voter_id: str) -> None:
        async def prefetch() -> None:
            try:
                candidates = await self._backend.get_candidates_for_voter(voter_id)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                voter_logger(voter_id).debug("Candidate prefetch failed: {}", exc)
                return
            voter_logger(voter_id).debug("Prefetched {} candidates", len(candidates))

        if self._prefetch is not None:
            self._prefetch.cancel()
        self._prefetch = self._scheduler.call_later(0, prefetch, name=f"prefetch:{voter_id}")
