"""Tests for voter validation and vote submission."""

import json
from unittest.mock import AsyncMock

import httpx
import pytest

from evote_client.lib.backend import ALREADY_VOTED, WRONG_ELECTION, FetchError, FetchTimeoutError
from evote_client.lib.cache import CacheClient
from evote_client.schemas.voter import Voter
from evote_client.services.election_status import ElectionStatusMachine
from evote_client.services.vote_protocol import (
    AttemptState,
    AuthorityConflictError,
    ElectionClosedError,
    InvalidVoterIdError,
    SubmissionError,
    VoteLimitReachedError,
    VoteProtocol,
    VoteProtocolError,
    VoterNotFoundError,
)
from tests.conftest import DURING_VOTING, status_json, voter_json

QUICK = "GET /api/election-status-quick"
VALIDATE = "POST /api/voters/validate"
VOTES = "POST /api/votes"
CANDIDATES = "GET /api/candidates/for-voter"


def _paths(calls: list[httpx.Request], route: str) -> list[httpx.Request]:
    method, path = route.split(" ", 1)
    return [request for request in calls if request.method == method and request.url.path == path]


@pytest.fixture
async def env(routed_backend):
    """Backend, route table, request log, and an election that is open for voting."""
    backend, routes, calls = routed_backend
    cache = CacheClient(sleep=AsyncMock())
    status = ElectionStatusMachine(backend, cache, clock=lambda: DURING_VOTING)
    routes[QUICK] = status_json()
    routes[CANDIDATES] = []
    await status.refresh_status()
    calls.clear()
    protocol = VoteProtocol(backend, status)
    yield protocol, routes, calls, status
    protocol.dispose()
    status.dispose()
    cache.close()


class TestValidate:
    """Tests for VoteProtocol.validate()."""

    @pytest.mark.asyncio
    async def test_blank_id_rejected_locally(self, env) -> None:
        protocol, _routes, calls, _status = env
        with pytest.raises(InvalidVoterIdError, match="Voter ID"):
            await protocol.validate("   ")
        assert calls == []
        assert protocol.state is AttemptState.REJECTED

    @pytest.mark.asyncio
    async def test_success_opens_session_and_prefetches(self, env) -> None:
        protocol, routes, calls, _status = env
        routes[VALIDATE] = {"success": True, "voter": voter_json()}

        voter = await protocol.validate("  VOTER001 ")
        await protocol.wait_for_prefetch()

        assert voter.id == "VOTER001"
        assert protocol.state is AttemptState.ACCEPTED
        assert protocol.session.voter_id == "VOTER001"
        assert protocol.session.max_votes == 1
        assert json.loads(_paths(calls, VALIDATE)[0].content) == {"voterId": "VOTER001", "currentElectionId": "e1"}
        assert _paths(calls, CANDIDATES)[0].url.params["voterId"] == "VOTER001"

    @pytest.mark.asyncio
    async def test_idempotent(self, env) -> None:
        """Validation is read-only: repeating it yields the same voter."""
        protocol, routes, _calls, _status = env
        routes[VALIDATE] = {"success": True, "voter": voter_json()}

        first = await protocol.validate("VOTER001")
        second = await protocol.validate("VOTER001")

        assert first == second

    @pytest.mark.asyncio
    async def test_prefetch_failure_ignored(self, env) -> None:
        protocol, routes, _calls, _status = env
        routes[VALIDATE] = {"success": True, "voter": voter_json()}
        routes[CANDIDATES] = httpx.Response(500)

        voter = await protocol.validate("VOTER001")
        await protocol.wait_for_prefetch()

        assert voter.id == "VOTER001"
        assert protocol.state is AttemptState.ACCEPTED

    @pytest.mark.asyncio
    async def test_already_voted_returns_voter(self, env) -> None:
        protocol, routes, calls, _status = env
        routes[VALIDATE] = httpx.Response(
            400,
            json={
                "success": False,
                "errorCode": ALREADY_VOTED,
                "message": "You have already voted",
                "voter": voter_json(voteCount=1, voteToken="TOKEN-1", votedAt="2025-05-17T09:15:00Z"),
            },
        )

        voter = await protocol.validate("VOTER001")

        assert voter.has_voted is True
        assert voter.vote_count == 1
        assert protocol.state is AttemptState.ALREADY_VOTED
        assert protocol.session is None
        assert _paths(calls, CANDIDATES) == []

    @pytest.mark.asyncio
    async def test_wrong_election_is_hard_failure(self, env) -> None:
        protocol, routes, _calls, _status = env
        routes[VALIDATE] = httpx.Response(
            403,
            json={"success": False, "errorCode": WRONG_ELECTION, "message": "Wrong election"},
        )

        with pytest.raises(AuthorityConflictError, match="Wrong election") as exc_info:
            await protocol.validate("VOTER001")

        assert exc_info.value.voter_id == "VOTER001"
        assert protocol.state is AttemptState.REJECTED
        assert protocol.voter is None

    @pytest.mark.asyncio
    async def test_unknown_voter(self, env) -> None:
        protocol, routes, _calls, _status = env
        routes[VALIDATE] = {"success": False, "message": "Invalid Voter ID"}

        with pytest.raises(VoterNotFoundError, match="Invalid Voter ID"):
            await protocol.validate("NOPE")

    @pytest.mark.asyncio
    async def test_http_error_propagates(self, env) -> None:
        protocol, routes, _calls, _status = env
        routes[VALIDATE] = httpx.Response(404, json={"message": "Voter not found"})

        with pytest.raises(FetchError, match="Voter not found"):
            await protocol.validate("NOPE")
        assert protocol.state is AttemptState.REJECTED

    @pytest.mark.asyncio
    async def test_timeout_not_retried(self, env) -> None:
        protocol, routes, calls, _status = env

        def timeout(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("timed out", request=request)

        routes[VALIDATE] = timeout

        with pytest.raises(FetchTimeoutError):
            await protocol.validate("VOTER001")
        assert len(_paths(calls, VALIDATE)) == 1

    @pytest.mark.asyncio
    async def test_closed_election_refused_before_network(self, env) -> None:
        protocol, routes, calls, status = env
        routes[QUICK] = status_json(is_active=False)
        await status.refresh_status()
        calls.clear()

        with pytest.raises(ElectionClosedError, match="not currently active"):
            await protocol.validate("VOTER001")
        assert calls == []

    @pytest.mark.asyncio
    async def test_fallback_status_refused(self, routed_backend) -> None:
        backend, _routes, calls = routed_backend
        cache = CacheClient(sleep=AsyncMock())
        status = ElectionStatusMachine(backend, cache, clock=lambda: DURING_VOTING)
        await status.refresh_status()
        calls.clear()
        protocol = VoteProtocol(backend, status)

        with pytest.raises(ElectionClosedError, match="not available"):
            await protocol.validate("VOTER001")
        assert calls == []
        cache.close()


class TestVoteLimit:
    """Tests for the local vote-limit check."""

    @pytest.mark.asyncio
    async def test_limit_reached_refused_without_network(self, env) -> None:
        protocol, routes, calls, _status = env
        routes[VALIDATE] = httpx.Response(
            400,
            json={
                "errorCode": ALREADY_VOTED,
                "voter": voter_json(voteCount=1, maxVotes=1, voteToken="TOKEN-1", votedAt="2025-05-17T09:15:00Z"),
            },
        )
        voter = await protocol.validate("VOTER001")
        calls.clear()

        assert protocol.can_submit(voter) is False
        with pytest.raises(VoteLimitReachedError) as exc_info:
            await protocol.submit(voter, {"p1": ["c1"]})

        error = exc_info.value
        assert error.vote_count == 1
        assert error.max_votes == 1
        assert error.last_token.token == "TOKEN-1"
        assert error.voted_at.hour == 9
        assert "TOKEN-1" in str(error)
        assert calls == []

    @pytest.mark.asyncio
    async def test_remaining_votes_allow_submission(self, env) -> None:
        protocol, routes, calls, _status = env
        routes[VALIDATE] = httpx.Response(
            400,
            json={"errorCode": ALREADY_VOTED, "voter": voter_json(voteCount=1, maxVotes=2, voteToken="TOKEN-1")},
        )
        routes[VOTES] = {"success": True, "voteToken": "TOKEN-2", "timestamp": "2025-05-17T12:00:00Z"}

        voter = await protocol.validate("VOTER001")
        receipt = await protocol.submit(voter, {"p1": ["c1"]})

        assert receipt.vote_count == 2
        assert receipt.max_votes == 2
        assert [t.token for t in receipt.vote_tokens] == ["TOKEN-1", "TOKEN-2"]
        assert len(_paths(calls, VOTES)) == 1

    @pytest.mark.asyncio
    async def test_settings_limit_used_as_default(self, env) -> None:
        protocol, _routes, _calls, _status = env
        voter = Voter(id="VOTER001", vote_count=1)

        assert protocol.can_submit(voter) is False
        protocol.set_default_max_votes(3)
        assert protocol.can_submit(voter) is True
        assert protocol.max_votes_for(voter) == 3

    def test_limit_error_message_without_token(self) -> None:
        error = VoteLimitReachedError(Voter(id="VOTER001", vote_count=2), 2)
        assert str(error) == "Voter VOTER001 has already cast 2 of 2 allowed vote(s)"
        assert error.last_token is None


class TestSubmit:
    """Tests for VoteProtocol.submit()."""

    @pytest.mark.asyncio
    async def test_submit_records_token(self, env) -> None:
        protocol, routes, calls, _status = env
        routes[VALIDATE] = {"success": True, "voter": voter_json()}
        routes[VOTES] = {"success": True, "voteToken": "TOKEN-1"}

        voter = await protocol.validate("VOTER001")
        receipt = await protocol.submit(voter, {"p1": ["c1"], "p2": ["c4"]})

        assert receipt.token.token == "TOKEN-1"
        assert receipt.token.timestamp is not None
        assert receipt.vote_count == 1
        assert protocol.state is AttemptState.SUBMITTED
        assert protocol.voter.has_voted is True
        body = json.loads(_paths(calls, VOTES)[0].content)
        assert body["electionId"] == "e1"
        assert len(body["votes"]) == 2

    @pytest.mark.asyncio
    async def test_second_submission_refused_locally(self, env) -> None:
        protocol, routes, calls, _status = env
        routes[VALIDATE] = {"success": True, "voter": voter_json()}
        routes[VOTES] = {"success": True, "voteToken": "TOKEN-1"}

        voter = await protocol.validate("VOTER001")
        await protocol.submit(voter, {"p1": ["c1"]})

        with pytest.raises(VoteLimitReachedError):
            await protocol.submit(protocol.voter, {"p1": ["c1"]})
        assert len(_paths(calls, VOTES)) == 1

    @pytest.mark.asyncio
    async def test_stale_voter_copy_refused_locally(self, env) -> None:
        """Resubmitting the record returned by validate still counts the recorded vote."""
        protocol, routes, calls, _status = env
        routes[VALIDATE] = {"success": True, "voter": voter_json()}
        routes[VOTES] = {"success": True, "voteToken": "TOKEN-1"}

        voter = await protocol.validate("VOTER001")
        await protocol.submit(voter, {"p1": ["c1"]})

        assert voter.vote_count == 0
        with pytest.raises(VoteLimitReachedError) as exc_info:
            await protocol.submit(voter, {"p1": ["c1"]})
        assert exc_info.value.last_token.token == "TOKEN-1"
        assert len(_paths(calls, VOTES)) == 1

    @pytest.mark.asyncio
    async def test_other_voter_refused(self, env) -> None:
        protocol, routes, calls, _status = env
        routes[VALIDATE] = {"success": True, "voter": voter_json()}
        routes[VOTES] = {"success": True, "voteToken": "TOKEN-1"}
        await protocol.validate("VOTER001")

        with pytest.raises(VoteProtocolError, match="not the validated voter"):
            await protocol.submit(Voter(id="SOMEONE_ELSE"), {"p1": ["c1"]})
        assert _paths(calls, VOTES) == []

    @pytest.mark.asyncio
    async def test_submit_requires_validation(self, env) -> None:
        protocol, _routes, calls, _status = env
        with pytest.raises(VoteProtocolError, match="must be validated"):
            await protocol.submit(Voter(id="VOTER001"), {"p1": ["c1"]})
        assert calls == []

    @pytest.mark.asyncio
    async def test_submit_timeout_not_retried(self, env) -> None:
        protocol, routes, calls, _status = env
        routes[VALIDATE] = {"success": True, "voter": voter_json()}

        def timeout(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("timed out", request=request)

        routes[VOTES] = timeout
        voter = await protocol.validate("VOTER001")

        with pytest.raises(SubmissionError) as exc_info:
            await protocol.submit(voter, {"p1": ["c1"]})

        assert exc_info.value.timed_out is True
        assert len(_paths(calls, VOTES)) == 1
        assert protocol.state is AttemptState.ACCEPTED

    @pytest.mark.asyncio
    async def test_backend_rejects_ballot(self, env) -> None:
        protocol, routes, _calls, _status = env
        routes[VALIDATE] = {"success": True, "voter": voter_json()}
        routes[VOTES] = {"success": False, "message": "Invalid candidate"}
        voter = await protocol.validate("VOTER001")

        with pytest.raises(SubmissionError, match="Invalid candidate"):
            await protocol.submit(voter, {"p1": ["bogus"]})

    @pytest.mark.asyncio
    async def test_backend_reports_already_voted(self, env) -> None:
        protocol, routes, _calls, _status = env
        routes[VALIDATE] = {"success": True, "voter": voter_json()}
        routes[VOTES] = httpx.Response(
            409,
            json={"errorCode": ALREADY_VOTED, "voter": voter_json(voteCount=1, voteToken="TOKEN-0")},
        )
        voter = await protocol.validate("VOTER001")

        with pytest.raises(VoteLimitReachedError) as exc_info:
            await protocol.submit(voter, {"p1": ["c1"]})
        assert exc_info.value.last_token.token == "TOKEN-0"

    @pytest.mark.asyncio
    async def test_reset(self, env) -> None:
        protocol, routes, _calls, _status = env
        routes[VALIDATE] = {"success": True, "voter": voter_json()}
        await protocol.validate("VOTER001")

        protocol.reset()

        assert protocol.state is AttemptState.IDLE
        assert protocol.session is None
        assert protocol.voter is None
