"""HTTP client for the election backend.

Uses one long-lived httpx ``AsyncClient``. Every call carries a hard
deadline; expiry is reported as ``FetchTimeoutError`` so callers can tell
a slow backend from a failing one. Nothing here retries: read-path retries
live in the cache layer, and the vote write path is never retried.
"""

import asyncio
import email.utils
from collections.abc import Callable, Mapping, Sequence
from datetime import UTC, datetime, timedelta
from typing import Any

import httpx
from loguru import logger
from pydantic import ValidationError

from evote_client.core.config import Settings
from evote_client.lib.backend.parser import (
    ElectionStatusPayload,
    ResultsPayload,
    SubmitVoteResponse,
    ValidateVoterResponse,
    parse_election_status,
    parse_positions,
    parse_results,
    parse_settings,
    parse_submit_response,
    parse_validate_response,
)
from evote_client.schemas.election import ElectionSettings
from evote_client.schemas.results import Position

_NO_CACHE_HEADERS = {
    "Cache-Control": "no-cache, no-store, must-revalidate",
    "Pragma": "no-cache",
    "Expires": "0",
}

# Date headers have one-second resolution; smaller offsets are noise.
_MIN_CLOCK_OFFSET = timedelta(seconds=1)


class FetchError(Exception):
    """Raised when a backend request fails.

    Args:
        message: Human-readable error description.
        status_code: HTTP status code, when a response was received.
        body: Decoded JSON error body, when one was sent.
        transient: Whether retrying the same request could succeed.
    """

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        *,
        body: Any = None,
        transient: bool = False,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body
        self.transient = transient


class FetchTimeoutError(FetchError):
    """Raised when a backend request exceeds its deadline."""

    def __init__(self, message: str) -> None:
        super().__init__(message, transient=True)


def is_transient(exc: Exception) -> bool:
    """Return whether a failure is worth retrying on a read path."""
    return isinstance(exc, FetchError) and exc.transient


class BackendClient:
    """Async client for the backend's REST contract.

    Args:
        base_url: Backend base URL without trailing slash.
        request_timeout: Deadline for generic reads, in seconds.
        status_timeout: Deadline for the regular status endpoint.
        quick_status_timeout: Deadline for the fast status endpoint.
        validation_timeout: Deadline for voter validation.
        submission_timeout: Deadline for vote submission.
        transport: Optional httpx transport (tests use ``httpx.MockTransport``).
        clock: Returns the current UTC instant; used for clock-offset tracking.
    """

    def __init__(
        self,
        base_url: str,
        *,
        request_timeout: float = 15.0,
        status_timeout: float = 10.0,
        quick_status_timeout: float = 3.0,
        validation_timeout: float = 10.0,
        submission_timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.request_timeout = request_timeout
        self.status_timeout = status_timeout
        self.quick_status_timeout = quick_status_timeout
        self.validation_timeout = validation_timeout
        self.submission_timeout = submission_timeout
        self._clock = clock or (lambda: datetime.now(UTC))
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            headers=_NO_CACHE_HEADERS,
            transport=transport,
            follow_redirects=False,
        )
        self.server_clock_offset = timedelta(0)

    @classmethod
    def from_settings(cls, settings: Settings, **kwargs: Any) -> "BackendClient":
        """Build a client from ``evote_client.core.config.Settings``."""
        return cls(
            settings.api_base_url,
            request_timeout=settings.request_timeout,
            status_timeout=settings.status_timeout,
            quick_status_timeout=settings.quick_status_timeout,
            validation_timeout=settings.validation_timeout,
            submission_timeout=settings.submission_timeout,
            **kwargs,
        )

    async def __aenter__(self) -> "BackendClient":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def get_election_status(self) -> ElectionStatusPayload:
        """Fetch election status, preferring the fast endpoint.

        Raises:
            FetchError: If both the fast and the regular endpoint fail.
        """
        try:
            raw = await self._request("GET", "/api/election-status-quick", timeout=self.quick_status_timeout)
        except FetchError as exc:
            logger.debug("Fast status endpoint failed, falling back to regular endpoint: {}", exc)
            raw = await self._request("GET", "/api/election/status", timeout=self.status_timeout)
        return self._parse(parse_election_status, raw, "election status")

    async def validate_voter(self, voter_id: str, election_id: str | None) -> ValidateVoterResponse:
        """Validate a voter for the current election.

        Error responses that carry an ``errorCode`` are parsed and returned
        rather than raised.

        Raises:
            FetchTimeoutError: If the deadline expires.
            FetchError: For any other failure.
        """
        raw = await self._request(
            "POST",
            "/api/voters/validate",
            timeout=self.validation_timeout,
            json={"voterId": voter_id, "currentElectionId": election_id},
            accept_coded_errors=True,
        )
        return self._parse(parse_validate_response, raw, "voter validation")

    async def submit_vote(
        self,
        voter_id: str,
        selections: Mapping[str, Sequence[str]],
        election_id: str | None,
    ) -> SubmitVoteResponse:
        """Submit a ballot. Never retried.

        Args:
            voter_id: Validated voter id.
            selections: Candidate ids chosen per position id.
            election_id: Current election id.

        Raises:
            FetchTimeoutError: If the deadline expires.
            FetchError: For any other failure.
        """
        votes = [
            {"positionId": position_id, "candidateId": candidate_id}
            for position_id, candidate_ids in selections.items()
            for candidate_id in candidate_ids
        ]
        raw = await self._request(
            "POST",
            "/api/votes",
            timeout=self.submission_timeout,
            json={"voterId": voter_id, "electionId": election_id, "votes": votes},
            accept_coded_errors=True,
        )
        return self._parse(parse_submit_response, raw, "vote submission")

    async def get_results(self, election_id: str | None = None) -> ResultsPayload:
        """Fetch raw results; a 404 means no results yet and yields an empty payload."""
        params = {"electionId": election_id} if election_id else None
        try:
            raw = await self._request("GET", "/api/results", timeout=self.request_timeout, params=params)
        except FetchError as exc:
            if exc.status_code == 404:
                logger.info("No results published yet")
                return ResultsPayload()
            raise
        return self._parse(parse_results, raw, "results")

    async def get_positions(self) -> list[Position]:
        """Fetch the positions being elected."""
        raw = await self._request("GET", "/api/positions", timeout=self.request_timeout)
        return self._parse(parse_positions, raw, "positions")

    async def get_candidates_for_voter(self, voter_id: str) -> list[dict[str, Any]]:
        """Fetch the ballot for a voter (used as a warm-up prefetch)."""
        raw = await self._request(
            "GET",
            "/api/candidates/for-voter",
            timeout=self.request_timeout,
            params={"voterId": voter_id},
        )
        if not isinstance(raw, list):
            msg = "Invalid candidates response: expected a list"
            raise FetchError(msg)
        return raw

    async def get_settings(self) -> ElectionSettings:
        """Fetch election settings."""
        raw = await self._request("GET", "/api/settings", timeout=self.request_timeout)
        return self._parse(parse_settings, raw, "settings")

    async def _request(
        self,
        method: str,
        path: str,
        *,
        timeout: float,
        json: Any = None,
        params: Mapping[str, str] | None = None,
        accept_coded_errors: bool = False,
    ) -> Any:
        try:
            response = await asyncio.wait_for(
                self._client.request(method, path, json=json, params=params, timeout=timeout),
                timeout=timeout,
            )
        except (TimeoutError, httpx.TimeoutException) as exc:
            msg = f"Timeout after {timeout}s on {method} {path}"
            logger.error(msg)
            raise FetchTimeoutError(msg) from exc
        except httpx.HTTPError as exc:
            msg = f"HTTP error on {method} {path}: {exc}"
            logger.error(msg)
            raise FetchError(msg, transient=True) from exc

        self._record_server_clock(response)

        try:
            body = response.json()
        except ValueError:
            body = None

        if response.is_error:
            if accept_coded_errors and isinstance(body, dict) and body.get("errorCode"):
                return body
            status = response.status_code
            detail = body.get("message") if isinstance(body, dict) else None
            msg = f"HTTP {status} on {method} {path}" + (f": {detail}" if detail else "")
            logger.error(msg)
            raise FetchError(msg, status_code=status, body=body, transient=status >= 500 or status == 429)

        if body is None:
            msg = f"Invalid JSON response from {method} {path}"
            logger.error(msg)
            raise FetchError(msg, status_code=response.status_code)
        return body

    def _parse(self, parser: Callable[[Any], Any], raw: Any, what: str) -> Any:
        try:
            return parser(raw)
        except ValidationError as exc:
            msg = f"Failed to parse {what} response: {exc}"
            logger.error(msg)
            raise FetchError(msg) from exc

    def _record_server_clock(self, response: httpx.Response) -> None:
        header = response.headers.get("date")
        if not header:
            return
        try:
            server_now = email.utils.parsedate_to_datetime(header)
        except (TypeError, ValueError):
            logger.debug("Ignoring unparseable Date header {!r}", header)
            return
        if server_now.tzinfo is None:
            server_now = server_now.replace(tzinfo=UTC)
        offset = server_now - self._clock()
        self.server_clock_offset = offset if abs(offset) >= _MIN_CLOCK_OFFSET else timedelta(0)
