"""Backend library: HTTP transport and payload parsing for the election API.

Public API:
    - BackendClient: Async httpx client for status, validation, votes, results
    - FetchError / FetchTimeoutError: Transport error types
    - is_transient: Retry predicate for read paths
    - ALREADY_VOTED / WRONG_ELECTION: Validation error codes
"""

from evote_client.lib.backend.client import BackendClient, FetchError, FetchTimeoutError, is_transient
from evote_client.lib.backend.parser import (
    ALREADY_VOTED,
    WRONG_ELECTION,
    ElectionStatusPayload,
    ResultsPayload,
    SubmitVoteResponse,
    ValidateVoterResponse,
)

__all__ = [
    "ALREADY_VOTED",
    "WRONG_ELECTION",
    "BackendClient",
    "ElectionStatusPayload",
    "FetchError",
    "FetchTimeoutError",
    "ResultsPayload",
    "SubmitVoteResponse",
    "ValidateVoterResponse",
    "is_transient",
]
