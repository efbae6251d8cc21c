"""Shared test fixtures for settings, mocked backend transport, and payload builders."""

from collections.abc import AsyncGenerator, Callable
from datetime import UTC, datetime
from typing import Any

import httpx
import pytest

from evote_client.core.config import Settings
from evote_client.lib.backend import BackendClient

BASE_URL = "http://election.test"

Handler = Callable[[httpx.Request], httpx.Response]


def status_json(
    *,
    is_active: bool = True,
    start_date: str = "2025-05-17",
    end_date: str = "2025-05-17",
    start_time: str = "08:00",
    end_time: str = "17:00",
    election_id: str = "e1",
    title: str = "SRC Elections 2025",
) -> dict[str, Any]:
    """Return an election status body in the backend's wire format."""
    return {
        "_id": election_id,
        "title": title,
        "isActive": is_active,
        "votingStartDate": start_date,
        "votingEndDate": end_date,
        "votingStartTime": start_time,
        "votingEndTime": end_time,
    }


def voter_json(voter_id: str = "VOTER001", **overrides: Any) -> dict[str, Any]:
    """Return a voter record in the backend's wire format."""
    voter = {"id": voter_id, "name": "Ama Mensah", "hasVoted": False, "voteCount": 0}
    voter.update(overrides)
    return voter


def fixed_clock(instant: datetime) -> Callable[[], datetime]:
    """Return a clock frozen at ``instant``."""
    return lambda: instant


DURING_VOTING = datetime(2025, 5, 17, 12, 0, tzinfo=UTC)
BEFORE_VOTING = datetime(2025, 5, 17, 7, 0, tzinfo=UTC)
AFTER_VOTING = datetime(2025, 5, 17, 18, 0, tzinfo=UTC)


@pytest.fixture
def settings() -> Settings:
    """Test client settings with short timers."""
    return Settings(
        api_base_url=BASE_URL,
        refresh_debounce=0.01,
        retry_delays="0,0,0",
        status_refresh_interval=30,
        phase_tick_interval=1,
        log_dir=None,
    )


@pytest.fixture
async def make_backend() -> AsyncGenerator[Callable[..., BackendClient]]:
    """Factory building a ``BackendClient`` on top of an ``httpx.MockTransport``."""
    created: list[BackendClient] = []

    def factory(handler: Handler, **kwargs: Any) -> BackendClient:
        client = BackendClient(BASE_URL, transport=httpx.MockTransport(handler), **kwargs)
        created.append(client)
        return client

    yield factory
    for client in created:
        await client.aclose()


@pytest.fixture
async def routed_backend() -> AsyncGenerator[tuple[BackendClient, dict[str, Any], list[httpx.Request]]]:
    """Backend answering from a mutable ``{"METHOD /path": body_or_response}`` route table.

    Unrouted requests get a 404. Every request is recorded.
    """
    routes: dict[str, Any] = {}
    calls: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        route = routes.get(f"{request.method} {request.url.path}")
        if route is None:
            return httpx.Response(404, json={"message": "Not found"})
        if callable(route):
            route = route(request)
        if isinstance(route, httpx.Response):
            return route
        return httpx.Response(200, json=route)

    backend = BackendClient(BASE_URL, transport=httpx.MockTransport(handler))
    yield backend, routes, calls
    await backend.aclose()
