"""Composition root wiring the client components together.

One ``ElectionClient`` owns one scheduler, one cache and one backend
connection and injects them into every service. Closing it cancels every
timer and releases the connection.
"""

import httpx

from evote_client.core.config import Settings
from evote_client.core.scheduler import TaskScheduler
from evote_client.lib.backend import BackendClient, is_transient
from evote_client.lib.cache import CacheClient
from evote_client.services.election_status import ElectionStatusMachine
from evote_client.services.results_service import ResultsAggregator
from evote_client.services.settings_service import SettingsService
from evote_client.services.vote_protocol import VoteProtocol


class ElectionClient:
    """All client components for one logical session.

    Args:
        settings: Client configuration.
        transport: Optional httpx transport for the backend connection.
    """

    def __init__(self, settings: Settings, *, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self.scheduler = TaskScheduler()
        self.backend = BackendClient.from_settings(settings, transport=transport)
        self.cache = CacheClient(
            retry_delays=settings.retry_delay_list,
            debounce=settings.refresh_debounce,
            should_retry=is_transient,
            scheduler=self.scheduler,
        )
        self.status = ElectionStatusMachine.from_settings(
            settings,
            self.backend,
            self.cache,
            scheduler=self.scheduler,
        )
        self.settings = SettingsService(self.backend, self.cache, ttl=settings.settings_cache_ttl)
        self.votes = VoteProtocol(
            self.backend,
            self.status,
            scheduler=self.scheduler,
            default_max_votes=settings.default_max_votes,
        )
        self.results = ResultsAggregator(
            self.backend,
            self.cache,
            self.status,
            scheduler=self.scheduler,
            results_ttl=settings.results_cache_ttl,
            positions_ttl=settings.positions_cache_ttl,
            poll_interval=settings.results_poll_interval,
        )

    async def __aenter__(self) -> "ElectionClient":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def load_vote_limit(self) -> int:
        """Apply the settings' per-voter vote limit to the vote protocol."""
        election_settings = await self.settings.get_or_default()
        self.votes.set_default_max_votes(election_settings.max_votes_per_voter)
        return election_settings.max_votes_per_voter

    async def aclose(self) -> None:
        """Dispose every component, cancel all timers and close the connection."""
        self.results.dispose()
        self.votes.dispose()
        self.status.dispose()
        self.scheduler.close()
        self.cache.close()
        await self.backend.aclose()
