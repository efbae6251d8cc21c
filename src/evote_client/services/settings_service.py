"""Election settings kept as a client-side cache entry.

The ``"settings"`` entry is a display and convenience cache (titles, vote
limit); it never decides whether voting is open.
"""

import asyncio

from loguru import logger

from evote_client.lib.backend import BackendClient, FetchError
from evote_client.lib.cache import CacheClient
from evote_client.schemas.election import ElectionSettings

SETTINGS_CACHE_KEY = "settings"


class SettingsService:
    """Read-through access to election settings.

    Args:
        backend: Backend client used as the settings loader.
        cache: Cache holding the ``"settings"`` entry.
        ttl: Freshness window in seconds.
    """

    def __init__(self, backend: BackendClient, cache: CacheClient, *, ttl: float = 60.0) -> None:
        self._cache = cache
        self._ttl = ttl
        self._cache.register(SETTINGS_CACHE_KEY, backend.get_settings)

    async def get(self, *, forced: bool = False) -> ElectionSettings:
        """Return settings, from cache while fresh."""
        return await self._cache.fetch(SETTINGS_CACHE_KEY, self._ttl, forced=forced)

    async def get_or_default(self) -> ElectionSettings:
        """Return settings, or defaults when the backend is unreachable and nothing is cached."""
        try:
            return await self.get()
        except FetchError as exc:
            logger.warning("Election settings unavailable, using defaults: {}", exc)
            return ElectionSettings()

    def refresh(self) -> asyncio.Future[ElectionSettings]:
        """Debounced forced reload; calls within the debounce window share one fetch."""
        return self._cache.refresh(SETTINGS_CACHE_KEY)

    def update_local(self, settings: ElectionSettings) -> None:
        """Replace the cached entry after a local edit was saved to the backend."""
        self._cache.put(SETTINGS_CACHE_KEY, settings)
        logger.debug("Cached election settings replaced locally")
