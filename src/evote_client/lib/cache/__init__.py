"""Client-side cache library: TTL entries, in-flight collapsing, debounce and retry.

Public API:
    - CacheClient: Keyed cache in front of registered network loaders
    - CacheEntry: Immutable cached value with its timestamp
    - call_with_retry: Bounded exponential backoff loop
    - DEFAULT_RETRY_DELAYS: The 1s / 2s / 4s backoff table
"""

from evote_client.lib.cache.client import CacheClient, CacheClosedError, CacheEntry
from evote_client.lib.cache.retry import DEFAULT_RETRY_DELAYS, call_with_retry

__all__ = [
    "DEFAULT_RETRY_DELAYS",
    "CacheClient",
    "CacheClosedError",
    "CacheEntry",
    "call_with_retry",
]
