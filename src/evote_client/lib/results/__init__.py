"""Results library: pure aggregation of per-position tallies.

Public API:
    - aggregate: Deduplicate, rank, derive abstentions, sort by priority
    - deduplicate: Collapse duplicate position rows by title
    - derive_abstention: Explicit or inferred abstentions for a position
    - rank_candidates: Stable descending vote-count ordering
    - filter_results: Position / search-term filtering
"""

from evote_client.lib.results.aggregate import (
    aggregate,
    deduplicate,
    derive_abstention,
    filter_results,
    rank_candidates,
)

__all__ = [
    "aggregate",
    "deduplicate",
    "derive_abstention",
    "filter_results",
    "rank_candidates",
]
