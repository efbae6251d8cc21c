"""Results aggregation: deduplicate positions, rank candidates, derive abstentions.

``aggregate`` is deterministic and order independent, and its output is a
fixed point: aggregating already-aggregated results changes nothing.
"""

from collections.abc import Iterable

from evote_client.schemas.results import AbstentionTally, CandidateTally, ResultItem


def _percentage(count: int, total: int) -> float:
    return count / total * 100 if total > 0 else 0.0


def _prefer(current: ResultItem, challenger: ResultItem) -> ResultItem:
    current_key = (current.total_votes, current.candidate_vote_sum)
    challenger_key = (challenger.total_votes, challenger.candidate_vote_sum)
    if challenger_key != current_key:
        return challenger if challenger_key > current_key else current
    # Equal tallies: the smaller position id wins regardless of arrival order.
    return challenger if challenger.position.id < current.position.id else current


def deduplicate(raw_results: Iterable[ResultItem]) -> list[ResultItem]:
    """Collapse rows sharing a position title, keeping the larger ``total_votes``.

    Duplicate rows can carry different position ids for the same office, so
    grouping is by title.
    """
    by_title: dict[str, ResultItem] = {}
    for item in raw_results:
        existing = by_title.get(item.position.title)
        by_title[item.position.title] = item if existing is None else _prefer(existing, item)
    return list(by_title.values())


def rank_candidates(candidates: Iterable[CandidateTally]) -> tuple[CandidateTally, ...]:
    """Order candidates by descending vote count; ties keep input order."""
    return tuple(sorted(candidates, key=lambda candidate: -candidate.vote_count))


def derive_abstention(item: ResultItem) -> AbstentionTally:
    """Return the abstentions for a position.

    An abstention pseudo-candidate (explicit flag, or a name such as "None"
    or "Abstain") is authoritative. Otherwise abstentions are the shortfall
    between ``total_votes`` and the candidates' votes.
    """
    for candidate in item.candidates:
        if candidate.marks_abstention:
            percentage = candidate.percentage
            if percentage is None:
                percentage = _percentage(candidate.vote_count, item.total_votes)
            return AbstentionTally(vote_count=candidate.vote_count, percentage=percentage, explicit=True)

    abstentions = max(0, item.total_votes - item.candidate_vote_sum)
    return AbstentionTally(
        vote_count=abstentions,
        percentage=_percentage(abstentions, item.total_votes),
        explicit=False,
    )


def _fill_percentages(item: ResultItem) -> tuple[CandidateTally, ...]:
    return tuple(
        candidate
        if candidate.percentage is not None
        else candidate.model_copy(update={"percentage": _percentage(candidate.vote_count, item.total_votes)})
        for candidate in item.candidates
    )


def aggregate(raw_results: Iterable[ResultItem]) -> list[ResultItem]:
    """Turn raw per-position tallies into display-ready results.

    Steps: deduplicate by position title, fill missing candidate
    percentages, rank candidates, derive abstentions, and sort positions by
    ascending priority (title breaks ties).

    Args:
        raw_results: Result rows as returned by the backend.

    Returns:
        New ``ResultItem`` objects; the input is never modified.
    """
    aggregated = []
    for item in deduplicate(raw_results):
        candidates = rank_candidates(_fill_percentages(item))
        ranked = item.model_copy(update={"candidates": candidates})
        aggregated.append(ranked.model_copy(update={"abstention": derive_abstention(ranked)}))
    return sorted(aggregated, key=lambda item: (item.position.priority, item.position.title))


def filter_results(
    results: Iterable[ResultItem],
    *,
    position_id: str | None = None,
    search: str | None = None,
) -> list[ResultItem]:
    """Filter results by position id and a case-insensitive search term.

    The search term matches position titles and candidate names.
    """
    term = (search or "").strip().lower()
    matched = []
    for item in results:
        if position_id and item.position.id != position_id:
            continue
        if term and term not in item.position.title.lower() and not any(
            term in candidate.name.lower() for candidate in item.candidates
        ):
            continue
        matched.append(item)
    return matched
