"""Result ordering for explicit sort options.

Relevance sorts by total score. Every other option sorts by its own key in
its natural direction (flipped by sort_order="asc"), breaking ties by
descending total score and then by input order.
"""

from collections.abc import Callable, Iterable

from src.core.schemas import SearchResult, SortOption, SortOrder
from src.pipeline.attributes import extract_price
from src.pipeline.scorer import as_utc, sort_by_score


def _rating(r: SearchResult) -> float:
    provider = r.candidate.provider
    return (provider.average_rating or 0.0) if provider else 0.0


def _price(r: SearchResult) -> float:
    return extract_price(r.candidate) or 0.0


def _last_active(r: SearchResult) -> float:
    provider = r.candidate.provider
    if provider is None or provider.last_active_at is None:
        return 0.0
    return as_utc(provider.last_active_at).timestamp()


def _reviews(r: SearchResult) -> float:
    provider = r.candidate.provider
    return float(provider.total_reviews) if provider else 0.0


# option -> (key, sorts descending by default)
_SORT_KEYS: dict[SortOption, tuple[Callable[[SearchResult], float], bool]] = {
    SortOption.RATING_HIGH: (_rating, True),
    SortOption.RATING_LOW: (_rating, False),
    SortOption.PRICE_HIGH: (_price, True),
    SortOption.PRICE_LOW: (_price, False),
    SortOption.NEWEST: (_last_active, True),
    SortOption.MOST_REVIEWS: (_reviews, True),
    SortOption.RESPONSE_TIME: (lambda r: r.scores.response_rate, True),
    SortOption.COMPLETION_RATE: (lambda r: r.scores.completion_rate, True),
}


def apply_sorting(
    results: Iterable[SearchResult],
    sort_by: SortOption | None = None,
    sort_order: SortOrder = "desc",
) -> list[SearchResult]:
    """Order results for the requested sort option."""
    by_score = sort_by_score(results)
    if sort_by is None or sort_by == SortOption.RELEVANCE:
        return by_score

    key, descending = _SORT_KEYS[sort_by]
    if sort_order == "asc":
        descending = not descending
    # Stable: equal keys keep the total-score order from the first pass
    return sorted(by_score, key=key, reverse=descending)

