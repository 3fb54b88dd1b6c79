"""Multi-factor ranking for marketplace search results.

Every component score lies in [0, 1]. The total is the weighted sum of the
components using RankingConfig.weights (default split):

    relevance 30%, tier 20%, rating 15%, response rate 15%,
    completion rate 10%, discount 5%, recency 5%

Missing provider data yields neutral values, never an error.
"""

import logging
import math
import re
from collections.abc import Iterable, Mapping
from datetime import datetime, timezone
from typing import Any

from src.core.config import SCORE_COMPONENTS, RankingConfig, RankingWeights
from src.core.schemas import (
    ProviderTier,
    ScoreVector,
    SearchCandidate,
    SearchResult,
)
from src.pipeline.attributes import SEARCHABLE_FIELDS

logger = logging.getLogger(__name__)

DEFAULT_RANKING = RankingConfig()

NEUTRAL_SCORE = 0.5
UNKNOWN_RECENCY_SCORE = 0.3

# 95% confidence for the Wilson lower bound
WILSON_Z = 1.96

# (max hours, bonus); the first bracket that fits wins
_RESPONSE_TIME_BONUSES: list[tuple[float, float]] = [
    (1.0, 0.3),
    (4.0, 0.25),
    (12.0, 0.2),
    (24.0, 0.15),
    (48.0, 0.1),
]

# (max days since active, score)
_RECENCY_STEPS: list[tuple[float, float]] = [
    (1.0, 1.0),
    (3.0, 0.9),
    (7.0, 0.8),
    (14.0, 0.7),
    (30.0, 0.5),
    (60.0, 0.3),
    (90.0, 0.2),
]
_STALE_RECENCY_SCORE = 0.1


# ---------------------------------------------------------------------------
# Relevance
# ---------------------------------------------------------------------------


def relevance_score(candidate: SearchCandidate, query: str | None) -> float:
    """Score how well a listing's text matches a free-text query.

    Points are accumulated against the maximum possible for the fields the
    listing actually has, so the ratio does not depend on which optional
    fields are present. An empty query is neutral (0.5); an exact title
    match (case-insensitive) is a perfect 1.0.
    """
    if not query or not query.strip():
        return NEUTRAL_SCORE

    normalized_query = query.lower().strip()
    terms = query_terms(normalized_query)
    term_count = max(len(terms), 1)

    title = candidate.title.lower()
    if title.strip() == normalized_query:
        return 1.0

    score = 0.0
    max_score = 0.0

    if normalized_query in title:
        score += 80
    max_score += 100

    title_hits = sum(1 for term in terms if term in title)
    score += title_hits / term_count * 60
    max_score += 60

    if candidate.description:
        description = candidate.description.lower()
        if normalized_query in description:
            score += 40
        description_hits = sum(1 for term in terms if term in description)
        score += description_hits / term_count * 30
        max_score += 70

    if candidate.subcategory:
        if normalized_query in candidate.subcategory.lower():
            score += 50
        max_score += 50

    if candidate.attributes:
        score += attributes_score(candidate.attributes, terms) * 50
        max_score += 50

    if re.search(rf"\b{re.escape(normalized_query)}\b", candidate.title, re.IGNORECASE):
        score += 20
    max_score += 20

    return _clamp(score / max_score)


def query_terms(normalized_query: str) -> list[str]:
    """Split a lowercased query into terms, dropping single characters."""
    return [term for term in normalized_query.split() if len(term) > 1]


def attributes_score(attributes: Mapping[str, Any], terms: list[str]) -> float:
    """Fraction of query terms found in the listing attributes, capped at 1.

    List-valued searchable fields count a full match per term; any plain
    string attribute counts half.
    """
    if not terms:
        return 0.0

    matches = 0.0
    for field in SEARCHABLE_FIELDS:
        value = attributes.get(field)
        if isinstance(value, (list, tuple)):
            values = [v.lower() for v in value if isinstance(v, str)]
            matches += sum(1 for term in terms if any(term in v for v in values))

    for value in attributes.values():
        if isinstance(value, str):
            lowered = value.lower()
            matches += sum(0.5 for term in terms if term in lowered)

    return min(matches / len(terms), 1.0)


# ---------------------------------------------------------------------------
# Provider signals
# ---------------------------------------------------------------------------


def tier_score(
    tier: ProviderTier | None,
    tier_scores: Mapping[ProviderTier, float] | None = None,
) -> float:
    """Look up the tier score. No provider scores 0."""
    if tier is None:
        return 0.0
    table = tier_scores if tier_scores is not None else DEFAULT_RANKING.tier_scores
    return _clamp(table.get(tier, 0.0))


def rating_score(average_rating: float | None, total_reviews: int | None) -> float:
    """Wilson lower bound of the normalized rating plus a review-volume bonus.

    A 5.0 average from a single review ranks below 4.6 from fifty reviews.
    Unrated providers are neutral so new entrants are not buried.
    """
    if not average_rating or not total_reviews or total_reviews <= 0:
        return NEUTRAL_SCORE

    p = _clamp(average_rating / 5)
    n = total_reviews
    z2 = WILSON_Z * WILSON_Z

    wilson = (
        p + z2 / (2 * n) - WILSON_Z * math.sqrt((p * (1 - p) + z2 / (4 * n)) / n)
    ) / (1 + z2 / n)
    review_bonus = min(math.log10(n + 1) / 3, 0.2)

    return _clamp(min(wilson + review_bonus, 1.0))


def response_score(
    response_rate_percent: float | None,
    average_response_time_hours: float | None,
) -> float:
    """70% from the response rate, up to 30% from response-time brackets."""
    if response_rate_percent is None:
        return NEUTRAL_SCORE

    score = _clamp(response_rate_percent / 100) * 0.7

    if average_response_time_hours is not None:
        for max_hours, bonus in _RESPONSE_TIME_BONUSES:
            if average_response_time_hours <= max_hours:
                score += bonus
                break

    return _clamp(min(score, 1.0))


def completion_score(
    completion_rate_percent: float | None,
    total_completed_orders: int | None,
) -> float:
    """Completion rate with an experience bonus and compounding low-rate penalties."""
    if completion_rate_percent is None:
        return NEUTRAL_SCORE

    score = _clamp(completion_rate_percent / 100)

    if total_completed_orders and total_completed_orders > 0:
        experience_bonus = min(math.log10(total_completed_orders + 1) / 4, 0.15)
        score = min(score + experience_bonus, 1.0)

    if completion_rate_percent < 80:
        score *= 0.8
    if completion_rate_percent < 60:
        score *= 0.7

    return _clamp(max(score, 0.0))


def discount_score(discount_percent: float | None) -> float:
    """Linear up to a 50% discount. A small tiebreaker, not a dominant factor."""
    if discount_percent is None or discount_percent <= 0:
        return 0.0
    return _clamp(min(discount_percent, 50) / 50)


def recency_score(last_active_at: datetime | None, now: datetime | None = None) -> float:
    """Step decay on days since the provider was last active.

    Unknown activity scores low but not zero.
    """
    if last_active_at is None:
        return UNKNOWN_RECENCY_SCORE

    current = as_utc(now) if now is not None else datetime.now(timezone.utc)
    days_since_active = (current - as_utc(last_active_at)).total_seconds() / 86400

    for max_days, score in _RECENCY_STEPS:
        if days_since_active <= max_days:
            return score
    return _STALE_RECENCY_SCORE


# ---------------------------------------------------------------------------
# Combination
# ---------------------------------------------------------------------------


def combine_scores(scores: ScoreVector, weights: RankingWeights | None = None) -> float:
    """Weighted sum of the seven components. Ignores scores.total_score."""
    w = weights if weights is not None else DEFAULT_RANKING.weights
    total = sum(getattr(scores, name) * getattr(w, name) for name in SCORE_COMPONENTS)
    return _clamp(total)


def score_candidate(
    candidate: SearchCandidate,
    query: str | None,
    config: RankingConfig = DEFAULT_RANKING,
    now: datetime | None = None,
) -> SearchResult:
    """Compute the full score vector for one candidate.

    Args:
        candidate: Listing with optional provider metadata.
        query: Free-text query; empty means neutral relevance.
        config: Weights and tier table.
        now: Clock override for recency, defaults to the current UTC time.

    Returns:
        SearchResult wrapping the candidate with its ScoreVector.
    """
    provider = candidate.provider
    components = ScoreVector(
        relevance=relevance_score(candidate, query),
        tier=tier_score(provider.tier if provider else None, config.tier_scores),
        rating=rating_score(
            provider.average_rating if provider else None,
            provider.total_reviews if provider else None,
        ),
        response_rate=response_score(
            provider.response_rate_percent if provider else None,
            provider.average_response_time_hours if provider else None,
        ),
        completion_rate=completion_score(
            provider.completion_rate_percent if provider else None,
            provider.total_completed_orders if provider else None,
        ),
        discount=discount_score(provider.discount_percent if provider else None),
        recency=recency_score(provider.last_active_at if provider else None, now),
    )
    scores = components.model_copy(
        update={"total_score": combine_scores(components, config.weights)},
    )
    return SearchResult(candidate=candidate, scores=scores)


def score_candidates(
    candidates: Iterable[SearchCandidate],
    query: str | None,
    config: RankingConfig = DEFAULT_RANKING,
    now: datetime | None = None,
) -> list[SearchResult]:
    """Score a batch of candidates, returning results sorted by total score desc."""
    current = now if now is not None else datetime.now(timezone.utc)
    return sort_by_score([score_candidate(c, query, config, current) for c in candidates])


def sort_by_score(results: Iterable[SearchResult]) -> list[SearchResult]:
    """Stable descending sort on total score; equal scores keep input order."""
    return sorted(results, key=lambda r: r.total_score, reverse=True)


def as_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _clamp(value: float) -> float:
    if math.isnan(value):
        return 0.0
    return max(0.0, min(1.0, value))
