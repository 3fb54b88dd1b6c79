"""Filter chain for marketplace search results.

Filter order:
  1. CategoryFilter        exact category
  2. SubcategoryFilter     OR-match, case-insensitive
  3. PriceRangeFilter      extracted price within [min, max]
  4. RatingFilter          provider rating floor
  5. LocationFilter        normalized match with alias table
  6. TierFilter            OR-match on provider tier
  7. AvailabilityFilter    date range (not yet backed by availability data)
  8. SkillsFilter          ANY or ALL skill match
  9. CertificationsFilter  ANY certification match
 10. VerifiedFilter        verified listings only

Filters are only added to the chain when their parameter is set, and each
one is idempotent: applying it twice keeps the same survivors.
"""

import logging
import re
from collections.abc import Callable, Iterable
from datetime import date
from typing import Any

from src.core.schemas import (
    AppliedFilters,
    DateRange,
    MarketplaceCategory,
    PriceRange,
    ProviderTier,
    SearchParams,
    SearchResult,
)
from src.pipeline.attributes import (
    extract_certifications,
    extract_location,
    extract_price,
    extract_skills,
)

logger = logging.getLogger(__name__)

# A filter is a callable that takes results and returns a subset.
Filter = Callable[[list[SearchResult]], list[SearchResult]]

LOCATION_ALIASES: dict[str, tuple[str, ...]] = {
    "uk": ("united kingdom", "britain", "england", "scotland", "wales"),
    "united kingdom": ("uk", "britain", "england"),
    "usa": ("united states", "america", "us"),
    "united states": ("usa", "america", "us"),
    "london": ("uk", "united kingdom", "england"),
    "new york": ("ny", "nyc", "usa"),
    "sf": ("san francisco", "bay area"),
    "san francisco": ("sf", "bay area"),
    "la": ("los angeles", "california"),
    "los angeles": ("la", "california"),
}

_LOCATION_PUNCTUATION = re.compile(r"[,.\-_]")
_WHITESPACE = re.compile(r"\s+")


def _log_removed(name: str, before: int, after: int) -> None:
    removed = before - after
    if removed:
        logger.debug("%s: removed %d results", name, removed)


class CategoryFilter:
    """Keep results in a single marketplace category."""

    def __init__(self, category: MarketplaceCategory) -> None:
        self._category = category

    def __call__(self, results: list[SearchResult]) -> list[SearchResult]:
        kept = [r for r in results if r.candidate.category == self._category]
        _log_removed("CategoryFilter", len(results), len(kept))
        return kept


class SubcategoryFilter:
    """Keep results whose subcategory is in the requested set (OR logic)."""

    def __init__(self, subcategories: Iterable[str]) -> None:
        self._subcategories = {s.lower().strip() for s in subcategories if s.strip()}

    def __call__(self, results: list[SearchResult]) -> list[SearchResult]:
        if not self._subcategories:
            return results
        kept = [
            r for r in results
            if r.candidate.subcategory.lower().strip() in self._subcategories
        ]
        _log_removed("SubcategoryFilter", len(results), len(kept))
        return kept


class PriceRangeFilter:
    """Keep results whose extracted price lies within the bounds.

    Unpriced results only pass when neither bound is set.
    """

    def __init__(self, min_price: float | None = None, max_price: float | None = None) -> None:
        self._min = min_price
        self._max = max_price

    def __call__(self, results: list[SearchResult]) -> list[SearchResult]:
        kept = [r for r in results if self._matches(r)]
        _log_removed("PriceRangeFilter", len(results), len(kept))
        return kept

    def _matches(self, result: SearchResult) -> bool:
        price = extract_price(result.candidate)
        if price is None:
            return self._min is None and self._max is None
        if self._min is not None and price < self._min:
            return False
        if self._max is not None and price > self._max:
            return False
        return True


class RatingFilter:
    """Keep results rated at or above a floor. Unrated passes only a floor <= 0."""

    def __init__(self, min_rating: float) -> None:
        self._min_rating = min_rating

    def __call__(self, results: list[SearchResult]) -> list[SearchResult]:
        kept = [r for r in results if self._matches(r)]
        _log_removed("RatingFilter", len(results), len(kept))
        return kept

    def _matches(self, result: SearchResult) -> bool:
        provider = result.candidate.provider
        rating = provider.average_rating if provider else None
        if not rating:
            return self._min_rating <= 0
        return rating >= self._min_rating


class LocationFilter:
    """Keep results whose location matches directly, by containment, or by alias."""

    def __init__(self, location: str) -> None:
        self._location = normalize_location(location)

    def __call__(self, results: list[SearchResult]) -> list[SearchResult]:
        if not self._location:
            return results
        kept = [r for r in results if self._matches(r)]
        _log_removed("LocationFilter", len(results), len(kept))
        return kept

    def _matches(self, result: SearchResult) -> bool:
        raw = extract_location(result.candidate)
        if raw is None:
            return False
        return locations_match(self._location, normalize_location(raw))


def normalize_location(location: str) -> str:
    """Lowercase, trim, and collapse punctuation and whitespace to single spaces."""
    cleaned = _LOCATION_PUNCTUATION.sub(" ", location.lower().strip())
    return _WHITESPACE.sub(" ", cleaned).strip()


def locations_match(requested: str, actual: str) -> bool:
    """Match two normalized locations directly, by containment, or via aliases."""
    if not requested or not actual:
        return False
    if requested == actual or requested in actual or actual in requested:
        return True
    if any(alias in actual or actual in alias for alias in LOCATION_ALIASES.get(requested, ())):
        return True
    return requested in LOCATION_ALIASES.get(actual, ())


class TierFilter:
    """Keep results whose provider tier is requested (OR logic).

    Listings without a provider count as standard.
    """

    def __init__(self, tiers: Iterable[ProviderTier]) -> None:
        self._tiers = set(tiers)

    def __call__(self, results: list[SearchResult]) -> list[SearchResult]:
        if not self._tiers:
            return results
        kept = [r for r in results if self._matches(r)]
        _log_removed("TierFilter", len(results), len(kept))
        return kept

    def _matches(self, result: SearchResult) -> bool:
        provider = result.candidate.provider
        if provider is None:
            return ProviderTier.STANDARD in self._tiers
        return provider.tier in self._tiers


class AvailabilityFilter:
    """Date-range availability filter.

    Passes every result until availability-slot data can be joined in.
    """

    def __init__(self, available_from: date | None, available_to: date | None) -> None:
        self._from = available_from
        self._to = available_to

    def __call__(self, results: list[SearchResult]) -> list[SearchResult]:
        # TODO: drop providers with no open availability slot in [from, to] once
        # an availability store is added to the collaborator contracts.
        if self._from or self._to:
            logger.debug(
                "AvailabilityFilter: %s..%s requested but not enforced",
                self._from, self._to,
            )
        return results


class SkillsFilter:
    """Keep results matching any (default) or all of the requested skills."""

    def __init__(self, skills: Iterable[str], match_all: bool = False) -> None:
        self._skills = _normalized_terms(skills)
        self._match_all = match_all

    def __call__(self, results: list[SearchResult]) -> list[SearchResult]:
        if not self._skills:
            return results
        kept = [r for r in results if self._matches(r)]
        _log_removed("SkillsFilter", len(results), len(kept))
        return kept

    def _matches(self, result: SearchResult) -> bool:
        offered = _normalized_terms(extract_skills(result.candidate))
        check = all if self._match_all else any
        return check(_term_matches(skill, offered) for skill in self._skills)


class CertificationsFilter:
    """Keep results holding at least one requested certification."""

    def __init__(self, certifications: Iterable[str]) -> None:
        self._certifications = _normalized_terms(certifications)

    def __call__(self, results: list[SearchResult]) -> list[SearchResult]:
        if not self._certifications:
            return results
        kept = [r for r in results if self._matches(r)]
        _log_removed("CertificationsFilter", len(results), len(kept))
        return kept

    def _matches(self, result: SearchResult) -> bool:
        held = _normalized_terms(extract_certifications(result.candidate))
        return any(_term_matches(cert, held) for cert in self._certifications)


class VerifiedFilter:
    """Keep only verified listings."""

    def __call__(self, results: list[SearchResult]) -> list[SearchResult]:
        kept = [r for r in results if r.candidate.is_verified]
        _log_removed("VerifiedFilter", len(results), len(kept))
        return kept


def _normalized_terms(terms: Iterable[str]) -> list[str]:
    return [t.lower().strip() for t in terms if t.strip()]


def _term_matches(term: str, candidates: list[str]) -> bool:
    """Case-insensitive containment in either direction."""
    return any(term in c or c in term for c in candidates)


# ---------------------------------------------------------------------------
# Chain
# ---------------------------------------------------------------------------


def build_filters(params: SearchParams) -> list[Filter]:
    """Build the filter chain for a search, skipping filters with no parameter."""
    filters: list[Filter] = []
    if params.category:
        filters.append(CategoryFilter(params.category))
    if params.subcategories:
        filters.append(SubcategoryFilter(params.subcategories))
    if params.min_price is not None or params.max_price is not None:
        filters.append(PriceRangeFilter(params.min_price, params.max_price))
    if params.min_rating is not None:
        filters.append(RatingFilter(params.min_rating))
    if params.location and params.location.strip():
        filters.append(LocationFilter(params.location))
    if params.tiers:
        filters.append(TierFilter(params.tiers))
    if params.available_from or params.available_to:
        filters.append(AvailabilityFilter(params.available_from, params.available_to))
    if params.skills:
        filters.append(SkillsFilter(params.skills, match_all=params.skills_match_all))
    if params.certifications:
        filters.append(CertificationsFilter(params.certifications))
    if params.verified_only:
        filters.append(VerifiedFilter())
    return filters


def run_filter_chain(
    results: list[SearchResult],
    filters: list[Filter],
) -> list[SearchResult]:
    """Apply filters in order, returning the surviving results."""
    survivors = results
    for f in filters:
        survivors = f(survivors)
    return survivors


def apply_filters(results: list[SearchResult], params: SearchParams) -> list[SearchResult]:
    return run_filter_chain(list(results), build_filters(params))


# ---------------------------------------------------------------------------
# Applied-filter utilities
# ---------------------------------------------------------------------------


def applied_filters_from_params(params: SearchParams) -> AppliedFilters:
    """Project search parameters onto the cleaned filter echo."""
    price_range = None
    if params.min_price is not None or params.max_price is not None:
        price_range = PriceRange(min=params.min_price, max=params.max_price)
    date_range = None
    if params.available_from or params.available_to:
        date_range = DateRange(from_date=params.available_from, to_date=params.available_to)
    return clean_filters(AppliedFilters(
        query=params.query,
        category=params.category,
        subcategories=params.subcategories,
        price_range=price_range,
        min_rating=params.min_rating,
        location=params.location,
        tiers=params.tiers,
        date_range=date_range,
        skills=params.skills,
        certifications=params.certifications,
        verified_only=params.verified_only or None,
    ))


def clean_filters(filters: AppliedFilters) -> AppliedFilters:
    """Drop empty and unset values, trimming free-text fields."""
    clean: dict[str, Any] = {}
    if filters.query and filters.query.strip():
        clean["query"] = filters.query.strip()
    if filters.category:
        clean["category"] = filters.category
    if filters.subcategories:
        clean["subcategories"] = list(filters.subcategories)
    if filters.price_range and (
        filters.price_range.min is not None or filters.price_range.max is not None
    ):
        clean["price_range"] = filters.price_range
    if filters.min_rating is not None:
        clean["min_rating"] = filters.min_rating
    if filters.location and filters.location.strip():
        clean["location"] = filters.location.strip()
    if filters.tiers:
        clean["tiers"] = list(filters.tiers)
    if filters.date_range and (filters.date_range.from_date or filters.date_range.to_date):
        clean["date_range"] = filters.date_range
    if filters.skills:
        clean["skills"] = list(filters.skills)
    if filters.certifications:
        clean["certifications"] = list(filters.certifications)
    if filters.verified_only:
        clean["verified_only"] = True
    return AppliedFilters(**clean)


def has_active_filters(filters: AppliedFilters) -> bool:
    return bool(clean_filters(filters).model_dump(exclude_none=True))


def merge_filters(existing: AppliedFilters, updates: AppliedFilters) -> AppliedFilters:
    """Overlay the fields explicitly set on updates onto existing."""
    merged = existing.model_dump()
    merged.update(updates.model_dump(exclude_unset=True))
    return AppliedFilters.model_validate(merged)


def filter_summary(filters: AppliedFilters) -> list[str]:
    """Human-readable lines describing the active filters."""
    summary: list[str] = []
    if filters.query:
        summary.append(f'Search: "{filters.query}"')
    if filters.category:
        summary.append(f"Category: {filters.category.value}")
    if filters.subcategories:
        summary.append(f"Types: {', '.join(filters.subcategories)}")
    if filters.price_range and (
        filters.price_range.min is not None or filters.price_range.max is not None
    ):
        low = _format_amount(filters.price_range.min) if filters.price_range.min is not None else "0"
        high = _format_amount(filters.price_range.max) if filters.price_range.max is not None else "∞"
        summary.append(f"Price: £{low} - £{high}")
    if filters.min_rating is not None:
        summary.append(f"Rating: {_format_amount(filters.min_rating)}+ stars")
    if filters.location:
        summary.append(f"Location: {filters.location}")
    if filters.tiers:
        summary.append(f"Tier: {', '.join(t.value for t in filters.tiers)}")
    if filters.date_range and (filters.date_range.from_date or filters.date_range.to_date):
        start = filters.date_range.from_date.isoformat() if filters.date_range.from_date else "any"
        end = filters.date_range.to_date.isoformat() if filters.date_range.to_date else "any"
        summary.append(f"Available: {start} to {end}")
    if filters.skills:
        summary.append(f"Skills: {', '.join(filters.skills)}")
    if filters.certifications:
        summary.append(f"Certifications: {', '.join(filters.certifications)}")
    if filters.verified_only:
        summary.append("Verified only")
    return summary


def _format_amount(value: float) -> str:
    return str(int(value)) if float(value).is_integer() else str(value)
