"""Facet counts over a filtered result set.

Computed before pagination so counts describe every match, not one page.
"""

import math
from collections.abc import Iterable

from src.core.schemas import ProviderTier, SearchFacets, SearchResult
from src.pipeline.attributes import extract_location, extract_price

# (upper bound exclusive, bucket); prices at or above the last bound fall in "500+"
_PRICE_BUCKETS: list[tuple[float, str]] = [
    (50, "0-50"),
    (100, "50-100"),
    (250, "100-250"),
    (500, "250-500"),
]
_TOP_PRICE_BUCKET = "500+"


def calculate_facets(results: Iterable[SearchResult]) -> SearchFacets:
    """Count results per category, subcategory, tier, price bucket, rating and location.

    Listings without a provider count as standard tier. Unpriced, unrated
    and unlocated listings are left out of those facets only.
    """
    facets = SearchFacets()

    for result in results:
        candidate = result.candidate
        provider = candidate.provider

        category = candidate.category.value
        facets.categories[category] = facets.categories.get(category, 0) + 1

        subcategory = candidate.subcategory
        facets.subcategories[subcategory] = facets.subcategories.get(subcategory, 0) + 1

        tier = (provider.tier if provider else ProviderTier.STANDARD).value
        facets.tiers[tier] = facets.tiers.get(tier, 0) + 1

        price = extract_price(candidate)
        if price is not None:
            bucket = price_bucket(price)
            facets.price_ranges[bucket] += 1

        rating = provider.average_rating if provider else None
        if rating is not None and math.isfinite(rating):
            key = f"{math.floor(rating)}+"
            facets.ratings[key] = facets.ratings.get(key, 0) + 1

        location = extract_location(candidate)
        if location:
            facets.locations[location] = facets.locations.get(location, 0) + 1

    return facets


def price_bucket(price: float) -> str:
    for upper, bucket in _PRICE_BUCKETS:
        if price < upper:
            return bucket
    return _TOP_PRICE_BUCKET
