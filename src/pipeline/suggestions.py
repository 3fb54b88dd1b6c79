"""Autocomplete suggestions from listing titles, subcategories and popular searches."""

import logging

from src.core.schemas import MarketplaceCategory, SearchSuggestion
from src.stores.base import CandidateStore, SearchHistoryStore

logger = logging.getLogger(__name__)

MIN_QUERY_LENGTH = 2
TITLE_LIMIT = 5
SUBCATEGORY_LIMIT = 5
POPULAR_LIMIT = 3
MAX_SUGGESTIONS = 10


async def build_suggestions(
    query: str | None,
    candidates: CandidateStore,
    history: SearchHistoryStore | None = None,
    category: MarketplaceCategory | None = None,
    limit: int = MAX_SUGGESTIONS,
) -> list[SearchSuggestion]:
    """Collect suggestions for a partial query.

    Listing titles come first, then distinct subcategories, then popular
    searches. Queries shorter than two characters, and any store failure,
    yield an empty list.
    """
    if not query or len(query.strip()) < MIN_QUERY_LENGTH:
        return []

    text = query.lower().strip()
    suggestions: list[SearchSuggestion] = []

    try:
        for listing in await candidates.find_by_title(text, category, TITLE_LIMIT):
            suggestions.append(SearchSuggestion(
                id=f"listing-{listing.listing_id}",
                type="listing",
                text=listing.title,
                category=listing.category,
                subcategory=listing.subcategory or None,
            ))

        seen: set[str] = set()
        for subcategory, sub_category in await candidates.find_by_subcategory(
            text, SUBCATEGORY_LIMIT,
        ):
            if not subcategory or subcategory in seen:
                continue
            seen.add(subcategory)
            suggestions.append(SearchSuggestion(
                id=f"subcategory-{subcategory}",
                type="category",
                text=subcategory,
                category=sub_category,
            ))

        if history is not None:
            for popular in await history.match_popular(text, POPULAR_LIMIT):
                suggestions.append(SearchSuggestion(
                    id=f"popular-{popular.query}",
                    type="popular",
                    text=popular.query,
                    count=popular.count,
                ))
    except Exception:
        logger.warning("Failed to build suggestions for '%s'", text, exc_info=True)
        return []

    return suggestions[:limit]
