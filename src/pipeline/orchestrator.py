"""Orchestrator: wires stores, scorer, filter chain, sorting, facets and history.

Data flow for a search:
  1. Candidate fetch (category and text pre-filter done by the store)
  2. Provider metadata fetch, attached to each candidate
  3. Scorer -> SearchResult per candidate
  4. Filter chain
  5. Sort
  6. Facets over the filtered, unpaginated set
  7. Page slice
  8. Suggestions (query only)
  9. History and popular counter, fire-and-forget (query and user only)

Fetch, score and filter failures degrade to an empty response. Suggestion
and history failures are logged and never change the response.
"""

import asyncio
import logging
from datetime import datetime, timezone

from src.core.config import RankingConfig, SearchDefaults
from src.core.schemas import (
    AlertFrequency,
    AppliedFilters,
    MarketplaceCategory,
    OperationResult,
    PopularSearch,
    RecentSearch,
    SavedSearch,
    SearchParams,
    SearchResponse,
    SearchSuggestion,
)
from src.pipeline.facets import calculate_facets
from src.pipeline.matcher import apply_filters, applied_filters_from_params, clean_filters
from src.pipeline.scorer import DEFAULT_RANKING, score_candidate
from src.pipeline.sorting import apply_sorting
from src.pipeline.suggestions import build_suggestions
from src.stores.base import (
    CandidateStore,
    ProviderMetadataStore,
    SavedSearchStore,
    SearchHistoryStore,
)

logger = logging.getLogger(__name__)

_NO_HISTORY = "search history is not configured"
_NO_SAVED = "saved searches are not configured"


def popular_key(query: str) -> str:
    """Normalize a query for the global popular-search counter."""
    return query.strip().lower()


class SearchOrchestrator:
    """Runs marketplace searches against the configured stores."""

    def __init__(
        self,
        candidates: CandidateStore,
        providers: ProviderMetadataStore,
        history: SearchHistoryStore | None = None,
        saved: SavedSearchStore | None = None,
        ranking: RankingConfig = DEFAULT_RANKING,
        defaults: SearchDefaults | None = None,
    ) -> None:
        self._candidates = candidates
        self._providers = providers
        self._history = history
        self._saved = saved
        self._ranking = ranking
        self._defaults = defaults or SearchDefaults()
        # Pending fire-and-forget history writes
        self._background: set[asyncio.Task[None]] = set()

    # -----------------------------------------------------------------------
    # Search
    # -----------------------------------------------------------------------

    def page_limit(self, params: SearchParams) -> int:
        return min(params.limit or self._defaults.default_limit, self._defaults.max_limit)

    async def search(self, params: SearchParams, now: datetime | None = None) -> SearchResponse:
        """Run one search.

        Args:
            params: Query, filters, sort and page window.
            now: Clock override for recency scoring.

        Returns:
            SearchResponse. Never raises for store failures.
        """
        limit = self.page_limit(params)
        page = params.page
        offset = (page - 1) * limit
        applied = applied_filters_from_params(params)
        # Whitespace-only queries count as no query
        query = (params.query or "").strip() or None
        current = now if now is not None else datetime.now(timezone.utc)

        try:
            candidates = await self._candidates.fetch_candidates(params.category, query)
            logger.info("Fetched %d candidates", len(candidates))
            if not candidates:
                return self._empty_response(params, query, limit, applied)

            metadata = await self._providers.fetch_provider_metadata(
                [c.listing_id for c in candidates],
            )
            candidates = [
                c.model_copy(update={
                    "provider": metadata[c.listing_id],
                    "provider_id": metadata[c.listing_id].provider_id or c.provider_id,
                })
                if c.listing_id in metadata else c
                for c in candidates
            ]

            # Unsorted here; apply_sorting owns the ordering
            scored = [score_candidate(c, query, self._ranking, current) for c in candidates]
            filtered = apply_filters(scored, params)
            logger.info("After filtering: %d", len(filtered))
        except Exception:
            logger.exception("Search failed for query %r", query)
            return self._empty_response(params, query, limit, applied)

        ordered = apply_sorting(filtered, params.sort_by, params.sort_order)
        facets = calculate_facets(ordered)
        total = len(ordered)
        page_results = ordered[offset:offset + limit]

        suggestions: list[SearchSuggestion] = []
        if query:
            suggestions = await self.suggestions(query, params.category)

        if query and params.user_id:
            self._schedule_history(params.user_id, query, params.category, applied, total)

        return SearchResponse(
            results=page_results,
            total=total,
            page=page,
            limit=limit,
            has_more=offset + limit < total,
            facets=facets,
            query=query,
            applied_filters=applied,
            suggestions=suggestions,
        )

    def _empty_response(
        self, params: SearchParams, query: str | None, limit: int, applied: AppliedFilters,
    ) -> SearchResponse:
        return SearchResponse(
            page=params.page,
            limit=limit,
            query=query,
            applied_filters=applied,
        )

    def _schedule_history(
        self,
        user_id: str,
        query: str,
        category: MarketplaceCategory | None,
        applied: AppliedFilters,
        total: int,
    ) -> None:
        if self._history is None:
            return
        task = asyncio.create_task(self._record_history(user_id, query, category, applied, total))
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _record_history(
        self,
        user_id: str,
        query: str,
        category: MarketplaceCategory | None,
        applied: AppliedFilters,
        total: int,
    ) -> None:
        """Store a trimmed, non-empty query in recent history and the popular counter."""
        key = popular_key(query)
        if self._history is None or not key:
            return
        try:
            await self._history.record_search(user_id, query.strip(), applied, total)
            await self._history.increment_popular(key, category)
        except Exception:
            logger.warning("Failed to record search history for %r", query, exc_info=True)

    async def wait_for_background(self) -> None:
        """Wait for pending history writes to finish."""
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)

    # -----------------------------------------------------------------------
    # Suggestions
    # -----------------------------------------------------------------------

    async def suggestions(
        self, query: str | None, category: MarketplaceCategory | None = None,
    ) -> list[SearchSuggestion]:
        return await build_suggestions(
            query,
            self._candidates,
            self._history,
            category,
            limit=self._defaults.suggestion_limit,
        )

    # -----------------------------------------------------------------------
    # Recent and popular searches
    # -----------------------------------------------------------------------

    async def recent_searches(self, user_id: str, limit: int | None = None) -> list[RecentSearch]:
        if self._history is None:
            return []
        try:
            return await self._history.recent_searches(
                user_id, limit or self._defaults.recent_limit,
            )
        except Exception:
            logger.warning("Failed to load recent searches for %s", user_id, exc_info=True)
            return []

    async def delete_recent_search(self, user_id: str, search_id: int) -> OperationResult:
        if self._history is None:
            return OperationResult(success=False, error=_NO_HISTORY)
        try:
            deleted = await self._history.delete_recent_search(user_id, search_id)
        except Exception as e:
            logger.warning("Failed to delete recent search %d", search_id, exc_info=True)
            return OperationResult(success=False, error=str(e))
        if not deleted:
            return OperationResult(success=False, error="recent search not found", id=search_id)
        return OperationResult(success=True, id=search_id)

    async def clear_recent_searches(self, user_id: str) -> OperationResult:
        if self._history is None:
            return OperationResult(success=False, error=_NO_HISTORY)
        try:
            removed = await self._history.clear_recent_searches(user_id)
        except Exception as e:
            logger.warning("Failed to clear recent searches for %s", user_id, exc_info=True)
            return OperationResult(success=False, error=str(e))
        logger.info("Cleared %d recent searches for %s", removed, user_id)
        return OperationResult(success=True)

    async def popular_searches(
        self, limit: int = 10, trending_only: bool = False,
    ) -> list[PopularSearch]:
        if self._history is None:
            return []
        try:
            return await self._history.popular_searches(limit, trending_only)
        except Exception:
            logger.warning("Failed to load popular searches", exc_info=True)
            return []

    async def refresh_trending(
        self, window_days: int | None = None, top_n: int | None = None,
    ) -> OperationResult:
        if self._history is None:
            return OperationResult(success=False, error=_NO_HISTORY)
        try:
            flagged = await self._history.refresh_trending(
                window_days or self._defaults.trending_window_days,
                top_n or self._defaults.trending_top_n,
            )
        except Exception as e:
            logger.warning("Failed to refresh trending searches", exc_info=True)
            return OperationResult(success=False, error=str(e))
        logger.info("Flagged %d trending searches", flagged)
        return OperationResult(success=True)

    # -----------------------------------------------------------------------
    # Saved searches
    # -----------------------------------------------------------------------

    async def save_search(
        self,
        user_id: str,
        name: str,
        query: str = "",
        filters: AppliedFilters | None = None,
        alert_enabled: bool = False,
        alert_frequency: AlertFrequency | None = None,
    ) -> OperationResult:
        if self._saved is None:
            return OperationResult(success=False, error=_NO_SAVED)
        if not name.strip():
            return OperationResult(success=False, error="name is required")
        try:
            saved = await self._saved.create_saved_search(
                user_id,
                name.strip(),
                query.strip(),
                clean_filters(filters or AppliedFilters()),
                alert_enabled,
                (alert_frequency or "daily") if alert_enabled else None,
            )
        except Exception as e:
            logger.warning("Failed to save search %r", name, exc_info=True)
            return OperationResult(success=False, error=str(e))
        return OperationResult(success=True, id=saved.id)

    async def saved_searches(self, user_id: str) -> list[SavedSearch]:
        if self._saved is None:
            return []
        try:
            return await self._saved.saved_searches(user_id)
        except Exception:
            logger.warning("Failed to load saved searches for %s", user_id, exc_info=True)
            return []

    async def delete_saved_search(self, user_id: str, search_id: int) -> OperationResult:
        if self._saved is None:
            return OperationResult(success=False, error=_NO_SAVED)
        try:
            deleted = await self._saved.delete_saved_search(user_id, search_id)
        except Exception as e:
            logger.warning("Failed to delete saved search %d", search_id, exc_info=True)
            return OperationResult(success=False, error=str(e))
        if not deleted:
            return OperationResult(success=False, error="saved search not found", id=search_id)
        return OperationResult(success=True, id=search_id)
