"""SQLite-backed implementation of every store contract."""

import json
import logging
import sqlite3
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from datetime import datetime

from src.core import db
from src.core.schemas import (
    AlertFrequency,
    AppliedFilters,
    MarketplaceCategory,
    PopularSearch,
    ProviderMetadata,
    ProviderTier,
    RecentSearch,
    SavedSearch,
    SearchCandidate,
)
from src.stores.base import (
    CandidateStore,
    ProviderMetadataStore,
    SavedSearchStore,
    SearchHistoryStore,
    StoreError,
)

logger = logging.getLogger(__name__)


@contextmanager
def _store_errors(operation: str) -> Iterator[None]:
    """Re-raise database and row-decoding failures as StoreError."""
    try:
        yield
    except (sqlite3.Error, ValueError) as e:
        raise StoreError(f"{operation} failed: {e}") from e


def _parse_datetime(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


def _filters_json(filters: AppliedFilters) -> str:
    return filters.model_dump_json(exclude_none=True)


def candidate_from_row(row: sqlite3.Row) -> SearchCandidate:
    return SearchCandidate(
        listing_id=row["listing_id"],
        title=row["title"],
        description=row["description"],
        category=MarketplaceCategory(row["category"]),
        subcategory=row["subcategory"] or "",
        attributes=json.loads(row["attributes_json"] or "{}"),
        is_verified=bool(row["is_verified"]),
        image_url=row["image_url"],
        created_at=_parse_datetime(row["created_at"]),
    )


def provider_from_row(row: sqlite3.Row) -> ProviderMetadata:
    return ProviderMetadata(
        provider_id=row["provider_id"],
        tier=ProviderTier(row["tier"]),
        average_rating=row["avg_rating"],
        total_reviews=row["review_count"],
        response_rate_percent=row["response_rate"],
        average_response_time_hours=row["avg_response_time_hours"],
        completion_rate_percent=row["completion_rate"],
        total_completed_orders=row["completed_orders"],
        discount_percent=row["discount_percent"],
        last_active_at=_parse_datetime(row["last_active_at"]),
        day_rate=row["day_rate"],
        currency=row["currency"],
    )


def _popular_from_row(row: sqlite3.Row) -> PopularSearch:
    category = row["category"]
    return PopularSearch(
        query=row["query"],
        category=MarketplaceCategory(category) if category else None,
        count=row["search_count"],
        trending=bool(row["trending"]),
    )


def _recent_from_row(row: sqlite3.Row) -> RecentSearch:
    return RecentSearch(
        id=row["id"],
        user_id=row["user_id"],
        query=row["query"],
        filters=AppliedFilters.model_validate_json(row["filters_json"] or "{}"),
        results_count=row["results_count"],
        created_at=datetime.fromisoformat(row["created_at"]),
    )


def _saved_from_row(row: sqlite3.Row) -> SavedSearch:
    return SavedSearch(
        id=row["id"],
        user_id=row["user_id"],
        name=row["name"],
        query=row["query"],
        filters=AppliedFilters.model_validate_json(row["filters_json"] or "{}"),
        is_alert_enabled=bool(row["is_alert_enabled"]),
        alert_frequency=row["alert_frequency"],
        created_at=datetime.fromisoformat(row["created_at"]),
        updated_at=datetime.fromisoformat(row["updated_at"]),
    )


class SQLiteMarketplaceStore(
    CandidateStore, ProviderMetadataStore, SearchHistoryStore, SavedSearchStore,
):
    """All marketplace stores over one SQLite connection (see init_db)."""

    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn

    # --- listings ---

    def add_listing(self, candidate: SearchCandidate) -> str | None:
        """Insert a listing and, when present, its provider profile.

        Returns the provider ID, or None for a listing without a provider.
        """
        with _store_errors("add_listing"):
            db.upsert_listing(self._conn, candidate)
            if candidate.provider is None:
                return None
            return db.upsert_provider(self._conn, candidate.listing_id, candidate.provider)

    def add_review(self, provider_id: str, rating: float) -> int:
        with _store_errors("add_review"):
            return db.insert_review(self._conn, provider_id, rating)

    async def fetch_candidates(
        self,
        category: MarketplaceCategory | None = None,
        query: str | None = None,
    ) -> list[SearchCandidate]:
        with _store_errors("fetch_candidates"):
            rows = db.fetch_listings(
                self._conn, category.value if category else None, query,
            )
            candidates = [candidate_from_row(row) for row in rows]
        logger.debug("Fetched %d candidates (category=%s)", len(candidates), category)
        return candidates

    async def find_by_title(
        self,
        text: str,
        category: MarketplaceCategory | None = None,
        limit: int = 5,
    ) -> list[SearchCandidate]:
        with _store_errors("find_by_title"):
            rows = db.find_listing_titles(
                self._conn, text, category.value if category else None, limit,
            )
            return [
                SearchCandidate(
                    listing_id=row["listing_id"],
                    title=row["title"],
                    category=MarketplaceCategory(row["category"]),
                    subcategory=row["subcategory"] or "",
                )
                for row in rows
            ]

    async def find_by_subcategory(
        self, text: str, limit: int = 5,
    ) -> list[tuple[str, MarketplaceCategory]]:
        with _store_errors("find_by_subcategory"):
            rows = db.find_subcategories(self._conn, text, limit)
            return [(row["subcategory"], MarketplaceCategory(row["category"])) for row in rows]

    # --- providers ---

    async def fetch_provider_metadata(
        self, listing_ids: Sequence[str],
    ) -> dict[str, ProviderMetadata]:
        with _store_errors("fetch_provider_metadata"):
            rows = db.fetch_providers(self._conn, listing_ids)
            return {row["listing_id"]: provider_from_row(row) for row in rows}

    # --- history ---

    async def record_search(
        self,
        user_id: str,
        query: str,
        filters: AppliedFilters,
        results_count: int,
    ) -> None:
        with _store_errors("record_search"):
            db.upsert_recent_search(
                self._conn, user_id, query, _filters_json(filters), results_count,
            )

    async def increment_popular(
        self, query: str, category: MarketplaceCategory | None = None,
    ) -> None:
        with _store_errors("increment_popular"):
            db.increment_popular_search(
                self._conn, query, category.value if category else None,
            )

    async def recent_searches(self, user_id: str, limit: int = 10) -> list[RecentSearch]:
        with _store_errors("recent_searches"):
            rows = db.get_recent_searches(self._conn, user_id, limit)
            return [_recent_from_row(row) for row in rows]

    async def delete_recent_search(self, user_id: str, search_id: int) -> bool:
        with _store_errors("delete_recent_search"):
            return db.delete_recent_search(self._conn, user_id, search_id)

    async def clear_recent_searches(self, user_id: str) -> int:
        with _store_errors("clear_recent_searches"):
            return db.clear_recent_searches(self._conn, user_id)

    async def popular_searches(
        self, limit: int = 10, trending_only: bool = False,
    ) -> list[PopularSearch]:
        with _store_errors("popular_searches"):
            rows = db.get_popular_searches(self._conn, limit, trending_only)
            return [_popular_from_row(row) for row in rows]

    async def match_popular(self, text: str, limit: int = 3) -> list[PopularSearch]:
        with _store_errors("match_popular"):
            rows = db.match_popular_searches(self._conn, text, limit)
            return [_popular_from_row(row) for row in rows]

    async def refresh_trending(self, window_days: int = 7, top_n: int = 20) -> int:
        with _store_errors("refresh_trending"):
            return db.refresh_trending(self._conn, window_days, top_n)

    # --- saved searches ---

    async def create_saved_search(
        self,
        user_id: str,
        name: str,
        query: str,
        filters: AppliedFilters,
        is_alert_enabled: bool = False,
        alert_frequency: AlertFrequency | None = None,
    ) -> SavedSearch:
        with _store_errors("create_saved_search"):
            search_id = db.insert_saved_search(
                self._conn,
                user_id,
                name,
                query,
                _filters_json(filters),
                is_alert_enabled,
                alert_frequency,
            )
            row = db.get_saved_search(self._conn, search_id)
            if row is None:
                raise StoreError(f"saved search {search_id} not found after insert")
            return _saved_from_row(row)

    async def saved_searches(self, user_id: str) -> list[SavedSearch]:
        with _store_errors("saved_searches"):
            rows = db.get_saved_searches(self._conn, user_id)
            return [_saved_from_row(row) for row in rows]

    async def delete_saved_search(self, user_id: str, search_id: int) -> bool:
        with _store_errors("delete_saved_search"):
            return db.delete_saved_search(self._conn, user_id, search_id)
