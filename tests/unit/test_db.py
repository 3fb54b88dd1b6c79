"""Tests for the database layer: init, listings, provider aggregation, history, saved searches."""

import json
from datetime import datetime, timedelta, timezone

import pytest

from src.core.db import (
    clear_recent_searches,
    delete_recent_search,
    delete_saved_search,
    fetch_listings,
    fetch_providers,
    find_listing_titles,
    find_subcategories,
    get_popular_searches,
    get_recent_searches,
    get_saved_searches,
    increment_popular_search,
    init_db,
    insert_review,
    insert_saved_search,
    match_popular_searches,
    refresh_trending,
    upsert_listing,
    upsert_provider,
    upsert_recent_search,
)
from src.core.schemas import MarketplaceCategory, ProviderMetadata, ProviderTier, SearchCandidate

NOW = datetime(2026, 6, 1, 12, 0, tzinfo=timezone.utc)


def _listing(
    listing_id: str = "1",
    title: str = "Emergency Plumber",
    category: MarketplaceCategory = MarketplaceCategory.SERVICES,
    subcategory: str = "Plumbing",
    description: str | None = None,
) -> SearchCandidate:
    return SearchCandidate(
        listing_id=listing_id,
        title=title,
        description=description,
        category=category,
        subcategory=subcategory,
        attributes={"rate": "£150/day"},
        created_at=NOW,
    )


@pytest.fixture()
def db(tmp_path):  # type: ignore[no-untyped-def]
    """Provide a fresh SQLite connection per test."""
    conn = init_db(tmp_path / "test.db")
    yield conn
    conn.close()


class TestInitDb:
    def test_creates_tables(self, db) -> None:  # type: ignore[no-untyped-def]
        tables = {
            row[0]
            for row in db.execute(
                "SELECT name FROM sqlite_master WHERE type='table'"
            ).fetchall()
        }
        assert {
            "listings", "providers", "reviews",
            "recent_searches", "popular_searches", "saved_searches",
        } <= tables

    def test_idempotent(self, tmp_path) -> None:  # type: ignore[no-untyped-def]
        """Calling init_db twice on the same path doesn't error."""
        p = tmp_path / "nested" / "double.db"
        conn1 = init_db(p)
        conn1.close()
        conn2 = init_db(p)
        conn2.close()


class TestListings:
    def test_upsert_and_fetch(self, db) -> None:  # type: ignore[no-untyped-def]
        upsert_listing(db, _listing())
        rows = fetch_listings(db)
        assert len(rows) == 1
        assert rows[0]["title"] == "Emergency Plumber"
        assert json.loads(rows[0]["attributes_json"]) == {"rate": "£150/day"}

    def test_upsert_replaces(self, db) -> None:  # type: ignore[no-untyped-def]
        upsert_listing(db, _listing(title="Old"))
        upsert_listing(db, _listing(title="New"))
        rows = fetch_listings(db)
        assert [r["title"] for r in rows] == ["New"]

    def test_category_filter(self, db) -> None:  # type: ignore[no-untyped-def]
        upsert_listing(db, _listing("1"))
        upsert_listing(db, _listing("2", title="Chatbot", category=MarketplaceCategory.AI))
        rows = fetch_listings(db, category="AI")
        assert [r["listing_id"] for r in rows] == ["2"]

    def test_text_matches_title_description_subcategory(self, db) -> None:  # type: ignore[no-untyped-def]
        upsert_listing(db, _listing("1", title="Emergency Plumber"))
        upsert_listing(db, _listing("2", title="Boilers", description="Gas plumber", subcategory="Heating"))
        upsert_listing(db, _listing("3", title="Roofer", subcategory="Roofing"))
        upsert_listing(db, _listing("4", title="Fixes", subcategory="Plumbing"))
        ids = {r["listing_id"] for r in fetch_listings(db, text="PLUMB")}
        assert ids == {"1", "2", "4"}

    def test_like_wildcards_escaped(self, db) -> None:  # type: ignore[no-untyped-def]
        upsert_listing(db, _listing("1", title="100% Reliable"))
        upsert_listing(db, _listing("2", title="1000 Reviews"))
        ids = [r["listing_id"] for r in fetch_listings(db, text="100%")]
        assert ids == ["1"]

    def test_find_titles_and_subcategories(self, db) -> None:  # type: ignore[no-untyped-def]
        upsert_listing(db, _listing("1", title="Emergency Plumber", subcategory="Plumbing"))
        upsert_listing(db, _listing("2", title="Plumbing Repairs", subcategory="Plumbing"))
        upsert_listing(db, _listing("3", title="Plumber Bot", category=MarketplaceCategory.AI, subcategory="Agents"))
        titles = find_listing_titles(db, "plumb", category="Services")
        assert [r["title"] for r in titles] == ["Emergency Plumber", "Plumbing Repairs"]
        subs = find_subcategories(db, "plumb")
        assert [(r["subcategory"], r["category"]) for r in subs] == [("Plumbing", "Services")]


class TestProviders:
    def test_aggregates_reviews(self, db) -> None:  # type: ignore[no-untyped-def]
        upsert_listing(db, _listing("1"))
        provider_id = upsert_provider(db, "1", ProviderMetadata(tier=ProviderTier.VERIFIED, day_rate=150))
        insert_review(db, provider_id, 5)
        insert_review(db, provider_id, 4)
        rows = fetch_providers(db, ["1"])
        assert len(rows) == 1
        assert rows[0]["tier"] == "verified"
        assert rows[0]["avg_rating"] == pytest.approx(4.5)
        assert rows[0]["review_count"] == 2

    def test_no_reviews(self, db) -> None:  # type: ignore[no-untyped-def]
        upsert_provider(db, "1", ProviderMetadata())
        row = fetch_providers(db, ["1"])[0]
        assert row["avg_rating"] is None
        assert row["review_count"] == 0

    def test_derived_provider_id(self, db) -> None:  # type: ignore[no-untyped-def]
        assert upsert_provider(db, "9", ProviderMetadata()) == "provider-9"
        assert upsert_provider(db, "9", ProviderMetadata(provider_id="p-1")) == "p-1"

    def test_inactive_excluded(self, db) -> None:  # type: ignore[no-untyped-def]
        upsert_provider(db, "1", ProviderMetadata(), is_active=False)
        assert fetch_providers(db, ["1"]) == []

    def test_empty_ids(self, db) -> None:  # type: ignore[no-untyped-def]
        assert fetch_providers(db, []) == []


class TestRecentSearches:
    def test_upsert_keyed_by_user_and_query(self, db) -> None:  # type: ignore[no-untyped-def]
        upsert_recent_search(db, "u1", "plumber", "{}", 3, NOW)
        upsert_recent_search(db, "u1", "plumber", "{}", 7, NOW + timedelta(minutes=5))
        upsert_recent_search(db, "u1", "roofer", "{}", 1, NOW + timedelta(minutes=1))
        rows = get_recent_searches(db, "u1")
        assert [r["query"] for r in rows] == ["plumber", "roofer"]
        assert rows[0]["results_count"] == 7

    def test_limit_and_isolation(self, db) -> None:  # type: ignore[no-untyped-def]
        for i in range(5):
            upsert_recent_search(db, "u1", f"q{i}", "{}", i, NOW + timedelta(minutes=i))
        upsert_recent_search(db, "u2", "other", "{}", 0, NOW)
        rows = get_recent_searches(db, "u1", limit=2)
        assert [r["query"] for r in rows] == ["q4", "q3"]

    def test_delete_scoped_to_user(self, db) -> None:  # type: ignore[no-untyped-def]
        upsert_recent_search(db, "u1", "plumber", "{}", 3, NOW)
        search_id = get_recent_searches(db, "u1")[0]["id"]
        assert delete_recent_search(db, "u2", search_id) is False
        assert delete_recent_search(db, "u1", search_id) is True
        assert get_recent_searches(db, "u1") == []

    def test_clear(self, db) -> None:  # type: ignore[no-untyped-def]
        upsert_recent_search(db, "u1", "a", "{}", 0, NOW)
        upsert_recent_search(db, "u1", "b", "{}", 0, NOW)
        assert clear_recent_searches(db, "u1") == 2


class TestPopularSearches:
    def test_increment(self, db) -> None:  # type: ignore[no-untyped-def]
        increment_popular_search(db, "plumber", "Services", NOW)
        increment_popular_search(db, "plumber", None, NOW)
        increment_popular_search(db, "roofer", None, NOW)
        rows = get_popular_searches(db)
        assert [(r["query"], r["search_count"]) for r in rows] == [("plumber", 2), ("roofer", 1)]
        assert rows[0]["category"] == "Services"

    def test_match(self, db) -> None:  # type: ignore[no-untyped-def]
        increment_popular_search(db, "emergency plumber", None, NOW)
        increment_popular_search(db, "plumber", None, NOW)
        increment_popular_search(db, "plumber", None, NOW)
        rows = match_popular_searches(db, "PLUMB")
        assert [r["query"] for r in rows] == ["plumber", "emergency plumber"]

    def test_refresh_trending_window(self, db) -> None:  # type: ignore[no-untyped-def]
        for _ in range(5):
            increment_popular_search(db, "stale", None, NOW - timedelta(days=30))
        increment_popular_search(db, "fresh", None, NOW - timedelta(days=1))
        increment_popular_search(db, "fresher", None, NOW)
        increment_popular_search(db, "fresher", None, NOW)
        flagged = refresh_trending(db, window_days=7, top_n=1, now=NOW)
        assert flagged == 1
        trending = get_popular_searches(db, trending_only=True)
        assert [r["query"] for r in trending] == ["fresher"]

    def test_refresh_resets_previous_flags(self, db) -> None:  # type: ignore[no-untyped-def]
        increment_popular_search(db, "old", None, NOW - timedelta(days=1))
        refresh_trending(db, now=NOW)
        assert len(get_popular_searches(db, trending_only=True)) == 1
        refresh_trending(db, now=NOW + timedelta(days=30))
        assert get_popular_searches(db, trending_only=True) == []


class TestSavedSearches:
    def test_insert_list_delete(self, db) -> None:  # type: ignore[no-untyped-def]
        search_id = insert_saved_search(
            db, "u1", "Plumbers", "plumber", '{"location": "London"}', True, "weekly", NOW,
        )
        rows = get_saved_searches(db, "u1")
        assert [r["id"] for r in rows] == [search_id]
        assert rows[0]["alert_frequency"] == "weekly"
        assert delete_saved_search(db, "u2", search_id) is False
        assert delete_saved_search(db, "u1", search_id) is True
        assert get_saved_searches(db, "u1") == []

    def test_frequency_dropped_without_alert(self, db) -> None:  # type: ignore[no-untyped-def]
        insert_saved_search(db, "u1", "Roofers", "roofer", "{}", False, "daily", NOW)
        assert get_saved_searches(db, "u1")[0]["alert_frequency"] is None
