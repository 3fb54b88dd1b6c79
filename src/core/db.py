"""SQLite database layer for listings, providers, and search history."""

import json
import sqlite3
from collections.abc import Sequence
from datetime import datetime, timedelta, timezone
from pathlib import Path

from src.core.schemas import ProviderMetadata, SearchCandidate

_LISTINGS_TABLE = """
CREATE TABLE IF NOT EXISTS listings (
    listing_id      TEXT    PRIMARY KEY,
    title           TEXT    NOT NULL,
    description     TEXT,
    category        TEXT    NOT NULL,
    subcategory     TEXT    NOT NULL DEFAULT '',
    attributes_json TEXT    NOT NULL DEFAULT '{}',
    image_url       TEXT,
    is_verified     INTEGER NOT NULL DEFAULT 0,
    created_at      TEXT    NOT NULL
);
"""

_PROVIDERS_TABLE = """
CREATE TABLE IF NOT EXISTS providers (
    provider_id             TEXT    PRIMARY KEY,
    listing_id              TEXT    NOT NULL,
    tier                    TEXT    NOT NULL DEFAULT 'standard',
    response_rate           REAL,
    avg_response_time_hours REAL,
    completion_rate         REAL,
    completed_orders        INTEGER NOT NULL DEFAULT 0,
    discount_percent        REAL,
    day_rate                REAL,
    currency                TEXT    NOT NULL DEFAULT 'GBP',
    last_active_at          TEXT,
    is_active               INTEGER NOT NULL DEFAULT 1
);
"""

_REVIEWS_TABLE = """
CREATE TABLE IF NOT EXISTS reviews (
    id          INTEGER PRIMARY KEY AUTOINCREMENT,
    provider_id TEXT    NOT NULL,
    rating      REAL    NOT NULL,
    created_at  TEXT    NOT NULL
);
"""

_RECENT_SEARCHES_TABLE = """
CREATE TABLE IF NOT EXISTS recent_searches (
    id            INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id       TEXT    NOT NULL,
    query         TEXT    NOT NULL,
    filters_json  TEXT    NOT NULL DEFAULT '{}',
    results_count INTEGER NOT NULL DEFAULT 0,
    created_at    TEXT    NOT NULL,
    UNIQUE(user_id, query)
);
"""

_POPULAR_SEARCHES_TABLE = """
CREATE TABLE IF NOT EXISTS popular_searches (
    query            TEXT    PRIMARY KEY,
    category         TEXT,
    search_count     INTEGER NOT NULL DEFAULT 1,
    trending         INTEGER NOT NULL DEFAULT 0,
    last_searched_at TEXT    NOT NULL
);
"""

_SAVED_SEARCHES_TABLE = """
CREATE TABLE IF NOT EXISTS saved_searches (
    id               INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id          TEXT    NOT NULL,
    name             TEXT    NOT NULL,
    query            TEXT    NOT NULL DEFAULT '',
    filters_json     TEXT    NOT NULL DEFAULT '{}',
    is_alert_enabled INTEGER NOT NULL DEFAULT 0,
    alert_frequency  TEXT,
    created_at       TEXT    NOT NULL,
    updated_at       TEXT    NOT NULL
);
"""

_INDEXES = (
    "CREATE INDEX IF NOT EXISTS idx_providers_listing ON providers (listing_id)",
    "CREATE INDEX IF NOT EXISTS idx_reviews_provider ON reviews (provider_id)",
    "CREATE INDEX IF NOT EXISTS idx_recent_user ON recent_searches (user_id, created_at)",
    "CREATE INDEX IF NOT EXISTS idx_popular_count ON popular_searches (search_count)",
)


def init_db(path: str | Path) -> sqlite3.Connection:
    """Create the database and tables, returning a connection."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(str(path))
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode=WAL")
    for ddl in (
        _LISTINGS_TABLE,
        _PROVIDERS_TABLE,
        _REVIEWS_TABLE,
        _RECENT_SEARCHES_TABLE,
        _POPULAR_SEARCHES_TABLE,
        _SAVED_SEARCHES_TABLE,
        *_INDEXES,
    ):
        conn.execute(ddl)
    conn.commit()
    return conn


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _like_pattern(text: str) -> str:
    """Build a %contains% LIKE pattern with wildcards escaped (ESCAPE '\\')."""
    escaped = text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


# ---------------------------------------------------------------------------
# Listings and providers
# ---------------------------------------------------------------------------


def upsert_listing(conn: sqlite3.Connection, candidate: SearchCandidate) -> None:
    """Insert or replace a listing's content fields (provider data is separate)."""
    conn.execute(
        """
        INSERT INTO listings
            (listing_id, title, description, category, subcategory,
             attributes_json, image_url, is_verified, created_at)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
        ON CONFLICT(listing_id) DO UPDATE SET
            title = excluded.title,
            description = excluded.description,
            category = excluded.category,
            subcategory = excluded.subcategory,
            attributes_json = excluded.attributes_json,
            image_url = excluded.image_url,
            is_verified = excluded.is_verified
        """,
        (
            candidate.listing_id,
            candidate.title,
            candidate.description,
            candidate.category.value,
            candidate.subcategory,
            json.dumps(candidate.attributes, default=str),
            candidate.image_url,
            int(candidate.is_verified),
            (candidate.created_at or _now()).isoformat(),
        ),
    )
    conn.commit()


def upsert_provider(
    conn: sqlite3.Connection,
    listing_id: str,
    provider: ProviderMetadata,
    is_active: bool = True,
) -> str:
    """Insert or replace the provider profile linked to a listing.

    Ratings are not stored here; they are aggregated from the reviews table.
    Returns the provider ID (derived from the listing when not given).
    """
    provider_id = provider.provider_id or f"provider-{listing_id}"
    conn.execute(
        """
        INSERT INTO providers
            (provider_id, listing_id, tier, response_rate, avg_response_time_hours,
             completion_rate, completed_orders, discount_percent, day_rate,
             currency, last_active_at, is_active)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        ON CONFLICT(provider_id) DO UPDATE SET
            listing_id = excluded.listing_id,
            tier = excluded.tier,
            response_rate = excluded.response_rate,
            avg_response_time_hours = excluded.avg_response_time_hours,
            completion_rate = excluded.completion_rate,
            completed_orders = excluded.completed_orders,
            discount_percent = excluded.discount_percent,
            day_rate = excluded.day_rate,
            currency = excluded.currency,
            last_active_at = excluded.last_active_at,
            is_active = excluded.is_active
        """,
        (
            provider_id,
            listing_id,
            provider.tier.value,
            provider.response_rate_percent,
            provider.average_response_time_hours,
            provider.completion_rate_percent,
            provider.total_completed_orders,
            provider.discount_percent,
            provider.day_rate,
            provider.currency,
            provider.last_active_at.isoformat() if provider.last_active_at else None,
            int(is_active),
        ),
    )
    conn.commit()
    return provider_id


def insert_review(
    conn: sqlite3.Connection,
    provider_id: str,
    rating: float,
    created_at: datetime | None = None,
) -> int:
    """Record a single review. Returns the row ID."""
    cursor = conn.execute(
        "INSERT INTO reviews (provider_id, rating, created_at) VALUES (?, ?, ?)",
        (provider_id, rating, (created_at or _now()).isoformat()),
    )
    conn.commit()
    return cursor.lastrowid or 0


def fetch_listings(
    conn: sqlite3.Connection,
    category: str | None = None,
    text: str | None = None,
) -> list[sqlite3.Row]:
    """Return listings, optionally narrowed by category and a contains-match on text.

    The text match covers title, description and subcategory, case-insensitively.
    """
    sql = "SELECT * FROM listings WHERE 1 = 1"
    params: list[object] = []
    if category:
        sql += " AND category = ?"
        params.append(category)
    if text and text.strip():
        pattern = _like_pattern(text.strip())
        sql += (
            " AND (title LIKE ? ESCAPE '\\' OR description LIKE ? ESCAPE '\\'"
            " OR subcategory LIKE ? ESCAPE '\\')"
        )
        params.extend([pattern, pattern, pattern])
    sql += " ORDER BY created_at DESC, listing_id"
    return conn.execute(sql, params).fetchall()


def fetch_providers(conn: sqlite3.Connection, listing_ids: Sequence[str]) -> list[sqlite3.Row]:
    """Return active providers for the listings with aggregated review stats."""
    if not listing_ids:
        return []
    placeholders = ", ".join("?" for _ in listing_ids)
    return conn.execute(
        f"""
        SELECT p.*,
               r.avg_rating AS avg_rating,
               COALESCE(r.review_count, 0) AS review_count
        FROM providers p
        LEFT JOIN (
            SELECT provider_id, AVG(rating) AS avg_rating, COUNT(*) AS review_count
            FROM reviews
            GROUP BY provider_id
        ) r ON r.provider_id = p.provider_id
        WHERE p.is_active = 1 AND p.listing_id IN ({placeholders})
        """,
        list(listing_ids),
    ).fetchall()


def find_listing_titles(
    conn: sqlite3.Connection,
    text: str,
    category: str | None = None,
    limit: int = 5,
) -> list[sqlite3.Row]:
    sql = "SELECT listing_id, title, category, subcategory FROM listings WHERE title LIKE ? ESCAPE '\\'"
    params: list[object] = [_like_pattern(text)]
    if category:
        sql += " AND category = ?"
        params.append(category)
    sql += " ORDER BY title LIMIT ?"
    params.append(limit)
    return conn.execute(sql, params).fetchall()


def find_subcategories(conn: sqlite3.Connection, text: str, limit: int = 5) -> list[sqlite3.Row]:
    return conn.execute(
        """
        SELECT subcategory, MIN(category) AS category
        FROM listings
        WHERE subcategory LIKE ? ESCAPE '\\'
        GROUP BY subcategory
        ORDER BY subcategory
        LIMIT ?
        """,
        (_like_pattern(text), limit),
    ).fetchall()


# ---------------------------------------------------------------------------
# Recent and popular searches
# ---------------------------------------------------------------------------


def upsert_recent_search(
    conn: sqlite3.Connection,
    user_id: str,
    query: str,
    filters_json: str,
    results_count: int,
    created_at: datetime | None = None,
) -> None:
    """Record a user's search, refreshing the row if the same query was run before."""
    conn.execute(
        """
        INSERT INTO recent_searches (user_id, query, filters_json, results_count, created_at)
        VALUES (?, ?, ?, ?, ?)
        ON CONFLICT(user_id, query) DO UPDATE SET
            filters_json = excluded.filters_json,
            results_count = excluded.results_count,
            created_at = excluded.created_at
        """,
        (user_id, query, filters_json, results_count, (created_at or _now()).isoformat()),
    )
    conn.commit()


def get_recent_searches(conn: sqlite3.Connection, user_id: str, limit: int = 10) -> list[sqlite3.Row]:
    return conn.execute(
        """
        SELECT * FROM recent_searches
        WHERE user_id = ?
        ORDER BY created_at DESC, id DESC
        LIMIT ?
        """,
        (user_id, limit),
    ).fetchall()


def delete_recent_search(conn: sqlite3.Connection, user_id: str, search_id: int) -> bool:
    cursor = conn.execute(
        "DELETE FROM recent_searches WHERE id = ? AND user_id = ?",
        (search_id, user_id),
    )
    conn.commit()
    return cursor.rowcount > 0


def clear_recent_searches(conn: sqlite3.Connection, user_id: str) -> int:
    cursor = conn.execute("DELETE FROM recent_searches WHERE user_id = ?", (user_id,))
    conn.commit()
    return cursor.rowcount


def increment_popular_search(
    conn: sqlite3.Connection,
    query: str,
    category: str | None = None,
    searched_at: datetime | None = None,
) -> None:
    """Increment the global counter for a normalized query. Creates row if needed."""
    conn.execute(
        """
        INSERT INTO popular_searches (query, category, search_count, last_searched_at)
        VALUES (?, ?, 1, ?)
        ON CONFLICT(query) DO UPDATE SET
            search_count = search_count + 1,
            category = COALESCE(excluded.category, category),
            last_searched_at = excluded.last_searched_at
        """,
        (query, category, (searched_at or _now()).isoformat()),
    )
    conn.commit()


def get_popular_searches(
    conn: sqlite3.Connection,
    limit: int = 10,
    trending_only: bool = False,
) -> list[sqlite3.Row]:
    sql = "SELECT * FROM popular_searches"
    if trending_only:
        sql += " WHERE trending = 1"
    sql += " ORDER BY search_count DESC, query LIMIT ?"
    return conn.execute(sql, (limit,)).fetchall()


def match_popular_searches(conn: sqlite3.Connection, text: str, limit: int = 3) -> list[sqlite3.Row]:
    return conn.execute(
        """
        SELECT * FROM popular_searches
        WHERE query LIKE ? ESCAPE '\\'
        ORDER BY search_count DESC, query
        LIMIT ?
        """,
        (_like_pattern(text.lower()), limit),
    ).fetchall()


def refresh_trending(
    conn: sqlite3.Connection,
    window_days: int = 7,
    top_n: int = 20,
    now: datetime | None = None,
) -> int:
    """Flag the most-searched queries within the window as trending.

    Returns the number of queries flagged.
    """
    cutoff = ((now or _now()) - timedelta(days=window_days)).isoformat()
    conn.execute("UPDATE popular_searches SET trending = 0")
    cursor = conn.execute(
        """
        UPDATE popular_searches SET trending = 1
        WHERE query IN (
            SELECT query FROM popular_searches
            WHERE last_searched_at > ?
            ORDER BY search_count DESC, query
            LIMIT ?
        )
        """,
        (cutoff, top_n),
    )
    conn.commit()
    return cursor.rowcount


# ---------------------------------------------------------------------------
# Saved searches
# ---------------------------------------------------------------------------


def insert_saved_search(
    conn: sqlite3.Connection,
    user_id: str,
    name: str,
    query: str,
    filters_json: str,
    is_alert_enabled: bool = False,
    alert_frequency: str | None = None,
    created_at: datetime | None = None,
) -> int:
    """Store a named search. Returns the row ID."""
    stamp = (created_at or _now()).isoformat()
    cursor = conn.execute(
        """
        INSERT INTO saved_searches
            (user_id, name, query, filters_json, is_alert_enabled, alert_frequency,
             created_at, updated_at)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (
            user_id,
            name,
            query,
            filters_json,
            int(is_alert_enabled),
            alert_frequency if is_alert_enabled else None,
            stamp,
            stamp,
        ),
    )
    conn.commit()
    return cursor.lastrowid or 0


def get_saved_searches(conn: sqlite3.Connection, user_id: str) -> list[sqlite3.Row]:
    return conn.execute(
        "SELECT * FROM saved_searches WHERE user_id = ? ORDER BY created_at DESC, id DESC",
        (user_id,),
    ).fetchall()


def delete_saved_search(conn: sqlite3.Connection, user_id: str, search_id: int) -> bool:
    cursor = conn.execute(
        "DELETE FROM saved_searches WHERE id = ? AND user_id = ?",
        (search_id, user_id),
    )
    conn.commit()
    return cursor.rowcount > 0


def get_saved_search(conn: sqlite3.Connection, search_id: int) -> sqlite3.Row | None:
    return conn.execute("SELECT * FROM saved_searches WHERE id = ?", (search_id,)).fetchone()
