"""Abstract base classes for the stores the search orchestrator reads and writes."""

from abc import ABC, abstractmethod
from collections.abc import Sequence

from src.core.schemas import (
    AlertFrequency,
    AppliedFilters,
    MarketplaceCategory,
    PopularSearch,
    ProviderMetadata,
    RecentSearch,
    SavedSearch,
    SearchCandidate,
)


class StoreError(Exception):
    """Raised when a backing store cannot complete a read or write."""


class CandidateStore(ABC):
    """Source of listings to rank."""

    @abstractmethod
    async def fetch_candidates(
        self,
        category: MarketplaceCategory | None = None,
        query: str | None = None,
    ) -> list[SearchCandidate]:
        """Return listings, pre-filtered by category and a text contains-match.

        Provider metadata is not attached here.
        """

    @abstractmethod
    async def find_by_title(
        self,
        text: str,
        category: MarketplaceCategory | None = None,
        limit: int = 5,
    ) -> list[SearchCandidate]:
        """Listings whose title contains the text, for autocomplete."""

    @abstractmethod
    async def find_by_subcategory(
        self,
        text: str,
        limit: int = 5,
    ) -> list[tuple[str, MarketplaceCategory]]:
        """Distinct (subcategory, category) pairs matching the text."""


class ProviderMetadataStore(ABC):
    """Source of provider profiles with pre-aggregated review stats."""

    @abstractmethod
    async def fetch_provider_metadata(
        self, listing_ids: Sequence[str],
    ) -> dict[str, ProviderMetadata]:
        """Map listing ID to its provider. Listings without a provider are absent."""


class SearchHistoryStore(ABC):
    """Per-user recent searches and global popular-search counters."""

    @abstractmethod
    async def record_search(
        self,
        user_id: str,
        query: str,
        filters: AppliedFilters,
        results_count: int,
    ) -> None:
        """Upsert the user's recent search keyed by (user_id, query)."""

    @abstractmethod
    async def increment_popular(
        self, query: str, category: MarketplaceCategory | None = None,
    ) -> None:
        """Increment the counter for a normalized query."""

    @abstractmethod
    async def recent_searches(self, user_id: str, limit: int = 10) -> list[RecentSearch]: ...

    @abstractmethod
    async def delete_recent_search(self, user_id: str, search_id: int) -> bool: ...

    @abstractmethod
    async def clear_recent_searches(self, user_id: str) -> int: ...

    @abstractmethod
    async def popular_searches(
        self, limit: int = 10, trending_only: bool = False,
    ) -> list[PopularSearch]: ...

    @abstractmethod
    async def match_popular(self, text: str, limit: int = 3) -> list[PopularSearch]:
        """Popular searches containing the text, most searched first."""

    @abstractmethod
    async def refresh_trending(self, window_days: int = 7, top_n: int = 20) -> int:
        """Recompute trending flags. Returns how many queries are trending."""


class SavedSearchStore(ABC):
    """Named searches a user can rerun or be alerted on."""

    @abstractmethod
    async def create_saved_search(
        self,
        user_id: str,
        name: str,
        query: str,
        filters: AppliedFilters,
        is_alert_enabled: bool = False,
        alert_frequency: AlertFrequency | None = None,
    ) -> SavedSearch: ...

    @abstractmethod
    async def saved_searches(self, user_id: str) -> list[SavedSearch]: ...

    @abstractmethod
    async def delete_saved_search(self, user_id: str, search_id: int) -> bool: ...
