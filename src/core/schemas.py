"""Core data models for marketplace search and ranking."""

import math
from collections.abc import Mapping
from datetime import date, datetime
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, computed_field


class MarketplaceCategory(str, Enum):
    PEOPLE = "People"
    PRODUCTS = "Products"
    SERVICES = "Services"
    AI = "AI"


class ProviderTier(str, Enum):
    PENDING = "pending"
    STANDARD = "standard"
    VERIFIED = "verified"
    PREMIUM = "premium"


class SortOption(str, Enum):
    RELEVANCE = "relevance"
    RATING_HIGH = "rating_high"
    RATING_LOW = "rating_low"
    PRICE_HIGH = "price_high"
    PRICE_LOW = "price_low"
    NEWEST = "newest"
    MOST_REVIEWS = "most_reviews"
    RESPONSE_TIME = "response_time"
    COMPLETION_RATE = "completion_rate"


SortOrder = Literal["asc", "desc"]
AlertFrequency = Literal["daily", "weekly", "instant"]
SuggestionType = Literal["query", "category", "provider", "listing", "recent", "popular"]


# ---------------------------------------------------------------------------
# Candidates
# ---------------------------------------------------------------------------


class ProviderMetadata(BaseModel):
    """Pre-aggregated provider signals joined onto a listing.

    Values are stored as received; scorers clamp out-of-range numbers.
    """

    model_config = ConfigDict(frozen=True)

    provider_id: str | None = None
    tier: ProviderTier = ProviderTier.STANDARD
    average_rating: float | None = None
    total_reviews: int = 0
    response_rate_percent: float | None = None
    average_response_time_hours: float | None = None
    completion_rate_percent: float | None = None
    total_completed_orders: int = 0
    discount_percent: float | None = None
    last_active_at: datetime | None = None
    day_rate: float | None = None
    currency: str = "GBP"


class SearchCandidate(BaseModel):
    """A marketplace listing, optionally paired with its provider.

    Frozen: provider metadata is attached with model_copy, not mutated.
    """

    model_config = ConfigDict(frozen=True)

    listing_id: str
    provider_id: str | None = None
    title: str
    description: str | None = None
    category: MarketplaceCategory
    subcategory: str = ""
    attributes: dict[str, Any] = Field(default_factory=dict)
    is_verified: bool = False
    image_url: str | None = None
    created_at: datetime | None = None
    provider: ProviderMetadata | None = None


class ScoreVector(BaseModel):
    """The seven component scores and their weighted total, all in [0, 1]."""

    model_config = ConfigDict(frozen=True)

    relevance: float = Field(ge=0.0, le=1.0)
    tier: float = Field(ge=0.0, le=1.0)
    rating: float = Field(ge=0.0, le=1.0)
    response_rate: float = Field(ge=0.0, le=1.0)
    completion_rate: float = Field(ge=0.0, le=1.0)
    discount: float = Field(ge=0.0, le=1.0)
    recency: float = Field(ge=0.0, le=1.0)
    total_score: float = Field(default=0.0, ge=0.0, le=1.0)


class SearchResult(BaseModel):
    """Wrapper that pairs a frozen SearchCandidate with its score vector."""

    model_config = ConfigDict(frozen=True)

    candidate: SearchCandidate
    scores: ScoreVector

    @computed_field  # type: ignore[prop-decorator]
    @property
    def total_score(self) -> float:
        return self.scores.total_score


# ---------------------------------------------------------------------------
# Filters and request parameters
# ---------------------------------------------------------------------------


class PriceRange(BaseModel):
    min: float | None = None
    max: float | None = None


class DateRange(BaseModel):
    from_date: date | None = None
    to_date: date | None = None


class AppliedFilters(BaseModel):
    """The user's filter selection, echoed back and stored with history."""

    query: str | None = None
    category: MarketplaceCategory | None = None
    subcategories: list[str] | None = None
    price_range: PriceRange | None = None
    min_rating: float | None = None
    location: str | None = None
    tiers: list[ProviderTier] | None = None
    date_range: DateRange | None = None
    skills: list[str] | None = None
    certifications: list[str] | None = None
    verified_only: bool | None = None


class SearchParams(BaseModel):
    """Parameters for a single marketplace search."""

    query: str | None = None
    category: MarketplaceCategory | None = None
    subcategories: list[str] = Field(default_factory=list)
    min_price: float | None = None
    max_price: float | None = None
    min_rating: float | None = None
    location: str | None = None
    tiers: list[ProviderTier] = Field(default_factory=list)
    available_from: date | None = None
    available_to: date | None = None
    skills: list[str] = Field(default_factory=list)
    skills_match_all: bool = False
    certifications: list[str] = Field(default_factory=list)
    verified_only: bool = False
    sort_by: SortOption = SortOption.RELEVANCE
    sort_order: SortOrder = "desc"
    page: int = Field(default=1, ge=1)
    limit: int | None = Field(default=None, ge=1)
    user_id: str | None = None

    def to_query_params(self) -> dict[str, str]:
        """Encode the shareable subset of parameters as URL query params."""
        out: dict[str, str] = {}
        if self.query:
            out["q"] = self.query
        if self.category:
            out["cat"] = self.category.value
        if self.subcategories:
            out["sub"] = ",".join(self.subcategories)
        if self.min_price is not None:
            out["minPrice"] = _format_number(self.min_price)
        if self.max_price is not None:
            out["maxPrice"] = _format_number(self.max_price)
        if self.min_rating is not None:
            out["rating"] = _format_number(self.min_rating)
        if self.location:
            out["loc"] = self.location
        if self.tiers:
            out["tier"] = ",".join(t.value for t in self.tiers)
        if self.available_from:
            out["from"] = self.available_from.isoformat()
        if self.available_to:
            out["to"] = self.available_to.isoformat()
        if self.sort_by != SortOption.RELEVANCE:
            out["sort"] = self.sort_by.value
        if self.page > 1:
            out["page"] = str(self.page)
        return out

    @classmethod
    def from_query_params(cls, params: Mapping[str, str]) -> "SearchParams":
        """Decode URL query params, ignoring values that do not parse."""
        data: dict[str, Any] = {}
        if params.get("q"):
            data["query"] = params["q"]
        if params.get("cat") in {c.value for c in MarketplaceCategory}:
            data["category"] = params["cat"]
        if params.get("sub"):
            data["subcategories"] = _split_list(params["sub"])
        for key, field in (("minPrice", "min_price"), ("maxPrice", "max_price"), ("rating", "min_rating")):
            number = _parse_number(params.get(key))
            if number is not None:
                data[field] = number
        if params.get("loc"):
            data["location"] = params["loc"]
        if params.get("tier"):
            valid = {t.value for t in ProviderTier}
            data["tiers"] = [t for t in _split_list(params["tier"]) if t in valid]
        for key, field in (("from", "available_from"), ("to", "available_to")):
            parsed = _parse_date(params.get(key))
            if parsed is not None:
                data[field] = parsed
        if params.get("sort") in {s.value for s in SortOption}:
            data["sort_by"] = params["sort"]
        page = _parse_number(params.get("page"))
        if page is not None and page >= 1:
            data["page"] = int(page)
        return cls.model_validate(data)


# ---------------------------------------------------------------------------
# Facets, suggestions, responses
# ---------------------------------------------------------------------------

PRICE_BUCKETS: tuple[str, ...] = ("0-50", "50-100", "100-250", "250-500", "500+")


def _zero_counts(keys: Any) -> dict[str, int]:
    return {k: 0 for k in keys}


class SearchFacets(BaseModel):
    """Aggregate counts over a filtered (unpaginated) result set."""

    categories: dict[str, int] = Field(
        default_factory=lambda: _zero_counts(c.value for c in MarketplaceCategory),
    )
    subcategories: dict[str, int] = Field(default_factory=dict)
    tiers: dict[str, int] = Field(
        default_factory=lambda: _zero_counts(t.value for t in ProviderTier),
    )
    price_ranges: dict[str, int] = Field(default_factory=lambda: _zero_counts(PRICE_BUCKETS))
    ratings: dict[str, int] = Field(default_factory=dict)
    locations: dict[str, int] = Field(default_factory=dict)


class SearchSuggestion(BaseModel):
    id: str
    type: SuggestionType
    text: str
    category: MarketplaceCategory | None = None
    subcategory: str | None = None
    count: int | None = None


class SearchResponse(BaseModel):
    """A page of ranked results plus facets and the cleaned filter echo."""

    results: list[SearchResult] = Field(default_factory=list)
    total: int = 0
    page: int = 1
    limit: int = 20
    has_more: bool = False
    facets: SearchFacets = Field(default_factory=SearchFacets)
    query: str | None = None
    applied_filters: AppliedFilters = Field(default_factory=AppliedFilters)
    suggestions: list[SearchSuggestion] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# History
# ---------------------------------------------------------------------------


class RecentSearch(BaseModel):
    id: int
    user_id: str
    query: str
    filters: AppliedFilters = Field(default_factory=AppliedFilters)
    results_count: int = 0
    created_at: datetime


class PopularSearch(BaseModel):
    query: str
    category: MarketplaceCategory | None = None
    count: int = 0
    trending: bool = False


class SavedSearch(BaseModel):
    id: int
    user_id: str
    name: str
    query: str = ""
    filters: AppliedFilters = Field(default_factory=AppliedFilters)
    is_alert_enabled: bool = False
    alert_frequency: AlertFrequency | None = None
    created_at: datetime
    updated_at: datetime


class OperationResult(BaseModel):
    """Outcome of a mutating history operation."""

    success: bool
    error: str | None = None
    id: int | None = None


def _split_list(value: str) -> list[str]:
    return [part.strip() for part in value.split(",") if part.strip()]


def _parse_number(value: str | None) -> float | None:
    if value is None or not value.strip():
        return None
    try:
        number = float(value)
    except ValueError:
        return None
    return number if math.isfinite(number) else None


def _parse_date(value: str | None) -> date | None:
    if not value:
        return None
    try:
        return date.fromisoformat(value[:10])
    except ValueError:
        return None


def _format_number(value: float) -> str:
    return str(int(value)) if float(value).is_integer() else str(value)
