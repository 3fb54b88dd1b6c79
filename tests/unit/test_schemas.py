"""Tests for core schemas: candidates, score vectors, search params and its URL codec."""

from datetime import date

import pytest
from pydantic import ValidationError

from src.core.schemas import (
    MarketplaceCategory,
    ProviderMetadata,
    ProviderTier,
    ScoreVector,
    SearchCandidate,
    SearchFacets,
    SearchParams,
    SearchResponse,
    SearchResult,
    SortOption,
)


def _scores(**overrides: float) -> ScoreVector:
    values = {
        "relevance": 0.5, "tier": 0.4, "rating": 0.5, "response_rate": 0.5,
        "completion_rate": 0.5, "discount": 0.0, "recency": 0.3,
    }
    values.update(overrides)
    return ScoreVector(**values)


class TestSearchCandidate:
    def test_required_fields(self) -> None:
        c = SearchCandidate(listing_id="1", title="Plumber", category="Services")
        assert c.category is MarketplaceCategory.SERVICES
        assert c.subcategory == ""
        assert c.attributes == {}
        assert c.provider is None
        assert c.is_verified is False

    def test_unknown_category_rejected(self) -> None:
        with pytest.raises(ValidationError):
            SearchCandidate(listing_id="1", title="X", category="Vehicles")

    def test_frozen(self) -> None:
        c = SearchCandidate(listing_id="1", title="Plumber", category="Services")
        with pytest.raises(ValidationError):
            c.title = "Other"  # type: ignore[misc]

    def test_attach_provider_with_copy(self) -> None:
        c = SearchCandidate(listing_id="1", title="Plumber", category="Services")
        attached = c.model_copy(update={"provider": ProviderMetadata(tier=ProviderTier.PREMIUM)})
        assert c.provider is None
        assert attached.provider is not None
        assert attached.provider.tier is ProviderTier.PREMIUM


class TestProviderMetadata:
    def test_defaults(self) -> None:
        p = ProviderMetadata()
        assert p.tier is ProviderTier.STANDARD
        assert p.total_reviews == 0
        assert p.average_rating is None
        assert p.currency == "GBP"


class TestScoreVector:
    def test_components_bounded(self) -> None:
        with pytest.raises(ValidationError):
            _scores(relevance=1.2)
        with pytest.raises(ValidationError):
            _scores(discount=-0.1)

    def test_result_exposes_total(self) -> None:
        c = SearchCandidate(listing_id="1", title="Plumber", category="Services")
        r = SearchResult(candidate=c, scores=_scores(total_score=0.42))
        assert r.total_score == 0.42
        assert r.model_dump()["total_score"] == 0.42


class TestSearchParams:
    def test_defaults(self) -> None:
        p = SearchParams()
        assert p.page == 1
        assert p.limit is None
        assert p.sort_by is SortOption.RELEVANCE
        assert p.sort_order == "desc"
        assert p.tiers == []

    def test_page_must_be_positive(self) -> None:
        with pytest.raises(ValidationError):
            SearchParams(page=0)

    def test_sort_order_values(self) -> None:
        with pytest.raises(ValidationError):
            SearchParams(sort_order="sideways")


class TestQueryParams:
    def test_encode(self) -> None:
        p = SearchParams(
            query="plumber",
            category=MarketplaceCategory.SERVICES,
            subcategories=["Plumbing", "Heating"],
            min_price=100,
            max_price=250.5,
            min_rating=4,
            location="London",
            tiers=[ProviderTier.VERIFIED, ProviderTier.PREMIUM],
            available_from=date(2026, 3, 1),
            sort_by=SortOption.PRICE_LOW,
            page=2,
        )
        assert p.to_query_params() == {
            "q": "plumber",
            "cat": "Services",
            "sub": "Plumbing,Heating",
            "minPrice": "100",
            "maxPrice": "250.5",
            "rating": "4",
            "loc": "London",
            "tier": "verified,premium",
            "from": "2026-03-01",
            "sort": "price_low",
            "page": "2",
        }

    def test_defaults_omitted(self) -> None:
        assert SearchParams().to_query_params() == {}

    def test_decode(self) -> None:
        p = SearchParams.from_query_params({
            "q": "plumber",
            "cat": "Services",
            "sub": "Plumbing, Heating,",
            "minPrice": "100",
            "rating": "4.5",
            "tier": "verified,bogus",
            "to": "2026-04-01",
            "sort": "newest",
            "page": "3",
        })
        assert p.query == "plumber"
        assert p.category is MarketplaceCategory.SERVICES
        assert p.subcategories == ["Plumbing", "Heating"]
        assert p.min_price == 100
        assert p.min_rating == 4.5
        assert p.tiers == [ProviderTier.VERIFIED]
        assert p.available_to == date(2026, 4, 1)
        assert p.sort_by is SortOption.NEWEST
        assert p.page == 3

    def test_decode_ignores_garbage(self) -> None:
        p = SearchParams.from_query_params({
            "cat": "Vehicles",
            "minPrice": "cheap",
            "maxPrice": "inf",
            "from": "someday",
            "sort": "random",
            "page": "0",
        })
        assert p == SearchParams()


class TestSearchResponse:
    def test_empty_facets_have_known_keys(self) -> None:
        r = SearchResponse()
        assert r.total == 0
        assert r.results == []
        assert set(r.facets.categories) == {"People", "Products", "Services", "AI"}
        assert set(r.facets.price_ranges) == {"0-50", "50-100", "100-250", "250-500", "500+"}

    def test_facets_not_shared(self) -> None:
        a, b = SearchFacets(), SearchFacets()
        a.categories["AI"] = 3
        assert b.categories["AI"] == 0
