"""Tests for typed attribute accessors."""

from typing import Any

from src.core.schemas import MarketplaceCategory, ProviderMetadata, SearchCandidate
from src.pipeline.attributes import (
    extract_certifications,
    extract_location,
    extract_price,
    extract_skills,
    parse_price,
)


def _candidate(
    attributes: dict[str, Any] | None = None,
    provider: ProviderMetadata | None = None,
) -> SearchCandidate:
    return SearchCandidate(
        listing_id="1",
        title="Listing",
        category=MarketplaceCategory.SERVICES,
        attributes=attributes or {},
        provider=provider,
    )


class TestParsePrice:
    def test_number(self) -> None:
        assert parse_price(150) == 150.0
        assert parse_price(99.5) == 99.5

    def test_currency_string(self) -> None:
        assert parse_price("£150/day") == 150.0

    def test_thousands_separator(self) -> None:
        assert parse_price("£1,500 per day") == 1500.0

    def test_decimal_string(self) -> None:
        assert parse_price("$100.50") == 100.5

    def test_no_number(self) -> None:
        assert parse_price("negotiable") is None

    def test_bool_is_not_price(self) -> None:
        assert parse_price(True) is None

    def test_none_and_other_types(self) -> None:
        assert parse_price(None) is None
        assert parse_price(["100"]) is None


class TestExtractPrice:
    def test_provider_day_rate_wins(self) -> None:
        c = _candidate({"rate": "£90"}, ProviderMetadata(day_rate=400))
        assert extract_price(c) == 400.0

    def test_synonym_order(self) -> None:
        c = _candidate({"cost": 30, "price": 20})
        assert extract_price(c) == 20.0

    def test_skips_unparseable_field(self) -> None:
        c = _candidate({"rate": "ask me", "hourly_rate": "£45/hr"})
        assert extract_price(c) == 45.0

    def test_missing(self) -> None:
        assert extract_price(_candidate()) is None

    def test_provider_without_day_rate_falls_back(self) -> None:
        c = _candidate({"price": 75}, ProviderMetadata())
        assert extract_price(c) == 75.0


class TestExtractLocation:
    def test_first_synonym(self) -> None:
        c = _candidate({"city": "Leeds", "country": "UK"})
        assert extract_location(c) == "Leeds"

    def test_blank_skipped(self) -> None:
        c = _candidate({"location": "  ", "region": "Yorkshire"})
        assert extract_location(c) == "Yorkshire"

    def test_non_string_ignored(self) -> None:
        assert extract_location(_candidate({"location": 42})) is None


class TestExtractLists:
    def test_skills_across_synonyms(self) -> None:
        c = _candidate({"skills": ["Python"], "expertise": ["Django", 3]})
        assert extract_skills(c) == ["Python", "Django"]

    def test_skills_string_value_ignored(self) -> None:
        assert extract_skills(_candidate({"skills": "Python"})) == []

    def test_certifications(self) -> None:
        c = _candidate({"accreditations": ["ISO 9001"], "certifications": ["AWS"]})
        assert extract_certifications(c) == ["AWS", "ISO 9001"]
