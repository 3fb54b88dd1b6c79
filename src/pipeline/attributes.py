"""Typed accessors over the loosely-typed listing attribute map.

Each accessor probes an ordered list of synonym keys. The lists mirror the
field names sellers use in practice and are kept as-is.
"""

import re
from collections.abc import Mapping
from typing import Any

from src.core.schemas import SearchCandidate

PRICE_FIELDS = ("rate", "price", "day_rate", "hourly_rate", "cost", "cost_value")
LOCATION_FIELDS = ("location", "city", "region", "country", "address")
SKILL_FIELDS = ("skills", "expertise", "capabilities", "specializations")
CERTIFICATION_FIELDS = ("certifications", "certificates", "accreditations", "qualifications")
SEARCHABLE_FIELDS = (
    "skills",
    "expertise",
    "capabilities",
    "tags",
    "specializations",
    "industries",
    "technologies",
)

# First number in strings like "£1,500/day" or "$100.50"
_NUMBER_RE = re.compile(r"\d[\d,]*(?:\.\d+)?")


def extract_price(candidate: SearchCandidate) -> float | None:
    """Return the provider day rate, else the first parseable price attribute."""
    if candidate.provider is not None and candidate.provider.day_rate is not None:
        return float(candidate.provider.day_rate)

    for field in PRICE_FIELDS:
        price = parse_price(candidate.attributes.get(field))
        if price is not None:
            return price
    return None


def parse_price(value: Any) -> float | None:
    """Parse a number or a string with an embedded number. Booleans are not prices."""
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        match = _NUMBER_RE.search(value)
        if match:
            return float(match.group(0).replace(",", ""))
    return None


def extract_location(candidate: SearchCandidate) -> str | None:
    for field in LOCATION_FIELDS:
        value = candidate.attributes.get(field)
        if isinstance(value, str) and value.strip():
            return value
    return None


def extract_skills(candidate: SearchCandidate) -> list[str]:
    return string_items(candidate.attributes, SKILL_FIELDS)


def extract_certifications(candidate: SearchCandidate) -> list[str]:
    return string_items(candidate.attributes, CERTIFICATION_FIELDS)


def string_items(attributes: Mapping[str, Any], fields: tuple[str, ...]) -> list[str]:
    """Collect string items from list-valued attributes, in field order."""
    items: list[str] = []
    for field in fields:
        value = attributes.get(field)
        if isinstance(value, (list, tuple)):
            items.extend(v for v in value if isinstance(v, str))
    return items
