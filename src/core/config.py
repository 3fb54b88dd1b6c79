"""Configuration models and YAML loader for marketplace search."""

import math
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from src.core.schemas import ProviderTier

SCORE_COMPONENTS: tuple[str, ...] = (
    "relevance",
    "tier",
    "rating",
    "response_rate",
    "completion_rate",
    "discount",
    "recency",
)


class RankingWeights(BaseModel):
    """Weights for combining the seven component scores. Must sum to 1.0."""

    model_config = ConfigDict(frozen=True)

    relevance: float = Field(default=0.30, ge=0.0, le=1.0)
    tier: float = Field(default=0.20, ge=0.0, le=1.0)
    rating: float = Field(default=0.15, ge=0.0, le=1.0)
    response_rate: float = Field(default=0.15, ge=0.0, le=1.0)
    completion_rate: float = Field(default=0.10, ge=0.0, le=1.0)
    discount: float = Field(default=0.05, ge=0.0, le=1.0)
    recency: float = Field(default=0.05, ge=0.0, le=1.0)

    @model_validator(mode="after")
    def weights_sum_to_one(self) -> "RankingWeights":
        total = sum(getattr(self, name) for name in SCORE_COMPONENTS)
        if not math.isclose(total, 1.0, abs_tol=1e-9):
            msg = f"ranking weights must sum to 1.0, got {total:.4f}"
            raise ValueError(msg)
        return self


def _default_tier_scores() -> dict[ProviderTier, float]:
    return {
        ProviderTier.PENDING: 0.0,
        ProviderTier.STANDARD: 0.4,
        ProviderTier.VERIFIED: 0.7,
        ProviderTier.PREMIUM: 1.0,
    }


class RankingConfig(BaseModel):
    """Immutable ranking configuration handed to the scoring functions."""

    model_config = ConfigDict(frozen=True)

    weights: RankingWeights = Field(default_factory=RankingWeights)
    tier_scores: dict[ProviderTier, float] = Field(default_factory=_default_tier_scores)

    @field_validator("tier_scores")
    @classmethod
    def tier_scores_in_range(cls, v: dict[ProviderTier, float]) -> dict[ProviderTier, float]:
        for tier, score in v.items():
            if not 0.0 <= score <= 1.0:
                msg = f"tier score for '{tier.value}' must be within [0, 1], got {score}"
                raise ValueError(msg)
        return v


class SearchDefaults(BaseModel):
    """Paging and history limits for the search orchestrator."""

    default_limit: int = Field(default=20, ge=1)
    max_limit: int = Field(default=100, ge=1)
    suggestion_limit: int = Field(default=10, ge=0)
    recent_limit: int = Field(default=10, ge=1)
    trending_window_days: int = Field(default=7, ge=1)
    trending_top_n: int = Field(default=20, ge=1)

    @model_validator(mode="after")
    def default_within_max(self) -> "SearchDefaults":
        if self.default_limit > self.max_limit:
            msg = "default_limit must not exceed max_limit"
            raise ValueError(msg)
        return self


class DatabaseConfig(BaseModel):
    """Database configuration."""

    path: str = "data/marketplace.db"


class Settings(BaseModel):
    """Top-level settings loaded from YAML."""

    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    ranking: RankingConfig = Field(default_factory=RankingConfig)
    search: SearchDefaults = Field(default_factory=SearchDefaults)

    @classmethod
    def from_yaml(cls, path: str | Path) -> "Settings":
        """Load settings from a YAML file."""
        path = Path(path)
        if not path.exists():
            msg = f"Config file not found: {path}"
            raise FileNotFoundError(msg)
        raw: dict[str, Any] = yaml.safe_load(path.read_text()) or {}
        return cls.model_validate(raw)
