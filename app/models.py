"""Pydantic models describing rating payloads."""

from __future__ import annotations

import re
from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, computed_field

MediaType = Literal["movie", "series"]
RatingSource = Literal["provider", "fallback", "cache", "error"]

UNAVAILABLE = "N/A"

MEDIA_TYPE_ALIASES: dict[str, MediaType] = {
    "movie": "movie",
    "movies": "movie",
    "film": "movie",
    "series": "series",
    "tv": "series",
    "show": "series",
    "shows": "series",
}

_LEADING_NUMBER_RE = re.compile(r"^\s*(\d+(?:\.\d+)?)")


def parse_media_type(value: object) -> MediaType:
    """Return the canonical media type or raise ``ValueError``."""

    if not isinstance(value, str):
        raise ValueError("Media type must be a string")
    resolved = MEDIA_TYPE_ALIASES.get(value.strip().lower())
    if resolved is None:
        raise ValueError(f"Unsupported media type: {value!r}")
    return resolved


def _score(value: str) -> float | None:
    if not value or value == UNAVAILABLE:
        return None
    match = _LEADING_NUMBER_RE.match(value)
    if not match:
        return None
    return float(match.group(1))


class RatingRecord(BaseModel):
    """Canonical rating data returned to callers regardless of its origin."""

    model_config = ConfigDict(extra="ignore")

    catalog_id: str | None = None
    media_type: MediaType | None = None
    external_id: str | None = None
    source: RatingSource
    title: str | None = None
    primary_rating: str = UNAVAILABLE
    secondary_rating: str = UNAVAILABLE
    tertiary_rating: str = UNAVAILABLE
    native_rating: str = UNAVAILABLE
    vote_count: str = UNAVAILABLE
    awards: str = UNAVAILABLE
    plot: str = UNAVAILABLE
    cached_at: datetime | None = None

    @computed_field  # type: ignore[prop-decorator]
    @property
    def primary_score(self) -> float | None:
        """IMDb-style score on a 0-10 scale."""

        return _score(self.primary_rating)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def secondary_score(self) -> float | None:
        """Percentage score without the ``%`` suffix."""

        return _score(self.secondary_rating)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def tertiary_score(self) -> float | None:
        """Score on a 0-100 scale."""

        return _score(self.tertiary_rating)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def native_score(self) -> float | None:
        return _score(self.native_rating)

    def has_external_ratings(self) -> bool:
        return any(
            value != UNAVAILABLE
            for value in (
                self.primary_rating,
                self.secondary_rating,
                self.tertiary_rating,
            )
        )

    @classmethod
    def unavailable(
        cls,
        *,
        catalog_id: str | None,
        media_type: MediaType | None,
        external_id: str | None = None,
    ) -> "RatingRecord":
        """Return the minimal record used when every source has failed."""

        return cls(
            catalog_id=catalog_id,
            media_type=media_type,
            external_id=external_id,
            source="error",
        )


class NativeRating(BaseModel):
    """Basic rating data offered by the catalog metadata provider."""

    catalog_id: str
    media_type: MediaType
    title: str | None = None
    vote_average: float | None = None
    vote_count: int | None = None
    overview: str | None = None
    external_id: str | None = None


class Recommendation(BaseModel):
    """Advisory note derived from a metrics snapshot."""

    id: str
    message: str
    severity: Literal["low", "medium", "high"]


class CredentialUsage(BaseModel):
    """Masked view of a single credential's state."""

    id: str
    masked_key: str
    daily_usage: int
    daily_quota: int
    in_flight: int = 0
    active: bool
    quota_exceeded: bool
    deactivated_until: datetime | None = None


class PoolStats(BaseModel):
    total_keys: int
    active_keys: int
    total_daily_quota: int
    used_quota: int
    remaining_quota: int
    credentials: list[CredentialUsage] = Field(default_factory=list)


class MappingCacheStats(BaseModel):
    total: int
    valid: int
    expired: int
    capacity: int


class MetricsSnapshot(BaseModel):
    """Point-in-time copy of the request counters."""

    total_requests: int = 0
    cache_hits: int = 0
    cache_misses: int = 0
    external_calls: int = 0
    fallbacks: int = 0
    errors: int = 0
    coalesced: int = 0
    total_response_time_ms: float = 0.0
    average_response_time_ms: float = 0.0
    hit_rate: float = 0.0
    miss_rate: float = 0.0
    started_at: datetime
    credentials: PoolStats | None = None
    id_mappings: MappingCacheStats | None = None
