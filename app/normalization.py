"""Map provider payloads onto the canonical ``RatingRecord`` shape."""

from __future__ import annotations

import re
from datetime import datetime
from typing import Any, Literal, Mapping

from .models import UNAVAILABLE, MediaType, NativeRating, RatingRecord

RatingKind = Literal["primary", "secondary", "tertiary"]

PRIMARY_SOURCE = "Internet Movie Database"
SECONDARY_SOURCE = "Rotten Tomatoes"
TERTIARY_SOURCE = "Metacritic"

_FRACTION_RE = re.compile(r"^(\d+(?:\.\d+)?)\s*/\s*(\d+(?:\.\d+)?)$")
_NUMBER_RE = re.compile(r"^\d+(?:\.\d+)?$")
_PERCENT_RE = re.compile(r"^(\d+(?:\.\d+)?)\s*%$")
_MISSING_MARKERS = {"", "n/a", "na", "none", "null", "undefined"}


def _clean_text(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    if text.lower() in _MISSING_MARKERS:
        return None
    return text


def _format_number(value: float) -> str:
    if value.is_integer():
        return str(int(value))
    return f"{value:g}"


def normalize_rating(value: Any, kind: RatingKind) -> str:
    """Return ``value`` in the canonical notation for ``kind``.

    ``primary`` ratings read ``"8.1/10"``, ``secondary`` ratings ``"85%"`` and
    ``tertiary`` ratings ``"72/100"``. Anything that cannot be interpreted
    becomes ``"N/A"``.
    """

    text = _clean_text(value)
    if text is None:
        return UNAVAILABLE

    fraction = _FRACTION_RE.match(text)
    percent = _PERCENT_RE.match(text)
    bare = _NUMBER_RE.match(text)

    if kind == "primary":
        if fraction and float(fraction.group(2)) == 10:
            return f"{float(fraction.group(1)):.1f}/10"
        if bare:
            return f"{float(text):.1f}/10"
        return UNAVAILABLE

    if kind == "secondary":
        if percent:
            return f"{_format_number(float(percent.group(1)))}%"
        if fraction and float(fraction.group(2)) == 100:
            return f"{_format_number(float(fraction.group(1)))}%"
        if bare:
            return f"{_format_number(float(text))}%"
        return UNAVAILABLE

    if fraction and float(fraction.group(2)) == 100:
        return f"{_format_number(float(fraction.group(1)))}/100"
    if bare:
        return f"{_format_number(float(text))}/100"
    return UNAVAILABLE


def normalize_vote_count(value: Any) -> str:
    """Strip thousands separators, returning ``"N/A"`` for non-numeric input."""

    if isinstance(value, bool):
        return UNAVAILABLE
    if isinstance(value, int):
        return str(value) if value >= 0 else UNAVAILABLE
    text = _clean_text(value)
    if text is None:
        return UNAVAILABLE
    digits = text.replace(",", "").replace("_", "").replace(" ", "")
    if not digits.isdigit():
        return UNAVAILABLE
    return str(int(digits))


def normalize_text(value: Any) -> str:
    text = _clean_text(value)
    return text if text is not None else UNAVAILABLE


def extract_ratings(payload: Mapping[str, Any]) -> dict[str, Any]:
    """Collect the raw rating strings keyed by the source they belong to."""

    collected: dict[str, Any] = {}
    entries = payload.get("Ratings") or payload.get("ratings") or []
    if isinstance(entries, list):
        for entry in entries:
            if not isinstance(entry, Mapping):
                continue
            source = entry.get("Source") or entry.get("source")
            value = entry.get("Value") or entry.get("value")
            if isinstance(source, str) and source not in collected:
                collected[source] = value
    return collected


def normalize_provider_payload(
    payload: Mapping[str, Any],
    *,
    catalog_id: str | None,
    media_type: MediaType | None,
    external_id: str,
    fetched_at: datetime,
) -> RatingRecord:
    """Build a provider-sourced ``RatingRecord`` from a raw rating payload."""

    ratings = extract_ratings(payload)

    primary = normalize_rating(payload.get("imdbRating"), "primary")
    if primary == UNAVAILABLE:
        primary = normalize_rating(ratings.get(PRIMARY_SOURCE), "primary")

    secondary = normalize_rating(ratings.get(SECONDARY_SOURCE), "secondary")

    tertiary = normalize_rating(ratings.get(TERTIARY_SOURCE), "tertiary")
    if tertiary == UNAVAILABLE:
        tertiary = normalize_rating(payload.get("Metascore"), "tertiary")

    resolved_id = payload.get("imdbID")
    if not isinstance(resolved_id, str) or not resolved_id.strip():
        resolved_id = external_id

    return RatingRecord(
        catalog_id=catalog_id,
        media_type=media_type,
        external_id=resolved_id.strip(),
        source="provider",
        title=_clean_text(payload.get("Title")),
        primary_rating=primary,
        secondary_rating=secondary,
        tertiary_rating=tertiary,
        vote_count=normalize_vote_count(payload.get("imdbVotes")),
        awards=normalize_text(payload.get("Awards")),
        plot=normalize_text(payload.get("Plot")),
        cached_at=fetched_at,
    )


def native_to_record(
    native: NativeRating, *, external_id: str | None = None
) -> RatingRecord:
    """Build a fallback-sourced ``RatingRecord`` from catalog provider data."""

    native_rating = UNAVAILABLE
    if native.vote_average is not None and (native.vote_count or native.vote_average):
        native_rating = f"{native.vote_average:.1f}/10"

    vote_count = UNAVAILABLE
    if native.vote_count is not None and native.vote_count >= 0:
        vote_count = str(native.vote_count)

    return RatingRecord(
        catalog_id=native.catalog_id,
        media_type=native.media_type,
        external_id=external_id or native.external_id,
        source="fallback",
        title=native.title,
        native_rating=native_rating,
        vote_count=vote_count,
        plot=normalize_text(native.overview),
    )
