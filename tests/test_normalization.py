"""Tests for rating payload normalization."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from app.models import NativeRating
from app.normalization import (
    native_to_record,
    normalize_provider_payload,
    normalize_rating,
    normalize_vote_count,
)

FETCHED_AT = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


@pytest.mark.parametrize(
    ("value", "kind", "expected"),
    [
        ("9.0/10", "primary", "9.0/10"),
        ("9", "primary", "9.0/10"),
        ("N/A", "primary", "N/A"),
        ("97%", "secondary", "97%"),
        ("97/100", "secondary", "97%"),
        ("80/100", "tertiary", "80/100"),
        ("80", "tertiary", "80/100"),
        ("eighty", "tertiary", "N/A"),
        (None, "secondary", "N/A"),
    ],
)
def test_normalize_rating_formats(value: object, kind: str, expected: str) -> None:
    assert normalize_rating(value, kind) == expected  # type: ignore[arg-type]


def test_vote_count_drops_separators() -> None:
    assert normalize_vote_count("1,234,567") == "1234567"
    assert normalize_vote_count(42) == "42"
    assert normalize_vote_count("N/A") == "N/A"
    assert normalize_vote_count("lots") == "N/A"


def test_provider_payload_maps_to_canonical_record() -> None:
    payload = {
        "Title": "The Godfather Part II",
        "imdbRating": "9.0",
        "imdbVotes": "1,234,567",
        "imdbID": "tt0071562",
        "Metascore": "90",
        "Awards": "Won 6 Oscars.",
        "Plot": "N/A",
        "Ratings": [
            {"Source": "Internet Movie Database", "Value": "9.0/10"},
            {"Source": "Rotten Tomatoes", "Value": "97%"},
            {"Source": "Metacritic", "Value": "80/100"},
        ],
        "Response": "True",
    }

    record = normalize_provider_payload(
        payload,
        catalog_id="240",
        media_type="movie",
        external_id="tt0071562",
        fetched_at=FETCHED_AT,
    )

    assert record.source == "provider"
    assert record.primary_rating == "9.0/10"
    assert record.secondary_rating == "97%"
    assert record.tertiary_rating == "80/100"
    assert record.primary_score == pytest.approx(9.0)
    assert record.secondary_score == pytest.approx(97.0)
    assert record.tertiary_score == pytest.approx(80.0)
    assert record.vote_count == "1234567"
    assert record.awards == "Won 6 Oscars."
    assert record.plot == "N/A"
    assert record.cached_at == FETCHED_AT


def test_provider_payload_falls_back_to_secondary_fields() -> None:
    payload = {
        "Title": "Sparse",
        "Metascore": "61",
        "Ratings": [{"Source": "Internet Movie Database", "Value": "6.4/10"}],
    }

    record = normalize_provider_payload(
        payload,
        catalog_id="1",
        media_type="series",
        external_id="tt1234567",
        fetched_at=FETCHED_AT,
    )

    assert record.external_id == "tt1234567"
    assert record.primary_rating == "6.4/10"
    assert record.secondary_rating == "N/A"
    assert record.tertiary_rating == "61/100"
    assert record.secondary_score is None


def test_native_rating_becomes_fallback_record() -> None:
    native = NativeRating(
        catalog_id="240",
        media_type="movie",
        title="The Godfather Part II",
        vote_average=8.574,
        vote_count=12000,
        overview="The continuing saga of the Corleone family.",
        external_id="tt0071562",
    )

    record = native_to_record(native)

    assert record.source == "fallback"
    assert record.native_rating == "8.6/10"
    assert record.native_score == pytest.approx(8.6)
    assert record.primary_rating == "N/A"
    assert record.vote_count == "12000"
    assert record.external_id == "tt0071562"
    assert record.has_external_ratings() is False


def test_unrated_native_title_has_no_native_rating() -> None:
    native = NativeRating(
        catalog_id="9", media_type="series", vote_average=0.0, vote_count=0
    )

    record = native_to_record(native, external_id="tt0000009")

    assert record.native_rating == "N/A"
    assert record.external_id == "tt0000009"
