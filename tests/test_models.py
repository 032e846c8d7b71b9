from __future__ import annotations

from datetime import datetime, timezone

import pytest

from app.models import RatingRecord, parse_media_type


@pytest.mark.parametrize(
    ("raw", "expected"),
    [("movie", "movie"), ("series", "series"), ("tv", "series"), (" TV ", "series")],
)
def test_parse_media_type_accepts_aliases(raw: str, expected: str) -> None:
    assert parse_media_type(raw) == expected


@pytest.mark.parametrize("raw", ["person", "", None, 3])
def test_parse_media_type_rejects_unknown_values(raw: object) -> None:
    with pytest.raises(ValueError):
        parse_media_type(raw)


def test_unavailable_record_uses_sentinels() -> None:
    record = RatingRecord.unavailable(catalog_id="240", media_type="movie")

    assert record.source == "error"
    assert record.primary_rating == "N/A"
    assert record.secondary_rating == "N/A"
    assert record.tertiary_rating == "N/A"
    assert record.native_rating == "N/A"
    assert record.primary_score is None
    assert record.has_external_ratings() is False


def test_serialised_record_includes_scores_and_round_trips() -> None:
    record = RatingRecord(
        catalog_id="240",
        media_type="movie",
        external_id="tt0071562",
        source="provider",
        primary_rating="9.0/10",
        secondary_rating="97%",
        tertiary_rating="80/100",
        cached_at=datetime(2024, 5, 1, tzinfo=timezone.utc),
    )

    payload = record.model_dump(mode="json")
    restored = RatingRecord.model_validate(payload)

    assert payload["primary_score"] == 9.0
    assert payload["secondary_score"] == 97.0
    assert payload["tertiary_score"] == 80.0
    assert restored == record
