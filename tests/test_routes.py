from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Iterable

from fastapi import FastAPI
from fastapi.testclient import TestClient

from app.main import register_routes
from app.models import RatingRecord, parse_media_type
from app.services.credentials import CredentialPool
from app.services.id_resolver import ExternalIdResolver, IdMappingCache
from app.services.metrics import RequestMetrics
from app.services.orchestrator import RatingOrchestrator
from app.utils import normalize_catalog_id


class FakeClock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


class FakeSource:
    def __init__(self, responses: dict[str, str | None]) -> None:
        self.responses = responses
        self.calls: list[str] = []

    async def get_external_id(self, catalog_id: str, media_type: str) -> str | None:
        self.calls.append(catalog_id)
        return self.responses.get(catalog_id)


class DummyOrchestrator(RatingOrchestrator):
    """Minimal orchestrator stub for exercising the HTTP routes."""

    def __init__(self) -> None:  # pragma: no cover - nothing to initialise
        # Deliberately skip super().__init__ to avoid touching external systems.
        self._pool = CredentialPool(["abcdef123456"], daily_quota=10)
        self._pool.discover()
        self._metrics = RequestMetrics()
        self.clock = FakeClock(datetime(2024, 5, 1, tzinfo=timezone.utc))
        self.source = FakeSource({"240": "tt0071562", "550": "tt0137523"})
        self._resolver = ExternalIdResolver(
            self.source,
            IdMappingCache(capacity=10, ttl=timedelta(days=7), clock=self.clock),
            retry_delay=0,
        )
        self.requested: list[tuple[str, str]] = []

    async def get_rating(self, catalog_id: Any, media_type: Any) -> RatingRecord:  # type: ignore[override]
        normalized = normalize_catalog_id(catalog_id)
        resolved = parse_media_type(media_type)
        self.requested.append((normalized, resolved))
        self._metrics.record_request()
        self._metrics.record_cache_miss()
        return RatingRecord(
            catalog_id=normalized,
            media_type=resolved,
            external_id="tt0071562",
            source="provider",
            primary_rating="9.0/10",
            cached_at=datetime(2024, 5, 1, tzinfo=timezone.utc),
        )

    async def get_ratings_batch(  # type: ignore[override]
        self, catalog_ids: Iterable[Any], media_type: Any
    ) -> dict[str, RatingRecord | None]:
        resolved = parse_media_type(media_type)
        results: dict[str, RatingRecord | None] = {}
        for raw in catalog_ids:
            try:
                results[str(raw)] = await self.get_rating(raw, resolved)
            except ValueError:
                results[str(raw)] = None
        return results


def build_client() -> tuple[TestClient, DummyOrchestrator]:
    app = FastAPI()
    register_routes(app)
    orchestrator = DummyOrchestrator()
    app.state.orchestrator = orchestrator
    return TestClient(app), orchestrator


def test_healthcheck() -> None:
    client, _ = build_client()

    response = client.get("/healthz")

    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_single_rating_route() -> None:
    client, orchestrator = build_client()

    response = client.get("/ratings/tv/1396")

    assert response.status_code == 200
    payload = response.json()
    assert payload["source"] == "provider"
    assert payload["primary_rating"] == "9.0/10"
    assert payload["primary_score"] == 9.0
    assert orchestrator.requested == [("1396", "series")]


def test_single_rating_route_rejects_malformed_input() -> None:
    client, _ = build_client()

    assert client.get("/ratings/movie/abc").status_code == 400
    assert client.get("/ratings/person/240").status_code == 400


def test_batch_route() -> None:
    client, _ = build_client()

    response = client.get("/ratings/movie", params={"ids": "240, abc,550"})

    assert response.status_code == 200
    ratings = response.json()["ratings"]
    assert set(ratings) == {"240", "abc", "550"}
    assert ratings["abc"] is None
    assert ratings["550"]["catalog_id"] == "550"

    assert client.get("/ratings/movie", params={"ids": " , "}).status_code == 400


def test_metrics_routes() -> None:
    client, _ = build_client()
    client.get("/ratings/movie/240")

    response = client.get("/metrics")

    assert response.status_code == 200
    payload = response.json()
    assert payload["total_requests"] == 1
    assert payload["credentials"]["total_keys"] == 1
    assert [note["id"] for note in payload["recommendations"]] == ["low_hit_rate"]
    assert payload["id_mappings"] == {"total": 0, "valid": 0, "expired": 0, "capacity": 10}

    assert client.post("/metrics/reset").json() == {"status": "reset"}
    assert client.get("/metrics").json()["total_requests"] == 0


def test_credential_routes_only_expose_masked_keys() -> None:
    client, orchestrator = build_client()
    record = orchestrator.pool.next()
    orchestrator.pool.record_success(record)

    response = client.get("/credentials")

    assert response.status_code == 200
    assert "abcdef123456" not in response.text
    assert response.json()["credentials"][0]["masked_key"] == "ab...56"
    assert response.json()["used_quota"] == 1

    reset = client.post("/credentials/reset-daily")

    assert reset.status_code == 200
    assert reset.json()["used_quota"] == 0


def test_external_id_route_resolves_and_caches() -> None:
    client, orchestrator = build_client()

    response = client.get("/external-ids/movie", params={"ids": "240,abc,550,999"})

    assert response.status_code == 200
    assert response.json() == {
        "media_type": "movie",
        "external_ids": {
            "abc": None,
            "240": "tt0071562",
            "550": "tt0137523",
            "999": None,
        },
    }
    client.get("/external-ids/movie", params={"ids": "240"})
    assert orchestrator.source.calls == ["240", "550", "999"]
    assert client.get("/metrics").json()["id_mappings"]["total"] == 3

    assert client.get("/external-ids/person", params={"ids": "240"}).status_code == 400
    assert client.get("/external-ids/movie", params={"ids": " , "}).status_code == 400


def test_cache_maintenance_drops_expired_mappings() -> None:
    client, orchestrator = build_client()
    client.get("/external-ids/movie", params={"ids": "240,550"})
    orchestrator.clock.now += timedelta(days=8)

    assert client.get("/metrics").json()["id_mappings"]["expired"] == 2
    maintenance = client.post("/cache/maintenance")

    assert maintenance.status_code == 200
    assert maintenance.json() == {
        "expired_removed": 2,
        "evicted": 0,
        "total_removed": 2,
        "id_mappings": {"total": 0, "valid": 0, "expired": 0, "capacity": 10},
    }


def test_cache_clear_route_empties_mappings() -> None:
    client, orchestrator = build_client()
    client.get("/external-ids/series", params={"ids": "240"})

    cleared = client.post("/cache/clear")

    assert cleared.status_code == 200
    assert cleared.json()["cleared"] == 1
    assert cleared.json()["id_mappings"]["total"] == 0
    client.get("/external-ids/series", params={"ids": "240"})
    assert orchestrator.source.calls == ["240", "240"]
