"""Entry point for the FastAPI-powered rating service."""

from __future__ import annotations

import logging
from contextlib import AsyncExitStack, asynccontextmanager
from datetime import timedelta
from typing import Any

import httpx
from fastapi import FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware

from .config import settings
from .database import Database
from .models import parse_media_type
from .services.credentials import CredentialPool
from .services.document_store import SQLDocumentStore
from .services.id_resolver import ExternalIdResolver, IdMappingCache
from .services.metrics import RequestMetrics, recommendations
from .services.omdb import RatingClient
from .services.orchestrator import RatingOrchestrator
from .services.rating_cache import RatingCache
from .services.tmdb import TMDBClient
from .utils import normalize_catalog_id

logging.basicConfig(level=settings.log_level)
logger = logging.getLogger(__name__)

app: FastAPI


@asynccontextmanager
async def lifespan(_: FastAPI):
    exit_stack = AsyncExitStack()
    tmdb_http_client = await exit_stack.enter_async_context(
        httpx.AsyncClient(
            base_url=str(settings.tmdb_api_url),
            timeout=httpx.Timeout(15.0, connect=5.0),
        )
    )
    rating_http_client = await exit_stack.enter_async_context(
        httpx.AsyncClient(
            base_url=str(settings.rating_api_url),
            timeout=httpx.Timeout(settings.rating_request_timeout, connect=5.0),
        )
    )
    database = Database(settings.database_url)
    await database.create_all()

    pool = CredentialPool(
        settings.omdb_api_keys, daily_quota=settings.rating_daily_quota
    )
    pool.discover()

    tmdb = TMDBClient(settings, tmdb_http_client)
    resolver = ExternalIdResolver(
        tmdb,
        IdMappingCache(
            capacity=settings.id_mapping_capacity,
            ttl=timedelta(seconds=settings.id_mapping_ttl_seconds),
        ),
        max_attempts=settings.resolver_max_attempts,
        retry_delay=settings.resolver_retry_delay,
    )
    rating_cache = RatingCache(
        SQLDocumentStore(database.session_factory),
        ttl=timedelta(seconds=settings.rating_cache_ttl_seconds),
    )
    orchestrator = RatingOrchestrator(
        pool=pool,
        resolver=resolver,
        rating_client=RatingClient(settings, rating_http_client),
        rating_cache=rating_cache,
        catalog=tmdb,
        metrics=RequestMetrics(),
        batch_concurrency=settings.rating_batch_concurrency,
        coalesce_requests=settings.rating_coalesce_requests,
    )

    app.state.orchestrator = orchestrator
    app.state.database = database

    try:
        yield
    finally:  # pragma: no cover - teardown path exercised at runtime
        await database.dispose()
        await exit_stack.aclose()


def create_app() -> FastAPI:
    fastapi_app = FastAPI(
        title=settings.app_name,
        description="Third-party ratings for catalog titles with caching and key rotation",
        version="1.0.0",
        lifespan=lifespan,
    )

    fastapi_app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )

    register_routes(fastapi_app)
    return fastapi_app


def get_orchestrator(app: FastAPI) -> RatingOrchestrator:
    orchestrator = getattr(app.state, "orchestrator", None)
    if not isinstance(orchestrator, RatingOrchestrator):
        raise RuntimeError("Rating orchestrator not initialised")
    return orchestrator


def register_routes(fastapi_app: FastAPI) -> None:
    @fastapi_app.get("/healthz")
    async def healthcheck() -> dict[str, str]:
        return {"status": "ok"}

    @fastapi_app.get("/ratings/{media_type}/{catalog_id}")
    async def rating(media_type: str, catalog_id: str) -> dict[str, Any]:
        orchestrator = get_orchestrator(fastapi_app)
        try:
            record = await orchestrator.get_rating(catalog_id, media_type)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        return record.model_dump(mode="json")

    @fastapi_app.get("/ratings/{media_type}")
    async def ratings_batch(
        media_type: str,
        ids: str = Query(..., description="Comma separated catalog IDs"),
    ) -> dict[str, Any]:
        orchestrator = get_orchestrator(fastapi_app)
        catalog_ids = [part.strip() for part in ids.split(",") if part.strip()]
        if not catalog_ids:
            raise HTTPException(status_code=400, detail="At least one catalog ID is required")
        try:
            results = await orchestrator.get_ratings_batch(catalog_ids, media_type)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        return {
            "ratings": {
                catalog_id: record.model_dump(mode="json") if record is not None else None
                for catalog_id, record in results.items()
            }
        }

    @fastapi_app.get("/metrics")
    async def metrics() -> dict[str, Any]:
        snapshot = get_orchestrator(fastapi_app).get_metrics_snapshot()
        payload = snapshot.model_dump(mode="json")
        payload["recommendations"] = [
            note.model_dump(mode="json") for note in recommendations(snapshot)
        ]
        return payload

    @fastapi_app.post("/metrics/reset")
    async def reset_metrics() -> dict[str, str]:
        get_orchestrator(fastapi_app).reset_metrics()
        return {"status": "reset"}

    @fastapi_app.get("/credentials")
    async def credentials() -> dict[str, Any]:
        stats = get_orchestrator(fastapi_app).pool.usage_stats()
        return stats.model_dump(mode="json")

    @fastapi_app.post("/credentials/reset-daily")
    async def reset_daily_usage() -> dict[str, Any]:
        pool = get_orchestrator(fastapi_app).pool
        pool.reset_daily()
        return pool.usage_stats().model_dump(mode="json")

    @fastapi_app.get("/external-ids/{media_type}")
    async def external_ids(
        media_type: str,
        ids: str = Query(..., description="Comma separated catalog IDs"),
    ) -> dict[str, Any]:
        resolver = get_orchestrator(fastapi_app).resolver
        try:
            resolved_type = parse_media_type(media_type)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc

        results: dict[str, str | None] = {}
        valid: list[str] = []
        for part in ids.split(","):
            raw = part.strip()
            if not raw:
                continue
            try:
                valid.append(normalize_catalog_id(raw))
            except ValueError:
                results[raw] = None
        if not valid and not results:
            raise HTTPException(status_code=400, detail="At least one catalog ID is required")

        resolved = await resolver.resolve_many(
            (catalog_id, resolved_type) for catalog_id in valid
        )
        for (catalog_id, _), external_id in resolved.items():
            results[catalog_id] = external_id
        return {"media_type": resolved_type, "external_ids": results}

    @fastapi_app.post("/cache/maintenance")
    async def cache_maintenance() -> dict[str, Any]:
        cache = get_orchestrator(fastapi_app).resolver.cache
        removed = cache.cleanup()
        logger.info("ID mapping cache maintenance removed %s entries", removed["total_removed"])
        return {**removed, "id_mappings": cache.stats().model_dump(mode="json")}

    @fastapi_app.post("/cache/clear")
    async def clear_cache() -> dict[str, Any]:
        cache = get_orchestrator(fastapi_app).resolver.cache
        cleared = cache.clear()
        logger.info("Cleared %s ID mappings", cleared)
        return {"cleared": cleared, "id_mappings": cache.stats().model_dump(mode="json")}


app = create_app()


if __name__ == "__main__":  # pragma: no cover - manual execution
    import uvicorn

    uvicorn.run(
        "app.main:app",
        host=settings.server_host,
        port=settings.server_port,
        reload=settings.environment == "development",
    )
