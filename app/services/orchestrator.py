"""Per-title rating lookups combining caches, credentials and fallbacks."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Awaitable, Callable, Iterable, Protocol

from ..errors import (
    CacheWriteError,
    CatalogProviderError,
    PoolExhausted,
    ProviderError,
    RateLimited,
    ResolutionError,
    TransportError,
    Unauthorized,
)
from ..models import MediaType, MetricsSnapshot, NativeRating, RatingRecord, parse_media_type
from ..normalization import native_to_record, normalize_provider_payload
from ..utils import normalize_catalog_id, utcnow
from .credentials import CredentialPool, CredentialRecord
from .id_resolver import ExternalIdResolver
from .metrics import RequestMetrics
from .rating_cache import RatingCache

logger = logging.getLogger(__name__)


class NativeRatingSource(Protocol):
    async def get_native_rating(
        self, catalog_id: str, media_type: MediaType
    ) -> NativeRating: ...


class RatingFetcher(Protocol):
    async def fetch(
        self, external_id: str, credential: CredentialRecord
    ) -> dict[str, Any]: ...


class Stage(Enum):
    CACHE_CHECK = "cache_check"
    RESOLVE = "resolve"
    FETCH = "fetch"
    NORMALIZE = "normalize"
    CACHE_WRITE = "cache_write"
    FALLBACK = "fallback"
    DONE = "done"


@dataclass(slots=True)
class _RequestContext:
    catalog_id: str
    media_type: MediaType
    external_id: str | None = None
    resolved: bool = False
    payload: dict[str, Any] | None = None
    fetched_at: datetime | None = None
    record: RatingRecord | None = None


class RatingOrchestrator:
    """Drive a single title through cache, resolution, fetch and fallback.

    The public methods never raise for runtime failures. The worst outcome is
    an ``error``-sourced record carrying the ``N/A`` sentinel values. Only a
    malformed catalog ID or media type raises ``ValueError``.
    """

    def __init__(
        self,
        *,
        pool: CredentialPool,
        resolver: ExternalIdResolver,
        rating_client: RatingFetcher,
        rating_cache: RatingCache,
        catalog: NativeRatingSource,
        metrics: RequestMetrics | None = None,
        batch_concurrency: int = 8,
        coalesce_requests: bool = False,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._pool = pool
        self._resolver = resolver
        self._rating_client = rating_client
        self._rating_cache = rating_cache
        self._catalog = catalog
        self._metrics = metrics or RequestMetrics()
        self._batch_concurrency = max(1, batch_concurrency)
        self._coalesce_requests = coalesce_requests
        self._clock = clock
        self._inflight: dict[tuple[str, MediaType], asyncio.Future[RatingRecord]] = {}
        self._handlers: dict[Stage, Callable[[_RequestContext], Awaitable[Stage]]] = {
            Stage.CACHE_CHECK: self._check_cache,
            Stage.RESOLVE: self._resolve,
            Stage.FETCH: self._fetch,
            Stage.NORMALIZE: self._normalize,
            Stage.CACHE_WRITE: self._write_cache,
            Stage.FALLBACK: self._fallback,
        }

    @property
    def metrics(self) -> RequestMetrics:
        return self._metrics

    @property
    def pool(self) -> CredentialPool:
        return self._pool

    @property
    def resolver(self) -> ExternalIdResolver:
        return self._resolver

    async def get_rating(self, catalog_id: Any, media_type: Any) -> RatingRecord:
        """Return the best available rating record for one title."""

        normalized_id = normalize_catalog_id(catalog_id)
        resolved_type = parse_media_type(media_type)

        started = time.perf_counter()
        self._metrics.record_request()
        try:
            if self._coalesce_requests:
                return await self._coalesced(normalized_id, resolved_type)
            return await self._execute(normalized_id, resolved_type)
        finally:
            self._metrics.record_latency((time.perf_counter() - started) * 1000)

    async def get_ratings_batch(
        self, catalog_ids: Iterable[Any], media_type: Any
    ) -> dict[str, RatingRecord | None]:
        """Rate several titles concurrently.

        Malformed identifiers map to ``None`` instead of failing the batch.
        """

        resolved_type = parse_media_type(media_type)
        results: dict[str, RatingRecord | None] = {}
        valid: list[str] = []
        for raw in catalog_ids:
            try:
                normalized = normalize_catalog_id(raw)
            except ValueError as exc:
                logger.warning("Skipping invalid catalog ID %r: %s", raw, exc)
                results[str(raw)] = None
                continue
            if normalized not in results:
                results[normalized] = None
                valid.append(normalized)

        semaphore = asyncio.Semaphore(self._batch_concurrency)

        async def _rate(catalog_id: str) -> None:
            async with semaphore:
                results[catalog_id] = await self.get_rating(catalog_id, resolved_type)

        await asyncio.gather(*(_rate(catalog_id) for catalog_id in valid))
        return results

    def get_metrics_snapshot(self) -> MetricsSnapshot:
        return self._metrics.snapshot(
            self._pool.usage_stats(), self._resolver.cache.stats()
        )

    def reset_metrics(self) -> None:
        self._metrics.reset()
        logger.info("Rating metrics reset")

    async def _coalesced(self, catalog_id: str, media_type: MediaType) -> RatingRecord:
        key = (catalog_id, media_type)
        pending = self._inflight.get(key)
        if pending is not None and not pending.done():
            self._metrics.record_coalesced()
            logger.debug("Joining in-flight lookup for %s %s", media_type, catalog_id)
            return await asyncio.shield(pending)

        task = asyncio.ensure_future(self._execute(catalog_id, media_type))
        self._inflight[key] = task

        def _forget(finished: asyncio.Future[RatingRecord]) -> None:
            if self._inflight.get(key) is finished:
                del self._inflight[key]

        task.add_done_callback(_forget)
        return await asyncio.shield(task)

    async def _execute(self, catalog_id: str, media_type: MediaType) -> RatingRecord:
        context = _RequestContext(catalog_id=catalog_id, media_type=media_type)
        stage = Stage.CACHE_CHECK
        while stage is not Stage.DONE:
            handler = self._handlers[stage]
            try:
                stage = await handler(context)
            except Exception:
                if stage is Stage.FALLBACK:
                    logger.exception(
                        "Fallback failed for %s %s", media_type, catalog_id
                    )
                    context.record = self._error_record(context)
                    stage = Stage.DONE
                else:
                    logger.exception(
                        "Unexpected failure in %s stage for %s %s",
                        stage.value,
                        media_type,
                        catalog_id,
                    )
                    stage = Stage.FALLBACK

        if context.record is None:
            context.record = self._error_record(context)
        return context.record

    async def _check_cache(self, context: _RequestContext) -> Stage:
        if not context.resolved:
            mapping = self._resolver.peek(context.catalog_id, context.media_type)
            if mapping is None:
                return Stage.RESOLVE
            context.resolved = True
            context.external_id = mapping.external_id
            if context.external_id is None:
                logger.debug(
                    "Known missing external ID for %s %s",
                    context.media_type,
                    context.catalog_id,
                )
                return Stage.FALLBACK

        if context.external_id is None:
            return Stage.RESOLVE
        cached = await self._rating_cache.get(context.external_id)
        if cached is None:
            self._metrics.record_cache_miss()
            return Stage.FETCH

        self._metrics.record_cache_hit()
        context.record = cached.model_copy(
            update={
                "catalog_id": context.catalog_id,
                "media_type": context.media_type,
                "source": "cache",
            }
        )
        logger.debug("Rating cache hit for %s", context.external_id)
        return Stage.DONE

    async def _resolve(self, context: _RequestContext) -> Stage:
        try:
            external_id = await self._resolver.resolve(
                context.catalog_id, context.media_type
            )
        except ResolutionError as exc:
            logger.warning("%s", exc)
            return Stage.FALLBACK

        context.resolved = True
        context.external_id = external_id
        if external_id is None:
            return Stage.FALLBACK
        return Stage.CACHE_CHECK

    async def _fetch(self, context: _RequestContext) -> Stage:
        external_id = context.external_id
        if external_id is None:
            return Stage.FALLBACK
        attempts = max(1, self._pool.size)
        for _ in range(attempts):
            try:
                credential = self._pool.next()
            except PoolExhausted as exc:
                logger.warning(
                    "No rating credential available for %s: %s",
                    external_id,
                    exc,
                )
                return Stage.FALLBACK

            self._metrics.record_external_call()
            committed = False
            try:
                payload = await self._rating_client.fetch(external_id, credential)
                self._pool.record_success(credential)
                committed = True
            except Unauthorized:
                self._pool.record_auth_failure(credential)
                continue
            except (RateLimited, TransportError, ProviderError) as exc:
                logger.info(
                    "Rating key %s could not serve %s (%s); trying the next key",
                    credential.id,
                    external_id,
                    exc.__class__.__name__,
                )
                continue
            finally:
                if not committed:
                    self._pool.release(credential)

            context.payload = payload
            context.fetched_at = self._clock()
            return Stage.NORMALIZE

        logger.warning(
            "Every rating key failed for %s after %s attempts",
            external_id,
            attempts,
        )
        return Stage.FALLBACK

    async def _normalize(self, context: _RequestContext) -> Stage:
        if context.payload is None or context.external_id is None:
            raise RuntimeError("Normalize stage reached without a provider payload")
        context.record = normalize_provider_payload(
            context.payload,
            catalog_id=context.catalog_id,
            media_type=context.media_type,
            external_id=context.external_id,
            fetched_at=context.fetched_at or self._clock(),
        )
        return Stage.CACHE_WRITE

    async def _write_cache(self, context: _RequestContext) -> Stage:
        if context.record is None or context.external_id is None:
            raise RuntimeError("Cache write stage reached without a record")
        try:
            await self._rating_cache.put(context.external_id, context.record)
        except CacheWriteError as exc:
            logger.error("%s", exc)
        return Stage.DONE

    async def _fallback(self, context: _RequestContext) -> Stage:
        self._metrics.record_fallback()
        try:
            native = await self._catalog.get_native_rating(
                context.catalog_id, context.media_type
            )
        except CatalogProviderError as exc:
            logger.warning(
                "Native rating unavailable for %s %s: %s",
                context.media_type,
                context.catalog_id,
                exc,
            )
            context.record = self._error_record(context)
            return Stage.DONE

        context.record = native_to_record(native, external_id=context.external_id)
        return Stage.DONE

    def _error_record(self, context: _RequestContext) -> RatingRecord:
        self._metrics.record_error()
        return RatingRecord.unavailable(
            catalog_id=context.catalog_id,
            media_type=context.media_type,
            external_id=context.external_id,
        )
