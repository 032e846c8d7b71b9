"""Request counters and advisory diagnostics for the rating pipeline."""

from __future__ import annotations

import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Callable

from ..models import MappingCacheStats, MetricsSnapshot, PoolStats, Recommendation
from ..utils import utcnow

LOW_HIT_RATE = 70.0
MODERATE_HIT_RATE = 85.0
HIGH_API_USAGE = 800
SLOW_RESPONSE_MS = 1_000.0
LOW_REMAINING_QUOTA = 0.10


@dataclass(slots=True)
class _Counters:
    total_requests: int = 0
    cache_hits: int = 0
    cache_misses: int = 0
    external_calls: int = 0
    fallbacks: int = 0
    errors: int = 0
    coalesced: int = 0
    total_response_time_ms: float = 0.0


class RequestMetrics:
    """Increment-only counters shared by every in-flight request."""

    def __init__(self, *, clock: Callable[[], datetime] = utcnow) -> None:
        self._clock = clock
        self._lock = threading.Lock()
        self._counters = _Counters()
        self._started_at = clock()

    def record_request(self) -> None:
        with self._lock:
            self._counters.total_requests += 1

    def record_cache_hit(self) -> None:
        with self._lock:
            self._counters.cache_hits += 1

    def record_cache_miss(self) -> None:
        with self._lock:
            self._counters.cache_misses += 1

    def record_external_call(self) -> None:
        with self._lock:
            self._counters.external_calls += 1

    def record_fallback(self) -> None:
        with self._lock:
            self._counters.fallbacks += 1

    def record_error(self) -> None:
        with self._lock:
            self._counters.errors += 1

    def record_coalesced(self) -> None:
        with self._lock:
            self._counters.coalesced += 1

    def record_latency(self, elapsed_ms: float) -> None:
        with self._lock:
            self._counters.total_response_time_ms += max(elapsed_ms, 0.0)

    def snapshot(
        self,
        credentials: PoolStats | None = None,
        id_mappings: MappingCacheStats | None = None,
    ) -> MetricsSnapshot:
        with self._lock:
            counters = _Counters(
                total_requests=self._counters.total_requests,
                cache_hits=self._counters.cache_hits,
                cache_misses=self._counters.cache_misses,
                external_calls=self._counters.external_calls,
                fallbacks=self._counters.fallbacks,
                errors=self._counters.errors,
                coalesced=self._counters.coalesced,
                total_response_time_ms=self._counters.total_response_time_ms,
            )
            started_at = self._started_at

        lookups = counters.cache_hits + counters.cache_misses
        hit_rate = counters.cache_hits / lookups * 100 if lookups else 0.0
        miss_rate = counters.cache_misses / lookups * 100 if lookups else 0.0
        average = (
            counters.total_response_time_ms / counters.total_requests
            if counters.total_requests
            else 0.0
        )
        return MetricsSnapshot(
            total_requests=counters.total_requests,
            cache_hits=counters.cache_hits,
            cache_misses=counters.cache_misses,
            external_calls=counters.external_calls,
            fallbacks=counters.fallbacks,
            errors=counters.errors,
            coalesced=counters.coalesced,
            total_response_time_ms=round(counters.total_response_time_ms, 3),
            average_response_time_ms=round(average, 3),
            hit_rate=round(hit_rate, 2),
            miss_rate=round(miss_rate, 2),
            started_at=started_at,
            credentials=credentials,
            id_mappings=id_mappings,
        )

    def reset(self) -> None:
        with self._lock:
            self._counters = _Counters()
            self._started_at = self._clock()


def recommendations(snapshot: MetricsSnapshot) -> list[Recommendation]:
    """Return advisory notes for ``snapshot``. Purely informational."""

    notes: list[Recommendation] = []
    lookups = snapshot.cache_hits + snapshot.cache_misses
    if lookups:
        if snapshot.hit_rate < LOW_HIT_RATE:
            notes.append(
                Recommendation(
                    id="low_hit_rate",
                    message=(
                        f"Cache hit rate is {snapshot.hit_rate:.1f}%. "
                        "Consider extending the cache freshness window."
                    ),
                    severity="high",
                )
            )
        elif snapshot.hit_rate < MODERATE_HIT_RATE:
            notes.append(
                Recommendation(
                    id="moderate_hit_rate",
                    message=(
                        f"Cache hit rate is {snapshot.hit_rate:.1f}%; "
                        "frequently requested titles could be warmed ahead of time."
                    ),
                    severity="medium",
                )
            )

    if snapshot.external_calls > HIGH_API_USAGE:
        notes.append(
            Recommendation(
                id="api_usage",
                message=(
                    f"{snapshot.external_calls} external rating calls were made. "
                    "Check whether more lookups can be served from cache."
                ),
                severity="medium",
            )
        )

    if snapshot.average_response_time_ms > SLOW_RESPONSE_MS:
        notes.append(
            Recommendation(
                id="performance",
                message=(
                    f"Average response time is {snapshot.average_response_time_ms:.0f}ms."
                ),
                severity="medium",
            )
        )

    pool = snapshot.credentials
    if pool is not None and pool.total_daily_quota:
        remaining = pool.remaining_quota / pool.total_daily_quota
        if remaining < LOW_REMAINING_QUOTA:
            notes.append(
                Recommendation(
                    id="quota_pressure",
                    message=(
                        f"Only {pool.remaining_quota} of {pool.total_daily_quota} "
                        "daily rating requests remain across all keys."
                    ),
                    severity="high",
                )
            )
    return notes
