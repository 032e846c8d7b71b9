"""Catalog ID to external ID resolution backed by a bounded local cache."""

from __future__ import annotations

import asyncio
import itertools
import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Iterable, Protocol

from ..errors import CatalogProviderError, ResolutionError
from ..models import MappingCacheStats, MediaType
from ..utils import utcnow

logger = logging.getLogger(__name__)

DEFAULT_MAPPING_TTL = timedelta(days=7)
DEFAULT_MAPPING_CAPACITY = 1_000


class ExternalIdSource(Protocol):
    async def get_external_id(
        self, catalog_id: str, media_type: MediaType
    ) -> str | None: ...


@dataclass(slots=True)
class IdMapping:
    """Cached answer for one ``(catalog_id, media_type)`` pair."""

    catalog_id: str
    media_type: MediaType
    external_id: str | None
    created_at: datetime
    last_accessed_at: datetime
    access_sequence: int = 0


class IdMappingCache:
    """In-process mapping store with TTL expiry and LRU eviction.

    Writes and evictions are serialized; lookups only take the lock to touch
    the entry they return.
    """

    def __init__(
        self,
        *,
        capacity: int = DEFAULT_MAPPING_CAPACITY,
        ttl: timedelta = DEFAULT_MAPPING_TTL,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        if capacity < 1:
            raise ValueError("capacity must be positive")
        self._capacity = capacity
        self._ttl = ttl
        self._clock = clock
        self._entries: dict[tuple[str, str], IdMapping] = {}
        self._lock = threading.Lock()
        self._sequence = itertools.count(1)

    @property
    def capacity(self) -> int:
        return self._capacity

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def get(self, catalog_id: str, media_type: MediaType) -> IdMapping | None:
        """Return a fresh mapping and mark it as recently used."""

        key = (catalog_id, media_type)
        entry = self._entries.get(key)
        if entry is None:
            return None
        now = self._clock()
        if self._is_expired(entry, now):
            with self._lock:
                if self._entries.get(key) is entry:
                    del self._entries[key]
            return None
        with self._lock:
            entry.last_accessed_at = now
            entry.access_sequence = next(self._sequence)
        return entry

    def put(
        self, catalog_id: str, media_type: MediaType, external_id: str | None
    ) -> IdMapping:
        now = self._clock()
        entry = IdMapping(
            catalog_id=catalog_id,
            media_type=media_type,
            external_id=external_id,
            created_at=now,
            last_accessed_at=now,
        )
        with self._lock:
            entry.access_sequence = next(self._sequence)
            self._entries[(catalog_id, media_type)] = entry
            self._purge_expired(now)
            self._evict_overflow()
        return entry

    def cleanup(self) -> dict[str, int]:
        """Drop expired entries and enforce the capacity bound."""

        with self._lock:
            expired = self._purge_expired(self._clock())
            evicted = self._evict_overflow()
        return {
            "expired_removed": expired,
            "evicted": evicted,
            "total_removed": expired + evicted,
        }

    def clear(self) -> int:
        with self._lock:
            count = len(self._entries)
            self._entries.clear()
        return count

    def stats(self) -> MappingCacheStats:
        now = self._clock()
        entries = list(self._entries.values())
        expired = sum(1 for entry in entries if self._is_expired(entry, now))
        return MappingCacheStats(
            total=len(entries),
            valid=len(entries) - expired,
            expired=expired,
            capacity=self._capacity,
        )

    def _is_expired(self, entry: IdMapping, now: datetime) -> bool:
        return now - entry.created_at >= self._ttl

    def _purge_expired(self, now: datetime) -> int:
        stale = [key for key, entry in self._entries.items() if self._is_expired(entry, now)]
        for key in stale:
            del self._entries[key]
        return len(stale)

    def _evict_overflow(self) -> int:
        overflow = len(self._entries) - self._capacity
        if overflow <= 0:
            return 0
        ordered = sorted(
            self._entries.items(),
            key=lambda item: (item[1].last_accessed_at, item[1].access_sequence),
        )
        for key, _ in ordered[:overflow]:
            del self._entries[key]
        logger.debug("Evicted %s least recently used ID mappings", overflow)
        return overflow


class ExternalIdResolver:
    """Resolve catalog identifiers to the rating provider's identifiers."""

    def __init__(
        self,
        source: ExternalIdSource,
        cache: IdMappingCache | None = None,
        *,
        max_attempts: int = 3,
        retry_delay: float = 1.0,
    ) -> None:
        self._source = source
        self._cache = cache or IdMappingCache()
        self._max_attempts = max(1, max_attempts)
        self._retry_delay = retry_delay

    @property
    def cache(self) -> IdMappingCache:
        return self._cache

    def peek(self, catalog_id: str, media_type: MediaType) -> IdMapping | None:
        """Return a cached mapping without contacting the provider."""

        return self._cache.get(catalog_id, media_type)

    async def resolve(self, catalog_id: str, media_type: MediaType) -> str | None:
        """Return the external ID, ``None`` if the title has none.

        Raises ``ResolutionError`` when the provider cannot be reached after
        every attempt.
        """

        cached = self._cache.get(catalog_id, media_type)
        if cached is not None:
            logger.debug(
                "ID mapping cache hit for %s %s -> %s",
                media_type,
                catalog_id,
                cached.external_id,
            )
            return cached.external_id

        last_error: Exception | None = None
        for attempt in range(1, self._max_attempts + 1):
            try:
                external_id = await self._source.get_external_id(catalog_id, media_type)
            except CatalogProviderError as exc:
                last_error = exc
                logger.warning(
                    "Attempt %s to resolve %s %s failed: %s",
                    attempt,
                    media_type,
                    catalog_id,
                    exc,
                )
                if attempt < self._max_attempts:
                    await asyncio.sleep(self._retry_delay * attempt)
                continue

            self._cache.put(catalog_id, media_type, external_id)
            if external_id:
                logger.info("Resolved %s %s to %s", media_type, catalog_id, external_id)
            else:
                logger.info("No external ID exists for %s %s", media_type, catalog_id)
            return external_id

        raise ResolutionError(
            f"Failed to resolve {media_type} {catalog_id} after "
            f"{self._max_attempts} attempts: {last_error}"
        ) from last_error

    async def resolve_many(
        self, items: Iterable[tuple[str, MediaType]]
    ) -> dict[tuple[str, MediaType], str | None]:
        """Resolve several titles, mapping per-item failures to ``None``."""

        results: dict[tuple[str, MediaType], str | None] = {}
        for catalog_id, media_type in items:
            try:
                results[(catalog_id, media_type)] = await self.resolve(catalog_id, media_type)
            except ResolutionError as exc:
                logger.error("%s", exc)
                results[(catalog_id, media_type)] = None
        return results
