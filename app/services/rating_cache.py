"""Write-through cache of rating records in the document store."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any, Callable

from pydantic import ValidationError

from ..errors import CacheWriteError, DocumentStoreError
from ..models import RatingRecord
from ..utils import ensure_utc, utcnow
from .document_store import DocumentStore

logger = logging.getLogger(__name__)

RATING_COLLECTION = "rating_cache"
DEFAULT_FRESHNESS = timedelta(hours=24)
REQUIRED_FIELDS = ("external_id", "source", "cached_at")


class RatingCache:
    """Read and write rating records keyed by external ID.

    Staleness is judged on read; expired documents are left in place and
    simply overwritten by the next successful fetch.
    """

    def __init__(
        self,
        store: DocumentStore,
        *,
        ttl: timedelta = DEFAULT_FRESHNESS,
        clock: Callable[[], datetime] = utcnow,
        collection: str = RATING_COLLECTION,
    ) -> None:
        self._store = store
        self._ttl = ttl
        self._clock = clock
        self._collection = collection

    @property
    def ttl(self) -> timedelta:
        return self._ttl

    async def get(self, external_id: str) -> RatingRecord | None:
        try:
            document = await self._store.get_document(self._collection, external_id)
        except DocumentStoreError as exc:
            logger.warning("Rating cache read failed for %s: %s", external_id, exc)
            return None
        if document is None:
            return None

        try:
            record = RatingRecord.model_validate(document)
        except ValidationError as exc:
            logger.warning(
                "Discarding malformed cached rating for %s: %s", external_id, exc
            )
            return None
        if record.cached_at is None:
            return None

        age = self._clock() - ensure_utc(record.cached_at)
        if age >= self._ttl:
            logger.debug("Cached rating for %s is stale (%s old)", external_id, age)
            return None
        return record

    async def put(self, external_id: str, record: RatingRecord) -> bool:
        """Persist ``record`` and return whether it was written.

        Records missing a required value are skipped. Store failures raise
        ``CacheWriteError``.
        """

        document = self._to_document(record)
        missing = [name for name in REQUIRED_FIELDS if document.get(name) is None]
        if missing:
            logger.warning(
                "Skipping cache write for %s; missing %s",
                external_id,
                ", ".join(missing),
            )
            return False

        try:
            await self._store.put_document(self._collection, external_id, document)
        except DocumentStoreError as exc:
            raise CacheWriteError(
                f"Failed to cache rating for {external_id}: {exc}"
            ) from exc
        logger.debug("Cached rating for %s", external_id)
        return True

    @staticmethod
    def _to_document(record: RatingRecord) -> dict[str, Any]:
        return record.model_dump(
            mode="json",
            exclude={"primary_score", "secondary_score", "tertiary_score", "native_score"},
        )
