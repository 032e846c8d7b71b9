"""Key-value document store used for durable caching."""

from __future__ import annotations

import logging
from typing import Any, Mapping, Protocol

from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..db_models import Document
from ..errors import DocumentStoreError
from ..utils import utcnow

logger = logging.getLogger(__name__)

_UPSERT_INSERTS = {
    "sqlite": sqlite.insert,
    "postgresql": postgresql.insert,
}


class DocumentStore(Protocol):
    async def get_document(self, collection: str, key: str) -> dict[str, Any] | None: ...

    async def put_document(
        self, collection: str, key: str, document: Mapping[str, Any]
    ) -> None: ...


class SQLDocumentStore:
    """Document store persisting JSON payloads through SQLAlchemy.

    Writes are single-statement upserts, so concurrent writers of the same
    key end with the last payload instead of a primary key conflict.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def get_document(self, collection: str, key: str) -> dict[str, Any] | None:
        try:
            async with self._session_factory() as session:
                record = await session.get(Document, (collection, key))
                if record is None:
                    return None
                payload = record.payload
        except SQLAlchemyError as exc:
            raise DocumentStoreError(
                f"Failed to read {collection}/{key}: {exc.__class__.__name__}"
            ) from exc
        return dict(payload) if isinstance(payload, dict) else None

    async def put_document(
        self, collection: str, key: str, document: Mapping[str, Any]
    ) -> None:
        now = utcnow()
        try:
            async with self._session_factory() as session:
                dialect = session.bind.dialect.name if session.bind else ""
                insert = _UPSERT_INSERTS.get(dialect)
                if insert is None:
                    raise DocumentStoreError(
                        f"Upserts are not supported on the {dialect or 'unbound'} dialect"
                    )
                statement = insert(Document).values(
                    collection=collection,
                    key=key,
                    payload=dict(document),
                    created_at=now,
                    updated_at=now,
                )
                statement = statement.on_conflict_do_update(
                    index_elements=[Document.collection, Document.key],
                    set_={
                        "payload": statement.excluded.payload,
                        "updated_at": statement.excluded.updated_at,
                    },
                )
                await session.execute(statement)
                await session.commit()
        except SQLAlchemyError as exc:
            raise DocumentStoreError(
                f"Failed to write {collection}/{key}: {exc.__class__.__name__}"
            ) from exc
        logger.debug("Stored document %s/%s", collection, key)
