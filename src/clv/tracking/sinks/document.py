"""SQL-backed document store -- the always-on first sink of the publisher.

Wraps DocumentRepository so documents live in the application database
alongside customers. Database errors surface as DocumentStoreError.
"""

from __future__ import annotations

from typing import Any

import structlog
from sqlalchemy.exc import SQLAlchemyError

from src.clv.customers.repository import DocumentRepository
from src.clv.tracking.sinks.base import DocumentStore, DocumentStoreError

logger = structlog.get_logger(__name__)


class SqlDocumentStore(DocumentStore):
    """Document store backed by the ``documents`` table.

    Args:
        repository: DocumentRepository instance for database operations.
    """

    def __init__(self, repository: DocumentRepository) -> None:
        self._repo = repository

    async def upsert(self, collection: str, key: str, fields: dict[str, Any]) -> None:
        try:
            await self._repo.upsert(collection, key, fields)
        except SQLAlchemyError as exc:
            raise DocumentStoreError(f"upsert {collection}/{key} failed: {exc}") from exc
        logger.debug("document_store.upserted", collection=collection, key=key)

    async def read(self, collection: str, key: str) -> dict[str, Any] | None:
        try:
            return await self._repo.read(collection, key)
        except SQLAlchemyError as exc:
            raise DocumentStoreError(f"read {collection}/{key} failed: {exc}") from exc
