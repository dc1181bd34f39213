"""Document storage used to persist the user's collection."""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Mapping, Protocol

from sqlalchemy import delete, select

from .database import Database
from .db_models import DocumentRecord

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class Document:
    """A stored document: its generated id plus the caller's data."""

    id: str
    collection: str
    data: dict[str, Any] = field(default_factory=dict)

    def get(self, key: str, default: Any = None) -> Any:
        return self.data.get(key, default)


class DocumentStore(Protocol):
    """Minimal CRUD surface the collection layer relies on."""

    async def list_documents(
        self,
        database: str,
        collection: str,
        filters: Mapping[str, Any] | None = None,
    ) -> list[Document]: ...

    async def create_document(
        self, database: str, collection: str, data: Mapping[str, Any]
    ) -> Document: ...

    async def delete_document(
        self, database: str, collection: str, document_id: str
    ) -> bool: ...


class SqlDocumentStore:
    """Store JSON documents in a single SQL table.

    Equality filters are matched against the decoded JSON, so any field of
    a document can be filtered on without schema changes.
    """

    def __init__(self, database: Database):
        self._database = database

    async def list_documents(
        self,
        database: str,
        collection: str,
        filters: Mapping[str, Any] | None = None,
    ) -> list[Document]:
        statement = (
            select(DocumentRecord)
            .where(
                DocumentRecord.database_id == database,
                DocumentRecord.collection_id == collection,
            )
            .order_by(DocumentRecord.created_at, DocumentRecord.id)
        )
        async with self._database.session() as session:
            rows = (await session.execute(statement)).scalars().all()

        criteria = dict(filters or {})
        documents: list[Document] = []
        for row in rows:
            data = dict(row.data or {})
            if all(data.get(key) == value for key, value in criteria.items()):
                documents.append(Document(id=row.id, collection=collection, data=data))
        return documents

    async def create_document(
        self, database: str, collection: str, data: Mapping[str, Any]
    ) -> Document:
        document_id = uuid.uuid4().hex
        payload = dict(data)
        async with self._database.session() as session:
            session.add(
                DocumentRecord(
                    id=document_id,
                    database_id=database,
                    collection_id=collection,
                    data=payload,
                )
            )
        logger.debug("Created %s/%s document %s", database, collection, document_id)
        return Document(id=document_id, collection=collection, data=payload)

    async def delete_document(
        self, database: str, collection: str, document_id: str
    ) -> bool:
        statement = delete(DocumentRecord).where(
            DocumentRecord.id == document_id,
            DocumentRecord.database_id == database,
            DocumentRecord.collection_id == collection,
        )
        async with self._database.session() as session:
            result = await session.execute(statement)
        deleted = bool(result.rowcount)
        if not deleted:
            logger.debug("No %s/%s document %s to delete", database, collection, document_id)
        return deleted
