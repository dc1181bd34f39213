"""Track which media records the user has collected."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Iterable

from ..config import Settings
from ..documents import Document, DocumentStore
from ..models import MediaRecord, SourceType

logger = logging.getLogger(__name__)


class CollectionService:
    """Persist collected records as media, media source and collection documents.

    A media document is shared between sources describing the same title,
    each source position gets a media source document pointing at it, and a
    collection document links a user to the media document.
    """

    def __init__(self, settings: Settings, store: DocumentStore):
        self._store = store
        self._database = settings.database_id
        self._media = settings.media_collection_id
        self._sources = settings.media_source_collection_id
        self._collections = settings.collections_collection_id

    async def is_collected(
        self,
        source_id: str,
        source_type: SourceType | None = None,
        user_id: str | None = None,
    ) -> bool:
        """Return whether a collection entry exists for the source position.

        Without ``source_type`` any source with that id matches; without
        ``user_id`` any user's collection counts.
        """

        keys = await self._collected_keys(user_id)
        if source_type is not None:
            return (source_type.value, source_id) in keys
        return any(key_id == source_id for _, key_id in keys)

    async def annotate(
        self, records: Iterable[MediaRecord], user_id: str | None = None
    ) -> list[MediaRecord]:
        """Set the ``collected`` flag on each record and return them."""

        records = list(records)
        if not records:
            return records
        keys = await self._collected_keys(user_id)
        for record in records:
            record.set_collected((record.source_type.value, record.source_id) in keys)
        return records

    async def _collected_keys(self, user_id: str | None) -> set[tuple[str, str]]:
        """Return ``(source_type, source_id)`` pairs that have a collection entry."""

        filters = {"user_id": user_id} if user_id else None
        entries = await self._store.list_documents(self._database, self._collections, filters)
        media_ids = {entry.get("media_id") for entry in entries}
        if not media_ids:
            return set()
        sources = await self._store.list_documents(self._database, self._sources)
        return {
            (document.get("source_type"), document.get("source_id"))
            for document in sources
            if document.get("media_id") in media_ids
        }

    async def add(self, record: MediaRecord, user_id: str) -> MediaRecord:
        """Collect ``record`` for ``user_id``; existing documents are reused."""

        media_id = await self._ensure_media(record)

        sources = await self._store.list_documents(
            self._database,
            self._sources,
            {"source_type": record.source_type.value, "source_id": record.source_id},
        )
        if not sources:
            await self._store.create_document(
                self._database,
                self._sources,
                {
                    "media_id": media_id,
                    "source_type": record.source_type.value,
                    "source_id": record.source_id,
                    "source_url": record.source_url,
                },
            )

        existing = await self._store.list_documents(
            self._database,
            self._collections,
            {"user_id": user_id, "media_id": media_id},
        )
        if existing:
            logger.debug("%s already collected by %s", record.display_title(), user_id)
        else:
            await self._store.create_document(
                self._database,
                self._collections,
                {
                    "user_id": user_id,
                    "media_id": media_id,
                    "added_time": datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ"),
                    "watch_status": False,
                    "notes": "",
                },
            )
            logger.info("Collected %s for %s", record.display_title(), user_id)
        record.set_collected(True)
        return record

    async def remove(
        self, source_id: str, user_id: str, source_type: SourceType | None = None
    ) -> bool:
        """Remove the user's collection entry for ``source_id``.

        Returns ``False`` when the record was not collected.
        """

        filters: dict[str, Any] = {"source_id": source_id}
        if source_type is not None:
            filters["source_type"] = source_type.value
        sources = await self._store.list_documents(self._database, self._sources, filters)
        media_ids = {document.get("media_id") for document in sources}
        entries = [
            entry
            for entry in await self._store.list_documents(
                self._database, self._collections, {"user_id": user_id}
            )
            if entry.get("media_id") in media_ids
        ]
        if not entries:
            return False
        await self._store.delete_document(self._database, self._collections, entries[0].id)
        logger.info("Removed %s from the collection of %s", source_id, user_id)
        return True

    async def list_collection(self, user_id: str) -> list[dict[str, Any]]:
        """Return the user's collection entries merged with their media data."""

        entries = await self._store.list_documents(
            self._database, self._collections, {"user_id": user_id}
        )
        if not entries:
            return []
        media = {
            document.id: document
            for document in await self._store.list_documents(self._database, self._media)
        }
        items: list[dict[str, Any]] = []
        for entry in entries:
            document = media.get(entry.get("media_id"))
            if document is None:
                logger.warning("Collection entry %s points at missing media", entry.id)
                continue
            items.append({**document.data, **entry.data, "media_id": document.id})
        return items

    async def _ensure_media(self, record: MediaRecord) -> str:
        matches = await self._store.list_documents(
            self._database,
            self._media,
            {"title_zh": record.title_zh, "release_date": record.release_date},
        )
        if matches:
            return matches[0].id
        document: Document = await self._store.create_document(
            self._database, self._media, self._media_data(record)
        )
        return document.id

    @staticmethod
    def _media_data(record: MediaRecord) -> dict[str, Any]:
        def _score(value: float) -> float | None:
            return value if 0.0 <= value <= 10.0 else None

        return {
            "media_type": record.media_type.value,
            "title_zh": record.title_zh,
            "title_original": record.title_original,
            "release_date": record.release_date,
            "poster_url": record.poster_url,
            "duration": record.duration,
            "summary": record.summary,
            "staff": record.staff,
            "rating_douban": _score(record.rating_douban),
            "rating_bangumi": _score(record.rating_bangumi),
            "rating_tmdb": _score(record.rating_tmdb),
        }
