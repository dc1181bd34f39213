"""Keyword search across the source adapters with a short-lived cache."""

from __future__ import annotations

import asyncio
import logging
from typing import Mapping, Sequence, TypeVar

from ..cache import TTLCache
from ..config import Settings
from ..errors import AggregateFailure, SourceError, UserInputError
from ..models import MediaRecord, MediaType, SourceType
from .base import SourceAdapter

logger = logging.getLogger(__name__)

T = TypeVar("T")

SearchKey = tuple[str, MediaType]

ADAPTER_CHAINS: dict[MediaType, tuple[SourceType, ...]] = {
    MediaType.ANIME: (SourceType.BANGUMI,),
    MediaType.MOVIE: (SourceType.TMDB, SourceType.DOUBAN),
    MediaType.TV: (SourceType.TMDB, SourceType.DOUBAN),
}
QUICK_SEARCH_TYPES = (MediaType.MOVIE, MediaType.TV)


def paginate(items: Sequence[T], page: int, limit: int) -> list[T]:
    """Return the ``page``-th slice of ``limit`` items, or ``[]`` past the end."""

    start = (page - 1) * limit
    if start < 0 or start >= len(items):
        return []
    end = min(start + limit, len(items))
    return list(items[start:end])


def normalise_keyword(keyword: str | None) -> str:
    cleaned = (keyword or "").strip()
    if not cleaned:
        raise UserInputError("搜索关键词不能为空")
    return cleaned


def normalise_media_type(media_type: MediaType | str) -> MediaType:
    try:
        return MediaType(media_type)
    except ValueError as exc:
        raise UserInputError(f"不支持的类型: {media_type}") from exc


class SearchService:
    """Route keyword searches to adapters and cache the full result sets.

    Anime searches go to Bangumi. Movie and TV searches try TMDB first and
    fall back to Douban when TMDB is unavailable or finds nothing. Each
    ``(keyword, media_type)`` pair is fetched at most once per TTL window,
    and concurrent identical searches share a single fetch.
    """

    def __init__(
        self,
        settings: Settings,
        adapters: Mapping[SourceType, SourceAdapter],
        *,
        cache: TTLCache[SearchKey, tuple[MediaRecord, ...]] | None = None,
    ) -> None:
        self._settings = settings
        self._adapters = dict(adapters)
        self._cache = cache or TTLCache(settings.search_cache_seconds)

    @property
    def cache(self) -> TTLCache[SearchKey, tuple[MediaRecord, ...]]:
        return self._cache

    @property
    def adapters(self) -> dict[SourceType, SourceAdapter]:
        return dict(self._adapters)

    async def search(self, keyword: str, media_type: MediaType | str) -> list[MediaRecord]:
        keyword = normalise_keyword(keyword)
        media_type = normalise_media_type(media_type)
        results = await self._cache.get_or_load(
            (keyword, media_type), lambda: self._fetch(keyword, media_type)
        )
        return list(results)

    async def search_page(
        self,
        keyword: str,
        media_type: MediaType | str,
        page: int,
        limit: int = 20,
    ) -> list[MediaRecord]:
        if page <= 0:
            raise UserInputError("页码必须大于0")
        if limit <= 0:
            raise UserInputError("每页数量必须大于0")
        results = await self.search(keyword, media_type)
        return paginate(results, page, limit)

    async def get_total_count(self, keyword: str, media_type: MediaType | str) -> int:
        return len(await self.search(keyword, media_type))

    async def quick_search(self, keyword: str) -> dict[str, MediaRecord]:
        """Return the first usable hit from every adapter, keyed by source name.

        A failing adapter is logged and left out of the mapping; this call
        never fails because of a remote source.
        """

        keyword = normalise_keyword(keyword)
        adapters = list(self._adapters.values())
        hits = await asyncio.gather(
            *(self._first_match(adapter, keyword) for adapter in adapters)
        )
        return {
            adapter.name: hit
            for adapter, hit in zip(adapters, hits)
            if hit is not None
        }

    async def _fetch(self, keyword: str, media_type: MediaType) -> tuple[MediaRecord, ...]:
        chain = [
            self._adapters[source]
            for source in ADAPTER_CHAINS[media_type]
            if source in self._adapters
        ]
        if not chain:
            raise AggregateFailure(f"No adapter configured for {media_type.value}")

        errors: list[SourceError] = []
        for adapter in chain:
            try:
                results = await adapter.search(keyword)
            except SourceError as exc:
                logger.warning("%s search for %r failed: %s", adapter.name, keyword, exc)
                errors.append(exc)
                continue
            if results:
                logger.info(
                    "%s returned %d results for %r (%s)",
                    adapter.name,
                    len(results),
                    keyword,
                    media_type.value,
                )
                return tuple(results)
            logger.debug("%s found nothing for %r", adapter.name, keyword)

        if len(errors) == len(chain):
            raise AggregateFailure(
                f"Every source failed for {keyword!r} ({media_type.value})", errors
            )
        return ()

    async def _first_match(self, adapter: SourceAdapter, keyword: str) -> MediaRecord | None:
        try:
            results = await adapter.search(keyword)
        except Exception:
            logger.warning("Quick search on %s failed for %r", adapter.name, keyword, exc_info=True)
            return None
        for record in results:
            if adapter.source_type is SourceType.TMDB and record.media_type not in QUICK_SEARCH_TYPES:
                continue
            return record
        return None
