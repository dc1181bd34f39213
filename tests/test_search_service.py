"""Tests for keyword search routing, caching and quick search."""

from __future__ import annotations

import asyncio
from typing import cast

import httpx
import pytest

from app.cache import TTLCache
from app.config import Settings
from app.errors import AggregateFailure, TransportError, UserInputError
from app.models import MediaRecord, MediaType, SourceType
from app.services.base import SourceAdapter
from app.services.search import SearchService, paginate


@pytest.fixture
def anyio_backend() -> str:
    """Force AnyIO tests to run on asyncio without requiring trio."""

    return "asyncio"


def make_record(source_type: SourceType, source_id: str, media_type: MediaType) -> MediaRecord:
    return MediaRecord(
        source_type=source_type,
        source_id=source_id,
        media_type=media_type,
        title_zh=f"{source_type.value}-{source_id}",
    )


class FakeAdapter(SourceAdapter):
    """Adapter double returning canned records or raising a canned error."""

    def __init__(
        self,
        source_type: SourceType,
        results: list[MediaRecord] | None = None,
        *,
        error: Exception | None = None,
        gate: asyncio.Event | None = None,
    ) -> None:
        super().__init__(Settings(_env_file=None), cast(httpx.AsyncClient, None))
        self.source_type = source_type
        self.results = list(results or [])
        self.error = error
        self.gate = gate
        self.keywords: list[str] = []

    @property
    def calls(self) -> int:
        return len(self.keywords)

    async def search(self, keyword: str) -> list[MediaRecord]:
        self.keywords.append(keyword)
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        return list(self.results)


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


def build_service(*adapters: FakeAdapter, cache: TTLCache | None = None) -> SearchService:
    return SearchService(
        Settings(_env_file=None),
        {adapter.source_type: adapter for adapter in adapters},
        cache=cache,
    )


def _movies(source_type: SourceType, count: int) -> list[MediaRecord]:
    return [make_record(source_type, str(index), MediaType.MOVIE) for index in range(count)]


def test_paginate_slices_and_handles_out_of_range() -> None:
    items = list(range(45))

    assert paginate(items, 1, 20) == list(range(20))
    assert paginate(items, 3, 20) == [40, 41, 42, 43, 44]
    assert paginate(items, 4, 20) == []


@pytest.mark.anyio("asyncio")
async def test_anime_searches_use_bangumi_only() -> None:
    bangumi = FakeAdapter(SourceType.BANGUMI, [make_record(SourceType.BANGUMI, "253", MediaType.ANIME)])
    tmdb = FakeAdapter(SourceType.TMDB, _movies(SourceType.TMDB, 1))
    service = build_service(bangumi, tmdb)

    results = await service.search("星际牛仔", "anime")

    assert [record.source_id for record in results] == ["253"]
    assert tmdb.calls == 0


@pytest.mark.anyio("asyncio")
async def test_movie_search_prefers_tmdb() -> None:
    tmdb = FakeAdapter(SourceType.TMDB, _movies(SourceType.TMDB, 2))
    douban = FakeAdapter(SourceType.DOUBAN, _movies(SourceType.DOUBAN, 3))
    service = build_service(tmdb, douban)

    results = await service.search("Inception", MediaType.MOVIE)

    assert {record.source_type for record in results} == {SourceType.TMDB}
    assert douban.calls == 0


@pytest.mark.anyio("asyncio")
@pytest.mark.parametrize(
    "tmdb",
    [
        FakeAdapter(SourceType.TMDB, []),
        FakeAdapter(SourceType.TMDB, error=TransportError("tmdb", "timed out")),
        None,
    ],
    ids=["empty", "failing", "unconfigured"],
)
async def test_movie_search_falls_back_to_douban(tmdb: FakeAdapter | None) -> None:
    douban = FakeAdapter(SourceType.DOUBAN, _movies(SourceType.DOUBAN, 3))
    adapters = [douban] if tmdb is None else [tmdb, douban]
    service = build_service(*adapters)

    results = await service.search("霸王别姬", "tv")

    assert len(results) == 3
    assert douban.calls == 1


@pytest.mark.anyio("asyncio")
async def test_search_raises_aggregate_failure_when_every_source_fails() -> None:
    tmdb = FakeAdapter(SourceType.TMDB, error=TransportError("tmdb", "timed out"))
    douban = FakeAdapter(SourceType.DOUBAN, error=TransportError("douban", "403"))
    service = build_service(tmdb, douban)

    with pytest.raises(AggregateFailure) as exc_info:
        await service.search("Inception", "movie")

    assert [error.source for error in exc_info.value.errors] == ["tmdb", "douban"]
    assert ("Inception", MediaType.MOVIE) not in service.cache


@pytest.mark.anyio("asyncio")
async def test_no_results_anywhere_is_an_empty_list() -> None:
    service = build_service(FakeAdapter(SourceType.TMDB, []), FakeAdapter(SourceType.DOUBAN, []))

    assert await service.search("zzzz", "movie") == []


@pytest.mark.anyio("asyncio")
@pytest.mark.parametrize("keyword", ["", "   "])
async def test_empty_keyword_is_rejected_before_any_request(keyword: str) -> None:
    douban = FakeAdapter(SourceType.DOUBAN, _movies(SourceType.DOUBAN, 1))
    service = build_service(douban)

    with pytest.raises(UserInputError):
        await service.search(keyword, "movie")
    with pytest.raises(UserInputError):
        await service.quick_search(keyword)

    assert douban.calls == 0


@pytest.mark.anyio("asyncio")
async def test_unknown_media_type_is_rejected() -> None:
    service = build_service(FakeAdapter(SourceType.DOUBAN))

    with pytest.raises(UserInputError):
        await service.search("Inception", "book")


@pytest.mark.anyio("asyncio")
async def test_results_are_cached_per_keyword_and_type() -> None:
    clock = FakeClock()
    douban = FakeAdapter(SourceType.DOUBAN, _movies(SourceType.DOUBAN, 2))
    service = build_service(douban, cache=TTLCache(300, clock=clock))

    await service.search("霸王别姬", "movie")
    await service.search("  霸王别姬 ", "movie")
    assert douban.calls == 1

    await service.search("霸王别姬", "tv")
    assert douban.calls == 2

    clock.now += 301
    await service.search("霸王别姬", "movie")
    assert douban.calls == 3


@pytest.mark.anyio("asyncio")
async def test_concurrent_identical_searches_share_one_fetch() -> None:
    gate = asyncio.Event()
    douban = FakeAdapter(SourceType.DOUBAN, _movies(SourceType.DOUBAN, 2), gate=gate)
    service = build_service(douban)

    tasks = [asyncio.create_task(service.search("霸王别姬", "movie")) for _ in range(3)]
    await asyncio.sleep(0)
    gate.set()
    results = await asyncio.gather(*tasks)

    assert douban.calls == 1
    assert all(len(result) == 2 for result in results)


@pytest.mark.anyio("asyncio")
async def test_search_page_and_total_count_share_the_cache() -> None:
    douban = FakeAdapter(SourceType.DOUBAN, _movies(SourceType.DOUBAN, 45))
    service = build_service(douban)

    first = await service.search_page("霸王别姬", "movie", 1, 20)
    last = await service.search_page("霸王别姬", "movie", 3, 20)
    beyond = await service.search_page("霸王别姬", "movie", 9, 20)
    total = await service.get_total_count("霸王别姬", "movie")

    assert [record.source_id for record in first] == [str(index) for index in range(20)]
    assert len(last) == 5
    assert beyond == []
    assert total == 45
    assert douban.calls == 1


@pytest.mark.anyio("asyncio")
async def test_search_page_rejects_non_positive_page() -> None:
    service = build_service(FakeAdapter(SourceType.DOUBAN, _movies(SourceType.DOUBAN, 1)))

    with pytest.raises(UserInputError):
        await service.search_page("霸王别姬", "movie", 0)


@pytest.mark.anyio("asyncio")
async def test_quick_search_isolates_failing_sources() -> None:
    douban = FakeAdapter(SourceType.DOUBAN, _movies(SourceType.DOUBAN, 3))
    bangumi = FakeAdapter(SourceType.BANGUMI, error=TransportError("bgm", "timed out"))
    tmdb = FakeAdapter(
        SourceType.TMDB,
        [
            make_record(SourceType.TMDB, "1", MediaType.ANIME),
            make_record(SourceType.TMDB, "27205", MediaType.MOVIE),
        ],
    )
    maoyan = FakeAdapter(SourceType.MAOYAN, [])
    service = build_service(douban, bangumi, tmdb, maoyan)

    hits = await service.quick_search("Inception")

    assert set(hits) == {"douban", "tmdb"}
    assert hits["douban"].source_id == "0"
    assert hits["tmdb"].source_id == "27205"


@pytest.mark.anyio("asyncio")
async def test_quick_search_never_raises() -> None:
    service = build_service(
        FakeAdapter(SourceType.DOUBAN, error=RuntimeError("unexpected")),
        FakeAdapter(SourceType.BANGUMI, error=TransportError("bgm", "down")),
    )

    assert await service.quick_search("Inception") == {}
