"""Entry point for the FastAPI-powered media aggregation service."""

from __future__ import annotations

import logging
from contextlib import AsyncExitStack, asynccontextmanager
from typing import Any

import httpx
from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from .config import settings
from .database import Database
from .documents import SqlDocumentStore
from .errors import (
    AggregateFailure,
    DramaTrackerError,
    PageLoadError,
    SourceError,
    UserInputError,
)
from .models import Category, MediaRecord, MediaType, SourceType
from .services.bangumi import BangumiAdapter
from .services.base import SourceAdapter
from .services.collection import CollectionService
from .services.douban import DoubanAdapter
from .services.maoyan import MaoyanAdapter
from .services.pagination import CategoryPager, CategoryView
from .services.search import SearchService
from .services.tmdb import TMDBAdapter

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

app: FastAPI


@asynccontextmanager
async def lifespan(fastapi_app: FastAPI):
    exit_stack = AsyncExitStack()
    timeout = httpx.Timeout(
        settings.read_timeout_seconds, connect=settings.connect_timeout_seconds
    )
    scrape_client = await exit_stack.enter_async_context(
        httpx.AsyncClient(timeout=timeout, follow_redirects=True)
    )
    adapters: dict[SourceType, SourceAdapter] = {
        SourceType.DOUBAN: DoubanAdapter(settings, scrape_client),
        SourceType.BANGUMI: BangumiAdapter(settings, scrape_client),
        SourceType.MAOYAN: MaoyanAdapter(settings, scrape_client),
    }
    pager: CategoryPager | None = None
    if settings.tmdb_enabled:
        tmdb_client = await exit_stack.enter_async_context(
            httpx.AsyncClient(base_url=str(settings.tmdb_api_url), timeout=timeout)
        )
        tmdb = TMDBAdapter(settings, tmdb_client)
        adapters[SourceType.TMDB] = tmdb
        pager = CategoryPager(
            tmdb.fetch_page,
            upstream_page_size=settings.upstream_page_size,
            display_page_size=settings.display_page_size,
        )
    else:
        logger.warning("TMDB_API_KEY is not set; TMDB search and browsing are disabled")

    database = Database(settings.database_url)
    await database.create_all()

    fastapi_app.state.search_service = SearchService(settings, adapters)
    fastapi_app.state.category_pager = pager
    fastapi_app.state.collection_service = CollectionService(
        settings, SqlDocumentStore(database)
    )
    fastapi_app.state.database = database

    try:
        yield
    finally:  # pragma: no cover - teardown path exercised at runtime
        await database.dispose()
        await exit_stack.aclose()


def create_app() -> FastAPI:
    fastapi_app = FastAPI(
        title=settings.app_name,
        description="Movie, TV and anime metadata aggregated from several sources",
        version="1.0.0",
        lifespan=lifespan,
    )

    fastapi_app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST", "DELETE"],
        allow_headers=["*"],
    )

    register_routes(fastapi_app)
    return fastapi_app


def get_search_service(app: FastAPI) -> SearchService:
    service = getattr(app.state, "search_service", None)
    if not isinstance(service, SearchService):
        raise RuntimeError("Search service not initialised")
    return service


def get_collection_service(app: FastAPI) -> CollectionService:
    service = getattr(app.state, "collection_service", None)
    if not isinstance(service, CollectionService):
        raise RuntimeError("Collection service not initialised")
    return service


def get_category_pager(app: FastAPI) -> CategoryPager:
    pager = getattr(app.state, "category_pager", None)
    if not isinstance(pager, CategoryPager):
        raise HTTPException(status_code=503, detail="浏览功能未配置")
    return pager


class CollectRequest(BaseModel):
    """Body of a request adding a record to the user's collection."""

    user_id: str = Field(min_length=1, alias="userId")
    record: MediaRecord

    model_config = ConfigDict(populate_by_name=True)


def _status_for(exc: DramaTrackerError) -> int:
    if isinstance(exc, UserInputError):
        return 400
    if isinstance(exc, (AggregateFailure, PageLoadError, SourceError)):
        return 502
    return 500


def _parse_category(raw: str) -> Category:
    try:
        return Category(raw)
    except ValueError as exc:
        raise UserInputError(f"未知分类: {raw}") from exc


def _view_payload(view: CategoryView) -> dict[str, Any]:
    return {
        "category": view.category.value,
        "currentPage": view.current_page,
        "totalPages": view.total_pages,
        "isLoading": view.is_loading,
        "isLastPage": view.is_last_page,
        "noMoreUpstream": view.no_more_upstream,
        "hasPrevious": view.has_previous,
        "hasNext": view.has_next,
        "pageNumbers": view.page_numbers(),
    }


def register_routes(fastapi_app: FastAPI) -> None:
    @fastapi_app.exception_handler(DramaTrackerError)
    async def handle_domain_error(_: Request, exc: DramaTrackerError) -> JSONResponse:
        status_code = _status_for(exc)
        if status_code >= 500:
            logger.error("Request failed: %s", exc)
        message = str(exc) if isinstance(exc, UserInputError) else exc.user_message
        return JSONResponse({"detail": message}, status_code=status_code)

    @fastapi_app.get("/healthz")
    async def healthcheck() -> dict[str, str]:
        return {"status": "ok"}

    @fastapi_app.get("/search")
    async def search(
        keyword: str,
        media_type: MediaType = Query(MediaType.MOVIE, alias="type"),
        page: int = 1,
        limit: int = 20,
        user_id: str | None = None,
    ) -> dict[str, Any]:
        service = get_search_service(fastapi_app)
        records = await service.search_page(keyword, media_type, page, limit)
        total = await service.get_total_count(keyword, media_type)
        collection = getattr(fastapi_app.state, "collection_service", None)
        if isinstance(collection, CollectionService):
            await collection.annotate(records, user_id)
        return {
            "items": [record.to_payload() for record in records],
            "page": page,
            "limit": limit,
            "total": total,
        }

    @fastapi_app.get("/search/count")
    async def search_count(
        keyword: str, media_type: MediaType = Query(MediaType.MOVIE, alias="type")
    ) -> dict[str, int]:
        service = get_search_service(fastapi_app)
        return {"total": await service.get_total_count(keyword, media_type)}

    @fastapi_app.get("/quick-search")
    async def quick_search(keyword: str) -> dict[str, Any]:
        service = get_search_service(fastapi_app)
        hits = await service.quick_search(keyword)
        return {name: record.to_payload() for name, record in hits.items()}

    @fastapi_app.get("/browse/{category}/{page}")
    async def browse(
        category: str, page: int, user_id: str | None = None
    ) -> dict[str, Any]:
        pager = get_category_pager(fastapi_app)
        selected = _parse_category(category)
        records = await pager.load_page(selected, page)
        collection = getattr(fastapi_app.state, "collection_service", None)
        if isinstance(collection, CollectionService):
            await collection.annotate(records, user_id)
        return {
            "items": [record.to_payload() for record in records],
            "view": _view_payload(pager.view(selected)),
        }

    @fastapi_app.post("/browse/{category}/switch")
    async def switch_category(category: str) -> dict[str, Any]:
        pager = get_category_pager(fastapi_app)
        return _view_payload(pager.switch_category(_parse_category(category)))

    @fastapi_app.get("/collection")
    async def list_collection(user_id: str) -> dict[str, Any]:
        service = get_collection_service(fastapi_app)
        return {"items": await service.list_collection(user_id)}

    @fastapi_app.post("/collection")
    async def add_to_collection(payload: CollectRequest) -> dict[str, Any]:
        service = get_collection_service(fastapi_app)
        record = await service.add(payload.record, payload.user_id)
        return {"collected": True, "record": record.to_payload()}

    @fastapi_app.delete("/collection/{source_id}")
    async def remove_from_collection(
        source_id: str, user_id: str, source_type: SourceType | None = None
    ) -> dict[str, bool]:
        service = get_collection_service(fastapi_app)
        removed = await service.remove(source_id, user_id, source_type)
        if not removed:
            raise HTTPException(status_code=404, detail="未找到收藏记录")
        return {"removed": True}


app = create_app()


if __name__ == "__main__":  # pragma: no cover - manual execution
    import uvicorn

    uvicorn.run(
        "app.main:app",
        host=settings.server_host,
        port=settings.server_port,
        reload=settings.environment == "development",
    )
