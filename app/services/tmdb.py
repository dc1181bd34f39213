"""Adapter for The Movie Database (TMDB) JSON API."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from ..config import Settings
from ..errors import ParseError, SourceError
from ..models import Category, MediaRecord, MediaType, SourceType, UpstreamPage
from ..utils import format_staff
from .base import SourceAdapter

logger = logging.getLogger(__name__)

SEARCHABLE_TYPES = ("movie", "tv")
TOP_RATED_ENDPOINTS = {
    Category.MOVIES: ("/movie/top_rated", MediaType.MOVIE),
    Category.TV: ("/tv/top_rated", MediaType.TV),
}


class TMDBAdapter(SourceAdapter):
    """Search and browse TMDB.

    The HTTP client is expected to carry the API base URL, so every request
    uses a path relative to it.
    """

    source_type = SourceType.TMDB

    def __init__(self, settings: Settings, http_client: httpx.AsyncClient):
        if not settings.tmdb_api_key:
            raise ValueError("TMDB API key is required when initialising TMDBAdapter")
        super().__init__(settings, http_client)

    def _params(self, **extra: Any) -> dict[str, Any]:
        return {
            "api_key": self._settings.tmdb_api_key,
            "language": self._settings.tmdb_language,
            **extra,
        }

    async def search(self, keyword: str) -> list[MediaRecord]:
        payload = await self._get_json(
            "/search/multi",
            params=self._params(query=keyword, include_adult="false"),
        )
        results = self._results(payload, "/search/multi")
        hits = [
            item
            for item in results
            if isinstance(item, dict)
            and item.get("media_type") in SEARCHABLE_TYPES
            and item.get("id") is not None
        ]
        logger.debug("TMDB returned %d movie/tv hits for %r", len(hits), keyword)
        return await self._enrich_all(hits, self._with_details)

    async def get_detail(self, media_type: MediaType, source_id: str) -> MediaRecord | None:
        kind = "movie" if media_type is MediaType.MOVIE else "tv"
        details = await self._get_json(
            f"/{kind}/{source_id}",
            params=self._params(append_to_response="credits"),
        )
        return self._build_record(self.to_fields(details, kind))

    async def fetch_page(self, category: Category, page: int) -> UpstreamPage:
        """Return one page of the top rated listing for ``category``."""

        if category not in TOP_RATED_ENDPOINTS:
            raise ValueError(f"Category {category.value} has no upstream listing")
        endpoint, media_type = TOP_RATED_ENDPOINTS[category]
        payload = await self._get_json(endpoint, params=self._params(page=page))
        results = self._results(payload, endpoint)
        items: list[MediaRecord] = []
        for raw in results:
            if not isinstance(raw, dict):
                continue
            record = self._build_record(self.to_fields(raw, media_type.value))
            if record is not None:
                items.append(record)
        try:
            total_pages = int(payload.get("total_pages") or 0)
        except (TypeError, ValueError):
            total_pages = 0
        logger.debug(
            "TMDB %s page %d: %d items of %d pages",
            category.value,
            page,
            len(items),
            total_pages,
        )
        return UpstreamPage(items=items, total_pages=total_pages)

    async def _with_details(self, hit: dict[str, Any]) -> MediaRecord | None:
        kind = hit["media_type"]
        try:
            details = await self._get_json(
                f"/{kind}/{hit['id']}",
                params=self._params(append_to_response="credits"),
            )
        except SourceError as exc:
            logger.warning("TMDB details for %s/%s unavailable: %s", kind, hit["id"], exc)
            details = hit
        return self._build_record(self.to_fields(details, kind))

    def _results(self, payload: dict[str, Any], endpoint: str) -> list[Any]:
        results = payload.get("results", [])
        if not isinstance(results, list):
            raise ParseError(self.name, f"{endpoint} results is not a list")
        return results

    def to_fields(self, data: dict[str, Any], kind: str) -> dict[str, Any]:
        """Map a TMDB movie or tv object onto record fields."""

        source_id = data.get("id")
        fields: dict[str, Any] = {
            "source_id": source_id,
            "source_url": f"{str(self._settings.tmdb_site_url).rstrip('/')}/{kind}/{source_id}",
            "media_type": MediaType.MOVIE if kind == "movie" else MediaType.TV,
            "title_zh": data.get("title") or data.get("name"),
            "title_original": data.get("original_title") or data.get("original_name"),
            "release_date": data.get("release_date") or data.get("first_air_date"),
            "summary": data.get("overview"),
            "rating_tmdb": data.get("vote_average"),
            "poster_url": self._poster_url(data.get("poster_path")),
        }

        if kind == "movie":
            runtime = data.get("runtime")
            if isinstance(runtime, int) and runtime > 0:
                fields["duration"] = f"{runtime}分钟"
        else:
            episodes = data.get("number_of_episodes")
            if isinstance(episodes, int) and episodes > 0:
                fields["duration"] = str(episodes)

        genres = data.get("genres")
        if isinstance(genres, list):
            fields["genres"] = [
                genre.get("name") for genre in genres if isinstance(genre, dict)
            ]

        credits = data.get("credits")
        if isinstance(credits, dict):
            crew = credits.get("crew") or []
            cast = credits.get("cast") or []
            directors = [
                member.get("name", "")
                for member in crew
                if isinstance(member, dict) and member.get("job") == "Director"
            ]
            actors = [member.get("name", "") for member in cast if isinstance(member, dict)]
            fields["staff"] = format_staff(directors, actors)
        return fields

    def _poster_url(self, path: Any) -> str | None:
        if not isinstance(path, str) or not path or path == "null":
            return None
        if path.startswith("http"):
            return path
        return f"{self._settings.tmdb_image_base_url.rstrip('/')}/{path.lstrip('/')}"
