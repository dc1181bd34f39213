"""Adapter for the Maoyan box-office feed."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from ..errors import ParseError, SourceError
from ..models import MediaRecord, MediaType, SourceType
from ..utils import format_staff
from .base import SourceAdapter

logger = logging.getLogger(__name__)


class MaoyanAdapter(SourceAdapter):
    """Read the now-showing and coming-soon listings from Maoyan.

    The feed offers no keyword search, so :meth:`search` filters both
    listings by title instead.
    """

    source_type = SourceType.MAOYAN

    @property
    def base_url(self) -> str:
        return str(self._settings.maoyan_base_url).rstrip("/")

    async def now_showing(self) -> list[MediaRecord]:
        url = f"{self.base_url}/ajax/movieOnInfoList"
        payload = await self._get_json(url)
        movies = self._listing(payload, "movieList", url)
        return await self._enrich_all(movies, self._with_summary)

    async def coming_soon(self) -> list[MediaRecord]:
        url = f"{self.base_url}/ajax/comingList"
        payload = await self._get_json(url, params={"ci": 1, "token": "", "limit": 10})
        movies = self._listing(payload, "coming", url)
        return await self._enrich_all(movies, self._with_summary)

    async def get_detail(self, movie_id: str) -> MediaRecord | None:
        detail = await self._fetch_detail(movie_id)
        if detail is None:
            return None
        return self._build_record(self.to_fields(detail))

    async def search(self, keyword: str) -> list[MediaRecord]:
        needle = keyword.strip().casefold()
        listings = await asyncio.gather(
            self.now_showing(), self.coming_soon(), return_exceptions=True
        )
        failures = [result for result in listings if isinstance(result, BaseException)]
        if len(failures) == len(listings):
            raise failures[0]
        for failure in failures:
            logger.warning("Maoyan listing unavailable during search: %s", failure)

        matches: list[MediaRecord] = []
        seen: set[MediaRecord] = set()
        for listing in listings:
            if isinstance(listing, BaseException):
                continue
            for record in listing:
                titles = (record.title_zh or "", record.title_original or "")
                if record in seen or not any(needle in title.casefold() for title in titles):
                    continue
                seen.add(record)
                matches.append(record)
        return matches

    def _listing(self, payload: dict[str, Any], key: str, url: str) -> list[dict[str, Any]]:
        movies = payload.get(key)
        if movies is None:
            logger.debug("Maoyan response from %s has no %s", url, key)
            return []
        if not isinstance(movies, list):
            raise ParseError(self.name, f"{url} field {key} is not a list")
        return [movie for movie in movies if isinstance(movie, dict) and movie.get("id")]

    async def _fetch_detail(self, movie_id: Any) -> dict[str, Any] | None:
        url = f"{self.base_url}/ajax/detailmovie"
        payload = await self._get_json(url, params={"movieId": movie_id})
        detail = payload.get("detailMovie")
        return detail if isinstance(detail, dict) else None

    async def _with_summary(self, movie: dict[str, Any]) -> MediaRecord | None:
        fields = self.to_fields(movie)
        try:
            detail = await self._fetch_detail(movie["id"])
        except SourceError as exc:
            logger.warning("Maoyan detail for %s unavailable: %s", movie["id"], exc)
            detail = None
        if detail:
            fields["summary"] = detail.get("dra")
            if not fields.get("title_original"):
                fields["title_original"] = detail.get("enm")
            if not fields.get("genres"):
                fields["genres"] = detail.get("cat")
        return self._build_record(fields)

    def to_fields(self, movie: dict[str, Any]) -> dict[str, Any]:
        """Map a Maoyan movie object onto record fields."""

        source_id = movie.get("id")
        star = movie.get("star")
        actors = star.split(",") if isinstance(star, str) else []
        poster = movie.get("img")
        if isinstance(poster, str) and poster and not poster.startswith(("http", "//")):
            poster = f"{self._settings.maoyan_poster_base_url.rstrip('/')}/{poster.lstrip('/')}"
        elif isinstance(poster, str) and poster.startswith("//"):
            poster = f"https:{poster}"
        return {
            "source_id": source_id,
            "source_url": f"{self.base_url}/movie/{source_id}",
            "media_type": MediaType.MOVIE,
            "title_zh": movie.get("nm"),
            "title_original": movie.get("enm"),
            "rating": movie.get("sc"),
            "poster_url": poster,
            "staff": format_staff([], [actor.strip() for actor in actors]),
            "duration": movie.get("dur"),
            "release_date": movie.get("rt"),
            "genres": movie.get("cat"),
            "summary": movie.get("dra"),
        }
