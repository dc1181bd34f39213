"""Adapter for the Douban movie site."""

from __future__ import annotations

import logging
import re
from typing import Any

from bs4 import BeautifulSoup, Tag

from ..errors import SourceError
from ..models import MediaRecord, MediaType, SourceType
from ..utils import clean_staff, clean_summary, ensure_full_url, extract_year, format_staff
from .base import SourceAdapter, select_attr, select_text

logger = logging.getLogger(__name__)

SUBJECT_ID_RE = re.compile(r"\d+(?=,)")
EPISODES_RE = re.compile(r"集数:\s*(\d+)")


class DoubanAdapter(SourceAdapter):
    """Scrape Douban search results and enrich them from subject pages."""

    source_type = SourceType.DOUBAN

    @property
    def base_url(self) -> str:
        return str(self._settings.douban_base_url).rstrip("/")

    def subject_url(self, source_id: str) -> str:
        return f"{self.base_url}/subject/{source_id}/"

    async def search(self, keyword: str) -> list[MediaRecord]:
        soup = await self._get_html(
            str(self._settings.douban_search_url).rstrip("/"),
            params={"cat": "1002", "q": keyword},
        )
        hits = self.parse_search_page(soup)
        logger.debug("Douban returned %d movie hits for %r", len(hits), keyword)
        return await self._enrich_all(hits, self._enrich)

    async def get_detail(self, source_id: str) -> MediaRecord | None:
        """Return the record described by a subject page."""

        soup = await self._get_html(self.subject_url(source_id))
        fields = self.parse_subject_page(soup)
        return self._build_record(
            {
                "source_id": source_id,
                "source_url": self.subject_url(source_id),
                "media_type": MediaType.MOVIE,
                **fields,
            }
        )

    def parse_search_page(self, soup: BeautifulSoup) -> list[dict[str, Any]]:
        items = soup.select(".result-list .result") or soup.select(".search-result .result")
        hits: list[dict[str, Any]] = []
        for item in items:
            fields = self._parse_search_item(item)
            if fields is not None:
                hits.append(fields)
        return hits

    def _parse_search_item(self, item: Tag) -> dict[str, Any] | None:
        link = item.select_one("h3 a")
        if link is None:
            return None
        onclick = str(link.get("onclick") or "")
        if "movie" not in onclick:
            return None
        match = SUBJECT_ID_RE.search(onclick)
        if match is None:
            logger.debug("Douban result without subject id: %s", onclick)
            return None
        source_id = match.group(0)

        title = link.get_text(strip=True)
        if title.startswith("《") and "》" in title:
            title = title[1 : title.index("》")]

        fields: dict[str, Any] = {
            "source_id": source_id,
            "source_url": self.subject_url(source_id),
            "media_type": MediaType.MOVIE,
            "title_zh": title,
        }
        cast = select_text(item, ".subject-cast")
        if cast:
            fields["staff"] = clean_staff(cast)
            fields["year"] = extract_year(cast)
        return fields

    async def _enrich(self, fields: dict[str, Any]) -> MediaRecord | None:
        try:
            soup = await self._get_html(fields["source_url"])
        except SourceError as exc:
            logger.warning("Douban detail for %s unavailable: %s", fields["source_id"], exc)
            return self._build_record(fields)
        detail = self.parse_subject_page(soup)
        merged = dict(fields)
        for name, value in detail.items():
            if value is None:
                continue
            if name in ("title_zh", "year") and merged.get(name):
                continue
            merged[name] = value
        return self._build_record(merged)

    def parse_subject_page(self, soup: BeautifulSoup) -> dict[str, Any]:
        """Extract the fields a subject page offers; misses stay ``None``."""

        fields: dict[str, Any] = {}

        full_title = select_text(soup, "h1 span[property='v:itemreviewed']", "h1 span")
        if full_title:
            localized, _, original = full_title.partition(" ")
            fields["title_zh"] = localized.strip()
            fields["title_original"] = original.strip() or None

        rating = select_text(soup, "strong[property='v:average']", ".rating_num")
        fields["rating_douban"] = rating
        fields["rating"] = rating

        fields["summary"] = clean_summary(
            select_text(soup, "span[property='v:summary']", "#link-report span")
        )

        release = select_text(soup, "span[property='v:initialReleaseDate']")
        if release:
            fields["release_date"] = release.split("(", 1)[0].strip()

        fields["duration"] = select_text(soup, "span[property='v:runtime']")

        poster = select_attr(soup, "src", "img[rel='v:image']", "#mainpic img")
        fields["poster_url"] = ensure_full_url(poster, self.base_url)

        directors = [a.get_text(strip=True) for a in soup.select("a[rel='v:directedBy']")]
        actors = [a.get_text(strip=True) for a in soup.select("a[rel='v:starring']")]
        fields["staff"] = format_staff(directors, actors)

        genres = [span.get_text(strip=True) for span in soup.select("span[property='v:genre']")]
        fields["genres"] = genres or None

        info = soup.select_one("#info")
        if info is not None:
            episodes = EPISODES_RE.search(info.get_text(" ", strip=True))
            if episodes:
                fields["media_type"] = MediaType.TV
                fields["duration"] = episodes.group(1)

        return fields
