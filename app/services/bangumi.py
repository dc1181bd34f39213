"""Adapter for the Bangumi anime tracker (bgm.tv)."""

from __future__ import annotations

import logging
import re
from typing import Any
from urllib.parse import quote

from bs4 import BeautifulSoup, Tag

from ..errors import SourceError
from ..models import MediaRecord, MediaType, SourceType
from ..utils import clean_summary, ensure_full_url, extract_year
from .base import SourceAdapter, select_attr, select_text

logger = logging.getLogger(__name__)

RELEASE_DATE_RE = re.compile(r"^\d{4}年\d{1,2}月\d{1,2}日")
STAFF_KEYS = ("导演", "脚本", "音乐", "原作")


class BangumiAdapter(SourceAdapter):
    """Scrape anime subjects from bgm.tv."""

    source_type = SourceType.BANGUMI

    @property
    def base_url(self) -> str:
        return str(self._settings.bangumi_base_url).rstrip("/")

    def subject_url(self, source_id: str) -> str:
        return f"{self.base_url}/subject/{source_id}"

    async def search(self, keyword: str) -> list[MediaRecord]:
        url = f"{self.base_url}/subject_search/{quote(keyword, safe='')}"
        soup = await self._get_html(url, params={"cat": "2"})
        hits = self.parse_search_page(soup)
        logger.debug("Bangumi returned %d hits for %r", len(hits), keyword)
        return await self._enrich_all(hits, self._attach_summary)

    async def get_detail(self, source_id: str) -> MediaRecord | None:
        """Return a fully populated record from the subject page."""

        soup = await self._get_html(self.subject_url(source_id))
        return self._build_record(
            {
                "source_id": source_id,
                "source_url": self.subject_url(source_id),
                "media_type": MediaType.ANIME,
                **self.parse_subject_page(soup),
            }
        )

    def parse_search_page(self, soup: BeautifulSoup) -> list[dict[str, Any]]:
        hits: list[dict[str, Any]] = []
        for item in soup.select("#browserItemList .item"):
            fields = self._parse_search_item(item)
            if fields is not None:
                hits.append(fields)
        return hits

    def _parse_search_item(self, item: Tag) -> dict[str, Any] | None:
        link = item.select_one("h3 a")
        href = str(link.get("href") or "") if link is not None else ""
        source_id = href.rstrip("/").rsplit("/", 1)[-1]
        if not source_id:
            logger.debug("Bangumi item without subject link skipped")
            return None

        fields: dict[str, Any] = {
            "source_id": source_id,
            "source_url": ensure_full_url(href, self.base_url),
            "media_type": MediaType.ANIME,
            "title_zh": link.get_text(strip=True),
            "title_original": select_text(item, "h3 small.grey"),
        }

        info = select_text(item, ".info")
        if info:
            head, sep, tail = info.partition(" / ")
            if RELEASE_DATE_RE.match(info):
                fields["release_date"] = head.strip()
            if sep:
                fields["staff"] = tail.strip()
            fields["year"] = extract_year(info)

        fields["poster_url"] = ensure_full_url(select_attr(item, "src", "img.cover"), self.base_url)

        rating = select_text(item, ".rateInfo .fade", ".fade")
        fields["rating_bangumi"] = rating
        fields["rating"] = rating
        return fields

    async def _attach_summary(self, fields: dict[str, Any]) -> MediaRecord | None:
        try:
            soup = await self._get_html(self.subject_url(fields["source_id"]))
        except SourceError as exc:
            logger.warning("Bangumi summary for %s unavailable: %s", fields["source_id"], exc)
            return self._build_record(fields)
        summary = clean_summary(select_text(soup, "#subject_summary"))
        return self._build_record({**fields, "summary": summary})

    def parse_subject_page(self, soup: BeautifulSoup) -> dict[str, Any]:
        infobox = self._parse_infobox(soup)
        staff = " | ".join(
            f"{key}: {infobox[key]}" for key in STAFF_KEYS if infobox.get(key)
        )
        return {
            "title_zh": select_text(soup, "h1.nameSingle a"),
            "title_original": infobox.get("原名"),
            "release_date": infobox.get("放送开始"),
            "duration": infobox.get("话数"),
            "rating_bangumi": select_text(soup, ".global_score .number"),
            "poster_url": ensure_full_url(select_attr(soup, "src", "img.cover"), self.base_url),
            "summary": clean_summary(select_text(soup, "#subject_summary")),
            "staff": staff or None,
        }

    @staticmethod
    def _parse_infobox(soup: BeautifulSoup) -> dict[str, str]:
        entries: dict[str, str] = {}
        for line in soup.select("#infobox li"):
            text = line.get_text(" ", strip=True)
            key, sep, value = text.partition(":")
            if not sep:
                continue
            key = key.strip()
            if key and key not in entries and value.strip():
                entries[key] = value.strip()
        return entries
