"""Shared HTTP plumbing for the remote source adapters."""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Iterable, Mapping, TypeVar

import httpx
from bs4 import BeautifulSoup, Tag

from ..config import Settings
from ..errors import ParseError, TransportError
from ..models import MediaRecord, SourceType

logger = logging.getLogger(__name__)

T = TypeVar("T")


class SourceAdapter(ABC):
    """Base class for adapters turning one remote source into MediaRecords.

    Adapters are stateless apart from their injected configuration and HTTP
    client. ``search`` never raises for "no results"; it raises
    :class:`TransportError` when the source cannot be reached and
    :class:`ParseError` when the response is not recognisable at all.
    """

    source_type: SourceType

    def __init__(self, settings: Settings, http_client: httpx.AsyncClient):
        self._settings = settings
        self._client = http_client
        self._semaphore = asyncio.Semaphore(settings.enrichment_concurrency)

    @property
    def name(self) -> str:
        return self.source_type.value

    @abstractmethod
    async def search(self, keyword: str) -> list[MediaRecord]:
        """Return every record the source reports for ``keyword``."""

    def _headers(self) -> dict[str, str]:
        return {
            "User-Agent": self._settings.user_agent,
            "Accept-Language": "zh-CN,zh;q=0.9,en-US;q=0.8,en;q=0.7",
        }

    async def _get(
        self, url: str, *, params: Mapping[str, Any] | None = None
    ) -> httpx.Response:
        logger.debug("GET %s %s", url, dict(params or {}))
        try:
            response = await self._client.get(url, params=params, headers=self._headers())
        except httpx.HTTPError as exc:
            raise TransportError(self.name, f"request to {url} failed: {exc}") from exc
        if response.status_code >= 400:
            raise TransportError(
                self.name, f"{url} answered HTTP {response.status_code}"
            )
        return response

    async def _get_html(
        self, url: str, *, params: Mapping[str, Any] | None = None
    ) -> BeautifulSoup:
        response = await self._get(url, params=params)
        return self._parse_html(response.text, url)

    async def _get_json(
        self, url: str, *, params: Mapping[str, Any] | None = None
    ) -> dict[str, Any]:
        response = await self._get(url, params=params)
        return self._parse_json(response, url)

    def _parse_html(self, text: str, url: str) -> BeautifulSoup:
        stripped = text.lstrip()
        if not stripped or stripped[0] in "{[":
            raise ParseError(self.name, f"{url} did not return an HTML document")
        soup = BeautifulSoup(text, "html.parser")
        if soup.find(True) is None:
            raise ParseError(self.name, f"{url} returned markup without elements")
        return soup

    def _parse_json(self, response: httpx.Response, url: str) -> dict[str, Any]:
        try:
            payload = response.json()
        except ValueError as exc:
            raise ParseError(self.name, f"{url} did not return JSON") from exc
        if not isinstance(payload, dict):
            raise ParseError(self.name, f"{url} returned unexpected JSON structure")
        return payload

    async def _enrich_all(
        self,
        items: Iterable[T],
        enrich: Callable[[T], Awaitable[MediaRecord | None]],
    ) -> list[MediaRecord]:
        """Run ``enrich`` over ``items`` concurrently, preserving order.

        Items whose enrichment returns ``None`` are dropped.
        """

        async def _bounded(item: T) -> MediaRecord | None:
            async with self._semaphore:
                return await enrich(item)

        results = await asyncio.gather(*(_bounded(item) for item in items))
        return [record for record in results if record is not None]

    def _build_record(self, fields: dict[str, Any]) -> MediaRecord | None:
        """Validate ``fields`` into a record, skipping the item on failure."""

        try:
            return MediaRecord.model_validate({"source_type": self.source_type, **fields})
        except ValueError as exc:
            logger.warning("Skipping %s item %s: %s", self.name, fields.get("source_id"), exc)
            return None


def select_text(node: Tag | BeautifulSoup, *selectors: str) -> str | None:
    """Return the stripped text of the first selector that matches.

    Selectors are tried in order: the primary one first, then fallbacks.
    """

    for selector in selectors:
        element = node.select_one(selector)
        if element is None:
            continue
        text = element.get_text(" ", strip=True)
        if text:
            return text
    return None


def select_attr(node: Tag | BeautifulSoup, attr: str, *selectors: str) -> str | None:
    """Return an attribute value from the first selector that has it."""

    for selector in selectors:
        element = node.select_one(selector)
        if element is None:
            continue
        value = element.get(attr)
        if isinstance(value, list):
            value = " ".join(value)
        if value and str(value).strip():
            return str(value).strip()
    return None
