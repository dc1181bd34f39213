"""Utility helpers shared by the source adapters and services."""

from __future__ import annotations

import asyncio
import math
import re
import threading
from typing import Any, Awaitable, Callable, TypeVar

T = TypeVar("T")

YEAR_RE = re.compile(r"\d{4}")
WIDE_WHITESPACE_RE = re.compile(r"\s{4,}")
ORIGINAL_NAME_RE = re.compile(r"原名:.*?(?=/\s|$)")


def ensure_full_url(url: str | None, base_url: str | None) -> str | None:
    """Return ``url`` as an absolute URL.

    Protocol-relative URLs (``//host/path``) get an ``https:`` prefix and
    relative paths are joined onto ``base_url``. Without a base URL a
    relative path is returned unchanged.
    """

    if not url:
        return None
    url = url.strip()
    if not url:
        return None
    if url.startswith(("http://", "https://")):
        return url
    if url.startswith("//"):
        return f"https:{url}"
    if not base_url:
        return url
    return f"{base_url.rstrip('/')}/{url.lstrip('/')}"


def extract_year(text: str | None) -> str | None:
    """Return the first run of four digits in ``text``."""

    if not text:
        return None
    match = YEAR_RE.search(text)
    return match.group(0) if match else None


def parse_rating(value: Any) -> float | None:
    """Parse a score, returning ``None`` when no real rating is present."""

    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    else:
        text = str(value).strip()
        if not text:
            return None
        try:
            number = float(text)
        except ValueError:
            return None
    if math.isnan(number) or number < 0:
        return None
    return number


def clean_summary(text: str | None) -> str | None:
    """Tidy a synopsis scraped from HTML."""

    if not text:
        return None
    cleaned = text.replace("(展开全部)", "").replace("&nbsp", "\n")
    cleaned = cleaned.replace("\r\n", "\n")
    cleaned = WIDE_WHITESPACE_RE.sub("\n", cleaned).strip()
    return cleaned or None


def clean_staff(text: str | None) -> str | None:
    """Drop the ``原名:`` segment from a cast line, keeping the names."""

    if not text:
        return None
    cleaned = ORIGINAL_NAME_RE.sub("", text).strip()
    if cleaned.startswith("/ "):
        cleaned = cleaned[2:].strip()
    return cleaned or None


def format_staff(directors: list[str], actors: list[str], *, actor_limit: int = 5) -> str | None:
    """Render credits as ``导演: a, b | 主演: c, d``."""

    parts: list[str] = []
    directors = [name for name in directors if name]
    actors = [name for name in actors if name][:actor_limit]
    if directors:
        parts.append("导演: " + ", ".join(directors))
    if actors:
        parts.append("主演: " + ", ".join(actors))
    return " | ".join(parts) or None


def call_blocking(
    factory: Callable[[], Awaitable[T]],
    *,
    loop: asyncio.AbstractEventLoop | None = None,
    timeout: float | None = None,
) -> T:
    """Run an awaitable to completion for a caller that must block.

    When ``loop`` is running in another thread the work is submitted there
    and the caller waits on a one-shot latch. Any exception raised by the
    awaitable propagates to the caller unchanged.
    """

    async def _runner() -> T:
        return await factory()

    if loop is None or not loop.is_running():
        return asyncio.run(_runner())

    try:
        current = asyncio.get_running_loop()
    except RuntimeError:
        current = None
    if current is loop:
        raise RuntimeError("call_blocking cannot wait on its own event loop")

    latch = threading.Event()
    future = asyncio.run_coroutine_threadsafe(_runner(), loop)
    future.add_done_callback(lambda _: latch.set())
    if not latch.wait(timeout):
        future.cancel()
        raise TimeoutError("Timed out waiting for the event loop")
    return future.result()
