"""Category browsing that re-chunks upstream pages into display pages."""

from __future__ import annotations

import asyncio
import logging
import math
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Sequence, TypeVar

from ..errors import PageLoadError, UserInputError
from ..models import Category, MediaRecord, UpstreamPage

logger = logging.getLogger(__name__)

T = TypeVar("T")

PageFetcher = Callable[[Category, int], Awaitable[UpstreamPage]]

SOURCE_CATEGORIES = (Category.MOVIES, Category.TV)


def chunk_pages(items: Sequence[T], size: int) -> list[tuple[T, ...]]:
    """Split ``items`` into consecutive ``size``-long pages; the last may be short."""

    if size <= 0:
        raise ValueError("size must be positive")
    return [tuple(items[start : start + size]) for start in range(0, len(items), size)]


def page_window(current: int, total: int, max_buttons: int = 5) -> list[int | None]:
    """Return the page numbers to offer for navigation.

    The first and last pages are always present; ``None`` marks a gap.
    """

    if total <= 0:
        return []
    if total <= max_buttons:
        return list(range(1, total + 1))
    start = max(1, current - max_buttons // 2)
    end = min(total, start + max_buttons - 1)
    if end - start + 1 < max_buttons:
        start = max(1, end - max_buttons + 1)

    numbers: list[int | None] = [1]
    if start > 2:
        numbers.append(None)
    numbers.extend(range(max(2, start), min(end, total - 1) + 1))
    if end < total - 1:
        numbers.append(None)
    numbers.append(total)
    return numbers


@dataclass(frozen=True, slots=True)
class CategoryView:
    """Read-only snapshot of one category's navigation state."""

    category: Category
    current_page: int
    total_pages: int
    is_loading: bool
    is_last_page: bool
    no_more_upstream: bool

    @property
    def has_previous(self) -> bool:
        return self.current_page > 1

    @property
    def has_next(self) -> bool:
        return not self.is_last_page and self.current_page < self.total_pages

    def page_numbers(self, max_buttons: int = 5) -> list[int | None]:
        return page_window(self.current_page, self.total_pages, max_buttons)


@dataclass(slots=True)
class _CategoryState:
    current_page: int = 1
    total_pages: int = 0
    started: bool = False
    upstream_page: int = 0
    upstream_total: int = 0
    no_more_upstream: bool = False
    accumulated: list[MediaRecord] = field(default_factory=list)
    buffer: list[MediaRecord] = field(default_factory=list)
    pages: dict[int, tuple[MediaRecord, ...]] = field(default_factory=dict)
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)


class CategoryPager:
    """Serve fixed-size display pages for the browse categories.

    The upstream provider pages in ``upstream_page_size`` items while the
    display uses ``display_page_size``. Items are accumulated per category,
    sliced into display pages and cached, so a page that has been built is
    never fetched again. ``Category.ALL`` is not fetched on its own: it is
    the movies list followed by the TV list, re-chunked whenever either
    grows.
    """

    def __init__(
        self,
        fetch_page: PageFetcher,
        *,
        upstream_page_size: int = 20,
        display_page_size: int = 21,
    ) -> None:
        if upstream_page_size <= 0 or display_page_size <= 0:
            raise ValueError("Page sizes must be positive")
        self._fetch_page = fetch_page
        self._upstream_size = upstream_page_size
        self._display_size = display_page_size
        self._states: dict[Category, _CategoryState] = {
            category: _CategoryState() for category in Category
        }
        self._current = Category.ALL
        self._is_loading = False
        self._is_last_page = False

    @property
    def current_category(self) -> Category:
        return self._current

    @property
    def display_page_size(self) -> int:
        return self._display_size

    def view(self, category: Category | str | None = None) -> CategoryView:
        category = self._current if category is None else Category(category)
        state = self._states[category]
        active = category is self._current
        return CategoryView(
            category=category,
            current_page=state.current_page,
            total_pages=state.total_pages,
            is_loading=self._is_loading if active else False,
            is_last_page=self._is_last_page if active else False,
            no_more_upstream=state.no_more_upstream,
        )

    def switch_category(self, category: Category | str) -> CategoryView:
        """Make ``category`` active, restoring where it was left."""

        self._current = Category(category)
        self._is_loading = False
        self._is_last_page = False
        logger.debug("Switched browse category to %s", self._current.value)
        return self.view()

    def get_cached_page(self, category: Category | str, page: int) -> list[MediaRecord] | None:
        """Return a page without fetching, or ``None`` when it is not ready.

        A short page is only considered ready once upstream is exhausted,
        since more items may still complete it.
        """

        state = self._states[Category(category)]
        cached = state.pages.get(page)
        if cached is None:
            return None
        if len(cached) < self._display_size and not state.no_more_upstream:
            return None
        return list(cached)

    async def load_initial(self, category: Category | str | None = None) -> list[MediaRecord]:
        """Populate a category's first display page.

        For ``Category.ALL`` the movies and TV listings are populated
        concurrently; a failure in either leaves that side empty.
        """

        category = self._current if category is None else Category(category)
        self._current = category
        if category is Category.ALL:
            self._is_loading = True
            try:
                await self._start_sources()
            finally:
                self._is_loading = False
            if not self._states[Category.ALL].started:
                logger.warning("No browse source could be loaded; the next request retries")
                return []
        return await self.load_page(category, 1)

    async def load_page(self, category: Category | str, page: int) -> list[MediaRecord]:
        """Return display page ``page``, backfilling from upstream as needed.

        Raises :class:`PageLoadError` when the upstream fetch fails; pages
        cached earlier stay available.
        """

        if page <= 0:
            raise UserInputError("页码必须大于0")
        category = Category(category)
        state = self._states[category]
        self._current = category

        cached = self.get_cached_page(category, page)
        if cached is not None:
            logger.debug("Serving cached %s page %d", category.value, page)
            self._settle(category, page)
            return cached

        if state.started and page > state.total_pages and self._total_known(category):
            logger.debug(
                "%s page %d is past the last page %d",
                category.value,
                page,
                state.total_pages,
            )
            self._is_last_page = True
            return []

        self._is_loading = True
        try:
            await self._fill(category, page * self._display_size)
        except PageLoadError:
            raise
        except Exception as exc:
            logger.exception("Loading %s page %d failed", category.value, page)
            raise PageLoadError(f"Loading {category.value} page {page} failed: {exc}") from exc
        finally:
            self._is_loading = False

        records = list(state.pages.get(page, ()))
        if not records:
            self._is_last_page = True
            return []
        self._settle(category, page)
        return records

    def _settle(self, category: Category, page: int) -> None:
        state = self._states[category]
        state.current_page = page
        self._is_last_page = page >= state.total_pages and self._total_known(category)

    def _total_known(self, category: Category) -> bool:
        """Return whether ``total_pages`` is final rather than a lower bound."""

        if category is Category.ALL:
            return all(self._total_known(source) for source in SOURCE_CATEGORIES)
        state = self._states[category]
        return state.no_more_upstream or state.upstream_total > 0

    async def _fill(self, category: Category, needed: int) -> None:
        if category is Category.ALL:
            await self._fill_all(needed)
            return
        state = self._states[category]
        async with state.lock:
            try:
                while (
                    not state.started
                    or len(state.accumulated) < needed
                    and not state.no_more_upstream
                ):
                    await self._fetch_next(category, state)
            finally:
                self._populate(state)
                self._rebuild_all()

    async def _fill_all(self, needed: int) -> None:
        combined = self._states[Category.ALL]
        async with combined.lock:
            if not combined.started:
                await self._start_sources()
                if not combined.started:
                    raise PageLoadError("No browse source could be loaded")
            while len(combined.accumulated) < needed and not combined.no_more_upstream:
                pending = [
                    category
                    for category in SOURCE_CATEGORIES
                    if not self._states[category].no_more_upstream
                ]
                if not pending:
                    break
                outcomes = await asyncio.gather(
                    *(self._advance(category) for category in pending),
                    return_exceptions=True,
                )
                failures = [
                    (category, outcome)
                    for category, outcome in zip(pending, outcomes)
                    if isinstance(outcome, BaseException)
                ]
                for category, failure in failures:
                    logger.warning("Backfilling %s failed: %s", category.value, failure)
                if len(failures) < len(pending):
                    continue
                if len(combined.accumulated) > needed - self._display_size:
                    # The requested page is partly filled; serve what is there.
                    break
                raise PageLoadError(f"Every source failed: {failures[0][1]}")

    async def _start_sources(self) -> None:
        async def _start(category: Category) -> None:
            state = self._states[category]
            async with state.lock:
                if state.started:
                    return
                try:
                    while (
                        not state.started
                        or len(state.buffer) < self._display_size
                        and not state.no_more_upstream
                    ):
                        await self._fetch_next(category, state)
                finally:
                    self._populate(state)

        outcomes = await asyncio.gather(
            *(_start(category) for category in SOURCE_CATEGORIES),
            return_exceptions=True,
        )
        for category, outcome in zip(SOURCE_CATEGORIES, outcomes):
            if isinstance(outcome, BaseException):
                logger.warning("Initial load of %s failed: %s", category.value, outcome)
        self._rebuild_all()

    async def _advance(self, category: Category) -> None:
        state = self._states[category]
        async with state.lock:
            try:
                await self._fetch_next(category, state)
            finally:
                self._populate(state)
                self._rebuild_all()

    async def _fetch_next(self, category: Category, state: _CategoryState) -> None:
        """Fetch the next upstream page into ``state``; the caller holds the lock."""

        next_page = state.upstream_page + 1
        if state.started and state.upstream_total and next_page > state.upstream_total:
            state.no_more_upstream = True
            self._update_total(state)
            return

        result = await self._fetch_page(category, next_page)
        state.started = True
        state.upstream_page = next_page
        if result.total_pages > 0:
            state.upstream_total = result.total_pages
        if not result.items:
            state.no_more_upstream = True
        else:
            state.buffer.extend(result.items)
            state.accumulated.extend(result.items)
        if state.upstream_total and next_page >= state.upstream_total:
            state.no_more_upstream = True
        self._update_total(state)
        logger.debug(
            "Fetched %s upstream page %d: %d items, %d accumulated",
            category.value,
            next_page,
            len(result.items),
            len(state.accumulated),
        )

    def _expected_items(self, state: _CategoryState) -> int:
        if state.no_more_upstream or not state.upstream_total:
            return len(state.accumulated)
        return max(state.upstream_total * self._upstream_size, len(state.accumulated))

    def _update_total(self, state: _CategoryState) -> None:
        state.total_pages = math.ceil(self._expected_items(state) / self._display_size)

    def _populate(self, state: _CategoryState) -> None:
        for number, chunk in enumerate(chunk_pages(state.accumulated, self._display_size), 1):
            if state.pages.get(number) != chunk:
                state.pages[number] = chunk
        state.buffer.clear()

    def _rebuild_all(self) -> None:
        combined = self._states[Category.ALL]
        sources = [self._states[category] for category in SOURCE_CATEGORIES]
        combined.accumulated = [record for state in sources for record in state.accumulated]
        combined.started = combined.started or any(state.started for state in sources)
        combined.no_more_upstream = all(state.no_more_upstream for state in sources)
        expected = sum(self._expected_items(state) for state in sources)
        combined.total_pages = math.ceil(expected / self._display_size)
        self._populate(combined)
