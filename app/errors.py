"""Exception hierarchy shared by adapters, services and the HTTP surface."""

from __future__ import annotations


class DramaTrackerError(Exception):
    """Base class for every error raised deliberately by the package."""

    user_message = "操作失败，请稍后重试"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.user_message)


class SourceError(DramaTrackerError):
    """A single remote source could not produce a usable answer."""

    def __init__(self, source: str, message: str) -> None:
        super().__init__(f"{source}: {message}")
        self.source = source


class TransportError(SourceError):
    """Connection failure, timeout or non-success HTTP status."""

    user_message = "网络请求失败，请检查网络后重试"


class ParseError(SourceError):
    """The response body did not have the expected shape at all."""

    user_message = "数据解析失败，请稍后重试"


class AggregateFailure(DramaTrackerError):
    """No selected source produced a usable result for a search."""

    user_message = "搜索失败，请稍后重试"

    def __init__(self, message: str, errors: list[SourceError] | None = None) -> None:
        super().__init__(message)
        self.errors = list(errors or [])


class UserInputError(DramaTrackerError, ValueError):
    """Invalid caller input, rejected before any network access."""

    user_message = "输入无效"


class PageLoadError(DramaTrackerError):
    """Backfilling a browse category failed; cached pages are untouched."""

    user_message = "加载失败，请稍后重试"
