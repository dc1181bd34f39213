"""Pydantic models describing normalized media records."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    PrivateAttr,
    field_validator,
    model_validator,
)

from .utils import ensure_full_url, extract_year, parse_rating

ABSENT_RATING = -1.0


class SourceType(str, Enum):
    """Remote sources a record can originate from."""

    DOUBAN = "douban"
    BANGUMI = "bgm"
    TMDB = "tmdb"
    MAOYAN = "maoyan"


class MediaType(str, Enum):
    MOVIE = "movie"
    TV = "tv"
    ANIME = "anime"


class Category(str, Enum):
    """Browse categories; ``ALL`` is derived from the other two."""

    ALL = "all"
    MOVIES = "movies"
    TV = "tv"


_TEXT_FIELDS = (
    "source_url",
    "title_zh",
    "title_original",
    "release_date",
    "year",
    "duration",
    "summary",
    "staff",
)
_RATING_FIELDS = ("rating", "rating_douban", "rating_bangumi", "rating_tmdb")


class MediaRecord(BaseModel):
    """A single media entry in the shape every source adapter produces.

    Records are immutable once built. Identity is the pair
    ``(source_type, source_id)``: a record refreshed from the same source
    position compares equal to the stale one even when other fields differ.
    The only mutable piece is the runtime ``collected`` flag.
    """

    model_config = ConfigDict(frozen=True)

    source_type: SourceType
    source_id: str = Field(min_length=1)
    source_url: str | None = None
    media_type: MediaType
    title_zh: str | None = None
    title_original: str | None = None
    release_date: str | None = None
    year: str | None = None
    duration: str | None = None
    poster_url: str | None = None
    summary: str | None = None
    staff: str | None = None
    rating: float = ABSENT_RATING
    rating_douban: float = ABSENT_RATING
    rating_bangumi: float = ABSENT_RATING
    rating_tmdb: float = ABSENT_RATING
    genres: tuple[str, ...] = ()

    _collected: bool = PrivateAttr(default=False)

    @model_validator(mode="before")
    @classmethod
    def _derive_year(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        if data.get("year") or not data.get("release_date"):
            return data
        year = extract_year(str(data["release_date"]))
        if year is None:
            return data
        return {**data, "year": year}

    @field_validator("source_id", mode="before")
    @classmethod
    def _coerce_source_id(cls, value: object) -> object:
        if isinstance(value, int):
            return str(value)
        if isinstance(value, str):
            return value.strip()
        return value

    @field_validator(*_TEXT_FIELDS, mode="before")
    @classmethod
    def _blank_to_none(cls, value: object) -> object:
        if value is None:
            return None
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            value = str(value)
        if isinstance(value, str):
            cleaned = value.strip()
            if not cleaned or cleaned == "null":
                return None
            return cleaned
        return value

    @field_validator(*_RATING_FIELDS, mode="before")
    @classmethod
    def _normalise_rating(cls, value: object) -> float:
        parsed = parse_rating(value)
        return ABSENT_RATING if parsed is None else parsed

    @field_validator("poster_url", mode="before")
    @classmethod
    def _absolute_poster(cls, value: object) -> str | None:
        if not isinstance(value, str):
            return None
        # Relative paths need the source's base URL, which adapters apply.
        absolute = ensure_full_url(value.strip(), None)
        if not absolute or not absolute.startswith(("http://", "https://")):
            return None
        return absolute

    @field_validator("genres", mode="before")
    @classmethod
    def _split_genres(cls, value: object) -> object:
        if value is None:
            return ()
        if isinstance(value, str):
            value = value.split(",")
        if isinstance(value, (list, tuple)):
            return tuple(
                str(part).strip() for part in value if part and str(part).strip()
            )
        return value

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, MediaRecord):
            return NotImplemented
        return (self.source_type, self.source_id) == (other.source_type, other.source_id)

    def __hash__(self) -> int:
        return hash((self.source_type, self.source_id))

    @property
    def collected(self) -> bool:
        return self._collected

    def set_collected(self, value: bool) -> None:
        """Toggle the runtime collection flag; identity is unaffected."""

        self._collected = bool(value)

    @property
    def identity(self) -> tuple[SourceType, str]:
        return self.source_type, self.source_id

    def display_title(self) -> str:
        """Return the localized title, falling back to the original one."""

        for candidate in (self.title_zh, self.title_original):
            if candidate:
                return candidate
        return f"{self.source_type.value}:{self.source_id}"

    def duration_label(self) -> str | None:
        """Render ``duration`` with the unit implied by the media type."""

        if not self.duration:
            return None
        if not self.duration.isdigit():
            return self.duration
        if self.media_type is MediaType.MOVIE:
            return f"{self.duration}分钟"
        return f"{self.duration}集"

    def has_rating(self, name: str = "rating") -> bool:
        return getattr(self, name) != ABSENT_RATING

    def fill_missing(self, **values: Any) -> "MediaRecord":
        """Return a copy where absent fields take the supplied values.

        Fields that already carry data are kept. Values that are themselves
        absent are ignored, so partial enrichment never erases anything.
        """

        current = self.model_dump()
        for name, value in values.items():
            if name not in type(self).model_fields:
                continue
            if value is None or value == "" or value == () or value == ABSENT_RATING:
                continue
            existing = current.get(name)
            if existing in (None, "", (), ABSENT_RATING):
                current[name] = value
        record = type(self).model_validate(current)
        record.set_collected(self.collected)
        return record

    def to_payload(self) -> dict[str, Any]:
        """Return a JSON-friendly view including the collected flag."""

        payload = self.model_dump(mode="json")
        payload["collected"] = self.collected
        payload["duration_label"] = self.duration_label()
        return payload


@dataclass(slots=True)
class UpstreamPage:
    """One page of a provider's browse listing."""

    items: list[MediaRecord] = field(default_factory=list)
    total_pages: int = 0
