"""Application configuration models."""

from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import Field, HttpUrl, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/119.0.0.0 Safari/537.36"
)


class Settings(BaseSettings):
    """Settings loaded from environment variables or a .env file."""

    app_name: str = Field(default="DramaTracker", alias="APP_NAME")
    server_host: str = Field(default="0.0.0.0", alias="HOST")
    server_port: int = Field(default=3000, alias="PORT")

    tmdb_api_key: str | None = Field(default=None, alias="TMDB_API_KEY")
    tmdb_api_url: HttpUrl = Field(
        default="https://api.themoviedb.org/3", alias="TMDB_API_URL"
    )
    tmdb_site_url: HttpUrl = Field(
        default="https://www.themoviedb.org", alias="TMDB_SITE_URL"
    )
    tmdb_image_base_url: str = Field(
        default="https://image.tmdb.org/t/p/w500", alias="TMDB_IMAGE_BASE_URL"
    )
    tmdb_language: str = Field(default="zh-CN", alias="TMDB_LANGUAGE")

    douban_search_url: HttpUrl = Field(
        default="https://www.douban.com/search", alias="DOUBAN_SEARCH_URL"
    )
    douban_base_url: HttpUrl = Field(
        default="https://movie.douban.com", alias="DOUBAN_BASE_URL"
    )
    bangumi_base_url: HttpUrl = Field(
        default="https://bgm.tv", alias="BANGUMI_BASE_URL"
    )
    maoyan_base_url: HttpUrl = Field(
        default="https://m.maoyan.com", alias="MAOYAN_BASE_URL"
    )
    maoyan_poster_base_url: str = Field(
        default="https://p0.meituan.net/movie/", alias="MAOYAN_POSTER_BASE_URL"
    )

    user_agent: str = Field(default=DEFAULT_USER_AGENT, alias="USER_AGENT")
    connect_timeout_seconds: float = Field(
        default=10.0, alias="CONNECT_TIMEOUT", gt=0, le=120
    )
    read_timeout_seconds: float = Field(
        default=10.0, alias="READ_TIMEOUT", gt=0, le=120
    )
    enrichment_concurrency: int = Field(
        default=4, alias="ENRICHMENT_CONCURRENCY", ge=1, le=32
    )

    search_cache_seconds: int = Field(
        default=300, alias="SEARCH_CACHE_TTL", ge=1
    )
    upstream_page_size: int = Field(
        default=20, alias="UPSTREAM_PAGE_SIZE", ge=1, le=100
    )
    display_page_size: int = Field(
        default=21, alias="DISPLAY_PAGE_SIZE", ge=1, le=100
    )

    database_url: str = Field(
        default="sqlite+aiosqlite:///./dramatracker.db", alias="DATABASE_URL"
    )
    database_id: str = Field(default="dramatracker", alias="DATABASE_ID")
    media_collection_id: str = Field(default="media", alias="MEDIA_COLLECTION_ID")
    media_source_collection_id: str = Field(
        default="media_source", alias="MEDIA_SOURCE_COLLECTION_ID"
    )
    collections_collection_id: str = Field(
        default="collections", alias="COLLECTIONS_COLLECTION_ID"
    )

    environment: Literal["development", "production"] = Field(
        default="development", alias="ENVIRONMENT"
    )

    @field_validator("tmdb_api_key", mode="before")
    @classmethod
    def _strip_blank_key(cls, value: object) -> object:
        """Treat blank API keys as missing."""

        if isinstance(value, str) and not value.strip():
            return None
        if isinstance(value, str):
            return value.strip()
        return value

    @field_validator("tmdb_image_base_url", "maoyan_poster_base_url")
    @classmethod
    def _require_absolute_base(cls, value: str) -> str:
        if not value.startswith(("http://", "https://")):
            raise ValueError("Image base URLs must be absolute")
        return value

    @property
    def tmdb_enabled(self) -> bool:
        """Return whether the film database adapter can be constructed."""

        return bool(self.tmdb_api_key)

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")


@lru_cache
def get_settings() -> Settings:
    """Return a cached settings instance."""

    return Settings()  # type: ignore[call-arg]


settings = get_settings()
