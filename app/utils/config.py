"""
Configuration management for the news feed engine.
Handles environment variables, remote service settings, and feed tuning.
"""

from typing import Optional
from pydantic_settings import BaseSettings
from pydantic import Field


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # API Configuration
    API_HOST: str = Field(default="0.0.0.0", description="API host")
    API_PORT: int = Field(default=8000, description="API port")
    DEBUG: bool = Field(default=False, description="Debug mode")

    # Remote News Service
    NEWS_API_URL: str = Field(
        default="https://twosides-backend.onrender.com",
        description="Base URL of the news aggregation service"
    )
    USER_AGENT: str = Field(
        default="TwoSidesFeed/1.0",
        description="User agent sent to the news service"
    )
    REQUEST_TIMEOUT: float = Field(default=10.0, gt=0, description="Timeout for feed requests in seconds")
    STATS_TIMEOUT: float = Field(default=5.0, gt=0, description="Timeout for the stats request in seconds")
    ANALYZE_TIMEOUT: float = Field(default=30.0, gt=0, description="Timeout for summary requests in seconds")

    # Cold-start Retry
    RETRY_MAX_ATTEMPTS: int = Field(default=3, ge=1, description="Attempts against the primary feed on 5xx")
    RETRY_DELAY: float = Field(default=10.0, ge=0, description="Delay between cold-start attempts in seconds")

    # Pagination and Filtering
    ARTICLES_PAGE_SIZE: int = Field(default=20, ge=1, le=100, description="Articles per page")
    STORIES_PAGE_SIZE: int = Field(default=10, ge=1, le=100, description="Story groups per page")
    SEARCH_DEBOUNCE: float = Field(default=0.3, ge=0, description="Quiet period for search input in seconds")

    # Enrichment
    ENRICH_SUMMARIES: bool = Field(default=True, description="Generate summaries for articles lacking one")
    ENRICHMENT_DELAY: float = Field(default=0.5, ge=0, description="Delay between summary requests in seconds")
    MIN_ENRICHMENT_CHARS: int = Field(default=40, ge=0, description="Minimum text length worth summarizing")

    # Story Grouping
    SERVER_STORY_GROUPING: bool = Field(
        default=True,
        description="Use server-side story groups; falls back to per-source grouping when off"
    )

    # Preferences
    PREFERENCES_PATH: str = Field(
        default="~/.twosides/preferences.json",
        description="File storing the user's theme preference"
    )
    DEFAULT_THEME: str = Field(default="light", description="Theme used when nothing is stored")

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


# Global settings instance
settings = Settings()


def get_service_config() -> dict:
    """Get remote news service configuration."""
    return {
        "base_url": settings.NEWS_API_URL,
        "user_agent": settings.USER_AGENT,
        "timeout": settings.REQUEST_TIMEOUT,
        "stats_timeout": settings.STATS_TIMEOUT,
        "analyze_timeout": settings.ANALYZE_TIMEOUT,
    }


def get_retry_config() -> dict:
    """Get cold-start retry configuration."""
    return {
        "max_attempts": settings.RETRY_MAX_ATTEMPTS,
        "delay": settings.RETRY_DELAY,
    }


def get_feed_config() -> dict:
    """Get pagination, filtering, and enrichment configuration."""
    return {
        "articles_page_size": settings.ARTICLES_PAGE_SIZE,
        "stories_page_size": settings.STORIES_PAGE_SIZE,
        "search_debounce": settings.SEARCH_DEBOUNCE,
        "enrich_summaries": settings.ENRICH_SUMMARIES,
        "enrichment_delay": settings.ENRICHMENT_DELAY,
        "min_enrichment_chars": settings.MIN_ENRICHMENT_CHARS,
        "server_story_grouping": settings.SERVER_STORY_GROUPING,
    }


def get_preferences_config(path: Optional[str] = None) -> dict:
    """Get user preference storage configuration."""
    return {
        "path": path or settings.PREFERENCES_PATH,
        "default_theme": settings.DEFAULT_THEME,
    }
