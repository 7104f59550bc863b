"""
Configuration system with environment-based settings.
Uses pydantic-settings for validation and type safety.
"""

from functools import lru_cache
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # Application
    APP_VERSION: str = "1.0.0"
    ENV: Literal["development", "staging", "production"] = "development"
    DEBUG: bool = False

    # CORS
    CORS_ORIGINS: list[str] = ["http://localhost:3000"]

    # Crawler
    CRAWLER_USER_AGENT: str = "SEOCrawlerBot/1.0 (+https://seocrawler.dev/bot)"
    CRAWLER_REQUEST_TIMEOUT: float = 10.0
    CRAWLER_DEFAULT_MAX_PAGES: int = 50
    CRAWLER_DEFAULT_MAX_DEPTH: int = 3
    CRAWLER_DEFAULT_CONCURRENCY: int = 5
    CRAWLER_RESPECT_ROBOTS: bool = True
    CRAWLER_MAX_PAGES_LIMIT: int = 5_000
    CRAWLER_MAX_CONCURRENCY: int = 50

    # HEAD probes for external links and image sizes
    CRAWLER_RESOURCE_CHECKS: bool = True
    CRAWLER_MAX_RESOURCE_CHECKS: int = 10
    CRAWLER_LARGE_IMAGE_BYTES: int = 200 * 1024

    # Report
    REPORT_MAX_FINDINGS: int = Field(200, ge=1)

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: Literal["json", "console"] = "json"

    @field_validator("CORS_ORIGINS", mode="before")
    @classmethod
    def parse_cors(cls, v: str | list) -> list:
        if isinstance(v, str):
            return [origin.strip() for origin in v.split(",")]
        return v


@lru_cache()
def get_settings() -> Settings:
    """Cached settings instance - created once per process."""
    return Settings()
