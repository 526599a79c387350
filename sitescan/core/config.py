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
    CRAWLER_USER_AGENT: str = "SiteScanBot/1.0 (+https://sitescan.dev/bot)"
    CRAWLER_REQUEST_TIMEOUT: float = 20.0
    CRAWLER_VERIFY_SSL: bool = True
    # Provider endpoints tried in order; "{url}" is replaced by the target URL.
    # The bare "{url}" template is a direct request.
    CRAWLER_FETCH_ENDPOINTS: list[str] = ["{url}"]
    CRAWLER_DEFAULT_MAX_PAGES: int = Field(default=50, ge=0)
    CRAWLER_DEFAULT_MAX_DEPTH: int = Field(default=3, ge=0)
    CRAWLER_DEFAULT_DELAY_MS: int = Field(default=500, ge=0)

    # Analyses kept in memory by the API
    ANALYSIS_MAX_ACTIVE_RUNS: int = Field(default=4, ge=1)
    # Finished runs beyond this count are dropped, oldest first
    ANALYSIS_MAX_RETAINED_RUNS: int = Field(default=50, ge=1)

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: Literal["json", "console"] = "json"

    @field_validator("CORS_ORIGINS", "CRAWLER_FETCH_ENDPOINTS", mode="before")
    @classmethod
    def parse_csv(cls, v: str | list) -> list:
        if isinstance(v, str):
            return [item.strip() for item in v.split(",") if item.strip()]
        return v

    @field_validator("CRAWLER_FETCH_ENDPOINTS")
    @classmethod
    def validate_endpoints(cls, v: list[str]) -> list[str]:
        if not v:
            raise ValueError("CRAWLER_FETCH_ENDPOINTS needs at least one endpoint")
        for template in v:
            if "{url}" not in template:
                raise ValueError(f"Endpoint template '{template}' must contain '{{url}}'")
        return v


@lru_cache()
def get_settings() -> Settings:
    """Cached settings instance - created once per process."""
    return Settings()
