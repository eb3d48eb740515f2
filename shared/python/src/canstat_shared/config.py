"""
config.py — pydantic-settings Settings class.

All environment variables for canstat are declared here. The pipeline
reads `settings` as the default when building its explicit FetcherConfig.

Usage:
    from canstat_shared.config import settings
    print(settings.cache_path)
"""

from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _find_dotenv() -> Path | None:
    """Walk up from CWD to find the nearest .env file."""
    current = Path.cwd()
    for parent in [current, *current.parents]:
        candidate = parent / ".env"
        if candidate.is_file():
            return candidate
    return None


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="CANSTAT_",
        env_file=_find_dotenv(),
        extra="ignore",
    )

    # -------------------------------------------------------------------------
    # Data sources
    # -------------------------------------------------------------------------
    statcan_base_url: str = "https://www150.statcan.gc.ca"
    statcan_wds_url: str = "https://www150.statcan.gc.ca/t1/wds/rest"
    census_base_url: str = "https://censusmapper.ca/api/v1"
    census_api_key: str = ""
    http_timeout: float = 120.0

    # -------------------------------------------------------------------------
    # Cache
    # -------------------------------------------------------------------------
    cache_path: str = "./data/cache"

    # -------------------------------------------------------------------------
    # Logging
    # -------------------------------------------------------------------------
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"
    log_format: Literal["json", "console"] = "console"

    @field_validator(
        "statcan_base_url", "statcan_wds_url", "census_base_url", mode="before"
    )
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/") if isinstance(v, str) else v


# ---------------------------------------------------------------------------
# Module-level singleton
# ---------------------------------------------------------------------------
settings = Settings()
