"""
Ingest configuration with environment-specific overrides.

Supported environment files (loaded in order of precedence):
1. .env.{ENVIRONMENT} (e.g., .env.production, .env.development)
2. .env (fallback)

Every value can also be set directly as an environment variable.
"""
import os
import logging
from pathlib import Path
from typing import Optional, Literal
from pydantic_settings import BaseSettings
from pydantic import ConfigDict

# Get the project root directory (3 levels up from this file)
PROJECT_ROOT = Path(__file__).parent.parent.parent

logger = logging.getLogger(__name__)

HOUR_MS = 60 * 60 * 1000


class Settings(BaseSettings):
    """Ingest settings with environment-specific configuration."""

    # Environment
    ENVIRONMENT: Literal["development", "production", "test"] = "development"

    model_config = ConfigDict(
        env_file=str(PROJECT_ROOT / ".env"),
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore"  # Allow extra fields from .env
    )

    # Application
    APP_NAME: str = "StatLine Ingest"
    APP_VERSION: str = "1.0.0"

    # Database
    DATABASE_URL: str = "sqlite:///./statline.db"
    SQL_ECHO: bool = False

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = True

    # Outbound HTTP
    USER_AGENT: str = "StatLine/1.0 (NFL Stats Aggregator; +https://checkstatline.com)"
    HTTP_TIMEOUT_SECONDS: float = 30.0

    # ESPN (fast JSON API)
    ESPN_REQUESTS_PER_SECOND: float = 5.0
    ESPN_MAX_CONCURRENT: int = 3
    ESPN_BASE_BACKOFF_MS: int = 1000
    ESPN_MAX_BACKOFF_MS: int = 30000

    # Pro Football Reference (scraped archive, be polite)
    PFR_REQUESTS_PER_SECOND: float = 1.0
    PFR_MAX_CONCURRENT: int = 1
    PFR_BASE_BACKOFF_MS: int = 2000
    PFR_MAX_BACKOFF_MS: int = 60000

    LIMITER_MAX_RETRIES: int = 3

    # Response cache TTLs
    CACHE_TTL_COMPLETED_HOURS: float = 24
    CACHE_TTL_IN_PROGRESS_HOURS: float = 1
    CACHE_TTL_HISTORICAL_HOURS: float = 24 * 7
    CACHE_TTL_PLAYER_INFO_HOURS: float = 12
    CACHE_TTL_SCHEDULE_HOURS: float = 6
    USE_STALE_CACHE_ON_ERROR: bool = True

    # Composite adapter
    COMPOSITE_ENABLE_FALLBACK: bool = True
    COMPOSITE_ENABLE_MERGE: bool = False
    CURRENT_SEASON_OVERRIDE: Optional[int] = None

    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.ENVIRONMENT == "production"

    def is_test(self) -> bool:
        return self.ENVIRONMENT == "test"

    def rate_limit_config(self, source: str):
        """
        Build the rate limit configuration for a source.

        Args:
            source: Source name ('espn' or 'pfr')

        Returns:
            RateLimitConfig for the source

        Raises:
            ValueError: If the source has no configured limits
        """
        from statline.services.ingest.rate_limiter import RateLimitConfig

        prefix = source.upper()
        if not hasattr(self, f"{prefix}_REQUESTS_PER_SECOND"):
            raise ValueError(f"No rate limit configured for source '{source}'")

        return RateLimitConfig(
            requests_per_second=getattr(self, f"{prefix}_REQUESTS_PER_SECOND"),
            max_concurrent=getattr(self, f"{prefix}_MAX_CONCURRENT"),
            base_backoff_ms=getattr(self, f"{prefix}_BASE_BACKOFF_MS"),
            max_backoff_ms=getattr(self, f"{prefix}_MAX_BACKOFF_MS"),
            max_retries=self.LIMITER_MAX_RETRIES,
        )

    def cache_ttl_ms(self, category: str) -> int:
        """
        Get the cache TTL for a content category in milliseconds.

        Args:
            category: One of 'completed', 'in_progress', 'historical',
                'player_info', 'schedule'

        Returns:
            TTL in milliseconds
        """
        hours = {
            "completed": self.CACHE_TTL_COMPLETED_HOURS,
            "in_progress": self.CACHE_TTL_IN_PROGRESS_HOURS,
            "historical": self.CACHE_TTL_HISTORICAL_HOURS,
            "player_info": self.CACHE_TTL_PLAYER_INFO_HOURS,
            "schedule": self.CACHE_TTL_SCHEDULE_HOURS,
        }
        if category not in hours:
            raise ValueError(f"Unknown cache category '{category}'")
        return int(hours[category] * HOUR_MS)


def _load_env_file() -> Path:
    """
    Load the appropriate environment file based on ENVIRONMENT variable.

    Loads in order of precedence:
    1. .env.{ENVIRONMENT} (e.g., .env.production, .env.development)
    2. .env (fallback)
    """
    environment = os.getenv("ENVIRONMENT", "development")

    env_file = PROJECT_ROOT / f".env.{environment}"
    if env_file.exists():
        logger.info(f"Loading environment from {env_file.name}")
        return env_file

    default_env = PROJECT_ROOT / ".env"
    if default_env.exists():
        logger.info(f"Loading environment from .env (environment: {environment})")
        return default_env

    logger.debug(f"No environment file found for '{environment}' (checked .env.{environment}, .env)")
    return default_env


_env_file = _load_env_file()


class _SettingsWithEnvFile(Settings):
    model_config = ConfigDict(
        env_file=str(_env_file),
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore"
    )


settings = _SettingsWithEnvFile()
