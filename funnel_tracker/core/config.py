from functools import lru_cache
from typing import List

from pydantic_settings import BaseSettings, SettingsConfigDict


def _parse_allowed_origins(v: str) -> List[str]:
    """Parse comma-separated origins string; strip whitespace; keep non-empty."""
    if not v or not v.strip():
        return []
    return [o.strip() for o in v.split(",") if o.strip()]


_DEFAULT_CORS_ORIGINS = [
    "http://localhost:3000",
    "http://localhost:3001",
    "http://127.0.0.1:3000",
    "http://127.0.0.1:3001",
]


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
    )

    # Database
    DATABASE_URL: str = "postgresql://postgres:postgres@db:5432/funnel_tracker"

    # Logging
    LOG_LEVEL: str = "info"

    # CORS: comma-separated extra origins for production.
    # Default localhost origins are always included.
    ALLOWED_ORIGINS_EXTRA: str = ""

    def get_allowed_origins(self) -> List[str]:
        """Return CORS allowed origins: default localhost + ALLOWED_ORIGINS_EXTRA."""
        return _DEFAULT_CORS_ORIGINS + _parse_allowed_origins(self.ALLOWED_ORIGINS_EXTRA)

    # Tracking switches
    COOKIE_CONSENT_ENABLED: bool = True  # When off, every consent check passes
    UTM_TRACKING_ENABLED: bool = True  # When off, tracking calls are refused
    ENABLE_IP_TRACKING: bool = True
    ENABLE_USER_AGENT_TRACKING: bool = True

    # Lifetimes
    DATA_RETENTION_DAYS: int = 90
    CONSENT_EXPIRY_DAYS: int = 180  # 6 months
    SESSION_COOKIE_DAYS: int = 30

    # Analytics
    DROP_OFF_THRESHOLD: float = 30.0  # Percent of the previous step's visitors
    UTM_BREAKDOWN_LIMIT: int = 100
    UTM_FILTER_LIMIT: int = 50
    ANALYTICS_DEFAULT_PERIOD_DAYS: int = 30


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
