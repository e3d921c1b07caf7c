# src/core/config.py
from typing import FrozenSet, Optional
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings
import logging

from src.core.exceptions import config_error

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """Runtime settings for the admission control core"""
    APP_NAME: str = "Admission Gate"
    DEBUG: bool = False

    # Super admin identity (required, checked at startup)
    SUPER_ADMIN_ID: Optional[str] = Field(default=None)

    # Shared secret the bot transport sends with every event (required)
    TRANSPORT_SECRET: Optional[str] = Field(default=None)

    # Global rate limiting (per client ip, every route)
    GLOBAL_RATE_LIMIT_WINDOW_MS: int = Field(default=900_000, gt=0)
    GLOBAL_RATE_LIMIT_MAX: int = Field(default=200, gt=0)

    # Bot-level rate limiting (per user id)
    RATE_LIMIT_WINDOW_MS: int = Field(default=60_000, gt=0)
    RATE_LIMIT_MAX: int = Field(default=30, gt=0)

    # API-level rate limiting (per client ip)
    API_RATE_LIMIT_WINDOW_MS: int = Field(default=900_000, gt=0)
    API_RATE_LIMIT_MAX: int = Field(default=100, gt=0)
    API_RATE_LIMIT_ADMIN_BYPASS: bool = True

    # Comma separated proxy addresses whose X-Forwarded-For is believed
    TRUSTED_PROXIES: str = ""

    # Session storage
    SESSION_TTL_SECONDS: int = Field(default=3600, gt=0)
    CACHE_BACKEND_URL: Optional[str] = Field(default=None)
    CACHE_TIMEOUT_SECONDS: float = Field(default=2.0, gt=0)

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_DIR: str = "logs"

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "case_sensitive": False,
        "extra": "ignore"
    }

    @field_validator("SUPER_ADMIN_ID", "TRANSPORT_SECRET")
    @classmethod
    def strip_credential(cls, value: Optional[str]) -> Optional[str]:
        # Env files often carry stray whitespace; the gate compares exactly
        return value.strip() if value is not None else None

    @property
    def trusted_proxies(self) -> FrozenSet[str]:
        return frozenset(ip.strip() for ip in self.TRUSTED_PROXIES.split(",") if ip.strip())


def validate_required_settings(settings: Settings) -> Settings:
    """
    Fail fast on configuration that must not run degraded.

    Raises:
        ConfigurationError: If SUPER_ADMIN_ID or TRANSPORT_SECRET is missing or blank
    """
    for name in ("SUPER_ADMIN_ID", "TRANSPORT_SECRET"):
        if not getattr(settings, name):
            logger.error(f"Missing required environment variable: {name}")
            raise config_error(f"{name} must be set", component="settings")

    if not settings.CACHE_BACKEND_URL:
        logger.warning("CACHE_BACKEND_URL not set - sessions are kept in process memory only")

    return settings


def load_settings(**overrides) -> Settings:
    """Build settings from the environment (plus overrides) and validate them"""
    return validate_required_settings(Settings(**overrides))
