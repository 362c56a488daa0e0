import logging
import os
from functools import lru_cache

from pydantic import AliasChoices, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

DEFAULT_TOKEN_URL = "https://openapi.ctrader.com/apps/token"
DEFAULT_API_BASE_URL = "https://api.spotware.com"

_KNOWN_BRIDGE_ENV_KEYS = {
    "BRIDGE_AUTH_TOKEN",
    "BRIDGE_MAX_POSITIONS",
    "BRIDGE_MAX_TRADES",
    "BRIDGE_MAX_STRESS_EVENTS",
    "BRIDGE_FRESHNESS_WINDOW_SECONDS",
}


def _warn_unknown_prefixed_env(prefix: str, known_keys: set[str]) -> None:
    unknown = sorted(key for key in os.environ if key.startswith(prefix) and key not in known_keys)
    if unknown:
        logger.warning("Unknown %s env vars ignored: %s", prefix, ", ".join(unknown))


class Settings(BaseSettings):
    """Application settings sourced from environment variables."""

    client_id: str | None = Field(default=None, validation_alias=AliasChoices("client_id", "CLIENT_ID"))
    client_secret: str | None = Field(
        default=None, validation_alias=AliasChoices("client_secret", "CLIENT_SECRET")
    )
    access_token: str | None = Field(default=None, validation_alias=AliasChoices("access_token", "ACCESS_TOKEN"))
    refresh_token: str | None = Field(
        default=None, validation_alias=AliasChoices("refresh_token", "REFRESH_TOKEN")
    )
    token_url: str = Field(
        default=DEFAULT_TOKEN_URL,
        validation_alias=AliasChoices("token_url", "TOKEN_URL", "ctrader_token_url", "CTRADER_TOKEN_URL"),
    )
    api_base_url: str = Field(
        default=DEFAULT_API_BASE_URL,
        validation_alias=AliasChoices("api_base_url", "API_BASE_URL", "spotware_api_url", "SPOTWARE_API_URL"),
    )
    upstream_timeout_seconds: float = Field(
        default=10.0,
        gt=0,
        validation_alias=AliasChoices("upstream_timeout_seconds", "UPSTREAM_TIMEOUT_SECONDS"),
    )
    token_refresh_margin_seconds: int = Field(
        default=300,
        ge=0,
        validation_alias=AliasChoices("token_refresh_margin_seconds", "TOKEN_REFRESH_MARGIN_SECONDS"),
    )
    token_initial_ttl_seconds: int = Field(
        default=3600,
        ge=0,
        validation_alias=AliasChoices("token_initial_ttl_seconds", "TOKEN_INITIAL_TTL_SECONDS"),
    )

    bridge_auth_token: str | None = Field(
        default=None,
        validation_alias=AliasChoices("bridge_auth_token", "BRIDGE_AUTH_TOKEN", "cbot_auth_token", "CBOT_AUTH_TOKEN"),
    )
    max_positions: int = Field(
        default=1000,
        ge=1,
        validation_alias=AliasChoices("max_positions", "BRIDGE_MAX_POSITIONS", "MAX_POSITIONS"),
    )
    max_trades: int = Field(
        default=5000,
        ge=1,
        validation_alias=AliasChoices("max_trades", "BRIDGE_MAX_TRADES", "MAX_TRADES"),
    )
    max_stress_events: int = Field(
        default=500,
        ge=1,
        validation_alias=AliasChoices("max_stress_events", "BRIDGE_MAX_STRESS_EVENTS", "MAX_STRESS_EVENTS"),
    )
    freshness_window_seconds: int = Field(
        default=300,
        ge=1,
        validation_alias=AliasChoices(
            "freshness_window_seconds", "BRIDGE_FRESHNESS_WINDOW_SECONDS", "FRESHNESS_WINDOW_SECONDS"
        ),
    )

    host: str = Field(default="0.0.0.0", validation_alias=AliasChoices("host", "HOST"))
    port: int = Field(default=3000, ge=1, le=65535, validation_alias=AliasChoices("port", "PORT"))
    log_level: str = Field(default="INFO", validation_alias=AliasChoices("log_level", "LOG_LEVEL"))

    @field_validator("token_url", "api_base_url")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        return value.strip().rstrip("/")

    @field_validator("log_level")
    @classmethod
    def _normalize_log_level(cls, value: str) -> str:
        level = value.strip().upper()
        if level not in logging.getLevelNamesMapping():
            logger.warning("LOG_LEVEL=%s is unknown; falling back to INFO", value)
            return "INFO"
        return level

    @property
    def has_oauth_credentials(self) -> bool:
        return bool(self.client_id and self.client_secret and self.access_token)

    @model_validator(mode="after")
    def _warn_on_partial_config(self) -> "Settings":
        if not self.has_oauth_credentials:
            logger.warning("Missing OAuth settings; set CLIENT_ID, CLIENT_SECRET and ACCESS_TOKEN for the broker proxy")
        if self.access_token and not self.refresh_token:
            logger.warning("REFRESH_TOKEN is not set; the access token cannot be renewed once it expires")
        _warn_unknown_prefixed_env("BRIDGE_", _KNOWN_BRIDGE_ENV_KEYS)
        return self

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", env_prefix="", extra="ignore")


@lru_cache
def get_settings() -> Settings:
    """Cached accessor so we only load settings once per process."""
    return Settings()
