import logging
from functools import lru_cache

from pydantic import ValidationInfo, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    # API settings
    DEBUG: bool = False
    PROJECT_NAME: str = "Matrix Sync Bridge"
    LOG_LEVEL: str = "INFO"
    ENVIRONMENT: str = "development"

    # Listener settings (TLS is terminated by the reverse proxy in front)
    HOST: str = "127.0.0.1"
    PORT: int = 8009

    # CORS settings - accepts string or list, normalized to list[str] by validator
    CORS_ORIGINS: str | list[str] = "*"

    # Upstream homeserver
    MATRIX_HOMESERVER_URL: str = "http://localhost:8008"
    MATRIX_CLIENT_API_PREFIX: str = "/_matrix/client/r0"
    SYNC_TIMEOUT_MS: int = 30000  # Server-side long-poll wait
    INITIAL_SYNC_TIMEOUT_MS: int = 0  # Baseline snapshot, no server-side wait
    UPSTREAM_CONNECT_TIMEOUT: float = 10.0  # Connect only; reads are unbounded

    # Streaming transports
    WS_SUBPROTOCOL: str = "m.json"
    WS_COMPRESSION: bool = False  # per-message-deflate
    DISCONNECT_POLL_INTERVAL: float = 1.0  # Event-stream close observer

    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
    )

    @property
    def MATRIX_CLIENT_API_URL(self) -> str:
        """Base URL for client-server API calls on the homeserver."""
        return f"{self.MATRIX_HOMESERVER_URL}/{self.MATRIX_CLIENT_API_PREFIX.strip('/')}"

    @field_validator("MATRIX_HOMESERVER_URL")
    @classmethod
    def validate_homeserver_url(cls, v: str) -> str:
        """Require an http(s) homeserver URL and strip trailing slashes.

        Args:
            v: The configured homeserver URL

        Returns:
            The URL without trailing slashes

        Raises:
            ValueError: If the URL is not http or https
        """
        v = v.strip().rstrip("/")
        if not v.startswith(("http://", "https://")):
            raise ValueError(
                f"MATRIX_HOMESERVER_URL must be an http(s) URL, got: {v!r}"
            )
        return v

    @field_validator("SYNC_TIMEOUT_MS", "INITIAL_SYNC_TIMEOUT_MS")
    @classmethod
    def validate_timeouts(cls, v: int) -> int:
        if v < 0:
            raise ValueError("Sync timeouts must be >= 0 milliseconds")
        return v

    @field_validator("DISCONNECT_POLL_INTERVAL")
    @classmethod
    def validate_poll_interval(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("DISCONNECT_POLL_INTERVAL must be positive")
        return v

    @field_validator("CORS_ORIGINS", mode="before")
    @classmethod
    def parse_cors_origins(cls, v: str | list[str]) -> list[str]:
        """Accept a comma-separated string or a list; blank entries are dropped."""
        if isinstance(v, str):
            v = v.split(",")
        if not isinstance(v, list):
            # Anything else denies all origins
            return []
        return [origin.strip() for origin in v if isinstance(origin, str) and origin.strip()]

    @field_validator("CORS_ORIGINS")
    @classmethod
    def validate_cors_in_production(cls, v: list[str], info: ValidationInfo) -> list[str]:
        # ENVIRONMENT is declared above CORS_ORIGINS, so it is already validated
        environment = str(info.data.get("ENVIRONMENT", "development")).strip().lower()
        if environment in {"production", "prod"} and "*" in v:
            raise ValueError(
                "Wildcard CORS_ORIGINS is not allowed in production. "
                "Set CORS_ORIGINS to an explicit comma-separated list."
            )
        return v


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Process-wide settings, built on first use and also served as a FastAPI dependency."""
    return Settings()


def reset_settings() -> None:
    """Drop the cached settings so the next get_settings() re-reads the environment."""
    get_settings.cache_clear()
