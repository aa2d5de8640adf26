"""Chat Responder configuration using Pydantic Settings.

Provides centralized configuration for the AI response service including:
- Secrets (database URL, database service key, completion API key)
- Completion defaults (model, temperature, max_tokens)
- Retry policy for the completion API
- HTTP pool and timeout settings
- Database pool settings
- Logging and CORS

Configuration is loaded from environment variables and .env files. A
single Settings instance is built per process and passed explicitly to
the components that need it.
"""
from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from chat_responder.errors import ConfigurationError

# Env var names of the secrets the request pipeline cannot run without.
REQUIRED_SECRETS: tuple[str, ...] = (
    "DATABASE_URL",
    "DATABASE_SERVICE_KEY",
    "OPENAI_API_KEY",
)


class Settings(BaseSettings):
    """Core service configuration for chat-responder.

    Settings are grouped by category:
    - Secrets: database URL, privileged database credential, OpenAI key
    - Completion: endpoint, default model/temperature/max_tokens
    - Retry: attempts and exponential backoff schedule
    - HTTP: connection pool and timeouts
    - Database: pool sizing, table bootstrap
    - Service: CORS origins, log level and format

    Example:
        >>> settings = Settings(openai_api_key="sk-test")
        >>> settings.default_model
        'gpt-4'
    """
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="",
        case_sensitive=False,
        extra="ignore",
    )

    # Secrets
    database_url: Optional[str] = Field(default=None, description="SQLAlchemy async database URL")
    database_service_key: Optional[str] = Field(default=None, description="Privileged database credential (password)")
    openai_api_key: Optional[str] = Field(default=None, description="Completion API bearer credential")

    # Completion API
    openai_base_url: str = Field(default="https://api.openai.com/v1", description="Completion API base URL")
    default_model: str = Field(default="gpt-4", description="Model used when the request names none or an unknown one")
    default_temperature: float = Field(default=0.7, description="Sampling temperature when unspecified")
    default_max_tokens: int = Field(default=1000, description="Max completion tokens when unspecified")
    title_model: str = Field(default="gpt-3.5-turbo", description="Cheap model for chat titles")
    title_temperature: float = Field(default=0.3, description="Temperature for chat titles")
    title_max_tokens: int = Field(default=20, description="Token budget for chat titles")
    title_max_attempts: int = Field(default=1, ge=1, description="Attempts for the title call (no backoff when 1)")
    title_timeout: float = Field(default=10.0, gt=0.0, description="Per-request timeout for the title call (seconds)")

    # Retry policy (rate limits and network failures)
    retry_max_attempts: int = Field(default=3, ge=1, description="Total attempts per completion call")
    retry_initial_delay: float = Field(default=1.0, ge=0.0, description="Delay before the first retry (seconds)")
    retry_multiplier: float = Field(default=2.0, ge=1.0, description="Backoff growth factor")
    retry_max_delay: float = Field(default=10.0, ge=0.0, description="Upper bound for a single backoff sleep")

    # HTTP client
    http_max_connections: int = Field(default=100)
    http_max_keepalive: int = Field(default=20)
    http_timeout_connect: float = Field(default=5.0)
    http_timeout_read: float = Field(default=120.0)
    http_timeout_write: float = Field(default=30.0)
    http_timeout_pool: float = Field(default=10.0)

    # Database
    sql_echo: bool = Field(default=False)
    db_pool_size: int = Field(default=5)
    db_max_overflow: int = Field(default=10)
    db_pool_timeout: int = Field(default=30)
    db_pool_recycle: int = Field(default=3600)
    db_create_tables: bool = Field(default=True, description="Create missing tables at startup")

    # Service
    cors_origins: str = Field(default="*", description="Comma-separated allowed origins")
    log_level: str = Field(default="INFO")
    log_format: str = Field(default="json", description="'json' or 'console'")

    def missing_secrets(self) -> list[str]:
        """Return the env var names of required secrets that are unset or blank."""
        values = {
            "DATABASE_URL": self.database_url,
            "DATABASE_SERVICE_KEY": self.database_service_key,
            "OPENAI_API_KEY": self.openai_api_key,
        }
        return [name for name in REQUIRED_SECRETS if not (values[name] or "").strip()]

    def require_secrets(self) -> None:
        """Raise ConfigurationError if any required secret is missing."""
        missing = self.missing_secrets()
        if missing:
            raise ConfigurationError(missing)

    def get_cors_origins(self) -> list[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]


@lru_cache()
def get_settings() -> Settings:
    """Get cached process-wide settings instance.

    Note:
        To reload settings (e.g., after env changes), call
        get_settings.cache_clear() before calling get_settings() again.
    """
    return Settings()
