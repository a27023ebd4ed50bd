"""Application settings and configuration.

This module defines all configuration options for the Chorus Messaging service.
Settings are loaded from environment variables with sensible defaults.
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    Settings can be overridden via environment variables or .env files.
    """

    # Application metadata
    app_name: str = Field(default="Chorus Messaging", alias="APP_NAME")
    app_version: str = Field(default="0.1.0", alias="APP_VERSION")

    # Security and authentication
    secret_key: str = Field(alias="SECRET_KEY")
    debug: bool = Field(default=False, alias="DEBUG")
    jwt_algorithm: str = Field(default="HS256", alias="JWT_ALGORITHM")
    access_token_expire_minutes: int = Field(
        default=60 * 24 * 30,
        alias="ACCESS_TOKEN_EXPIRE_MINUTES",
    )

    # Database configuration
    database_url: str = Field(default="sqlite:///./chorus_messaging.db", alias="DATABASE_URL")
    test_database_url: str | None = Field(default=None, alias="TEST_DATABASE_URL")
    use_testing_database: bool = Field(default=False, alias="USE_TEST_DATABASE")
    sql_debug: bool = Field(default=False, alias="SQL_DEBUG")

    # Transient store failures are retried with exponential backoff
    store_max_retries: int = Field(default=3, alias="STORE_MAX_RETRIES")
    store_retry_backoff_seconds: float = Field(default=0.05, alias="STORE_RETRY_BACKOFF_SECONDS")

    # Redis configuration for typing indicators and send throttling
    redis_url: str = Field(default="redis://localhost:6379", alias="REDIS_URL")
    typing_ttl_seconds: int = Field(default=8, alias="TYPING_TTL_SECONDS")
    send_rate_limit_per_minute: int = Field(default=20, alias="SEND_RATE_LIMIT_PER_MINUTE")

    # Message and conversation limits
    message_max_length: int = Field(default=10_000, alias="MESSAGE_MAX_LENGTH")
    max_attachments: int = Field(default=10, alias="MAX_ATTACHMENTS")
    max_attachment_bytes: int = Field(default=25 * 1024 * 1024, alias="MAX_ATTACHMENT_BYTES")
    group_name_max_length: int = Field(default=50, alias="GROUP_NAME_MAX_LENGTH")
    max_group_size: int = Field(default=256, alias="MAX_GROUP_SIZE")
    preview_max_length: int = Field(default=100, alias="PREVIEW_MAX_LENGTH")
    page_size_max: int = Field(default=100, alias="PAGE_SIZE_MAX")

    # Ephemeral message sweeper
    sweeper_enabled: bool = Field(default=True, alias="SWEEPER_ENABLED")
    sweeper_interval_seconds: float = Field(default=120.0, alias="SWEEPER_INTERVAL_SECONDS")
    sweeper_batch_size: int = Field(default=200, alias="SWEEPER_BATCH_SIZE")

    # Collaborators
    attachment_dir: str = Field(default="./attachments", alias="ATTACHMENT_DIR")
    attachment_base_url: str = Field(default="/attachments", alias="ATTACHMENT_BASE_URL")
    notification_webhook_url: str | None = Field(default=None, alias="NOTIFICATION_WEBHOOK_URL")
    notification_timeout_seconds: float = Field(
        default=5.0,
        alias="NOTIFICATION_TIMEOUT_SECONDS",
    )

    # CORS configuration for web frontend access
    cors_origins: list[str] = Field(default=["*"], alias="CORS_ORIGINS")
    cors_allow_credentials: bool = Field(default=True, alias="CORS_ALLOW_CREDENTIALS")
    cors_allow_methods: list[str] = Field(
        default=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
        alias="CORS_ALLOW_METHODS",
    )
    cors_allow_headers: list[str] = Field(default=["*"], alias="CORS_ALLOW_HEADERS")

    model_config = SettingsConfigDict(
        env_file=".env",
        validate_assignment=True,
        extra="ignore",
    )

    @property
    def database_url_sync(self) -> str:
        """Return a sync-compatible database URL for tooling.

        Converts asyncpg URLs to psycopg for synchronous database operations
        like Alembic migrations.
        """
        url = self.effective_database_url
        if url.startswith("postgresql+asyncpg"):
            return url.replace("postgresql+asyncpg", "postgresql+psycopg", 1)
        return url

    @property
    def effective_database_url(self) -> str:
        """Return the database URL respecting testing overrides."""
        if self.use_testing_database and self.test_database_url:
            return self.test_database_url
        return self.database_url


settings = Settings()  # type: ignore[call-arg]
