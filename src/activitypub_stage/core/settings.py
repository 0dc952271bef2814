"""Application settings and configuration.

This module defines all configuration options for the ActivityPub Stage
service. Settings are loaded from environment variables with sensible defaults.
Federation components never read these values at call sites; they receive a
`FederationConfig` snapshot (see `activitypub_stage.core.config`) at
construction time.
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    Settings can be overridden via environment variables or .env files.
    """

    # Application metadata
    app_name: str = Field(default="ActivityPub Stage", alias="APP_NAME")
    app_version: str = Field(default="0.1.0", alias="APP_VERSION")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    # Security and authentication
    secret_key: str = Field(alias="SECRET_KEY")
    debug: bool = Field(default=False, alias="DEBUG")
    jwt_algorithm: str = Field(default="HS256", alias="JWT_ALGORITHM")

    # Database configuration
    database_url: str = Field(default="sqlite:///./activitypub.db", alias="DATABASE_URL")
    test_database_url: str | None = Field(default=None, alias="TEST_DATABASE_URL")
    use_testing_database: bool = Field(default=False, alias="USE_TEST_DATABASE")
    sql_debug: bool = Field(default=False, alias="SQL_DEBUG")

    # Redis configuration for the shared remote key cache
    redis_url: str = Field(default="redis://localhost:6379", alias="REDIS_URL")

    # Federation identity
    federation_enabled: bool = Field(default=False, alias="FEDERATION_ENABLED")
    federation_domain: str = Field(
        default="https://api.example.com",
        alias="FEDERATION_DOMAIN",
    )
    federation_public_domain: str | None = Field(
        default=None,
        alias="FEDERATION_PUBLIC_DOMAIN",
    )
    client_url: str | None = Field(default=None, alias="CLIENT_URL")
    instance_actor_username: str = Field(default="stage", alias="INSTANCE_ACTOR_USERNAME")
    instance_actor_name: str = Field(default="ActivityPub Stage", alias="INSTANCE_ACTOR_NAME")
    provision_instance_on_startup: bool = Field(
        default=True, alias="PROVISION_INSTANCE_ON_STARTUP"
    )
    auto_accept_follows: bool = Field(default=True, alias="AUTO_ACCEPT_FOLLOWS")
    allow_private_addresses: bool = Field(default=False, alias="ALLOW_PRIVATE_ADDRESSES")

    # HTTP signature policy
    signature_enforce: bool = Field(default=True, alias="SIGNATURE_ENFORCE")
    signature_log_failures: bool = Field(default=True, alias="SIGNATURE_LOG_FAILURES")
    signature_clock_skew_seconds: int = Field(
        default=300,
        alias="SIGNATURE_CLOCK_SKEW_SECONDS",
    )

    # Remote actor key cache
    remote_key_cache_backend: str = Field(default="memory", alias="REMOTE_KEY_CACHE_BACKEND")
    remote_key_cache_ttl_seconds: int = Field(
        default=3600,
        alias="REMOTE_KEY_CACHE_TTL_SECONDS",
    )
    remote_key_cache_max_entries: int = Field(
        default=4096,
        alias="REMOTE_KEY_CACHE_MAX_ENTRIES",
    )
    remote_fetch_timeout_seconds: float = Field(
        default=5.0,
        alias="REMOTE_FETCH_TIMEOUT_SECONDS",
    )

    # Outbound delivery
    delivery_worker_enabled: bool = Field(default=True, alias="DELIVERY_WORKER_ENABLED")
    delivery_concurrency: int = Field(default=16, alias="DELIVERY_CONCURRENCY")
    delivery_timeout_seconds: float = Field(default=5.0, alias="DELIVERY_TIMEOUT_SECONDS")
    delivery_max_attempts: int = Field(default=5, alias="DELIVERY_MAX_ATTEMPTS")
    delivery_backoff_seconds: list[int] = Field(
        default=[60, 300, 1800, 7200],
        alias="DELIVERY_BACKOFF_SECONDS",
    )
    delivery_batch_size: int = Field(default=200, alias="DELIVERY_BATCH_SIZE")
    delivery_poll_interval_seconds: float = Field(
        default=2.0,
        alias="DELIVERY_POLL_INTERVAL_SECONDS",
    )
    delivery_log_retention_days: int = Field(default=7, alias="DELIVERY_LOG_RETENTION_DAYS")
    delivery_cleanup_interval_seconds: float = Field(
        default=3600.0,
        alias="DELIVERY_CLEANUP_INTERVAL_SECONDS",
    )

    # CORS configuration for web frontend access
    cors_origins: list[str] = Field(
        default=["*"],
        alias="CORS_ORIGINS",
    )

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
