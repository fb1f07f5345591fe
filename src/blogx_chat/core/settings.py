"""Application settings and configuration.

This module defines all configuration options for the BlogX Chat service.
Settings are loaded from environment variables with sensible defaults.
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    Settings can be overridden via environment variables or .env files.
    """

    # Application metadata
    app_name: str = Field(default="BlogX Chat", alias="APP_NAME")
    app_version: str = Field(default="0.1.0", alias="APP_VERSION")
    debug: bool = Field(default=False, alias="DEBUG")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    # Security and authentication
    secret_key: str = Field(alias="SECRET_KEY")
    jwt_algorithm: str = Field(default="HS256", alias="JWT_ALGORITHM")
    access_token_expire_minutes: int = Field(
        default=60 * 24 * 7,
        alias="ACCESS_TOKEN_EXPIRE_MINUTES",
    )

    # Database configuration
    database_url: str = Field(default="sqlite:///./blogx.db", alias="DATABASE_URL")
    test_database_url: str | None = Field(default=None, alias="TEST_DATABASE_URL")
    use_testing_database: bool = Field(default=False, alias="USE_TEST_DATABASE")
    sql_debug: bool = Field(default=False, alias="SQL_DEBUG")

    # Realtime relay
    relay_ws_path: str = Field(default="/ws", alias="RELAY_WS_PATH")
    relay_ping_interval_seconds: float = Field(
        default=30.0,
        alias="RELAY_PING_INTERVAL_SECONDS",
    )
    # When enabled the identity event must carry a JWT for the claimed user.
    relay_require_token: bool = Field(default=False, alias="RELAY_REQUIRE_TOKEN")
    allow_self_messages: bool = Field(default=False, alias="ALLOW_SELF_MESSAGES")

    # Message store limits
    message_max_length: int = Field(default=5000, alias="MESSAGE_MAX_LENGTH")
    message_page_size: int = Field(default=50, alias="MESSAGE_PAGE_SIZE")
    message_page_max: int = Field(default=200, alias="MESSAGE_PAGE_MAX")
    shared_excerpt_length: int = Field(default=150, alias="SHARED_EXCERPT_LENGTH")

    # Client-side channel policy
    client_reconnect_delay_seconds: float = Field(
        default=3.0,
        alias="CLIENT_RECONNECT_DELAY_SECONDS",
    )
    client_handshake_timeout_seconds: float = Field(
        default=10.0,
        alias="CLIENT_HANDSHAKE_TIMEOUT_SECONDS",
    )
    client_typing_idle_seconds: float = Field(
        default=2.0,
        alias="CLIENT_TYPING_IDLE_SECONDS",
    )

    # CORS configuration for web frontend access
    cors_origins: list[str] = Field(
        default=["*"],
        alias="CORS_ORIGINS",
    )
    cors_allow_credentials: bool = Field(default=True, alias="CORS_ALLOW_CREDENTIALS")
    cors_allow_methods: list[str] = Field(
        default=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        alias="CORS_ALLOW_METHODS",
    )
    cors_allow_headers: list[str] = Field(
        default=["*"],
        alias="CORS_ALLOW_HEADERS",
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        validate_assignment=True,
        extra="ignore",
    )

    @property
    def effective_database_url(self) -> str:
        """Return the database URL respecting testing overrides."""
        if self.use_testing_database and self.test_database_url:
            return self.test_database_url
        return self.database_url


settings = Settings()  # type: ignore[call-arg]
