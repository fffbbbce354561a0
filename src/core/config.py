"""Application configuration using pydantic-settings."""
from functools import lru_cache
from urllib.parse import urlparse

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

GOOGLE_AUTHORIZE_URL = "https://accounts.google.com/o/oauth2/v2/auth"
GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"  # noqa: S105
GOOGLE_JWKS_URL = "https://www.googleapis.com/oauth2/v3/certs"
GOOGLE_ISSUER = "https://accounts.google.com"


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    # Database
    database_url: str
    db_pool_size: int = Field(default=5, validation_alias="DB_POOL_SIZE")
    db_max_overflow: int = Field(default=10, validation_alias="DB_MAX_OVERFLOW")

    # Public base URL of this application - the OAuth callback is derived from it
    app_url: str = Field(default="http://localhost:8000", validation_alias="APP_URL")

    # Development mode - skips the identity provider and signs in a local user
    dev_mode: bool = Field(default=False, validation_alias="DEV_MODE")

    # CORS - comma-separated list of allowed origins (stored as string, parsed via property)
    cors_origins_str: str = Field(
        default="http://localhost:8000",
        validation_alias="CORS_ORIGINS",
    )

    # Identity provider (OAuth 2.0 authorization code flow, Google by default)
    oauth_provider: str = Field(default="google", validation_alias="OAUTH_PROVIDER")
    oauth_client_id: str = Field(default="", validation_alias="OAUTH_CLIENT_ID")
    oauth_client_secret: str = Field(default="", validation_alias="OAUTH_CLIENT_SECRET")
    oauth_authorize_url: str = Field(
        default=GOOGLE_AUTHORIZE_URL, validation_alias="OAUTH_AUTHORIZE_URL",
    )
    oauth_token_url: str = Field(default=GOOGLE_TOKEN_URL, validation_alias="OAUTH_TOKEN_URL")
    oauth_jwks_url: str = Field(default=GOOGLE_JWKS_URL, validation_alias="OAUTH_JWKS_URL")
    oauth_issuer: str = Field(default=GOOGLE_ISSUER, validation_alias="OAUTH_ISSUER")
    oauth_scopes: str = Field(default="openid email profile", validation_alias="OAUTH_SCOPES")
    oauth_timeout_seconds: float = Field(default=10.0, validation_alias="OAUTH_TIMEOUT_SECONDS")

    # Sessions
    session_cookie_name: str = Field(default="bm_session", validation_alias="SESSION_COOKIE_NAME")
    session_cookie_secure: bool = Field(default=False, validation_alias="SESSION_COOKIE_SECURE")
    session_ttl_hours: int = Field(default=24 * 14, validation_alias="SESSION_TTL_HOURS")

    # Redis - change notification bus
    redis_url: str = Field(default="redis://localhost:6379", validation_alias="REDIS_URL")
    redis_enabled: bool = Field(default=True, validation_alias="REDIS_ENABLED")
    redis_pool_size: int = Field(default=20, validation_alias="REDIS_POOL_SIZE")

    log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")

    @model_validator(mode="after")
    def validate_dev_mode_security(self) -> "Settings":
        """
        Prevent DEV_MODE from being enabled with a production database.

        DEV_MODE signs anyone in as the local development user, so it must only be
        used with local development databases.
        """
        if not self.dev_mode:
            return self

        try:
            hostname = urlparse(self.database_url).hostname or ""
        except ValueError:
            hostname = ""

        # SQLite URLs have no host and are always local
        is_sqlite = self.database_url.startswith("sqlite")
        local_hosts = {"localhost", "127.0.0.1", "0.0.0.0", "::1"}  # noqa: S104
        if not is_sqlite and hostname.lower() not in local_hosts:
            raise ValueError(
                f"DEV_MODE cannot be enabled with a non-local database. "
                f"Database host '{hostname}' appears to be a production database. "
                f"DEV_MODE bypasses the identity provider and must only be used locally.",
            )

        return self

    @property
    def cors_origins(self) -> list[str]:
        """Parse comma-separated CORS origins string into a list."""
        if not self.cors_origins_str:
            return []
        return [origin.strip() for origin in self.cors_origins_str.split(",") if origin.strip()]

    @property
    def oauth_redirect_uri(self) -> str:
        """Callback endpoint the identity provider redirects back to."""
        return f"{self.app_url.rstrip('/')}/auth/callback"

    @property
    def oauth_configured(self) -> bool:
        """Whether enough provider settings are present to start a login."""
        return bool(self.oauth_client_id and self.oauth_authorize_url and self.oauth_token_url)


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
