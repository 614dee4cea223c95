"""Application settings and configuration.

This module defines all configuration options for the fobsync service.
Settings are loaded from environment variables with sensible defaults.
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Service settings loaded from environment variables.

    Settings can be overridden via environment variables or .env files.
    """

    # Application metadata
    app_name: str = Field(default="fobsync", alias="APP_NAME")
    app_version: str = Field(default="0.1.0", alias="APP_VERSION")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    # Access control device
    access_control_host: str = Field(default="127.0.0.1:80", alias="ACCESS_CONTROL_HOST")
    access_control_timeout_seconds: float = Field(
        default=5.0,
        alias="ACCESS_CONTROL_TIMEOUT_SECONDS",
    )
    device_timezone: str = Field(default="UTC", alias="DEVICE_TIMEZONE")

    # Database configuration
    database_url: str = Field(default="sqlite:///./fobsync.db", alias="DATABASE_URL")
    postgres_host: str | None = Field(default=None, alias="POSTGRES_HOST")
    postgres_user: str = Field(default="postgres", alias="POSTGRES_USER")
    postgres_password: str | None = Field(default=None, alias="POSTGRES_PASSWORD")
    postgres_db: str = Field(default="postgres", alias="POSTGRES_DB")
    sql_debug: bool = Field(default=False, alias="SQL_DEBUG")

    # Keycloak (identity provider)
    keycloak_url: str | None = Field(default=None, alias="KEYCLOAK_URL")
    keycloak_user: str | None = Field(default=None, alias="KEYCLOAK_USER")
    keycloak_password: str | None = Field(default=None, alias="KEYCLOAK_PASSWORD")
    keycloak_realm: str = Field(default="master", alias="KEYCLOAK_REALM")
    keycloak_timeout_seconds: float = Field(default=10.0, alias="KEYCLOAK_TIMEOUT_SECONDS")
    authorized_group_id: str | None = Field(default=None, alias="AUTHORIZED_GROUP_ID")

    # Reconciliation scheduling
    sync_enabled: bool = Field(default=True, alias="SYNC_ENABLED")
    resync_interval_seconds: float = Field(default=3600.0, alias="RESYNC_INTERVAL_SECONDS")
    cooldown_seconds: float = Field(default=5.0, alias="SYNC_COOLDOWN_SECONDS")

    # Webhook listener
    callback_url: str | None = Field(default=None, alias="CALLBACK_URL")
    webhook_host: str = Field(default="0.0.0.0", alias="WEBHOOK_HOST")
    webhook_port: int = Field(default=8080, alias="WEBHOOK_PORT")

    # Swipe archiver
    archiver_enabled: bool = Field(default=True, alias="ARCHIVER_ENABLED")
    swipe_scrape_interval_seconds: float = Field(
        default=2 * 60 * 60,
        alias="SWIPE_SCRAPE_INTERVAL_SECONDS",
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        validate_assignment=True,
        extra="ignore",
    )

    @property
    def effective_database_url(self) -> str:
        """Return the database URL, preferring discrete Postgres settings.

        Returns:
            A psycopg URL when POSTGRES_HOST is set, otherwise DATABASE_URL
        """
        if self.postgres_host:
            password = f":{self.postgres_password}" if self.postgres_password else ""
            return (
                f"postgresql+psycopg://{self.postgres_user}{password}"
                f"@{self.postgres_host}:5432/{self.postgres_db}"
            )
        return self.database_url

    @property
    def keycloak_enabled(self) -> bool:
        """Return True when enough Keycloak settings exist to list group members."""
        return bool(
            self.keycloak_url
            and self.keycloak_user
            and self.keycloak_password
            and self.authorized_group_id
        )

    @property
    def webhook_url(self) -> str | None:
        """Return the callback URL registered with Keycloak, if configured."""
        if not self.callback_url:
            return None
        return f"{self.callback_url.rstrip('/')}/webhook"


settings = Settings()
