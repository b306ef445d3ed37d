"""Process settings for the Shieldon core.

This module defines deployment-level options (storage driver, connection URLs,
location of the firewall configuration file). Settings are loaded from
environment variables with sensible defaults. Per-site firewall behaviour lives
in the JSON option tree handled by :mod:`shieldon_core.core.config`.
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Settings loaded from environment variables.

    Settings can be overridden via environment variables or .env files.
    """

    # Application metadata
    app_name: str = Field(default="Shieldon Core", alias="SHIELDON_APP_NAME")
    debug: bool = Field(default=False, alias="SHIELDON_DEBUG")

    # Firewall option tree (JSON). Missing file means "all defaults".
    config_path: str = Field(default="./shieldon.json", alias="SHIELDON_CONFIG_PATH")

    # Storage backend: memory, redis or sql
    storage_driver: str = Field(default="memory", alias="SHIELDON_STORAGE_DRIVER")
    database_url: str = Field(default="sqlite:///./shieldon.db", alias="SHIELDON_DATABASE_URL")
    sql_debug: bool = Field(default=False, alias="SHIELDON_SQL_DEBUG")
    redis_url: str = Field(default="redis://localhost:6379/0", alias="SHIELDON_REDIS_URL")
    redis_key_prefix: str = Field(default="shieldon", alias="SHIELDON_REDIS_KEY_PREFIX")

    # Identity cookie
    cookie_name: str = Field(default="_shieldon", alias="SHIELDON_COOKIE_NAME")
    cookie_lifetime_seconds: int = Field(default=3600, alias="SHIELDON_COOKIE_LIFETIME_SECONDS")

    # Header carrying the client address when running behind a CDN or proxy.
    ip_header: str | None = Field(default=None, alias="SHIELDON_IP_HEADER")

    model_config = SettingsConfigDict(
        env_file=".env",
        validate_assignment=True,
        extra="ignore",
    )


settings = Settings()
