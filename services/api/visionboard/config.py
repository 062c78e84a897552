"""Application configuration using pydantic-settings."""

from functools import lru_cache
from typing import Literal

from pydantic import SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # App
    app_name: str = "Vision Board API"
    app_env: Literal["development", "staging", "production"] = "development"
    debug: bool = False
    base_url: str = "http://localhost:8787"
    allowed_origins: str = "*"
    admin_user_ids: str = ""

    # Database (empty URL -> per-key JSON files under data_dir)
    database_url: str = ""
    auto_create_schema: bool = False
    db_pool_size: int = 5
    data_dir: str = "data"

    # Redis
    redis_url: str = "redis://localhost:6379/0"

    # Canva Connect
    canva_client_id: str = ""
    canva_client_secret: SecretStr = SecretStr("")
    canva_redirect_uri: str = ""
    canva_scopes: str = "design:content:read profile:read"

    # Encryption for provider tokens (libsodium key, base64 encoded)
    encryption_key: SecretStr = SecretStr("")

    # Sessions
    guest_session_days: int = 10
    pkce_state_ttl_seconds: int = 600

    # Sync
    sync_retain_days: int = 90

    # Exports
    export_poll_interval_seconds: float = 2.0
    export_poll_timeout_seconds: float = 90.0

    # Rate limiting (0 disables)
    rate_limit_per_minute: int = 100

    # Celery
    celery_broker_url: str = "redis://localhost:6379/1"
    celery_result_backend: str = "redis://localhost:6379/2"

    # Sentry
    sentry_dsn: SecretStr = SecretStr("")
    sentry_traces_sample_rate: float = 0.0

    @property
    def cors_origins(self) -> list[str]:
        return [o.strip() for o in self.allowed_origins.split(",") if o.strip()]

    @property
    def admin_ids(self) -> set[str]:
        return {u.strip() for u in self.admin_user_ids.split(",") if u.strip()}

    @property
    def has_database(self) -> bool:
        return bool(self.database_url)

    @property
    def retain_days(self) -> int:
        return self.sync_retain_days if self.sync_retain_days > 0 else 90

    @property
    def oauth_redirect_uri(self) -> str:
        return self.canva_redirect_uri or f"{self.base_url.rstrip('/')}/auth/canva/callback"


@lru_cache
def get_settings() -> Settings:
    return Settings()
