"""
Application configuration using pydantic-settings.
All config is validated at startup - fail fast if anything is missing.
"""
from pydantic import model_validator
from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    # Application
    app_env: str = "development"
    app_host: str = "0.0.0.0"
    app_port: int = 8000
    log_level: str = "INFO"
    log_format: str = "json"  # json | text

    # Database
    database_url: str
    database_pool_size: int = 20
    database_max_overflow: int = 10

    # Redis (queue wake-ups, heartbeats, alert cooldowns, optional rate limiting)
    redis_url: str = "redis://localhost:6379/0"

    # Secret vault
    secret_encryption_key: str  # Fernet key, generate with scripts/generate_secrets.py
    secret_min_length: int = 32
    secret_cache_ttl_seconds: int = 1800

    # Signature verification
    allow_unsigned_webhooks: bool = False  # Ignored when app_env == "production"
    verification_timeout_seconds: float = 5.0

    # Rate limiting
    rate_limit_backend: str = "memory"  # memory | redis
    webhook_rate_limit_requests: int = 100
    webhook_rate_limit_window_ms: int = 60000
    rate_limit_max_keys: int = 10000
    rate_limit_sweep_interval_seconds: float = 60.0

    # Ingestion queue
    queue_workers: int = 5
    queue_max_attempts: int = 5
    queue_backoff_base_ms: int = 500
    queue_backoff_max_ms: int = 60000
    queue_lease_seconds: int = 30
    queue_poll_interval_seconds: float = 5.0
    queue_process_inline: bool = False
    queue_retention_hours: int = 24

    # Auth collaborators
    session_jwt_secret: str = ""
    internal_api_token: str = ""  # Empty disables the internal decrypt endpoint

    # Alerting / error reporting
    alert_webhook_url: str = ""  # Discord/Slack webhook URL for critical alerts
    sentry_dsn: str = ""

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"

    @model_validator(mode="after")
    def check_backoff_schedule(self) -> "Settings":
        """Every retry delay must fit under the cap, keeping delays strictly increasing."""
        if self.queue_max_attempts < 1 or self.queue_backoff_base_ms < 1:
            raise ValueError("QUEUE_MAX_ATTEMPTS and QUEUE_BACKOFF_BASE_MS must be positive")
        longest = self.queue_backoff_base_ms * 2 ** max(self.queue_max_attempts - 2, 0)
        if longest > self.queue_backoff_max_ms:
            raise ValueError(
                f"QUEUE_BACKOFF_MAX_MS={self.queue_backoff_max_ms} is below the last retry delay "
                f"({longest}ms for QUEUE_MAX_ATTEMPTS={self.queue_max_attempts})"
            )
        return self

    @property
    def is_production(self) -> bool:
        return self.app_env == "production"

    @property
    def unsigned_webhooks_permitted(self) -> bool:
        """Unsigned pass-through only ever applies outside production."""
        return self.allow_unsigned_webhooks and not self.is_production


@lru_cache()
def get_settings() -> Settings:
    return Settings()
