"""Engine settings via pydantic-settings."""

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Engine configuration loaded from environment variables with WATCHBADGES_ prefix."""

    model_config = SettingsConfigDict(
        env_prefix="WATCHBADGES_",
        env_file=".env",
        case_sensitive=False,
    )

    # --- Core ---
    app_version: str = "0.1.0"
    redis_url: str = "redis://localhost:6379/0"
    redis_max_connections: int = 20
    log_level: str = "INFO"
    log_format: str = "json"

    # --- Activity batching / classification ---
    batch_delay_seconds: float = 1.0
    quickwatch_hours_after_release: float = 24.0
    binge_window_minutes: float = 120.0
    emit_binge_activity: bool = False

    # --- Evaluation ---
    snapshot_ttl_seconds: int = 300  # 5 minutes
    streak_timezone: str = "UTC"

    # --- Store ---
    transaction_max_retries: int = 25

    # --- Maintenance ---
    validation_concurrency: int = 5
    migration_batch_size: int = 10


@lru_cache
def get_settings() -> Settings:
    """Get cached engine settings."""
    return Settings()
