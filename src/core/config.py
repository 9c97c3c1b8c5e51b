from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Database
    database_url: str

    @property
    def async_database_url(self) -> str:
        """Return database URL with asyncpg driver for SQLAlchemy async."""
        url = self.database_url
        if url.startswith("postgresql://"):
            return url.replace("postgresql://", "postgresql+asyncpg://", 1)
        if url.startswith("postgres://"):
            return url.replace("postgres://", "postgresql+asyncpg://", 1)
        return url

    @property
    def is_sqlite(self) -> bool:
        return self.async_database_url.startswith("sqlite")

    # Redis
    redis_url: str = "redis://localhost:6379/0"

    # LLM API Keys
    anthropic_api_key: str = ""
    openai_api_key: str = ""

    # Models for the two LLM-backed strategies (claude-* or gpt-*)
    decision_model: str = "claude-sonnet-4-5"
    query_model: str = "claude-haiku-4-5"

    # Langfuse
    langfuse_secret_key: str = ""
    langfuse_public_key: str = ""
    langfuse_host: str = "http://localhost:3000"

    # Google Places API
    google_maps_api_key: str = ""

    # Notification pipeline
    notification_batch_size: int = 10
    notification_concurrency: int = 5
    context_notifications_hours: int = 24
    context_notifications_limit: int = 5
    context_source_tasks_days: int = 7
    context_source_tasks_limit: int = 20
    context_pending_tasks_days: int = 7
    context_pending_tasks_limit: int = 50
    create_dedup_window_minutes: int = 60
    processed_notification_retention_hours: int = 24
    decision_timeout_seconds: float = 30.0

    # Location resolution
    query_generation_batch_size: int = 5
    query_generation_timeout_seconds: float = 20.0
    places_radius_meters: int = 2000
    places_max_results: int = 10
    places_timeout_seconds: float = 10.0

    # Proximity alerts
    proximity_radius_meters: int = 100
    alert_cooldown_minutes: int = 60
    alert_queue_ttl_minutes: int = 10
    alert_queue_backend: str = "memory"  # memory | redis
    ledger_retention_hours: int = 24

    # App
    app_env: str = "development"
    log_level: str = "INFO"


settings = Settings()
