"""Configuration settings for the Private Judge core."""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database
    db_host: str = "localhost"
    db_port: int = 5432
    db_name: str = "private_judge"
    db_user: str = "judge"
    db_password: str = "judge"

    # Redis
    redis_url: str = "redis://localhost:6379/0"
    events_publish_enabled: bool = False

    # Job retry policy
    default_max_retries: int = 3
    max_retries_limit: int = 10
    retry_base_delay_ms: int = 1000
    max_retry_delay_ms: int = 300_000  # 5 minutes
    retry_jitter_ratio: float = 0.0

    # Job queue
    claim_limit_max: int = 10
    max_concurrent_jobs: int = 5
    overdue_threshold_seconds: int = 300
    cleanup_completed_after_days: int = 7

    # Debate / verdict
    jury_size: int = 7
    motion_stale_days: int = 3
    max_motion_modifications: int = 5

    # Workers
    worker_poll_interval_seconds: float = 2.0
    worker_token: str = "dev-worker-token"
    responder_url: str = "http://localhost:8080"
    responder_timeout_seconds: float = 120.0

    @property
    def database_url(self) -> str:
        """SQLAlchemy database URL."""
        return f"postgresql://{self.db_user}:{self.db_password}@{self.db_host}:{self.db_port}/{self.db_name}"

    @property
    def async_database_url(self) -> str:
        """Async SQLAlchemy database URL."""
        return f"postgresql+asyncpg://{self.db_user}:{self.db_password}@{self.db_host}:{self.db_port}/{self.db_name}"

    class Config:
        env_prefix = "PRIVATE_JUDGE_"
        env_file = ".env"


# Global settings instance
settings = Settings()
