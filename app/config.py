from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

ENV_PATH = Path(__file__).resolve().parent.parent / ".env.local"


class Settings(BaseSettings):
    # Environment settings
    environment: str = "development"
    debug: bool = False
    LOG_LEVEL: str = "INFO"
    SERVICE_NAME: str = "private-sessions"

    # Postgres settings
    DATABASE_URL: str = "postgresql://localhost:5432/private_sessions"

    # Redis settings
    REDIS_URL: str = "redis://localhost:6379/0"

    # =================================================================
    # DATABASE POOL SETTINGS
    # =================================================================
    DB_POOL_MIN_SIZE: int = 3
    DB_POOL_MAX_SIZE: int = 12
    DB_POOL_TIMEOUT: float = 30.0
    DB_POOL_MAX_IDLE: float = 600.0  # 10 minutes
    DB_POOL_MAX_LIFETIME: float = 3600.0  # 1 hour

    # =================================================================
    # JOB QUEUE SETTINGS
    # =================================================================
    QUEUE_PREFIX: str = "spkeasy:queue"
    QUEUE_RETRY_LIMIT: int = 12
    QUEUE_RETRY_DELAY_SECONDS: float = 60.0  # first retry after 1 minute
    QUEUE_RETRY_MAX_DELAY_SECONDS: float = 6 * 3600.0
    QUEUE_ACK_DEADLINE_SECONDS: float = 300.0
    QUEUE_POLL_INTERVAL_SECONDS: float = 1.0
    QUEUE_COMPLETED_RETENTION_SECONDS: int = 24 * 3600

    WORKER_CONCURRENCY: int = 5

    # External services
    BSKY_DEFAULT_HOST: str = "https://public.api.bsky.app"
    RESOLVER_TIMEOUT_SECONDS: float = 10.0
    TRUSTED_USERS_URL: str | None = None
    USER_KEYS_URL: str | None = None
    SERVICE_API_KEY: str | None = None
    SERVICE_REQUEST_TIMEOUT_SECONDS: float = 15.0

    model_config = SettingsConfigDict(
        env_file=str(ENV_PATH),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @property
    def max_job_attempts(self) -> int:
        """First delivery plus the configured number of retries."""
        return self.QUEUE_RETRY_LIMIT + 1

    def get_db_pool_config(self) -> dict:
        """
        Get database pool configuration.
        Adjust environment-specific settings based on self.environment.
        """
        config = {
            "min_size": self.DB_POOL_MIN_SIZE,
            "max_size": self.DB_POOL_MAX_SIZE,
            "timeout": self.DB_POOL_TIMEOUT,
            "max_idle": self.DB_POOL_MAX_IDLE,
            "max_lifetime": self.DB_POOL_MAX_LIFETIME,
        }

        if self.environment == "development":
            config.update(
                {
                    "min_size": 2,
                    "max_size": 6,
                    "timeout": 15.0,
                }
            )

        return config


def get_settings() -> Settings:
    """Load settings from the environment. Called once by each process bootstrap."""
    return Settings()
