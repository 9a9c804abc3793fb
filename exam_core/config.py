"""Application settings loaded from the environment (prefix ``EXAM_``)."""

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="EXAM_", env_file=".env", extra="ignore"
    )

    # Database
    database_url: str = "sqlite:///./exam_core.db"
    echo_sql: bool = False
    # Upper bound (seconds) a storage call may wait on a lock or a pooled connection
    storage_timeout_seconds: float = 5.0

    # Cookie sessions
    secret_key: str = "CHANGE_ME_TO_A_RANDOM_SECRET"

    # Retry policy
    autosave_retry_attempts: int = 3
    finalize_retry_attempts: int = 3
    retry_wait_seconds: float = 0.2

    log_level: str = "INFO"

    # Results
    pass_percentage: float = 60.0


@lru_cache
def get_settings() -> Settings:
    return Settings()
