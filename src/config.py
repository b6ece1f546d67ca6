"""
Application configuration using pydantic-settings.
All config is validated at startup - fail fast if anything is missing.
"""
from pydantic_settings import BaseSettings
from pydantic import Field
from functools import lru_cache


class Settings(BaseSettings):
    # Application
    app_env: str = "development"
    log_level: str = "INFO"

    # Database
    database_url: str
    database_pool_size: int = 20
    database_max_overflow: int = 10

    # Scheduler - the archive device this process dispatches for
    device_name: str = "dcm4chee-arc"
    retrieve_queue_name: str = "Retrieve1"
    scheduler_poll_interval_seconds: float = Field(default=60.0, gt=0)
    scheduler_batch_limit: int = Field(default=100, gt=0)

    # Export
    export_timezone: str = "UTC"  # IANA zone name used for exported timestamps
    export_max_rows: int = 10000

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


@lru_cache()
def get_settings() -> Settings:
    return Settings()
