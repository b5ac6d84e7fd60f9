import os
from typing import Optional
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Storage Configuration
    data_dir: str = "./data"

    # Job Processing Configuration
    job_batch_size: int = 10
    job_max_retries: int = 3
    job_concurrency: int = 5
    job_handler_timeout: Optional[float] = 30.0
    job_poll_interval: float = 5.0
    worker_drain_limit: int = 50

    # Overdue Scanner Configuration
    overdue_scan_interval: float = 3600.0
    overdue_page_size: int = 100

    # Outbox Relay Configuration
    outbox_relay_interval: float = 2.0
    outbox_batch_limit: int = 100

    # Notification Configuration
    slack_webhook_url: Optional[str] = None

    # Logging Configuration
    log_level: str = "INFO"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    @property
    def sqlite_path(self) -> str:
        """Return path to SQLite database."""
        return os.path.join(self.data_dir, "taskworker.db")


# Global settings instance
settings = Settings()
