"""Configuration management using Pydantic Settings."""

from pathlib import Path
from typing import Dict, Optional

from dotenv import load_dotenv
from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Hard limit from the sitemaps.org protocol
SITEMAP_PROTOCOL_MAX_URLS = 50000

ENV_FILE_OPT: str | None = None

# Only load .env if it exists (for local development)
_env_path = Path(".env")
if _env_path.exists():
    load_dotenv(dotenv_path=_env_path)
    ENV_FILE_OPT = str(_env_path)


class Settings(BaseSettings):
    """Application configuration.

    Loads settings from environment variables. In local development, these can be
    provided via a .env file. In Docker/production, they should be set directly.
    """

    model_config = SettingsConfigDict(
        env_file=ENV_FILE_OPT,
        env_file_encoding="utf-8",
        extra="ignore",
        env_ignore_empty=True,
    )

    # Application
    app_name: str = "GitHub Explorer"
    debug: bool = Field(default=False, description="Enable debug mode")
    log_level: str = Field(default="INFO", description="Logging level")

    # Server
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=8000, description="Server port")

    # Redis
    redis_url: SecretStr = Field(
        default="redis://localhost:6379/0", description="Redis connection URL"
    )
    redis_password: Optional[SecretStr] = Field(default=None, description="Redis password")

    # Docket
    task_queue_name: str = Field(
        default="explorer_pipelines", description="Docket name used for pipeline tasks"
    )
    task_timeout: int = Field(
        default=3600, description="Redelivery timeout for pipeline tasks in seconds"
    )
    worker_concurrency: int = Field(default=2, description="Concurrent tasks per worker")

    # GitHub
    github_api_url: str = Field(
        default="https://api.github.com", description="Base URL of the GitHub REST API"
    )
    github_token: Optional[SecretStr] = Field(default=None, description="GitHub API token")
    github_timeout: float = Field(default=30.0, description="GitHub request timeout in seconds")

    # Retry for transient GitHub failures
    retry_max_retries: int = Field(default=5, description="Retries for transient errors")
    retry_initial_delay_ms: int = Field(default=100, description="First retry delay (ms)")
    retry_max_delay_ms: int = Field(default=5000, description="Retry delay cap (ms)")
    retry_backoff_factor: float = Field(default=2.0, description="Exponential backoff factor")
    retry_jitter: float = Field(
        default=0.3, description="Random jitter as a fraction of the first retry delay (0-1)"
    )

    # Sitemap
    base_url: str = Field(
        default="http://localhost:3000", description="Public site URL used in sitemap entries"
    )
    sitemap_output_dir: str = Field(
        default="./public", description="Directory holding sitemap.xml and sitemaps/"
    )
    sitemap_max_urls: int = Field(
        default=49000, ge=1, description="Maximum URLs per sitemap page file"
    )
    sitemap_batch_size: int = Field(default=1000, ge=1, description="Entities fetched per batch")

    # Batch sizes
    sync_per_page: int = Field(default=100, description="Events requested per sync page")
    sync_max_requests: int = Field(default=10, description="GitHub requests per sync run")
    extraction_batch_size: int = Field(default=100, ge=1, description="Raw records per batch")
    enrichment_batch_size: int = Field(default=20, ge=1, description="Entities per batch")
    enrichment_max_requests: int = Field(
        default=1000, description="GitHub requests per enrichment stage run"
    )
    enrichment_max_attempts: int = Field(
        default=3, description="Attempts before an entity is marked as failed enrichment"
    )
    rankings_batch_size: int = Field(default=500, ge=1, description="Rows read per batch")
    max_batches_per_run: Optional[int] = Field(
        default=None, description="Optional cap on batches per stage run"
    )

    # Scheduler
    scheduler_poll_interval: float = Field(
        default=30.0, description="Seconds between scheduler ticks"
    )
    default_schedules: Dict[str, str] = Field(
        default_factory=lambda: {
            "github_sync": "*/15 * * * *",
            "entity_extraction": "5,20,35,50 * * * *",
            "data_enrichment": "0 * * * *",
            "contributor_rankings": "30 2 * * *",
            "sitemap_generation": "0 4 * * *",
        },
        description="Cron expressions seeded when no schedules exist",
    )

    # History and notifications
    history_stale_after_seconds: int = Field(
        default=3600, description="Running records older than this are failed by the sweep"
    )
    history_sweep_interval: int = Field(
        default=300, description="Seconds between stale history sweeps"
    )
    notification_capacity: int = Field(default=100, description="Notifications kept in memory")

    @field_validator("sitemap_max_urls")
    @classmethod
    def _cap_sitemap_urls(cls, value: int) -> int:
        if value > SITEMAP_PROTOCOL_MAX_URLS:
            raise ValueError(f"sitemap_max_urls cannot exceed {SITEMAP_PROTOCOL_MAX_URLS}")
        return value


# Global settings instance
settings = Settings()
