"""
WardTrack Configuration Management
Handles all application settings using Pydantic Settings
"""

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field, field_validator, model_validator
from typing import List, Optional


class Settings(BaseSettings):
    """Application settings with validation"""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        validate_default=True
    )

    # Environment
    environment: str = Field(default="development", pattern="^(development|production|test)$")
    debug: bool = Field(default=False)
    log_level: str = Field(default="INFO", pattern="^(DEBUG|INFO|WARNING|ERROR|CRITICAL)$")

    # API Server
    api_host: str = Field(default="0.0.0.0")
    api_port: int = Field(default=8000, ge=1, le=65535)
    api_reload: bool = Field(default=True)

    # Remote authoritative store
    remote_api_url: str = Field(default="http://localhost:3001/api/sync")
    remote_api_token: Optional[str] = Field(default=None)
    remote_timeout_seconds: float = Field(default=10.0, ge=1.0, le=120.0)
    remote_max_retries: int = Field(default=3, ge=1, le=10)

    # Local replica
    local_database_url: str = Field(default="sqlite:///./wardtrack_replica.db")
    database_echo: bool = Field(default=False)

    # Redis
    redis_url: str = Field(default="redis://localhost:6379/0")

    # Celery
    celery_broker_url: str = Field(default="redis://localhost:6379/1")
    celery_result_backend: str = Field(default="redis://localhost:6379/2")
    celery_task_always_eager: bool = Field(default=False)
    task_time_limit: int = Field(default=300, ge=30, le=1800)
    task_soft_time_limit: int = Field(default=240, ge=30, le=1800)
    worker_prefetch_multiplier: int = Field(default=1, ge=1, le=16)

    # Reconciliation
    reconcile_interval_seconds: int = Field(default=60, ge=5, le=3600)
    reconcile_lock_timeout_seconds: int = Field(default=330, ge=10, le=3600)
    sync_collections: List[str] = Field(default=["patients", "treatment_plans"])

    # Timeline engine
    overdue_scan_interval_seconds: int = Field(default=900, ge=60, le=86400)
    recurrence_max_occurrences: int = Field(default=366, ge=1, le=5000)
    default_horizon_days: int = Field(default=14, ge=1, le=365)

    # Security
    cors_origins: List[str] = Field(
        default=["http://localhost:3000", "http://localhost:5173"]
    )
    cors_allow_credentials: bool = Field(default=True)

    @field_validator("cors_origins", "sync_collections", mode="before")
    @classmethod
    def parse_comma_separated(cls, v):
        """Parse list settings from comma separated string or list"""
        if isinstance(v, str):
            return [item.strip() for item in v.split(",") if item.strip()]
        return v

    @field_validator("remote_api_url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        """Normalise remote base URL so paths can be appended"""
        return v.rstrip("/")

    @model_validator(mode="after")
    def validate_remote_config(self) -> "Settings":
        """Validate remote store configuration after all fields are set"""
        # Development and tests may run against an open local server
        if self.environment == "production" and not self.remote_api_token:
            raise ValueError("REMOTE_API_TOKEN required in production")
        return self

    @model_validator(mode="after")
    def validate_reconcile_lock(self) -> "Settings":
        """The reconcile lock must outlive the task that holds it"""
        if self.reconcile_lock_timeout_seconds < self.task_time_limit:
            raise ValueError(
                f"RECONCILE_LOCK_TIMEOUT_SECONDS ({self.reconcile_lock_timeout_seconds}) "
                f"must be at least TASK_TIME_LIMIT ({self.task_time_limit})"
            )
        return self

    @property
    def is_production(self) -> bool:
        """Check if running in production"""
        return self.environment == "production"

    @property
    def is_test(self) -> bool:
        """Check if running in test"""
        return self.environment == "test"


# Global settings instance
settings = Settings()
