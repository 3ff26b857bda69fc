"""Monitoring service configuration settings."""

from typing import List, Optional
from pydantic_settings import BaseSettings
from pydantic import Field


class MonitoringSettings(BaseSettings):
    """Metrics collection, storage and access settings."""

    # Metrics store
    metrics_database_url: str = Field(default="sqlite:///./metrics.db", env="METRICS_DATABASE_URL")

    # Connection Pool Settings (ignored for SQLite)
    db_pool_size: int = Field(default=5, env="DB_POOL_SIZE")
    db_max_overflow: int = Field(default=10, env="DB_MAX_OVERFLOW")
    db_pool_timeout: int = Field(default=30, env="DB_POOL_TIMEOUT")
    db_pool_recycle: int = Field(default=3600, env="DB_POOL_RECYCLE")

    # Echo SQL queries (for debugging)
    db_echo: bool = Field(default=False, env="DB_ECHO")

    # Collection
    metrics_collection_interval_ms: int = Field(default=60000, env="METRICS_COLLECTION_INTERVAL_MS")
    metrics_auto_start: bool = Field(default=True, env="METRICS_AUTO_START")
    metrics_save_retries: int = Field(default=1, env="METRICS_SAVE_RETRIES")

    # Retention (disabled unless set)
    metrics_retention_days: Optional[int] = Field(default=None, env="METRICS_RETENTION_DAYS")
    metrics_retention_interval_minutes: int = Field(default=60, env="METRICS_RETENTION_INTERVAL_MINUTES")

    # In-process tracking
    metrics_request_window_seconds: int = Field(default=60, env="METRICS_REQUEST_WINDOW_SECONDS")
    metrics_recent_errors_limit: int = Field(default=50, env="METRICS_RECENT_ERRORS_LIMIT")
    metrics_slow_query_ms: float = Field(default=100.0, env="METRICS_SLOW_QUERY_MS")

    # Access control (roles are asserted by the upstream gateway)
    monitoring_roles_header: str = Field(default="X-User-Roles", env="MONITORING_ROLES_HEADER")
    monitoring_viewer_roles: List[str] = Field(
        default=["admin", "super_admin", "analyst"],
        env="MONITORING_VIEWER_ROLES"
    )
    monitoring_admin_roles: List[str] = Field(
        default=["admin", "super_admin"],
        env="MONITORING_ADMIN_ROLES"
    )

    # CORS
    cors_origins: List[str] = Field(
        default=["http://localhost:3000"],
        env="CORS_ORIGINS"
    )
    cors_allow_credentials: bool = Field(default=True, env="CORS_ALLOW_CREDENTIALS")

    # Logging
    log_level: str = Field(default="INFO", env="LOG_LEVEL")
    log_json: bool = Field(default=False, env="LOG_JSON")

    @property
    def is_sqlite(self) -> bool:
        return self.metrics_database_url.startswith("sqlite")

    class Config:
        env_file = ".env"
        case_sensitive = False
        extra = "ignore"  # Allow extra fields in .env file


# Create a singleton instance
monitoring_settings = MonitoringSettings()
