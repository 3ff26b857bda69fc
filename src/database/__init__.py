"""Database package for the metrics store."""

from .database import (
    build_engine,
    build_session_factory,
    session_scope,
    init_db,
    check_database_connection
)
from .models import Base, MetricSnapshotRecord
from .repositories import MetricsRepository, MetricsPage, SaveResult

__all__ = [
    # Database utilities
    "build_engine",
    "build_session_factory",
    "session_scope",
    "init_db",
    "check_database_connection",
    # Models
    "Base",
    "MetricSnapshotRecord",
    # Repositories
    "MetricsRepository",
    "MetricsPage",
    "SaveResult",
]
