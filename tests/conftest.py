"""Shared fixtures for the monitoring service tests."""

from datetime import datetime, timedelta
from typing import Optional

import pytest
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from src.database.database import build_session_factory, init_db
from src.database.repositories import MetricsRepository
from src.monitoring.clock import utcnow
from src.monitoring.schemas import (
    ApiMetrics,
    CpuMetrics,
    DatabaseMetrics,
    ErrorMetrics,
    MetricSnapshot,
    ServerMetrics,
    SeverityCounts,
    UsageMetrics,
)


@pytest.fixture
def engine():
    """In-memory SQLite shared across threads."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool
    )
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def repository(engine):
    return MetricsRepository(build_session_factory(engine))


def build_snapshot(
    timestamp: Optional[datetime] = None,
    cpu: float = 10.0,
    memory: float = 20.0,
    response_time: float = 100.0,
    query_time: float = 5.0,
    errors: int = 0,
) -> MetricSnapshot:
    return MetricSnapshot(
        timestamp=timestamp or utcnow(),
        server=ServerMetrics(
            cpu=CpuMetrics(usage=cpu, load_average=[0.5, 0.4, 0.3], cores=4),
            memory=UsageMetrics(used=memory, free=100 - memory, total=100, usage_percentage=memory)
        ),
        database=DatabaseMetrics(connection_count=5, active_connections=1, query_time=query_time),
        api=ApiMetrics(
            total_requests=10,
            successful_requests=10,
            failed_requests=0,
            average_response_time=response_time
        ),
        error_metrics=ErrorMetrics(
            total=errors,
            by_type={"value_error": errors} if errors else {},
            by_severity=SeverityCounts(high=errors)
        )
    )


@pytest.fixture
def snapshot_factory():
    """Build snapshots with the given headline figures."""
    return build_snapshot


@pytest.fixture
def seed(repository):
    """Save snapshots ``minutes_ago`` apart, oldest first."""
    def _seed(*figures, spacing_minutes: int = 5):
        now = utcnow()
        saved = []
        for index, values in enumerate(figures):
            minutes_ago = (len(figures) - index) * spacing_minutes
            snapshot = build_snapshot(timestamp=now - timedelta(minutes=minutes_ago), **values)
            assert repository.save(snapshot).ok
            saved.append(snapshot)
        return saved
    return _seed
