"""
Operational Metrics Module

Snapshot model, health evaluation and in-process tracking. The collector
and summary service live in ``collector`` and ``summaries`` and are wired
together by the API lifespan.
"""

from .errors import MonitoringError, InvalidQueryError
from .schemas import (
    HealthState,
    HealthStatus,
    MetricSnapshot,
)
from .health import evaluate, health_score
from .tracking import RequestTracker, ErrorTracker

__all__ = [
    # Errors
    "MonitoringError",
    "InvalidQueryError",
    # Models
    "HealthState",
    "HealthStatus",
    "MetricSnapshot",
    # Health
    "evaluate",
    "health_score",
    # Tracking
    "RequestTracker",
    "ErrorTracker",
]
