"""
Metric Snapshot Models

Immutable pydantic models for one collection tick. Attributes are snake_case;
JSON and stored documents use the camelCase aliases (``usagePercentage``,
``errorMetrics`` ...).
"""

import re
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from src.monitoring.clock import utcnow


class HealthState(str, Enum):
    """Service health states, ordered by severity."""
    HEALTHY = "healthy"
    WARNING = "warning"
    CRITICAL = "critical"
    DOWN = "down"

    @property
    def rank(self) -> int:
        return _HEALTH_RANK[self]

    @classmethod
    def worst(cls, *states: "HealthState") -> "HealthState":
        """Return the most severe of the given states (healthy if none)."""
        return max(states, key=lambda s: s.rank, default=cls.HEALTHY)


_HEALTH_RANK = {
    HealthState.HEALTHY: 0,
    HealthState.WARNING: 1,
    HealthState.CRITICAL: 2,
    HealthState.DOWN: 3,
}


class AlertSeverity(str, Enum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class ErrorSeverity(str, Enum):
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


# Allowed keys for the custom metrics map
CUSTOM_METRIC_KEYS = frozenset({"collectionTime", "pythonVersion", "platform", "arch", "hostname"})

ERROR_TYPE_PATTERN = re.compile(r"^[a-z][a-z0-9_]{0,63}$")
MAX_ERROR_TYPES = 64


class SnapshotModel(BaseModel):
    """Base for all snapshot fragments."""
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
    )


# Server

class CpuMetrics(SnapshotModel):
    usage: float = Field(default=0.0, ge=0, le=100)
    load_average: List[float] = Field(default_factory=lambda: [0.0, 0.0, 0.0], min_length=3, max_length=3)
    cores: int = Field(default=1, gt=0)


class UsageMetrics(SnapshotModel):
    used: float = 0
    free: float = 0
    total: float = 0
    usage_percentage: float = Field(default=0.0, ge=0, le=100)


class ServerMetrics(SnapshotModel):
    cpu: CpuMetrics = Field(default_factory=CpuMetrics)
    memory: UsageMetrics = Field(default_factory=UsageMetrics)
    disk: UsageMetrics = Field(default_factory=UsageMetrics)
    uptime: float = Field(default=0.0, ge=0)
    process_id: int = 0


# Database

class DatabaseMetrics(SnapshotModel):
    connection_count: int = 0
    active_connections: int = 0
    query_time: float = 0.0
    slow_queries: int = 0
    index_usage: float = Field(default=0.0, ge=0, le=100)
    cache_hit_rate: float = Field(default=0.0, ge=0, le=100)
    lock_wait_time: float = 0.0


# Application

class ApplicationMetrics(SnapshotModel):
    request_count: int = 0
    response_time: float = 0.0
    error_rate: float = Field(default=0.0, ge=0, le=100)
    active_users: int = 0
    memory_usage: float = 0
    heap_used: float = 0
    heap_total: float = 0
    event_loop_lag: float = 0.0

    @model_validator(mode="after")
    def _heap_bounds(self):
        if self.heap_used > self.heap_total:
            raise ValueError("heapUsed must not exceed heapTotal")
        return self


# API

class ApiMetrics(SnapshotModel):
    total_requests: int = 0
    successful_requests: int = 0
    failed_requests: int = 0
    average_response_time: float = 0.0
    p95_response_time: float = 0.0
    p99_response_time: float = 0.0
    requests_per_second: float = 0.0

    @model_validator(mode="after")
    def _request_totals(self):
        if self.total_requests != self.successful_requests + self.failed_requests:
            raise ValueError("totalRequests must equal successfulRequests + failedRequests")
        return self


# Business

class BusinessMetrics(SnapshotModel):
    total_users: int = Field(default=0, ge=0)
    active_users: int = Field(default=0, ge=0)
    new_users: int = Field(default=0, ge=0)
    total_revenue: float = 0.0
    daily_revenue: float = 0.0
    subscription_count: int = 0
    churn_rate: float = Field(default=0.0, ge=0, le=100)
    conversion_rate: float = Field(default=0.0, ge=0, le=100)

    @model_validator(mode="after")
    def _user_counts(self):
        if self.active_users > self.total_users:
            raise ValueError("activeUsers must not exceed totalUsers")
        return self


# Errors

class SeverityCounts(SnapshotModel):
    critical: int = Field(default=0, ge=0)
    high: int = Field(default=0, ge=0)
    medium: int = Field(default=0, ge=0)
    low: int = Field(default=0, ge=0)

    @property
    def total(self) -> int:
        return self.critical + self.high + self.medium + self.low


class RecentError(SnapshotModel):
    message: str
    stack: str = ""
    timestamp: datetime
    severity: ErrorSeverity
    count: int = 1


class ErrorMetrics(SnapshotModel):
    total: int = 0
    by_type: Dict[str, int] = Field(default_factory=dict)
    by_severity: SeverityCounts = Field(default_factory=SeverityCounts)
    recent_errors: List[RecentError] = Field(default_factory=list)

    @field_validator("by_type")
    @classmethod
    def _validate_types(cls, value: Dict[str, int]) -> Dict[str, int]:
        if len(value) > MAX_ERROR_TYPES:
            raise ValueError(f"byType holds at most {MAX_ERROR_TYPES} keys")
        for key in value:
            if not ERROR_TYPE_PATTERN.match(key):
                raise ValueError(f"Invalid error type key: {key!r}")
        return value

    @model_validator(mode="after")
    def _severity_total(self):
        if self.total != self.by_severity.total:
            raise ValueError("total must equal the sum of bySeverity counts")
        return self


# Security / network

class SecurityMetrics(SnapshotModel):
    failed_logins: int = 0
    blocked_ips: int = Field(default=0, alias="blockedIPs")
    suspicious_activity: int = 0
    security_alerts: int = 0
    last_security_scan: datetime = Field(default_factory=utcnow)
    vulnerability_count: int = 0


class NetworkMetrics(SnapshotModel):
    bandwidth_in: float = 0.0
    bandwidth_out: float = 0.0
    latency: float = 0.0
    packet_loss: float = Field(default=0.0, ge=0, le=100)
    connection_count: int = 0


# Health

class HealthAlert(SnapshotModel):
    type: str
    message: str
    severity: AlertSeverity
    timestamp: datetime = Field(default_factory=utcnow)


class ServiceStatuses(SnapshotModel):
    database: HealthState = HealthState.HEALTHY
    api: HealthState = HealthState.HEALTHY
    cache: HealthState = HealthState.HEALTHY
    storage: HealthState = HealthState.HEALTHY


class HealthStatus(SnapshotModel):
    overall: HealthState = HealthState.HEALTHY
    services: ServiceStatuses = Field(default_factory=ServiceStatuses)
    alerts: List[HealthAlert] = Field(default_factory=list)


class MetricSnapshot(SnapshotModel):
    """One immutable, timestamped record of all sampled metric families."""
    timestamp: datetime = Field(default_factory=utcnow)
    server: ServerMetrics = Field(default_factory=ServerMetrics)
    database: DatabaseMetrics = Field(default_factory=DatabaseMetrics)
    application: ApplicationMetrics = Field(default_factory=ApplicationMetrics)
    api: ApiMetrics = Field(default_factory=ApiMetrics)
    business: BusinessMetrics = Field(default_factory=BusinessMetrics)
    error_metrics: ErrorMetrics = Field(default_factory=ErrorMetrics)
    security: SecurityMetrics = Field(default_factory=SecurityMetrics)
    network: NetworkMetrics = Field(default_factory=NetworkMetrics)
    health_status: HealthStatus = Field(default_factory=HealthStatus)
    custom_metrics: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("custom_metrics")
    @classmethod
    def _validate_custom_keys(cls, value: Dict[str, Any]) -> Dict[str, Any]:
        unknown = set(value) - CUSTOM_METRIC_KEYS
        if unknown:
            raise ValueError(f"Unknown custom metric keys: {sorted(unknown)}")
        return value

    def to_document(self) -> Dict[str, Any]:
        """Serialize to the camelCase JSON document that is stored and served."""
        return self.model_dump(mode="json", by_alias=True)

    @classmethod
    def from_document(cls, document: Dict[str, Any]) -> "MetricSnapshot":
        return cls.model_validate(document)


def enrich(snapshot: MetricSnapshot, health_status: HealthStatus) -> MetricSnapshot:
    """Return a copy of the snapshot carrying the given health status."""
    return snapshot.model_copy(update={"health_status": health_status})


def empty_health_payload() -> Dict[str, Any]:
    """Health payload served when no snapshot exists yet."""
    return {"overall": "unknown", "services": {}, "alerts": []}
