"""
In-process request and error tracking.

The HTTP middleware records every request here and unhandled exceptions are
recorded as errors. The api, application, error and security sources read
these trackers when a snapshot is collected.
"""

import logging
import math
import re
import threading
import time
import traceback
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Deque, Dict, List, Optional, Sequence

from prometheus_client import Counter, Gauge, Histogram

from src.monitoring.clock import utcnow
from src.monitoring.schemas import ERROR_TYPE_PATTERN, MAX_ERROR_TYPES, ErrorSeverity

logger = logging.getLogger(__name__)

# Prometheus metrics
request_count = Counter(
    'http_requests_total',
    'Total HTTP requests',
    ['method', 'endpoint', 'status']
)

request_duration = Histogram(
    'http_request_duration_seconds',
    'HTTP request duration in seconds',
    ['method', 'endpoint']
)

snapshot_cpu_usage = Gauge('system_cpu_usage_percent', 'CPU usage at the last collected snapshot')
snapshot_memory_usage = Gauge('system_memory_usage_percent', 'Memory usage at the last collected snapshot')
snapshot_health_score = Gauge('system_health_score', 'Health score of the last collected snapshot')
snapshots_dropped = Counter('metrics_snapshots_dropped_total', 'Snapshots dropped after failed saves')


def percentile(values: Sequence[float], pct: float) -> float:
    """Nearest-rank percentile of ``values``; 0.0 when empty."""
    if not values:
        return 0.0
    ordered = sorted(values)
    rank = max(1, math.ceil(pct / 100 * len(ordered)))
    return ordered[rank - 1]


@dataclass
class RequestSample:
    timestamp: float
    duration_ms: float
    status_code: int
    client: Optional[str] = None


@dataclass
class RequestStats:
    """Aggregates over the tracker window."""
    total: int = 0
    successful: int = 0
    failed: int = 0
    average_ms: float = 0.0
    p95_ms: float = 0.0
    p99_ms: float = 0.0
    requests_per_second: float = 0.0
    error_rate: float = 0.0  # percent
    active_clients: int = 0
    unauthorized: int = 0
    forbidden: int = 0
    throttled_clients: int = 0


class RequestTracker:
    """Sliding window of recent HTTP requests."""

    def __init__(self, window_seconds: int = 60, max_samples: int = 100000):
        self.window_seconds = window_seconds
        self._samples: Deque[RequestSample] = deque(maxlen=max_samples)
        self._lock = threading.Lock()

    def record(self, duration_ms: float, status_code: int, client: Optional[str] = None) -> None:
        with self._lock:
            self._samples.append(RequestSample(time.monotonic(), duration_ms, status_code, client))

    def _prune(self, now: float) -> None:
        cutoff = now - self.window_seconds
        while self._samples and self._samples[0].timestamp < cutoff:
            self._samples.popleft()

    def stats(self) -> RequestStats:
        with self._lock:
            self._prune(time.monotonic())
            samples = list(self._samples)

        if not samples:
            return RequestStats()

        durations = [s.duration_ms for s in samples]
        failed = sum(1 for s in samples if s.status_code >= 400)
        total = len(samples)

        return RequestStats(
            total=total,
            successful=total - failed,
            failed=failed,
            average_ms=sum(durations) / total,
            p95_ms=percentile(durations, 95),
            p99_ms=percentile(durations, 99),
            requests_per_second=total / self.window_seconds,
            error_rate=failed / total * 100,
            active_clients=len({s.client for s in samples if s.client}),
            unauthorized=sum(1 for s in samples if s.status_code == 401),
            forbidden=sum(1 for s in samples if s.status_code == 403),
            throttled_clients=len({s.client for s in samples if s.status_code == 429 and s.client}),
        )

    def reset(self) -> None:
        with self._lock:
            self._samples.clear()


@dataclass
class TrackedError:
    message: str
    stack: str
    timestamp: datetime
    severity: ErrorSeverity
    count: int = 1


@dataclass
class ErrorBatch:
    """Errors recorded since the previous drain."""
    by_type: Dict[str, int] = field(default_factory=dict)
    by_severity: Dict[ErrorSeverity, int] = field(default_factory=dict)
    recent: List[TrackedError] = field(default_factory=list)

    @property
    def total(self) -> int:
        return sum(self.by_severity.values())


_WORD_BOUNDARY = re.compile(r"(.)([A-Z][a-z]+)")
_ACRONYM_BOUNDARY = re.compile(r"([a-z0-9])([A-Z])")


def error_type_key(name: str) -> str:
    """Normalize an exception class name to a ``byType`` key."""
    key = _ACRONYM_BOUNDARY.sub(r"\1_\2", _WORD_BOUNDARY.sub(r"\1_\2", name)).lower()
    key = re.sub(r"[^a-z0-9_]", "_", key).strip("_")[:64]
    if not key or not ERROR_TYPE_PATTERN.match(key):
        return "other"
    return key


class ErrorTracker:
    """Counts errors per collection interval and keeps a bounded recent list."""

    def __init__(self, recent_limit: int = 50):
        self.recent_limit = recent_limit
        self._batch = ErrorBatch()
        self._lock = threading.Lock()

    def record_error(
        self,
        error,
        severity: ErrorSeverity = ErrorSeverity.HIGH,
        error_type: Optional[str] = None
    ) -> None:
        """Record an exception instance or a plain message."""
        if isinstance(error, BaseException):
            message = str(error) or error.__class__.__name__
            stack = "".join(traceback.format_exception(type(error), error, error.__traceback__))
            key = error_type_key(error_type or error.__class__.__name__)
        else:
            message = str(error)
            stack = ""
            key = error_type_key(error_type or "application_error")

        with self._lock:
            batch = self._batch
            # one slot stays reserved for the "other" bucket
            if key not in batch.by_type and len(batch.by_type) >= MAX_ERROR_TYPES - 1:
                key = "other"
            batch.by_type[key] = batch.by_type.get(key, 0) + 1
            batch.by_severity[severity] = batch.by_severity.get(severity, 0) + 1

            for tracked in batch.recent:
                if tracked.message == message and tracked.severity == severity:
                    tracked.count += 1
                    tracked.timestamp = utcnow()
                    break
            else:
                batch.recent.append(TrackedError(message, stack, utcnow(), severity))
                if len(batch.recent) > self.recent_limit:
                    batch.recent.pop(0)

    def drain(self) -> ErrorBatch:
        """Return and reset the errors recorded since the last drain."""
        with self._lock:
            batch, self._batch = self._batch, ErrorBatch()
        return batch


def publish_snapshot_gauges(cpu_usage: float, memory_usage: float, score: int) -> None:
    snapshot_cpu_usage.set(cpu_usage)
    snapshot_memory_usage.set(memory_usage)
    snapshot_health_score.set(score)

