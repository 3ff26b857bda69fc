"""
Health Evaluation

Derives a health verdict and alert list from a single snapshot against fixed
thresholds, and a 0-100 health score from the latest sample of a history.
Every call evaluates fresh; there is no hysteresis between ticks.
"""

import logging
from dataclasses import dataclass
from typing import Dict, List, Sequence, Tuple

from src.monitoring.clock import utcnow
from src.monitoring.schemas import (
    AlertSeverity,
    HealthAlert,
    HealthState,
    HealthStatus,
    MetricSnapshot,
    ServiceStatuses,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Threshold:
    """Warning/critical breakpoints for one check. Breach is strictly greater-than."""
    warning: float
    critical: float

    def classify(self, value: float) -> HealthState:
        if value > self.critical:
            return HealthState.CRITICAL
        if value > self.warning:
            return HealthState.WARNING
        return HealthState.HEALTHY


HEALTH_THRESHOLDS: Dict[str, Threshold] = {
    "cpu": Threshold(warning=80, critical=90),  # percent
    "memory": Threshold(warning=85, critical=95),  # percent
    "database": Threshold(warning=500, critical=1000),  # ms
    "api": Threshold(warning=1000, critical=2000),  # ms
}

ALERT_MESSAGES = {
    ("cpu", HealthState.CRITICAL): "High CPU usage detected",
    ("cpu", HealthState.WARNING): "Elevated CPU usage",
    ("memory", HealthState.CRITICAL): "Critical memory usage",
    ("memory", HealthState.WARNING): "High memory usage",
    ("database", HealthState.CRITICAL): "Database query time critical",
    ("database", HealthState.WARNING): "Slow database queries",
    ("api", HealthState.CRITICAL): "API response time critical",
    ("api", HealthState.WARNING): "Elevated API response time",
}

# Tiered score penalties: (breakpoint, penalty), highest breakpoint first
SCORE_PENALTIES: Dict[str, List[Tuple[float, int]]] = {
    "cpu": [(90, 30), (80, 15), (70, 5)],
    "memory": [(95, 30), (85, 15), (75, 5)],
    "response_time": [(2000, 20), (1000, 10), (500, 5)],
    "errors": [(100, 20), (50, 10), (10, 5)],
}


def _check_values(snapshot: MetricSnapshot) -> Dict[str, float]:
    return {
        "cpu": snapshot.server.cpu.usage,
        "memory": snapshot.server.memory.usage_percentage,
        "database": snapshot.database.query_time,
        "api": snapshot.api.average_response_time,
    }


def evaluate(snapshot: MetricSnapshot) -> HealthStatus:
    """
    Evaluate the health of a snapshot.

    ``overall`` is the most severe result across the cpu, memory, database and
    api checks. Cache and storage are not probed and report healthy.
    """
    alerts: List[HealthAlert] = []
    results: Dict[str, HealthState] = {}

    for check, value in _check_values(snapshot).items():
        state = HEALTH_THRESHOLDS[check].classify(value)
        results[check] = state
        if state is not HealthState.HEALTHY:
            alerts.append(HealthAlert(
                type=check,
                message=ALERT_MESSAGES[(check, state)],
                severity=AlertSeverity(state.value),
                timestamp=utcnow()
            ))

    overall = HealthState.worst(*results.values())
    if alerts:
        logger.debug(f"Health evaluated as {overall.value} with {len(alerts)} alert(s)")

    return HealthStatus(
        overall=overall,
        services=ServiceStatuses(
            database=results["database"],
            api=results["api"],
            cache=HealthState.HEALTHY,
            storage=HealthState.HEALTHY
        ),
        alerts=alerts
    )


def _penalty(value: float, tiers: List[Tuple[float, int]]) -> int:
    for breakpoint, penalty in tiers:
        if value > breakpoint:
            return penalty
    return 0


def health_score(history: Sequence[MetricSnapshot]) -> int:
    """Score 0-100 from the most recent sample in ``history``; 0 when empty."""
    if not history:
        return 0

    latest = history[-1]
    score = 100
    score -= _penalty(latest.server.cpu.usage, SCORE_PENALTIES["cpu"])
    score -= _penalty(latest.server.memory.usage_percentage, SCORE_PENALTIES["memory"])
    score -= _penalty(latest.api.average_response_time, SCORE_PENALTIES["response_time"])
    score -= _penalty(latest.error_metrics.total, SCORE_PENALTIES["errors"])

    return max(0, min(100, score))
