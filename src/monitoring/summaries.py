"""
Windowed Summaries and Trends

Read path over the stored series. Every summary resolves a period token to a
``[now - period, now]`` window, pulls the samples in chronological order and
reduces them. Empty windows yield zeros and empty arrays.
"""

import logging
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Sequence

from src.database.repositories import MetricsRepository
from src.monitoring.clock import utcnow
from src.monitoring.health import health_score
from src.monitoring.schemas import MetricSnapshot

logger = logging.getLogger(__name__)

PERIODS: Dict[str, timedelta] = {
    "1h": timedelta(hours=1),
    "24h": timedelta(hours=24),
    "7d": timedelta(days=7),
    "30d": timedelta(days=30),
}

# Allowed tokens and default per metric family
PERFORMANCE_PERIODS = (("1h", "24h", "7d", "30d"), "24h")
DATABASE_PERIODS = (("1h", "24h", "7d"), "24h")
ERROR_PERIODS = (("1h", "24h", "7d"), "24h")
BUSINESS_PERIODS = (("24h", "7d", "30d"), "30d")

RECENT_ERRORS_LIMIT = 50


def resolve_period(period: Optional[str], allowed: Sequence[str], default: str) -> str:
    """Return ``period`` if allowed for the family, else the family default."""
    if period in allowed:
        return period
    if period is not None:
        logger.debug(f"Unsupported period '{period}', using '{default}'")
    return default


def window_start(period: str, now: Optional[datetime] = None) -> datetime:
    return (now or utcnow()) - PERIODS[period]


def _avg(values: Sequence[float]) -> float:
    return sum(values) / len(values) if values else 0.0


def _max(values: Sequence[float]) -> float:
    return max(values) if values else 0.0


def _trend(samples: Sequence[MetricSnapshot], project: Callable[[MetricSnapshot], float]) -> List[Dict[str, Any]]:
    return [
        {"timestamp": s.timestamp.isoformat(), "value": project(s)}
        for s in samples
    ]


def _cpu(s: MetricSnapshot) -> float:
    return s.server.cpu.usage


def _memory(s: MetricSnapshot) -> float:
    return s.server.memory.usage_percentage


def _response_time(s: MetricSnapshot) -> float:
    return s.api.average_response_time


def _errors(s: MetricSnapshot) -> int:
    return s.error_metrics.total


def performance_trend_arrays(samples: Sequence[MetricSnapshot]) -> Dict[str, List[Dict[str, Any]]]:
    return {
        "cpu": _trend(samples, _cpu),
        "memory": _trend(samples, _memory),
        "responseTime": _trend(samples, _response_time),
        "errors": _trend(samples, _errors),
    }


class MetricsSummaryService:
    """Windowed summaries per metric family."""

    def __init__(self, repository: MetricsRepository):
        self.repository = repository

    def _samples(self, period: str) -> List[MetricSnapshot]:
        return self.repository.range_since(window_start(period))

    def performance_summary(self, period: Optional[str] = None) -> Dict[str, Any]:
        """General system summary with cpu/memory/response/error trends."""
        period = resolve_period(period, *PERFORMANCE_PERIODS)
        samples = self._samples(period)

        cpu = [_cpu(s) for s in samples]
        memory = [_memory(s) for s in samples]
        response_times = [_response_time(s) for s in samples]
        errors = [_errors(s) for s in samples]

        return {
            "period": period,
            "summary": {
                "avgCpuUsage": _avg(cpu),
                "maxCpuUsage": _max(cpu),
                "avgMemoryUsage": _avg(memory),
                "maxMemoryUsage": _max(memory),
                "avgResponseTime": _avg(response_times),
                "maxResponseTime": _max(response_times),
                "totalErrors": sum(errors),
                "uptime": samples[-1].server.uptime if samples else 0,
                "healthScore": health_score(samples)
            },
            "trends": performance_trend_arrays(samples)
        }

    def performance_trends(self, days: int = 7) -> Dict[str, List[Dict[str, Any]]]:
        """Per-sample trend arrays over the last ``days`` days."""
        if days < 1:
            days = 1
        samples = self.repository.range_since(utcnow() - timedelta(days=days))
        return performance_trend_arrays(samples)

    def database_summary(self, period: Optional[str] = None) -> Dict[str, Any]:
        """Database probe figures per sample plus aggregates."""
        period = resolve_period(period, *DATABASE_PERIODS)
        samples = self._samples(period)

        rows = [
            {"timestamp": s.timestamp.isoformat(), **s.database.model_dump(by_alias=True)}
            for s in samples
        ]
        query_times = [s.database.query_time for s in samples]
        connections = [s.database.connection_count for s in samples]

        return {
            "period": period,
            "metrics": rows,
            "summary": {
                "avgQueryTime": _avg(query_times),
                "maxQueryTime": _max(query_times),
                "avgConnections": _avg(connections),
                "maxConnections": _max(connections),
                "totalSlowQueries": sum(s.database.slow_queries for s in samples),
                "avgCacheHitRate": _avg([s.database.cache_hit_rate for s in samples])
            }
        }

    def error_summary(self, period: Optional[str] = None) -> Dict[str, Any]:
        """Error totals by severity, per-sample trend rows and recent errors."""
        period = resolve_period(period, *ERROR_PERIODS)
        samples = self._samples(period)

        rows = []
        for s in samples:
            severity = s.error_metrics.by_severity
            rows.append({
                "timestamp": s.timestamp.isoformat(),
                "total": s.error_metrics.total,
                "critical": severity.critical,
                "high": severity.high,
                "medium": severity.medium,
                "low": severity.low
            })

        total_errors = sum(r["total"] for r in rows)

        # Newest first across the whole window
        recent = [
            error.model_dump(mode="json", by_alias=True)
            for s in reversed(samples)
            for error in reversed(s.error_metrics.recent_errors)
        ][:RECENT_ERRORS_LIMIT]

        return {
            "period": period,
            "summary": {
                "totalErrors": total_errors,
                "criticalErrors": sum(r["critical"] for r in rows),
                "highErrors": sum(r["high"] for r in rows),
                "mediumErrors": sum(r["medium"] for r in rows),
                "lowErrors": sum(r["low"] for r in rows),
                "errorRate": total_errors / len(rows) if rows else 0.0
            },
            "trends": rows,
            "recentErrors": recent
        }

    def business_summary(self, period: Optional[str] = None) -> Dict[str, Any]:
        """Business figures; totals come from the newest sample."""
        period = resolve_period(period, *BUSINESS_PERIODS)
        samples = self._samples(period)

        rows = [
            {"timestamp": s.timestamp.isoformat(), **s.business.model_dump(by_alias=True)}
            for s in samples
        ]
        latest = samples[-1].business if samples else None

        return {
            "period": period,
            "metrics": rows,
            "summary": {
                "totalUsers": latest.total_users if latest else 0,
                "activeUsers": latest.active_users if latest else 0,
                "newUsers": sum(s.business.new_users for s in samples),
                "totalRevenue": latest.total_revenue if latest else 0,
                "avgDailyRevenue": _avg([s.business.daily_revenue for s in samples]),
                "subscriptionCount": latest.subscription_count if latest else 0,
                "avgChurnRate": _avg([s.business.churn_rate for s in samples]),
                "avgConversionRate": _avg([s.business.conversion_rate for s in samples])
            }
        }
