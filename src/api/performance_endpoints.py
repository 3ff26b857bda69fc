"""
Performance Monitoring API Endpoints

Read access to the collected metrics series and control of the collector.
Every response uses the ``{success, data?, message?}`` envelope.
"""

import logging
from datetime import datetime
from typing import Any, Dict, Optional, Set

from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.concurrency import run_in_threadpool
from pydantic import BaseModel, Field

from src.api.dependencies import (
    get_collector,
    get_error_tracker,
    get_repository,
    get_summary_service,
    require_admin,
    require_viewer,
)
from src.database.repositories import MetricsRepository
from src.monitoring.clock import as_naive_utc
from src.monitoring.collector import MetricsCollector
from src.monitoring.errors import InvalidQueryError
from src.monitoring.schemas import ErrorSeverity, empty_health_payload
from src.monitoring.summaries import MetricsSummaryService
from src.monitoring.tracking import ErrorTracker

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/performance", tags=["Performance Monitoring"])


class MonitoringControlRequest(BaseModel):
    """Request model for starting or stopping collection"""
    action: str = Field(..., description='Either "start" or "stop"')


def envelope(data: Any = None, message: Optional[str] = None) -> Dict[str, Any]:
    body: Dict[str, Any] = {"success": True}
    if data is not None:
        body["data"] = data
    if message is not None:
        body["message"] = message
    return body


def server_error(error_tracker: ErrorTracker, error: Exception, detail: str) -> HTTPException:
    """Log and record a handler failure, returning the 500 to raise."""
    logger.error(f"{detail}: {error}")
    error_tracker.record_error(error, severity=ErrorSeverity.HIGH)
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail=detail
    )


@router.get("/realtime")
async def get_realtime_metrics(
    roles: Set[str] = Depends(require_viewer),
    repository: MetricsRepository = Depends(get_repository),
    error_tracker: ErrorTracker = Depends(get_error_tracker)
):
    """Latest collected snapshot."""
    try:
        latest = await run_in_threadpool(repository.latest)
    except Exception as e:
        raise server_error(error_tracker, e, "Failed to fetch realtime metrics")

    if latest is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="No metrics data available"
        )
    return envelope(latest.to_document())


@router.get("/health")
async def get_system_health(
    roles: Set[str] = Depends(require_viewer),
    repository: MetricsRepository = Depends(get_repository),
    error_tracker: ErrorTracker = Depends(get_error_tracker)
):
    """Health status of the latest snapshot, or ``unknown`` when none exists."""
    try:
        latest = await run_in_threadpool(repository.latest)
    except Exception as e:
        raise server_error(error_tracker, e, "Failed to fetch system health")

    if latest is None:
        return envelope(empty_health_payload())
    return envelope(latest.health_status.model_dump(mode="json", by_alias=True))


@router.get("/trends")
async def get_performance_trends(
    days: int = Query(7, ge=1, description="Number of days to include"),
    roles: Set[str] = Depends(require_viewer),
    summaries: MetricsSummaryService = Depends(get_summary_service),
    error_tracker: ErrorTracker = Depends(get_error_tracker)
):
    """Per-sample cpu, memory, response time and error trends."""
    try:
        return envelope(await run_in_threadpool(summaries.performance_trends, days))
    except Exception as e:
        raise server_error(error_tracker, e, "Failed to fetch performance trends")


@router.get("/history")
async def get_metrics_history(
    start_date: Optional[datetime] = Query(None, alias="startDate"),
    end_date: Optional[datetime] = Query(None, alias="endDate"),
    limit: int = Query(100, ge=1, le=1000),
    skip: int = Query(0, ge=0),
    sort_by: str = Query("timestamp", alias="sortBy"),
    sort_order: str = Query("desc", alias="sortOrder"),
    roles: Set[str] = Depends(require_viewer),
    repository: MetricsRepository = Depends(get_repository),
    error_tracker: ErrorTracker = Depends(get_error_tracker)
):
    """Filtered, sorted and paginated snapshots."""
    try:
        page = await run_in_threadpool(
            repository.query,
            as_naive_utc(start_date),
            as_naive_utc(end_date),
            limit,
            skip,
            sort_by,
            sort_order
        )
    except InvalidQueryError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except Exception as e:
        raise server_error(error_tracker, e, "Failed to fetch metrics history")

    return envelope({
        "metrics": [snapshot.to_document() for snapshot in page.items],
        "pagination": {
            "total": page.total,
            "limit": page.limit,
            "skip": page.skip,
            "hasMore": page.has_more
        }
    })


@router.get("/summary")
async def get_performance_summary(
    period: str = Query("24h", description="1h, 24h, 7d or 30d"),
    roles: Set[str] = Depends(require_viewer),
    summaries: MetricsSummaryService = Depends(get_summary_service),
    error_tracker: ErrorTracker = Depends(get_error_tracker)
):
    try:
        return envelope(await run_in_threadpool(summaries.performance_summary, period))
    except Exception as e:
        raise server_error(error_tracker, e, "Failed to fetch performance summary")


@router.get("/database")
async def get_database_metrics(
    period: str = Query("24h", description="1h, 24h or 7d"),
    roles: Set[str] = Depends(require_viewer),
    summaries: MetricsSummaryService = Depends(get_summary_service),
    error_tracker: ErrorTracker = Depends(get_error_tracker)
):
    try:
        return envelope(await run_in_threadpool(summaries.database_summary, period))
    except Exception as e:
        raise server_error(error_tracker, e, "Failed to fetch database metrics")


@router.get("/errors")
async def get_error_metrics(
    period: str = Query("24h", description="1h, 24h or 7d"),
    roles: Set[str] = Depends(require_viewer),
    summaries: MetricsSummaryService = Depends(get_summary_service),
    error_tracker: ErrorTracker = Depends(get_error_tracker)
):
    try:
        return envelope(await run_in_threadpool(summaries.error_summary, period))
    except Exception as e:
        raise server_error(error_tracker, e, "Failed to fetch error metrics")


@router.get("/business")
async def get_business_metrics(
    period: str = Query("30d", description="24h, 7d or 30d"),
    roles: Set[str] = Depends(require_viewer),
    summaries: MetricsSummaryService = Depends(get_summary_service),
    error_tracker: ErrorTracker = Depends(get_error_tracker)
):
    try:
        return envelope(await run_in_threadpool(summaries.business_summary, period))
    except Exception as e:
        raise server_error(error_tracker, e, "Failed to fetch business metrics")


@router.get("/monitoring")
async def get_monitoring_status(
    roles: Set[str] = Depends(require_viewer),
    collector: MetricsCollector = Depends(get_collector)
):
    """Collector status: running flag, jobs and counters."""
    return envelope(collector.get_status())


@router.post("/monitoring")
async def toggle_monitoring(
    request: MonitoringControlRequest,
    roles: Set[str] = Depends(require_admin),
    collector: MetricsCollector = Depends(get_collector),
    error_tracker: ErrorTracker = Depends(get_error_tracker)
):
    """Start or stop periodic collection."""
    if request.action == "start":
        interval_ms = collector.interval_ms or collector.default_interval_ms
        try:
            collector.start_collection(interval_ms)
        except Exception as e:
            raise server_error(error_tracker, e, "Failed to start system monitoring")
        return envelope(message="System monitoring started")

    if request.action == "stop":
        collector.stop_collection()
        return envelope(message="System monitoring stopped")

    raise HTTPException(
        status_code=status.HTTP_400_BAD_REQUEST,
        detail='Invalid action. Use "start" or "stop"'
    )
