import logging
import time
from typing import Any, Dict

from fastapi import APIRouter, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse

from src.database.database import check_database_connection
from src.monitoring.clock import utcnow

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/health", tags=["health"])

SERVICE_NAME = "metrics-monitoring-service"
SERVICE_VERSION = "1.0.0"

_started_at = time.time()


@router.get("/", response_model=Dict[str, Any])
async def health_check():
    """Basic health check endpoint."""
    return {
        "status": "healthy",
        "timestamp": utcnow().isoformat(),
        "service": SERVICE_NAME,
        "version": SERVICE_VERSION,
        "uptime": round(time.time() - _started_at, 2)
    }


@router.get("/live", response_model=Dict[str, Any])
async def liveness_check():
    """
    Kubernetes liveness probe endpoint.
    Returns 200 if the service is alive.
    """
    return {
        "status": "alive",
        "timestamp": utcnow().isoformat()
    }


@router.get("/ready", response_model=Dict[str, Any])
async def readiness_check(request: Request):
    """
    Kubernetes readiness probe endpoint.
    Ready when the metrics store answers and the collector exists.
    """
    checks = {
        "database": await run_in_threadpool(check_database_connection, request.app.state.engine),
        "collector_running": request.app.state.collector.running
    }

    if not checks["database"]:
        return JSONResponse(
            status_code=503,
            content={"status": "not_ready", "timestamp": utcnow().isoformat(), "checks": checks}
        )

    return {
        "status": "ready",
        "timestamp": utcnow().isoformat(),
        "checks": checks
    }
