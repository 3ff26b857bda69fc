"""Middleware configuration for the FastAPI application."""

import logging
import time

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from prometheus_client import generate_latest, CONTENT_TYPE_LATEST

from config.monitoring_config import MonitoringSettings
from src.monitoring.schemas import ErrorSeverity
from src.monitoring.tracking import request_count, request_duration

logger = logging.getLogger(__name__)


def _endpoint_label(request: Request) -> str:
    """Route template when matched, so path parameters don't explode label cardinality."""
    route = request.scope.get("route")
    return getattr(route, "path", request.url.path)


def setup_middleware(app: FastAPI, settings: MonitoringSettings) -> None:
    """
    Configure all middleware for the application.

    Args:
        app: FastAPI application instance
        settings: Monitoring settings
    """
    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=settings.cors_allow_credentials,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["*"],
        expose_headers=["X-Process-Time"]
    )

    @app.middleware("http")
    async def add_process_time_header(request: Request, call_next):
        """Add X-Process-Time header to responses."""
        start_time = time.time()
        response = await call_next(request)
        process_time = time.time() - start_time
        response.headers["X-Process-Time"] = str(process_time)
        return response

    @app.middleware("http")
    async def catch_exceptions_middleware(request: Request, call_next):
        """Catch, log and record unhandled exceptions."""
        try:
            return await call_next(request)
        except Exception as e:
            logger.error(f"Unhandled exception: {e}", exc_info=True)
            request.app.state.error_tracker.record_error(e, severity=ErrorSeverity.CRITICAL)
            return JSONResponse(
                status_code=500,
                content={"success": False, "message": "Internal server error"}
            )

    @app.middleware("http")
    async def request_tracking_middleware(request: Request, call_next):
        """Feed Prometheus and the in-process request tracker."""
        # Skip metrics endpoint itself
        if request.url.path == "/metrics":
            return await call_next(request)

        start_time = time.perf_counter()
        response = await call_next(request)
        duration = time.perf_counter() - start_time

        method = request.method
        endpoint = _endpoint_label(request)
        status = response.status_code

        request_count.labels(
            method=method,
            endpoint=endpoint,
            status=status
        ).inc()

        request_duration.labels(
            method=method,
            endpoint=endpoint
        ).observe(duration)

        client = request.client.host if request.client else None
        request.app.state.request_tracker.record(duration * 1000, status, client)

        return response

    # Add Prometheus metrics endpoint
    @app.get("/metrics", include_in_schema=False)
    async def metrics():
        """Prometheus metrics endpoint."""
        return Response(
            content=generate_latest(),
            media_type=CONTENT_TYPE_LATEST
        )

    logger.info("Middleware configured successfully")
