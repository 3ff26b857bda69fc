import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.engine import Engine
from starlette.exceptions import HTTPException as StarletteHTTPException

from config.logging_config import configure_logging
from config.monitoring_config import MonitoringSettings, monitoring_settings
from . import performance_router, health_router, setup_middleware
from ..database.database import build_engine, build_session_factory, check_database_connection, init_db
from ..database.repositories import MetricsRepository
from ..monitoring.collector import MetricsCollector
from ..monitoring.errors import InvalidQueryError
from ..monitoring.sources import BusinessMetricsProvider, MetricSources
from ..monitoring.summaries import MetricsSummaryService
from ..monitoring.tracking import ErrorTracker, RequestTracker

logger = logging.getLogger(__name__)


def create_app(
    settings: Optional[MonitoringSettings] = None,
    engine: Optional[Engine] = None,
    business_provider: Optional[BusinessMetricsProvider] = None
) -> FastAPI:
    """
    Build the monitoring service.

    The lifespan is the composition root: it creates the store, the collector
    and the summary service once and keeps them on ``app.state``.
    """
    settings = settings or monitoring_settings
    configure_logging(settings)

    owns_engine = engine is None

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """
        Manage application lifecycle events.
        """
        # Startup
        logger.info("Starting metrics monitoring service...")

        db_engine = engine if engine is not None else build_engine(settings)

        if not check_database_connection(db_engine):
            logger.error("Failed to connect to metrics store")
        else:
            logger.info("Metrics store connection successful")

        init_db(db_engine)

        repository = MetricsRepository(build_session_factory(db_engine))
        sources = MetricSources(
            db_engine,
            app.state.request_tracker,
            app.state.error_tracker,
            business_provider=business_provider,
            slow_query_ms=settings.metrics_slow_query_ms
        )
        collector = MetricsCollector(
            sources,
            repository,
            save_retries=settings.metrics_save_retries,
            retention_days=settings.metrics_retention_days,
            retention_interval_minutes=settings.metrics_retention_interval_minutes,
            default_interval_ms=settings.metrics_collection_interval_ms
        )

        app.state.engine = db_engine
        app.state.repository = repository
        app.state.collector = collector
        app.state.summary_service = MetricsSummaryService(repository)

        if settings.metrics_auto_start:
            try:
                collector.start_collection(settings.metrics_collection_interval_ms)
            except Exception as e:
                logger.error(f"Failed to start metrics collection: {e}")
                # Continue serving stored data without collection

        yield

        # Shutdown
        logger.info("Shutting down metrics monitoring service...")
        collector.stop_collection()
        if owns_engine:
            db_engine.dispose()

    app = FastAPI(
        title="Metrics Monitoring Service",
        description="Periodic operational metrics collection, health evaluation and performance reporting",
        version="1.0.0",
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan
    )

    app.state.settings = settings

    # Trackers exist before the first request reaches the middleware
    app.state.request_tracker = RequestTracker(window_seconds=settings.metrics_request_window_seconds)
    app.state.error_tracker = ErrorTracker(recent_limit=settings.metrics_recent_errors_limit)

    setup_middleware(app, settings)

    app.include_router(performance_router)
    app.include_router(health_router)

    @app.get("/")
    async def root():
        """Root endpoint."""
        return {
            "service": "Metrics Monitoring Service",
            "version": "1.0.0",
            "status": "operational",
            "documentation": "/docs"
        }

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        return JSONResponse(
            status_code=exc.status_code,
            content={"success": False, "message": exc.detail},
            headers=getattr(exc, "headers", None)
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(
            status_code=400,
            content={
                "success": False,
                "message": "Invalid request parameters",
                "errors": jsonable_encoder(exc.errors())
            }
        )

    @app.exception_handler(InvalidQueryError)
    async def invalid_query_handler(request: Request, exc: InvalidQueryError):
        return JSONResponse(status_code=400, content={"success": False, "message": str(exc)})

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """Handle unexpected exceptions."""
        logger.error(f"Unhandled exception: {exc}", exc_info=True)
        return JSONResponse(
            status_code=500,
            content={
                "success": False,
                "message": "An unexpected error occurred. Please try again later."
            }
        )

    return app


app = create_app()
