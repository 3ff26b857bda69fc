"""
Metric Sources

One coroutine per metric family. Each source catches its own failures and
returns the family's zeroed default fragment, so a broken source never
aborts a collection tick.
"""

import asyncio
import logging
import os
import platform
import socket
import sys
import time
from typing import Awaitable, Callable, Dict, Optional, Tuple

import psutil
from sqlalchemy import text
from sqlalchemy.engine import Engine

from src.monitoring.clock import utcnow
from src.monitoring.schemas import (
    ApiMetrics,
    ApplicationMetrics,
    BusinessMetrics,
    CpuMetrics,
    DatabaseMetrics,
    ErrorMetrics,
    ErrorSeverity,
    NetworkMetrics,
    RecentError,
    SecurityMetrics,
    ServerMetrics,
    SeverityCounts,
    UsageMetrics,
)
from src.monitoring.tracking import ErrorTracker, RequestTracker

logger = logging.getLogger(__name__)

BusinessMetricsProvider = Callable[[], Awaitable[BusinessMetrics]]


def _usage(used: float, free: float, total: float) -> UsageMetrics:
    percentage = (used / total) * 100 if total else 0.0
    return UsageMetrics(used=used, free=free, total=total, usage_percentage=min(100.0, max(0.0, percentage)))


def network_delta(
    previous: Optional[Tuple[float, int, int]],
    current: Tuple[float, int, int]
) -> Tuple[float, float]:
    """Bytes/second in and out between two ``(monotonic, recv, sent)`` readings."""
    if previous is None:
        return 0.0, 0.0
    elapsed = current[0] - previous[0]
    if elapsed <= 0:
        return 0.0, 0.0
    return (
        max(0, current[1] - previous[1]) / elapsed,
        max(0, current[2] - previous[2]) / elapsed
    )


class MetricSources:
    """Per-family metric sources sharing the process-level trackers."""

    def __init__(
        self,
        engine: Engine,
        request_tracker: RequestTracker,
        error_tracker: ErrorTracker,
        business_provider: Optional[BusinessMetricsProvider] = None,
        slow_query_ms: float = 100.0
    ):
        self.engine = engine
        self.request_tracker = request_tracker
        self.error_tracker = error_tracker
        self.business_provider = business_provider
        self.slow_query_ms = slow_query_ms
        self._process = psutil.Process(os.getpid())
        self._last_net_reading: Optional[Tuple[float, int, int]] = None

        # First cpu_percent call only primes the counters
        psutil.cpu_percent(interval=None)

    def all_sources(self) -> Dict[str, Callable[[], Awaitable]]:
        """Sources keyed by snapshot field name."""
        return {
            "server": self.collect_server,
            "database": self.collect_database,
            "application": self.collect_application,
            "api": self.collect_api,
            "business": self.collect_business,
            "error_metrics": self.collect_errors,
            "security": self.collect_security,
            "network": self.collect_network,
        }

    # Server

    def _read_server(self) -> ServerMetrics:
        memory = psutil.virtual_memory()
        disk = psutil.disk_usage('/')
        return ServerMetrics(
            cpu=CpuMetrics(
                usage=psutil.cpu_percent(interval=None),
                load_average=list(psutil.getloadavg()),
                cores=psutil.cpu_count() or 1
            ),
            memory=_usage(memory.total - memory.available, memory.available, memory.total),
            disk=_usage(disk.used, disk.free, disk.total),
            uptime=max(0.0, time.time() - psutil.boot_time()),
            process_id=os.getpid()
        )

    async def collect_server(self) -> ServerMetrics:
        """Collect host CPU, memory and disk metrics."""
        try:
            return await asyncio.to_thread(self._read_server)
        except Exception as e:
            logger.error(f"Error getting server metrics: {e}")
            return ServerMetrics(process_id=os.getpid())

    # Database

    def _probe_database(self) -> DatabaseMetrics:
        start_time = time.perf_counter()
        with self.engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        query_time = (time.perf_counter() - start_time) * 1000  # ms

        pool = self.engine.pool
        checked_out = pool.checkedout() if hasattr(pool, "checkedout") else 0
        pool_size = pool.size() if hasattr(pool, "size") else 1

        return DatabaseMetrics(
            connection_count=pool_size,
            active_connections=checked_out,
            query_time=query_time,
            slow_queries=1 if query_time > self.slow_query_ms else 0
        )

    async def collect_database(self) -> DatabaseMetrics:
        """Probe the metrics store connection."""
        try:
            return await asyncio.to_thread(self._probe_database)
        except Exception as e:
            logger.error(f"Error getting database metrics: {e}")
            return DatabaseMetrics()

    # Application

    async def _event_loop_lag(self) -> float:
        loop = asyncio.get_running_loop()
        start = loop.time()
        await asyncio.sleep(0)
        return (loop.time() - start) * 1000  # ms

    async def collect_application(self) -> ApplicationMetrics:
        """Collect process memory, event loop lag and request figures."""
        try:
            memory = self._process.memory_info()
            stats = self.request_tracker.stats()
            return ApplicationMetrics(
                request_count=stats.total,
                response_time=stats.average_ms,
                error_rate=stats.error_rate,
                active_users=stats.active_clients,
                memory_usage=memory.rss,
                heap_used=memory.rss,
                heap_total=max(memory.vms, memory.rss),
                event_loop_lag=await self._event_loop_lag()
            )
        except Exception as e:
            logger.error(f"Error getting application metrics: {e}")
            return ApplicationMetrics()

    # API

    async def collect_api(self) -> ApiMetrics:
        """Summarize HTTP traffic seen by the request tracker."""
        try:
            stats = self.request_tracker.stats()
            return ApiMetrics(
                total_requests=stats.total,
                successful_requests=stats.successful,
                failed_requests=stats.failed,
                average_response_time=stats.average_ms,
                p95_response_time=stats.p95_ms,
                p99_response_time=stats.p99_ms,
                requests_per_second=stats.requests_per_second
            )
        except Exception as e:
            logger.error(f"Error getting API metrics: {e}")
            return ApiMetrics()

    # Business

    async def collect_business(self) -> BusinessMetrics:
        """Delegate to the configured business provider, if any."""
        if self.business_provider is None:
            return BusinessMetrics()
        try:
            return await self.business_provider()
        except Exception as e:
            logger.error(f"Error getting business metrics: {e}")
            return BusinessMetrics()

    # Errors

    async def collect_errors(self) -> ErrorMetrics:
        """Drain errors recorded since the previous tick."""
        try:
            batch = self.error_tracker.drain()
            severity = SeverityCounts(
                critical=batch.by_severity.get(ErrorSeverity.CRITICAL, 0),
                high=batch.by_severity.get(ErrorSeverity.HIGH, 0),
                medium=batch.by_severity.get(ErrorSeverity.MEDIUM, 0),
                low=batch.by_severity.get(ErrorSeverity.LOW, 0)
            )
            return ErrorMetrics(
                total=severity.total,
                by_type=dict(batch.by_type),
                by_severity=severity,
                recent_errors=[
                    RecentError(
                        message=tracked.message,
                        stack=tracked.stack,
                        timestamp=tracked.timestamp,
                        severity=tracked.severity,
                        count=tracked.count
                    )
                    for tracked in batch.recent
                ]
            )
        except Exception as e:
            logger.error(f"Error getting error metrics: {e}")
            return ErrorMetrics()

    # Security

    async def collect_security(self) -> SecurityMetrics:
        """Derive auth failure figures from recent responses."""
        try:
            stats = self.request_tracker.stats()
            return SecurityMetrics(
                failed_logins=stats.unauthorized,
                blocked_ips=stats.throttled_clients,
                suspicious_activity=stats.forbidden,
                security_alerts=0,
                last_security_scan=utcnow(),
                vulnerability_count=0
            )
        except Exception as e:
            logger.error(f"Error getting security metrics: {e}")
            return SecurityMetrics()

    # Network

    def _read_network(self) -> NetworkMetrics:
        counters = psutil.net_io_counters()
        reading = (time.monotonic(), counters.bytes_recv, counters.bytes_sent)
        bandwidth_in, bandwidth_out = network_delta(self._last_net_reading, reading)
        self._last_net_reading = reading

        interface_stats = psutil.net_if_stats()
        external = 0
        for name, addresses in psutil.net_if_addrs().items():
            stats = interface_stats.get(name)
            if stats is None or not stats.isup:
                continue
            if any(
                addr.family in (socket.AF_INET, socket.AF_INET6)
                and not addr.address.startswith(("127.", "::1"))
                for addr in addresses
            ):
                external += 1

        return NetworkMetrics(
            bandwidth_in=bandwidth_in,
            bandwidth_out=bandwidth_out,
            latency=0.0,  # no external probe
            packet_loss=0.0,
            connection_count=external
        )

    async def collect_network(self) -> NetworkMetrics:
        """Collect interface throughput since the previous tick."""
        try:
            return await asyncio.to_thread(self._read_network)
        except Exception as e:
            logger.error(f"Error getting network metrics: {e}")
            return NetworkMetrics()


def runtime_info() -> Dict[str, str]:
    """Static runtime details recorded in ``customMetrics``."""
    return {
        "pythonVersion": sys.version.split()[0],
        "platform": sys.platform,
        "arch": platform.machine(),
        "hostname": socket.gethostname(),
    }
