"""
Metrics Collection Scheduler

Samples every metric source on a fixed interval, evaluates health and hands
each snapshot to the repository. One collector is built by the application
lifespan and kept on ``app.state``; nothing else constructs one.

Ticks never overlap: the scheduler runs at most one instance of the
collection job and coalesces missed runs, and ``collect_metrics`` itself
skips when a collection is already in flight.
"""

import asyncio
import logging
import time
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from src.database.repositories import MetricsRepository
from src.monitoring.clock import utcnow
from src.monitoring.health import evaluate, health_score
from src.monitoring.schemas import MetricSnapshot, enrich
from src.monitoring.sources import MetricSources, runtime_info
from src.monitoring.tracking import publish_snapshot_gauges, snapshots_dropped

logger = logging.getLogger(__name__)

COLLECTION_JOB_ID = "metrics_collection"
RETENTION_JOB_ID = "metrics_retention"


class MetricsCollector:
    """Periodic metrics sampler with a retry-then-drop persistence policy."""

    def __init__(
        self,
        sources: MetricSources,
        repository: MetricsRepository,
        save_retries: int = 1,
        retention_days: Optional[int] = None,
        retention_interval_minutes: int = 60,
        default_interval_ms: int = 60000
    ):
        self.sources = sources
        self.repository = repository
        self.save_retries = max(0, save_retries)
        self.retention_days = retention_days
        self.retention_interval_minutes = retention_interval_minutes
        self.default_interval_ms = default_interval_ms

        self.scheduler: Optional[AsyncIOScheduler] = None
        self.running = False
        self.interval_ms: Optional[int] = None

        self._collecting = False
        self._last_timestamp: Optional[datetime] = None

        self.collected_snapshots = 0
        self.dropped_snapshots = 0
        self.skipped_ticks = 0
        self.last_collection_at: Optional[datetime] = None
        self.last_collection_ms: Optional[float] = None

    def start_collection(self, interval_ms: int = 60000) -> bool:
        """
        Start periodic sampling. The first tick runs immediately.

        Must be called with a running event loop. Returns False, without
        scheduling anything, when collection is already running.
        """
        if self.running:
            logger.warning("System monitoring already running")
            return False

        if interval_ms <= 0:
            raise ValueError("interval_ms must be positive")

        self.scheduler = AsyncIOScheduler(
            timezone='UTC',
            job_defaults={
                'coalesce': True,
                'max_instances': 1,
                'misfire_grace_time': 30
            }
        )

        self.scheduler.add_job(
            func=self.collect_metrics,
            trigger=IntervalTrigger(seconds=interval_ms / 1000),
            id=COLLECTION_JOB_ID,
            name='Metrics Collection',
            next_run_time=datetime.now(timezone.utc),
            replace_existing=True
        )

        if self.retention_days:
            self.scheduler.add_job(
                func=self.purge_expired,
                trigger=IntervalTrigger(minutes=self.retention_interval_minutes),
                id=RETENTION_JOB_ID,
                name='Metrics Retention',
                replace_existing=True
            )

        self.scheduler.start()
        self.running = True
        self.interval_ms = interval_ms

        logger.info(f"Starting system monitoring collection (every {interval_ms} ms)")
        return True

    def stop_collection(self) -> bool:
        """Stop scheduling ticks. A tick already in flight completes."""
        if not self.running:
            logger.debug("System monitoring is not running")
            return False

        if self.scheduler:
            self.scheduler.shutdown(wait=False)
            self.scheduler = None

        self.running = False
        logger.info("System monitoring stopped")
        return True

    async def collect_metrics(self) -> Optional[MetricSnapshot]:
        """Run one tick. Returns the persisted snapshot, or None."""
        if self._collecting:
            self.skipped_ticks += 1
            logger.warning("Previous metrics collection still running, skipping tick")
            return None

        self._collecting = True
        try:
            snapshot = await self._gather_snapshot()
            return await self._persist(snapshot)
        except Exception as e:
            logger.error(f"Error collecting system metrics: {e}", exc_info=True)
            return None
        finally:
            self._collecting = False

    async def _run_source(self, name: str, source) -> Any:
        try:
            return await source()
        except Exception as e:
            logger.error(f"Metric source '{name}' failed: {e}")
            return MetricSnapshot.model_fields[name].default_factory()

    async def _next_timestamp(self) -> datetime:
        """Current time, never earlier than the last persisted snapshot."""
        if self._last_timestamp is None:
            try:
                latest = await asyncio.to_thread(self.repository.latest)
                if latest is not None:
                    self._last_timestamp = latest.timestamp
            except Exception as e:
                logger.warning(f"Could not read latest snapshot timestamp: {e}")

        now = utcnow()
        if self._last_timestamp is not None and now < self._last_timestamp:
            return self._last_timestamp
        return now

    async def _gather_snapshot(self) -> MetricSnapshot:
        start_time = time.perf_counter()

        sources = self.sources.all_sources()
        results = await asyncio.gather(
            *(self._run_source(name, source) for name, source in sources.items())
        )
        fragments = dict(zip(sources.keys(), results))
        timestamp = await self._next_timestamp()

        collection_time = (time.perf_counter() - start_time) * 1000  # ms
        snapshot = MetricSnapshot(
            timestamp=timestamp,
            custom_metrics={"collectionTime": collection_time, **runtime_info()},
            **fragments
        )
        self.last_collection_ms = collection_time
        return enrich(snapshot, evaluate(snapshot))

    async def _persist(self, snapshot: MetricSnapshot) -> Optional[MetricSnapshot]:
        attempts = self.save_retries + 1

        for attempt in range(1, attempts + 1):
            result = await asyncio.to_thread(self.repository.save, snapshot)
            if result.ok:
                self.collected_snapshots += 1
                self._last_timestamp = snapshot.timestamp
                self.last_collection_at = snapshot.timestamp
                publish_snapshot_gauges(
                    snapshot.server.cpu.usage,
                    snapshot.server.memory.usage_percentage,
                    health_score([snapshot])
                )
                return snapshot
            logger.warning(
                f"Saving metrics snapshot failed (attempt {attempt}/{attempts}): {result.error}"
            )

        self.dropped_snapshots += 1
        snapshots_dropped.inc()
        logger.error(f"Dropped metrics snapshot from {snapshot.timestamp.isoformat()} after {attempts} attempt(s)")
        return None

    async def purge_expired(self) -> int:
        """Delete snapshots past the retention horizon."""
        if not self.retention_days:
            return 0
        cutoff = utcnow() - timedelta(days=self.retention_days)
        try:
            return await asyncio.to_thread(self.repository.delete_older_than, cutoff)
        except Exception as e:
            logger.error(f"Metrics retention purge failed: {e}")
            return 0

    def get_status(self) -> Dict[str, Any]:
        """Get collector status."""
        status = {
            "running": self.running,
            "interval_ms": self.interval_ms,
            "scheduler_state": None,
            "jobs": [],
            "last_collection_at": self.last_collection_at.isoformat() if self.last_collection_at else None,
            "last_collection_ms": self.last_collection_ms,
            "collected_snapshots": self.collected_snapshots,
            "dropped_snapshots": self.dropped_snapshots,
            "skipped_ticks": self.skipped_ticks
        }

        if self.scheduler:
            status["scheduler_state"] = "running" if self.scheduler.running else "stopped"

            for job in self.scheduler.get_jobs():
                status["jobs"].append({
                    "id": job.id,
                    "name": job.name,
                    "next_run": job.next_run_time.isoformat() if job.next_run_time else None,
                    "trigger": str(job.trigger)
                })

        return status
