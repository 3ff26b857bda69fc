"""Tests for the metrics collector."""

import asyncio
from datetime import timedelta

import pytest

from src.database.repositories import SaveResult
from src.monitoring.clock import utcnow
from src.monitoring.collector import COLLECTION_JOB_ID, RETENTION_JOB_ID, MetricsCollector
from src.monitoring.schemas import (
    CpuMetrics,
    DatabaseMetrics,
    HealthState,
    ServerMetrics,
)


class FakeSources:
    """Deterministic metric sources."""

    def __init__(self, cpu=10.0, fail=(), gate=None):
        self.cpu = cpu
        self.fail = set(fail)
        self.gate = gate
        self.calls = 0

    async def server(self):
        self.calls += 1
        if self.gate is not None:
            await self.gate.wait()
        if "server" in self.fail:
            raise RuntimeError("psutil unavailable")
        return ServerMetrics(cpu=CpuMetrics(usage=self.cpu, cores=2))

    async def database(self):
        if "database" in self.fail:
            raise RuntimeError("probe failed")
        return DatabaseMetrics(connection_count=3, query_time=12.5)

    def all_sources(self):
        return {"server": self.server, "database": self.database}


class FailingRepository:
    """Repository whose writes always fail."""

    def __init__(self):
        self.save_calls = 0

    def save(self, snapshot):
        self.save_calls += 1
        return SaveResult(ok=False, error="store unavailable")

    def latest(self):
        return None


class TestCollection:
    """Single collection ticks."""

    @pytest.mark.asyncio
    async def test_collect_persists_evaluated_snapshot(self, repository):
        collector = MetricsCollector(FakeSources(cpu=95), repository)

        snapshot = await collector.collect_metrics()

        assert snapshot is not None
        assert snapshot.health_status.overall is HealthState.CRITICAL
        assert snapshot.custom_metrics["collectionTime"] >= 0
        assert "pythonVersion" in snapshot.custom_metrics
        assert repository.latest() == snapshot
        assert collector.collected_snapshots == 1

    @pytest.mark.asyncio
    async def test_failing_source_falls_back_to_defaults(self, repository):
        collector = MetricsCollector(FakeSources(fail={"server"}), repository)

        snapshot = await collector.collect_metrics()

        assert snapshot.server == ServerMetrics()
        assert snapshot.database.query_time == 12.5

    @pytest.mark.asyncio
    async def test_save_is_retried_then_dropped(self):
        repository = FailingRepository()
        collector = MetricsCollector(FakeSources(), repository, save_retries=1)

        result = await collector.collect_metrics()

        assert result is None
        assert repository.save_calls == 2
        assert collector.dropped_snapshots == 1
        assert collector.collected_snapshots == 0

    @pytest.mark.asyncio
    async def test_timestamps_never_go_backwards(self, repository, snapshot_factory):
        future = utcnow() + timedelta(hours=1)
        repository.save(snapshot_factory(timestamp=future))
        collector = MetricsCollector(FakeSources(), repository)

        snapshot = await collector.collect_metrics()

        assert snapshot.timestamp >= future

    @pytest.mark.asyncio
    async def test_overlapping_tick_is_skipped(self, repository):
        gate = asyncio.Event()
        sources = FakeSources(gate=gate)
        collector = MetricsCollector(sources, repository)

        first = asyncio.create_task(collector.collect_metrics())
        await asyncio.sleep(0)

        assert await collector.collect_metrics() is None
        assert collector.skipped_ticks == 1

        gate.set()
        assert await first is not None
        assert sources.calls == 1
        assert repository.query().total == 1


class TestScheduling:
    """Start/stop lifecycle."""

    @pytest.mark.asyncio
    async def test_start_runs_first_tick_immediately(self, repository):
        collector = MetricsCollector(FakeSources(), repository)

        assert collector.start_collection(interval_ms=60000) is True
        try:
            await asyncio.sleep(0.5)
            assert repository.latest() is not None
        finally:
            collector.stop_collection()

    @pytest.mark.asyncio
    async def test_start_is_idempotent(self, repository):
        collector = MetricsCollector(FakeSources(), repository)

        assert collector.start_collection(interval_ms=60000) is True
        try:
            assert collector.start_collection(interval_ms=1000) is False
            status = collector.get_status()
            assert status["running"] is True
            assert status["interval_ms"] == 60000
            assert [job["id"] for job in status["jobs"]] == [COLLECTION_JOB_ID]
        finally:
            collector.stop_collection()

    @pytest.mark.asyncio
    async def test_retention_job_is_opt_in(self, repository):
        collector = MetricsCollector(FakeSources(), repository, retention_days=7)

        collector.start_collection(interval_ms=60000)
        try:
            job_ids = {job["id"] for job in collector.get_status()["jobs"]}
            assert job_ids == {COLLECTION_JOB_ID, RETENTION_JOB_ID}
        finally:
            collector.stop_collection()

    @pytest.mark.asyncio
    async def test_stop_when_not_running(self, repository):
        collector = MetricsCollector(FakeSources(), repository)

        assert collector.stop_collection() is False

        collector.start_collection(interval_ms=60000)
        assert collector.stop_collection() is True
        assert collector.running is False
        assert collector.get_status()["jobs"] == []

    @pytest.mark.asyncio
    async def test_rejects_non_positive_interval(self, repository):
        collector = MetricsCollector(FakeSources(), repository)

        with pytest.raises(ValueError):
            collector.start_collection(interval_ms=0)
        assert collector.running is False

    @pytest.mark.asyncio
    async def test_purge_expired(self, repository, seed):
        seed({"cpu": 1}, spacing_minutes=60 * 24 * 10)
        seed({"cpu": 2})
        collector = MetricsCollector(FakeSources(), repository, retention_days=7)

        assert await collector.purge_expired() == 1
        assert repository.latest().server.cpu.usage == 2
