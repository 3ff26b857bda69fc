"""Tests for health evaluation and scoring."""

import pytest

from src.monitoring.health import HEALTH_THRESHOLDS, evaluate, health_score
from src.monitoring.schemas import AlertSeverity, HealthState


class TestHealthEvaluation:
    """Threshold checks against a single snapshot."""

    def test_quiet_snapshot_is_healthy(self, snapshot_factory):
        status = evaluate(snapshot_factory())

        assert status.overall is HealthState.HEALTHY
        assert status.alerts == []
        assert status.services.cache is HealthState.HEALTHY
        assert status.services.storage is HealthState.HEALTHY

    def test_cpu_above_critical_threshold(self, snapshot_factory):
        status = evaluate(snapshot_factory(cpu=95))

        assert status.overall is HealthState.CRITICAL
        assert len(status.alerts) == 1
        alert = status.alerts[0]
        assert alert.type == "cpu"
        assert alert.severity is AlertSeverity.CRITICAL
        assert alert.message == "High CPU usage detected"

    def test_threshold_is_strictly_greater_than(self, snapshot_factory):
        status = evaluate(snapshot_factory(cpu=80))
        assert status.overall is HealthState.HEALTHY

        status = evaluate(snapshot_factory(cpu=80.1))
        assert status.overall is HealthState.WARNING

    def test_overall_is_worst_check(self, snapshot_factory):
        """A critical check outranks any number of warnings."""
        status = evaluate(snapshot_factory(cpu=85, memory=90, query_time=1500))

        assert status.overall is HealthState.CRITICAL
        assert status.services.database is HealthState.CRITICAL
        assert {a.type for a in status.alerts} == {"cpu", "memory", "database"}
        assert {a.severity for a in status.alerts} == {AlertSeverity.WARNING, AlertSeverity.CRITICAL}

    def test_slow_api_marks_api_service(self, snapshot_factory):
        status = evaluate(snapshot_factory(response_time=1500))

        assert status.services.api is HealthState.WARNING
        assert status.overall is HealthState.WARNING

    def test_down_is_never_produced(self, snapshot_factory):
        status = evaluate(snapshot_factory(cpu=100, memory=100, query_time=10000, response_time=10000))
        assert status.overall is HealthState.CRITICAL

    def test_thresholds(self):
        assert HEALTH_THRESHOLDS["cpu"].warning == 80
        assert HEALTH_THRESHOLDS["memory"].critical == 95
        assert HEALTH_THRESHOLDS["api"].critical == 2000


class TestHealthScore:
    """Tiered score from the latest sample."""

    def test_empty_history_scores_zero(self):
        assert health_score([]) == 0

    def test_quiet_snapshot_scores_full(self, snapshot_factory):
        assert health_score([snapshot_factory()]) == 100

    def test_critical_cpu_costs_thirty(self, snapshot_factory):
        assert health_score([snapshot_factory(cpu=95)]) == 70

    def test_uses_latest_sample_only(self, snapshot_factory):
        history = [snapshot_factory(cpu=95), snapshot_factory(cpu=10)]
        assert health_score(history) == 100

    def test_score_never_negative(self, snapshot_factory):
        snapshot = snapshot_factory(cpu=99, memory=99, response_time=5000, errors=500)
        assert health_score([snapshot]) == 0

    @pytest.mark.parametrize("lower,higher", [(60, 75), (75, 85), (85, 95)])
    def test_score_is_monotonic_in_cpu(self, snapshot_factory, lower, higher):
        assert health_score([snapshot_factory(cpu=lower)]) >= health_score([snapshot_factory(cpu=higher)])
