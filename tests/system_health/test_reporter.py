"""
Tests for the System Health reporter.

============================================================
PURPOSE
============================================================
- Verify level-weighted overall status
- Confirm deterministic recommendations
- Validate summary counts and rendering

============================================================
"""

import logging
from datetime import datetime, timezone

import pytest

from system_health.alerting import AlertManager
from system_health.checker import CHECK_CAPABILITIES, CHECK_HANDLE, CHECK_INITIALIZATION
from system_health.clock import MockClock
from system_health.config import MonitorConfig
from system_health.history import HistoryStore
from system_health.models import CheckOutcome, CriticalLevel, HealthResult, SystemStatus
from system_health.recovery import RecoveryCoordinator
from system_health.registry import SystemRegistry
from system_health.reporter import HealthReporter
from system_health.sink import RecordingLogSink


# ============================================================
# FIXTURES
# ============================================================

class Plain:
    """Handle without optional capabilities."""


class ReportFixture:
    """Reporter wired to its collaborators."""

    def __init__(self):
        self.config = MonitorConfig(auto_start=False)
        self.sink = RecordingLogSink()
        self.clock = MockClock(datetime(2024, 1, 1, tzinfo=timezone.utc))
        self.registry = SystemRegistry(log_sink=self.sink, clock=self.clock)
        self.history = HistoryStore(clock=self.clock)
        self.alerts = AlertManager(self.config, log_sink=self.sink, clock=self.clock)
        self.recovery = RecoveryCoordinator(self.registry, self.config, log_sink=self.sink)
        self.reporter = HealthReporter(
            self.registry,
            self.history,
            self.alerts,
            self.recovery,
            self.config,
            log_sink=self.sink,
            clock=self.clock,
        )

    def add(self, name, level, status, score, checks=(), issues=(), recommendations=(), failures=0, **kwargs):
        """Register a system and record one result for it."""
        self.registry.register(name, Plain(), critical_level=level, **kwargs)
        self.registry.update(name, status=status, consecutive_failures=failures)
        self.history.append(HealthResult(
            system_name=name,
            timestamp=self.clock.now(),
            status=status,
            score=score,
            checks=tuple(checks),
            issues=tuple(issues),
            recommendations=tuple(recommendations),
        ))


@pytest.fixture
def fx():
    """Create reporter fixture."""
    return ReportFixture()


# ============================================================
# REPORT TESTS
# ============================================================

class TestBuildReport:
    """Tests for HealthReporter.build_report."""

    def test_none_when_nothing_registered(self, fx):
        """Test the empty registry case."""
        assert fx.reporter.build_report() is None

    def test_unknown_when_nothing_checked(self, fx):
        """Test overall status before any pass."""
        fx.registry.register("player", Plain())

        report = fx.reporter.build_report()

        assert report.overall_status == SystemStatus.UNKNOWN
        assert report.system_count == 1
        assert report.get_system("player").score is None

    @pytest.mark.parametrize("level,status,expected", [
        (CriticalLevel.LOW, SystemStatus.CRITICAL, SystemStatus.WARNING),
        (CriticalLevel.MEDIUM, SystemStatus.FAILING, SystemStatus.DEGRADED),
        (CriticalLevel.MEDIUM, SystemStatus.WARNING, SystemStatus.WARNING),
        (CriticalLevel.HIGH, SystemStatus.CRITICAL, SystemStatus.FAILING),
        (CriticalLevel.HIGH, SystemStatus.DEGRADED, SystemStatus.DEGRADED),
        (CriticalLevel.CRITICAL, SystemStatus.FAILING, SystemStatus.FAILING),
        (CriticalLevel.CRITICAL, SystemStatus.ERROR, SystemStatus.ERROR),
    ])
    def test_overall_status_weighting(self, fx, level, status, expected):
        """Test level-weighted overall status."""
        fx.add("healthy", CriticalLevel.HIGH, SystemStatus.HEALTHY, 100)
        fx.add("subject", level, status, 0 if status == SystemStatus.CRITICAL else 33)

        assert fx.reporter.build_report().overall_status == expected

    def test_report_counts(self, fx):
        """Test aggregate counts."""
        fx.add("a", CriticalLevel.LOW, SystemStatus.HEALTHY, 100)
        fx.add("b", CriticalLevel.MEDIUM, SystemStatus.DEGRADED, 50, issues=["x", "y"])
        fx.registry.register("c", Plain())

        report = fx.reporter.build_report()

        assert report.system_count == 3
        assert report.healthy_systems == 1
        assert report.total_issues == 2
        assert report.systems_by_status[SystemStatus.REGISTERED] == 1
        assert [d.name for d in report.system_details] == ["a", "b", "c"]
        assert report.monitoring_active is False

    def test_recommendations_are_deterministic(self, fx):
        """Test aggregate then per-result recommendations, in name order."""
        not_initialized = CheckOutcome(CHECK_INITIALIZATION, False, "System not initialized")
        missing = CheckOutcome(CHECK_CAPABILITIES, False, "Missing capabilities: 1/1", "play")

        fx.add(
            "zeta", CriticalLevel.HIGH, SystemStatus.FAILING, 33,
            checks=[CheckOutcome(CHECK_HANDLE, True, "ok"), not_initialized],
            recommendations=["Ensure zeta completes initialization", "Shared advice"],
            failures=2,
        )
        fx.add(
            "alpha", CriticalLevel.LOW, SystemStatus.DEGRADED, 50,
            checks=[CheckOutcome(CHECK_HANDLE, True, "ok"), missing, not_initialized],
            recommendations=["Shared advice", "Verify that alpha exposes: play"],
        )
        fx.add("omega", CriticalLevel.MEDIUM, SystemStatus.ERROR, 0, failures=1)

        first = fx.reporter.build_report().recommendations
        second = fx.reporter.build_report().recommendations

        assert first == second
        assert first == [
            "2 systems not initialized",
            "1 system missing required capabilities",
            "1 system exceeding failure threshold",
            "1 system reporting evaluation errors",
            "Shared advice",
            "Verify that alpha exposes: play",
            "Ensure zeta completes initialization",
        ]

    def test_exhausted_recovery_recommendation(self, fx):
        """Test that exhausted recovery budgets are reported."""
        fx.add("svc", CriticalLevel.MEDIUM, SystemStatus.FAILING, 33, recovery=lambda: None)
        fx.recovery._attempts["svc"] = fx.config.max_recovery_attempts

        report = fx.reporter.build_report()

        assert "1 system exhausted recovery attempts" in report.recommendations
        assert report.get_system("svc").recovery_attempts == 3

    def test_to_dict(self, fx):
        """Test serialization."""
        fx.add("a", CriticalLevel.LOW, SystemStatus.HEALTHY, 100)

        data = fx.reporter.build_report().to_dict()

        assert data["overall_status"] == "HEALTHY"
        assert data["system_details"][0]["name"] == "a"
        assert data["systems_by_status"]["HEALTHY"] == 1


# ============================================================
# SUMMARY AND RENDERING TESTS
# ============================================================

class TestSummaryAndRender:
    """Tests for summary() and render()."""

    def test_summary_counts(self, fx):
        """Test healthy / warning / failing buckets."""
        fx.add("a", CriticalLevel.LOW, SystemStatus.HEALTHY, 100)
        fx.add("b", CriticalLevel.LOW, SystemStatus.DEGRADED, 50)
        fx.add("c", CriticalLevel.LOW, SystemStatus.CRITICAL, 0)

        summary = fx.reporter.summary()

        assert summary["healthy"] == 1
        assert summary["warning"] == 1
        assert summary["failing"] == 1
        assert summary["overall_status"] == SystemStatus.FAILING
        assert summary["total"] == 3

    def test_summary_empty(self, fx):
        """Test summary before any result."""
        assert fx.reporter.summary()["overall_status"] == SystemStatus.UNKNOWN

    def test_render(self, fx):
        """Test the human-readable rendering."""
        fx.add(
            "player", CriticalLevel.HIGH, SystemStatus.FAILING, 33,
            issues=["System not initialized"], failures=2,
        )

        text = HealthReporter.render(fx.reporter.build_report())

        assert "Overall Status: FAILING" in text
        assert "* player - FAILING [HIGH]" in text
        assert "Score: 33/100" in text
        assert "Consecutive Failures: 2" in text
        assert "    - System not initialized" in text

    def test_render_without_report(self):
        """Test rendering the empty case."""
        assert "no systems registered" in HealthReporter.render(None)

    def test_log_report_uses_status_level(self, fx):
        """Test that log_report emits through the sink."""
        fx.add("player", CriticalLevel.CRITICAL, SystemStatus.CRITICAL, 0)

        report = fx.reporter.log_report()

        assert report.overall_status == SystemStatus.CRITICAL
        entry = [e for e in fx.sink.entries if e.component == "Reporter"][-1]
        assert entry.level == logging.ERROR
        assert entry.message.startswith("System Health Report")
        assert entry.data["overall_status"] == "CRITICAL"
