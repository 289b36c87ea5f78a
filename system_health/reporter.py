"""
System Health - Reporter.

============================================================
PURPOSE
============================================================
Aggregates registry and history state into a structured
report and a human-readable rendering.

OVERALL STATUS:
- Worst status across evaluated systems, weighted by level
- LOW systems contribute at most WARNING
- MEDIUM systems contribute at most DEGRADED
- HIGH systems contribute at most FAILING
- CRITICAL systems contribute their status unchanged, so a
  CRITICAL-level system in FAILING forces at least DEGRADED
- Nothing evaluated yet -> UNKNOWN

RECOMMENDATIONS:
- Deterministic given the same registry/history state

============================================================
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from .alerting import AlertManager
from .checker import CHECK_CAPABILITIES, CHECK_INITIALIZATION
from .clock import ClockProtocol, SystemClock
from .config import MonitorConfig
from .history import HistoryStore
from .models import (
    Alert,
    CriticalLevel,
    HealthResult,
    SystemRecord,
    SystemStatus,
)
from .recovery import RecoveryCoordinator
from .registry import SystemRegistry
from .sink import LogSink, StdlibLogSink


COMPONENT = "Reporter"

_LEVEL_CAP = {
    CriticalLevel.LOW: SystemStatus.WARNING,
    CriticalLevel.MEDIUM: SystemStatus.DEGRADED,
    CriticalLevel.HIGH: SystemStatus.FAILING,
    CriticalLevel.CRITICAL: None,
}

_STATUS_LOG_LEVEL = {
    SystemStatus.HEALTHY: logging.INFO,
    SystemStatus.WARNING: logging.WARNING,
    SystemStatus.DEGRADED: logging.WARNING,
    SystemStatus.FAILING: logging.ERROR,
    SystemStatus.ERROR: logging.ERROR,
    SystemStatus.CRITICAL: logging.ERROR,
}


# =============================================================
# REPORT MODELS
# =============================================================


@dataclass
class SystemDetail:
    """Per-system section of a health report."""
    name: str
    status: SystemStatus
    score: Optional[int]
    critical_level: CriticalLevel
    consecutive_failures: int
    total_failures: int
    last_check_at: Optional[datetime]
    recovery_attempts: int = 0
    issues: List[str] = field(default_factory=list)
    recommendations: List[str] = field(default_factory=list)
    recent_history: List[HealthResult] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "name": self.name,
            "status": self.status.value,
            "score": self.score,
            "critical_level": self.critical_level.value,
            "consecutive_failures": self.consecutive_failures,
            "total_failures": self.total_failures,
            "last_check_at": self.last_check_at.isoformat() if self.last_check_at else None,
            "recovery_attempts": self.recovery_attempts,
            "issues": list(self.issues),
            "recommendations": list(self.recommendations),
            "recent_history": [
                {"timestamp": r.timestamp.isoformat(), "status": r.status.value, "score": r.score}
                for r in self.recent_history
            ],
        }


@dataclass
class HealthReport:
    """Structured health report."""
    timestamp: datetime
    overall_status: SystemStatus
    system_count: int
    healthy_systems: int
    total_issues: int
    system_details: List[SystemDetail]
    recommendations: List[str]
    monitoring_active: bool = False
    systems_by_status: Dict[SystemStatus, int] = field(default_factory=dict)
    recent_alerts: List[Alert] = field(default_factory=list)

    def get_system(self, name: str) -> Optional[SystemDetail]:
        """Detail section for one system."""
        for detail in self.system_details:
            if detail.name == name:
                return detail
        return None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for logging/serialization."""
        return {
            "timestamp": self.timestamp.isoformat(),
            "overall_status": self.overall_status.value,
            "system_count": self.system_count,
            "healthy_systems": self.healthy_systems,
            "total_issues": self.total_issues,
            "monitoring_active": self.monitoring_active,
            "systems_by_status": {s.value: c for s, c in self.systems_by_status.items()},
            "system_details": [d.to_dict() for d in self.system_details],
            "recommendations": list(self.recommendations),
            "recent_alerts": [a.to_dict() for a in self.recent_alerts],
        }


# =============================================================
# REPORTER
# =============================================================


class HealthReporter:
    """Builds and renders health reports."""

    def __init__(
        self,
        registry: SystemRegistry,
        history: HistoryStore,
        alerts: AlertManager,
        recovery: RecoveryCoordinator,
        config: Optional[MonitorConfig] = None,
        log_sink: Optional[LogSink] = None,
        clock: Optional[ClockProtocol] = None,
        monitoring_active: Optional[Callable[[], bool]] = None,
        history_depth: int = 10,
    ) -> None:
        """Initialize reporter."""
        self._registry = registry
        self._history = history
        self._alerts = alerts
        self._recovery = recovery
        self._config = config or MonitorConfig()
        self._sink = log_sink or StdlibLogSink()
        self._clock = clock or SystemClock()
        self._monitoring_active = monitoring_active or (lambda: False)
        self._history_depth = history_depth

    def configure(self, config: MonitorConfig) -> None:
        """Swap configuration."""
        self._config = config

    # =========================================================
    # REPORT
    # =========================================================

    def build_report(self) -> Optional[HealthReport]:
        """
        Build a report of every registered system.

        Returns:
            HealthReport, or None when nothing is registered
        """
        records = sorted(self._registry.list(), key=lambda r: r.name)
        if not records:
            return None

        latest = {r.name: self._history.latest(r.name) for r in records}
        details = [self._detail(record, latest[record.name]) for record in records]

        by_status = {status: 0 for status in SystemStatus}
        for record in records:
            by_status[record.status] += 1

        return HealthReport(
            timestamp=self._clock.now(),
            overall_status=self.overall_status(records),
            system_count=len(records),
            healthy_systems=by_status[SystemStatus.HEALTHY],
            total_issues=sum(len(r.issues) for r in latest.values() if r is not None),
            system_details=details,
            recommendations=self._recommendations(records, latest),
            monitoring_active=self._monitoring_active(),
            systems_by_status=by_status,
            recent_alerts=self._alerts.recent(10),
        )

    def _detail(self, record: SystemRecord, result: Optional[HealthResult]) -> SystemDetail:
        return SystemDetail(
            name=record.name,
            status=record.status,
            score=result.score if result else None,
            critical_level=record.critical_level,
            consecutive_failures=record.consecutive_failures,
            total_failures=record.total_failures,
            last_check_at=record.last_check_at,
            recovery_attempts=self._recovery.attempts(record.name),
            issues=list(result.issues) if result else [],
            recommendations=list(result.recommendations) if result else [],
            recent_history=self._history.recent(record.name, self._history_depth),
        )

    @staticmethod
    def overall_status(records: List[SystemRecord]) -> SystemStatus:
        """Worst level-weighted status across evaluated systems."""
        worst: Optional[SystemStatus] = None
        for record in records:
            status = record.status
            if not status.is_evaluated():
                continue
            cap = _LEVEL_CAP.get(record.critical_level)
            if cap is not None and status.rank > cap.rank:
                status = cap
            if worst is None or status.rank > worst.rank:
                worst = status
        return worst or SystemStatus.UNKNOWN

    def _recommendations(
        self,
        records: List[SystemRecord],
        latest: Dict[str, Optional[HealthResult]],
    ) -> List[str]:
        not_initialized = 0
        missing_capabilities = 0
        over_threshold = 0
        exhausted = 0
        errors = 0

        for record in records:
            result = latest.get(record.name)
            if result is not None:
                init = result.get_check(CHECK_INITIALIZATION)
                if init is not None and not init.passed:
                    not_initialized += 1
                caps = result.get_check(CHECK_CAPABILITIES)
                if caps is not None and not caps.passed:
                    missing_capabilities += 1
            if record.status == SystemStatus.ERROR:
                errors += 1
            if record.consecutive_failures >= self._config.threshold_for(record.critical_level):
                over_threshold += 1
            if record.recovery is not None and self._recovery.is_exhausted(record.name):
                exhausted += 1

        recommendations = []
        for count, text in (
            (not_initialized, "not initialized"),
            (missing_capabilities, "missing required capabilities"),
            (over_threshold, "exceeding failure threshold"),
            (exhausted, "exhausted recovery attempts"),
            (errors, "reporting evaluation errors"),
        ):
            if count:
                recommendations.append(f"{_systems(count)} {text}")

        seen = set(recommendations)
        for record in records:
            result = latest.get(record.name)
            if result is None:
                continue
            for text in result.recommendations:
                if text not in seen:
                    seen.add(text)
                    recommendations.append(text)

        return recommendations

    # =========================================================
    # SUMMARY
    # =========================================================

    def summary(self) -> Dict[str, Any]:
        """Healthy / warning / failing counts of the latest results."""
        healthy = warning = failing = 0
        for record in self._registry.list():
            result = self._history.latest(record.name)
            if result is None:
                continue
            if result.status == SystemStatus.HEALTHY:
                healthy += 1
            elif result.status in (SystemStatus.WARNING, SystemStatus.DEGRADED):
                warning += 1
            elif result.status.is_failure():
                failing += 1

        if failing:
            overall = SystemStatus.FAILING
        elif warning:
            overall = SystemStatus.WARNING
        elif healthy:
            overall = SystemStatus.HEALTHY
        else:
            overall = SystemStatus.UNKNOWN

        return {
            "healthy": healthy,
            "warning": warning,
            "failing": failing,
            "overall_status": overall,
            "total": len(self._registry),
        }

    # =========================================================
    # RENDERING
    # =========================================================

    @staticmethod
    def render(report: Optional[HealthReport]) -> str:
        """Human-readable rendering of a report."""
        if report is None:
            return "System Health Report - no systems registered"

        lines = [
            f"System Health Report - {report.timestamp.isoformat()}",
            f"Overall Status: {report.overall_status.value}",
            f"Systems: {report.system_count} ({report.healthy_systems} healthy), "
            f"issues: {report.total_issues}, "
            f"monitoring: {'active' if report.monitoring_active else 'inactive'}",
        ]

        for detail in report.system_details:
            score = f"{detail.score}/100" if detail.score is not None else "n/a"
            lines.append(f"* {detail.name} - {detail.status.value} [{detail.critical_level.value}]")
            lines.append(f"  Score: {score}")
            if detail.consecutive_failures > 0:
                lines.append(f"  Consecutive Failures: {detail.consecutive_failures}")
            if detail.recovery_attempts > 0:
                lines.append(f"  Recovery Attempts: {detail.recovery_attempts}")
            if detail.issues:
                lines.append("  Issues:")
                lines.extend(f"    - {issue}" for issue in detail.issues)
            if detail.recommendations:
                lines.append("  Recommendations:")
                lines.extend(f"    - {rec}" for rec in detail.recommendations)

        if report.recommendations:
            lines.append("Recommendations:")
            lines.extend(f"  - {rec}" for rec in report.recommendations)

        return "\n".join(lines)

    def log_report(self, report: Optional[HealthReport] = None) -> Optional[HealthReport]:
        """Build (if needed), render and emit a report through the sink."""
        report = report if report is not None else self.build_report()
        level = logging.INFO
        data = None
        if report is not None:
            level = _STATUS_LOG_LEVEL.get(report.overall_status, logging.INFO)
            data = report.to_dict()
        self._sink.log(level, COMPONENT, self.render(report), data)
        return report


def _systems(count: int) -> str:
    return f"{count} system" if count == 1 else f"{count} systems"
