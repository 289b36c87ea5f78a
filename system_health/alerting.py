"""
System Health - Alert Manager.

============================================================
PURPOSE
============================================================
Derives alerts from fresh health results and deduplicates
them.

RULES:
- consecutive failures >= threshold(critical level)
  -> SYSTEM_HEALTH_DEGRADED
- CRITICAL-level system in CRITICAL status
  -> CRITICAL_SYSTEM_DOWN (regardless of threshold)

DEDUPLICATION:
- A new alert is suppressed when the log already holds an
  alert with the same (type, system) inside the dedup window
- The log is capped, oldest alerts dropped first

============================================================
"""

import inspect
import logging
import threading
from datetime import timedelta
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from .clock import ClockProtocol, SystemClock
from .config import MonitorConfig
from .models import (
    Alert,
    AlertSeverity,
    AlertType,
    CriticalLevel,
    HealthResult,
    SystemRecord,
    SystemStatus,
)
from .sink import LogSink, StdlibLogSink


COMPONENT = "AlertManager"

AlertHandler = Callable[[Alert], Union[None, Awaitable[None]]]

_SEVERITY_LOG_LEVEL = {
    AlertSeverity.CRITICAL: logging.ERROR,
    AlertSeverity.HIGH: logging.WARNING,
    AlertSeverity.MEDIUM: logging.WARNING,
    AlertSeverity.LOW: logging.INFO,
}


class AlertManager:
    """
    Derives, deduplicates and dispatches alerts.

    The alert log and handler list are guarded by a lock.
    """

    def __init__(
        self,
        config: Optional[MonitorConfig] = None,
        log_sink: Optional[LogSink] = None,
        clock: Optional[ClockProtocol] = None,
        handlers: Optional[List[AlertHandler]] = None,
    ) -> None:
        """Initialize alert manager."""
        self._config = config or MonitorConfig()
        self._sink = log_sink or StdlibLogSink()
        self._clock = clock or SystemClock()
        self._handlers: List[AlertHandler] = list(handlers or [])
        self._alerts: List[Alert] = []
        self._suppressed = 0
        self._lock = threading.RLock()

    def configure(self, config: MonitorConfig) -> None:
        """Swap configuration and re-apply the log cap."""
        with self._lock:
            self._config = config
            self._trim()

    # =========================================================
    # THRESHOLDS
    # =========================================================

    def threshold_for(self, level: CriticalLevel) -> int:
        """Consecutive failures required before alerting."""
        return self._config.threshold_for(level)

    @staticmethod
    def severity_for(level: CriticalLevel) -> AlertSeverity:
        """Alert severity for a critical level."""
        return AlertSeverity.from_critical_level(level)

    # =========================================================
    # EVALUATION
    # =========================================================

    def evaluate(self, result: HealthResult, record: SystemRecord) -> List[Alert]:
        """
        Evaluate a fresh result against its record.

        Returns:
            Alerts that were accepted (not suppressed)
        """
        candidates: List[Alert] = []
        now = self._clock.now()
        level = record.critical_level
        failures = record.consecutive_failures

        if failures >= self.threshold_for(level):
            candidates.append(Alert(
                alert_type=AlertType.SYSTEM_HEALTH_DEGRADED,
                system_name=record.name,
                severity=self.severity_for(level),
                message=f"{record.name} has failed {failures} consecutive health checks",
                timestamp=now,
                status=result.status,
                score=result.score,
                consecutive_failures=failures,
            ))

        if level == CriticalLevel.CRITICAL and result.status == SystemStatus.CRITICAL:
            candidates.append(Alert(
                alert_type=AlertType.CRITICAL_SYSTEM_DOWN,
                system_name=record.name,
                severity=AlertSeverity.CRITICAL,
                message=f"Critical system {record.name} is completely non-functional",
                timestamp=now,
                status=result.status,
                score=result.score,
                consecutive_failures=failures,
            ))

        return [alert for alert in candidates if self.add(alert)]

    def add(self, alert: Alert) -> bool:
        """
        Append an alert unless a duplicate is inside the window.

        Returns:
            True if the alert was accepted
        """
        with self._lock:
            if self._is_duplicate(alert):
                self._suppressed += 1
                duplicate = True
            else:
                self._alerts.append(alert)
                self._trim()
                duplicate = False

        if duplicate:
            self._sink.log(
                logging.DEBUG,
                COMPONENT,
                f"Suppressed duplicate {alert.alert_type.value} alert for {alert.system_name}",
                {"system_name": alert.system_name, "type": alert.alert_type.value},
            )
            return False

        self._sink.log(
            _SEVERITY_LOG_LEVEL.get(alert.severity, logging.WARNING),
            COMPONENT,
            f"ALERT [{alert.severity.value}]: {alert.message}",
            alert.to_dict(),
        )
        return True

    def _is_duplicate(self, alert: Alert) -> bool:
        window = timedelta(seconds=self._config.alert_dedup_window_seconds)
        cutoff = alert.timestamp - window
        return any(
            existing.key == alert.key and existing.timestamp > cutoff
            for existing in self._alerts
        )

    def _trim(self) -> None:
        limit = self._config.max_alerts
        if len(self._alerts) > limit:
            self._alerts = self._alerts[-limit:]

    # =========================================================
    # HANDLERS
    # =========================================================

    def add_handler(self, handler: AlertHandler) -> None:
        """Register a sync or async alert handler."""
        with self._lock:
            self._handlers.append(handler)

    def remove_handler(self, handler: AlertHandler) -> None:
        """Remove an alert handler."""
        with self._lock:
            if handler in self._handlers:
                self._handlers.remove(handler)

    async def dispatch(self, alerts: List[Alert]) -> None:
        """Deliver alerts to every handler; handler errors are logged."""
        with self._lock:
            handlers = list(self._handlers)

        for alert in alerts:
            for handler in handlers:
                try:
                    outcome = handler(alert)
                    if inspect.isawaitable(outcome):
                        await outcome
                except Exception as e:
                    self._sink.log(
                        logging.ERROR,
                        COMPONENT,
                        f"Alert handler error: {e}",
                        {"alert_id": alert.alert_id, "error": str(e)},
                    )

    # =========================================================
    # QUERIES
    # =========================================================

    def alerts(self) -> List[Alert]:
        """All alerts in the log, oldest first."""
        with self._lock:
            return list(self._alerts)

    def recent(self, limit: int = 10) -> List[Alert]:
        """Most recent alerts, oldest first."""
        if limit <= 0:
            return []
        with self._lock:
            return list(self._alerts[-limit:])

    def for_system(self, system_name: str) -> List[Alert]:
        """Alerts for one system."""
        with self._lock:
            return [a for a in self._alerts if a.system_name == system_name]

    def clear(self, system_name: Optional[str] = None) -> None:
        """Drop alerts for one system, or all alerts."""
        with self._lock:
            if system_name is None:
                self._alerts.clear()
            else:
                self._alerts = [a for a in self._alerts if a.system_name != system_name]

    def stats(self) -> Dict[str, Any]:
        """Alert statistics."""
        with self._lock:
            return {
                "total_alerts": len(self._alerts),
                "suppressed": self._suppressed,
                "by_type": {
                    alert_type.value: sum(1 for a in self._alerts if a.alert_type == alert_type)
                    for alert_type in AlertType
                },
                "by_severity": {
                    severity.value: sum(1 for a in self._alerts if a.severity == severity)
                    for severity in AlertSeverity
                },
            }
