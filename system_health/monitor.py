"""
System Health - Monitor.

============================================================
MAIN ORCHESTRATOR
============================================================

The SystemHealthMonitor is the main entry point:
- Registers systems
- Schedules evaluation passes
- Raises alerts and coordinates recovery
- Produces health reports

The periodic scheduler starts when the first system is
registered (inside a running event loop) and stops when the
last system is unregistered.

============================================================
PUBLIC INTERFACE
============================================================

```python
monitor = get_monitor()

monitor.register("player", player, critical_level="HIGH")

report = await monitor.check_health()
if report.overall_status != SystemStatus.HEALTHY:
    print(monitor.render_report(report))

monitor.update_config(alert_dedup_window_seconds=60)

await monitor.shutdown()
```

============================================================
"""

import asyncio
import logging
import threading
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional

from .alerting import AlertHandler, AlertManager
from .capabilities import CallbackRunner
from .checker import HealthChecker
from .clock import ClockProtocol, SystemClock
from .config import MonitorConfig
from .exceptions import ConfigValidationError
from .history import HistoryStore
from .models import Alert, CriticalLevel, HealthResult, SystemRecord
from .recovery import RecoveryCoordinator
from .registry import SystemRegistry
from .reporter import HealthReport, HealthReporter
from .sink import LogSink, StdlibLogSink


COMPONENT = "Monitor"


class SystemHealthMonitor:
    """
    Facade over registry, checker, history, alerts, recovery
    and reporting.

    ============================================================
    USAGE
    ============================================================

    ```python
    monitor = SystemHealthMonitor(MonitorConfig(check_interval_seconds=5))

    monitor.register(
        "downloader",
        downloader,
        critical_level=CriticalLevel.MEDIUM,
        required_capabilities=["download", "cancel"],
        recovery=downloader.restart,
    )

    # Manual pass
    report = await monitor.check_health()

    # Query
    info = monitor.get_system_info("downloader")
    alerts = monitor.get_alerts()

    # Teardown
    await monitor.destroy()
    ```

    ============================================================
    """

    def __init__(
        self,
        config: Optional[MonitorConfig] = None,
        log_sink: Optional[LogSink] = None,
        clock: Optional[ClockProtocol] = None,
    ) -> None:
        """
        Initialize health monitor.

        Args:
            config: Monitor configuration
            log_sink: Structured log sink (defaults to stdlib logging)
            clock: Time source (defaults to the system clock)
        """
        self._config = config or MonitorConfig()
        self._sink = log_sink or StdlibLogSink()
        self._clock = clock or SystemClock()
        self._config_lock = threading.Lock()

        # Core components
        self._registry = SystemRegistry(
            log_sink=self._sink,
            clock=self._clock,
            on_first=self._on_first_registration,
            on_empty=self._on_last_unregistration,
        )
        self._history = HistoryStore(
            max_entries_per_system=self._config.max_history_entries_per_system,
            retention_seconds=self._config.retention_window_seconds,
            clock=self._clock,
        )
        self._alerts = AlertManager(self._config, log_sink=self._sink, clock=self._clock)
        self._runner = CallbackRunner()
        self._recovery = RecoveryCoordinator(
            self._registry, self._config, log_sink=self._sink, runner=self._runner,
        )
        self._checker = HealthChecker(
            self._registry,
            self._history,
            self._alerts,
            self._recovery,
            self._config,
            log_sink=self._sink,
            clock=self._clock,
            runner=self._runner,
        )
        self._reporter = HealthReporter(
            self._registry,
            self._history,
            self._alerts,
            self._recovery,
            self._config,
            log_sink=self._sink,
            clock=self._clock,
            monitoring_active=lambda: self._checker.is_running,
        )
        self._checker.add_pass_listener(self._after_pass)

        self._sink.log(logging.INFO, COMPONENT, "SystemHealthMonitor initialized", self._config.to_dict())

    @property
    def config(self) -> MonitorConfig:
        """Current configuration."""
        return self._config

    # =========================================================
    # REGISTRATION
    # =========================================================

    def register(
        self,
        name: str,
        handle: Any,
        *,
        critical_level: Any = CriticalLevel.MEDIUM,
        required_capabilities: Iterable[str] = (),
        health_check: Optional[Callable[[], Any]] = None,
        recovery: Optional[Callable[[], Any]] = None,
        replace: bool = True,
    ) -> SystemRecord:
        """
        Register a system for monitoring.

        Args:
            name: Unique system name
            handle: Monitored object
            critical_level: LOW | MEDIUM | HIGH | CRITICAL
            required_capabilities: Attribute names expected on the handle
            health_check: Custom probe (defaults to handle.health_check)
            recovery: Recovery action (defaults to handle.recover)
            replace: Overwrite an existing registration

        Returns:
            Snapshot of the new record
        """
        replacing = name in self._registry
        record = self._registry.register(
            name,
            handle,
            critical_level=critical_level,
            required_capabilities=required_capabilities,
            health_check=health_check,
            recovery=recovery,
            replace=replace,
        )
        if replacing:
            # Counters belong to the previous registration
            self._history.clear(name)
            self._recovery.reset(name)
        return record

    def unregister(self, name: str) -> bool:
        """Unregister a system and drop its history and recovery counter."""
        removed = self._registry.unregister(name)
        if removed:
            self._history.clear(name)
            self._recovery.reset(name)
        return removed

    def update(self, name: str, **changes: Any) -> Optional[SystemRecord]:
        """Merge fields into a registered system's record."""
        return self._registry.update(name, **changes)

    def list_systems(self) -> List[str]:
        """Names of registered systems."""
        return self._registry.names()

    def get_system_info(self, name: str) -> Optional[SystemRecord]:
        """Snapshot of a system's record, or None if unregistered."""
        return self._registry.get(name)

    # =========================================================
    # EVALUATION
    # =========================================================

    async def check_health(self) -> Optional[HealthReport]:
        """
        Run one evaluation pass immediately.

        Same semantics as a scheduled tick.

        Returns:
            Report after the pass, or None if nothing is registered
        """
        await self._checker.run_pass()
        return self._reporter.build_report()

    async def check_system(self, name: str) -> Optional[HealthResult]:
        """Evaluate a single system immediately."""
        return await self._checker.check_system(name)

    # =========================================================
    # REPORTING
    # =========================================================

    def get_report(self) -> Optional[HealthReport]:
        """Report of current state, or None if nothing is registered."""
        return self._reporter.build_report()

    def get_health_summary(self) -> Dict[str, Any]:
        """Healthy / warning / failing counts."""
        return self._reporter.summary()

    def render_report(self, report: Optional[HealthReport] = None) -> str:
        """Human-readable report."""
        return self._reporter.render(report if report is not None else self.get_report())

    def log_health_report(self) -> Optional[HealthReport]:
        """Render the current report and emit it through the log sink."""
        return self._reporter.log_report()

    def get_history(self, name: str, limit: Optional[int] = None) -> List[HealthResult]:
        """Retained results for a system, oldest first."""
        if limit is None:
            return self._history.all(name)
        return self._history.recent(name, limit)

    def get_latest_result(self, name: str) -> Optional[HealthResult]:
        """Most recent result for a system."""
        return self._history.latest(name)

    def get_alerts(self, system_name: Optional[str] = None, limit: Optional[int] = None) -> List[Alert]:
        """Alerts in the log, oldest first."""
        alerts = self._alerts.alerts() if system_name is None else self._alerts.for_system(system_name)
        if limit is not None:
            alerts = alerts[-limit:] if limit > 0 else []
        return alerts

    def clear_alerts(self, system_name: Optional[str] = None) -> None:
        """Drop alerts for one system, or all alerts."""
        self._alerts.clear(system_name)

    def add_alert_handler(self, handler: AlertHandler) -> None:
        """Register a sync or async callback for accepted alerts."""
        self._alerts.add_handler(handler)

    def remove_alert_handler(self, handler: AlertHandler) -> None:
        """Remove an alert callback."""
        self._alerts.remove_handler(handler)

    def get_recovery_attempts(self, name: str) -> int:
        """Recovery attempts since the system's last successful recovery."""
        return self._recovery.attempts(name)

    def get_statistics(self) -> Dict[str, Any]:
        """Monitor statistics."""
        return {
            "systems": len(self._registry),
            "monitoring_active": self.is_monitoring,
            "passes": self._checker.pass_count,
            "history_entries": len(self._history),
            "alerts": self._alerts.stats(),
            "recovery_attempts": self._recovery.all_attempts(),
            "busy_callbacks": [f"{name}:{callback}" for name, callback in self._runner.busy_slots()],
            "config": self._config.to_dict(),
        }

    # =========================================================
    # CONFIGURATION
    # =========================================================

    def update_config(
        self,
        partial: Optional[Mapping[str, Any]] = None,
        **changes: Any,
    ) -> MonitorConfig:
        """
        Merge configuration changes.

        Raises:
            ConfigValidationError: On an invalid value; the previous
                configuration is retained
        """
        with self._config_lock:
            try:
                config = self._config.merged(partial, **changes)
            except ConfigValidationError as e:
                self._sink.log(logging.ERROR, COMPONENT, f"Rejected config update: {e}", e.to_dict())
                raise

            self._config = config
            self._alerts.configure(config)
            self._recovery.configure(config)
            self._checker.configure(config)
            self._reporter.configure(config)
            self._history.configure(
                max_entries_per_system=config.max_history_entries_per_system,
                retention_seconds=config.retention_window_seconds,
            )

        self._sink.log(logging.INFO, COMPONENT, "Configuration updated", config.to_dict())
        return config

    # =========================================================
    # LIFECYCLE
    # =========================================================

    @property
    def is_monitoring(self) -> bool:
        """Check if periodic monitoring is active."""
        return self._checker.is_running

    def start_monitoring(self) -> bool:
        """Start periodic passes on the running event loop."""
        return self._checker.start()

    def stop_monitoring(self) -> None:
        """Stop periodic passes."""
        self._checker.stop()

    async def shutdown(self) -> None:
        """Stop periodic passes, wait for the ticker to exit and release callback workers."""
        await self._checker.shutdown()
        self._runner.shutdown()

    async def destroy(self) -> None:
        """Stop monitoring and drop every registration and record."""
        await self._checker.shutdown()
        self._runner.shutdown()
        self._registry.clear()
        self._history.reset()
        self._alerts.clear()
        self._recovery.clear()
        self._sink.log(logging.INFO, COMPONENT, "SystemHealthMonitor destroyed")

    def _on_first_registration(self) -> None:
        if not self._config.auto_start:
            return
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            self._sink.log(
                logging.DEBUG,
                COMPONENT,
                "No running event loop; call start_monitoring() from async code",
            )
            return
        self._checker.start()

    def _on_last_unregistration(self) -> None:
        self._checker.stop()

    async def _after_pass(self, results: Dict[str, HealthResult]) -> None:
        if self._config.log_report_after_pass and results:
            self._reporter.log_report()


# =============================================================
# SINGLETON ACCESS
# =============================================================

_default_monitor: Optional[SystemHealthMonitor] = None
_monitor_lock = threading.Lock()


def get_monitor() -> SystemHealthMonitor:
    """
    Get the default monitor instance.

    Created from the environment on first use.
    """
    global _default_monitor

    with _monitor_lock:
        if _default_monitor is None:
            _default_monitor = SystemHealthMonitor(MonitorConfig.from_env())
        return _default_monitor


def set_monitor(monitor: Optional[SystemHealthMonitor]) -> None:
    """Replace (or reset with None) the default monitor instance."""
    global _default_monitor

    with _monitor_lock:
        _default_monitor = monitor
