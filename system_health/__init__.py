"""
System Health Monitoring Module.

============================================================
CENTRALIZED HEALTH MONITORING AND RECOVERY
============================================================

Watches the health of independently-developed subsystems
registered by name, scores them, keeps a bounded history,
raises deduplicated alerts and drives bounded automatic
recovery.

CORE PHILOSOPHY:
- A misbehaving system must never break the monitor
- Alerts must be actionable, not noisy
- Recovery is bounded; escalation is left to humans

============================================================
HEALTH STATES
============================================================

- HEALTHY  (score >= 90)
- WARNING  (70 <= score < 90)
- DEGRADED (50 <= score < 70)
- FAILING  (0 < score < 50): eligible for recovery
- CRITICAL (score == 0)
- ERROR    (evaluation itself failed)

============================================================
USAGE
============================================================

```python
from system_health import (
    CriticalLevel,
    MonitorConfig,
    SystemHealthMonitor,
)

monitor = SystemHealthMonitor(MonitorConfig.from_env())

monitor.register(
    "player",
    player,
    critical_level=CriticalLevel.HIGH,
    required_capabilities=["play", "pause"],
)

report = await monitor.check_health()
print(f"Overall: {report.overall_status}")

for alert in monitor.get_alerts():
    print(alert.message)
```

============================================================
"""

from .models import (
    Alert,
    AlertSeverity,
    AlertType,
    CheckOutcome,
    CriticalLevel,
    HealthResult,
    ProbeResult,
    RecoveryOutcome,
    SystemRecord,
    SystemStatus,
    score_from_checks,
    status_from_score,
)
from .config import (
    InitializationPolicy,
    MonitorConfig,
    default_alert_thresholds,
)
from .exceptions import (
    HealthMonitorError,
    DuplicateNameError,
    UnknownSystemError,
    CheckExecutionError,
    RecoveryExecutionError,
    CallbackBusyError,
    ConfigValidationError,
)
from .clock import ClockProtocol, SystemClock, MockClock
from .sink import LogSink, StdlibLogSink, NullLogSink, RecordingLogSink, LogEntry
from .capabilities import CallbackRunner, Checkable, Recoverable, Initializable
from .registry import SystemRegistry
from .history import HistoryStore
from .alerting import AlertManager
from .recovery import RecoveryCoordinator
from .checker import HealthChecker
from .reporter import HealthReport, HealthReporter, SystemDetail
from .monitor import SystemHealthMonitor, get_monitor, set_monitor


__all__ = [
    # Models
    "Alert",
    "AlertSeverity",
    "AlertType",
    "CheckOutcome",
    "CriticalLevel",
    "HealthResult",
    "ProbeResult",
    "RecoveryOutcome",
    "SystemRecord",
    "SystemStatus",
    "score_from_checks",
    "status_from_score",
    # Config
    "InitializationPolicy",
    "MonitorConfig",
    "default_alert_thresholds",
    # Exceptions
    "HealthMonitorError",
    "DuplicateNameError",
    "UnknownSystemError",
    "CheckExecutionError",
    "RecoveryExecutionError",
    "CallbackBusyError",
    "ConfigValidationError",
    # Infrastructure
    "ClockProtocol",
    "SystemClock",
    "MockClock",
    "LogSink",
    "StdlibLogSink",
    "NullLogSink",
    "RecordingLogSink",
    "LogEntry",
    # Capabilities
    "CallbackRunner",
    "Checkable",
    "Recoverable",
    "Initializable",
    # Components
    "SystemRegistry",
    "HistoryStore",
    "AlertManager",
    "RecoveryCoordinator",
    "HealthChecker",
    "HealthReporter",
    "HealthReport",
    "SystemDetail",
    # Core
    "SystemHealthMonitor",
    "get_monitor",
    "set_monitor",
]
