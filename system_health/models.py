"""
System Health - Data Models.

============================================================
CORE DATA STRUCTURES
============================================================

Defines all data models for health monitoring:
- CriticalLevel: How important a monitored system is
- SystemStatus: Health classification of a system
- AlertSeverity / AlertType: Alert classification
- CheckOutcome: Result of one check in an evaluation
- HealthResult: Immutable result of one evaluation
- SystemRecord: Registry entry for a monitored system
- Alert: Deduplicated alert record

============================================================
"""

from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple
from uuid import uuid4


# =============================================================
# ENUMS
# =============================================================


class CriticalLevel(str, Enum):
    """
    Severity classification assigned to a system at registration.

    Governs alert thresholds and report weighting.
    """
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"

    @classmethod
    def coerce(cls, value: Any) -> "CriticalLevel":
        """Accept enum members or their (case-insensitive) names."""
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            try:
                return cls(value.strip().upper())
            except ValueError:
                pass
        raise ValueError(f"Invalid critical level: {value!r}")


class SystemStatus(str, Enum):
    """
    Health status of a monitored system.

    - REGISTERED: Registered, never evaluated
    - HEALTHY:    score >= 90
    - WARNING:    70 <= score < 90
    - DEGRADED:   50 <= score < 70
    - FAILING:    0 < score < 50
    - CRITICAL:   score == 0
    - ERROR:      Evaluation itself failed, score forced to 0
    - UNKNOWN:    No information
    """
    REGISTERED = "REGISTERED"
    HEALTHY = "HEALTHY"
    WARNING = "WARNING"
    DEGRADED = "DEGRADED"
    FAILING = "FAILING"
    CRITICAL = "CRITICAL"
    ERROR = "ERROR"
    UNKNOWN = "UNKNOWN"

    def is_failure(self) -> bool:
        """Check if this status counts as a failed evaluation."""
        return self in FAILURE_STATUSES

    def is_evaluated(self) -> bool:
        """Check if this status comes from an actual evaluation."""
        return self not in (SystemStatus.REGISTERED, SystemStatus.UNKNOWN)

    @property
    def rank(self) -> int:
        """Severity rank, higher is worse."""
        return _STATUS_RANK[self]


FAILURE_STATUSES = frozenset({
    SystemStatus.FAILING,
    SystemStatus.ERROR,
    SystemStatus.CRITICAL,
})

_STATUS_RANK = {
    SystemStatus.UNKNOWN: -1,
    SystemStatus.REGISTERED: -1,
    SystemStatus.HEALTHY: 0,
    SystemStatus.WARNING: 1,
    SystemStatus.DEGRADED: 2,
    SystemStatus.FAILING: 3,
    SystemStatus.ERROR: 4,
    SystemStatus.CRITICAL: 5,
}


class AlertSeverity(str, Enum):
    """Alert severity levels."""
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"

    @classmethod
    def from_critical_level(cls, level: CriticalLevel) -> "AlertSeverity":
        """Map a system's critical level to alert severity."""
        return {
            CriticalLevel.LOW: cls.LOW,
            CriticalLevel.MEDIUM: cls.MEDIUM,
            CriticalLevel.HIGH: cls.HIGH,
            CriticalLevel.CRITICAL: cls.CRITICAL,
        }.get(level, cls.MEDIUM)


class AlertType(str, Enum):
    """Types of alerts raised by the alert manager."""
    SYSTEM_HEALTH_DEGRADED = "SYSTEM_HEALTH_DEGRADED"
    CRITICAL_SYSTEM_DOWN = "CRITICAL_SYSTEM_DOWN"


class RecoveryOutcome(str, Enum):
    """Outcome of a recovery coordinator invocation."""
    NOT_APPLICABLE = "not_applicable"
    EXHAUSTED = "exhausted"
    SKIPPED = "skipped"
    FAILED = "failed"
    SUCCEEDED = "succeeded"


# =============================================================
# SCORE CLASSIFICATION
# =============================================================


HEALTHY_THRESHOLD = 90
WARNING_THRESHOLD = 70
DEGRADED_THRESHOLD = 50


def status_from_score(score: int) -> SystemStatus:
    """
    Classify a health score.

    Fixed thresholds, no overlap:
    >= 90 HEALTHY, >= 70 WARNING, >= 50 DEGRADED, > 0 FAILING, 0 CRITICAL.
    """
    if score < 0 or score > 100:
        raise ValueError(f"score must be within 0-100, got {score}")
    if score >= HEALTHY_THRESHOLD:
        return SystemStatus.HEALTHY
    elif score >= WARNING_THRESHOLD:
        return SystemStatus.WARNING
    elif score >= DEGRADED_THRESHOLD:
        return SystemStatus.DEGRADED
    elif score > 0:
        return SystemStatus.FAILING
    else:
        return SystemStatus.CRITICAL


def score_from_checks(passed: int, total: int) -> int:
    """Percentage of passed checks, rounded half up."""
    if total <= 0:
        return 0
    return int(passed * 100 / total + 0.5)


# =============================================================
# DATA CLASSES
# =============================================================


@dataclass(frozen=True)
class ProbeResult:
    """Normalized return value of a custom health probe."""
    ok: bool
    details: Optional[str] = None

    @classmethod
    def coerce(cls, value: Any) -> "ProbeResult":
        """
        Coerce a probe return value.

        Accepts ProbeResult, a mapping with ``ok``/``details``,
        an ``(ok, details)`` tuple or a bare bool.
        """
        if isinstance(value, ProbeResult):
            return value
        if isinstance(value, dict):
            details = value.get("details")
            return cls(
                ok=bool(value.get("ok", False)),
                details=None if details is None else str(details),
            )
        if isinstance(value, tuple) and len(value) == 2:
            ok, details = value
            return cls(ok=bool(ok), details=None if details is None else str(details))
        if isinstance(value, bool):
            return cls(ok=value)
        raise TypeError(
            f"Health probe returned unsupported value of type {type(value).__name__}"
        )


@dataclass(frozen=True)
class CheckOutcome:
    """Result of a single check within an evaluation."""
    name: str
    passed: bool
    message: str
    details: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "name": self.name,
            "passed": self.passed,
            "message": self.message,
            "details": self.details,
        }


@dataclass(frozen=True)
class HealthResult:
    """
    Result of one evaluation of one system.

    Immutable once produced; owned by the history store.
    """
    system_name: str
    timestamp: datetime
    status: SystemStatus
    score: int
    checks: Tuple[CheckOutcome, ...] = ()
    issues: Tuple[str, ...] = ()
    recommendations: Tuple[str, ...] = ()
    error: Optional[str] = None

    def __post_init__(self) -> None:
        """Clamp score into range."""
        if not 0 <= self.score <= 100:
            object.__setattr__(self, "score", max(0, min(100, int(self.score))))

    @property
    def is_failure(self) -> bool:
        """Check if this result counts as a failure."""
        return self.status.is_failure()

    def get_check(self, name: str) -> Optional[CheckOutcome]:
        """Get a check outcome by name."""
        for check in self.checks:
            if check.name == name:
                return check
        return None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for logging/serialization."""
        return {
            "system_name": self.system_name,
            "timestamp": self.timestamp.isoformat(),
            "status": self.status.value,
            "score": self.score,
            "checks": [c.to_dict() for c in self.checks],
            "issues": list(self.issues),
            "recommendations": list(self.recommendations),
            "error": self.error,
        }


@dataclass
class SystemRecord:
    """
    Registry entry for a monitored system.

    The handle is borrowed from the caller and never copied.
    """
    name: str
    handle: Any
    critical_level: CriticalLevel = CriticalLevel.MEDIUM
    required_capabilities: List[str] = field(default_factory=list)

    # Capability bindings, resolved once at registration
    health_check: Optional[Callable[[], Any]] = None
    recovery: Optional[Callable[[], Any]] = None

    registered_at: Optional[datetime] = None
    last_check_at: Optional[datetime] = None
    consecutive_failures: int = 0
    total_failures: int = 0
    status: SystemStatus = SystemStatus.REGISTERED

    @property
    def has_health_check(self) -> bool:
        """Check if a custom health probe is bound."""
        return self.health_check is not None

    @property
    def has_recovery(self) -> bool:
        """Check if a recovery action is bound."""
        return self.recovery is not None

    def snapshot(self) -> "SystemRecord":
        """Shallow copy sharing the handle."""
        return replace(self, required_capabilities=list(self.required_capabilities))

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for logging."""
        return {
            "name": self.name,
            "critical_level": self.critical_level.value,
            "required_capabilities": list(self.required_capabilities),
            "has_health_check": self.has_health_check,
            "has_recovery": self.has_recovery,
            "registered_at": self.registered_at.isoformat() if self.registered_at else None,
            "last_check_at": self.last_check_at.isoformat() if self.last_check_at else None,
            "consecutive_failures": self.consecutive_failures,
            "total_failures": self.total_failures,
            "status": self.status.value,
        }


@dataclass(frozen=True)
class Alert:
    """Alert raised for a monitored system."""
    alert_type: AlertType
    system_name: str
    severity: AlertSeverity
    message: str
    timestamp: datetime
    status: Optional[SystemStatus] = None
    score: Optional[int] = None
    consecutive_failures: int = 0
    alert_id: str = field(default_factory=lambda: str(uuid4()))

    @property
    def key(self) -> Tuple[AlertType, str]:
        """Deduplication key."""
        return (self.alert_type, self.system_name)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for logging."""
        return {
            "alert_id": self.alert_id,
            "type": self.alert_type.value,
            "system_name": self.system_name,
            "severity": self.severity.value,
            "message": self.message,
            "timestamp": self.timestamp.isoformat(),
            "status": self.status.value if self.status else None,
            "score": self.score,
            "consecutive_failures": self.consecutive_failures,
        }
