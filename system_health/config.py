"""
System Health - Configuration.

============================================================
CONFIGURABLE HEALTH MONITORING
============================================================

All monitoring parameters are configurable:
- Check interval and per-call timeouts
- History retention window and cap
- Recovery attempt budget
- Alert thresholds and deduplication window

Configuration can be loaded from:
- Default values
- Environment variables (optionally from a .env file)
- YAML config file

Invalid values raise ConfigValidationError; callers that
merge partial updates keep their previous configuration.

============================================================
"""

import logging
import os
from dataclasses import dataclass, field, fields, replace
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Union

import yaml
from dotenv import load_dotenv

from .exceptions import ConfigValidationError
from .models import CriticalLevel


logger = logging.getLogger(__name__)


ENV_PREFIX = "HEALTH_MONITOR_"


class InitializationPolicy(str, Enum):
    """
    How the initialization check affects the score.

    - SCORED: One pass/fail unit like every other check
    - HARD_GATE: A failed initialization check forces score 0
    """
    SCORED = "scored"
    HARD_GATE = "hard_gate"


def default_alert_thresholds() -> Dict[CriticalLevel, int]:
    """Consecutive failures before an alert, per critical level."""
    return {
        CriticalLevel.CRITICAL: 1,
        CriticalLevel.HIGH: 2,
        CriticalLevel.MEDIUM: 3,
        CriticalLevel.LOW: 5,
    }


# =============================================================
# MAIN CONFIGURATION
# =============================================================


@dataclass
class MonitorConfig:
    """
    Main configuration for health monitoring.

    Durations are in seconds.
    """
    # Scheduling
    check_interval_seconds: float = 10.0
    max_concurrent_checks: int = 8
    auto_start: bool = True
    shutdown_timeout_seconds: float = 5.0

    # Callback timeouts
    probe_timeout_seconds: float = 5.0
    recovery_timeout_seconds: float = 5.0

    # History
    retention_window_seconds: float = 24 * 60 * 60.0
    max_history_entries_per_system: int = 100

    # Recovery
    max_recovery_attempts: int = 3

    # Alerting
    alert_dedup_window_seconds: float = 5 * 60.0
    alert_threshold_by_level: Dict[CriticalLevel, int] = field(
        default_factory=default_alert_thresholds
    )
    max_alerts: int = 50

    # Scoring
    initialization_policy: InitializationPolicy = InitializationPolicy.SCORED

    # Reporting
    log_report_after_pass: bool = False

    def __post_init__(self) -> None:
        """Normalize and validate."""
        self.alert_threshold_by_level = _coerce_thresholds(self.alert_threshold_by_level)
        if not isinstance(self.initialization_policy, InitializationPolicy):
            try:
                self.initialization_policy = InitializationPolicy(
                    str(self.initialization_policy).strip().lower()
                )
            except ValueError:
                raise ConfigValidationError(
                    f"Invalid initialization_policy: {self.initialization_policy!r}",
                    config_key="initialization_policy",
                    expected_value="scored | hard_gate",
                    actual_value=self.initialization_policy,
                )
        self.validate()

    def validate(self) -> None:
        """Raise ConfigValidationError on invalid values."""
        for key in (
            "check_interval_seconds",
            "probe_timeout_seconds",
            "recovery_timeout_seconds",
            "retention_window_seconds",
            "shutdown_timeout_seconds",
        ):
            _require_positive_number(key, getattr(self, key))

        _require_non_negative_number("alert_dedup_window_seconds", self.alert_dedup_window_seconds)

        for key in ("max_history_entries_per_system", "max_concurrent_checks", "max_alerts"):
            _require_positive_int(key, getattr(self, key))

        _require_non_negative_int("max_recovery_attempts", self.max_recovery_attempts)

        for level, threshold in self.alert_threshold_by_level.items():
            _require_positive_int(f"alert_threshold_by_level.{level.value}", threshold)

    def threshold_for(self, level: CriticalLevel) -> int:
        """Alert threshold for a level, MEDIUM semantics when unspecified."""
        if level in self.alert_threshold_by_level:
            return self.alert_threshold_by_level[level]
        return self.alert_threshold_by_level.get(
            CriticalLevel.MEDIUM,
            default_alert_thresholds()[CriticalLevel.MEDIUM],
        )

    def merged(
        self,
        changes: Optional[Mapping[str, Any]] = None,
        **kwargs: Any,
    ) -> "MonitorConfig":
        """
        Return a new config with changes applied.

        Unknown keys and invalid values raise ConfigValidationError;
        this instance is never modified.
        """
        updates: Dict[str, Any] = dict(changes or {})
        updates.update(kwargs)

        known = {f.name for f in fields(self)}
        unknown = sorted(set(updates) - known)
        if unknown:
            raise ConfigValidationError(
                f"Unknown config keys: {', '.join(unknown)}",
                config_key=unknown[0],
            )

        if "alert_threshold_by_level" in updates:
            thresholds = dict(self.alert_threshold_by_level)
            thresholds.update(_coerce_thresholds(updates["alert_threshold_by_level"]))
            updates["alert_threshold_by_level"] = thresholds

        try:
            return replace(self, **updates)
        except ConfigValidationError:
            raise
        except (TypeError, ValueError) as e:
            raise ConfigValidationError(f"Invalid config update: {e}")

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "MonitorConfig":
        """Build a config from a plain mapping."""
        return cls().merged(data)

    @classmethod
    def from_env(
        cls,
        dotenv_path: Optional[Union[str, Path]] = None,
    ) -> "MonitorConfig":
        """
        Load configuration from environment variables.

        Environment variables (all optional):
        - HEALTH_MONITOR_CHECK_INTERVAL_SECONDS
        - HEALTH_MONITOR_PROBE_TIMEOUT_SECONDS
        - HEALTH_MONITOR_RECOVERY_TIMEOUT_SECONDS
        - HEALTH_MONITOR_RETENTION_WINDOW_SECONDS
        - HEALTH_MONITOR_MAX_HISTORY_ENTRIES_PER_SYSTEM
        - HEALTH_MONITOR_MAX_RECOVERY_ATTEMPTS
        - HEALTH_MONITOR_ALERT_DEDUP_WINDOW_SECONDS
        - HEALTH_MONITOR_MAX_CONCURRENT_CHECKS
        - HEALTH_MONITOR_MAX_ALERTS
        - HEALTH_MONITOR_INITIALIZATION_POLICY
        - HEALTH_MONITOR_AUTO_START
        """
        if dotenv_path is not None:
            load_dotenv(dotenv_path)
        else:
            load_dotenv()

        updates: Dict[str, Any] = {}
        for f in fields(cls):
            if f.name == "alert_threshold_by_level":
                continue
            raw = os.getenv(ENV_PREFIX + f.name.upper())
            if raw is None or raw == "":
                continue
            updates[f.name] = _parse_env_value(f.name, raw, f.default)

        thresholds = {}
        for level in CriticalLevel:
            raw = os.getenv(f"{ENV_PREFIX}ALERT_THRESHOLD_{level.value}")
            if raw:
                thresholds[level] = _parse_env_value(f"alert_threshold_{level.value}", raw, 0)
        if thresholds:
            updates["alert_threshold_by_level"] = thresholds

        return cls().merged(updates)

    @classmethod
    def from_yaml(cls, path: Union[str, Path]) -> "MonitorConfig":
        """
        Load configuration from a YAML file.

        Unreadable files fall back to defaults with a warning.
        Invalid values raise ConfigValidationError.
        """
        try:
            with open(path, "r") as f:
                data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            logger.warning(f"Failed to load YAML config from {path}: {e}")
            return cls()

        if not isinstance(data, dict):
            raise ConfigValidationError(
                f"YAML config must be a mapping, got {type(data).__name__}",
            )

        # Allow the settings to be nested under a top-level section
        section = data.get("health_monitor", data)
        return cls.from_dict(section)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "check_interval_seconds": self.check_interval_seconds,
            "max_concurrent_checks": self.max_concurrent_checks,
            "auto_start": self.auto_start,
            "shutdown_timeout_seconds": self.shutdown_timeout_seconds,
            "probe_timeout_seconds": self.probe_timeout_seconds,
            "recovery_timeout_seconds": self.recovery_timeout_seconds,
            "retention_window_seconds": self.retention_window_seconds,
            "max_history_entries_per_system": self.max_history_entries_per_system,
            "max_recovery_attempts": self.max_recovery_attempts,
            "alert_dedup_window_seconds": self.alert_dedup_window_seconds,
            "alert_threshold_by_level": {
                level.value: threshold
                for level, threshold in self.alert_threshold_by_level.items()
            },
            "max_alerts": self.max_alerts,
            "initialization_policy": self.initialization_policy.value,
            "log_report_after_pass": self.log_report_after_pass,
        }


# =============================================================
# VALIDATION HELPERS
# =============================================================


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _require_positive_number(key: str, value: Any) -> None:
    if not _is_number(value) or value <= 0:
        raise ConfigValidationError(
            f"{key} must be a positive number",
            config_key=key,
            expected_value="> 0",
            actual_value=value,
        )


def _require_non_negative_number(key: str, value: Any) -> None:
    if not _is_number(value) or value < 0:
        raise ConfigValidationError(
            f"{key} must be a non-negative number",
            config_key=key,
            expected_value=">= 0",
            actual_value=value,
        )


def _require_positive_int(key: str, value: Any) -> None:
    if not isinstance(value, int) or isinstance(value, bool) or value <= 0:
        raise ConfigValidationError(
            f"{key} must be a positive integer",
            config_key=key,
            expected_value="integer > 0",
            actual_value=value,
        )


def _require_non_negative_int(key: str, value: Any) -> None:
    if not isinstance(value, int) or isinstance(value, bool) or value < 0:
        raise ConfigValidationError(
            f"{key} must be a non-negative integer",
            config_key=key,
            expected_value="integer >= 0",
            actual_value=value,
        )


def _coerce_thresholds(raw: Any) -> Dict[CriticalLevel, int]:
    if not isinstance(raw, Mapping):
        raise ConfigValidationError(
            "alert_threshold_by_level must be a mapping",
            config_key="alert_threshold_by_level",
            actual_value=raw,
        )
    thresholds: Dict[CriticalLevel, int] = {}
    for level, threshold in raw.items():
        try:
            thresholds[CriticalLevel.coerce(level)] = threshold
        except ValueError as e:
            raise ConfigValidationError(
                str(e),
                config_key="alert_threshold_by_level",
                expected_value="LOW | MEDIUM | HIGH | CRITICAL",
                actual_value=level,
            )
    return thresholds


def _parse_env_value(key: str, raw: str, default: Any) -> Any:
    """Parse an environment string using the default's type."""
    raw = raw.strip()
    try:
        if isinstance(default, bool):
            return raw.lower() in ("1", "true", "yes", "on")
        if isinstance(default, int):
            return int(raw)
        if isinstance(default, float):
            return float(raw)
    except ValueError:
        raise ConfigValidationError(
            f"Invalid value for {ENV_PREFIX}{key.upper()}: {raw!r}",
            config_key=key,
            actual_value=raw,
        )
    return raw
