"""
System Health - Exceptions.

============================================================
CUSTOM EXCEPTIONS
============================================================

All exceptions for the health monitoring module:
- HealthMonitorError: Base exception
- DuplicateNameError: Name already registered
- UnknownSystemError: Operation on an unregistered name
- CheckExecutionError: Custom probe raised or timed out
- RecoveryExecutionError: Recovery action raised or timed out
- CallbackBusyError: Previous callback call still running
- ConfigValidationError: Invalid configuration value

============================================================
FAILURE SAFETY
============================================================

- Nothing raised by a monitored system's callback may escape
  the health checker or the recovery coordinator
- Check and recovery errors become data-level failures
- Only misuse of the public API is caller-visible

============================================================
"""

from typing import Any, Dict, Optional


class HealthMonitorError(Exception):
    """
    Base exception for health monitoring errors.

    All health monitoring exceptions inherit from this class.
    """

    def __init__(
        self,
        message: str,
        system_name: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        """
        Initialize exception.

        Args:
            message: Error message
            system_name: Name of the affected system
            details: Additional error details
        """
        self.message = message
        self.system_name = system_name
        self.details = details or {}
        super().__init__(self._format_message())

    def _format_message(self) -> str:
        """Format the error message."""
        if self.system_name:
            return f"[{self.system_name}] {self.message}"
        return self.message

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for logging."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "system_name": self.system_name,
            "details": self.details,
        }


class DuplicateNameError(HealthMonitorError):
    """
    Raised when a system name is already registered.

    Non-fatal by default: re-registration overwrites the record.
    """

    def __init__(self, system_name: str) -> None:
        super().__init__(
            message=f"System already registered: {system_name}",
            system_name=system_name,
        )


class UnknownSystemError(HealthMonitorError):
    """
    Raised when an operation targets an unregistered system.

    Registry mutations log this instead of raising.
    """

    def __init__(
        self,
        system_name: str,
        available_systems: Optional[list] = None,
    ) -> None:
        message = f"System not registered: {system_name}"
        details = {}
        if available_systems:
            details["available_systems"] = list(available_systems)
            message += f". Available: {', '.join(available_systems)}"

        super().__init__(
            message=message,
            system_name=system_name,
            details=details,
        )


class CheckExecutionError(HealthMonitorError):
    """
    Raised when a custom health probe fails to execute.

    Always converted into a failed check, never propagated.
    """

    def __init__(
        self,
        system_name: str,
        reason: str,
        original_exception: Optional[BaseException] = None,
        timed_out: bool = False,
    ) -> None:
        details: Dict[str, Any] = {"reason": reason, "timed_out": timed_out}
        if original_exception is not None:
            details["original_exception"] = str(original_exception)
            details["exception_type"] = type(original_exception).__name__

        super().__init__(
            message=f"Health probe failed: {reason}",
            system_name=system_name,
            details=details,
        )

        self.reason = reason
        self.original_exception = original_exception
        self.timed_out = timed_out


class RecoveryExecutionError(HealthMonitorError):
    """
    Raised when a recovery action fails.

    Logged by the recovery coordinator; the attempt is retained.
    """

    def __init__(
        self,
        system_name: str,
        attempt: int,
        reason: str,
        original_exception: Optional[BaseException] = None,
        timed_out: bool = False,
    ) -> None:
        details: Dict[str, Any] = {
            "attempt": attempt,
            "reason": reason,
            "timed_out": timed_out,
        }
        if original_exception is not None:
            details["original_exception"] = str(original_exception)
            details["exception_type"] = type(original_exception).__name__

        super().__init__(
            message=f"Recovery attempt {attempt} failed: {reason}",
            system_name=system_name,
            details=details,
        )

        self.attempt = attempt
        self.reason = reason
        self.original_exception = original_exception
        self.timed_out = timed_out


class CallbackBusyError(HealthMonitorError):
    """
    Raised when a callback's previous invocation is still running.

    A sync callback that outlived its timeout keeps its slot until
    it returns; no second call is started for the same system.
    """

    def __init__(self, system_name: str, callback: str) -> None:
        super().__init__(
            message=f"Previous {callback} call still running",
            system_name=system_name,
            details={"callback": callback},
        )

        self.callback = callback


class ConfigValidationError(HealthMonitorError):
    """
    Raised when a configuration value is invalid.

    The previous configuration is retained.
    """

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
        expected_value: Optional[str] = None,
        actual_value: Optional[Any] = None,
    ) -> None:
        details: Dict[str, Any] = {}
        if config_key:
            details["config_key"] = config_key
        if expected_value:
            details["expected"] = expected_value
        if actual_value is not None:
            details["actual"] = repr(actual_value)

        super().__init__(
            message=message,
            details=details,
        )

        self.config_key = config_key
