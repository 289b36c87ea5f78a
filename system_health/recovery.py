"""
System Health - Recovery Coordinator.

============================================================
BOUNDED AUTOMATIC RECOVERY
============================================================

Invokes a system's bound recovery action when it is FAILING.

- CRITICAL and ERROR systems are left for escalation; only
  FAILING triggers recovery
- attempts[name] is checked, then incremented, before each
  invocation; at max_recovery_attempts the system is skipped
- Failures (exception, rejection, timeout) are logged and the
  attempt count is retained
- Success resets consecutive failures and clears attempts
- While a previous sync recovery call is still running, no
  new attempt is started or counted

The coordinator never performs recovery work itself.

============================================================
"""

import asyncio
import logging
import threading
from typing import Dict, Optional

from .capabilities import CALLBACK_RECOVERY, CallbackRunner
from .config import MonitorConfig
from .exceptions import CallbackBusyError, RecoveryExecutionError
from .models import HealthResult, RecoveryOutcome, SystemRecord, SystemStatus
from .registry import SystemRegistry
from .sink import LogSink, StdlibLogSink


COMPONENT = "RecoveryCoordinator"


class RecoveryCoordinator:
    """Bounded recovery invocation per system."""

    def __init__(
        self,
        registry: SystemRegistry,
        config: Optional[MonitorConfig] = None,
        log_sink: Optional[LogSink] = None,
        runner: Optional[CallbackRunner] = None,
    ) -> None:
        """
        Initialize recovery coordinator.

        Args:
            registry: Registry whose records are reset on success
            config: Monitor configuration
            log_sink: Structured log sink
            runner: Callback runner shared with the health checker
        """
        self._registry = registry
        self._config = config or MonitorConfig()
        self._sink = log_sink or StdlibLogSink()
        self._runner = runner or CallbackRunner()
        self._attempts: Dict[str, int] = {}
        self._lock = threading.Lock()

    def configure(self, config: MonitorConfig) -> None:
        """Swap configuration."""
        self._config = config

    # =========================================================
    # ELIGIBILITY
    # =========================================================

    @staticmethod
    def should_attempt(result: HealthResult, record: SystemRecord) -> bool:
        """Recovery applies to FAILING systems with a bound action."""
        return result.status == SystemStatus.FAILING and record.recovery is not None

    # =========================================================
    # RECOVERY
    # =========================================================

    async def maybe_recover(self, result: HealthResult, record: SystemRecord) -> RecoveryOutcome:
        """Attempt recovery if the result makes the system eligible."""
        if not self.should_attempt(result, record):
            return RecoveryOutcome.NOT_APPLICABLE
        return await self.attempt(record)

    async def attempt(self, record: SystemRecord) -> RecoveryOutcome:
        """
        Invoke the record's recovery action once, if budget remains.

        Never raises for failures inside the recovery action.
        """
        name = record.name
        if record.recovery is None:
            return RecoveryOutcome.NOT_APPLICABLE

        if self._runner.is_busy(name, CALLBACK_RECOVERY):
            return self._skip_busy(name)

        limit = self._config.max_recovery_attempts
        with self._lock:
            attempts = self._attempts.get(name, 0)
            if attempts >= limit:
                exhausted = True
            else:
                exhausted = False
                attempts += 1
                self._attempts[name] = attempts

        if exhausted:
            self._sink.log(
                logging.WARNING,
                COMPONENT,
                f"Max recovery attempts reached for {name} ({attempts}/{limit})",
                {"system_name": name, "attempts": attempts},
            )
            return RecoveryOutcome.EXHAUSTED

        self._sink.log(
            logging.INFO,
            COMPONENT,
            f"Attempting recovery for {name} (attempt {attempts}/{limit})",
            {"system_name": name, "attempt": attempts},
        )

        try:
            await self._runner.invoke(
                name, CALLBACK_RECOVERY, record.recovery, self._config.recovery_timeout_seconds,
            )
        except asyncio.CancelledError:
            raise
        except CallbackBusyError:
            with self._lock:
                if self._attempts.get(name) == attempts:
                    if attempts > 1:
                        self._attempts[name] = attempts - 1
                    else:
                        del self._attempts[name]
            return self._skip_busy(name)
        except asyncio.TimeoutError as e:
            self._log_failure(RecoveryExecutionError(
                name,
                attempts,
                f"timed out after {self._config.recovery_timeout_seconds}s",
                original_exception=e,
                timed_out=True,
            ))
            return RecoveryOutcome.FAILED
        except Exception as e:
            self._log_failure(RecoveryExecutionError(
                name,
                attempts,
                str(e) or type(e).__name__,
                original_exception=e,
            ))
            return RecoveryOutcome.FAILED

        self._registry.mutate(name, _reset_failures)
        with self._lock:
            self._attempts.pop(name, None)

        self._sink.log(
            logging.INFO,
            COMPONENT,
            f"Recovery successful for {name}",
            {"system_name": name, "attempt": attempts},
        )
        return RecoveryOutcome.SUCCEEDED

    def _log_failure(self, error: RecoveryExecutionError) -> None:
        self._sink.log(logging.ERROR, COMPONENT, str(error), error.to_dict())

    def _skip_busy(self, name: str) -> RecoveryOutcome:
        error = CallbackBusyError(name, CALLBACK_RECOVERY)
        self._sink.log(logging.WARNING, COMPONENT, f"Skipping recovery for {name}: {error.message}", error.to_dict())
        return RecoveryOutcome.SKIPPED

    # =========================================================
    # COUNTERS
    # =========================================================

    def attempts(self, name: str) -> int:
        """Attempts since the last success."""
        with self._lock:
            return self._attempts.get(name, 0)

    def is_exhausted(self, name: str) -> bool:
        """Check if the recovery budget is used up."""
        return self.attempts(name) >= self._config.max_recovery_attempts

    def all_attempts(self) -> Dict[str, int]:
        """Copy of every non-zero counter."""
        with self._lock:
            return dict(self._attempts)

    def reset(self, name: str) -> None:
        """Forget the counter for one system."""
        with self._lock:
            self._attempts.pop(name, None)

    def clear(self) -> None:
        """Forget all counters."""
        with self._lock:
            self._attempts.clear()


def _reset_failures(record: SystemRecord) -> None:
    record.consecutive_failures = 0
