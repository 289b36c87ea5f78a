"""
System Health - Health Checker.

============================================================
EVALUATION AND SCHEDULING
============================================================

Runs one evaluation pass per interval. Per system, in order:

1. handle_present         handle is not None
2. initialization         the handle's initialization signal,
                          when it exposes one
3. required_capabilities  every required name is truthy on the
                          handle, when any are required
4. custom_probe           the bound health probe, when bound

Each counted check is one pass/fail unit:
    score = round(passed / total * 100)

Classification: >= 90 HEALTHY, >= 70 WARNING, >= 50 DEGRADED,
> 0 FAILING, 0 CRITICAL. An error raised by the handle itself
yields ERROR with score 0.

============================================================
ISOLATION
============================================================

- Probe exceptions and timeouts become failed checks
- A sync probe still running from an earlier pass is not
  started again; the check fails until it returns
- Each system is evaluated in its own guarded task; one
  system can never stop the others or the ticker
- Systems run concurrently, bounded by a semaphore
- Passes are serialized: manual and scheduled passes never
  interleave

============================================================
"""

import asyncio
import inspect
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple, Union

from .alerting import AlertManager
from .capabilities import (
    CALLBACK_HEALTH_CHECK,
    CALLBACK_INITIALIZATION,
    CallbackRunner,
    has_capability,
    initialization_signal,
)
from .clock import ClockProtocol, SystemClock
from .config import InitializationPolicy, MonitorConfig
from .exceptions import CallbackBusyError, CheckExecutionError
from .history import HistoryStore
from .models import (
    CheckOutcome,
    HealthResult,
    ProbeResult,
    SystemRecord,
    SystemStatus,
    score_from_checks,
    status_from_score,
)
from .recovery import RecoveryCoordinator
from .registry import SystemRegistry
from .sink import LogSink, StdlibLogSink


COMPONENT = "HealthChecker"

CHECK_HANDLE = "handle_present"
CHECK_INITIALIZATION = "initialization"
CHECK_CAPABILITIES = "required_capabilities"
CHECK_CUSTOM_PROBE = "custom_probe"

PassListener = Callable[[Dict[str, HealthResult]], Union[None, Awaitable[None]]]


class HealthChecker:
    """
    Scheduler and evaluator for registered systems.

    ============================================================
    USAGE
    ============================================================

    ```python
    checker = HealthChecker(registry, history, alerts, recovery, config)

    # Manual pass
    results = await checker.run_pass()

    # Periodic passes
    checker.start()
    ...
    await checker.shutdown()
    ```

    ============================================================
    """

    def __init__(
        self,
        registry: SystemRegistry,
        history: HistoryStore,
        alerts: AlertManager,
        recovery: RecoveryCoordinator,
        config: Optional[MonitorConfig] = None,
        log_sink: Optional[LogSink] = None,
        clock: Optional[ClockProtocol] = None,
        runner: Optional[CallbackRunner] = None,
    ) -> None:
        """Initialize health checker."""
        self._registry = registry
        self._history = history
        self._alerts = alerts
        self._recovery = recovery
        self._config = config or MonitorConfig()
        self._sink = log_sink or StdlibLogSink()
        self._clock = clock or SystemClock()
        self._runner = runner or CallbackRunner()

        self._pass_lock = asyncio.Lock()
        self._task: Optional[asyncio.Task] = None
        self._stopped_task: Optional[asyncio.Task] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._listeners: List[PassListener] = []

        self._pass_count = 0

    def configure(self, config: MonitorConfig) -> None:
        """Swap configuration; the ticker picks it up on its next cycle."""
        self._config = config

    @property
    def pass_count(self) -> int:
        """Number of completed passes."""
        return self._pass_count

    def add_pass_listener(self, listener: PassListener) -> None:
        """Register a callback invoked with each pass's results."""
        self._listeners.append(listener)

    # =========================================================
    # EVALUATION
    # =========================================================

    async def evaluate_system(self, record: SystemRecord) -> HealthResult:
        """
        Evaluate one system without mutating any state.

        Never raises (except on cancellation).
        """
        timestamp = self._clock.now()
        try:
            return await self._run_checks(record, timestamp)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            message = str(e) or type(e).__name__
            self._sink.log(
                logging.ERROR,
                COMPONENT,
                f"Health check failed for {record.name}: {message}",
                {"system_name": record.name, "error": message, "exception_type": type(e).__name__},
            )
            return HealthResult(
                system_name=record.name,
                timestamp=timestamp,
                status=SystemStatus.ERROR,
                score=0,
                issues=(f"Health evaluation raised an error: {message}",),
                recommendations=(f"Inspect {record.name}; its handle raised during evaluation",),
                error=message,
            )

    async def _run_checks(self, record: SystemRecord, timestamp) -> HealthResult:
        checks: List[CheckOutcome] = []
        issues: List[str] = []
        recommendations: List[str] = []
        handle = record.handle

        # 1. Handle presence
        if handle is not None:
            checks.append(CheckOutcome(CHECK_HANDLE, True, "System handle is available"))
        else:
            checks.append(CheckOutcome(CHECK_HANDLE, False, "System handle not available"))
            issues.append("System handle is None")
            recommendations.append(f"Re-register {record.name} with a live handle")

        initialization_failed = False
        if handle is not None:
            # 2. Initialization status
            signal = initialization_signal(handle)
            if signal is not None:
                initialized, details = await self._probe_initialization(record.name, signal)
                if initialized:
                    checks.append(CheckOutcome(
                        CHECK_INITIALIZATION, True, "System reports initialized",
                    ))
                else:
                    initialization_failed = True
                    checks.append(CheckOutcome(
                        CHECK_INITIALIZATION, False, "System not initialized", details,
                    ))
                    issues.append("System exposes an initialization signal but is not initialized")
                    recommendations.append(f"Ensure {record.name} completes initialization")

            # 3. Required capabilities
            if record.required_capabilities:
                missing = [
                    name for name in record.required_capabilities
                    if not has_capability(handle, name)
                ]
                total = len(record.required_capabilities)
                if not missing:
                    checks.append(CheckOutcome(
                        CHECK_CAPABILITIES, True, "All required capabilities present",
                    ))
                else:
                    checks.append(CheckOutcome(
                        CHECK_CAPABILITIES,
                        False,
                        f"Missing capabilities: {len(missing)}/{total}",
                        ", ".join(missing),
                    ))
                    issues.append(f"Missing required capabilities: {', '.join(missing)}")
                    recommendations.append(
                        f"Verify that {record.name} exposes: {', '.join(missing)}"
                    )

            # 4. Custom health probe
            if record.health_check is not None:
                outcome = await self._run_custom_probe(record)
                checks.append(outcome)
                if not outcome.passed:
                    issues.append(f"Custom health check failed: {outcome.details or 'No details provided'}")
                    recommendations.append(f"Investigate the health probe of {record.name}")

        passed = sum(1 for c in checks if c.passed)
        score = score_from_checks(passed, len(checks))
        if initialization_failed and self._config.initialization_policy == InitializationPolicy.HARD_GATE:
            score = 0

        return HealthResult(
            system_name=record.name,
            timestamp=timestamp,
            status=status_from_score(score),
            score=score,
            checks=tuple(checks),
            issues=tuple(issues),
            recommendations=tuple(recommendations),
        )

    async def _probe_initialization(self, name: str, signal: Any) -> Tuple[bool, Optional[str]]:
        """Resolve an initialization signal; timeouts count as not initialized."""
        if isinstance(signal, bool):
            return signal, None
        timeout = self._config.probe_timeout_seconds
        try:
            value = await self._runner.invoke(name, CALLBACK_INITIALIZATION, signal, timeout)
        except CallbackBusyError:
            return False, "Previous initialization probe still running"
        except asyncio.TimeoutError:
            return False, f"Initialization probe timed out after {timeout}s"
        return bool(value), None

    async def _run_custom_probe(self, record: SystemRecord) -> CheckOutcome:
        timeout = self._config.probe_timeout_seconds
        try:
            raw = await self._runner.invoke(record.name, CALLBACK_HEALTH_CHECK, record.health_check, timeout)
            result = ProbeResult.coerce(raw)
        except asyncio.CancelledError:
            raise
        except CallbackBusyError as e:
            error = CheckExecutionError(record.name, "previous health check still running", original_exception=e)
        except asyncio.TimeoutError as e:
            error = CheckExecutionError(
                record.name, f"timed out after {timeout}s", original_exception=e, timed_out=True,
            )
        except Exception as e:
            error = CheckExecutionError(record.name, str(e) or type(e).__name__, original_exception=e)
        else:
            if result.ok:
                return CheckOutcome(CHECK_CUSTOM_PROBE, True, "Custom health check passed", result.details)
            return CheckOutcome(CHECK_CUSTOM_PROBE, False, "Custom health check failed", result.details)

        self._sink.log(logging.WARNING, COMPONENT, str(error), error.to_dict())
        return CheckOutcome(
            CHECK_CUSTOM_PROBE,
            False,
            "Custom health check raised an error",
            error.reason,
        )

    # =========================================================
    # APPLYING RESULTS
    # =========================================================

    async def check_record(self, record: SystemRecord) -> Optional[HealthResult]:
        """
        Evaluate one system and apply the result.

        Updates the record, stores history, raises alerts and
        attempts recovery. Returns None if the system was
        unregistered while it was being evaluated.
        """
        result = await self.evaluate_system(record)
        return await self._apply(record.name, result)

    async def check_system(self, name: str) -> Optional[HealthResult]:
        """Evaluate one registered system by name."""
        record = self._registry.get(name)
        if record is None:
            return None
        return await self.check_record(record)

    async def _apply(self, name: str, result: HealthResult) -> Optional[HealthResult]:
        def record_outcome(record: SystemRecord) -> None:
            record.status = result.status
            record.last_check_at = result.timestamp
            if result.is_failure:
                record.consecutive_failures += 1
                record.total_failures += 1
            else:
                record.consecutive_failures = 0

        updated = self._registry.mutate(name, record_outcome)
        if updated is None:
            return None

        self._history.append(result)
        if name not in self._registry:
            self._history.clear(name)
            return None

        accepted = self._alerts.evaluate(result, updated)
        if accepted:
            await self._alerts.dispatch(accepted)

        await self._recovery.maybe_recover(result, updated)
        return result

    # =========================================================
    # PASSES
    # =========================================================

    async def run_pass(self) -> Dict[str, HealthResult]:
        """
        Evaluate every registered system once.

        Returns:
            Dict of system name to HealthResult
        """
        async with self._pass_lock:
            records = self._registry.list()
            semaphore = asyncio.Semaphore(self._config.max_concurrent_checks)

            async def run_one(record: SystemRecord) -> Tuple[str, Optional[HealthResult]]:
                async with semaphore:
                    try:
                        return record.name, await self.check_record(record)
                    except asyncio.CancelledError:
                        raise
                    except Exception as e:
                        self._sink.log(
                            logging.ERROR,
                            COMPONENT,
                            f"Failed to process {record.name}: {e}",
                            {"system_name": record.name, "error": str(e)},
                        )
                        return record.name, None

            outcomes = await asyncio.gather(*(run_one(r) for r in records))
            self._history.prune_all()
            self._pass_count += 1

        results = {name: result for name, result in outcomes if result is not None}
        self._sink.log(
            logging.DEBUG,
            COMPONENT,
            f"Health pass completed: {len(results)}/{len(records)} systems evaluated",
            {"evaluated": len(results), "registered": len(records)},
        )
        await self._notify_listeners(results)
        return results

    async def _notify_listeners(self, results: Dict[str, HealthResult]) -> None:
        for listener in list(self._listeners):
            try:
                outcome = listener(results)
                if inspect.isawaitable(outcome):
                    await outcome
            except Exception as e:
                self._sink.log(logging.ERROR, COMPONENT, f"Pass listener failed: {e}")

    # =========================================================
    # TICKER
    # =========================================================

    @property
    def is_running(self) -> bool:
        """Check if the periodic ticker is active."""
        return self._task is not None and not self._task.done()

    def start(self) -> bool:
        """
        Start periodic passes on the running event loop.

        The first pass runs immediately. Returns False if already
        running or if no event loop is running.
        """
        if self.is_running:
            return False
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self._sink.log(
                logging.WARNING,
                COMPONENT,
                "No running event loop; health monitoring not started",
            )
            return False

        self._loop = loop
        self._task = loop.create_task(self._run_loop(), name="system-health-ticker")
        self._sink.log(
            logging.INFO,
            COMPONENT,
            f"Started health monitoring (interval {self._config.check_interval_seconds}s)",
        )
        return True

    def stop(self) -> None:
        """Cancel the ticker and any in-flight evaluations."""
        task, loop = self._task, self._loop
        self._task = None
        if task is None or task.done():
            return
        self._stopped_task = task

        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None

        if loop is not None and running is not loop:
            loop.call_soon_threadsafe(task.cancel)
        else:
            task.cancel()
        self._sink.log(logging.INFO, COMPONENT, "Stopping health monitoring")

    async def shutdown(self) -> None:
        """Stop the ticker and wait for it to finish, bounded by a timeout."""
        task = self._task or self._stopped_task
        self.stop()
        self._stopped_task = None
        if task is None or task.done() or task is asyncio.current_task():
            return

        timeout = self._config.shutdown_timeout_seconds
        _, pending = await asyncio.wait({task}, timeout=timeout)
        if pending:
            self._sink.log(
                logging.WARNING,
                COMPONENT,
                f"Health monitoring did not stop within {timeout}s",
            )

    async def _run_loop(self) -> None:
        while True:
            try:
                await self.run_pass()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self._sink.log(logging.ERROR, COMPONENT, f"Error in health monitoring loop: {e}")
            await asyncio.sleep(self._config.check_interval_seconds)
