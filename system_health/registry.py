"""
System Health - System Registry.

============================================================
CENTRAL REGISTRY OF MONITORED SYSTEMS
============================================================

Maintains the set of monitored system records:
- Explicit registration keyed by a stable name
- Idempotent re-registration (hot reload)
- Snapshot queries safe for concurrent readers
- First/empty hooks that drive the scheduler

============================================================
THREAD SAFETY
============================================================

All state is guarded by one re-entrant lock. The lock is
never held while a hook or a monitored callback runs.

============================================================
"""

import logging
import threading
from dataclasses import fields
from typing import Any, Callable, Dict, Iterable, List, Optional

from .capabilities import ProbeCallable, RecoveryCallable, bind_health_check, bind_recovery
from .clock import ClockProtocol, SystemClock
from .exceptions import DuplicateNameError, UnknownSystemError
from .models import CriticalLevel, SystemRecord, SystemStatus
from .sink import LogSink, StdlibLogSink


COMPONENT = "Registry"

RegistryHook = Callable[[], None]

# Fields callers may merge through update()
_IMMUTABLE_FIELDS = frozenset({"name", "handle", "registered_at"})


class SystemRegistry:
    """
    Registry of monitored systems.

    ============================================================
    USAGE
    ============================================================

    ```python
    registry = SystemRegistry()

    registry.register("player", player, critical_level=CriticalLevel.HIGH)
    registry.update("player", status=SystemStatus.HEALTHY)

    for record in registry.list():
        ...

    registry.unregister("player")
    ```

    ============================================================
    """

    def __init__(
        self,
        log_sink: Optional[LogSink] = None,
        clock: Optional[ClockProtocol] = None,
        on_first: Optional[RegistryHook] = None,
        on_empty: Optional[RegistryHook] = None,
    ) -> None:
        """
        Initialize registry.

        Args:
            log_sink: Structured log sink
            clock: Clock used for registration timestamps
            on_first: Called after the first record is added
            on_empty: Called after the last record is removed
        """
        self._sink = log_sink or StdlibLogSink()
        self._clock = clock or SystemClock()
        self._records: Dict[str, SystemRecord] = {}
        self._lock = threading.RLock()
        self._on_first = on_first
        self._on_empty = on_empty

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
        health_check: Optional[ProbeCallable] = None,
        recovery: Optional[RecoveryCallable] = None,
        replace: bool = True,
    ) -> SystemRecord:
        """
        Register a system for monitoring.

        Re-registering a name overwrites the previous record with a
        warning, unless ``replace`` is False in which case
        DuplicateNameError is raised.

        Args:
            name: Unique, stable system name
            handle: Monitored object (borrowed, never copied)
            critical_level: LOW | MEDIUM | HIGH | CRITICAL
            required_capabilities: Attribute names expected on the handle
            health_check: Custom probe, defaults to handle.health_check
            recovery: Recovery action, defaults to handle.recover

        Returns:
            Snapshot of the new record
        """
        if not isinstance(name, str) or not name.strip():
            raise ValueError("System name must be a non-empty string")
        level = CriticalLevel.coerce(critical_level)
        capabilities = [str(c) for c in required_capabilities]

        record = SystemRecord(
            name=name,
            handle=handle,
            critical_level=level,
            required_capabilities=capabilities,
            health_check=bind_health_check(handle, health_check),
            recovery=bind_recovery(handle, recovery),
            registered_at=self._clock.now(),
        )

        with self._lock:
            existing = name in self._records
            if existing and not replace:
                raise DuplicateNameError(name)
            was_empty = not self._records
            self._records[name] = record
            snapshot = record.snapshot()

        if existing:
            error = DuplicateNameError(name)
            self._sink.log(
                logging.WARNING,
                COMPONENT,
                f"{error.message}; replacing existing record",
                error.to_dict(),
            )
        else:
            self._sink.log(
                logging.INFO,
                COMPONENT,
                f"Registered {name} ({level.value} priority)",
                {"system_name": name, "critical_level": level.value},
            )

        if was_empty and self._on_first is not None:
            self._on_first()

        return snapshot

    def unregister(self, name: str) -> bool:
        """
        Remove a system.

        Returns:
            True if the system was registered
        """
        with self._lock:
            record = self._records.pop(name, None)
            now_empty = not self._records

        if record is None:
            self._log_unknown(name, "unregister")
            return False

        self._sink.log(logging.INFO, COMPONENT, f"Unregistered {name}", {"system_name": name})

        if now_empty and self._on_empty is not None:
            self._on_empty()

        return True

    def clear(self) -> None:
        """Remove every record without firing hooks."""
        with self._lock:
            self._records.clear()

    # =========================================================
    # MUTATION
    # =========================================================

    def update(self, name: str, **changes: Any) -> Optional[SystemRecord]:
        """
        Merge fields into an existing record.

        Never raises: unknown names and invalid values log a
        warning and return None. Values are validated before the
        record is touched, so an update applies entirely or not
        at all.
        """
        allowed = {f.name for f in fields(SystemRecord)} - _IMMUTABLE_FIELDS
        ignored = sorted(k for k in changes if k not in allowed)
        if ignored:
            self._sink.log(
                logging.WARNING,
                COMPONENT,
                f"Ignoring unknown or immutable fields for {name}: {', '.join(ignored)}",
                {"system_name": name, "fields": ignored},
            )

        try:
            coerced = {
                key: _coerce_field(key, value)
                for key, value in changes.items()
                if key in allowed
            }
        except ValueError as e:
            self._sink.log(
                logging.WARNING,
                COMPONENT,
                f"Rejected update for {name}: {e}",
                {"system_name": name, "fields": sorted(changes), "error": str(e)},
            )
            return None

        with self._lock:
            record = self._records.get(name)
            if record is None:
                snapshot = None
            else:
                for key, value in coerced.items():
                    setattr(record, key, value)
                snapshot = record.snapshot()

        if snapshot is None:
            self._log_unknown(name, "update")
        return snapshot

    def mutate(self, name: str, fn: Callable[[SystemRecord], None]) -> Optional[SystemRecord]:
        """
        Apply a function to the live record under the lock.

        Used by the checker and recovery coordinator. Returns the
        updated snapshot, or None if the system is gone.
        """
        with self._lock:
            record = self._records.get(name)
            if record is None:
                return None
            fn(record)
            return record.snapshot()

    # =========================================================
    # QUERIES
    # =========================================================

    def get(self, name: str) -> Optional[SystemRecord]:
        """Snapshot of a record, or None."""
        with self._lock:
            record = self._records.get(name)
            return record.snapshot() if record is not None else None

    def require(self, name: str) -> SystemRecord:
        """Snapshot of a record; raises UnknownSystemError."""
        with self._lock:
            record = self._records.get(name)
            if record is None:
                raise UnknownSystemError(name, sorted(self._records))
            return record.snapshot()

    def list(self) -> List[SystemRecord]:
        """Snapshot copies of all records, in registration order."""
        with self._lock:
            return [record.snapshot() for record in self._records.values()]

    def names(self) -> List[str]:
        """Registered names, in registration order."""
        with self._lock:
            return list(self._records)

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    def __contains__(self, name: object) -> bool:
        with self._lock:
            return name in self._records

    # =========================================================
    # INTERNAL
    # =========================================================

    def _log_unknown(self, name: str, operation: str) -> None:
        error = UnknownSystemError(name)
        self._sink.log(
            logging.WARNING,
            COMPONENT,
            f"Cannot {operation}: {error.message}",
            error.to_dict(),
        )


def _coerce_field(key: str, value: Any) -> Any:
    """Normalize one update value; raises ValueError when invalid."""
    if key == "status":
        return SystemStatus(value)
    if key == "critical_level":
        return CriticalLevel.coerce(value)
    if key in ("consecutive_failures", "total_failures"):
        if isinstance(value, bool) or not isinstance(value, int) or value < 0:
            raise ValueError(f"{key} must be a non-negative integer, got {value!r}")
    if key == "required_capabilities":
        if isinstance(value, str):
            raise ValueError("required_capabilities must be a list of names")
        return [str(c) for c in value]
    return value
