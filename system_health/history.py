"""
System Health - History Store.

============================================================
BOUNDED HEALTH HISTORY
============================================================

Append-only per-system sequence of HealthResults with two
pruning rules applied after every insert:

1. Drop entries older than the retention window
2. Cap to max entries per system (oldest dropped first)

Reads prune first, so an observation never contains an
expired entry. Ordering is always oldest first.

============================================================
"""

import threading
from datetime import timedelta
from typing import Dict, List, Optional

from .clock import ClockProtocol, SystemClock
from .models import HealthResult, SystemStatus


class HistoryStore:
    """
    Bounded, time-windowed history of health results.

    Thread-safe.
    """

    def __init__(
        self,
        max_entries_per_system: int = 100,
        retention_seconds: float = 24 * 60 * 60.0,
        clock: Optional[ClockProtocol] = None,
    ) -> None:
        """
        Initialize history store.

        Args:
            max_entries_per_system: Cap per system
            retention_seconds: Maximum entry age
            clock: Clock used to evaluate entry age
        """
        self._max_entries = max_entries_per_system
        self._retention = timedelta(seconds=retention_seconds)
        self._clock = clock or SystemClock()
        self._history: Dict[str, List[HealthResult]] = {}
        self._lock = threading.RLock()

    def configure(
        self,
        max_entries_per_system: Optional[int] = None,
        retention_seconds: Optional[float] = None,
    ) -> None:
        """Change limits and re-prune every system."""
        with self._lock:
            if max_entries_per_system is not None:
                self._max_entries = max_entries_per_system
            if retention_seconds is not None:
                self._retention = timedelta(seconds=retention_seconds)
            self._prune_all_locked()

    # =========================================================
    # WRITES
    # =========================================================

    def append(self, result: HealthResult) -> None:
        """Add a result and prune that system's history."""
        with self._lock:
            history = self._history.setdefault(result.system_name, [])
            history.append(result)
            self._history[result.system_name] = self._prune(history)

    def clear(self, system_name: str) -> None:
        """Drop all history for a system."""
        with self._lock:
            self._history.pop(system_name, None)

    def prune_all(self) -> None:
        """Apply the retention window to every system."""
        with self._lock:
            self._prune_all_locked()

    def reset(self) -> None:
        """Drop all history."""
        with self._lock:
            self._history.clear()

    # =========================================================
    # READS
    # =========================================================

    def latest(self, system_name: str) -> Optional[HealthResult]:
        """Most recent result for a system."""
        with self._lock:
            history = self._pruned(system_name)
            return history[-1] if history else None

    def all(self, system_name: str) -> List[HealthResult]:
        """All retained results for a system, oldest first."""
        with self._lock:
            return list(self._pruned(system_name))

    def recent(self, system_name: str, limit: int = 10) -> List[HealthResult]:
        """Last N results for a system, oldest first."""
        if limit <= 0:
            return []
        with self._lock:
            return list(self._pruned(system_name)[-limit:])

    def systems(self) -> List[str]:
        """Systems with retained history."""
        with self._lock:
            self._prune_all_locked()
            return [name for name, history in self._history.items() if history]

    def summary(self) -> Dict[SystemStatus, int]:
        """Count of retained entries per status across all systems."""
        with self._lock:
            self._prune_all_locked()
            counts = {status: 0 for status in SystemStatus}
            for history in self._history.values():
                for result in history:
                    counts[result.status] += 1
            return counts

    def latest_summary(self) -> Dict[SystemStatus, int]:
        """Count of each system's latest status."""
        with self._lock:
            self._prune_all_locked()
            counts = {status: 0 for status in SystemStatus}
            for history in self._history.values():
                if history:
                    counts[history[-1].status] += 1
            return counts

    def __len__(self) -> int:
        with self._lock:
            return sum(len(h) for h in self._history.values())

    # =========================================================
    # INTERNAL
    # =========================================================

    def _pruned(self, system_name: str) -> List[HealthResult]:
        history = self._history.get(system_name)
        if not history:
            return []
        pruned = self._prune(history)
        self._history[system_name] = pruned
        return pruned

    def _prune(self, history: List[HealthResult]) -> List[HealthResult]:
        cutoff = self._clock.now() - self._retention
        kept = [entry for entry in history if entry.timestamp > cutoff]
        if len(kept) > self._max_entries:
            kept = kept[-self._max_entries:]
        return kept

    def _prune_all_locked(self) -> None:
        for name in list(self._history):
            self._history[name] = self._prune(self._history[name])
