"""
System Health - Log Sink.

============================================================
INJECTED LOGGING INTERFACE
============================================================

Components never log through a global singleton. Each one
receives a sink exposing:

    log(level, component, message, data=None)

- level: standard logging level (logging.INFO, ...)
- component: emitting component ("HealthChecker", ...)
- message: human-readable text
- data: optional structured payload

StdlibLogSink forwards to the standard logging module, one
logger per component under "system_health.<component>".

============================================================
"""

import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol, runtime_checkable


LOGGER_NAMESPACE = "system_health"


@runtime_checkable
class LogSink(Protocol):
    """Structured log sink consumed by every component."""

    def log(
        self,
        level: int,
        component: str,
        message: str,
        data: Optional[Dict[str, Any]] = None,
    ) -> None:
        ...


class StdlibLogSink:
    """Forwards records to the standard logging module."""

    def __init__(self, namespace: str = LOGGER_NAMESPACE) -> None:
        self._namespace = namespace

    def log(
        self,
        level: int,
        component: str,
        message: str,
        data: Optional[Dict[str, Any]] = None,
    ) -> None:
        logger = logging.getLogger(f"{self._namespace}.{component}")
        if data:
            logger.log(level, f"[{component}] {message}", extra={"health_data": data})
        else:
            logger.log(level, f"[{component}] {message}")


class NullLogSink:
    """Discards everything."""

    def log(
        self,
        level: int,
        component: str,
        message: str,
        data: Optional[Dict[str, Any]] = None,
    ) -> None:
        return None


@dataclass
class LogEntry:
    """A record captured by RecordingLogSink."""
    level: int
    component: str
    message: str
    data: Optional[Dict[str, Any]] = None


@dataclass
class RecordingLogSink:
    """Keeps every record in memory. Useful for tests and diagnostics."""
    entries: List[LogEntry] = field(default_factory=list)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def log(
        self,
        level: int,
        component: str,
        message: str,
        data: Optional[Dict[str, Any]] = None,
    ) -> None:
        with self._lock:
            self.entries.append(LogEntry(level, component, message, data))

    def messages(
        self,
        component: Optional[str] = None,
        min_level: int = logging.NOTSET,
    ) -> List[str]:
        """Messages, optionally filtered by component and level."""
        with self._lock:
            return [
                e.message for e in self.entries
                if (component is None or e.component == component)
                and e.level >= min_level
            ]

    def clear(self) -> None:
        with self._lock:
            self.entries.clear()
