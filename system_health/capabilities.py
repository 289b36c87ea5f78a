"""
System Health - Capability Contracts.

============================================================
MONITORED HANDLE CONTRACT
============================================================

A monitored system is an opaque handle. It may declare:

- Initializable: an ``initialized`` bool (or probe), or an
  ``is_initialized()`` probe
- Checkable:     ``health_check()`` returning ProbeResult-like
- Recoverable:   ``recover()``

Probe and recovery callables are bound once at registration.
Callables passed explicitly to ``register`` take precedence
over the methods the handle declares. Nothing is discovered
at check time.

============================================================
INVOCATION
============================================================

Every callable is invoked with a timeout:
- coroutine functions are awaited directly
- plain callables run in a worker thread so a blocking
  callback cannot stall the event loop
- an awaitable returned by a plain callable is awaited too

CallbackRunner owns the worker threads and allows one call in
flight per (system, callback) slot. A sync callback still
running after its timeout makes later calls for the same slot
fail fast instead of queueing more threads.

============================================================
"""

import asyncio
import functools
import inspect
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol, Tuple, Union, runtime_checkable

from .exceptions import CallbackBusyError


ProbeCallable = Callable[[], Union[Any, Awaitable[Any]]]
RecoveryCallable = Callable[[], Union[None, Awaitable[None]]]

_MISSING = object()


@runtime_checkable
class Checkable(Protocol):
    """Handle exposing its own health probe."""

    def health_check(self) -> Any:
        ...


@runtime_checkable
class Recoverable(Protocol):
    """Handle exposing its own recovery action."""

    def recover(self) -> Any:
        ...


@runtime_checkable
class Initializable(Protocol):
    """Handle exposing an initialization flag."""

    initialized: bool


def bind_health_check(handle: Any, explicit: Optional[ProbeCallable] = None) -> Optional[ProbeCallable]:
    """Resolve the health probe for a handle."""
    if explicit is not None:
        if not callable(explicit):
            raise TypeError("health_check must be callable")
        return explicit
    if handle is not None and isinstance(handle, Checkable) and callable(handle.health_check):
        return handle.health_check
    return None


def bind_recovery(handle: Any, explicit: Optional[RecoveryCallable] = None) -> Optional[RecoveryCallable]:
    """Resolve the recovery action for a handle."""
    if explicit is not None:
        if not callable(explicit):
            raise TypeError("recovery must be callable")
        return explicit
    if handle is not None and isinstance(handle, Recoverable) and callable(handle.recover):
        return handle.recover
    return None


def initialization_signal(handle: Any) -> Any:
    """
    Locate the handle's initialization signal.

    Returns a bool, a callable probe, or None when the handle
    exposes no signal. Errors raised by the handle on attribute
    access propagate to the caller.
    """
    value = getattr(handle, "initialized", _MISSING)
    if isinstance(value, bool):
        return value
    if value is not _MISSING and callable(value):
        return value

    probe = getattr(handle, "is_initialized", _MISSING)
    if probe is not _MISSING and callable(probe):
        return probe
    if isinstance(probe, bool):
        return probe

    return None


def has_capability(handle: Any, name: str) -> bool:
    """Check that a named capability resolves to something truthy."""
    return bool(getattr(handle, name, None))


async def invoke_with_timeout(fn: Callable[[], Any], timeout: float) -> Any:
    """
    Invoke a sync or async callable with a timeout.

    Raises asyncio.TimeoutError on timeout; any exception
    raised by the callable propagates unchanged. Sync callables
    use the loop's default executor with no in-flight guard;
    monitored-system callbacks go through CallbackRunner.
    """
    if inspect.iscoroutinefunction(fn):
        result = await asyncio.wait_for(fn(), timeout)
    else:
        result = await asyncio.wait_for(asyncio.to_thread(fn), timeout)

    if inspect.isawaitable(result):
        result = await asyncio.wait_for(result, timeout)
    return result


# =============================================================
# CALLBACK RUNNER
# =============================================================

CALLBACK_INITIALIZATION = "initialization"
CALLBACK_HEALTH_CHECK = "health_check"
CALLBACK_RECOVERY = "recovery"


class CallbackRunner:
    """
    Invokes monitored-system callbacks, one call in flight per slot.

    A slot is a (system name, callback kind) pair. Plain callables
    run on a pool owned by the runner rather than the event loop's
    default executor. A timeout stops the wait but cannot stop the
    thread, so the slot stays busy until the thread returns and
    further calls for that slot raise CallbackBusyError. A hung
    callback therefore holds one worker at most and cannot starve
    other systems.
    """

    def __init__(self, max_workers: Optional[int] = None) -> None:
        """
        Initialize callback runner.

        Args:
            max_workers: Worker thread cap (ThreadPoolExecutor default if None)
        """
        self._max_workers = max_workers
        self._executor: Optional[ThreadPoolExecutor] = None
        self._in_flight: Dict[Tuple[str, str], Future] = {}
        self._lock = threading.Lock()

    def is_busy(self, system_name: str, callback: str) -> bool:
        """Check if a previous call for the slot is still running."""
        with self._lock:
            future = self._in_flight.get((system_name, callback))
            return future is not None and not future.done()

    def busy_slots(self) -> List[Tuple[str, str]]:
        """Slots whose previous call is still running."""
        with self._lock:
            return sorted(key for key, future in self._in_flight.items() if not future.done())

    async def invoke(self, system_name: str, callback: str, fn: Callable[[], Any], timeout: float) -> Any:
        """
        Invoke a callback for a slot with a timeout.

        Raises CallbackBusyError if the slot's previous sync call
        has not returned, asyncio.TimeoutError on timeout; any
        exception raised by the callable propagates unchanged.
        """
        if inspect.iscoroutinefunction(fn):
            return await invoke_with_timeout(fn, timeout)

        key = (system_name, callback)
        with self._lock:
            previous = self._in_flight.get(key)
            if previous is not None and not previous.done():
                raise CallbackBusyError(system_name, callback)
            if self._executor is None:
                self._executor = ThreadPoolExecutor(
                    max_workers=self._max_workers,
                    thread_name_prefix="system-health",
                )
            future = self._executor.submit(fn)
            self._in_flight[key] = future
        future.add_done_callback(functools.partial(self._release, key))

        result = await asyncio.wait_for(asyncio.wrap_future(future), timeout)
        if inspect.isawaitable(result):
            result = await asyncio.wait_for(result, timeout)
        return result

    def _release(self, key: Tuple[str, str], future: Future) -> None:
        with self._lock:
            if self._in_flight.get(key) is future:
                del self._in_flight[key]

    def shutdown(self) -> None:
        """
        Release the worker pool without waiting for running calls.

        Queued calls are cancelled. A later invoke starts a new pool.
        """
        with self._lock:
            executor, self._executor = self._executor, None
        if executor is not None:
            executor.shutdown(wait=False, cancel_futures=True)
