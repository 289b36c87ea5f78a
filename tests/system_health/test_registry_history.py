"""
Tests for System Health registry, capability binding and history.

============================================================
PURPOSE
============================================================
- Verify registration semantics and lifecycle hooks
- Confirm capability bindings are resolved once
- Validate history retention and capping

============================================================
"""

import asyncio
import logging
import threading
from datetime import datetime, timezone

import pytest

from system_health.capabilities import (
    CALLBACK_HEALTH_CHECK,
    CALLBACK_RECOVERY,
    CallbackRunner,
    bind_health_check,
    bind_recovery,
    has_capability,
    initialization_signal,
    invoke_with_timeout,
)
from system_health.clock import MockClock
from system_health.exceptions import CallbackBusyError, DuplicateNameError, UnknownSystemError
from system_health.history import HistoryStore
from system_health.models import CriticalLevel, HealthResult, SystemStatus
from system_health.registry import SystemRegistry
from system_health.sink import RecordingLogSink


# ============================================================
# FIXTURES
# ============================================================

class Player:
    """Handle implementing the probe and recovery capabilities."""

    def __init__(self):
        self.initialized = True
        self.play = lambda: None
        self.recovered = 0

    def health_check(self):
        return {"ok": True}

    def recover(self):
        self.recovered += 1


class Plain:
    """Handle without any optional capability."""


@pytest.fixture
def sink():
    """Create recording sink."""
    return RecordingLogSink()


@pytest.fixture
def clock():
    """Create mock clock."""
    return MockClock(datetime(2024, 1, 1, tzinfo=timezone.utc))


@pytest.fixture
def registry(sink, clock):
    """Create registry."""
    return SystemRegistry(log_sink=sink, clock=clock)


def make_result(clock, name="player", status=SystemStatus.HEALTHY, score=100):
    """Build a result stamped with the clock's current time."""
    return HealthResult(system_name=name, timestamp=clock.now(), status=status, score=score)


# ============================================================
# REGISTRY TESTS
# ============================================================

class TestSystemRegistry:
    """Tests for SystemRegistry."""

    def test_register_creates_record(self, registry, clock):
        """Test that registration stores a fresh record."""
        handle = Player()
        record = registry.register(
            "player",
            handle,
            critical_level="high",
            required_capabilities=["play"],
        )

        assert record.name == "player"
        assert record.handle is handle
        assert record.critical_level == CriticalLevel.HIGH
        assert record.status == SystemStatus.REGISTERED
        assert record.registered_at == clock.now()
        assert record.consecutive_failures == 0
        assert "player" in registry
        assert len(registry) == 1

    def test_register_binds_handle_methods(self, registry):
        """Test that protocol methods are bound at registration."""
        handle = Player()
        record = registry.register("player", handle)

        assert record.health_check == handle.health_check
        assert record.recovery == handle.recover

    def test_explicit_callables_win(self, registry):
        """Test that explicit probe/recovery override handle methods."""
        probe = lambda: True  # noqa: E731
        recovery = lambda: None  # noqa: E731
        record = registry.register("player", Player(), health_check=probe, recovery=recovery)

        assert record.health_check is probe
        assert record.recovery is recovery

    def test_reregister_overwrites_with_warning(self, registry, sink):
        """Test that duplicate names replace the record."""
        registry.register("player", Player(), critical_level=CriticalLevel.LOW)
        registry.update("player", consecutive_failures=4)

        record = registry.register("player", Player(), critical_level=CriticalLevel.HIGH)

        assert record.critical_level == CriticalLevel.HIGH
        assert record.consecutive_failures == 0
        assert len(registry) == 1
        assert any("already registered" in m for m in sink.messages(min_level=logging.WARNING))

    def test_reregister_without_replace_raises(self, registry):
        """Test strict duplicate handling."""
        registry.register("player", Player())
        with pytest.raises(DuplicateNameError):
            registry.register("player", Player(), replace=False)

    def test_invalid_name_and_level_rejected(self, registry):
        """Test registration argument validation."""
        with pytest.raises(ValueError):
            registry.register("", Player())
        with pytest.raises(ValueError):
            registry.register("player", Player(), critical_level="EXTREME")

    def test_unregister(self, registry, sink):
        """Test removal of known and unknown names."""
        registry.register("player", Player())

        assert registry.unregister("player") is True
        assert registry.get("player") is None
        assert registry.unregister("player") is False
        assert any("not registered" in m for m in sink.messages(min_level=logging.WARNING))

    def test_hooks_fire_on_first_and_empty(self, sink, clock):
        """Test lifecycle hooks."""
        events = []
        registry = SystemRegistry(
            log_sink=sink,
            clock=clock,
            on_first=lambda: events.append("first"),
            on_empty=lambda: events.append("empty"),
        )

        registry.register("a", Plain())
        registry.register("b", Plain())
        registry.unregister("a")
        registry.unregister("b")

        assert events == ["first", "empty"]

    def test_update_ignores_immutable_fields(self, registry, sink):
        """Test that name and handle cannot be changed."""
        handle = Player()
        registry.register("player", handle)

        record = registry.update("player", handle=Plain(), critical_level="LOW", status="FAILING")

        assert record.handle is handle
        assert record.critical_level == CriticalLevel.LOW
        assert record.status == SystemStatus.FAILING
        assert any("immutable" in m for m in sink.messages())

    def test_update_unknown_returns_none(self, registry):
        """Test that updating an unknown system is logged, not raised."""
        assert registry.update("ghost", consecutive_failures=1) is None

    def test_invalid_update_applies_nothing(self, registry, sink):
        """Test that an invalid value rejects the whole update without raising."""
        registry.register("player", Player())

        assert registry.update("player", consecutive_failures=7, status="bogus") is None

        record = registry.get("player")
        assert record.consecutive_failures == 0
        assert record.status == SystemStatus.REGISTERED
        assert any("Rejected update" in m for m in sink.messages(min_level=logging.WARNING))

    @pytest.mark.parametrize("changes", [
        {"critical_level": "SEVERE"},
        {"consecutive_failures": -1},
        {"total_failures": "3"},
        {"required_capabilities": "play"},
    ])
    def test_invalid_field_values_are_rejected(self, registry, changes):
        """Test per-field validation."""
        registry.register("player", Player(), critical_level=CriticalLevel.HIGH)

        assert registry.update("player", **changes) is None
        assert registry.get("player").critical_level == CriticalLevel.HIGH

    def test_require_raises_for_unknown(self, registry):
        """Test strict lookup."""
        registry.register("player", Player())
        with pytest.raises(UnknownSystemError) as exc_info:
            registry.require("ghost")
        assert exc_info.value.details["available_systems"] == ["player"]

    def test_snapshots_are_isolated(self, registry):
        """Test that callers cannot mutate registry state."""
        registry.register("player", Player())
        snapshot = registry.get("player")
        snapshot.consecutive_failures = 10

        assert registry.get("player").consecutive_failures == 0

    def test_mutate_applies_under_lock(self, registry):
        """Test in-place mutation."""
        registry.register("player", Player())

        def bump(record):
            record.consecutive_failures += 2

        assert registry.mutate("player", bump).consecutive_failures == 2
        assert registry.mutate("ghost", bump) is None

    def test_list_preserves_registration_order(self, registry):
        """Test ordering of names."""
        for name in ("c", "a", "b"):
            registry.register(name, Plain())
        assert registry.names() == ["c", "a", "b"]
        assert [r.name for r in registry.list()] == ["c", "a", "b"]


# ============================================================
# CAPABILITY TESTS
# ============================================================

class TestCapabilities:
    """Tests for capability binding helpers."""

    def test_binding_absent_capabilities(self):
        """Test handles without optional methods."""
        assert bind_health_check(Plain()) is None
        assert bind_recovery(Plain()) is None
        assert bind_health_check(None) is None

    def test_non_callable_explicit_rejected(self):
        """Test that explicit non-callables raise."""
        with pytest.raises(TypeError):
            bind_health_check(Plain(), "not callable")
        with pytest.raises(TypeError):
            bind_recovery(Plain(), 42)

    def test_initialization_signal_variants(self):
        """Test attribute, method and missing initialization signals."""

        class WithMethod:
            def is_initialized(self):
                return True

        assert initialization_signal(Player()) is True
        assert callable(initialization_signal(WithMethod()))
        assert initialization_signal(Plain()) is None

    def test_has_capability_requires_truthy(self):
        """Test capability presence semantics."""
        handle = Player()
        handle.pause = None

        assert has_capability(handle, "play")
        assert not has_capability(handle, "pause")
        assert not has_capability(handle, "seek")

    @pytest.mark.asyncio
    async def test_invoke_sync_and_async(self):
        """Test invocation of sync and async callables."""

        async def async_probe():
            return "async"

        assert await invoke_with_timeout(lambda: "sync", 1.0) == "sync"
        assert await invoke_with_timeout(async_probe, 1.0) == "async"

    @pytest.mark.asyncio
    async def test_invoke_times_out(self):
        """Test that slow callables raise TimeoutError."""

        async def slow():
            await asyncio.sleep(5)

        with pytest.raises(asyncio.TimeoutError):
            await invoke_with_timeout(slow, 0.01)

    @pytest.mark.asyncio
    async def test_runner_rejects_call_while_previous_is_running(self):
        """Test that a blocked sync callback keeps its slot busy until it returns."""
        runner = CallbackRunner(max_workers=2)
        release = threading.Event()

        try:
            with pytest.raises(asyncio.TimeoutError):
                await runner.invoke("hung", CALLBACK_HEALTH_CHECK, lambda: release.wait(5), 0.2)

            assert runner.is_busy("hung", CALLBACK_HEALTH_CHECK)
            assert runner.busy_slots() == [("hung", CALLBACK_HEALTH_CHECK)]
            with pytest.raises(CallbackBusyError) as exc_info:
                await runner.invoke("hung", CALLBACK_HEALTH_CHECK, lambda: True, 1.0)
            assert exc_info.value.system_name == "hung"

            # Other slots are unaffected
            assert await runner.invoke("hung", CALLBACK_RECOVERY, lambda: "ok", 1.0) == "ok"
            assert await runner.invoke("other", CALLBACK_HEALTH_CHECK, lambda: "ok", 1.0) == "ok"
        finally:
            release.set()

        for _ in range(200):
            if not runner.is_busy("hung", CALLBACK_HEALTH_CHECK):
                break
            await asyncio.sleep(0.01)

        assert await runner.invoke("hung", CALLBACK_HEALTH_CHECK, lambda: "back", 1.0) == "back"
        runner.shutdown()

    @pytest.mark.asyncio
    async def test_runner_restarts_after_shutdown(self):
        """Test that a shut down runner starts a fresh pool on the next call."""
        runner = CallbackRunner()
        assert await runner.invoke("svc", CALLBACK_HEALTH_CHECK, lambda: 1, 1.0) == 1

        runner.shutdown()

        assert await runner.invoke("svc", CALLBACK_HEALTH_CHECK, lambda: 2, 1.0) == 2
        runner.shutdown()


# ============================================================
# HISTORY TESTS
# ============================================================

class TestHistoryStore:
    """Tests for HistoryStore."""

    def test_cap_keeps_most_recent(self, clock):
        """Test that only the newest entries are kept, oldest first."""
        history = HistoryStore(max_entries_per_system=5, clock=clock)
        for score in range(7):
            history.append(make_result(clock, score=score))
            clock.advance(seconds=1)

        entries = history.all("player")
        assert [e.score for e in entries] == [2, 3, 4, 5, 6]
        assert history.latest("player").score == 6

    def test_retention_drops_expired_entries(self, clock):
        """Test time-based pruning."""
        history = HistoryStore(retention_seconds=60, clock=clock)
        history.append(make_result(clock, score=1))
        clock.advance(seconds=30)
        history.append(make_result(clock, score=2))
        clock.advance(seconds=45)

        assert [e.score for e in history.all("player")] == [2]

        clock.advance(seconds=60)
        assert history.latest("player") is None

    def test_recent_limits_results(self, clock):
        """Test recent(limit)."""
        history = HistoryStore(clock=clock)
        for score in range(4):
            history.append(make_result(clock, score=score))

        assert [e.score for e in history.recent("player", 2)] == [2, 3]
        assert history.recent("player", 0) == []
        assert history.recent("ghost") == []

    def test_configure_reprunes(self, clock):
        """Test that shrinking the cap applies immediately."""
        history = HistoryStore(clock=clock)
        for score in range(10):
            history.append(make_result(clock, score=score))

        history.configure(max_entries_per_system=3)

        assert len(history) == 3

    def test_summary_counts_statuses(self, clock):
        """Test per-status counts."""
        history = HistoryStore(clock=clock)
        history.append(make_result(clock, "a", SystemStatus.HEALTHY, 100))
        history.append(make_result(clock, "a", SystemStatus.FAILING, 33))
        history.append(make_result(clock, "b", SystemStatus.HEALTHY, 100))

        assert history.summary()[SystemStatus.HEALTHY] == 2
        assert history.latest_summary()[SystemStatus.FAILING] == 1
        assert history.latest_summary()[SystemStatus.HEALTHY] == 1
        assert sorted(history.systems()) == ["a", "b"]

    def test_clear_and_reset(self, clock):
        """Test removal of history."""
        history = HistoryStore(clock=clock)
        history.append(make_result(clock, "a"))
        history.append(make_result(clock, "b"))

        history.clear("a")
        assert history.all("a") == []
        assert len(history) == 1

        history.reset()
        assert len(history) == 0
