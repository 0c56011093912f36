"""
Unit Tests for the Circuit Breaker and Remote Call Guard

Tests for:
- State machine: closed -> open -> half-open -> closed / open
- Rejection accounting while open
- Status and statistics snapshots
- Async state-change listeners
- RemoteCallGuard timeouts counting as breaker failures
"""

import asyncio

import pytest

from playback_orchestrator.application.services.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerStats,
    CircuitState,
)
from playback_orchestrator.application.services.remote_guard import RemoteCallGuard
from playback_orchestrator.domain.shared.exceptions import (
    CircuitOpenError,
    RemoteTimeoutError,
    ServiceUnavailableError,
)


async def _ok():
    return "ok"


async def _boom():
    raise RuntimeError("boom")


async def _trip(breaker: CircuitBreaker, times: int) -> None:
    for _ in range(times):
        with pytest.raises(RuntimeError):
            await breaker.execute(_boom)


# =============================================================================
# State Machine Tests
# =============================================================================


class TestCircuitBreakerStates:
    """Transitions between closed, open and half-open."""

    @pytest.mark.asyncio
    async def test_starts_closed_and_passes_results_through(self, breaker):
        assert breaker.state is CircuitState.CLOSED
        assert await breaker.execute(_ok) == "ok"

    @pytest.mark.asyncio
    async def test_opens_after_consecutive_failures(self, breaker):
        await _trip(breaker, 2)
        assert breaker.state is CircuitState.CLOSED

        await _trip(breaker, 1)
        assert breaker.state is CircuitState.OPEN
        assert breaker.consecutive_failures == 3

    @pytest.mark.asyncio
    async def test_success_resets_failure_count(self, breaker):
        await _trip(breaker, 2)
        await breaker.execute(_ok)
        await _trip(breaker, 2)
        assert breaker.state is CircuitState.CLOSED

    @pytest.mark.asyncio
    async def test_open_rejects_without_invoking_call(self, breaker):
        await _trip(breaker, 3)
        invoked = False

        async def spy():
            nonlocal invoked
            invoked = True

        with pytest.raises(CircuitOpenError) as exc_info:
            await breaker.execute(spy)

        assert not invoked
        assert exc_info.value.retry_after_s == pytest.approx(30.0)
        assert isinstance(exc_info.value, ServiceUnavailableError)

    @pytest.mark.asyncio
    async def test_half_open_after_timeout_then_closes(self, breaker, fake_clock):
        await _trip(breaker, 3)
        fake_clock.advance(30.0)

        assert breaker.is_available()
        await breaker.execute(_ok)
        assert breaker.state is CircuitState.HALF_OPEN

        await breaker.execute(_ok)
        assert breaker.state is CircuitState.CLOSED
        assert breaker.next_attempt_at is None

    @pytest.mark.asyncio
    async def test_half_open_failure_reopens(self, breaker, fake_clock):
        await _trip(breaker, 3)
        fake_clock.advance(31.0)

        await _trip(breaker, 1)

        assert breaker.state is CircuitState.OPEN
        assert breaker.next_attempt_at == pytest.approx(fake_clock.now + 30.0)

    @pytest.mark.asyncio
    async def test_reset_forces_closed(self, breaker):
        await _trip(breaker, 3)
        breaker.reset()

        assert breaker.state is CircuitState.CLOSED
        assert breaker.consecutive_failures == 0
        assert await breaker.execute(_ok) == "ok"

    def test_invalid_thresholds_rejected(self):
        with pytest.raises(ValueError):
            CircuitBreaker(failure_threshold=0)


# =============================================================================
# Status & Statistics Tests
# =============================================================================


class TestCircuitBreakerStatus:
    @pytest.mark.asyncio
    async def test_stats_count_rejections_separately(self, breaker):
        await breaker.execute(_ok)
        await _trip(breaker, 3)
        with pytest.raises(CircuitOpenError):
            await breaker.execute(_ok)

        stats = breaker.stats
        assert stats.total_calls == 5
        assert stats.successful_calls == 1
        assert stats.failed_calls == 3
        assert stats.rejected_calls == 1
        assert stats.state_changes == 1
        assert stats.success_rate == pytest.approx(25.0)
        assert stats.rejection_rate == pytest.approx(20.0)

    def test_empty_stats_rates_are_zero(self):
        stats = CircuitBreakerStats()
        assert stats.success_rate == 0.0
        assert stats.rejection_rate == 0.0

    @pytest.mark.asyncio
    async def test_status_reports_retry_after(self, breaker, fake_clock):
        assert breaker.get_status().retry_after_s is None

        await _trip(breaker, 3)
        fake_clock.advance(10.0)
        status = breaker.get_status()

        assert status.name == "test"
        assert status.state is CircuitState.OPEN
        assert status.retry_after_s == pytest.approx(20.0)


# =============================================================================
# Listener Tests
# =============================================================================


class TestCircuitBreakerListeners:
    @pytest.mark.asyncio
    async def test_async_listener_receives_transitions(self, fake_clock):
        seen: list[tuple[CircuitState, CircuitState]] = []

        async def listener(old, new, stats):
            seen.append((old, new))

        breaker = CircuitBreaker(
            "listen", failure_threshold=1, open_timeout_s=5.0,
            on_state_change=listener, clock=fake_clock,
        )
        await _trip(breaker, 1)
        fake_clock.advance(5.0)
        await breaker.execute(_ok)
        await breaker.execute(_ok)
        await breaker.drain_notifications()

        assert seen == [
            (CircuitState.CLOSED, CircuitState.OPEN),
            (CircuitState.OPEN, CircuitState.HALF_OPEN),
            (CircuitState.HALF_OPEN, CircuitState.CLOSED),
        ]

    @pytest.mark.asyncio
    async def test_failing_listener_does_not_break_execution(self, fake_clock):
        def bad_listener(old, new, stats):
            raise RuntimeError("listener broke")

        breaker = CircuitBreaker("bad", failure_threshold=1, clock=fake_clock)
        breaker.add_listener(bad_listener)

        await _trip(breaker, 1)
        assert breaker.state is CircuitState.OPEN


# =============================================================================
# RemoteCallGuard Tests
# =============================================================================


class TestRemoteCallGuard:
    @pytest.mark.asyncio
    async def test_timeout_counts_as_failure(self, fake_clock):
        breaker = CircuitBreaker("guard", failure_threshold=1, clock=fake_clock)
        guard = RemoteCallGuard(breaker, default_timeout_s=0.01)

        async def hang():
            await asyncio.Event().wait()

        with pytest.raises(RemoteTimeoutError):
            await guard.call(hang, operation="hang")

        assert breaker.state is CircuitState.OPEN
        assert not guard.is_available()

    @pytest.mark.asyncio
    async def test_successful_call_returns_value(self, breaker):
        guard = RemoteCallGuard(breaker)
        assert await guard.call(_ok, operation="ok", timeout_s=1.0) == "ok"
        assert guard.is_available()
