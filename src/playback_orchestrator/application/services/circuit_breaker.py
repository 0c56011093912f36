"""Three-state circuit breaker guarding every call into the remote cluster.

closed -> open after ``failure_threshold`` consecutive failures.
open -> half-open on the first call at or after ``next_attempt_at``.
half-open -> closed after ``success_threshold`` consecutive successes,
or straight back to open on any failure.

All counter and state updates happen synchronously between awaits, so
concurrent tasks on one event loop see each transition atomically.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, replace
from enum import StrEnum
from typing import Any, TypeVar

from playback_orchestrator.domain.shared.datetime_utils import Clock
from playback_orchestrator.domain.shared.exceptions import CircuitOpenError
from playback_orchestrator.domain.shared.messages import LogTemplates

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CircuitState(StrEnum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass(frozen=True, slots=True)
class CircuitBreakerStats:
    """Cumulative call statistics; a new instance is produced on every change."""

    total_calls: int = 0
    successful_calls: int = 0
    failed_calls: int = 0
    rejected_calls: int = 0
    state_changes: int = 0

    @property
    def success_rate(self) -> float:
        executed = self.total_calls - self.rejected_calls
        if executed <= 0:
            return 0.0
        return self.successful_calls / executed * 100

    @property
    def rejection_rate(self) -> float:
        if self.total_calls <= 0:
            return 0.0
        return self.rejected_calls / self.total_calls * 100


@dataclass(frozen=True, slots=True)
class CircuitBreakerStatus:
    name: str
    state: CircuitState
    consecutive_failures: int
    consecutive_successes: int
    retry_after_s: float | None
    stats: CircuitBreakerStats


StateChangeListener = Callable[
    [CircuitState, CircuitState, CircuitBreakerStats], Awaitable[None] | None
]


class CircuitBreaker:
    """Failure-isolation wrapper around arbitrary async calls."""

    def __init__(
        self,
        name: str = "remote-cluster",
        *,
        failure_threshold: int = 5,
        success_threshold: int = 2,
        open_timeout_s: float = 60.0,
        on_state_change: StateChangeListener | None = None,
        clock: Clock = time.monotonic,
    ) -> None:
        if failure_threshold < 1 or success_threshold < 1:
            raise ValueError("thresholds must be at least 1")
        self.name = name
        self.failure_threshold = failure_threshold
        self.success_threshold = success_threshold
        self.open_timeout_s = open_timeout_s
        self._clock = clock
        self._listeners: list[StateChangeListener] = []
        if on_state_change is not None:
            self._listeners.append(on_state_change)
        self._pending_notifications: set[asyncio.Task[Any]] = set()

        self._state = CircuitState.CLOSED
        self._consecutive_failures = 0
        self._consecutive_successes = 0
        self._next_attempt_at: float | None = None
        self._stats = CircuitBreakerStats()

    @property
    def state(self) -> CircuitState:
        return self._state

    @property
    def consecutive_failures(self) -> int:
        return self._consecutive_failures

    @property
    def consecutive_successes(self) -> int:
        return self._consecutive_successes

    @property
    def next_attempt_at(self) -> float | None:
        return self._next_attempt_at

    @property
    def stats(self) -> CircuitBreakerStats:
        return self._stats

    def add_listener(self, listener: StateChangeListener) -> None:
        self._listeners.append(listener)

    async def execute(self, call: Callable[[], Awaitable[T]]) -> T:
        """Run ``call`` through the breaker.

        Raises ``CircuitOpenError`` without invoking ``call`` while open.
        Errors from ``call`` are recorded and re-raised unchanged.
        """
        self._before_call()
        try:
            result = await call()
        except Exception:
            self._on_failure()
            raise
        self._on_success()
        return result

    def is_available(self) -> bool:
        """Whether a call made now would be let through."""
        if self._state is not CircuitState.OPEN:
            return True
        return self._next_attempt_at is not None and self._clock() >= self._next_attempt_at

    def retry_after_s(self) -> float | None:
        if self._state is not CircuitState.OPEN or self._next_attempt_at is None:
            return None
        return max(0.0, self._next_attempt_at - self._clock())

    def reset(self) -> None:
        """Force the breaker closed and zero its consecutive counters."""
        self._consecutive_failures = 0
        self._consecutive_successes = 0
        self._next_attempt_at = None
        if self._state is not CircuitState.CLOSED:
            self._transition(CircuitState.CLOSED)
        logger.info(LogTemplates.BREAKER_RESET, self.name)

    def get_status(self) -> CircuitBreakerStatus:
        return CircuitBreakerStatus(
            name=self.name,
            state=self._state,
            consecutive_failures=self._consecutive_failures,
            consecutive_successes=self._consecutive_successes,
            retry_after_s=self.retry_after_s(),
            stats=self._stats,
        )

    # ── transitions ──────────────────────────────────────────────────

    def _before_call(self) -> None:
        if self._state is CircuitState.OPEN:
            now = self._clock()
            if self._next_attempt_at is not None and now >= self._next_attempt_at:
                self._consecutive_successes = 0
                self._transition(CircuitState.HALF_OPEN)
            else:
                retry_after = (self._next_attempt_at or now) - now
                self._stats = replace(
                    self._stats,
                    total_calls=self._stats.total_calls + 1,
                    rejected_calls=self._stats.rejected_calls + 1,
                )
                logger.debug(LogTemplates.BREAKER_REJECTED, self.name, retry_after)
                raise CircuitOpenError(self.name, retry_after)

        self._stats = replace(self._stats, total_calls=self._stats.total_calls + 1)

    def _on_success(self) -> None:
        self._stats = replace(self._stats, successful_calls=self._stats.successful_calls + 1)
        self._consecutive_failures = 0

        if self._state is CircuitState.HALF_OPEN:
            self._consecutive_successes += 1
            if self._consecutive_successes >= self.success_threshold:
                self._consecutive_successes = 0
                self._next_attempt_at = None
                self._transition(CircuitState.CLOSED)

    def _on_failure(self) -> None:
        self._stats = replace(self._stats, failed_calls=self._stats.failed_calls + 1)
        self._consecutive_failures += 1
        self._consecutive_successes = 0

        if self._state is CircuitState.HALF_OPEN:
            self._open()
        elif (
            self._state is CircuitState.CLOSED
            and self._consecutive_failures >= self.failure_threshold
        ):
            self._open()

    def _open(self) -> None:
        self._next_attempt_at = self._clock() + self.open_timeout_s
        self._transition(CircuitState.OPEN)

    def _transition(self, new_state: CircuitState) -> None:
        old_state = self._state
        self._state = new_state
        self._stats = replace(self._stats, state_changes=self._stats.state_changes + 1)
        logger.info(LogTemplates.BREAKER_TRANSITION, self.name, old_state, new_state)
        self._notify(old_state, new_state, self._stats)

    def _notify(
        self, old_state: CircuitState, new_state: CircuitState, stats: CircuitBreakerStats
    ) -> None:
        for listener in list(self._listeners):
            try:
                outcome = listener(old_state, new_state, stats)
            except Exception:
                logger.exception(LogTemplates.BREAKER_LISTENER_FAILED, self.name)
                continue
            if inspect.isawaitable(outcome):
                task = asyncio.ensure_future(outcome)
                self._pending_notifications.add(task)
                task.add_done_callback(self._notification_done)

    def _notification_done(self, task: asyncio.Task[Any]) -> None:
        self._pending_notifications.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error(
                LogTemplates.BREAKER_LISTENER_FAILED, self.name, exc_info=task.exception()
            )

    async def drain_notifications(self) -> None:
        """Wait for scheduled async listener calls to finish."""
        while self._pending_notifications:
            await asyncio.gather(*list(self._pending_notifications), return_exceptions=True)
