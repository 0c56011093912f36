"""Generic resilience helpers: retry with backoff, timeouts, fallbacks, bulkhead.

None of these know about nodes or sessions. Callers decide what is
retryable through ``should_retry``; by default only ``TransientRemoteError``
is, so a caller's own validation errors surface immediately.
"""

from __future__ import annotations

import asyncio
import logging
import random
import time
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from typing import Generic, TypeVar

from playback_orchestrator.domain.shared.datetime_utils import Clock
from playback_orchestrator.domain.shared.exceptions import (
    BulkheadFullError,
    RemoteTimeoutError,
    TransientRemoteError,
)
from playback_orchestrator.domain.shared.messages import LogTemplates

logger = logging.getLogger(__name__)

T = TypeVar("T")

AsyncCall = Callable[[], Awaitable[T]]
Sleeper = Callable[[float], Awaitable[None]]


@dataclass(frozen=True, slots=True)
class BackoffPolicy:
    """Exponential backoff: ``initial * multiplier**n`` capped at ``max``, plus jitter.

    ``jitter`` is a fraction of the computed delay added on top at random,
    so concurrent retriers spread out instead of arriving together.
    """

    initial_delay_s: float = 1.0
    max_delay_s: float = 8.0
    multiplier: float = 2.0
    jitter: float = 0.0

    def delay_for(self, retry_index: int, rand: Callable[[], float] = random.random) -> float:
        delay = min(self.initial_delay_s * (self.multiplier**retry_index), self.max_delay_s)
        if self.jitter > 0:
            delay += delay * self.jitter * rand()
        return delay


DEFAULT_BACKOFF = BackoffPolicy()


def is_transient(error: BaseException) -> bool:
    return isinstance(error, TransientRemoteError)


async def retry_with_backoff(
    fn: AsyncCall[T],
    *,
    max_retries: int = 3,
    policy: BackoffPolicy = DEFAULT_BACKOFF,
    should_retry: Callable[[BaseException], bool] = is_transient,
    operation: str = "operation",
    sleep: Sleeper = asyncio.sleep,
    on_retry: Callable[[int, Exception, float], None] | None = None,
) -> T:
    """Call ``fn`` up to ``max_retries + 1`` times.

    Non-retryable errors and the error from the final attempt propagate
    unchanged.
    """
    attempt = 0
    while True:
        try:
            result = await fn()
        except Exception as e:
            if not should_retry(e):
                logger.debug(LogTemplates.RETRY_NOT_RETRYABLE, operation, type(e).__name__)
                raise
            if attempt >= max_retries:
                logger.warning(LogTemplates.RETRY_EXHAUSTED, operation, attempt + 1, e)
                raise

            delay = policy.delay_for(attempt)
            attempt += 1
            logger.warning(LogTemplates.RETRY_SCHEDULED, operation, attempt, max_retries, delay, e)
            if on_retry is not None:
                on_retry(attempt, e, delay)
            await sleep(delay)
            continue

        if attempt > 0:
            logger.info(LogTemplates.RETRY_SUCCEEDED, operation, attempt + 1)
        return result


async def with_timeout(aw: Awaitable[T], timeout_s: float, *, operation: str = "operation") -> T:
    """Await ``aw`` for at most ``timeout_s`` seconds.

    Raises ``RemoteTimeoutError`` (a transient error) when the deadline passes.
    """
    try:
        async with asyncio.timeout(timeout_s):
            return await aw
    except TimeoutError as e:
        raise RemoteTimeoutError(operation, timeout_s) from e


async def with_fallback(
    primary: AsyncCall[T], fallback: AsyncCall[T], *, operation: str = "operation"
) -> T:
    """Run ``primary``; on any error run ``fallback`` and return its result."""
    try:
        return await primary()
    except Exception as e:
        logger.warning(LogTemplates.FALLBACK_USED, operation, e)
    return await fallback()


async def race_to_success(fns: Sequence[AsyncCall[T]], *, operation: str = "operation") -> T:
    """Start every option concurrently and return the first successful result.

    Remaining options are cancelled once one succeeds. If all fail, an
    ``ExceptionGroup`` carrying every error is raised.
    """
    if not fns:
        raise ValueError("race_to_success needs at least one option")

    tasks = [asyncio.ensure_future(fn()) for fn in fns]
    errors: list[Exception] = []
    try:
        for next_done in asyncio.as_completed(tasks):
            try:
                result = await next_done
            except Exception as e:
                errors.append(e)
                continue
            logger.debug(LogTemplates.RACE_WON, operation, len(errors) + 1)
            return result
    finally:
        for task in tasks:
            if not task.done():
                task.cancel()

    raise ExceptionGroup(f"All {len(fns)} options for {operation} failed", errors)


@dataclass(frozen=True, slots=True)
class StaleValue(Generic[T]):
    """A previously stored value and the ``clock`` reading when it was stored."""

    data: T
    stored_at: float | None = None


@dataclass(frozen=True, slots=True)
class StaleResult(Generic[T]):
    data: T
    is_stale: bool


async def stale_while_revalidate(
    fetch: AsyncCall[T],
    get_stale: Callable[[], Awaitable[StaleValue[T] | None]],
    *,
    max_stale_age_s: float = 300.0,
    operation: str = "operation",
    clock: Clock = time.monotonic,
) -> StaleResult[T]:
    """Prefer fresh data; on failure serve stored data no older than ``max_stale_age_s``.

    When no acceptable stale value exists, the original fetch error propagates.
    """
    try:
        return StaleResult(await fetch(), is_stale=False)
    except Exception as fetch_error:
        logger.warning(LogTemplates.STALE_ATTEMPT, operation, fetch_error)
        stale = await get_stale()
        if stale is None:
            logger.error(LogTemplates.STALE_UNAVAILABLE, operation)
            raise

        if stale.stored_at is not None:
            age = clock() - stale.stored_at
            if age > max_stale_age_s:
                logger.error(LogTemplates.STALE_TOO_OLD, operation, age, max_stale_age_s)
                raise
        logger.info(LogTemplates.STALE_SERVED, operation)
        return StaleResult(stale.data, is_stale=True)


@dataclass(frozen=True, slots=True)
class BulkheadStatus:
    running: int
    queued: int
    max_concurrent: int
    max_queue: int | None

    @property
    def available(self) -> int:
        return max(0, self.max_concurrent - self.running)


class Bulkhead:
    """Limits concurrent executions; excess callers wait up to ``max_queue`` deep."""

    def __init__(self, max_concurrent: int, max_queue: int | None = None) -> None:
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be at least 1")
        self.max_concurrent = max_concurrent
        self.max_queue = max_queue
        self._semaphore = asyncio.Semaphore(max_concurrent)
        self._running = 0
        self._queued = 0

    async def execute(self, fn: AsyncCall[T]) -> T:
        if self._semaphore.locked():
            if self.max_queue is not None and self._queued >= self.max_queue:
                raise BulkheadFullError(self.max_queue)
            self._queued += 1
            try:
                await self._semaphore.acquire()
            finally:
                self._queued -= 1
        else:
            await self._semaphore.acquire()

        self._running += 1
        try:
            return await fn()
        finally:
            self._running -= 1
            self._semaphore.release()

    def status(self) -> BulkheadStatus:
        return BulkheadStatus(
            running=self._running,
            queued=self._queued,
            max_concurrent=self.max_concurrent,
            max_queue=self.max_queue,
        )
