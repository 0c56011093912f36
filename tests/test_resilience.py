"""
Unit Tests for Resilience Primitives

Tests for:
- BackoffPolicy delay computation
- retry_with_backoff: transient vs. non-retryable errors, exhaustion
- with_timeout, with_fallback, race_to_success
- stale_while_revalidate
- Bulkhead concurrency and queue limits
"""

import asyncio

import pytest

from playback_orchestrator.application.services.resilience import (
    BackoffPolicy,
    Bulkhead,
    StaleValue,
    race_to_success,
    retry_with_backoff,
    stale_while_revalidate,
    with_fallback,
    with_timeout,
)
from playback_orchestrator.domain.shared.exceptions import (
    BulkheadFullError,
    RemoteConnectionError,
    RemoteTimeoutError,
    ValidationError,
)

# =============================================================================
# Backoff Tests
# =============================================================================


class TestBackoffPolicy:
    def test_exponential_growth_with_cap(self):
        policy = BackoffPolicy(initial_delay_s=1.0, max_delay_s=5.0, multiplier=2.0)
        assert [policy.delay_for(i) for i in range(4)] == [1.0, 2.0, 4.0, 5.0]

    def test_jitter_adds_fraction_of_delay(self):
        policy = BackoffPolicy(initial_delay_s=2.0, jitter=0.5)
        assert policy.delay_for(0, rand=lambda: 1.0) == pytest.approx(3.0)
        assert policy.delay_for(0, rand=lambda: 0.0) == pytest.approx(2.0)


# =============================================================================
# Retry Tests
# =============================================================================


class TestRetryWithBackoff:
    @pytest.mark.asyncio
    async def test_retries_transient_errors_until_success(self, fake_sleep):
        attempts = 0

        async def flaky():
            nonlocal attempts
            attempts += 1
            if attempts < 3:
                raise RemoteConnectionError("refused")
            return "done"

        retried: list[int] = []
        result = await retry_with_backoff(
            flaky,
            max_retries=3,
            policy=BackoffPolicy(initial_delay_s=0.5),
            sleep=fake_sleep,
            on_retry=lambda n, e, d: retried.append(n),
        )

        assert result == "done"
        assert fake_sleep.calls == [0.5, 1.0]
        assert retried == [1, 2]

    @pytest.mark.asyncio
    async def test_non_retryable_error_propagates_immediately(self, fake_sleep):
        async def invalid():
            raise ValidationError("bad input")

        with pytest.raises(ValidationError):
            await retry_with_backoff(invalid, sleep=fake_sleep)
        assert fake_sleep.calls == []

    @pytest.mark.asyncio
    async def test_final_error_propagates_after_exhaustion(self, fake_sleep):
        calls = 0

        async def always_down():
            nonlocal calls
            calls += 1
            raise RemoteConnectionError(f"down {calls}")

        with pytest.raises(RemoteConnectionError, match="down 3"):
            await retry_with_backoff(always_down, max_retries=2, sleep=fake_sleep)
        assert calls == 3

    @pytest.mark.asyncio
    async def test_custom_should_retry(self, fake_sleep):
        calls = 0

        async def fn():
            nonlocal calls
            calls += 1
            if calls == 1:
                raise KeyError("x")
            return calls

        result = await retry_with_backoff(
            fn, should_retry=lambda e: isinstance(e, KeyError), sleep=fake_sleep
        )
        assert result == 2


# =============================================================================
# Timeout / Fallback / Race Tests
# =============================================================================


class TestTimeoutsAndFallbacks:
    @pytest.mark.asyncio
    async def test_with_timeout_raises_remote_timeout(self):
        with pytest.raises(RemoteTimeoutError) as exc_info:
            await with_timeout(asyncio.sleep(1), 0.01, operation="slow")
        assert exc_info.value.operation == "slow"

    @pytest.mark.asyncio
    async def test_with_timeout_returns_value(self):
        async def quick():
            return 7

        assert await with_timeout(quick(), 1.0) == 7

    @pytest.mark.asyncio
    async def test_with_fallback_uses_fallback_on_error(self):
        async def primary():
            raise RuntimeError("nope")

        async def fallback():
            return "fallback"

        assert await with_fallback(primary, fallback) == "fallback"

    @pytest.mark.asyncio
    async def test_race_returns_first_success(self):
        async def slow():
            await asyncio.sleep(1)
            return "slow"

        async def fails():
            raise RuntimeError("x")

        async def fast():
            await asyncio.sleep(0)
            return "fast"

        assert await race_to_success([slow, fails, fast]) == "fast"

    @pytest.mark.asyncio
    async def test_race_all_fail_raises_group(self):
        async def fails():
            raise RuntimeError("x")

        with pytest.raises(ExceptionGroup) as exc_info:
            await race_to_success([fails, fails])
        assert len(exc_info.value.exceptions) == 2

    @pytest.mark.asyncio
    async def test_race_requires_options(self):
        with pytest.raises(ValueError):
            await race_to_success([])


# =============================================================================
# Stale-While-Revalidate Tests
# =============================================================================


class TestStaleWhileRevalidate:
    @pytest.mark.asyncio
    async def test_fresh_data_preferred(self):
        async def fetch():
            return "fresh"

        async def get_stale():
            return StaleValue("stale")

        result = await stale_while_revalidate(fetch, get_stale)
        assert (result.data, result.is_stale) == ("fresh", False)

    @pytest.mark.asyncio
    async def test_stale_served_on_failure(self, fake_clock):
        async def fetch():
            raise RemoteConnectionError("down")

        async def get_stale():
            return StaleValue("stale", stored_at=fake_clock.now - 10)

        result = await stale_while_revalidate(fetch, get_stale, clock=fake_clock)
        assert (result.data, result.is_stale) == ("stale", True)

    @pytest.mark.asyncio
    async def test_too_old_stale_reraises_fetch_error(self, fake_clock):
        async def fetch():
            raise RemoteConnectionError("down")

        async def get_stale():
            return StaleValue("ancient", stored_at=fake_clock.now - 1000)

        with pytest.raises(RemoteConnectionError):
            await stale_while_revalidate(
                fetch, get_stale, max_stale_age_s=300, clock=fake_clock
            )

    @pytest.mark.asyncio
    async def test_missing_stale_reraises_fetch_error(self):
        async def fetch():
            raise RemoteConnectionError("down")

        async def get_stale():
            return None

        with pytest.raises(RemoteConnectionError):
            await stale_while_revalidate(fetch, get_stale)


# =============================================================================
# Bulkhead Tests
# =============================================================================


class TestBulkhead:
    @pytest.mark.asyncio
    async def test_limits_concurrency(self):
        bulkhead = Bulkhead(max_concurrent=2)
        running = 0
        peak = 0
        release = asyncio.Event()

        async def work():
            nonlocal running, peak
            running += 1
            peak = max(peak, running)
            await release.wait()
            running -= 1

        tasks = [asyncio.create_task(bulkhead.execute(work)) for _ in range(4)]
        await asyncio.sleep(0)
        status = bulkhead.status()
        assert status.running == 2
        assert status.queued == 2
        assert status.available == 0

        release.set()
        await asyncio.gather(*tasks)
        assert peak == 2

    @pytest.mark.asyncio
    async def test_rejects_when_queue_full(self):
        bulkhead = Bulkhead(max_concurrent=1, max_queue=0)
        release = asyncio.Event()

        async def work():
            await release.wait()

        holder = asyncio.create_task(bulkhead.execute(work))
        await asyncio.sleep(0)

        with pytest.raises(BulkheadFullError):
            await bulkhead.execute(work)

        release.set()
        await holder

    def test_requires_positive_concurrency(self):
        with pytest.raises(ValueError):
            Bulkhead(0)
