"""Unit tests for the per-source rate limiter.

Test Strategy:
1. Test pacing (minimum spacing between dispatches)
2. Test the concurrency cap
3. Test exponential backoff growth, cap and reset
4. Test retry ordering (a failed request runs before later work)
5. Test failure classification (permanent vs retryable, exhausted retries)
6. Test cancellation and queue clearing
7. Test the per-source service (independence, settings, stats)

Pacing and backoff waits go through an injected fake sleep that advances a
fake monotonic clock, so no test waits for real delays.

Each test follows the pattern:
- Given: A limiter with specific limits and an operation with known behavior
- When: execute() is called one or more times
- Then: Results, waits and stats match the configured policy
"""
import asyncio

import pytest

from statline.services.ingest.cancellation import CancellationToken
from statline.services.ingest.errors import (
    PermanentSourceError,
    QueueClearedError,
    RetriesExhaustedError,
    RunCancelledError,
    SourceUnavailableError,
)
from statline.services.ingest.rate_limiter import (
    RateLimitConfig,
    RateLimiterService,
    SourceRateLimiter,
)


def make_config(**overrides) -> RateLimitConfig:
    values = {
        "requests_per_second": 1000,
        "max_concurrent": 1,
        "base_backoff_ms": 100,
        "max_backoff_ms": 250,
        "max_retries": 3,
    }
    values.update(overrides)
    return RateLimitConfig(**values)


def make_limiter(fake_monotonic, **overrides) -> SourceRateLimiter:
    return SourceRateLimiter(
        "espn",
        make_config(**overrides),
        sleep=fake_monotonic.sleep,
        clock=fake_monotonic,
    )


class TestRateLimitConfig:
    """Test suite for limit validation."""

    def test_min_interval_from_rate(self):
        """Should derive the dispatch spacing from requests per second."""
        assert make_config(requests_per_second=5).min_interval_ms == 200.0
        assert make_config(requests_per_second=1).min_interval_ms == 1000.0

    @pytest.mark.parametrize("overrides", [
        {"requests_per_second": 0},
        {"max_concurrent": 0},
        {"max_retries": -1},
    ])
    def test_rejects_invalid_limits(self, overrides):
        """Should raise ValueError for limits that cannot schedule anything."""
        with pytest.raises(ValueError):
            make_config(**overrides)


class TestPacing:
    """Test suite for dispatch spacing and the concurrency cap."""

    # Spacing Tests
    # ─────────────────────────────────────────────────────────────

    @pytest.mark.asyncio
    async def test_spacing_between_dispatches(self, fake_monotonic):
        """Should spread N requests over at least (N - 1) * interval."""
        limiter = make_limiter(fake_monotonic, requests_per_second=2, max_concurrent=3)
        start = fake_monotonic.now

        async def operation():
            return "ok"

        results = await asyncio.gather(*(limiter.execute(operation) for _ in range(5)))

        assert results == ["ok"] * 5
        assert fake_monotonic.now - start == pytest.approx(4 * 0.5)
        assert all(s == pytest.approx(0.5) for s in fake_monotonic.sleeps)

    @pytest.mark.asyncio
    async def test_first_request_is_not_delayed(self, fake_monotonic):
        """Should dispatch the first request without waiting."""
        limiter = make_limiter(fake_monotonic, requests_per_second=1)

        async def operation():
            return 42

        assert await limiter.execute(operation) == 42
        assert fake_monotonic.sleeps == []

    # Concurrency Tests
    # ─────────────────────────────────────────────────────────────

    @pytest.mark.asyncio
    async def test_concurrency_cap(self, fake_monotonic):
        """Should never run more than max_concurrent operations at once."""
        limiter = make_limiter(fake_monotonic, max_concurrent=2)
        gate = asyncio.Event()
        active = 0
        peak = 0

        async def operation():
            nonlocal active, peak
            active += 1
            peak = max(peak, active)
            await gate.wait()
            active -= 1
            return "done"

        tasks = [asyncio.create_task(limiter.execute(operation)) for _ in range(5)]
        await asyncio.sleep(0.05)

        assert peak == 2
        assert limiter.get_stats().active_requests == 2
        assert limiter.queue_depth == 3

        gate.set()
        results = await asyncio.gather(*tasks)

        assert results == ["done"] * 5
        assert peak == 2
        assert limiter.get_stats().active_requests == 0


class TestBackoff:
    """Test suite for exponential backoff."""

    def test_backoff_formula(self):
        """Should double from the base delay and cap at the maximum."""
        limiter = SourceRateLimiter(
            "pfr", make_config(base_backoff_ms=1000, max_backoff_ms=30000)
        )

        assert limiter.backoff_delay_ms(0) == 0
        assert limiter.backoff_delay_ms(1) == 1000
        assert limiter.backoff_delay_ms(2) == 2000
        assert limiter.backoff_delay_ms(3) == 4000
        assert limiter.backoff_delay_ms(6) == 30000

    @pytest.mark.asyncio
    async def test_backoff_grows_then_resets_on_success(self, fake_monotonic):
        """Should back off 100, 200, then capped 250ms and reset after a success."""
        limiter = make_limiter(fake_monotonic)
        calls = 0

        async def flaky():
            nonlocal calls
            calls += 1
            if calls <= 3:
                raise SourceUnavailableError("503 from upstream", "espn", status_code=503)
            return "ok"

        assert await limiter.execute(flaky) == "ok"

        backoffs = [s for s in fake_monotonic.sleeps if s >= 0.05]
        assert backoffs == pytest.approx([0.1, 0.2, 0.25])
        assert calls == 4
        assert limiter.consecutive_failures == 0

        fake_monotonic.sleeps.clear()

        async def healthy():
            return "fine"

        assert await limiter.execute(healthy) == "fine"
        assert [s for s in fake_monotonic.sleeps if s >= 0.05] == []


class TestRetries:
    """Test suite for retry ordering and failure classification."""

    @pytest.mark.asyncio
    async def test_retry_runs_before_later_requests(self, fake_monotonic):
        """Should re-dispatch a failed request ahead of work queued after it."""
        limiter = make_limiter(fake_monotonic)
        order = []
        attempts = 0

        async def request_a():
            nonlocal attempts
            order.append("a")
            attempts += 1
            if attempts == 1:
                raise SourceUnavailableError("timeout", "espn")
            return "a"

        async def request_b():
            order.append("b")
            return "b"

        results = await asyncio.gather(limiter.execute(request_a), limiter.execute(request_b))

        assert results == ["a", "b"]
        assert order == ["a", "a", "b"]
        assert limiter.get_stats().total_retries == 1

    @pytest.mark.asyncio
    async def test_permanent_error_not_retried(self, fake_monotonic):
        """Should reject a permanent failure immediately without backoff."""
        limiter = make_limiter(fake_monotonic)
        calls = 0

        async def not_found():
            nonlocal calls
            calls += 1
            raise PermanentSourceError("espn returned 404", "espn", status_code=404)

        with pytest.raises(PermanentSourceError):
            await limiter.execute(not_found)

        assert calls == 1
        assert limiter.consecutive_failures == 0
        assert limiter.get_stats().failed_requests == 1

    @pytest.mark.asyncio
    async def test_retries_exhausted(self, fake_monotonic):
        """Should give up after max_retries and report every attempt."""
        limiter = make_limiter(fake_monotonic, max_retries=2)
        calls = 0

        async def down():
            nonlocal calls
            calls += 1
            raise SourceUnavailableError("connection refused", "espn")

        with pytest.raises(RetriesExhaustedError) as exc_info:
            await limiter.execute(down)

        assert calls == 3
        assert exc_info.value.attempts == 3
        assert isinstance(exc_info.value.last_error, SourceUnavailableError)
        assert exc_info.value.source == "espn"
        assert limiter.consecutive_failures == 3


class TestCancellationAndClearing:
    """Test suite for cancellation tokens and clear_queue()."""

    @pytest.mark.asyncio
    async def test_cancelled_token_rejects_before_queueing(self, fake_monotonic):
        """Should raise RunCancelledError without calling the operation."""
        limiter = make_limiter(fake_monotonic)
        token = CancellationToken()
        token.cancel("shutdown")
        calls = 0

        async def operation():
            nonlocal calls
            calls += 1

        with pytest.raises(RunCancelledError):
            await limiter.execute(operation, cancel_token=token)

        assert calls == 0
        assert limiter.queue_depth == 0

    @pytest.mark.asyncio
    async def test_cancel_during_backoff(self):
        """Should stop a retry that is waiting out its backoff."""
        token = CancellationToken()

        async def cancelling_sleep(seconds):
            if seconds >= 0.05:
                token.cancel("operator abort")
            await asyncio.sleep(0)

        limiter = SourceRateLimiter("pfr", make_config(), sleep=cancelling_sleep)
        calls = 0

        async def down():
            nonlocal calls
            calls += 1
            raise SourceUnavailableError("503", "pfr", status_code=503)

        with pytest.raises(RunCancelledError):
            await limiter.execute(down, cancel_token=token)

        assert calls == 1

    @pytest.mark.asyncio
    async def test_clear_queue_rejects_pending(self, fake_monotonic):
        """Should reject queued requests and let the in-flight one finish."""
        limiter = make_limiter(fake_monotonic)
        gate = asyncio.Event()

        async def slow():
            await gate.wait()
            return "first"

        async def quick():
            return "never"

        first = asyncio.create_task(limiter.execute(slow))
        second = asyncio.create_task(limiter.execute(quick))
        third = asyncio.create_task(limiter.execute(quick))
        await asyncio.sleep(0.01)

        assert limiter.queue_depth == 2
        assert limiter.clear_queue() == 2
        assert limiter.queue_depth == 0

        with pytest.raises(QueueClearedError):
            await second
        with pytest.raises(QueueClearedError):
            await third

        gate.set()
        assert await first == "first"


class TestRateLimiterService:
    """Test suite for the per-source limiter service."""

    @pytest.mark.asyncio
    async def test_sources_are_independent(self, fake_monotonic):
        """Should keep serving one source while another is saturated."""
        service = RateLimiterService(
            {"espn": make_config(), "pfr": make_config()},
            sleep=fake_monotonic.sleep,
            clock=fake_monotonic,
        )
        gate = asyncio.Event()

        async def blocked():
            await gate.wait()
            return "espn"

        async def quick():
            return "done"

        espn_first = asyncio.create_task(service.execute("espn", blocked))
        espn_second = asyncio.create_task(service.execute("espn", quick))
        await asyncio.sleep(0.01)

        result = await asyncio.wait_for(service.execute("pfr", quick), timeout=1)

        assert result == "done"
        assert not espn_second.done()

        gate.set()
        assert await espn_first == "espn"
        assert await espn_second == "done"

    def test_unknown_source(self):
        """Should raise ValueError for a source without limits."""
        service = RateLimiterService({"espn": make_config()})

        with pytest.raises(ValueError, match="nfl"):
            service.limiter("nfl")

    def test_from_settings(self, test_settings):
        """Should build one limiter per source from settings."""
        service = RateLimiterService.from_settings(
            test_settings(PFR_REQUESTS_PER_SECOND=0.5, LIMITER_MAX_RETRIES=5)
        )

        assert service.sources == ["espn", "pfr"]
        assert service.limiter("pfr").config.requests_per_second == 0.5
        assert service.limiter("pfr").config.max_concurrent == 1
        assert service.limiter("espn").config.max_retries == 5

    @pytest.mark.asyncio
    async def test_stats_and_reset(self, fake_monotonic):
        """Should count successes and failures per source and reset them."""
        service = RateLimiterService(
            {"espn": make_config(), "pfr": make_config()},
            sleep=fake_monotonic.sleep,
            clock=fake_monotonic,
        )

        async def ok():
            return True

        async def gone():
            raise PermanentSourceError("410", "espn", status_code=410)

        await service.execute("espn", ok)
        await service.execute("espn", ok)
        with pytest.raises(PermanentSourceError):
            await service.execute("espn", gone)

        stats = service.get_stats("espn")
        assert stats.total_requests == 3
        assert stats.successful_requests == 2
        assert stats.failed_requests == 1
        assert service.get_all_stats()["pfr"].total_requests == 0

        service.reset_stats()

        stats = service.get_stats("espn")
        assert stats.total_requests == 0
        assert stats.successful_requests == 0
        assert stats.failed_requests == 0
