"""
Per-source request scheduler with pacing, concurrency caps and backoff.

Each source gets its own SourceRateLimiter. A limiter owns two queues:

- retry queue: requests that failed and are being retried
- fresh queue: new work, in arrival order

The retry queue is always drained first, so a request that fails is
re-dispatched before any work that arrived after it. Before every dispatch
the limiter waits for a free concurrency slot, then for the minimum spacing
since the previous dispatch (1000 / requests_per_second ms), then, while the
source is failing, for an exponential backoff:

    min(base_backoff_ms * 2 ** (consecutive_failures - 1), max_backoff_ms)

Failures are classified. PermanentSourceError is rejected immediately and
does not consume retry budget or grow the backoff; anything else is retried
up to max_retries and then rejected with RetriesExhaustedError.

Limiters are constructed explicitly (no module-level singleton) so tests can
run isolated, differently configured instances side by side.
"""
import asyncio
import itertools
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Deque, Dict, Optional, Set

from statline.core.logging import get_logger
from statline.core.metrics import (
    rate_limiter_active_requests,
    rate_limiter_queue_depth,
    source_request_duration_seconds,
    source_requests_total,
)
from statline.services.ingest.cancellation import CancellationToken
from statline.services.ingest.errors import (
    QueueClearedError,
    RetriesExhaustedError,
    RunCancelledError,
    is_retryable,
)

logger = get_logger(__name__)

Operation = Callable[[], Awaitable[Any]]
SleepFn = Callable[[float], Awaitable[None]]

# How often a request waiting for a concurrency slot re-checks cancellation
SLOT_POLL_SECONDS = 0.1

DEFAULT_MAX_RETRIES = 3


@dataclass(frozen=True)
class RateLimitConfig:
    """Limits for one source, fixed at construction."""
    requests_per_second: float
    max_concurrent: int
    base_backoff_ms: int
    max_backoff_ms: int
    max_retries: int = DEFAULT_MAX_RETRIES

    def __post_init__(self):
        if self.requests_per_second <= 0:
            raise ValueError("requests_per_second must be positive")
        if self.max_concurrent < 1:
            raise ValueError("max_concurrent must be at least 1")
        if self.max_retries < 0:
            raise ValueError("max_retries cannot be negative")

    @property
    def min_interval_ms(self) -> float:
        return 1000.0 / self.requests_per_second


@dataclass
class QueuedRequest:
    """A caller's operation waiting in exactly one limiter's queue."""
    id: int
    operation: Operation
    future: asyncio.Future
    retries: int = 0
    queued_at: float = field(default_factory=time.monotonic)
    cancel_token: Optional[CancellationToken] = None


@dataclass
class RateLimiterStats:
    """Observability snapshot; not used for scheduling decisions."""
    source: str
    total_requests: int = 0
    successful_requests: int = 0
    failed_requests: int = 0
    queued_requests: int = 0
    active_requests: int = 0
    avg_response_time_ms: float = 0.0
    total_retries: int = 0
    consecutive_failures: int = 0


class SourceRateLimiter:
    """
    Serializes and paces outbound calls for one source.

    Only one processing loop drains the queues at a time (guarded by
    ``_processing``); limiters for different sources share no state.
    """

    def __init__(
        self,
        source: str,
        config: RateLimitConfig,
        sleep: Optional[SleepFn] = None,
        clock: Optional[Callable[[], float]] = None,
    ):
        """
        Args:
            source: Source name used in logs, metrics and errors
            config: Pacing, concurrency and backoff limits
            sleep: Override for the pacing/backoff wait (tests inject a fake)
            clock: Monotonic clock in seconds (defaults to time.monotonic)
        """
        self.source = source
        self.config = config
        self._sleep = sleep
        self._clock = clock or time.monotonic

        self._retry_queue: Deque[QueuedRequest] = deque()
        self._fresh_queue: Deque[QueuedRequest] = deque()
        self._processing = False
        self._active = 0
        self._slot_freed = asyncio.Event()
        self._last_dispatch: Optional[float] = None
        self._consecutive_failures = 0
        self._ids = itertools.count(1)
        self._tasks: Set[asyncio.Task] = set()

        self._total_requests = 0
        self._successful_requests = 0
        self._failed_requests = 0
        self._total_retries = 0
        self._avg_response_time_ms = 0.0

    # =========================================================================
    # Public API
    # =========================================================================

    async def execute(self, operation: Operation, cancel_token: Optional[CancellationToken] = None) -> Any:
        """
        Queue an operation and wait for its result.

        Args:
            operation: Zero-argument coroutine function performing one call
            cancel_token: Optional run cancellation signal honoured by every wait

        Returns:
            Whatever the operation returns

        Raises:
            RetriesExhaustedError: Retryable failures exceeded max_retries
            PermanentSourceError: The operation failed permanently
            RunCancelledError: The run was cancelled before dispatch
            QueueClearedError: clear_queue() dropped the request
        """
        if cancel_token is not None:
            cancel_token.raise_if_cancelled()

        loop = asyncio.get_running_loop()
        request = QueuedRequest(
            id=next(self._ids),
            operation=operation,
            future=loop.create_future(),
            queued_at=self._clock(),
            cancel_token=cancel_token,
        )
        self._fresh_queue.append(request)
        self._total_requests += 1
        self._update_gauges()
        self._ensure_processing()

        return await request.future

    def backoff_delay_ms(self, consecutive_failures: Optional[int] = None) -> float:
        """
        Backoff applied before the next dispatch.

        Args:
            consecutive_failures: Failure count to evaluate (defaults to current)

        Returns:
            Delay in milliseconds, 0 when the source is healthy
        """
        k = self._consecutive_failures if consecutive_failures is None else consecutive_failures
        if k <= 0:
            return 0.0
        return float(min(self.config.base_backoff_ms * 2 ** (k - 1), self.config.max_backoff_ms))

    @property
    def consecutive_failures(self) -> int:
        return self._consecutive_failures

    @property
    def queue_depth(self) -> int:
        return len(self._retry_queue) + len(self._fresh_queue)

    def get_stats(self) -> RateLimiterStats:
        return RateLimiterStats(
            source=self.source,
            total_requests=self._total_requests,
            successful_requests=self._successful_requests,
            failed_requests=self._failed_requests,
            queued_requests=self.queue_depth,
            active_requests=self._active,
            avg_response_time_ms=round(self._avg_response_time_ms, 2),
            total_retries=self._total_retries,
            consecutive_failures=self._consecutive_failures,
        )

    def reset_stats(self) -> None:
        """Zero the counters. Queue contents and backoff state are kept."""
        self._total_requests = 0
        self._successful_requests = 0
        self._failed_requests = 0
        self._total_retries = 0
        self._avg_response_time_ms = 0.0

    def clear_queue(self) -> int:
        """
        Reject every request that has not been dispatched yet.

        Returns:
            Number of requests dropped
        """
        dropped = 0
        for queue in (self._retry_queue, self._fresh_queue):
            while queue:
                request = queue.popleft()
                if not request.future.done():
                    request.future.set_exception(QueueClearedError("Queue cleared", self.source))
                    dropped += 1
        self._update_gauges()
        if dropped:
            logger.warning(f"Cleared {dropped} queued {self.source} requests")
        return dropped

    # =========================================================================
    # Processing loop
    # =========================================================================

    def _ensure_processing(self) -> None:
        if self._processing:
            return
        self._processing = True
        task = asyncio.create_task(self._process_queue())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def _next_request(self) -> Optional[QueuedRequest]:
        if self._retry_queue:
            return self._retry_queue.popleft()
        if self._fresh_queue:
            return self._fresh_queue.popleft()
        return None

    def _peek_request(self) -> Optional[QueuedRequest]:
        if self._retry_queue:
            return self._retry_queue[0]
        if self._fresh_queue:
            return self._fresh_queue[0]
        return None

    def _drop_abandoned_head(self) -> None:
        """Reject queued requests at the head whose run was cancelled or caller gave up."""
        while True:
            head = self._peek_request()
            if head is None:
                return
            if head.future.done():
                self._next_request()
                continue
            token = head.cancel_token
            if token is not None and token.cancelled:
                self._next_request()
                head.future.set_exception(RunCancelledError(token.reason or "cancelled"))
                self._failed_requests += 1
                continue
            return

    async def _process_queue(self) -> None:
        try:
            while True:
                self._drop_abandoned_head()
                if self.queue_depth == 0:
                    return

                # (a) concurrency cap
                if self._active >= self.config.max_concurrent:
                    self._slot_freed.clear()
                    try:
                        await asyncio.wait_for(self._slot_freed.wait(), timeout=SLOT_POLL_SECONDS)
                    except asyncio.TimeoutError:
                        pass
                    continue

                request = self._next_request()
                self._update_gauges()

                # (b) spacing and (c) backoff
                try:
                    await self._wait_before_dispatch(request.cancel_token)
                except RunCancelledError as e:
                    if not request.future.done():
                        request.future.set_exception(e)
                        self._failed_requests += 1
                    continue

                if request.future.done():
                    continue

                self._dispatch(request)
        finally:
            self._processing = False
            self._update_gauges()

    async def _wait_before_dispatch(self, token: Optional[CancellationToken]) -> None:
        if self._last_dispatch is not None:
            elapsed_ms = (self._clock() - self._last_dispatch) * 1000
            remaining_ms = self.config.min_interval_ms - elapsed_ms
            if remaining_ms > 0:
                await self._pause(remaining_ms / 1000, token)

        backoff_ms = self.backoff_delay_ms()
        if backoff_ms > 0:
            logger.info(
                f"Backing off {self.source} for {backoff_ms:.0f}ms "
                f"after {self._consecutive_failures} consecutive failures"
            )
            await self._pause(backoff_ms / 1000, token)

        if token is not None:
            token.raise_if_cancelled()

    async def _pause(self, seconds: float, token: Optional[CancellationToken]) -> None:
        if self._sleep is not None:
            await self._sleep(seconds)
            if token is not None:
                token.raise_if_cancelled()
        elif token is not None:
            await token.sleep(seconds)
        else:
            await asyncio.sleep(seconds)

    def _dispatch(self, request: QueuedRequest) -> None:
        self._active += 1
        self._last_dispatch = self._clock()
        self._update_gauges()
        task = asyncio.create_task(self._run(request))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _run(self, request: QueuedRequest) -> None:
        started = self._clock()
        error: Optional[Exception] = None
        result: Any = None
        try:
            result = await request.operation()
        except asyncio.CancelledError:
            self._release_slot()
            if not request.future.done():
                request.future.cancel()
            raise
        except Exception as e:
            error = e

        latency_ms = (self._clock() - started) * 1000
        source_request_duration_seconds.labels(source=self.source).observe(latency_ms / 1000)

        if error is None:
            self._on_success(request, result, latency_ms)
        else:
            self._on_failure(request, error)

        self._release_slot()
        if self.queue_depth:
            self._ensure_processing()

    def _release_slot(self) -> None:
        self._active -= 1
        self._slot_freed.set()
        self._update_gauges()

    def _on_success(self, request: QueuedRequest, result: Any, latency_ms: float) -> None:
        self._consecutive_failures = 0
        self._successful_requests += 1
        self._avg_response_time_ms += (latency_ms - self._avg_response_time_ms) / self._successful_requests
        source_requests_total.labels(source=self.source, outcome="success").inc()

        if not request.future.done():
            request.future.set_result(result)

    def _on_failure(self, request: QueuedRequest, error: Exception) -> None:
        if not is_retryable(error):
            self._failed_requests += 1
            source_requests_total.labels(source=self.source, outcome="permanent").inc()
            logger.warning(f"{self.source} request {request.id} failed permanently: {error}")
            if not request.future.done():
                request.future.set_exception(error)
            return

        self._consecutive_failures += 1

        if request.retries < self.config.max_retries and not request.future.done():
            request.retries += 1
            self._total_retries += 1
            self._retry_queue.appendleft(request)
            self._update_gauges()
            source_requests_total.labels(source=self.source, outcome="retry").inc()
            logger.warning(
                f"{self.source} request {request.id} failed "
                f"(retry {request.retries}/{self.config.max_retries}): {error}"
            )
            return

        self._failed_requests += 1
        source_requests_total.labels(source=self.source, outcome="failure").inc()
        logger.error(f"{self.source} request {request.id} exhausted retries: {error}")
        if not request.future.done():
            exhausted = RetriesExhaustedError(self.source, request.retries + 1, error)
            exhausted.__cause__ = error
            request.future.set_exception(exhausted)

    def _update_gauges(self) -> None:
        rate_limiter_queue_depth.labels(source=self.source).set(self.queue_depth)
        rate_limiter_active_requests.labels(source=self.source).set(self._active)


class RateLimiterService:
    """
    One independent SourceRateLimiter per source.

    Construct once per ingest process (or per test) and inject into adapters.
    """

    def __init__(self, configs: Dict[str, RateLimitConfig], **limiter_kwargs):
        """
        Args:
            configs: Mapping of source name to its limits
            **limiter_kwargs: Forwarded to every SourceRateLimiter (sleep, clock)
        """
        self._limiters: Dict[str, SourceRateLimiter] = {
            source: SourceRateLimiter(source, config, **limiter_kwargs)
            for source, config in configs.items()
        }

    @classmethod
    def from_settings(cls, settings=None, sources=("espn", "pfr"), **limiter_kwargs) -> "RateLimiterService":
        """Build limiters for the given sources from Settings."""
        if settings is None:
            from statline.core.config import settings
        return cls({source: settings.rate_limit_config(source) for source in sources}, **limiter_kwargs)

    @property
    def sources(self) -> list[str]:
        return list(self._limiters)

    def limiter(self, source: str) -> SourceRateLimiter:
        try:
            return self._limiters[source]
        except KeyError:
            raise ValueError(f"No rate limiter configured for source '{source}'") from None

    async def execute(
        self,
        source: str,
        operation: Operation,
        cancel_token: Optional[CancellationToken] = None,
    ) -> Any:
        return await self.limiter(source).execute(operation, cancel_token=cancel_token)

    def get_stats(self, source: str) -> RateLimiterStats:
        return self.limiter(source).get_stats()

    def get_all_stats(self) -> Dict[str, RateLimiterStats]:
        return {source: limiter.get_stats() for source, limiter in self._limiters.items()}

    def reset_stats(self, source: Optional[str] = None) -> None:
        targets = [self.limiter(source)] if source else self._limiters.values()
        for limiter in targets:
            limiter.reset_stats()

    def clear_queue(self, source: Optional[str] = None) -> int:
        targets = [self.limiter(source)] if source else self._limiters.values()
        return sum(limiter.clear_queue() for limiter in targets)
