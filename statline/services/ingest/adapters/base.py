"""
Source adapter contract and shared HTTP plumbing.

Every source is normalized into the same operations, each taking
FetchOptions and returning a list of source-normalized records:

    fetch_players, fetch_player_profiles          (all sports)
    fetch_season_records, fetch_weekly_stats,
    fetch_games                                   (NflSourceAdapter only)

plus health_check() -> HealthCheckResult.

Sport is a fixed tag on the adapter class. Sport-specific operations live
only on the matching variant, so callers resolve the variant once (see
create_nfl_adapter) instead of probing adapters at runtime.

Contract rules:
- a malformed record is logged and skipped, never aborts the batch
- a total source outage propagates to the caller
- adapters never write to the database except through ResponseCache
- every network call checks ResponseCache first and is scheduled through
  the source's rate limiter on a miss

Usage:
    limiters = RateLimiterService.from_settings()
    cache = ResponseCache(db)
    adapter = EspnAdapter(limiters, cache=cache)
    players = await adapter.fetch_players(FetchOptions(season=2024))
"""
import asyncio
import time
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, TypeVar, Union

import httpx

from statline.core.logging import get_logger
from statline.models.schemas import (
    DataSource,
    FetchOptions,
    HealthCheckResult,
    RawGame,
    RawPlayer,
    RawPlayerProfile,
    RawSeasonRecord,
    RawWeeklyStat,
    Sport,
)
from statline.services.ingest.cache import ContentCategory, ResponseCache, ttl_for
from statline.services.ingest.cancellation import CancellationToken
from statline.services.ingest.errors import (
    PermanentSourceError,
    RunCancelledError,
    SourceError,
    SourceUnavailableError,
)
from statline.services.ingest.rate_limiter import RateLimiterService, SourceRateLimiter
from statline.utils.season import current_nfl_season, expected_weeks, season_week, utcnow

logger = get_logger(__name__)

T = TypeVar("T")
R = TypeVar("R")

# Statuses worth retrying; every other 4xx is permanent
RETRYABLE_STATUS_CODES = {408, 429}


class SourceAdapter(ABC):
    """
    Base contract shared by every sport.

    Attributes:
        name: Registry name, recorded in run logs (e.g. "nfl-espn")
        version: Adapter implementation version
        description: Human readable description of the source
        sport: Sport tag of this variant
        source: Provider behind the adapter
    """

    name: str = ""
    version: str = "1.0.0"
    description: str = ""
    sport: Sport
    source: DataSource

    @abstractmethod
    async def fetch_players(self, options: FetchOptions) -> List[RawPlayer]:
        """Core player identities visible for the season."""

    @abstractmethod
    async def fetch_player_profiles(self, options: FetchOptions) -> List[RawPlayerProfile]:
        """Position and bio metadata for the season's players."""

    @abstractmethod
    async def health_check(self) -> HealthCheckResult:
        """Whether the source is reachable. Never raises."""

    async def close(self) -> None:
        """Release network resources."""


class NflSourceAdapter(SourceAdapter):
    """NFL variant: adds season, weekly and game operations."""

    sport = Sport.NFL

    @abstractmethod
    async def fetch_season_records(self, options: FetchOptions) -> List[RawSeasonRecord]:
        """Team and jersey per player for the season."""

    @abstractmethod
    async def fetch_weekly_stats(self, options: FetchOptions) -> List[RawWeeklyStat]:
        """Box score lines for one week, or every played week when options.week is None."""

    @abstractmethod
    async def fetch_games(self, options: FetchOptions) -> List[RawGame]:
        """Scheduled, live and completed games."""


class HttpNflAdapter(NflSourceAdapter):
    """
    NFL adapter backed by an HTTP source.

    Provides cache-first fetching, rate-limited requests with failure
    classification, cancellation checks and the NFL calendar.
    """

    ACCEPT = "application/json"

    def __init__(
        self,
        rate_limiter: Union[RateLimiterService, SourceRateLimiter],
        cache: Optional[ResponseCache] = None,
        client: Optional[httpx.AsyncClient] = None,
        cancel_token: Optional[CancellationToken] = None,
        use_stale_on_error: Optional[bool] = None,
        clock: Optional[Callable[[], datetime]] = None,
        settings=None,
    ):
        """
        Args:
            rate_limiter: Limiter service (or this source's limiter)
            cache: Response cache; None disables caching
            client: Shared HTTP client; created lazily when omitted
            cancel_token: Run cancellation signal checked before every call
            use_stale_on_error: Serve expired cache entries when the live fetch fails
            clock: Current naive UTC time, drives season/week calculations
            settings: Settings instance (defaults to the global settings)
        """
        if settings is None:
            from statline.core.config import settings
        self.settings = settings

        if isinstance(rate_limiter, RateLimiterService):
            rate_limiter = rate_limiter.limiter(self.source.value)
        self.rate_limiter = rate_limiter
        self.cache = cache
        self.cancel_token = cancel_token
        self.use_stale_on_error = (
            settings.USE_STALE_CACHE_ON_ERROR if use_stale_on_error is None else use_stale_on_error
        )
        self._clock = clock or utcnow
        self._client = client
        self._owns_client = client is None

    # =========================================================================
    # HTTP
    # =========================================================================

    def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.settings.HTTP_TIMEOUT_SECONDS),
                limits=httpx.Limits(max_keepalive_connections=5, max_connections=10),
                headers=self._get_headers(),
                follow_redirects=True,
            )
        return self._client

    def _get_headers(self) -> Dict[str, str]:
        """Identify ourselves honestly to every source."""
        return {
            "User-Agent": self.settings.USER_AGENT,
            "Accept": self.ACCEPT,
        }

    async def close(self) -> None:
        """Close the HTTP client if this adapter created it."""
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def _request(self, url: str, params: Optional[Dict[str, Any]] = None) -> httpx.Response:
        """
        GET a URL through the source's rate limiter.

        Raises:
            SourceUnavailableError: Network failure, timeout, 408, 429 or 5xx
                (after the limiter's retries this surfaces as RetriesExhaustedError)
            PermanentSourceError: Any other non-2xx status
            RunCancelledError: The run was cancelled before dispatch
        """
        self._check_cancelled()
        source = self.source.value

        async def operation() -> httpx.Response:
            try:
                response = await self._get_client().get(url, params=params, headers=self._get_headers())
            except httpx.TimeoutException as e:
                raise SourceUnavailableError(f"{source} timeout fetching {url}: {e}", source) from e
            except httpx.TransportError as e:
                raise SourceUnavailableError(f"{source} network error fetching {url}: {e}", source) from e

            status = response.status_code
            if status >= 500 or status in RETRYABLE_STATUS_CODES:
                raise SourceUnavailableError(
                    f"{source} returned {status} for {url}", source, status_code=status
                )
            if status >= 400:
                raise PermanentSourceError(
                    f"{source} returned {status} for {url}", source, status_code=status
                )
            return response

        return await self.rate_limiter.execute(operation, cancel_token=self.cancel_token)

    async def _request_json(self, url: str, params: Optional[Dict[str, Any]] = None) -> Any:
        response = await self._request(url, params)
        try:
            return response.json()
        except ValueError as e:
            raise PermanentSourceError(f"{self.source.value} returned unparseable JSON for {url}", self.source.value) from e

    async def _request_text(self, url: str, params: Optional[Dict[str, Any]] = None) -> str:
        response = await self._request(url, params)
        return response.text

    def _check_cancelled(self) -> None:
        if self.cancel_token is not None:
            self.cancel_token.raise_if_cancelled()

    # =========================================================================
    # Cache-first fetching
    # =========================================================================

    async def _fetch_cached(
        self,
        endpoint: str,
        params: Dict[str, Any],
        fetch: Callable[[], Awaitable[Any]],
        ttl_ms: Union[int, Callable[[Any], int]],
        season: Optional[int] = None,
        week: Optional[int] = None,
        game_id: Optional[str] = None,
    ) -> Any:
        """
        Return a payload from cache, or fetch and store it.

        Args:
            endpoint: Logical endpoint name for the cache key
            params: Request params for the cache key
            fetch: Coroutine function performing the live request
            ttl_ms: TTL, or a function choosing the TTL from the fetched payload
            season, week, game_id: Cache scoping columns

        Returns:
            The cached or freshly fetched payload

        Raises:
            Whatever fetch raises, unless a stale entry can be served instead
        """
        source = self.source.value
        stale = None

        if self.cache is not None:
            cached = await self.cache.get(source, endpoint, params)
            if cached.hit:
                return cached.data
            if cached.expired:
                stale = cached.data

        try:
            payload = await fetch()
        except SourceError as e:
            if stale is not None and self.use_stale_on_error:
                logger.warning(f"Serving stale {source}/{endpoint} cache entry after fetch failure: {e}")
                return stale
            raise

        if self.cache is not None:
            ttl = ttl_ms(payload) if callable(ttl_ms) else ttl_ms
            stored = await self.cache.set(
                source, endpoint, params, payload, ttl, season=season, week=week, game_id=game_id
            )
            if not stored:
                logger.warning(f"Could not cache {source}/{endpoint}; continuing without cache")

        return payload

    def _ttl(self, category: ContentCategory, historical: bool = False) -> int:
        return ttl_for(category, historical=historical, settings=self.settings)

    # =========================================================================
    # Batch helpers
    # =========================================================================

    async def _collect(
        self,
        items: Iterable[T],
        fetch_one: Callable[[T], Awaitable[R]],
        what: str,
    ) -> List[R]:
        """
        Fetch one payload per item, skipping items that fail.

        Requests are issued together and paced by the rate limiter. A failed
        item is logged and skipped. If every item failed and at least one
        failure was a source outage, the outage propagates.

        Raises:
            RunCancelledError: If the run was cancelled
            SourceError: If the source was unavailable for every item
        """
        items = list(items)
        if not items:
            return []

        outcomes = await asyncio.gather(*(fetch_one(item) for item in items), return_exceptions=True)

        results: List[R] = []
        failures: List[BaseException] = []
        for item, outcome in zip(items, outcomes):
            if isinstance(outcome, RunCancelledError):
                raise outcome
            if isinstance(outcome, BaseException):
                if not isinstance(outcome, Exception):
                    raise outcome
                failures.append(outcome)
                logger.warning(f"Failed to fetch {self.source.value} {what} {item}: {outcome}")
                continue
            results.append(outcome)

        if failures and not results:
            outages = [f for f in failures if not isinstance(f, PermanentSourceError)]
            if outages:
                logger.error(f"{self.source.value} unavailable for all {len(items)} {what} requests")
                raise outages[0]

        return results

    # =========================================================================
    # Calendar
    # =========================================================================

    def current_season(self) -> int:
        if self.settings.CURRENT_SEASON_OVERRIDE is not None:
            return self.settings.CURRENT_SEASON_OVERRIDE
        return current_nfl_season(self._clock())

    def current_week(self) -> int:
        return season_week(self.current_season(), self._clock())

    def weeks_to_fetch(self, options: FetchOptions) -> List[int]:
        """The requested week, or every week played so far in the season."""
        if options.week is not None:
            return [options.week]
        return expected_weeks(options.season, self.current_season(), self.current_week())

    def is_historical(self, season: int) -> bool:
        return season < self.current_season()

    # =========================================================================
    # Health
    # =========================================================================

    async def _probe(self, url: str, label: str) -> HealthCheckResult:
        """Health check a URL, bypassing the cache."""
        start = time.monotonic()
        try:
            await self._request(url)
        except Exception as e:
            return HealthCheckResult(
                healthy=False,
                message=f"{label} health check failed: {e}",
                latency_ms=int((time.monotonic() - start) * 1000),
            )
        return HealthCheckResult(
            healthy=True,
            message=f"{label} is accessible",
            latency_ms=int((time.monotonic() - start) * 1000),
        )


def to_int(value: Any) -> Optional[int]:
    """
    Parse a stat cell into an int.

    Returns None for blanks and placeholders ("", "-", "--").

    Examples:
        >>> to_int("1,024")
        1024
        >>> to_int("--") is None
        True
    """
    if value is None:
        return None
    if isinstance(value, int):
        return value
    cleaned = str(value).strip().replace(",", "")
    if cleaned in {"", "-", "--"}:
        return None
    try:
        return int(float(cleaned))
    except ValueError:
        return None
