"""
Composite NFL adapter combining ESPN and PFR behind the same contract.

Source-of-truth rules (recomputed on every call):
- season >= current - 2: ESPN primary, PFR fallback
- older seasons: PFR primary, ESPN fallback

Execution modes:
- plain: primary, then the fallback if the primary raises
- merge (players, profiles, season records): primary plus a best-effort
  fallback call; fallback records fill gaps, never overwrite primary values
- gap-fill (weekly stats): weeks missing from the primary result are
  fetched one week at a time from the fallback

Every failure the composite recovers from (or re-raises) is recorded in
`failures` so the caller can report partial degradation.
"""
import asyncio
import time
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Tuple, TypeVar

from pydantic import BaseModel

from statline.core.logging import get_logger
from statline.core.metrics import composite_fallbacks_total
from statline.models.schemas import (
    DataSource,
    FetchOptions,
    HealthCheckResult,
    RawGame,
    RawPlayer,
    RawPlayerProfile,
    RawSeasonRecord,
    RawWeeklyStat,
    SourceFailure,
    SourceSelection,
)
from statline.services.ingest.adapters.base import NflSourceAdapter
from statline.services.ingest.errors import RunCancelledError, is_retryable
from statline.services.ingest.utils.name_normalizer import normalize
from statline.utils.season import current_nfl_season, expected_weeks, season_week, utcnow

logger = get_logger(__name__)

M = TypeVar("M", bound=BaseModel)

# Seasons this far behind the current one still prefer the live API
RECENT_SEASON_WINDOW = 2


# =============================================================================
# Merge helpers
# =============================================================================

def _is_empty(value: Any) -> bool:
    return value is None or value == "" or value == {} or value == []


def fill_missing_fields(primary: M, secondary: M) -> M:
    """
    Copy of primary with its empty fields taken from secondary.

    Dict fields (profile metadata) are filled key by key. Populated
    primary values are never overwritten.
    """
    updates: Dict[str, Any] = {}
    for field in type(primary).model_fields:
        ours = getattr(primary, field)
        theirs = getattr(secondary, field)
        if _is_empty(theirs):
            continue
        if isinstance(ours, dict) and isinstance(theirs, dict):
            merged = dict(ours)
            for key, value in theirs.items():
                if _is_empty(merged.get(key)):
                    merged[key] = value
            if merged != ours:
                updates[field] = merged
        elif _is_empty(ours):
            updates[field] = theirs
    return primary.model_copy(update=updates) if updates else primary


def merge_records(
    primary: List[M],
    secondary: List[M],
    key: Callable[[M], Optional[Any]],
) -> List[M]:
    """
    Merge secondary records into primary by an equivalence key.

    A secondary record whose key matches a primary record only fills that
    record's empty fields; any other secondary record is appended. Records
    with no key are never considered equivalent.
    """
    merged: List[M] = list(primary)
    index: Dict[Any, int] = {}
    for position, record in enumerate(merged):
        record_key = key(record)
        if record_key is not None and record_key not in index:
            index[record_key] = position

    for record in secondary:
        record_key = key(record)
        if record_key is not None and record_key in index:
            position = index[record_key]
            merged[position] = fill_missing_fields(merged[position], record)
        else:
            merged.append(record)
            if record_key is not None:
                index[record_key] = len(merged) - 1

    return merged


def _name_key(name: Optional[str]) -> Optional[str]:
    normalized = normalize(name)
    return normalized or None


def player_key(player: RawPlayer) -> Optional[str]:
    return _name_key(player.name)


def profile_key(profile: RawPlayerProfile) -> Optional[str]:
    return _name_key(profile.name) or f"id:{profile.player_external_id}"


def season_key(record: RawSeasonRecord) -> Optional[Tuple[str, int]]:
    identity = _name_key(record.name) or f"id:{record.player_external_id}"
    return identity, record.season


def merge_players(primary: List[RawPlayer], secondary: List[RawPlayer]) -> List[RawPlayer]:
    return merge_records(primary, secondary, player_key)


def merge_profiles(primary: List[RawPlayerProfile], secondary: List[RawPlayerProfile]) -> List[RawPlayerProfile]:
    return merge_records(primary, secondary, profile_key)


def merge_seasons(primary: List[RawSeasonRecord], secondary: List[RawSeasonRecord]) -> List[RawSeasonRecord]:
    return merge_records(primary, secondary, season_key)


# =============================================================================
# Composite adapter
# =============================================================================

class CompositeAdapter(NflSourceAdapter):
    """
    NFL adapter orchestrating a live API source and an archival source.

    Usage:
        composite = CompositeAdapter(espn=EspnAdapter(limiters, cache), pfr=PfrAdapter(limiters, cache))
        stats = await composite.fetch_weekly_stats(FetchOptions(season=2024))
        for failure in composite.failures:
            logger.warning(failure.message)
    """

    name = "nfl-composite"
    version = "1.0.0"
    description = "Composite adapter combining ESPN and PFR data sources"
    source = DataSource.ESPN  # primary for current seasons

    def __init__(
        self,
        espn: NflSourceAdapter,
        pfr: NflSourceAdapter,
        enable_fallback: Optional[bool] = None,
        enable_merge: Optional[bool] = None,
        clock: Optional[Callable[[], datetime]] = None,
        settings=None,
    ):
        """
        Args:
            espn: Live, low-latency source (A)
            pfr: Archival scrape source (B)
            enable_fallback: Fall back / gap-fill from the other source (default from settings)
            enable_merge: Merge players, profiles and season records (default from settings)
            clock: Current naive UTC time, drives source selection and gap-fill
            settings: Settings instance (defaults to the global settings)
        """
        if settings is None:
            from statline.core.config import settings
        self.settings = settings
        self.espn = espn
        self.pfr = pfr
        self.enable_fallback = settings.COMPOSITE_ENABLE_FALLBACK if enable_fallback is None else enable_fallback
        self.enable_merge = settings.COMPOSITE_ENABLE_MERGE if enable_merge is None else enable_merge
        self._clock = clock or utcnow
        self._failures: List[SourceFailure] = []

    @property
    def adapters(self) -> Dict[DataSource, NflSourceAdapter]:
        return {DataSource.ESPN: self.espn, DataSource.PFR: self.pfr}

    @property
    def failures(self) -> List[SourceFailure]:
        """Failures recorded since construction (or the last clear_failures())."""
        return list(self._failures)

    def clear_failures(self) -> None:
        self._failures = []

    # =========================================================================
    # Source selection
    # =========================================================================

    def current_season(self) -> int:
        if self.settings.CURRENT_SEASON_OVERRIDE is not None:
            return self.settings.CURRENT_SEASON_OVERRIDE
        return current_nfl_season(self._clock())

    def current_week(self) -> int:
        return season_week(self.current_season(), self._clock())

    def select_source(self, season: int) -> SourceSelection:
        """Primary and fallback source for a season."""
        current = self.current_season()

        if season >= current:
            return SourceSelection(
                primary=DataSource.ESPN,
                fallback=DataSource.PFR,
                reason="current season - ESPN preferred",
            )
        if season >= current - RECENT_SEASON_WINDOW:
            return SourceSelection(
                primary=DataSource.ESPN,
                fallback=DataSource.PFR,
                reason="recent season - ESPN preferred",
            )
        return SourceSelection(
            primary=DataSource.PFR,
            fallback=DataSource.ESPN,
            reason="historical season - PFR preferred",
        )

    # =========================================================================
    # Contract
    # =========================================================================

    async def fetch_players(self, options: FetchOptions) -> List[RawPlayer]:
        records, _ = await self._fetch("players", options, merge=merge_players)
        return records

    async def fetch_player_profiles(self, options: FetchOptions) -> List[RawPlayerProfile]:
        records, _ = await self._fetch("player_profiles", options, merge=merge_profiles)
        return records

    async def fetch_season_records(self, options: FetchOptions) -> List[RawSeasonRecord]:
        records, _ = await self._fetch("season_records", options, merge=merge_seasons)
        return records

    async def fetch_games(self, options: FetchOptions) -> List[RawGame]:
        records, _ = await self._fetch("games", options)
        return records

    async def fetch_weekly_stats(self, options: FetchOptions) -> List[RawWeeklyStat]:
        selection = self.select_source(options.season)
        stats, served_by = await self._fetch("weekly_stats", options, selection=selection)

        if (
            options.week is None
            and self.enable_fallback
            and selection.fallback is not None
            and served_by == selection.primary
        ):
            stats = await self._fill_missing_weeks(stats, options, selection.fallback)
        return stats

    async def health_check(self) -> HealthCheckResult:
        """Healthy when at least one source is; the message lists every source."""
        start = time.monotonic()
        checks = await asyncio.gather(
            *(self._safe_health_check(source, adapter) for source, adapter in self.adapters.items())
        )

        messages = [
            f"{source.value}: {'OK' if result.healthy else result.message}"
            for source, result in checks
        ]
        return HealthCheckResult(
            healthy=any(result.healthy for _, result in checks),
            message="; ".join(messages),
            latency_ms=int((time.monotonic() - start) * 1000),
        )

    async def close(self) -> None:
        for adapter in self.adapters.values():
            await adapter.close()

    # =========================================================================
    # Configuration
    # =========================================================================

    def add_pfr_slug(self, name: str, slug: str) -> None:
        """Register an additional player with the archival source."""
        self.pfr.add_player_slug(name, slug)

    # =========================================================================
    # Execution
    # =========================================================================

    async def _fetch(
        self,
        operation: str,
        options: FetchOptions,
        merge: Optional[Callable[[List[Any], List[Any]], List[Any]]] = None,
        selection: Optional[SourceSelection] = None,
    ) -> Tuple[List[Any], DataSource]:
        """
        Run one operation under the selection policy.

        Returns:
            (records, source that served the primary result)
        """
        selection = selection or self.select_source(options.season)
        logger.info(
            f"Fetching {operation} for {options.season} week {options.week or 'all'} "
            f"from {selection.primary.value} ({selection.reason})"
        )

        try:
            records = await self._call(selection.primary, operation, options)
        except RunCancelledError:
            raise
        except Exception as e:
            self._record_failure(selection.primary, operation, e)
            logger.error(
                f"Primary source {selection.primary.value} failed for {operation} "
                f"({'retryable' if is_retryable(e) else 'permanent'}): {e}"
            )
            if not self.enable_fallback or selection.fallback is None:
                raise

            logger.info(f"Falling back to {selection.fallback.value} for {operation}")
            composite_fallbacks_total.labels(operation=operation, primary=selection.primary.value).inc()
            try:
                return await self._call(selection.fallback, operation, options), selection.fallback
            except RunCancelledError:
                raise
            except Exception as fallback_error:
                self._record_failure(selection.fallback, operation, fallback_error)
                logger.error(f"Fallback source {selection.fallback.value} also failed for {operation}: {fallback_error}")
                raise

        if merge is not None and self.enable_merge and selection.fallback is not None:
            try:
                secondary = await self._call(selection.fallback, operation, options)
            except RunCancelledError:
                raise
            except Exception as e:
                self._record_failure(selection.fallback, operation, e)
                logger.warning(f"Merge source {selection.fallback.value} failed for {operation}, using primary only: {e}")
                return records, selection.primary

            merged = merge(records, secondary)
            logger.info(
                f"Merged {operation}: {len(records)} from {selection.primary.value}, "
                f"{len(merged) - len(records)} added from {selection.fallback.value}"
            )
            return merged, selection.primary

        return records, selection.primary

    async def _fill_missing_weeks(
        self,
        stats: List[RawWeeklyStat],
        options: FetchOptions,
        fallback: DataSource,
    ) -> List[RawWeeklyStat]:
        """Fetch weeks absent from the primary result, one week at a time."""
        present = {stat.week for stat in stats}
        expected = expected_weeks(options.season, self.current_season(), self.current_week())
        missing = [week for week in expected if week not in present]
        if not missing:
            return stats

        logger.info(f"Filling {len(missing)} missing weeks {missing} from {fallback.value}")
        filled = list(stats)
        for week in missing:
            try:
                extra = await self._call(fallback, "weekly_stats", options.for_week(week))
            except RunCancelledError:
                raise
            except Exception as e:
                self._record_failure(fallback, "weekly_stats", e)
                logger.warning(f"Failed to fill week {week} from {fallback.value}: {e}")
                continue
            filled.extend(extra)
        return filled

    async def _call(self, source: DataSource, operation: str, options: FetchOptions) -> List[Any]:
        adapter = self.adapters[source]
        return await getattr(adapter, f"fetch_{operation}")(options)

    async def _safe_health_check(
        self, source: DataSource, adapter: NflSourceAdapter
    ) -> Tuple[DataSource, HealthCheckResult]:
        try:
            return source, await adapter.health_check()
        except Exception as e:
            return source, HealthCheckResult(healthy=False, message=f"{source.value} check failed: {e}")

    def _record_failure(self, source: DataSource, operation: str, error: BaseException) -> None:
        self._failures.append(SourceFailure(
            source=source,
            operation=operation,
            message=str(error),
            error_type=type(error).__name__,
            recorded_at=self._clock(),
        ))
