"""
TTL cache for raw source responses, backed by the api_response_cache table.

Entries are keyed by (source, endpoint, params_hash). The hash is a SHA-256
of the params serialized with sorted keys, so {"a": 1, "b": 2} and
{"b": 2, "a": 1} address the same entry.

Failure policy:
- read errors are treated as a miss (fail open, never raise)
- write errors are reported as False, never raised

A cache outage therefore degrades to "always fetch fresh" instead of
failing the run. Payloads are opaque JSON; the adapter that wrote an entry
is the only code that parses it.
"""
import hashlib
import json
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from statline.core.logging import get_logger
from statline.core.metrics import response_cache_lookups_total, response_cache_writes_total
from statline.models.models import ApiResponseCache
from statline.models.schemas import CacheGetResult, CacheSourceStats
from statline.utils.season import utcnow

logger = get_logger(__name__)


class ContentCategory(str, Enum):
    """Volatility classes that drive TTL selection, independent of source."""
    COMPLETED = "completed"  # final scores, finished game logs
    IN_PROGRESS = "in_progress"  # live games
    HISTORICAL = "historical"  # explicitly past seasons
    PLAYER_INFO = "player_info"  # bio / profile pages
    SCHEDULE = "schedule"  # scoreboards and listings


def ttl_for(category: ContentCategory, historical: bool = False, settings=None) -> int:
    """
    TTL in milliseconds for a content category.

    Args:
        category: Content volatility class
        historical: True for data from a completed past season; always wins
        settings: Settings instance (defaults to the global settings)

    Returns:
        TTL in milliseconds
    """
    if settings is None:
        from statline.core.config import settings
    if historical:
        category = ContentCategory.HISTORICAL
    return settings.cache_ttl_ms(ContentCategory(category).value)


def hash_params(params: Optional[Dict[str, Any]]) -> str:
    """Deterministic, key-order independent hash of request params."""
    serialized = json.dumps(params or {}, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(serialized.encode("utf-8")).hexdigest()


class ResponseCache:
    """
    Response cache over a SQLAlchemy session.

    Methods are async so cache round-trips are suspension points like the
    network calls they replace; the session itself is synchronous.
    """

    def __init__(self, db: Session, clock: Optional[Callable[[], datetime]] = None):
        """
        Args:
            db: Database session
            clock: Returns the current naive UTC time (tests inject a fake)
        """
        self.db = db
        self._now = clock or utcnow

    async def get(self, source: str, endpoint: str, params: Optional[Dict[str, Any]] = None) -> CacheGetResult:
        """
        Look up a cached response.

        Returns:
            CacheGetResult. A live entry gives hit=True; an expired entry
            gives hit=False, expired=True and the stale payload; a missing
            entry or a backend error gives hit=False.
        """
        params_hash = hash_params(params)

        try:
            row = (
                self.db.query(ApiResponseCache)
                .filter(
                    ApiResponseCache.source == source,
                    ApiResponseCache.endpoint == endpoint,
                    ApiResponseCache.params_hash == params_hash,
                )
                .first()
            )
        except SQLAlchemyError as e:
            logger.warning(f"Cache read failed for {source}/{endpoint}, treating as miss: {e}")
            self._rollback()
            response_cache_lookups_total.labels(source=source, result="error").inc()
            return CacheGetResult(hit=False)

        if row is None:
            response_cache_lookups_total.labels(source=source, result="miss").inc()
            return CacheGetResult(hit=False)

        if row.expires_at <= self._now():
            response_cache_lookups_total.labels(source=source, result="expired").inc()
            return CacheGetResult(
                hit=False,
                expired=True,
                data=row.response_data,
                fetched_at=row.fetched_at,
            )

        logger.debug(f"Cache hit for {source}/{endpoint}")
        response_cache_lookups_total.labels(source=source, result="hit").inc()
        return CacheGetResult(hit=True, data=row.response_data, fetched_at=row.fetched_at)

    async def set(
        self,
        source: str,
        endpoint: str,
        params: Optional[Dict[str, Any]],
        payload: Any,
        ttl_ms: int,
        season: Optional[int] = None,
        week: Optional[int] = None,
        game_id: Optional[str] = None,
    ) -> bool:
        """
        Store a response, replacing any entry with the same key.

        Args:
            source: Source name
            endpoint: Logical endpoint name
            params: Request params (hashed with sorted keys)
            payload: JSON-serializable response body
            ttl_ms: Time to live in milliseconds, must be positive
            season, week, game_id: Scoping columns for targeted invalidation

        Returns:
            True if stored, False if the backend rejected the write

        Raises:
            ValueError: If ttl_ms is not positive
        """
        if ttl_ms <= 0:
            raise ValueError(f"ttl_ms must be positive, got {ttl_ms}")

        try:
            json.dumps(payload)
        except (TypeError, ValueError) as e:
            logger.error(f"Refusing to cache non-JSON payload for {source}/{endpoint}: {e}")
            response_cache_writes_total.labels(source=source, result="error").inc()
            return False

        params_hash = hash_params(params)
        fetched_at = self._now()
        values = {
            "response_data": payload,
            "season": season,
            "week": week,
            "game_id": game_id,
            "fetched_at": fetched_at,
            "expires_at": fetched_at + timedelta(milliseconds=ttl_ms),
        }

        try:
            self._upsert(source, endpoint, params_hash, values)
        except IntegrityError:
            # Another writer inserted the same key first; update their row
            self._rollback()
            try:
                self._upsert(source, endpoint, params_hash, values)
            except SQLAlchemyError as e:
                return self._write_failed(source, endpoint, e)
        except SQLAlchemyError as e:
            return self._write_failed(source, endpoint, e)

        response_cache_writes_total.labels(source=source, result="ok").inc()
        return True

    def _upsert(self, source: str, endpoint: str, params_hash: str, values: Dict[str, Any]) -> None:
        row = (
            self.db.query(ApiResponseCache)
            .filter(
                ApiResponseCache.source == source,
                ApiResponseCache.endpoint == endpoint,
                ApiResponseCache.params_hash == params_hash,
            )
            .first()
        )
        if row is None:
            row = ApiResponseCache(source=source, endpoint=endpoint, params_hash=params_hash, **values)
            self.db.add(row)
        else:
            for key, value in values.items():
                setattr(row, key, value)
        self.db.commit()

    def _write_failed(self, source: str, endpoint: str, error: Exception) -> bool:
        logger.error(f"Cache write failed for {source}/{endpoint}: {error}")
        self._rollback()
        response_cache_writes_total.labels(source=source, result="error").inc()
        return False

    # =========================================================================
    # Invalidation and maintenance
    # =========================================================================

    async def invalidate(
        self,
        source: str,
        endpoint: Optional[str] = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> int:
        """
        Delete entries for a source, optionally narrowed to an endpoint and params.

        Returns:
            Number of entries deleted (0 on backend error)
        """
        filters = [ApiResponseCache.source == source]
        if endpoint is not None:
            filters.append(ApiResponseCache.endpoint == endpoint)
            if params is not None:
                filters.append(ApiResponseCache.params_hash == hash_params(params))
        return self._delete_where(filters, f"{source}/{endpoint or '*'}")

    async def invalidate_by_season_week(self, source: str, season: int, week: Optional[int] = None) -> int:
        filters = [ApiResponseCache.source == source, ApiResponseCache.season == season]
        if week is not None:
            filters.append(ApiResponseCache.week == week)
        return self._delete_where(filters, f"{source} season={season} week={week}")

    async def invalidate_by_game_id(self, source: str, game_id: str) -> int:
        filters = [ApiResponseCache.source == source, ApiResponseCache.game_id == game_id]
        return self._delete_where(filters, f"{source} game={game_id}")

    async def cleanup_expired(self) -> int:
        """Delete every expired entry across all sources."""
        filters = [ApiResponseCache.expires_at <= self._now()]
        return self._delete_where(filters, "expired entries")

    async def get_stats(self) -> List[CacheSourceStats]:
        """
        Per-source entry counts and fetch-time range.

        Returns:
            One CacheSourceStats per source present (empty on backend error)
        """
        now = self._now()
        try:
            rows = (
                self.db.query(
                    ApiResponseCache.source,
                    func.count(ApiResponseCache.id),
                    func.min(ApiResponseCache.fetched_at),
                    func.max(ApiResponseCache.fetched_at),
                )
                .group_by(ApiResponseCache.source)
                .all()
            )
            expired = dict(
                self.db.query(ApiResponseCache.source, func.count(ApiResponseCache.id))
                .filter(ApiResponseCache.expires_at <= now)
                .group_by(ApiResponseCache.source)
                .all()
            )
        except SQLAlchemyError as e:
            logger.warning(f"Cache stats query failed: {e}")
            self._rollback()
            return []

        stats = []
        for source, total, oldest, newest in rows:
            expired_count = expired.get(source, 0)
            stats.append(
                CacheSourceStats(
                    source=source,
                    total_entries=total,
                    valid_entries=total - expired_count,
                    expired_entries=expired_count,
                    oldest_fetch=oldest,
                    newest_fetch=newest,
                )
            )
        return stats

    def _delete_where(self, filters: list, description: str) -> int:
        try:
            deleted = (
                self.db.query(ApiResponseCache)
                .filter(*filters)
                .delete(synchronize_session=False)
            )
            self.db.commit()
        except SQLAlchemyError as e:
            logger.error(f"Cache invalidation failed for {description}: {e}")
            self._rollback()
            return 0

        if deleted:
            logger.info(f"Invalidated {deleted} cache entries ({description})")
        return deleted

    def _rollback(self) -> None:
        try:
            self.db.rollback()
        except SQLAlchemyError as e:
            logger.debug(f"Rollback after cache error failed: {e}")
