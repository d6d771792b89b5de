"""Identity matcher linking source player ids to internal player identities.

Pipeline per candidate:
1. Reverse index lookup by (source, source_id), O(1) once warm
2. Candidate pool: internal players whose normalized name contains the
   last-name token
3. Score each (name up to 60, position +20, team +20) and keep the best
4. Score >= 50: matched; the mapping row is upserted with the new source
   id unless it is a manual override
5. Otherwise: unmatched; a deterministic id is synthesized from the name
   and the caller is expected to create the player

Persistence failures are logged and the in-memory index is still updated,
so the current run proceeds with a temporarily non-durable mapping.
"""
import logging
from datetime import datetime
from typing import Callable, Dict, Iterable, List, Optional, Union

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from statline.core.metrics import identity_matches_total
from statline.models.models import Player, PlayerIdentityMapping
from statline.models.schemas import (
    DataSource,
    IdentityMapping,
    MatchConfidence,
    PlayerMatchCandidate,
    PlayerMatchResult,
)
from statline.services.ingest.utils.confidence_scorer import (
    calculate_match_score,
    is_acceptable,
    score_to_confidence,
)
from statline.services.ingest.utils.name_normalizer import generate_player_id, last_name_token
from statline.utils.season import utcnow

logger = logging.getLogger(__name__)

SourceKey = Union[DataSource, str]


def _source_key(source: SourceKey) -> str:
    return source.value if isinstance(source, DataSource) else str(source)


class ScoredMatch:
    """Best internal player found for a candidate."""

    def __init__(self, player_id: str, score: int, details: List[str]):
        self.player_id = player_id
        self.score = score
        self.details = details

    @property
    def confidence(self) -> MatchConfidence:
        return score_to_confidence(self.score)

    def __repr__(self):
        return f"ScoredMatch(player_id={self.player_id}, score={self.score}, details={self.details})"


class IdentityMatcher:
    """
    Resolve source-observed players to stable internal player ids.

    Mappings are cached in memory (mapping_cache keyed by player id) with
    one reverse index per source (source id -> player id). Only the task
    running a match mutates these structures.
    """

    def __init__(self, db: Session, clock: Optional[Callable[[], datetime]] = None):
        """
        Args:
            db: SQLAlchemy database session
            clock: Returns the current naive UTC time (tests inject a fake)
        """
        self.db = db
        self._now = clock or utcnow
        self.mapping_cache: Dict[str, IdentityMapping] = {}
        self._source_index: Dict[str, Dict[str, str]] = {}
        self._loaded = False

    # =========================================================================
    # Loading and lookup
    # =========================================================================

    async def load_mappings(self) -> int:
        """
        Load every persisted mapping into memory, replacing the cache.

        Returns:
            Number of mappings loaded (0 if the store could not be read)
        """
        try:
            rows = self.db.query(PlayerIdentityMapping).all()
        except SQLAlchemyError as e:
            logger.error(f"Failed to load identity mappings: {e}")
            self._rollback()
            return 0

        self.mapping_cache.clear()
        self._source_index.clear()
        for row in rows:
            self._index(self._from_row(row))

        self._loaded = True
        logger.info(f"Loaded {len(self.mapping_cache)} identity mappings")
        return len(self.mapping_cache)

    def get_player_id(self, source: SourceKey, source_id: str) -> Optional[str]:
        """Internal player id mapped to a source id, if any."""
        return self._source_index.get(_source_key(source), {}).get(str(source_id))

    def get_mapping(self, player_id: str) -> Optional[IdentityMapping]:
        return self.mapping_cache.get(player_id)

    # =========================================================================
    # Matching
    # =========================================================================

    async def match_player(self, candidate: PlayerMatchCandidate) -> PlayerMatchResult:
        """
        Resolve one candidate.

        Returns:
            PlayerMatchResult. is_new_match is False only for a reverse
            index hit; created_player is True when no internal player
            cleared the acceptance threshold.
        """
        source = _source_key(candidate.source)

        player_id = self.get_player_id(source, candidate.source_id)
        if player_id is not None:
            mapping = self.mapping_cache[player_id]
            identity_matches_total.labels(method="index").inc()
            return PlayerMatchResult(
                player_id=player_id,
                source_ids=dict(mapping.source_ids),
                confidence=mapping.confidence,
                is_new_match=False,
                match_method=mapping.method,
            )

        best = self._find_best_match(candidate)

        if best is None:
            player_id = generate_player_id(candidate.name)
            logger.info(
                f"No match for {candidate.name} ({source}:{candidate.source_id}), "
                f"new identity {player_id}"
            )
            identity_matches_total.labels(method="new").inc()
            return PlayerMatchResult(
                player_id=player_id,
                source_ids={source: candidate.source_id},
                confidence=MatchConfidence.LOW,
                is_new_match=True,
                created_player=True,
            )

        method = ",".join(best.details)
        mapping = self._record_match(best.player_id, source, candidate.source_id, best.confidence, method)
        logger.debug(f"Matched {candidate.name} ({source}:{candidate.source_id}) to {best!r}")
        identity_matches_total.labels(method="scored").inc()

        return PlayerMatchResult(
            player_id=best.player_id,
            source_ids=dict(mapping.source_ids) if mapping else {source: candidate.source_id},
            confidence=best.confidence,
            is_new_match=True,
            score=best.score,
            match_method=method,
        )

    async def match_players(self, candidates: Iterable[PlayerMatchCandidate]) -> List[PlayerMatchResult]:
        """Match a batch, loading persisted mappings first if needed."""
        if not self._loaded:
            await self.load_mappings()

        results = []
        for candidate in candidates:
            results.append(await self.match_player(candidate))
        return results

    def _find_best_match(self, candidate: PlayerMatchCandidate) -> Optional[ScoredMatch]:
        """Highest scoring internal player at or above the acceptance threshold."""
        token = last_name_token(candidate.name)
        if not token:
            return None

        try:
            pool = self.db.query(Player).filter(Player.search_name.contains(token)).all()
        except SQLAlchemyError as e:
            logger.error(f"Candidate lookup failed for {candidate.name}: {e}")
            self._rollback()
            return None

        best: Optional[ScoredMatch] = None
        for player in pool:
            if not player.id or not player.name:
                continue
            score, details = calculate_match_score(
                candidate.name,
                candidate.position,
                candidate.team,
                player.name,
                player.position,
                player.team,
            )
            if score > 0 and (best is None or score > best.score):
                best = ScoredMatch(player.id, score, details)

        if best is not None and is_acceptable(best.score):
            return best
        return None

    def _record_match(
        self,
        player_id: str,
        source: str,
        source_id: str,
        confidence: MatchConfidence,
        method: str,
    ) -> Optional[IdentityMapping]:
        """Add a source id to a player's mapping unless it is a manual override."""
        existing = self.mapping_cache.get(player_id)
        if existing is not None and existing.manual_override:
            logger.info(f"Leaving manual mapping for {player_id} untouched ({source}:{source_id})")
            return existing

        source_ids = dict(existing.source_ids) if existing else {}
        source_ids[source] = source_id
        mapping = IdentityMapping(
            player_id=player_id,
            source_ids=source_ids,
            confidence=confidence,
            method=method,
            manual_override=False,
            matched_at=self._now(),
        )

        persisted = self._persist(mapping)
        if persisted is not None:
            # The stored row may carry ids (or a manual override) written since we loaded
            mapping = persisted

        self._index(mapping)
        return mapping

    # =========================================================================
    # Manual mappings
    # =========================================================================

    async def set_manual_mapping(
        self,
        player_id: str,
        source_ids: Dict[SourceKey, str],
        confidence: MatchConfidence = MatchConfidence.EXACT,
        method: str = "manual",
    ) -> IdentityMapping:
        """
        Force a mapping, protecting it from automatic matching.

        Replaces the player's source ids with the given ones.
        """
        mapping = IdentityMapping(
            player_id=player_id,
            source_ids={_source_key(source): str(source_id) for source, source_id in source_ids.items()},
            confidence=confidence,
            method=method,
            manual_override=True,
            matched_at=self._now(),
        )
        self._persist(mapping, replace_source_ids=True)
        self._index(mapping)
        identity_matches_total.labels(method="manual").inc()
        logger.info(f"Manual mapping set for {player_id}: {mapping.source_ids}")
        return mapping

    async def seed_manual_mappings(self, seeds: Iterable[Dict]) -> int:
        """
        Write curated known identities.

        Each seed is {"player_id": ..., "source_ids": {...}} with optional
        "confidence" and "method".

        Returns:
            Number of mappings written
        """
        count = 0
        for seed in seeds:
            await self.set_manual_mapping(
                seed["player_id"],
                seed["source_ids"],
                confidence=MatchConfidence(seed.get("confidence", MatchConfidence.EXACT)),
                method=seed.get("method", "manual_seed"),
            )
            count += 1
        return count

    # =========================================================================
    # Internal state
    # =========================================================================

    def _index(self, mapping: IdentityMapping) -> None:
        """Cache a mapping and point its source ids at it, dropping replaced ids."""
        previous = self.mapping_cache.get(mapping.player_id)
        if previous is not None:
            for source, old_id in previous.source_ids.items():
                if mapping.source_ids.get(source) != old_id:
                    index = self._source_index.get(source, {})
                    if index.get(old_id) == mapping.player_id:
                        del index[old_id]

        self.mapping_cache[mapping.player_id] = mapping
        for source, source_id in mapping.source_ids.items():
            self._source_index.setdefault(source, {})[str(source_id)] = mapping.player_id

    def _persist(self, mapping: IdentityMapping, replace_source_ids: bool = False) -> Optional[IdentityMapping]:
        """
        Upsert the mapping row for mapping.player_id.

        Automatic writes never modify a manual_override row; the stored
        manual mapping is returned instead.

        Returns:
            The mapping as stored, or None if the write failed
        """
        try:
            row = (
                self.db.query(PlayerIdentityMapping)
                .filter(PlayerIdentityMapping.player_id == mapping.player_id)
                .first()
            )
            if row is not None and row.manual_override and not mapping.manual_override:
                return self._from_row(row)

            if row is None:
                row = PlayerIdentityMapping(player_id=mapping.player_id, source_ids={})
                self.db.add(row)

            if replace_source_ids:
                row.source_ids = dict(mapping.source_ids)
            else:
                row.source_ids = {**(row.source_ids or {}), **mapping.source_ids}
            row.match_confidence = mapping.confidence.value
            row.match_method = mapping.method
            row.manual_override = mapping.manual_override
            row.matched_at = mapping.matched_at
            self.db.commit()
        except SQLAlchemyError as e:
            logger.error(f"Failed to save identity mapping for {mapping.player_id}: {e}")
            self._rollback()
            return None

        return mapping.model_copy(update={"source_ids": {k: str(v) for k, v in row.source_ids.items()}})

    @staticmethod
    def _from_row(row: PlayerIdentityMapping) -> IdentityMapping:
        return IdentityMapping(
            player_id=row.player_id,
            source_ids={k: str(v) for k, v in (row.source_ids or {}).items()},
            confidence=MatchConfidence(row.match_confidence),
            method=row.match_method,
            manual_override=bool(row.manual_override),
            matched_at=row.matched_at,
        )

    def _rollback(self) -> None:
        try:
            self.db.rollback()
        except SQLAlchemyError as e:
            logger.debug(f"Rollback after identity store error failed: {e}")
