"""
Database models for the StatLine ingest core.

Only two tables outlive a single ingest run and are owned by this core:
api_response_cache and player_identity_mappings. The players table is the
internal player population the identity matcher searches; it is written by
the loader, never by adapters.
"""
import uuid

from sqlalchemy import Column, String, Integer, DateTime, Boolean, JSON, Index, UniqueConstraint
from sqlalchemy.orm import declarative_base, validates

from statline.services.ingest.utils.name_normalizer import normalize

Base = declarative_base()


def _uuid() -> str:
    return str(uuid.uuid4())


class Player(Base):
    """Internal NFL player identity (the matcher's candidate population)."""
    __tablename__ = "players"

    id = Column(String(100), primary_key=True)  # slug, e.g. "patrick-mahomes"
    name = Column(String(255), nullable=False, index=True)
    search_name = Column(String(255), nullable=True, index=True)  # normalize(name), kept in sync by the ORM
    position = Column(String(10), nullable=True)
    team = Column(String(3), nullable=True, index=True)  # Team abbreviation
    created_at = Column(DateTime, nullable=True)
    updated_at = Column(DateTime, nullable=True)

    @validates("name")
    def _sync_search_name(self, key, value):
        self.search_name = normalize(value)
        return value


class ApiResponseCache(Base):
    """Raw source responses with an expiry.

    Payloads are stored as opaque JSON; only the adapter that wrote an
    entry knows how to parse it.
    """
    __tablename__ = "api_response_cache"

    id = Column(String(36), primary_key=True, default=_uuid)
    source = Column(String(32), nullable=False)  # espn, pfr
    endpoint = Column(String(64), nullable=False)  # scoreboard, summary, athlete, player, gamelog
    params_hash = Column(String(64), nullable=False)  # sha256 of sorted params
    response_data = Column(JSON, nullable=False)
    season = Column(Integer, nullable=True)
    week = Column(Integer, nullable=True)
    game_id = Column(String(64), nullable=True)
    fetched_at = Column(DateTime, nullable=False)
    expires_at = Column(DateTime, nullable=False)

    __table_args__ = (
        UniqueConstraint('source', 'endpoint', 'params_hash', name='uq_api_response_cache_key'),
        Index('ix_api_response_cache_expires', 'expires_at'),
        Index('ix_api_response_cache_season_week', 'source', 'season', 'week'),
        Index('ix_api_response_cache_game', 'source', 'game_id'),
    )


class PlayerIdentityMapping(Base):
    """Links one internal player to that player's ids in each external source.

    Exactly one row per internal player id. Rows with manual_override=True
    are curated and never touched by automatic matching.
    """
    __tablename__ = "player_identity_mappings"

    id = Column(String(36), primary_key=True, default=_uuid)
    player_id = Column(String(100), nullable=False, unique=True, index=True)
    source_ids = Column(JSON, nullable=False, default=dict)  # {"espn": "3139477", "pfr": "MahoPa00"}
    match_confidence = Column(String(10), nullable=False)  # exact, high, medium, low
    match_method = Column(String(255), nullable=True)  # e.g. "name_score:60,position_match,team_match"
    manual_override = Column(Boolean, nullable=False, default=False, index=True)
    matched_at = Column(DateTime, nullable=False)
