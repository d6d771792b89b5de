"""
Source-normalized records produced by adapters.

Fields are loosely populated because each source exposes a different subset.
At this layer a player is identified by the source's own external id;
cross-source identity is resolved only by the IdentityMatcher.
"""
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class Sport(str, Enum):
    """Sports with a source adapter variant."""
    NFL = "nfl"


class DataSource(str, Enum):
    """External providers."""
    ESPN = "espn"
    PFR = "pfr"
    MOCK = "mock"


class MatchConfidence(str, Enum):
    """Qualitative band derived from a numeric match score."""
    EXACT = "exact"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class GameStatus(str, Enum):
    SCHEDULED = "scheduled"
    IN_PROGRESS = "in_progress"
    FINAL = "final"


class FetchOptions(BaseModel):
    """Immutable input to every adapter fetch operation."""
    model_config = ConfigDict(frozen=True)

    season: int
    week: Optional[int] = None

    def for_week(self, week: int) -> "FetchOptions":
        """Copy of these options narrowed to a single week."""
        return FetchOptions(season=self.season, week=week)


class RawPlayer(BaseModel):
    """Core player identity as seen by one source."""
    external_id: str
    name: str
    image_url: Optional[str] = None


class RawPlayerProfile(BaseModel):
    """Sport-specific player profile (position and bio metadata)."""
    player_external_id: str
    sport: Sport = Sport.NFL
    name: Optional[str] = None
    position: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)


class RawSeasonRecord(BaseModel):
    """A player's team and jersey for one season."""
    player_external_id: str
    season: int
    name: Optional[str] = None
    team: Optional[str] = None
    jersey_number: Optional[int] = None
    is_active: bool = True


class RawWeeklyStat(BaseModel):
    """One player's box score line for one week."""
    player_external_id: str
    season: int
    week: int
    name: Optional[str] = None
    opponent: Optional[str] = None
    location: Optional[str] = None  # "H" or "A"
    result: Optional[str] = None  # e.g. "W 27-20"

    # Passing
    passing_yards: Optional[int] = None
    passing_tds: Optional[int] = None
    interceptions: Optional[int] = None
    completions: Optional[int] = None
    attempts: Optional[int] = None

    # Rushing
    rushing_yards: Optional[int] = None
    rushing_tds: Optional[int] = None
    carries: Optional[int] = None

    # Receiving
    receiving_yards: Optional[int] = None
    receiving_tds: Optional[int] = None
    receptions: Optional[int] = None
    targets: Optional[int] = None


class RawGame(BaseModel):
    """A scheduled, live or completed game."""
    external_game_id: str
    season: int
    week: int
    home_team: str
    away_team: str
    home_score: Optional[int] = None
    away_score: Optional[int] = None
    game_date: Optional[str] = None
    venue: Optional[Dict[str, str]] = None
    status: GameStatus = GameStatus.SCHEDULED


class HealthCheckResult(BaseModel):
    healthy: bool
    message: str
    latency_ms: Optional[int] = None


class CacheGetResult(BaseModel):
    """Outcome of a cache lookup.

    An expired entry reports hit=False, expired=True and still carries the
    stale payload so callers may choose to use it.
    """
    hit: bool
    data: Optional[Any] = None
    fetched_at: Optional[datetime] = None
    expired: bool = False


class CacheSourceStats(BaseModel):
    source: str
    total_entries: int = 0
    valid_entries: int = 0
    expired_entries: int = 0
    oldest_fetch: Optional[datetime] = None
    newest_fetch: Optional[datetime] = None


class PlayerMatchCandidate(BaseModel):
    """A source-observed player to resolve to an internal identity."""
    name: str
    position: Optional[str] = None
    team: Optional[str] = None
    source_id: str
    source: DataSource


class PlayerMatchResult(BaseModel):
    """Resolution of one candidate.

    is_new_match is False only when the source id was already mapped.
    created_player is True when no existing player cleared the acceptance
    threshold and player_id is a freshly synthesized identity.
    """
    player_id: str
    source_ids: Dict[str, str] = Field(default_factory=dict)
    confidence: MatchConfidence
    is_new_match: bool
    created_player: bool = False
    score: Optional[int] = None
    match_method: Optional[str] = None


class IdentityMapping(BaseModel):
    """In-memory view of a player_identity_mappings row."""
    player_id: str
    source_ids: Dict[str, str] = Field(default_factory=dict)
    confidence: MatchConfidence
    method: Optional[str] = None
    manual_override: bool = False
    matched_at: datetime


class SourceFailure(BaseModel):
    """A source failure the composite adapter recovered from or re-raised."""
    source: DataSource
    operation: str
    message: str
    error_type: str
    recorded_at: datetime


class SourceSelection(BaseModel):
    """Primary/fallback choice for one call, recomputed per call."""
    model_config = ConfigDict(frozen=True)

    primary: DataSource
    fallback: Optional[DataSource]
    reason: str


__all__: List[str] = [
    "Sport",
    "DataSource",
    "MatchConfidence",
    "GameStatus",
    "FetchOptions",
    "RawPlayer",
    "RawPlayerProfile",
    "RawSeasonRecord",
    "RawWeeklyStat",
    "RawGame",
    "HealthCheckResult",
    "CacheGetResult",
    "CacheSourceStats",
    "PlayerMatchCandidate",
    "PlayerMatchResult",
    "IdentityMapping",
    "SourceFailure",
    "SourceSelection",
]
