"""
Deterministic offline NFL adapter.

Generates realistic, repeatable data for twenty well-known players so the
pipeline can run without network access. Every value is derived from a
seeded random generator keyed on (player, season, week), so two runs over
the same options return identical records.
"""
import asyncio
import hashlib
import random
import time
from datetime import datetime
from typing import Callable, Dict, List, Optional

from statline.core.logging import get_logger
from statline.models.schemas import (
    DataSource,
    FetchOptions,
    GameStatus,
    HealthCheckResult,
    RawGame,
    RawPlayer,
    RawPlayerProfile,
    RawSeasonRecord,
    RawWeeklyStat,
)
from statline.services.ingest.adapters.base import NflSourceAdapter
from statline.services.ingest.cancellation import CancellationToken
from statline.services.ingest.utils.name_normalizer import generate_player_id
from statline.services.ingest.utils.nfl_codes import NFL_TEAMS
from statline.utils.season import REGULAR_SEASON_WEEKS, current_nfl_season, expected_weeks, season_week, utcnow

logger = get_logger(__name__)

MOCK_PLAYERS = [
    {"name": "Patrick Mahomes", "position": "QB", "team": "KC", "jersey_number": 15},
    {"name": "Josh Allen", "position": "QB", "team": "BUF", "jersey_number": 17},
    {"name": "Lamar Jackson", "position": "QB", "team": "BAL", "jersey_number": 8},
    {"name": "Joe Burrow", "position": "QB", "team": "CIN", "jersey_number": 9},
    {"name": "Jalen Hurts", "position": "QB", "team": "PHI", "jersey_number": 1},
    {"name": "Derrick Henry", "position": "RB", "team": "BAL", "jersey_number": 22},
    {"name": "Saquon Barkley", "position": "RB", "team": "PHI", "jersey_number": 26},
    {"name": "Jahmyr Gibbs", "position": "RB", "team": "DET", "jersey_number": 26},
    {"name": "Breece Hall", "position": "RB", "team": "NYJ", "jersey_number": 20},
    {"name": "Bijan Robinson", "position": "RB", "team": "ATL", "jersey_number": 7},
    {"name": "Tyreek Hill", "position": "WR", "team": "MIA", "jersey_number": 10},
    {"name": "CeeDee Lamb", "position": "WR", "team": "DAL", "jersey_number": 88},
    {"name": "Ja'Marr Chase", "position": "WR", "team": "CIN", "jersey_number": 1},
    {"name": "Amon-Ra St. Brown", "position": "WR", "team": "DET", "jersey_number": 14},
    {"name": "A.J. Brown", "position": "WR", "team": "PHI", "jersey_number": 11},
    {"name": "Travis Kelce", "position": "TE", "team": "KC", "jersey_number": 87},
    {"name": "Sam LaPorta", "position": "TE", "team": "DET", "jersey_number": 87},
    {"name": "T.J. Hockenson", "position": "TE", "team": "MIN", "jersey_number": 87},
    {"name": "George Kittle", "position": "TE", "team": "SF", "jersey_number": 85},
    {"name": "Mark Andrews", "position": "TE", "team": "BAL", "jersey_number": 89},
]

MOCK_COLLEGES = [
    "Alabama", "Georgia", "Ohio State", "LSU", "Clemson",
    "Michigan", "Texas", "Oklahoma", "USC", "Notre Dame",
]


def seeded_random(*parts) -> random.Random:
    """Random generator seeded from a stable hash of the parts."""
    key = "-".join(str(part) for part in parts)
    seed = int(hashlib.sha256(key.encode("utf-8")).hexdigest()[:16], 16)
    return random.Random(seed)


def weekly_pairings(season: int, week: int) -> List[tuple]:
    """
    Round-robin (circle method) pairings of all 32 teams for a week.

    Returns:
        16 (home, away) tuples; every team appears exactly once
    """
    teams = sorted(NFL_TEAMS)
    fixed, rotating = teams[0], teams[1:]
    shift = (season + week) % len(rotating)
    rotating = rotating[shift:] + rotating[:shift]
    order = [fixed] + rotating

    half = len(order) // 2
    pairs = []
    for i in range(half):
        first, second = order[i], order[-(i + 1)]
        pairs.append((first, second) if (week + i) % 2 else (second, first))
    return pairs


def _opponent(team: str, season: int, week: int) -> tuple:
    """(opponent, location) for a team in the mock schedule."""
    for home, away in weekly_pairings(season, week):
        if home == team:
            return away, "H"
        if away == team:
            return home, "A"
    raise ValueError(f"{team} has no game in week {week}")


def _game_score(season: int, week: int, home: str, away: str) -> tuple:
    rng = seeded_random("game", season, week, home, away)
    home_score = round(14 + rng.random() * 24)
    away_score = round(10 + rng.random() * 24)
    if home_score == away_score:
        home_score += 3
    return home_score, away_score


def generate_weekly_stat(player: Dict, season: int, week: int) -> RawWeeklyStat:
    """Position-based stat line for one player and week."""
    player_id = generate_player_id(player["name"])
    rng = seeded_random(player_id, season, week)
    good_game = rng.random() > 0.4
    multiplier = 1.2 if good_game else 0.8

    opponent, location = _opponent(player["team"], season, week)
    home, away = (player["team"], opponent) if location == "H" else (opponent, player["team"])
    home_score, away_score = _game_score(season, week, home, away)
    team_score, opp_score = (home_score, away_score) if location == "H" else (away_score, home_score)
    outcome = "W" if team_score > opp_score else "L"

    line = {
        "player_external_id": player_id,
        "name": player["name"],
        "season": season,
        "week": week,
        "opponent": opponent,
        "location": location,
        "result": f"{outcome} {team_score}-{opp_score}",
    }

    position = player["position"]
    if position == "QB":
        line.update(
            passing_yards=round((220 + rng.random() * 150) * multiplier),
            passing_tds=round((1.5 + rng.random() * 2) * multiplier),
            interceptions=round(rng.random() * (1 if good_game else 2)),
            attempts=round(28 + rng.random() * 15),
            rushing_yards=round((5 + rng.random() * 40) * multiplier),
            rushing_tds=1 if rng.random() > 0.7 else 0,
            carries=round(2 + rng.random() * 6),
        )
        line["completions"] = min(line["attempts"], round((18 + rng.random() * 15) * multiplier))
    elif position == "RB":
        line.update(
            rushing_yards=round((50 + rng.random() * 80) * multiplier),
            rushing_tds=round(rng.random() * (2 if good_game else 1)),
            carries=round(12 + rng.random() * 12),
            receiving_yards=round((10 + rng.random() * 40) * multiplier),
            receiving_tds=1 if rng.random() > 0.85 else 0,
            targets=round(2 + rng.random() * 6),
        )
        line["receptions"] = min(line["targets"], round(1 + rng.random() * 5))
    elif position == "WR":
        line.update(
            receiving_yards=round((40 + rng.random() * 80) * multiplier),
            receiving_tds=round(rng.random() * (2 if good_game else 0.5)),
            targets=round(5 + rng.random() * 8),
            rushing_yards=round(rng.random() * 20) if rng.random() > 0.8 else 0,
            rushing_tds=1 if rng.random() > 0.95 else 0,
        )
        line["receptions"] = min(line["targets"], round((3 + rng.random() * 6) * multiplier))
    else:
        line.update(
            receiving_yards=round((25 + rng.random() * 60) * multiplier),
            receiving_tds=round(rng.random() * (1.5 if good_game else 0.5)),
            targets=round(4 + rng.random() * 6),
        )
        line["receptions"] = min(line["targets"], round((2 + rng.random() * 5) * multiplier))

    return RawWeeklyStat(**line)


class NflMockAdapter(NflSourceAdapter):
    """Mock NFL adapter for tests and local development."""

    name = "nfl-mock"
    version = "2.0.0"
    description = "Mock NFL data adapter for testing and development"
    source = DataSource.MOCK

    def __init__(
        self,
        latency_seconds: float = 0.0,
        cancel_token: Optional[CancellationToken] = None,
        clock: Optional[Callable[[], datetime]] = None,
        settings=None,
    ):
        if settings is None:
            from statline.core.config import settings
        self.settings = settings
        self.latency_seconds = latency_seconds
        self.cancel_token = cancel_token
        self._clock = clock or utcnow

    async def fetch_players(self, options: FetchOptions) -> List[RawPlayer]:
        await self._simulate_latency()
        return [
            RawPlayer(external_id=generate_player_id(p["name"]), name=p["name"])
            for p in MOCK_PLAYERS
        ]

    async def fetch_player_profiles(self, options: FetchOptions) -> List[RawPlayerProfile]:
        await self._simulate_latency()
        profiles = []
        for p in MOCK_PLAYERS:
            rng = seeded_random("profile", p["name"])
            profiles.append(RawPlayerProfile(
                player_external_id=generate_player_id(p["name"]),
                name=p["name"],
                position=p["position"],
                metadata={
                    "college": MOCK_COLLEGES[rng.randrange(len(MOCK_COLLEGES))],
                    "draft_year": 2016 + rng.randrange(8),
                },
            ))
        return profiles

    async def fetch_season_records(self, options: FetchOptions) -> List[RawSeasonRecord]:
        await self._simulate_latency()
        return [
            RawSeasonRecord(
                player_external_id=generate_player_id(p["name"]),
                name=p["name"],
                season=options.season,
                team=p["team"],
                jersey_number=p["jersey_number"],
                is_active=True,
            )
            for p in MOCK_PLAYERS
        ]

    async def fetch_weekly_stats(self, options: FetchOptions) -> List[RawWeeklyStat]:
        await self._simulate_latency()
        weeks = [options.week] if options.week is not None else self._played_weeks(options.season)
        return [
            generate_weekly_stat(player, options.season, week)
            for player in MOCK_PLAYERS
            for week in weeks
        ]

    async def fetch_games(self, options: FetchOptions) -> List[RawGame]:
        await self._simulate_latency()
        weeks = [options.week] if options.week is not None else list(range(1, REGULAR_SEASON_WEEKS + 1))
        played = set(self._played_weeks(options.season))

        games = []
        for week in weeks:
            for index, (home, away) in enumerate(weekly_pairings(options.season, week)):
                final = week in played
                home_score, away_score = _game_score(options.season, week, home, away) if final else (None, None)
                games.append(RawGame(
                    external_game_id=f"mock-{options.season}-{week:02d}-{index:02d}",
                    season=options.season,
                    week=week,
                    home_team=home,
                    away_team=away,
                    home_score=home_score,
                    away_score=away_score,
                    status=GameStatus.FINAL if final else GameStatus.SCHEDULED,
                ))
        return games

    async def health_check(self) -> HealthCheckResult:
        start = time.monotonic()
        await self._simulate_latency()
        return HealthCheckResult(
            healthy=True,
            message="NFL Mock adapter is ready",
            latency_ms=int((time.monotonic() - start) * 1000),
        )

    def _played_weeks(self, season: int) -> List[int]:
        now = self._clock()
        current_season = self.settings.CURRENT_SEASON_OVERRIDE
        if current_season is None:
            current_season = current_nfl_season(now)
        return expected_weeks(season, current_season, season_week(current_season, now))

    async def _simulate_latency(self) -> None:
        if self.cancel_token is not None:
            await self.cancel_token.sleep(self.latency_seconds)
        elif self.latency_seconds > 0:
            await asyncio.sleep(self.latency_seconds)
