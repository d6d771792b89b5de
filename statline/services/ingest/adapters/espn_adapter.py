"""
ESPN NFL adapter (fast JSON API, current-season source).

Endpoints:
- scoreboard: games for one week, status and scores
- summary: per-game boxscore with player stat categories
- athlete: player bio (college, draft, jersey)

Players, profiles, season records and weekly stats are all derived from the
boxscores of completed games, so one scoreboard + summary fetch per game
serves every operation through the response cache.
"""
from typing import Any, Dict, List, Optional, Tuple

from pydantic import ValidationError

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
from statline.services.ingest.adapters.base import HttpNflAdapter, to_int
from statline.services.ingest.cache import ContentCategory
from statline.services.ingest.errors import PermanentSourceError, RunCancelledError
from statline.services.ingest.utils.nfl_codes import normalize_position, normalize_team

logger = get_logger(__name__)

SCOREBOARD_URL = "https://site.api.espn.com/apis/site/v2/sports/football/nfl/scoreboard"
SUMMARY_URL = "https://site.api.espn.com/apis/site/v2/sports/football/nfl/summary"
ATHLETE_URL = "https://site.api.espn.com/apis/common/v3/sports/football/nfl/athletes"

REGULAR_SEASON = 2

# Stat key aliases per boxscore category (ESPN has used both label-style and camelCase keys)
PASSING_KEYS = {
    "comp_att": ("c/att", "comp/att", "completions/passingattempts"),
    "passing_yards": ("yds", "passingyards"),
    "passing_tds": ("td", "passingtouchdowns"),
    "interceptions": ("int", "interceptions"),
}
RUSHING_KEYS = {
    "carries": ("car", "rushingattempts", "rushingcarries"),
    "rushing_yards": ("yds", "rushingyards"),
    "rushing_tds": ("td", "rushingtouchdowns"),
}
RECEIVING_KEYS = {
    "receptions": ("rec", "receptions"),
    "receiving_yards": ("yds", "receivingyards"),
    "receiving_tds": ("td", "receivingtouchdowns"),
    "targets": ("tgt", "receivingtargets", "targets"),
}


def parse_game_status(status: Dict[str, Any]) -> GameStatus:
    """Map an ESPN event status to GameStatus."""
    status_type = (status or {}).get("type") or {}
    if status_type.get("completed"):
        return GameStatus.FINAL
    if str(status_type.get("state", "")).lower() == "in":
        return GameStatus.IN_PROGRESS
    return GameStatus.SCHEDULED


def parse_scoreboard(data: Dict[str, Any], season: int, week: int) -> List[RawGame]:
    """
    Parse a scoreboard response into games.

    Events missing a competition or either competitor are skipped.
    Scores are None for games that have not started.
    """
    games: List[RawGame] = []

    for event in data.get("events") or []:
        try:
            competition = (event.get("competitions") or [None])[0]
            if not competition:
                continue

            competitors = [c for c in competition.get("competitors") or [] if isinstance(c, dict)]
            home = next((c for c in competitors if c.get("homeAway") == "home"), None)
            away = next((c for c in competitors if c.get("homeAway") == "away"), None)
            if not home or not away:
                continue

            status = parse_game_status(event.get("status"))
            scheduled = status == GameStatus.SCHEDULED

            venue = None
            if competition.get("venue"):
                address = competition["venue"].get("address") or {}
                venue = {
                    "name": competition["venue"].get("fullName", ""),
                    "city": address.get("city", ""),
                    "state": address.get("state", ""),
                }

            games.append(RawGame(
                external_game_id=str(event["id"]),
                season=season,
                week=week,
                home_team=normalize_team(home["team"]["abbreviation"]) or home["team"]["abbreviation"],
                away_team=normalize_team(away["team"]["abbreviation"]) or away["team"]["abbreviation"],
                home_score=None if scheduled else (to_int(home.get("score")) or 0),
                away_score=None if scheduled else (to_int(away.get("score")) or 0),
                game_date=event.get("date"),
                venue=venue,
                status=status,
            ))
        except (AttributeError, KeyError, TypeError, ValueError, ValidationError) as e:
            logger.warning(f"Skipping malformed ESPN event {event.get('id') if isinstance(event, dict) else event}: {e}")

    return games


def _stat_map(keys: List[str], values: List[str]) -> Dict[str, str]:
    return {str(k).lower(): v for k, v in zip(keys or [], values or [])}


def _lookup(stat_map: Dict[str, str], aliases: Tuple[str, ...]) -> Optional[str]:
    for alias in aliases:
        if alias in stat_map:
            return stat_map[alias]
    return None


def apply_stat_category(category: str, stat_map: Dict[str, str], line: Dict[str, Any]) -> None:
    """Fill a weekly stat line from one boxscore category."""
    if category == "passing":
        comp_att = _lookup(stat_map, PASSING_KEYS["comp_att"])
        if comp_att and "/" in comp_att:
            completions, attempts = comp_att.split("/", 1)
            line["completions"] = to_int(completions)
            line["attempts"] = to_int(attempts)
        for field in ("passing_yards", "passing_tds", "interceptions"):
            line[field] = to_int(_lookup(stat_map, PASSING_KEYS[field]))
    elif category == "rushing":
        for field, aliases in RUSHING_KEYS.items():
            line[field] = to_int(_lookup(stat_map, aliases))
    elif category == "receiving":
        for field, aliases in RECEIVING_KEYS.items():
            line[field] = to_int(_lookup(stat_map, aliases))


def _game_result(team_score: Optional[int], opp_score: Optional[int]) -> Optional[str]:
    if team_score is None or opp_score is None:
        return None
    if team_score > opp_score:
        outcome = "W"
    elif team_score < opp_score:
        outcome = "L"
    else:
        outcome = "T"
    return f"{outcome} {team_score}-{opp_score}"


def _abbreviation(value: Any) -> Optional[str]:
    """Abbreviation from an ESPN {"abbreviation": ...} object or a bare string."""
    if isinstance(value, dict):
        value = value.get("abbreviation")
    return value if isinstance(value, str) and value else None


def _dicts(value: Any) -> List[Dict[str, Any]]:
    return [item for item in value if isinstance(item, dict)] if isinstance(value, list) else []


def _athlete_bio(details: Dict[str, Dict[str, Any]], athlete_id: str) -> Dict[str, Any]:
    """The "athlete" object of a bio payload, or {} when absent or malformed."""
    bio = (details.get(athlete_id) or {}).get("athlete")
    return bio if isinstance(bio, dict) else {}


def iter_boxscore_athletes(summary: Dict[str, Any]):
    """
    Yield (team_abbreviation, category_name, category, athlete_stats) from a summary.

    Teams, categories and athlete entries that are not objects are skipped,
    as are entries whose athlete is missing or not an object.
    """
    boxscore = summary.get("boxscore") if isinstance(summary, dict) else None
    if not isinstance(boxscore, dict):
        return
    for team in _dicts(boxscore.get("players")):
        raw_abbr = _abbreviation(team.get("team"))
        team_abbr = normalize_team(raw_abbr) or raw_abbr
        for category in _dicts(team.get("statistics")):
            name = str(category.get("name", "")).lower()
            for athlete_stats in category.get("athletes") or []:
                athlete = athlete_stats.get("athlete") if isinstance(athlete_stats, dict) else None
                if not isinstance(athlete, dict) or not athlete:
                    logger.warning(f"Skipping malformed ESPN boxscore entry in {team_abbr} {name}: {athlete_stats!r}")
                    continue
                yield team_abbr, name, category, athlete_stats


def extract_weekly_stats(summary: Dict[str, Any], game: RawGame) -> List[RawWeeklyStat]:
    """
    Build one stat line per athlete appearing in a completed game's boxscore.

    An athlete whose line cannot be parsed is skipped.
    """
    lines: Dict[str, Dict[str, Any]] = {}

    for team_abbr, category_name, category, athlete_stats in iter_boxscore_athletes(summary):
        athlete = athlete_stats["athlete"]
        try:
            athlete_id = str(athlete["id"])
            if athlete_id not in lines:
                is_home = team_abbr == game.home_team
                team_score = game.home_score if is_home else game.away_score
                opp_score = game.away_score if is_home else game.home_score
                lines[athlete_id] = {
                    "player_external_id": athlete_id,
                    "name": athlete.get("displayName"),
                    "season": game.season,
                    "week": game.week,
                    "opponent": game.away_team if is_home else game.home_team,
                    "location": "H" if is_home else "A",
                    "result": _game_result(team_score, opp_score),
                }
            apply_stat_category(
                category_name,
                _stat_map(category.get("keys") or category.get("labels"), athlete_stats.get("stats")),
                lines[athlete_id],
            )
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            logger.warning(f"Skipping malformed ESPN stat line in game {game.external_game_id}: {e}")

    stats: List[RawWeeklyStat] = []
    for athlete_id, line in lines.items():
        try:
            stats.append(RawWeeklyStat(**line))
        except ValidationError as e:
            logger.warning(f"Skipping invalid ESPN stat line for athlete {athlete_id}: {e}")
    return stats


class EspnAdapter(HttpNflAdapter):
    """ESPN public API adapter."""

    name = "nfl-espn"
    version = "1.0.0"
    description = "ESPN public API adapter for current NFL season data"
    source = DataSource.ESPN

    # =========================================================================
    # Contract
    # =========================================================================

    async def fetch_games(self, options: FetchOptions) -> List[RawGame]:
        weeks = [options.week] if options.week is not None else list(range(1, 19))
        return await self._fetch_schedule(options.season, weeks)

    async def fetch_players(self, options: FetchOptions) -> List[RawPlayer]:
        players: Dict[str, RawPlayer] = {}
        for _, summary in await self._completed_game_summaries(options):
            for _, _, _, athlete_stats in iter_boxscore_athletes(summary):
                athlete = athlete_stats["athlete"]
                try:
                    athlete_id = str(athlete["id"])
                    if athlete_id not in players:
                        players[athlete_id] = RawPlayer(external_id=athlete_id, name=athlete["displayName"])
                except (AttributeError, KeyError, TypeError, ValidationError) as e:
                    logger.warning(f"Skipping malformed ESPN athlete {athlete!r}: {e}")
        return list(players.values())

    async def fetch_player_profiles(self, options: FetchOptions) -> List[RawPlayerProfile]:
        seen = await self._boxscore_roster(options)
        if not seen:
            return []

        logger.info(f"Fetching {len(seen)} ESPN athlete profiles for {options.season}")
        details = await self._athlete_details(seen)

        profiles: List[RawPlayerProfile] = []
        for athlete_id, info in seen.items():
            detail = _athlete_bio(details, athlete_id)
            try:
                college = detail.get("college")
                draft = detail.get("draft") if isinstance(detail.get("draft"), dict) else {}
                metadata = {
                    "college": college.get("name") if isinstance(college, dict) else college,
                    "draft_year": draft.get("year"),
                    "draft_round": draft.get("round"),
                    "draft_pick": draft.get("selection"),
                    "espn_id": athlete_id,
                }
                profiles.append(RawPlayerProfile(
                    player_external_id=athlete_id,
                    name=info["name"],
                    position=normalize_position(_abbreviation(detail.get("position")) or info["position"]),
                    metadata={k: v for k, v in metadata.items() if v is not None},
                ))
            except (AttributeError, TypeError, ValidationError) as e:
                logger.warning(f"Skipping malformed ESPN profile {athlete_id}: {e}")
        return profiles

    async def fetch_season_records(self, options: FetchOptions) -> List[RawSeasonRecord]:
        seen = await self._boxscore_roster(options)
        if not seen:
            return []

        # Boxscores carry no jersey numbers
        details = await self._athlete_details(seen)

        records: List[RawSeasonRecord] = []
        for athlete_id, info in seen.items():
            detail = _athlete_bio(details, athlete_id)
            try:
                records.append(RawSeasonRecord(
                    player_external_id=athlete_id,
                    name=info["name"],
                    season=options.season,
                    team=info["team"],
                    jersey_number=to_int(detail.get("jersey")),
                    is_active=True,
                ))
            except ValidationError as e:
                logger.warning(f"Skipping malformed ESPN season record {athlete_id}: {e}")
        return records

    async def fetch_weekly_stats(self, options: FetchOptions) -> List[RawWeeklyStat]:
        stats: List[RawWeeklyStat] = []
        for game, summary in await self._completed_game_summaries(options):
            stats.extend(extract_weekly_stats(summary, game))
        return stats

    async def health_check(self) -> HealthCheckResult:
        return await self._probe(SCOREBOARD_URL, "ESPN API")

    # =========================================================================
    # Fetch helpers
    # =========================================================================

    async def _fetch_schedule(self, season: int, weeks: List[int]) -> List[RawGame]:
        payloads = await self._collect(
            weeks,
            lambda week: self._fetch_scoreboard(season, week),
            "scoreboard week",
        )
        games: List[RawGame] = []
        for week, payload in payloads:
            games.extend(parse_scoreboard(payload, season, week))
        return games

    async def _fetch_scoreboard(self, season: int, week: int) -> Tuple[int, Dict[str, Any]]:
        params = {"seasontype": REGULAR_SEASON, "week": week, "dates": season}

        def ttl(payload: Dict[str, Any]) -> int:
            return self.scoreboard_ttl(parse_scoreboard(payload, season, week), season)

        payload = await self._fetch_cached(
            "scoreboard",
            params,
            lambda: self._request_json(SCOREBOARD_URL, params),
            ttl,
            season=season,
            week=week,
        )
        if not isinstance(payload, dict):
            raise PermanentSourceError(f"Unexpected ESPN scoreboard payload for {season} week {week}", "espn")
        return week, payload

    def scoreboard_ttl(self, games: List[RawGame], season: int) -> int:
        """
        TTL for a scoreboard: the most volatile game decides.

        Any live game → in-progress TTL; any upcoming game → schedule TTL;
        all final → completed TTL (historical for past seasons).
        """
        statuses = {game.status for game in games}
        if GameStatus.IN_PROGRESS in statuses:
            return self._ttl(ContentCategory.IN_PROGRESS)
        if GameStatus.SCHEDULED in statuses or not games:
            return self._ttl(ContentCategory.SCHEDULE)
        return self._ttl(ContentCategory.COMPLETED, historical=self.is_historical(season))

    async def _fetch_summary(self, game: RawGame) -> Tuple[RawGame, Dict[str, Any]]:
        params = {"event": game.external_game_id}
        payload = await self._fetch_cached(
            "summary",
            params,
            lambda: self._request_json(SUMMARY_URL, params),
            self._ttl(ContentCategory.COMPLETED, historical=self.is_historical(game.season)),
            season=game.season,
            week=game.week,
            game_id=game.external_game_id,
        )
        if not isinstance(payload, dict):
            raise PermanentSourceError(f"Unexpected ESPN summary payload for game {game.external_game_id}", "espn")
        return game, payload

    async def _fetch_athlete(self, athlete_id: str) -> Tuple[str, Dict[str, Any]]:
        payload = await self._fetch_cached(
            "athlete",
            {"athlete_id": athlete_id},
            lambda: self._request_json(f"{ATHLETE_URL}/{athlete_id}"),
            self._ttl(ContentCategory.PLAYER_INFO),
        )
        return athlete_id, payload if isinstance(payload, dict) else {}

    async def _completed_game_summaries(self, options: FetchOptions) -> List[Tuple[RawGame, Dict[str, Any]]]:
        games = await self._fetch_schedule(options.season, self.weeks_to_fetch(options))
        completed = [game for game in games if game.status == GameStatus.FINAL]
        return await self._collect(completed, self._fetch_summary, "game summary")

    async def _boxscore_roster(self, options: FetchOptions) -> Dict[str, Dict[str, Any]]:
        """First-seen team, name and position per athlete across the season's boxscores."""
        roster: Dict[str, Dict[str, Any]] = {}
        for _, summary in await self._completed_game_summaries(options):
            for team_abbr, _, _, athlete_stats in iter_boxscore_athletes(summary):
                athlete = athlete_stats["athlete"]
                athlete_id = athlete.get("id")
                if athlete_id is None or str(athlete_id) in roster:
                    continue
                roster[str(athlete_id)] = {
                    "name": athlete.get("displayName"),
                    "team": team_abbr,
                    "position": _abbreviation(athlete.get("position")),
                }
        return roster

    async def _athlete_details(self, roster: Dict[str, Dict[str, Any]]) -> Dict[str, Dict[str, Any]]:
        """Best-effort athlete bios; a missing bio leaves the boxscore data in place."""
        results = await self._collect_optional(list(roster), self._fetch_athlete)
        return dict(results)

    async def _collect_optional(self, items, fetch_one) -> List[Any]:
        try:
            return await self._collect(items, fetch_one, "athlete")
        except RunCancelledError:
            raise
        except Exception as e:
            logger.warning(f"ESPN athlete details unavailable, using boxscore data only: {e}")
            return []
