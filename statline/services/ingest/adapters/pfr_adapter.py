"""
Pro Football Reference adapter (scraped archival source).

Primary source for historical seasons and fallback for ESPN. PFR has no
player search, so the adapter works from a registry of known player slugs
(e.g. "MahoPa00"); KNOWN_PFR_SLUGS seeds it.

Scrape targets:
- /players/{L}/{slug}.htm                 name, position, team, jersey, college, draft
- /players/{L}/{slug}/gamelog/{season}/   weekly box score lines

Raw HTML is cached as {"html": ...}; parsing happens on every read so a
parser fix applies to already cached pages.
"""
import re
from typing import Any, Dict, List, Optional, Tuple

from bs4 import BeautifulSoup, Comment
from pydantic import ValidationError

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
)
from statline.services.ingest.adapters.base import HttpNflAdapter, to_int
from statline.services.ingest.cache import ContentCategory
from statline.services.ingest.utils.nfl_codes import normalize_position, normalize_team

logger = get_logger(__name__)

BASE_URL = "https://www.pro-football-reference.com"
GAME_LOG_TABLE_IDS = ("stats", "stats_games")

DRAFT_PATTERN = re.compile(r"in the (\d+)\w* round \((\d+)\w* overall\) of the (\d{4})", re.IGNORECASE)

# data-stat attribute -> RawWeeklyStat field
GAME_LOG_STATS = {
    "pass_cmp": "completions",
    "pass_att": "attempts",
    "pass_yds": "passing_yards",
    "pass_td": "passing_tds",
    "pass_int": "interceptions",
    "rush_att": "carries",
    "rush_yds": "rushing_yards",
    "rush_td": "rushing_tds",
    "targets": "targets",
    "rec": "receptions",
    "rec_yds": "receiving_yards",
    "rec_td": "receiving_tds",
}

# Well-known player names -> PFR slugs, used for initial loads
KNOWN_PFR_SLUGS: Dict[str, str] = {
    # Quarterbacks
    "patrick mahomes": "MahoPa00",
    "josh allen": "AlleJo02",
    "lamar jackson": "JackLa00",
    "joe burrow": "BurrJo01",
    "jalen hurts": "HurtJa00",
    "justin herbert": "HerbJu00",
    "dak prescott": "PresDa01",
    "tua tagovailoa": "TagoTu00",
    "trevor lawrence": "LawrTr00",
    "kyler murray": "MurrKy00",
    # Running backs
    "derrick henry": "HenrDe00",
    "saquon barkley": "BarkSa00",
    "jahmyr gibbs": "GibbJa00",
    "breece hall": "HallBr00",
    "bijan robinson": "RobiBi00",
    "christian mccaffrey": "McCaCh01",
    "josh jacobs": "JacoJo01",
    "tony pollard": "PollTo00",
    "nick chubb": "ChubNi00",
    "jonathan taylor": "TaylJo02",
    # Wide receivers
    "tyreek hill": "HillTy00",
    "ceedee lamb": "LambCe00",
    "ja'marr chase": "ChasJa00",
    "amon-ra st. brown": "St.BAm00",
    "a.j. brown": "BrowAJ00",
    "davante adams": "AdamDa01",
    "stefon diggs": "DiggSt00",
    "justin jefferson": "JeffJu00",
    "deebo samuel": "SamuDe00",
    "mike evans": "EvanMi00",
    # Tight ends
    "travis kelce": "KelcTr00",
    "sam laporta": "LaPoSa00",
    "t.j. hockenson": "HockTJ00",
    "george kittle": "KittGe00",
    "mark andrews": "AndrMa00",
    "dallas goedert": "GoedDa00",
    "evan engram": "EngrEv00",
    "david njoku": "NjokDa00",
}


def player_url(slug: str) -> str:
    return f"{BASE_URL}/players/{slug[0].upper()}/{slug}.htm"


def game_log_url(slug: str, season: int) -> str:
    return f"{BASE_URL}/players/{slug[0].upper()}/{slug}/gamelog/{season}/"


def find_table(soup: BeautifulSoup, table_id: str):
    """Find a table by id, including tables PFR ships inside HTML comments."""
    table = soup.find("table", id=table_id)
    if table:
        return table

    for comment in soup.find_all(string=lambda text: isinstance(text, Comment)):
        if table_id not in comment:
            continue
        fragment = BeautifulSoup(comment, "html.parser")
        table = fragment.find("table", id=table_id)
        if table:
            return table
    return None


def _meta_value(text: str, label: str, pattern: str) -> Optional[str]:
    match = re.search(rf"{label}\s*:\s*{pattern}", text)
    return match.group(1).strip() if match else None


def parse_player_page(html: str, slug: str) -> Optional[Dict[str, Any]]:
    """
    Parse a player page into its bio fields.

    Returns:
        Dict with name, position, team, jersey_number, college, draft_year,
        draft_round, draft_pick; None when the page has no player name
    """
    soup = BeautifulSoup(html, "html.parser")
    meta = soup.find(id="meta")
    if not meta:
        logger.warning(f"PFR page for {slug} has no player meta block")
        return None

    name_tag = meta.find("h1")
    name = name_tag.get_text(" ", strip=True) if name_tag else None
    if not name:
        logger.warning(f"PFR page for {slug} has no player name")
        return None

    info: Dict[str, Any] = {
        "name": name,
        "position": None,
        "team": None,
        "jersey_number": None,
        "college": None,
        "draft_year": None,
        "draft_round": None,
        "draft_pick": None,
    }

    for paragraph in meta.find_all("p"):
        text = paragraph.get_text(" ", strip=True)
        if info["position"] is None and "Position" in text:
            info["position"] = _meta_value(text, "Position", r"([A-Za-z0-9/-]+)")
        if info["team"] is None and "Team" in text:
            team = _meta_value(text, "Team", r"([A-Za-z0-9 .]+)")
            info["team"] = normalize_team(team) if team else None
        if info["jersey_number"] is None and "Number" in text:
            info["jersey_number"] = to_int(_meta_value(text, "Number", r"(\d+)"))
        if info["college"] is None and "College" in text:
            info["college"] = _meta_value(text, "College", r"([^(]+)")
        if info["draft_year"] is None and "Draft" in text:
            draft = DRAFT_PATTERN.search(text)
            if draft:
                info["draft_round"] = int(draft.group(1))
                info["draft_pick"] = int(draft.group(2))
                info["draft_year"] = int(draft.group(3))

    if info["jersey_number"] is None:
        # Newer layouts show numbers as uniform badges instead of a "Number:" line
        badges = soup.select(".uni_holder text")
        if badges:
            info["jersey_number"] = to_int(badges[-1].get_text(strip=True))

    return info


def parse_game_log(html: str) -> List[Dict[str, Any]]:
    """
    Parse a season game log into rows.

    Each row carries week, location ("H"/"A"), opponent, result and the
    GAME_LOG_STATS fields. Header, divider and non-week rows are skipped.
    """
    soup = BeautifulSoup(html, "html.parser")
    table = None
    for table_id in GAME_LOG_TABLE_IDS:
        table = find_table(soup, table_id)
        if table:
            break
    if not table:
        return []

    rows: List[Dict[str, Any]] = []
    body = table.find("tbody") or table

    for tr in body.find_all("tr"):
        classes = tr.get("class") or []
        if "thead" in classes or "partial_table" in classes:
            continue

        cells = {
            cell.get("data-stat"): cell.get_text(strip=True)
            for cell in tr.find_all(["td", "th"])
            if cell.get("data-stat")
        }

        week = to_int(cells.get("week_num"))
        if not week:
            continue

        row: Dict[str, Any] = {
            "week": week,
            "location": "A" if cells.get("game_location") == "@" else "H",
            "opponent": cells.get("opp") or cells.get("opp_id") or cells.get("opp_name_abbr") or None,
            "result": cells.get("game_result") or None,
        }
        for data_stat, field in GAME_LOG_STATS.items():
            row[field] = to_int(cells.get(data_stat))
        rows.append(row)

    return rows


class PfrAdapter(HttpNflAdapter):
    """Pro Football Reference scraping adapter."""

    name = "nfl-pfr"
    version = "1.0.0"
    description = "Pro Football Reference scraping adapter for NFL historical data"
    source = DataSource.PFR

    ACCEPT = "text/html,application/xhtml+xml"

    def __init__(self, *args, player_slugs: Optional[Dict[str, str]] = None, **kwargs):
        super().__init__(*args, **kwargs)
        self._slugs: Dict[str, str] = {}
        self._names: Dict[str, str] = {}
        if player_slugs:
            self.set_player_slugs(player_slugs)

    # =========================================================================
    # Slug registry
    # =========================================================================

    def add_player_slug(self, name: str, slug: str) -> None:
        """Register a player; names are case-insensitive, the last slug wins."""
        key = name.strip().lower()
        previous = self._slugs.get(key)
        if previous and previous != slug:
            self._names.pop(previous, None)
        self._slugs[key] = slug
        self._names[slug] = name.strip()

    def set_player_slugs(self, slugs: Dict[str, str]) -> None:
        """Replace the registry."""
        self._slugs = {}
        self._names = {}
        for name, slug in slugs.items():
            self.add_player_slug(name, slug)

    @property
    def player_slugs(self) -> Dict[str, str]:
        return dict(self._slugs)

    # =========================================================================
    # Contract
    # =========================================================================

    async def fetch_players(self, options: FetchOptions) -> List[RawPlayer]:
        players: List[RawPlayer] = []
        for slug, info in await self._player_pages():
            try:
                players.append(RawPlayer(external_id=slug, name=info["name"]))
            except ValidationError as e:
                logger.warning(f"Skipping malformed PFR player {slug}: {e}")
        return players

    async def fetch_player_profiles(self, options: FetchOptions) -> List[RawPlayerProfile]:
        profiles: List[RawPlayerProfile] = []
        for slug, info in await self._player_pages():
            metadata = {
                "college": info["college"],
                "draft_year": info["draft_year"],
                "draft_round": info["draft_round"],
                "draft_pick": info["draft_pick"],
                "pfr_slug": slug,
            }
            try:
                profiles.append(RawPlayerProfile(
                    player_external_id=slug,
                    name=info["name"],
                    position=normalize_position(info["position"]),
                    metadata={k: v for k, v in metadata.items() if v is not None},
                ))
            except ValidationError as e:
                logger.warning(f"Skipping malformed PFR profile {slug}: {e}")
        return profiles

    async def fetch_season_records(self, options: FetchOptions) -> List[RawSeasonRecord]:
        records: List[RawSeasonRecord] = []
        for slug, info in await self._player_pages():
            try:
                records.append(RawSeasonRecord(
                    player_external_id=slug,
                    name=info["name"],
                    season=options.season,
                    team=info["team"],
                    jersey_number=info["jersey_number"],
                    is_active=True,
                ))
            except ValidationError as e:
                logger.warning(f"Skipping malformed PFR season record {slug}: {e}")
        return records

    async def fetch_weekly_stats(self, options: FetchOptions) -> List[RawWeeklyStat]:
        logs = await self._collect(
            list(self._slugs.values()),
            lambda slug: self._fetch_game_log(slug, options.season),
            "game log",
        )

        stats: List[RawWeeklyStat] = []
        for slug, rows in logs:
            for row in rows:
                if options.week is not None and row["week"] != options.week:
                    continue
                try:
                    stats.append(RawWeeklyStat(
                        player_external_id=slug,
                        name=self._names.get(slug),
                        season=options.season,
                        week=row["week"],
                        opponent=normalize_team(row["opponent"]) if row["opponent"] else None,
                        location=row["location"],
                        result=row["result"],
                        **{field: row[field] for field in GAME_LOG_STATS.values()},
                    ))
                except ValidationError as e:
                    logger.warning(f"Skipping malformed PFR game log row for {slug} week {row.get('week')}: {e}")
        return stats

    async def fetch_games(self, options: FetchOptions) -> List[RawGame]:
        logger.debug("PFR adapter does not provide schedules, returning no games")
        return []

    async def health_check(self) -> HealthCheckResult:
        return await self._probe(BASE_URL, "PFR")

    # =========================================================================
    # Fetch helpers
    # =========================================================================

    async def _player_pages(self) -> List[Tuple[str, Dict[str, Any]]]:
        """Parsed player pages for every registered slug; unparseable pages are skipped."""
        pages = await self._collect(list(self._slugs.values()), self._fetch_player_page, "player page")
        parsed = []
        for slug, payload in pages:
            info = parse_player_page(payload.get("html", ""), slug)
            if info is not None:
                parsed.append((slug, info))
        return parsed

    async def _fetch_player_page(self, slug: str) -> Tuple[str, Dict[str, Any]]:
        async def fetch() -> Dict[str, str]:
            return {"html": await self._request_text(player_url(slug))}

        payload = await self._fetch_cached(
            "player",
            {"slug": slug, "type": "player"},
            fetch,
            self._ttl(ContentCategory.PLAYER_INFO),
        )
        return slug, payload if isinstance(payload, dict) else {}

    async def _fetch_game_log(self, slug: str, season: int) -> Tuple[str, List[Dict[str, Any]]]:
        async def fetch() -> Dict[str, str]:
            return {"html": await self._request_text(game_log_url(slug, season))}

        payload = await self._fetch_cached(
            "gamelog",
            {"slug": slug, "season": season, "type": "gamelog"},
            fetch,
            self._ttl(ContentCategory.COMPLETED, historical=self.is_historical(season)),
            season=season,
        )
        html = payload.get("html", "") if isinstance(payload, dict) else ""
        return slug, parse_game_log(html)
