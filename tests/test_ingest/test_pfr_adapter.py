"""Tests for the Pro Football Reference adapter against a mocked HTTP transport.

Test Strategy:
1. Test player page parsing (meta block, team names, draft line, jersey badge)
2. Test game log parsing (header rows, byes, tables hidden in comments)
3. Test the slug registry
4. Test adapter operations end to end through the limiter and cache
5. Test failure handling (missing pages vs outages)

Each test follows the pattern:
- Given: Canned PFR HTML served by a mock transport
- When: A parser or adapter operation is called
- Then: Normalized records match expectations
"""
from datetime import timedelta

import httpx
import pytest

from statline.models.models import ApiResponseCache
from statline.models.schemas import FetchOptions
from statline.services.ingest.adapters.pfr_adapter import (
    PfrAdapter,
    game_log_url,
    parse_game_log,
    parse_player_page,
    player_url,
)
from statline.services.ingest.cache import ResponseCache
from statline.services.ingest.errors import RetriesExhaustedError
from statline.services.ingest.rate_limiter import RateLimitConfig, RateLimiterService

MAHOMES_PAGE = """
<html><body>
<div id="meta"><div>
  <h1><span>Patrick Mahomes</span></h1>
  <p><strong>Position</strong>: QB &nbsp; <strong>Throws:</strong> Right</p>
  <p><strong>Team</strong>: <a href="/teams/kan/2024.htm">Kansas City Chiefs</a></p>
  <p><strong>College</strong>: <a href="/schools/texastech/">Texas Tech</a> (College Stats)</p>
  <p><strong>Draft</strong>: <a href="/teams/kan/draft.htm">Kansas City Chiefs</a> in the 1st round (10th overall) of the <a href="/years/2017/draft.htm">2017 NFL Draft</a>.</p>
</div></div>
<div class="uni_holder"><svg><text>15</text></svg></div>
</body></html>
"""

GAME_LOG_ROWS = """
<thead><tr><th data-stat="week_num">Week</th><th data-stat="opp">Opp</th></tr></thead>
<tbody>
  <tr>
    <td data-stat="week_num">1</td><td data-stat="game_location"></td>
    <td data-stat="opp">BAL</td><td data-stat="game_result">W 27-20</td>
    <td data-stat="pass_cmp">20</td><td data-stat="pass_att">28</td><td data-stat="pass_yds">291</td>
    <td data-stat="pass_td">1</td><td data-stat="pass_int">1</td>
    <td data-stat="rush_att">2</td><td data-stat="rush_yds">3</td><td data-stat="rush_td">0</td>
  </tr>
  <tr class="thead"><th data-stat="week_num">Week</th></tr>
  <tr>
    <td data-stat="week_num">2</td><td data-stat="game_location">@</td>
    <td data-stat="opp">CIN</td><td data-stat="game_result">W 26-25</td>
    <td data-stat="pass_cmp">18</td><td data-stat="pass_att">25</td><td data-stat="pass_yds">151</td>
    <td data-stat="pass_td">1</td><td data-stat="pass_int">2</td>
  </tr>
  <tr><td data-stat="week_num"></td><td data-stat="opp">Bye Week</td></tr>
</tbody>
"""

GAME_LOG_PAGE = f'<html><body><table id="stats">{GAME_LOG_ROWS}</table></body></html>'

# Older layout: the table ships inside an HTML comment under a different id
COMMENTED_GAME_LOG_PAGE = (
    '<html><body><div id="all_stats"><!-- '
    f'<table id="stats_games">{GAME_LOG_ROWS}</table>'
    ' --></div></body></html>'
)


class FakePfr:
    """Mock transport handler serving canned PFR pages."""

    def __init__(self):
        self.requests = []
        self.fail_with = None

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.fail_with is not None:
            return httpx.Response(self.fail_with)

        path = request.url.path
        if path == "/":
            return httpx.Response(200, text="<html></html>")
        if path == "/players/M/MahoPa00.htm":
            return httpx.Response(200, text=MAHOMES_PAGE)
        if path == "/players/M/MahoPa00/gamelog/2024/":
            return httpx.Response(200, text=GAME_LOG_PAGE)
        if path == "/players/M/MahoPa00/gamelog/2020/":
            return httpx.Response(200, text=COMMENTED_GAME_LOG_PAGE)
        return httpx.Response(404, text="Page Not Found")


@pytest.fixture
def fake_pfr() -> FakePfr:
    return FakePfr()


@pytest.fixture
def pfr_adapter(db_session, fake_clock, fake_monotonic, test_settings, fake_pfr):
    limiters = RateLimiterService(
        {"pfr": RateLimitConfig(requests_per_second=1000, max_concurrent=1,
                                base_backoff_ms=10, max_backoff_ms=20, max_retries=1)},
        sleep=fake_monotonic.sleep,
        clock=fake_monotonic,
    )
    return PfrAdapter(
        limiters,
        player_slugs={"Patrick Mahomes": "MahoPa00", "Travis Kelce": "KelcTr00"},
        cache=ResponseCache(db_session, clock=fake_clock),
        client=httpx.AsyncClient(transport=httpx.MockTransport(fake_pfr)),
        clock=fake_clock,
        settings=test_settings(),
    )


class TestPlayerPageParsing:
    """Test suite for parse_player_page()."""

    def test_parses_bio(self):
        """Should read name, position, team, college and draft from the meta block."""
        info = parse_player_page(MAHOMES_PAGE, "MahoPa00")

        assert info["name"] == "Patrick Mahomes"
        assert info["position"] == "QB"
        assert info["team"] == "KC"
        assert info["college"] == "Texas Tech"
        assert (info["draft_year"], info["draft_round"], info["draft_pick"]) == (2017, 1, 10)

    def test_jersey_from_uniform_badge(self):
        """Should fall back to the uniform badge for the jersey number."""
        assert parse_player_page(MAHOMES_PAGE, "MahoPa00")["jersey_number"] == 15

    def test_page_without_meta(self):
        """Should return None for a page that is not a player page."""
        assert parse_player_page("<html><body>Page Not Found</body></html>", "NopeXx00") is None


class TestGameLogParsing:
    """Test suite for parse_game_log()."""

    def test_parses_week_rows(self):
        """Should return one row per played week and skip header and bye rows."""
        rows = parse_game_log(GAME_LOG_PAGE)

        assert [row["week"] for row in rows] == [1, 2]
        assert rows[0]["passing_yards"] == 291
        assert rows[0]["carries"] == 2
        assert rows[1]["interceptions"] == 2

    def test_location_and_missing_stats(self):
        """Should map '@' to away and leave absent stats empty."""
        rows = parse_game_log(GAME_LOG_PAGE)

        assert (rows[0]["location"], rows[0]["opponent"]) == ("H", "BAL")
        assert (rows[1]["location"], rows[1]["opponent"]) == ("A", "CIN")
        assert rows[1]["rushing_yards"] is None
        assert rows[1]["receptions"] is None

    def test_table_inside_comment(self):
        """Should find game log tables hidden in HTML comments."""
        rows = parse_game_log(COMMENTED_GAME_LOG_PAGE)

        assert [row["week"] for row in rows] == [1, 2]

    def test_page_without_table(self):
        """Should return no rows when there is no game log table."""
        assert parse_game_log("<html></html>") == []


class TestSlugRegistry:
    """Test suite for the player slug registry."""

    def test_urls(self):
        """Should build player and game log URLs from the slug initial."""
        assert player_url("MahoPa00") == "https://www.pro-football-reference.com/players/M/MahoPa00.htm"
        assert game_log_url("KelcTr00", 2023) == (
            "https://www.pro-football-reference.com/players/K/KelcTr00/gamelog/2023/"
        )

    def test_names_are_case_insensitive_and_last_wins(self, pfr_adapter):
        """Should key the registry by lowercase name and replace earlier slugs."""
        pfr_adapter.add_player_slug("PATRICK MAHOMES", "MahoPa01")

        assert pfr_adapter.player_slugs["patrick mahomes"] == "MahoPa01"
        assert len(pfr_adapter.player_slugs) == 2

    def test_set_player_slugs_replaces(self, pfr_adapter):
        """Should replace the whole registry."""
        pfr_adapter.set_player_slugs({"Sam LaPorta": "LaPoSa00"})

        assert pfr_adapter.player_slugs == {"sam laporta": "LaPoSa00"}


class TestPfrAdapterOperations:
    """Test suite for adapter operations through limiter and cache."""

    @pytest.mark.asyncio
    async def test_players_skip_missing_pages(self, pfr_adapter):
        """Should return players whose page parsed and skip 404s."""
        players = await pfr_adapter.fetch_players(FetchOptions(season=2024))

        assert [(p.external_id, p.name) for p in players] == [("MahoPa00", "Patrick Mahomes")]

    @pytest.mark.asyncio
    async def test_profiles_and_season_records(self, pfr_adapter, fake_pfr):
        """Should derive profiles and season records from the cached player page."""
        options = FetchOptions(season=2024)

        profiles = await pfr_adapter.fetch_player_profiles(options)
        requests_after_profiles = len(fake_pfr.requests)
        records = await pfr_adapter.fetch_season_records(options)

        assert profiles[0].position == "QB"
        assert profiles[0].metadata["college"] == "Texas Tech"
        assert profiles[0].metadata["pfr_slug"] == "MahoPa00"
        assert records[0].team == "KC"
        assert records[0].jersey_number == 15
        # The 404 page is not cached, so only Kelce is requested again
        assert len(fake_pfr.requests) == requests_after_profiles + 1

    @pytest.mark.asyncio
    async def test_weekly_stats_for_one_week(self, pfr_adapter):
        """Should keep only the requested week and label lines with the player name."""
        stats = await pfr_adapter.fetch_weekly_stats(FetchOptions(season=2024, week=2))

        assert len(stats) == 1
        line = stats[0]
        assert line.player_external_id == "MahoPa00"
        assert line.name == "Patrick Mahomes"
        assert (line.week, line.opponent, line.location, line.result) == (2, "CIN", "A", "W 26-25")
        assert line.passing_yards == 151

    @pytest.mark.asyncio
    async def test_weekly_stats_all_weeks(self, pfr_adapter):
        """Should return every game log row when no week is given."""
        stats = await pfr_adapter.fetch_weekly_stats(FetchOptions(season=2024))

        assert [s.week for s in stats] == [1, 2]

    @pytest.mark.asyncio
    async def test_historical_game_log_ttl(self, pfr_adapter, db_session):
        """Should cache past-season game logs with the historical TTL."""
        stats = await pfr_adapter.fetch_weekly_stats(FetchOptions(season=2020))

        row = (
            db_session.query(ApiResponseCache)
            .filter(ApiResponseCache.endpoint == "gamelog", ApiResponseCache.season == 2020)
            .one()
        )
        assert len(stats) == 2
        assert row.expires_at - row.fetched_at == timedelta(days=7)

    @pytest.mark.asyncio
    async def test_no_schedules(self, pfr_adapter, fake_pfr):
        """Should return no games without making requests."""
        assert await pfr_adapter.fetch_games(FetchOptions(season=2024)) == []
        assert fake_pfr.requests == []


class TestPfrFailures:
    """Test suite for outages and missing pages."""

    @pytest.mark.asyncio
    async def test_all_pages_missing_returns_empty(self, pfr_adapter, fake_pfr):
        """Should treat 404s as missing players rather than an outage."""
        fake_pfr.fail_with = 404

        assert await pfr_adapter.fetch_players(FetchOptions(season=2024)) == []

    @pytest.mark.asyncio
    async def test_outage_propagates(self, pfr_adapter, fake_pfr):
        """Should raise when every request fails with a server error."""
        fake_pfr.fail_with = 503

        with pytest.raises(RetriesExhaustedError):
            await pfr_adapter.fetch_weekly_stats(FetchOptions(season=2024))

    @pytest.mark.asyncio
    async def test_health_check(self, pfr_adapter, fake_pfr):
        """Should probe the site root."""
        result = await pfr_adapter.health_check()

        assert result.healthy is True
        assert fake_pfr.requests[0].url.path == "/"
