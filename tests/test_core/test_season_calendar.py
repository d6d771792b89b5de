"""Unit tests for the NFL season calendar.

Test Strategy:
1. Test season rollover in September
2. Test week numbering, clamping and the January/February tail
3. Test expected weeks for current, past and future seasons
4. Test the week in progress of any season
"""
from datetime import datetime, timezone

import pytest

from statline.utils.season import (
    REGULAR_SEASON_WEEKS,
    current_nfl_season,
    current_nfl_week,
    expected_weeks,
    is_valid_week,
    season_week,
)


class TestCurrentSeason:
    """Test suite for current_nfl_season()."""

    @pytest.mark.parametrize("now, expected", [
        (datetime(2024, 9, 1), 2024),
        (datetime(2024, 12, 29), 2024),
        (datetime(2025, 1, 20), 2024),
        (datetime(2025, 8, 31), 2024),
    ])
    def test_season_rolls_over_in_september(self, now, expected):
        """Should keep January through August in the previous season."""
        assert current_nfl_season(now) == expected


class TestCurrentWeek:
    """Test suite for current_nfl_week()."""

    @pytest.mark.parametrize("now, expected", [
        (datetime(2024, 9, 1), 0),
        (datetime(2024, 9, 5), 1),
        (datetime(2024, 9, 12), 2),
        (datetime(2024, 9, 26, 12), 4),
        (datetime(2024, 10, 3, 12), 5),
        (datetime(2024, 12, 31), 17),
        (datetime(2025, 1, 20), 18),
    ])
    def test_week_numbering(self, now, expected):
        """Should count weeks from kickoff and cap at the last regular season week."""
        assert current_nfl_week(now) == expected

    def test_aware_datetime(self):
        """Should accept timezone-aware datetimes."""
        assert current_nfl_week(datetime(2024, 9, 12, tzinfo=timezone.utc)) == 2


class TestExpectedWeeks:
    """Test suite for expected_weeks()."""

    def test_current_season(self):
        """Should expect the weeks played so far."""
        assert expected_weeks(2024, 2024, 4) == [1, 2, 3, 4]

    def test_before_kickoff(self):
        """Should expect nothing before the first week."""
        assert expected_weeks(2024, 2024, 0) == []

    def test_past_season(self):
        """Should expect every regular season week."""
        assert expected_weeks(2021, 2024, 4) == list(range(1, REGULAR_SEASON_WEEKS + 1))

    def test_future_season(self):
        """Should expect nothing for a season that has not started."""
        assert expected_weeks(2025, 2024, 4) == []

    def test_is_valid_week(self):
        assert is_valid_week(1)
        assert is_valid_week(18)
        assert not is_valid_week(0)
        assert not is_valid_week(19)


class TestSeasonWeek:
    """Test suite for season_week()."""

    def test_finished_season_is_complete(self):
        """Should report the last regular season week for a season already over."""
        assert season_week(2024, datetime(2025, 10, 3)) == REGULAR_SEASON_WEEKS

    def test_season_in_progress(self):
        """Should match the clock's week for the season in progress."""
        assert season_week(2025, datetime(2025, 10, 3)) == 5

    def test_future_season(self):
        """Should report week 0 for a season that has not started."""
        assert season_week(2026, datetime(2025, 10, 3)) == 0
