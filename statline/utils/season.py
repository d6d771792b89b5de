"""
NFL calendar utilities.

All timestamps are stored as naive UTC datetimes. The NFL season is named by
the calendar year it starts in (the 2024 season runs Sep 2024 - Feb 2025).
"""
from datetime import datetime, timezone, timedelta
from typing import List, Optional

# UTC timezone for Python < 3.11 compatibility
try:
    from datetime import UTC
except ImportError:
    UTC = timezone.utc


REGULAR_SEASON_WEEKS = 18

# Approximate kickoff (first Thursday after Labor Day lands near Sep 5)
SEASON_START_MONTH = 9
SEASON_START_DAY = 5


def utcnow() -> datetime:
    """Current UTC time as a naive datetime (for database storage)."""
    return datetime.now(UTC).replace(tzinfo=None)


def current_nfl_season(now: Optional[datetime] = None) -> int:
    """
    Get the NFL season year in progress.

    Seasons roll over in September; January through August still belong to
    the previous calendar year's season.

    Examples:
        >>> current_nfl_season(datetime(2025, 1, 20))
        2024
        >>> current_nfl_season(datetime(2025, 9, 1))
        2025
    """
    if now is None:
        now = utcnow()
    return now.year - 1 if now.month < SEASON_START_MONTH else now.year


def current_nfl_week(now: Optional[datetime] = None) -> int:
    """
    Approximate the regular season week in progress.

    Returns 0 before kickoff and caps at 18 once the regular season is over
    (including the January/February tail of the season).

    Examples:
        >>> current_nfl_week(datetime(2024, 9, 1))
        0
        >>> current_nfl_week(datetime(2024, 9, 12))
        2
        >>> current_nfl_week(datetime(2025, 1, 20))
        18
    """
    if now is None:
        now = utcnow()
    if now.tzinfo is not None:
        now = now.astimezone(UTC).replace(tzinfo=None)

    season = current_nfl_season(now)
    season_start = datetime(season, SEASON_START_MONTH, SEASON_START_DAY)

    if now < season_start:
        return 0

    weeks_since_start = (now - season_start) // timedelta(weeks=1)
    return min(max(weeks_since_start + 1, 1), REGULAR_SEASON_WEEKS)


def expected_weeks(season: int, current_season: int, current_week: int) -> List[int]:
    """
    Weeks that should have data for a season.

    Completed seasons expect all 18 regular season weeks; the current season
    expects weeks played so far.

    Args:
        season: Season being fetched
        current_season: Season in progress
        current_week: Week in progress (0 before kickoff)

    Returns:
        Sorted list of week numbers
    """
    if season > current_season:
        return []
    max_week = current_week if season == current_season else REGULAR_SEASON_WEEKS
    return list(range(1, max_week + 1))


def is_valid_week(week: int) -> bool:
    return 1 <= week <= REGULAR_SEASON_WEEKS


def season_week(season: int, now: Optional[datetime] = None) -> int:
    """
    Week in progress of a given season.

    A season that finished before now is complete (18); one that has not
    started yet is at week 0.

    Examples:
        >>> season_week(2024, datetime(2025, 10, 3))
        18
        >>> season_week(2025, datetime(2025, 10, 3))
        5
    """
    if now is None:
        now = utcnow()
    clock_season = current_nfl_season(now)
    if season < clock_season:
        return REGULAR_SEASON_WEEKS
    if season > clock_season:
        return 0
    return current_nfl_week(now)
