"""Team and position code normalization across NFL sources.

Pro Football Reference uses legacy franchise codes (GNB, KAN, SFO, ...) and
occasionally full names; ESPN uses modern abbreviations with a few outliers
(WSH). Everything is normalized to the 32 modern abbreviations.
"""
from typing import Optional

NFL_TEAMS = frozenset({
    "ARI", "ATL", "BAL", "BUF", "CAR", "CHI", "CIN", "CLE",
    "DAL", "DEN", "DET", "GB", "HOU", "IND", "JAX", "KC",
    "LAC", "LAR", "LV", "MIA", "MIN", "NE", "NO", "NYG",
    "NYJ", "PHI", "PIT", "SEA", "SF", "TB", "TEN", "WAS",
})

TEAM_ALIASES = {
    # Legacy / alternate codes
    "GNB": "GB",
    "JAC": "JAX",
    "KAN": "KC",
    "SDG": "LAC",
    "SD": "LAC",
    "STL": "LAR",
    "LA": "LAR",
    "OAK": "LV",
    "LVR": "LV",
    "NWE": "NE",
    "NOR": "NO",
    "SFO": "SF",
    "TAM": "TB",
    "WSH": "WAS",
    # City and nickname forms
    "ARIZONA": "ARI", "CARDINALS": "ARI",
    "ATLANTA": "ATL", "FALCONS": "ATL",
    "BALTIMORE": "BAL", "RAVENS": "BAL",
    "BUFFALO": "BUF", "BILLS": "BUF",
    "CAROLINA": "CAR", "PANTHERS": "CAR",
    "CHICAGO": "CHI", "BEARS": "CHI",
    "CINCINNATI": "CIN", "BENGALS": "CIN",
    "CLEVELAND": "CLE", "BROWNS": "CLE",
    "DALLAS": "DAL", "COWBOYS": "DAL",
    "DENVER": "DEN", "BRONCOS": "DEN",
    "DETROIT": "DET", "LIONS": "DET",
    "GREEN BAY": "GB", "PACKERS": "GB",
    "HOUSTON": "HOU", "TEXANS": "HOU",
    "INDIANAPOLIS": "IND", "COLTS": "IND",
    "JACKSONVILLE": "JAX", "JAGUARS": "JAX",
    "KANSAS CITY": "KC", "CHIEFS": "KC",
    "LOS ANGELES CHARGERS": "LAC", "CHARGERS": "LAC",
    "LOS ANGELES RAMS": "LAR", "RAMS": "LAR",
    "LAS VEGAS": "LV", "RAIDERS": "LV",
    "MIAMI": "MIA", "DOLPHINS": "MIA",
    "MINNESOTA": "MIN", "VIKINGS": "MIN",
    "NEW ENGLAND": "NE", "PATRIOTS": "NE",
    "NEW ORLEANS": "NO", "SAINTS": "NO",
    "NEW YORK GIANTS": "NYG", "GIANTS": "NYG",
    "NEW YORK JETS": "NYJ", "JETS": "NYJ",
    "PHILADELPHIA": "PHI", "EAGLES": "PHI",
    "PITTSBURGH": "PIT", "STEELERS": "PIT",
    "SEATTLE": "SEA", "SEAHAWKS": "SEA",
    "SAN FRANCISCO": "SF", "49ERS": "SF",
    "TAMPA BAY": "TB", "BUCCANEERS": "TB",
    "TENNESSEE": "TEN", "TITANS": "TEN",
    "WASHINGTON": "WAS", "COMMANDERS": "WAS",
}

POSITION_ALIASES = {
    "FB": "RB",
    "HB": "RB",
    "FL": "WR",
    "SE": "WR",
}

OFFENSIVE_POSITIONS = frozenset({"QB", "RB", "WR", "TE"})


def normalize_team(team: Optional[str]) -> Optional[str]:
    """
    Normalize a team code or name to the modern abbreviation.

    Returns None for empty or unrecognized input rather than guessing.

    Examples:
        >>> normalize_team("GNB")
        'GB'
        >>> normalize_team("Kansas City")
        'KC'
        >>> normalize_team("Kansas City Chiefs")
        'KC'
        >>> normalize_team("XYZ") is None
        True
    """
    if not team:
        return None
    key = " ".join(team.upper().split())
    if key in NFL_TEAMS:
        return key
    if key in TEAM_ALIASES:
        return TEAM_ALIASES[key]

    # Full names: try the nickname, then the city
    parts = key.split()
    if len(parts) > 1:
        return TEAM_ALIASES.get(parts[-1]) or TEAM_ALIASES.get(" ".join(parts[:-1]))
    return None


def normalize_position(position: Optional[str]) -> Optional[str]:
    """
    Collapse position variants (FB/HB → RB, FL/SE → WR).

    Positions outside the offensive skill set are returned uppercased
    unchanged; empty input gives None.
    """
    if not position:
        return None
    code = position.strip().upper()
    return POSITION_ALIASES.get(code, code)
