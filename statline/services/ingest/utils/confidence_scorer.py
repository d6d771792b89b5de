"""Match scoring between a source-observed player and an internal player.

Score out of 100:
- Name (max 60):
  - normalized exact match: 60
  - same last and first name: 55
  - same last name and first initial: 40
  - same last name only: 30
  - otherwise by Levenshtein similarity: >=0.9 → 50, >=0.8 → 35, >=0.7 → 20
- Position exact match: +20
- Team exact match: +20

A candidate is accepted at 50 or more.
"""
from typing import List, Optional, Tuple

from rapidfuzz.distance import Levenshtein

from statline.models.schemas import MatchConfidence
from statline.services.ingest.utils.name_normalizer import normalize

ACCEPTANCE_THRESHOLD = 50

NAME_EXACT = 60
NAME_FIRST_AND_LAST = 55
NAME_INITIAL_AND_LAST = 40
NAME_LAST_ONLY = 30
POSITION_MATCH = 20
TEAM_MATCH = 20

# (minimum similarity, points), checked in order
SIMILARITY_TIERS = ((0.9, 50), (0.8, 35), (0.7, 20))


def calculate_name_score(candidate_name: str, internal_name: str) -> int:
    """
    Score how well two names agree (0-60).

    Examples:
        >>> calculate_name_score("Patrick Mahomes", "Patrick Mahomes II")
        60
        >>> calculate_name_score("Pat Mahomes", "Patrick Mahomes")
        40
        >>> calculate_name_score("Kenneth Walker", "Ken Walker")
        40
    """
    norm_candidate = normalize(candidate_name)
    norm_internal = normalize(internal_name)

    if not norm_candidate or not norm_internal:
        return 0

    if norm_candidate == norm_internal:
        return NAME_EXACT

    candidate_parts = norm_candidate.split()
    internal_parts = norm_internal.split()

    if candidate_parts[-1] == internal_parts[-1]:
        if candidate_parts[0] == internal_parts[0]:
            return NAME_FIRST_AND_LAST
        if candidate_parts[0][0] == internal_parts[0][0]:
            return NAME_INITIAL_AND_LAST
        return NAME_LAST_ONLY

    similarity = Levenshtein.normalized_similarity(norm_candidate, norm_internal)
    for minimum, points in SIMILARITY_TIERS:
        if similarity >= minimum:
            return points

    return 0


def _same_code(a: Optional[str], b: Optional[str]) -> bool:
    return bool(a) and bool(b) and a.strip().upper() == b.strip().upper()


def calculate_match_score(
    candidate_name: str,
    candidate_position: Optional[str],
    candidate_team: Optional[str],
    internal_name: str,
    internal_position: Optional[str],
    internal_team: Optional[str],
) -> Tuple[int, List[str]]:
    """
    Score a candidate against an internal player.

    Returns:
        Tuple of (score, details) where details name the signals that
        contributed, e.g. ["name_score:60", "position_match", "team_match"]
    """
    details: List[str] = []

    score = calculate_name_score(candidate_name, internal_name)
    if score > 0:
        details.append(f"name_score:{score}")

    if _same_code(candidate_position, internal_position):
        score += POSITION_MATCH
        details.append("position_match")

    if _same_code(candidate_team, internal_team):
        score += TEAM_MATCH
        details.append("team_match")

    return score, details


def score_to_confidence(score: int) -> MatchConfidence:
    """
    Band a numeric score.

    >=95 exact, >=80 high, >=60 medium, else low.
    """
    if score >= 95:
        return MatchConfidence.EXACT
    if score >= 80:
        return MatchConfidence.HIGH
    if score >= 60:
        return MatchConfidence.MEDIUM
    return MatchConfidence.LOW


def is_acceptable(score: int) -> bool:
    return score >= ACCEPTANCE_THRESHOLD
