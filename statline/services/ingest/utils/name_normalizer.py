"""Name normalization utilities for cross-source player matching.

Handles common variations between ESPN and Pro Football Reference:
- Suffixes: "Jr.", "Sr.", "II", "III", "IV", "V"
- Punctuation: "A.J. Brown" → "aj brown"
- Accents: "Jaelan Phillips" vs "Jaélan Phillips"
- Case: "PATRICK MAHOMES" → "patrick mahomes"
- Extra spaces: "Josh  Allen" → "josh allen"
"""
import re
import unicodedata
from typing import Optional


# Generational suffixes dropped from the end of a name
SUFFIXES = {'jr', 'sr', 'ii', 'iii', 'iv', 'v'}


def normalize(name: Optional[str]) -> str:
    """
    Normalize a player name for comparison.

    Steps:
    1. Strip accents
    2. Lowercase
    3. Remove everything but letters and whitespace
    4. Remove a trailing generational suffix
    5. Collapse whitespace

    Args:
        name: The name to normalize

    Returns:
        Normalized name string (empty for empty input)

    Examples:
        >>> normalize("A.J. Brown")
        'aj brown'
        >>> normalize("Odell Beckham Jr.")
        'odell beckham'
        >>> normalize("Amon-Ra St. Brown")
        'amonra st brown'
        >>> normalize("  Josh   Allen ")
        'josh allen'
    """
    if not name:
        return ""

    name = _normalize_unicode(name).lower()
    name = re.sub(r'[^a-z\s]', '', name)
    parts = name.split()

    if len(parts) > 1 and parts[-1] in SUFFIXES:
        parts = parts[:-1]

    return ' '.join(parts)


def _normalize_unicode(name: str) -> str:
    """
    Remove accents and diacritics.

    Converts 'é' → 'e', 'ñ' → 'n', etc.
    """
    normalized = unicodedata.normalize('NFD', name)
    return ''.join(
        c for c in normalized
        if unicodedata.category(c) != 'Mn'
    )


def extract_player_name_parts(name: str) -> tuple[str, str]:
    """
    Split a normalized name into first and last name tokens.

    The last token is treated as the last name:
    - "Patrick Mahomes" → ("patrick", "mahomes")
    - "Amon-Ra St. Brown" → ("amonra", "brown")

    Args:
        name: Full player name (raw or normalized)

    Returns:
        Tuple of (first_name, last_name), lowercase
    """
    parts = normalize(name).split()

    if not parts:
        return ("", "")

    if len(parts) == 1:
        return (parts[0], parts[0])

    return (parts[0], parts[-1])


def last_name_token(name: str) -> str:
    """Last token of the normalized name, used to prefilter candidate pools."""
    return extract_player_name_parts(name)[1]


def generate_player_id(name: str) -> str:
    """
    Deterministic internal player id from a name.

    Examples:
        >>> generate_player_id("Patrick Mahomes II")
        'patrick-mahomes'
        >>> generate_player_id("Ja'Marr Chase")
        'jamarr-chase'
    """
    return '-'.join(normalize(name).split())
