"""Normalization of person and institution names for identity comparison."""

import re
from typing import Optional


# Applied in this order, before lower-casing
UMLAUT_REPLACEMENTS = (
    ("ö", "oe"),
    ("ä", "ae"),
    ("ü", "ue"),
    ("Ö", "Oe"),
    ("Ä", "Ae"),
    ("Ü", "Ue"),
    ("ß", "ss"),
)

WHITESPACE_PATTERN = re.compile(r'\s+')


def normalize(name: Optional[str]) -> str:
    """
    Build the comparison key for a name.

    Umlauts are folded to their two-letter spelling, the result is
    lower-cased, trimmed and internal whitespace is collapsed, so
    "Förste,  Christoph" and "foerste, christoph" yield the same key.
    The key is never stored or displayed.

    Args:
        name: Display name (may be None)

    Returns:
        Normalized key, empty string for empty input
    """
    if not name:
        return ""

    key = name
    for umlaut, digraph in UMLAUT_REPLACEMENTS:
        key = key.replace(umlaut, digraph)

    key = key.lower().strip()
    return WHITESPACE_PATTERN.sub(' ', key)


def normalize_institution(name: Optional[str]) -> str:
    """Case-insensitive key for institution names with whitespace runs collapsed."""
    if not name:
        return ""
    return WHITESPACE_PATTERN.sub(' ', name.strip()).casefold()
