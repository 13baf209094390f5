"""Helpers for splitting free-text person names and normalizing name identifiers."""

import re
from typing import Optional, Tuple


ORCID_PATTERN = re.compile(r'^(?:https?://(?:www\.)?orcid\.org/)?(\d{4}-\d{4}-\d{4}-\d{3}[0-9X])$', re.IGNORECASE)
ROR_PATTERN = re.compile(r'^(?:https?://(?:www\.)?ror\.org/)?([0-9a-z]{9})$', re.IGNORECASE)

ORCID_URL_PREFIX = "https://orcid.org/"
ROR_URL_PREFIX = "https://ror.org/"


def split_collector_name(collector: Optional[str]) -> Tuple[Optional[str], Optional[str]]:
    """
    Split a free-text collector name into (given_name, family_name).

    "Family, Given" is used when a comma is present; otherwise the first
    token is the given name and the remainder the family name. A single
    token is treated as family name.

    Args:
        collector: Free-text name from the CSV collector column

    Returns:
        Tuple (given_name, family_name), parts are None when missing
    """
    if not collector or not collector.strip():
        return None, None

    value = ' '.join(collector.split())

    if ',' in value:
        family, given = value.split(',', 1)
        return given.strip() or None, family.strip() or None

    parts = value.split(' ', 1)
    if len(parts) == 1:
        return None, parts[0]
    return parts[0], parts[1]


def split_family_given(name: Optional[str]) -> Tuple[Optional[str], Optional[str]]:
    """
    Split a DataCite style creator name into (given_name, family_name).

    Only the "Family, Given" form is split; a name without comma is returned
    as family name so that institutions and single names stay intact.
    """
    if not name or not name.strip():
        return None, None
    value = ' '.join(name.split())
    if ',' in value:
        family, given = value.split(',', 1)
        return given.strip() or None, family.strip() or None
    return None, value


def canonicalize_orcid(value: Optional[str]) -> Optional[str]:
    """
    Reduce an ORCID to its bare id (0000-0002-1825-0097).

    Accepts bare ids and orcid.org URLs; returns None for anything else.
    """
    if not value:
        return None
    match = ORCID_PATTERN.match(value.strip())
    if not match:
        return None
    return match.group(1).upper()


def orcid_url(value: Optional[str]) -> Optional[str]:
    """ORCID in https://orcid.org/ URL form, or None if not a valid ORCID."""
    orcid = canonicalize_orcid(value)
    return f"{ORCID_URL_PREFIX}{orcid}" if orcid else None


def canonicalize_ror(value: Optional[str]) -> Optional[str]:
    """ROR id in https://ror.org/ URL form, or None if not a valid ROR id."""
    if not value:
        return None
    match = ROR_PATTERN.match(value.strip())
    if not match:
        return None
    return f"{ROR_URL_PREFIX}{match.group(1).lower()}"
