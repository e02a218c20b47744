"""
Search and sort helpers for entry listings.

get_all() makes no ordering promise, so every listing sorts and
filters client-side with these helpers.
"""

from __future__ import annotations

from typing import Any, Iterable, List

from .entry import Entry

SORT_FIELDS = ("serial_number", "name", "username", "website", "created_at", "updated_at")
SORT_DIRECTIONS = ("asc", "desc")


def filter_entries(entries: Iterable[Entry], term: str) -> List[Entry]:
    """Entries whose name, username, website or serial contain ``term``.

    Matching is case-insensitive; a blank term keeps everything.
    """
    needle = term.strip().lower()
    if not needle:
        return list(entries)
    return [
        entry
        for entry in entries
        if needle in entry.name.lower()
        or needle in entry.username.lower()
        or needle in entry.website.lower()
        or needle in str(entry.serial_number)
    ]


def sort_entries(
    entries: Iterable[Entry],
    field: str = "serial_number",
    direction: str = "asc",
) -> List[Entry]:
    """Sort entries by one field.

    Text fields compare case-insensitively.

    Raises:
        ValueError: If field or direction is not supported
    """
    if field not in SORT_FIELDS:
        raise ValueError(f"Cannot sort by '{field}'. Must be one of: {', '.join(SORT_FIELDS)}")
    if direction not in SORT_DIRECTIONS:
        raise ValueError(f"Invalid sort direction '{direction}'. Must be asc or desc")

    def key(entry: Entry) -> Any:
        value = getattr(entry, field)
        return value.lower() if isinstance(value, str) else value

    return sorted(entries, key=key, reverse=direction == "desc")
