"""
Entry value types for credstore.

This module defines the records the store persists:
- Entry: A stored credential record, as returned by every backend
- EntryDraft: The caller-supplied fields of an entry that does not exist yet
- validate_changes: Checks a partial update before it reaches a backend

Invariants:
    - Entries are immutable values; updates produce a new Entry
    - id, serial_number and created_at never change after creation
    - Passwords are stored verbatim and kept out of repr()
    - Timestamps are timezone-aware UTC datetimes

How to change safely:
    - New fields need a wire name in to_document/from_document
    - Optional fields must carry a default so old documents still decode
"""

from __future__ import annotations

import difflib
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Mapping, Optional
from urllib.parse import urlsplit

from .errors import BackendError, UnknownFieldError, ValidationError

REQUIRED_FIELDS = ("name", "username", "password", "website")
MUTABLE_FIELDS = REQUIRED_FIELDS + ("logo",)
RESERVED_FIELDS = ("id", "serial_number", "created_at", "updated_at")

_LABELS = {
    "name": "Name",
    "username": "Username",
    "password": "Password",
    "website": "Website",
    "logo": "Logo",
}


def utc_now(after: Optional[datetime] = None) -> datetime:
    """Current UTC time, strictly later than ``after`` when given.

    Two operations inside the same clock tick would otherwise share a
    timestamp, so the result is bumped by one microsecond if needed.
    """
    now = datetime.now(timezone.utc)
    if after is not None and now <= after:
        now = after + timedelta(microseconds=1)
    return now


def parse_timestamp(value: Any) -> datetime:
    """Decode a wire timestamp.

    Accepts ISO-8601 strings (``Z`` or offset), epoch milliseconds and
    extended-JSON ``{"$date": ...}`` wrappers.

    Raises:
        ValueError: If the value is not a recognised timestamp
    """
    if isinstance(value, dict) and "$date" in value:
        value = value["$date"]
        if isinstance(value, dict) and "$numberLong" in value:
            value = int(value["$numberLong"])

    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, (int, float)) and not isinstance(value, bool):
        parsed = datetime.fromtimestamp(value / 1000, tz=timezone.utc)
    elif isinstance(value, str):
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    else:
        raise ValueError(f"Unsupported timestamp value: {value!r}")

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def format_timestamp(value: datetime) -> str:
    return value.astimezone(timezone.utc).isoformat()


def is_valid_url(url: str) -> bool:
    """Loose website check used by the entry form.

    A missing scheme is tolerated; the value only has to yield a host.
    """
    candidate = url.strip()
    if not candidate or any(ch.isspace() for ch in candidate):
        return False
    if not candidate.startswith(("http://", "https://")):
        candidate = "https://" + candidate
    try:
        return bool(urlsplit(candidate).hostname)
    except ValueError:
        return False


def _field_problem(name: str, value: Any) -> Optional[str]:
    label = _LABELS[name]
    if not isinstance(value, str):
        return f"{label} must be a string"
    if name in REQUIRED_FIELDS and not value.strip():
        return f"{label} is required"
    if name == "website" and not is_valid_url(value):
        return "Please enter a valid website URL"
    return None


def _suggest(name: str, candidates: tuple) -> List[str]:
    return difflib.get_close_matches(name, candidates, n=3)


@dataclass(frozen=True)
class Entry:
    """A stored credential record.

    Attributes:
        id: Backend-assigned identifier
        serial_number: Position in creation order (1-based)
        name: Display name
        username: Account username
        password: Account password, verbatim
        website: Website as typed by the user
        created_at: Creation time (UTC)
        updated_at: Last update time (UTC)
        logo: Logo URL, stored as given
    """

    id: str
    serial_number: int
    name: str
    username: str
    password: str = field(repr=False)
    website: str
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)
    logo: str = ""

    def with_changes(self, changes: Mapping[str, Any], updated_at: datetime) -> Entry:
        """Return a copy with ``changes`` merged and ``updated_at`` refreshed."""
        return replace(self, **dict(changes), updated_at=updated_at)

    def to_document(self, include_id: bool = True) -> Dict[str, Any]:
        """Convert to the document-store wire shape."""
        doc: Dict[str, Any] = {
            "serialNumber": self.serial_number,
            "name": self.name,
            "username": self.username,
            "password": self.password,
            "website": self.website,
            "logo": self.logo,
            "createdAt": format_timestamp(self.created_at),
            "updatedAt": format_timestamp(self.updated_at),
        }
        if include_id:
            doc["_id"] = self.id
        return doc

    @classmethod
    def from_document(cls, doc: Mapping[str, Any]) -> Entry:
        """Create from a document-store document.

        Raises:
            BackendError: If the document is missing fields or malformed
        """
        raw_id = doc.get("_id", doc.get("id"))
        if isinstance(raw_id, dict):
            raw_id = raw_id.get("$oid")
        if not raw_id:
            raise BackendError("Stored document has no id")

        try:
            return cls(
                id=str(raw_id),
                serial_number=int(doc["serialNumber"]),
                name=doc["name"],
                username=doc["username"],
                password=doc["password"],
                website=doc["website"],
                logo=doc.get("logo") or "",
                created_at=parse_timestamp(doc["createdAt"]),
                updated_at=parse_timestamp(doc["updatedAt"]),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise BackendError(f"Malformed entry document {raw_id}: {e}")


@dataclass(frozen=True)
class EntryDraft:
    """Fields of an entry that has not been persisted yet.

    Validated on construction, so a draft that exists is always
    complete. The store assigns id, serial number and timestamps.

    Example:
        >>> draft = EntryDraft(name="GH", username="bob", password="x", website="github.com")
    """

    name: str
    username: str
    password: str = field(repr=False)
    website: str
    logo: str = ""

    def __post_init__(self) -> None:
        errors = []
        first_field = None
        for name in MUTABLE_FIELDS:
            problem = _field_problem(name, getattr(self, name))
            if problem:
                errors.append(problem)
                first_field = first_field or name
        if errors:
            raise ValidationError("; ".join(errors), field_name=first_field, errors=errors)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> EntryDraft:
        """Build a draft from a loose mapping.

        Raises:
            UnknownFieldError: If the mapping has a key that is not an entry field
            ValidationError: If required fields are missing or invalid
        """
        for key in data:
            if key not in MUTABLE_FIELDS:
                raise UnknownFieldError(key, _suggest(key, MUTABLE_FIELDS))
        return cls(**{name: data.get(name, "") for name in MUTABLE_FIELDS})

    def to_entry(self, entry_id: str, serial_number: int, now: datetime) -> Entry:
        return Entry(
            id=entry_id,
            serial_number=serial_number,
            name=self.name,
            username=self.username,
            password=self.password,
            website=self.website,
            logo=self.logo,
            created_at=now,
            updated_at=now,
        )

    def to_document(self, serial_number: int, now: datetime) -> Dict[str, Any]:
        """Wire document for insertion (no id; the store assigns it)."""
        return self.to_entry("", serial_number, now).to_document(include_id=False)


def validate_changes(changes: Mapping[str, Any]) -> Dict[str, Any]:
    """Validate a partial update.

    Returns:
        A plain dict copy of the accepted changes

    Raises:
        ValidationError: If a bookkeeping field is targeted or a value is invalid
        UnknownFieldError: If a key is not an entry field
    """
    errors = []
    first_field = None
    for key, value in changes.items():
        if key in RESERVED_FIELDS:
            raise ValidationError(f"Field '{key}' cannot be changed", field_name=key)
        if key not in MUTABLE_FIELDS:
            raise UnknownFieldError(key, _suggest(key, MUTABLE_FIELDS))
        problem = _field_problem(key, value)
        if problem:
            errors.append(problem)
            first_field = first_field or key
    if errors:
        raise ValidationError("; ".join(errors), field_name=first_field, errors=errors)
    return dict(changes)
