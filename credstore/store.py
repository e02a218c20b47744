"""
Entry store facade.

This module provides EntryStore, the single call surface consumers use
for entry CRUD and the username/website pre-check.

Example:
    >>> async with EntryStore(InMemoryEntryBackend()) as store:
    ...     entry = await store.create({"name": "GH", "username": "bob",
    ...                                 "password": "x", "website": "github.com"})
    ...     await store.delete(entry.id)

Invariants:
    - One backend per store, fixed at construction
    - Drafts and change sets are validated before the backend is called
    - Failures propagate to the caller; nothing is retried here
    - The store stays usable after any failed operation
"""

from __future__ import annotations

import logging
from typing import Any, List, Mapping, Optional, Union

from .backends import EntryBackend, create_backend
from .config import Settings
from .entry import Entry, EntryDraft, validate_changes
from .errors import CredStoreError

logger = logging.getLogger(__name__)


class EntryStore:
    """Facade over one entry backend.

    Attributes:
        backend: The bound backend variant

    The store does not enforce username/website uniqueness; callers that
    want to block duplicates consult check_username() (usually through a
    UniquenessValidator) before calling create().
    """

    def __init__(self, backend: EntryBackend) -> None:
        """Bind the store to a backend.

        Args:
            backend: Backend variant that will serve every call
        """
        self._backend = backend

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> EntryStore:
        """Build a store with the backend selected by settings."""
        return cls(create_backend(settings or Settings()))

    @property
    def backend(self) -> EntryBackend:
        return self._backend

    async def connect(self) -> None:
        await self._backend.connect()

    async def close(self) -> None:
        await self._backend.close()

    async def __aenter__(self) -> EntryStore:
        await self.connect()
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    async def get_all(self) -> List[Entry]:
        """Every stored entry, in no particular order."""
        try:
            return await self._backend.get_all()
        except CredStoreError as e:
            logger.error(f"Failed to list entries: {e.message}", extra={"code": e.code})
            raise

    async def get_by_id(self, entry_id: str) -> Entry:
        """Fetch one entry.

        Raises:
            NotFoundError: If no entry has that id
        """
        try:
            return await self._backend.get_by_id(entry_id)
        except CredStoreError as e:
            logger.error(
                f"Failed to load entry {entry_id}: {e.message}",
                extra={"entry_id": entry_id, "code": e.code},
            )
            raise

    async def create(self, draft: Union[EntryDraft, Mapping[str, Any]]) -> Entry:
        """Create an entry.

        Args:
            draft: EntryDraft, or a mapping of its fields

        Returns:
            The stored entry with id, serial number and timestamps

        Raises:
            ValidationError: If the draft is incomplete or invalid
            UnknownFieldError: If the mapping has unknown keys
            BackendError: If the backend fails
        """
        if not isinstance(draft, EntryDraft):
            draft = EntryDraft.from_dict(draft)

        try:
            entry = await self._backend.create(draft)
        except CredStoreError as e:
            logger.error(f"Failed to create entry: {e.message}", extra={"code": e.code})
            raise

        logger.info(
            "Entry created",
            extra={"entry_id": entry.id, "serial_number": entry.serial_number},
        )
        return entry

    async def update(self, entry_id: str, changes: Mapping[str, Any]) -> Entry:
        """Apply a partial update.

        Args:
            entry_id: Entry to change
            changes: Field name to new value; only supplied fields change

        Returns:
            The entry as stored after the update

        Raises:
            NotFoundError: If no entry has that id
            ValidationError: If a change is invalid or targets a bookkeeping field
        """
        accepted = validate_changes(changes)
        try:
            entry = await self._backend.update(entry_id, accepted)
        except CredStoreError as e:
            logger.error(
                f"Failed to update entry {entry_id}: {e.message}",
                extra={"entry_id": entry_id, "code": e.code},
            )
            raise

        logger.info("Entry updated", extra={"entry_id": entry_id, "fields": sorted(accepted)})
        return entry

    async def delete(self, entry_id: str) -> None:
        """Delete an entry permanently.

        Raises:
            NotFoundError: If no entry has that id
        """
        try:
            await self._backend.delete(entry_id)
        except CredStoreError as e:
            logger.error(
                f"Failed to delete entry {entry_id}: {e.message}",
                extra={"entry_id": entry_id, "code": e.code},
            )
            raise

        logger.info("Entry deleted", extra={"entry_id": entry_id})

    async def check_username(self, username: str, website: str) -> bool:
        """Whether ``username`` is already stored for ``website``.

        Username equality and website containment are both
        case-insensitive; the stored website must contain the query
        website, not the other way round. Blank input is never a match.
        """
        if not username.strip() or not website.strip():
            return False
        try:
            return await self._backend.check_username(username, website)
        except CredStoreError as e:
            logger.error(f"Username check failed: {e.message}", extra={"code": e.code})
            raise
