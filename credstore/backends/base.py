"""
Base protocol for entry store backends.

This module defines the EntryBackend protocol that every persistence
variant implements, plus the factory that picks one from settings.

Invariants:
    - Every data method is a coroutine, even for the in-memory variant
    - Backends assign id, serial number and timestamps on create
    - get_by_id/update/delete raise NotFoundError for unknown ids
    - Data methods raise BackendConnectionError before connect()

How to change safely:
    - Protocol changes require updating every implementation
    - Keep the facade the only caller; consumers never hold a backend
"""

from __future__ import annotations

from abc import abstractmethod
from typing import (
    Any,
    Dict,
    List,
    Protocol,
    runtime_checkable,
    TYPE_CHECKING,
)
import logging

from ..entry import Entry, EntryDraft

if TYPE_CHECKING:
    from ..config import Settings

logger = logging.getLogger(__name__)


@runtime_checkable
class EntryBackend(Protocol):
    """Protocol for entry persistence backends.

    Ordering contract:
        - get_all() makes no ordering promise; callers sort

    Uniqueness contract:
        - check_username() is advisory; create() never consults it

    Example:
        >>> backend = InMemoryEntryBackend()
        >>> await backend.connect()
        >>> entry = await backend.create(draft)
        >>> print(entry.serial_number)
    """

    @abstractmethod
    async def connect(self) -> None:
        """Prepare the backend for use.

        Raises:
            BackendConnectionError: If the backend cannot be reached
        """
        ...

    @abstractmethod
    async def close(self) -> None:
        """Release resources held by the backend."""
        ...

    @abstractmethod
    async def get_all(self) -> List[Entry]:
        """Return every stored entry, in no particular order."""
        ...

    @abstractmethod
    async def get_by_id(self, entry_id: str) -> Entry:
        """Return the entry with ``entry_id``.

        Raises:
            NotFoundError: If no entry has that id
        """
        ...

    @abstractmethod
    async def create(self, draft: EntryDraft) -> Entry:
        """Persist a new entry.

        Assigns id, serial number and created_at = updated_at = now.

        Returns:
            The stored entry
        """
        ...

    @abstractmethod
    async def update(self, entry_id: str, changes: Dict[str, Any]) -> Entry:
        """Merge ``changes`` onto a stored entry and refresh updated_at.

        Returns:
            The stored entry after the update

        Raises:
            NotFoundError: If no entry has that id
        """
        ...

    @abstractmethod
    async def delete(self, entry_id: str) -> None:
        """Remove an entry permanently.

        Raises:
            NotFoundError: If no entry has that id
        """
        ...

    @abstractmethod
    async def check_username(self, username: str, website: str) -> bool:
        """Whether a stored entry collides with ``username`` on ``website``.

        Username comparison is case-insensitive equality. The website
        matches when the stored website contains ``website`` as a
        case-insensitive substring (one direction only).
        """
        ...

    @property
    @abstractmethod
    def is_connected(self) -> bool:
        """Whether connect() has been called and close() has not."""
        ...


def create_backend(settings: "Settings") -> EntryBackend:
    """Factory function to create a backend from settings.

    Args:
        settings: Store settings

    Returns:
        Appropriate EntryBackend implementation

    Raises:
        ValueError: If the backend is not supported
    """
    from ..config import BackendKind
    from .memory import InMemoryEntryBackend
    from .remote import RemoteEntryBackend

    logger.info("Creating entry backend", extra={"backend": settings.backend.value})

    if settings.backend == BackendKind.MEMORY:
        backend = InMemoryEntryBackend(
            latency=settings.memory_latency_ms / 1000,
            allocation=settings.serial_allocation,
        )
        if settings.seed_sample_entries:
            backend.seed(InMemoryEntryBackend.sample_entries(settings.seed_sample_entries))
        return backend
    elif settings.backend == BackendKind.REMOTE:
        settings.validate_backend()
        return RemoteEntryBackend(
            base_url=settings.remote_url,
            api_key=settings.remote_api_key.get_secret_value(),
            database=settings.database,
            collection=settings.collection,
            counters_collection=settings.counters_collection,
            data_source=settings.data_source,
            timeout=settings.request_timeout,
            allocation=settings.serial_allocation,
            allocation_retries=settings.allocation_retries,
        )
    else:
        raise ValueError(f"Unsupported entry backend: {settings.backend}")
