"""
In-memory entry backend.

This module provides an entry store that keeps everything in a list
owned by the backend instance, for:
- Unit and integration tests
- Local development without a document-store proxy
- Demo sessions seeded with sample entries

Invariants:
    - All data lives as long as the instance; nothing is persisted
    - Each instance is an independent store (no shared module state)
    - Every operation awaits a simulated latency before touching data
    - Entries are frozen, so callers can never mutate stored state

How to change safely:
    - Keep interface compatible with the EntryBackend protocol
    - Keep the latency pause between serial allocation and append;
      it is where concurrent SCAN-mode creates interleave
"""

from __future__ import annotations

import asyncio
import uuid
from datetime import timedelta
from typing import Any, Dict, Iterable, List
import logging

from ..allocator import AllocationMode, serial_after
from ..entry import Entry, EntryDraft, utc_now
from ..errors import BackendConnectionError, NotFoundError

logger = logging.getLogger(__name__)

_SAMPLE_SITES = ("github.com", "twitter.com")


def entry_matches(entry: Entry, username: str, website: str) -> bool:
    """Username/website collision test shared by the uniqueness check."""
    return (
        entry.username.lower() == username.lower()
        and website.lower() in entry.website.lower()
    )


class InMemoryEntryBackend:
    """In-memory implementation of EntryBackend.

    Entries are kept in creation order and located by linear scan,
    which is fine for the dashboard-sized data sets this serves.

    Attributes:
        latency: Seconds each operation waits, modelling a round trip
        allocation: Serial allocation mode

    Concurrency:
        No lock guards the entry list; the event loop never runs two
        synchronous sections at once. In SCAN mode two creates that both
        read the maximum serial before either appends will both use it.
        ATOMIC mode holds a lock from the read through the append.

    Example:
        >>> backend = InMemoryEntryBackend()
        >>> await backend.connect()
        >>> entry = await backend.create(draft)
        >>> await backend.get_by_id(entry.id)
    """

    def __init__(
        self,
        latency: float = 0.0,
        allocation: AllocationMode = AllocationMode.ATOMIC,
    ) -> None:
        """Initialize an empty in-memory store.

        Args:
            latency: Simulated per-operation delay in seconds
            allocation: Serial allocation mode
        """
        self.latency = latency
        self.allocation = allocation
        self._entries: List[Entry] = []
        self._connected = False
        self._allocation_lock = asyncio.Lock()

    @property
    def is_connected(self) -> bool:
        """Whether connected (always true after connect())."""
        return self._connected

    async def connect(self) -> None:
        """Connect (no-op for in-memory)."""
        self._connected = True
        logger.debug("InMemoryEntryBackend connected")

    async def close(self) -> None:
        """Close; stored entries survive until clear() or the instance goes away."""
        self._connected = False
        logger.debug("InMemoryEntryBackend closed")

    async def get_all(self) -> List[Entry]:
        await self._pause()
        return list(self._entries)

    async def get_by_id(self, entry_id: str) -> Entry:
        await self._pause()
        return self._entries[self._index_of(entry_id)]

    async def create(self, draft: EntryDraft) -> Entry:
        """Append a new entry with the next serial number.

        Args:
            draft: Validated entry fields

        Returns:
            The stored entry
        """
        if self.allocation == AllocationMode.ATOMIC:
            async with self._allocation_lock:
                return await self._allocate_and_append(draft)
        return await self._allocate_and_append(draft)

    async def update(self, entry_id: str, changes: Dict[str, Any]) -> Entry:
        await self._pause()
        index = self._index_of(entry_id)
        current = self._entries[index]
        updated = current.with_changes(changes, utc_now(after=current.updated_at))
        self._entries[index] = updated

        logger.debug(
            "Entry updated in memory",
            extra={"entry_id": entry_id, "fields": sorted(changes)},
        )
        return updated

    async def delete(self, entry_id: str) -> None:
        await self._pause()
        del self._entries[self._index_of(entry_id)]
        logger.debug("Entry deleted from memory", extra={"entry_id": entry_id})

    async def check_username(self, username: str, website: str) -> bool:
        await self._pause()
        return any(entry_matches(e, username, website) for e in self._entries)

    async def _allocate_and_append(self, draft: EntryDraft) -> Entry:
        self._require_connection()
        serial = serial_after(e.serial_number for e in self._entries)

        # Other coroutines may run here; see the class docstring.
        await asyncio.sleep(self.latency)

        entry = draft.to_entry(str(uuid.uuid4()), serial, utc_now())
        self._entries.append(entry)

        logger.debug(
            "Entry appended to memory",
            extra={"entry_id": entry.id, "serial_number": serial},
        )
        return entry

    async def _pause(self) -> None:
        self._require_connection()
        await asyncio.sleep(self.latency)

    def _require_connection(self) -> None:
        if not self._connected:
            raise BackendConnectionError("Not connected")

    def _index_of(self, entry_id: str) -> int:
        for index, entry in enumerate(self._entries):
            if entry.id == entry_id:
                return index
        raise NotFoundError(entry_id)

    # Testing helpers

    def seed(self, entries: Iterable[Entry]) -> None:
        """Load pre-built entries (testing and demo helper)."""
        self._entries.extend(entries)

    @property
    def entry_count(self) -> int:
        """Number of stored entries (testing helper)."""
        return len(self._entries)

    def clear(self) -> None:
        """Drop every stored entry (testing helper)."""
        self._entries.clear()

    @staticmethod
    def sample_entries(count: int = 5) -> List[Entry]:
        """Demo entries alternating between github.com and twitter.com.

        Args:
            count: Number of entries to build

        Returns:
            Entries with serials 1..count, oldest last
        """
        now = utc_now()
        entries = []
        for i in range(count):
            site = _SAMPLE_SITES[i % 2]
            entries.append(
                Entry(
                    id=f"sample-{uuid.uuid4()}",
                    serial_number=i + 1,
                    name=f"Sample Account {i + 1}",
                    username=f"user{i + 1}",
                    password=f"password{i + 1}",
                    website=site,
                    logo=f"https://www.google.com/s2/favicons?domain={site}&sz=128",
                    created_at=now - timedelta(days=i),
                    updated_at=now,
                )
            )
        return entries
