"""
credstore - Credential entry store for the password dashboard.

This package provides the storage layer behind the dashboard:
- Entry and EntryDraft value types
- EntryStore facade over a pluggable backend
- In-memory and remote document-store backends
- Debounced, advisory username/website uniqueness check

Example:
    >>> from credstore import EntryStore, InMemoryEntryBackend
    >>>
    >>> async with EntryStore(InMemoryEntryBackend()) as store:
    ...     entry = await store.create({
    ...         "name": "GH", "username": "bob",
    ...         "password": "x", "website": "github.com",
    ...     })
    ...     print(entry.serial_number)
    1

Invariants:
    - Serial numbers are assigned at creation and never renumbered
    - Ids are never reused and never change
    - Uniqueness of username/website is checked, not enforced

Version: 1.0.0
"""

__version__ = "1.0.0"

from .allocator import AllocationMode
from .backends import (
    EntryBackend,
    InMemoryEntryBackend,
    RemoteEntryBackend,
    create_backend,
)
from .config import BackendKind, Settings
from .entry import Entry, EntryDraft
from .errors import (
    BackendConnectionError,
    BackendError,
    CredStoreError,
    NotFoundError,
    UnknownFieldError,
    ValidationError,
)
from .store import EntryStore
from .validator import Debouncer, UniquenessValidator

__all__ = [
    # Version
    "__version__",
    # Values
    "Entry",
    "EntryDraft",
    # Store
    "EntryStore",
    "EntryBackend",
    "InMemoryEntryBackend",
    "RemoteEntryBackend",
    "create_backend",
    "AllocationMode",
    # Validation
    "Debouncer",
    "UniquenessValidator",
    # Configuration
    "Settings",
    "BackendKind",
    # Errors
    "CredStoreError",
    "NotFoundError",
    "ValidationError",
    "UnknownFieldError",
    "BackendError",
    "BackendConnectionError",
]
