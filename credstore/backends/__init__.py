"""
Persistence backends for the credential entry store.

This package provides a pluggable backend interface supporting:
- Remote document-store proxy (production)
- In-memory (tests, local development, demos)

Invariants:
    - Backends are owned by one EntryStore and chosen at construction
    - Serial numbers follow max + 1, atomically or not per AllocationMode
    - Username/website uniqueness is advisory and never enforced here

How to change safely:
    - New backends must implement the EntryBackend protocol
    - Run the shared store tests against every backend
"""

from .base import EntryBackend, create_backend
from .memory import InMemoryEntryBackend
from .remote import RemoteEntryBackend

__all__ = [
    # Protocol
    "EntryBackend",
    # Factory
    "create_backend",
    # Implementations
    "InMemoryEntryBackend",
    "RemoteEntryBackend",
]
