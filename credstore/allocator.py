"""
Serial number allocation for credstore.

A new entry's serial number is one more than the largest serial
currently visible, or 1 for an empty store. The remote ATOMIC mode
keeps a counter instead, which only moves forward, so a serial freed
by deleting the newest entry is not handed out again there.

Allocation modes:
    - SCAN: read the maximum, then insert. Another create can run
      between the read and the insert, so two concurrent creates may
      receive the same serial.
    - ATOMIC: the read and the insert form one critical section
      (a lock for the in-memory backend, a compare-and-swap counter for
      the remote backend). Concurrent creates get distinct serials.

Invariants:
    - Sequential creates on an empty store yield 1, 2, ..., N
    - Deleting entries never renumbers the survivors
"""

from __future__ import annotations

from enum import Enum
from typing import Iterable, Optional


class AllocationMode(Enum):
    """Supported serial allocation strategies."""

    SCAN = "scan"
    ATOMIC = "atomic"


def next_serial(current_max: Optional[int]) -> int:
    """Serial that follows ``current_max`` (``None`` means an empty store)."""
    return (current_max or 0) + 1


def serial_after(serials: Iterable[int]) -> int:
    """Serial that follows the largest of ``serials``."""
    return next_serial(max(serials, default=0))
