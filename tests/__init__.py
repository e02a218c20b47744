"""
credstore Test Suite.

This package contains:
- unit/: Unit tests (no I/O; in-memory backend only)
- integration/: Store, remote backend and CLI tests against an
  in-process document-store proxy (fake_proxy.py)
"""
