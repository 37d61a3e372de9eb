"""
Patron Test Suite.

This package contains:
- unit/: Unit tests (no network, SQLite in temporary directories)
- integration/: Integration tests (synchronizer, publication saga, REST API
  over in-memory ledger and storage doubles)
"""
