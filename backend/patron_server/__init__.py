"""
Patron Server - off-chain indexer for creator profiles, content and access passes.

This package keeps a queryable view of ledger state fresh:
- The ledger event log is the source of truth
- A MaterializedStore (SQLite or in-memory) holds the derived view
- An EventSynchronizer polls events per type and applies them idempotently
- An aiohttp REST surface serves paginated reads and triggers synchronization

Architecture:
    ┌─────────────┐  queryEvents   ┌──────────────────┐  upserts  ┌─────────────────┐
    │   Ledger    │───────────────▶│ EventSynchronizer│──────────▶│MaterializedStore│
    │ (JSON-RPC)  │◀───────────────│                  │──────────▶│  + CursorStore  │
    └─────────────┘   getObject    └────────▲─────────┘  cursors  └────────┬────────┘
                                            │ GET /events                  │
                                   ┌────────┴─────────┐    reads           │
                                   │  HTTP (aiohttp)  │◀───────────────────┘
                                   └──────────────────┘

Invariants:
    - The ledger is the source of truth; the store can be rebuilt from cursor zero
    - Applying the same event twice leaves the store unchanged
    - Cursors advance only after the fetched page has been processed
    - One event type's failure never blocks another event type

How to change safely:
    - New event types need a versioned decoder in sync/events.py
    - Both store backends must satisfy the same contract (tests run against both)
    - Never rewrite created_at of an existing creator (keyset pagination depends on it)
"""

__version__ = "0.3.0"

__all__ = ["__version__"]
