"""
Ledger access for the Patron indexer.

The ledger is the source of truth; this package provides read-only access
to its event log and object state.

Implementations:
    - SuiLedgerClient: Sui full node over JSON-RPC (httpx)
    - InMemoryLedger: In-memory ledger for testing
"""

from .base import EventId, EventPage, Ledger, LedgerEvent, create_ledger
from .memory import InMemoryLedger
from .sui import SuiLedgerClient

__all__ = [
    "EventId",
    "EventPage",
    "InMemoryLedger",
    "Ledger",
    "LedgerEvent",
    "SuiLedgerClient",
    "create_ledger",
]
