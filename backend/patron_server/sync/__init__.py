"""
Ledger-to-store synchronization.

Modules:
    - events: versioned event/object decoders
    - synchronizer: EventSynchronizer and SyncResult
"""

from .events import TRACKED_EVENTS, decode_event, full_event_type
from .synchronizer import EventSynchronizer, SyncResult

__all__ = [
    "EventSynchronizer",
    "SyncResult",
    "TRACKED_EVENTS",
    "decode_event",
    "full_event_type",
]
