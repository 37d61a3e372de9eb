"""
Materialized store for the Patron indexer.

Backends:
    - SqliteStore: durable, single database file
    - InMemoryStore: process-local, for tests and local development
"""

from .base import (
    AccessPurchase,
    Content,
    ContentKind,
    ContentType,
    CreatorProfile,
    CreatorsPage,
    CursorStore,
    HandleRecord,
    MaterializedStore,
    ProfilePatch,
    SkippedEvent,
    Store,
    create_store,
    decode_cursor,
    encode_cursor,
)
from .memory_store import InMemoryStore
from .sqlite_store import SqliteStore

__all__ = [
    "AccessPurchase",
    "Content",
    "ContentKind",
    "ContentType",
    "CreatorProfile",
    "CreatorsPage",
    "CursorStore",
    "HandleRecord",
    "InMemoryStore",
    "MaterializedStore",
    "ProfilePatch",
    "SkippedEvent",
    "SqliteStore",
    "Store",
    "create_store",
    "decode_cursor",
    "encode_cursor",
]
