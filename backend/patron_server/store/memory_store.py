"""
In-memory materialized store for testing and local development.

Invariants:
    - State is instance-scoped; two stores never share rows
    - Semantics match SqliteStore exactly (tests run against both)
    - All mutations happen under one asyncio lock

How to change safely:
    - Any change to SqliteStore behavior must be mirrored here
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import replace

from ..errors import UnknownCreatorError
from .base import (
    AccessPurchase,
    Content,
    CreatorProfile,
    CreatorsPage,
    HandleRecord,
    ProfilePatch,
    SkippedEvent,
    check_stored_ints,
    decode_cursor,
    encode_cursor,
    validate_limit,
)

logger = logging.getLogger(__name__)


class InMemoryStore:
    """Process-local MaterializedStore and CursorStore.

    Example:
        >>> store = InMemoryStore()
        >>> await store.initialize()
        >>> await store.upsert_creator(profile)
    """

    def __init__(self) -> None:
        self._creators: dict[str, CreatorProfile] = {}
        self._content: dict[str, Content] = {}
        self._purchases: dict[str, AccessPurchase] = {}
        self._handles: dict[str, HandleRecord] = {}
        self._skipped: dict[tuple[str, str], SkippedEvent] = {}
        self._cursors: dict[str, str] = {}
        self._lock = asyncio.Lock()

    async def initialize(self) -> None:
        logger.debug("InMemoryStore initialized")

    async def close(self) -> None:
        pass

    def _with_counts(self, creator: CreatorProfile) -> CreatorProfile:
        pid = creator.profile_id
        return replace(
            creator,
            content_count=sum(1 for c in self._content.values() if c.profile_id == pid),
            total_supporters=sum(1 for p in self._purchases.values() if p.profile_id == pid),
        )

    def _require_creator(self, profile_id: str) -> None:
        if profile_id not in self._creators:
            raise UnknownCreatorError(profile_id)

    async def upsert_creator(self, creator: CreatorProfile) -> CreatorProfile:
        check_stored_ints(price=creator.price, created_at=creator.created_at)
        async with self._lock:
            existing = self._creators.get(creator.profile_id)
            created_at = existing.created_at if existing else creator.created_at
            self._creators[creator.profile_id] = replace(
                creator, created_at=created_at, content_count=0, total_supporters=0
            )
            return self._with_counts(self._creators[creator.profile_id])

    async def update_creator(self, profile_id: str, patch: ProfilePatch) -> CreatorProfile | None:
        check_stored_ints(price=patch.price)
        async with self._lock:
            existing = self._creators.get(profile_id)
            if existing is None:
                return None
            updated = replace(existing, **patch.changes())
            self._creators[profile_id] = updated
            return self._with_counts(updated)

    async def get_creator(self, profile_id: str) -> CreatorProfile | None:
        creator = self._creators.get(profile_id)
        return self._with_counts(creator) if creator else None

    async def get_creators(self, limit: int, cursor: str | None = None) -> CreatorsPage:
        validate_limit(limit)
        ordered = sorted(self._creators.values(), key=lambda c: (c.created_at, c.profile_id))
        if cursor:
            position = decode_cursor(cursor)
            ordered = [c for c in ordered if (c.created_at, c.profile_id) > position]

        items = [self._with_counts(c) for c in ordered[:limit]]
        next_cursor = None
        if len(ordered) > limit and items:
            next_cursor = encode_cursor(items[-1].created_at, items[-1].profile_id)
        return CreatorsPage(items=items, next_cursor=next_cursor)

    async def upsert_content(self, content: Content) -> bool:
        check_stored_ints(created_at=content.created_at)
        async with self._lock:
            self._require_creator(content.profile_id)
            if content.content_id in self._content:
                return False
            self._content[content.content_id] = content
            return True

    async def add_access_purchase(self, purchase: AccessPurchase) -> bool:
        check_stored_ints(
            amount=purchase.amount, timestamp=purchase.timestamp, expires_at=purchase.expires_at
        )
        async with self._lock:
            self._require_creator(purchase.profile_id)
            if purchase.access_pass_id in self._purchases:
                return False
            self._purchases[purchase.access_pass_id] = purchase
            return True

    async def update_access_expiry(self, access_pass_id: str, expires_at: int) -> bool:
        check_stored_ints(expires_at=expires_at)
        async with self._lock:
            existing = self._purchases.get(access_pass_id)
            if existing is None:
                return False
            if existing.expires_at is not None and existing.expires_at < expires_at:
                self._purchases[access_pass_id] = replace(existing, expires_at=expires_at)
            return True

    async def get_content_by_profile(self, profile_id: str) -> list[Content]:
        rows = [c for c in self._content.values() if c.profile_id == profile_id]
        return sorted(rows, key=lambda c: (c.created_at, c.content_id))

    async def get_supporters(self, profile_id: str) -> list[AccessPurchase]:
        rows = [p for p in self._purchases.values() if p.profile_id == profile_id]
        return sorted(rows, key=lambda p: (-p.timestamp, p.access_pass_id))

    async def upsert_handle(self, record: HandleRecord) -> None:
        check_stored_ints(registered_at=record.registered_at)
        async with self._lock:
            self._handles[record.handle] = record

    async def get_handle(self, handle: str) -> HandleRecord | None:
        return self._handles.get(handle)

    async def record_skipped_event(self, skipped: SkippedEvent) -> None:
        async with self._lock:
            self._skipped[(skipped.event_type, skipped.event_key)] = skipped

    async def get_skipped_events(self, limit: int = 100) -> list[SkippedEvent]:
        validate_limit(limit)
        rows = sorted(self._skipped.values(), key=lambda s: (-s.recorded_at, s.event_key))
        return rows[:limit]

    async def get_cursor(self, event_type: str) -> str | None:
        return self._cursors.get(event_type)

    async def set_cursor(self, event_type: str, token: str) -> None:
        async with self._lock:
            self._cursors[event_type] = token

    async def get_cursors(self) -> dict[str, str]:
        return dict(self._cursors)

    async def stats(self) -> dict[str, int]:
        return {
            "creators": len(self._creators),
            "content": len(self._content),
            "access_purchases": len(self._purchases),
            "handles": len(self._handles),
            "skipped_events": len(self._skipped),
            "cursors": len(self._cursors),
        }
