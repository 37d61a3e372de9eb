"""
Event synchronizer for the Patron indexer.

The EventSynchronizer polls the ledger event log per tracked event type and
applies each event to the MaterializedStore. For each type independently:

    1. read the cursor (absent = start of stream)
    2. fetch one bounded page of events after the cursor
    3. decode every event through the versioned schema mapper
    4. prefetch the objects the page references in one batched read
    5. apply each event in ledger order
    6. advance the cursor to the last paged position

Invariants:
    - Errors are collected as data; sync() never raises
    - A failed query or prefetch leaves that type's cursor untouched
    - An event that fails to apply for any reason other than a ledger read
      is recorded as a SkippedEvent and the cursor still moves past its page
    - One type's failure never blocks another type
    - Re-running over already applied events leaves the store unchanged

How to change safely:
    - New event types need a decoder in events.py and a branch in _apply
    - Resolution rules must stay idempotent: object fields are current state,
      so replaying old events converges to the same rows
    - Test idempotency by running sync() twice over the same log
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable

from ..errors import ApplyError, LedgerError, PatronError
from ..ledger.base import EventId, EventPage, Ledger, LedgerEvent
from ..store.base import (
    AccessPurchase,
    Content,
    ContentType,
    CreatorProfile,
    HandleRecord,
    ProfilePatch,
    SkippedEvent,
    Store,
)
from . import events as ev
from .events import TRACKED_EVENTS, DecodedEvent, decode_event, full_event_type

logger = logging.getLogger(__name__)


@dataclass
class SyncResult:
    """Outcome of one sync() run.

    Attributes:
        processed: Events applied successfully
        errors: Human-readable error strings, one per failure
        skipped: Events recorded as skipped in this run
        pages: Pages fetched per event type
    """

    processed: int = 0
    errors: list[str] = field(default_factory=list)
    skipped: int = 0
    pages: dict[str, int] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.errors

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"ok": True, "processed": self.processed}
        if self.errors:
            data["errors"] = list(self.errors)
        return data


class _PageAborted(Exception):
    """Infrastructure failure mid-page; the cursor must not move."""


class EventSynchronizer:
    """Polls ledger events and keeps the materialized store fresh.

    Overlapping sync() calls are safe: every store write is idempotent and
    each type's cursor is read once and written once per page.

    Example:
        >>> sync = EventSynchronizer(ledger, store, package_id="0xabc")
        >>> result = await sync.sync()
        >>> print(result.processed, result.errors)
    """

    def __init__(
        self,
        ledger: Ledger,
        store: Store,
        package_id: str,
        page_size: int = 50,
        max_pages_per_run: int = 1,
        event_types: list[str] | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the synchronizer.

        Args:
            ledger: Ledger to read events and objects from
            store: Materialized store (also used as cursor store)
            package_id: Package whose events are tracked
            page_size: Events requested per query
            max_pages_per_run: Pages fetched per type in one sync() call
            event_types: Subset of tracked event names (default: all)
            clock: Wall clock in seconds, for skipped-event timestamps
        """
        self.ledger = ledger
        self.store = store
        self.package_id = package_id
        self.page_size = page_size
        self.max_pages_per_run = max_pages_per_run
        self.event_types = list(event_types or TRACKED_EVENTS)
        self._clock = clock

        unknown = [name for name in self.event_types if name not in TRACKED_EVENTS]
        if unknown:
            raise ValueError(f"Untracked event types: {unknown}")

    async def sync(self) -> SyncResult:
        """Run one synchronization pass over every tracked event type."""
        result = SyncResult()
        started = time.monotonic()

        for name in self.event_types:
            try:
                await self._sync_type(name, result)
            except Exception as e:
                result.errors.append(f"query {name}: {e}")
                logger.exception("Sync failed for event type", extra={"event_type": name})

        logger.info(
            "Sync completed",
            extra={
                "processed": result.processed,
                "errors": len(result.errors),
                "skipped": result.skipped,
                "duration_ms": int((time.monotonic() - started) * 1000),
            },
        )
        return result

    async def _sync_type(self, name: str, result: SyncResult) -> None:
        event_type = full_event_type(self.package_id, name)

        token = await self.store.get_cursor(name)
        try:
            cursor = EventId.from_token(token) if token else None
        except ValueError as e:
            result.errors.append(f"query {name}: {e}")
            logger.error("Stored cursor is corrupt", extra={"event_type": name, "cursor": token})
            return

        pages = 0
        while True:
            try:
                page = await self.ledger.query_events(event_type, cursor, self.page_size)
            except LedgerError as e:
                result.errors.append(f"query {name}: {e.message}")
                logger.warning(
                    "Event query failed", extra={"event_type": name, "error": e.message}
                )
                return
            pages += 1
            result.pages[name] = pages

            try:
                await self._apply_page(name, page, result)
            except _PageAborted:
                return

            next_cursor = page.next_cursor or (page.events[-1].id if page.events else None)
            if next_cursor is not None and next_cursor != cursor:
                await self.store.set_cursor(name, next_cursor.to_token())
                cursor = next_cursor

            if not page.has_next_page or pages >= self.max_pages_per_run:
                return

    async def _apply_page(self, name: str, page: EventPage, result: SyncResult) -> None:
        decoded: list[tuple[LedgerEvent, DecodedEvent | ApplyError]] = []
        for event in page.events:
            try:
                decoded.append((event, decode_event(name, event.payload)))
            except ApplyError as e:
                decoded.append((event, e))
            except Exception as e:
                decoded.append((event, ApplyError(f"{type(e).__name__}: {e}")))

        object_ids: list[str] = []
        for _, item in decoded:
            if not isinstance(item, ApplyError):
                for object_id in ev.referenced_objects(item):
                    if object_id not in object_ids:
                        object_ids.append(object_id)

        objects: dict[str, dict[str, Any] | None] = {}
        if object_ids:
            try:
                fetched = await self.ledger.multi_get_objects(object_ids)
            except LedgerError as e:
                result.errors.append(f"query {name}: objects: {e.message}")
                logger.warning(
                    "Object prefetch failed", extra={"event_type": name, "error": e.message}
                )
                raise _PageAborted() from e
            objects = dict(zip(object_ids, fetched))

        for event, item in decoded:
            try:
                if isinstance(item, ApplyError):
                    raise item
                await self._apply(item, event, objects)
                result.processed += 1
            except LedgerError as e:
                result.errors.append(f"{name} {event.id}: {e.message}")
                logger.warning(
                    "Ledger read failed while applying",
                    extra={"event_type": name, "event_id": str(event.id), "error": e.message},
                )
                raise _PageAborted() from e
            except PatronError as e:
                result.errors.append(f"{name} {event.id}: {e.message}")
                result.skipped += 1
                await self._record_skipped(name, event, e.message)
            except Exception as e:
                logger.exception(
                    "Unexpected error applying event",
                    extra={"event_type": name, "event_id": str(event.id)},
                )
                result.errors.append(f"{name} {event.id}: {e}")
                result.skipped += 1
                await self._record_skipped(name, event, f"{type(e).__name__}: {e}")

    async def _record_skipped(self, name: str, event: LedgerEvent, error: str) -> None:
        logger.warning(
            "Skipping event",
            extra={"event_type": name, "event_id": str(event.id), "error": error},
        )
        await self.store.record_skipped_event(
            SkippedEvent(
                event_type=name,
                event_key=str(event.id),
                error=error,
                recorded_at=int(self._clock() * 1000),
            )
        )

    async def _object(
        self, object_id: str, objects: dict[str, dict[str, Any] | None]
    ) -> dict[str, Any] | None:
        if object_id in objects:
            return objects[object_id]
        fields = await self.ledger.get_object(object_id)
        objects[object_id] = fields
        return fields

    # Application

    async def _apply(
        self,
        item: DecodedEvent,
        event: LedgerEvent,
        objects: dict[str, dict[str, Any] | None],
    ) -> None:
        if isinstance(item, ev.ProfileCreated):
            await self._apply_profile_created(item, objects)
        elif isinstance(item, ev.ProfileUpdated):
            await self._apply_profile_updated(item, event, objects)
        elif isinstance(item, ev.ContentPublished):
            await self._apply_content_published(item, objects)
        elif isinstance(item, ev.AccessPurchased):
            await self._apply_access_purchased(item, objects)
        elif isinstance(item, ev.SubscriptionRenewed):
            if not await self.store.update_access_expiry(item.access_pass_id, item.new_expires_at):
                raise ApplyError(f"access pass {item.access_pass_id} is not indexed")
        elif isinstance(item, ev.HandleRegistered):
            await self.store.upsert_handle(
                HandleRecord(
                    handle=item.handle, profile_id=item.profile_id, registered_at=item.timestamp
                )
            )
        else:
            raise ApplyError(f"no applier for {type(item).__name__}")

    async def _apply_profile_created(
        self, item: ev.ProfileCreated, objects: dict[str, dict[str, Any] | None]
    ) -> None:
        fields = await self._object(item.profile_id, objects)
        obj = ev.decode_profile_object(fields) if fields else None

        price = obj.price if obj and obj.price is not None else item.price
        if price is None:
            raise ApplyError(f"price of profile {item.profile_id} is unknown")

        await self.store.upsert_creator(
            CreatorProfile(
                profile_id=item.profile_id,
                owner=(obj.owner if obj else None) or item.owner,
                name=(obj.name if obj else None) or item.name,
                bio=(obj.bio if obj else None) or "",
                avatar_blob_id=obj.avatar_blob_id if obj else None,
                alias=obj.alias if obj else None,
                price=price,
                created_at=item.timestamp,
            )
        )

    async def _apply_profile_updated(
        self,
        item: ev.ProfileUpdated,
        event: LedgerEvent,
        objects: dict[str, dict[str, Any] | None],
    ) -> None:
        fields = await self._object(item.profile_id, objects)
        existing = await self.store.get_creator(item.profile_id)

        if existing is None:
            created_at = item.timestamp or event.timestamp_ms or int(self._clock() * 1000)
            await self._insert_creator_from_object(item.profile_id, fields, created_at)
            return

        if fields:
            obj = ev.decode_profile_object(fields)
            patch = ProfilePatch(
                name=obj.name,
                bio=obj.bio,
                avatar_blob_id=obj.avatar_blob_id,
                alias=obj.alias,
                price=obj.price,
            )
        else:
            patch = ProfilePatch(
                name=item.name, bio=item.bio, avatar_blob_id=item.avatar_blob_id, price=item.price
            )
        await self.store.update_creator(item.profile_id, patch)

    async def _apply_content_published(
        self, item: ev.ContentPublished, objects: dict[str, dict[str, Any] | None]
    ) -> None:
        await self._ensure_creator(item.profile_id, item.timestamp, objects)

        fields = await self._object(item.content_id, objects)
        obj = ev.decode_content_object(fields) if fields else None

        await self.store.upsert_content(
            Content(
                content_id=item.content_id,
                profile_id=item.profile_id,
                title=obj.title if obj else "",
                description=obj.description if obj else "",
                blob_id=(obj.blob_id if obj else None) or item.blob_id,
                content_type=ContentType.parse(
                    (obj.content_type if obj else None) or item.content_type
                ),
                created_at=item.timestamp,
            )
        )

    async def _apply_access_purchased(
        self, item: ev.AccessPurchased, objects: dict[str, dict[str, Any] | None]
    ) -> None:
        await self._ensure_creator(item.profile_id, item.timestamp, objects)
        await self.store.add_access_purchase(
            AccessPurchase(
                access_pass_id=item.access_pass_id,
                profile_id=item.profile_id,
                supporter=item.supporter,
                amount=item.amount,
                timestamp=item.timestamp,
                expires_at=item.expires_at,
            )
        )

    async def _ensure_creator(
        self, profile_id: str, created_at: int, objects: dict[str, dict[str, Any] | None]
    ) -> None:
        """Index the owning creator from its object if it is not indexed yet."""
        if await self.store.get_creator(profile_id) is not None:
            return
        fields = await self._object(profile_id, objects)
        await self._insert_creator_from_object(profile_id, fields, created_at)

    async def _insert_creator_from_object(
        self, profile_id: str, fields: dict[str, Any] | None, created_at: int
    ) -> None:
        if not fields:
            raise ApplyError(f"creator {profile_id} is not indexed and its object is not readable")
        obj = ev.decode_profile_object(fields)
        if obj.owner is None or obj.name is None or obj.price is None:
            raise ApplyError(f"profile object {profile_id} lacks owner, name or price")

        await self.store.upsert_creator(
            CreatorProfile(
                profile_id=profile_id,
                owner=obj.owner,
                name=obj.name,
                bio=obj.bio or "",
                avatar_blob_id=obj.avatar_blob_id,
                alias=obj.alias,
                price=obj.price,
                created_at=created_at,
            )
        )
        logger.info("Indexed creator from object", extra={"profile_id": profile_id})
