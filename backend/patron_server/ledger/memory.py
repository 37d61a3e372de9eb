"""
In-memory ledger implementation for testing.

This module provides a simple in-memory ledger for:
- Unit tests
- Integration tests
- Local development without a full node

Invariants:
    - All data is lost on process exit
    - Events of one type are returned in emission order, like a full node
    - Cursors are exclusive: a query returns events strictly after the cursor

How to change safely:
    - This is test-only code, changes don't affect production
    - Keep interface compatible with the Ledger protocol
    - Add features to help with testing scenarios
"""

from __future__ import annotations

import asyncio
import hashlib
import logging
import time
from collections import defaultdict
from typing import Any

from ..errors import LedgerError, TransientNetworkError
from .base import EventId, EventPage, LedgerEvent

logger = logging.getLogger(__name__)


class InMemoryLedger:
    """In-memory implementation of the Ledger protocol.

    Events are stored per type; objects are stored as plain field dicts.
    Failure injection makes the next N calls of a method raise.

    Example:
        >>> ledger = InMemoryLedger()
        >>> ledger.put_object("0xp1", {"name": "Alice", "price": "100"})
        >>> ledger.emit("0xpkg::suipatron::ProfileCreated", {"profile_id": "0xp1", ...})
        >>> page = await ledger.query_events("0xpkg::suipatron::ProfileCreated", None, 50)
    """

    def __init__(self) -> None:
        self._events: dict[str, list[LedgerEvent]] = defaultdict(list)
        self._objects: dict[str, dict[str, Any]] = {}
        self._failures: dict[str, list[Exception]] = defaultdict(list)
        self._tx_counter = 0
        self.call_counts: dict[str, int] = defaultdict(int)
        self._lock = asyncio.Lock()

    # Test setup helpers

    def emit(
        self,
        event_type: str,
        payload: dict[str, Any],
        timestamp_ms: int | None = None,
        sender: str | None = None,
    ) -> LedgerEvent:
        """Append an event to the log (testing helper).

        Each call simulates one transaction emitting one event.
        """
        self._tx_counter += 1
        digest = hashlib.sha256(f"tx-{self._tx_counter}".encode()).hexdigest()[:44]
        event = LedgerEvent(
            id=EventId(tx_digest=digest, event_seq="0"),
            event_type=event_type,
            payload=payload,
            timestamp_ms=timestamp_ms if timestamp_ms is not None else int(time.time() * 1000),
            sender=sender,
        )
        self._events[event_type].append(event)
        return event

    def put_object(self, object_id: str, fields: dict[str, Any]) -> None:
        """Create or replace an object (testing helper)."""
        self._objects[object_id] = dict(fields)

    def remove_object(self, object_id: str) -> None:
        """Delete an object so reads return None (testing helper)."""
        self._objects.pop(object_id, None)

    def inject_failure(self, method: str, exception: Exception | None = None, times: int = 1) -> None:
        """Make the next `times` calls of `method` raise (testing helper).

        Args:
            method: query_events, get_object or multi_get_objects
            exception: Exception to raise (default TransientNetworkError)
            times: Number of calls that fail
        """
        exc = exception or TransientNetworkError(f"injected failure in {method}")
        self._failures[method].extend([exc] * times)

    def events_of(self, event_type: str) -> list[LedgerEvent]:
        """All emitted events of a type (testing helper)."""
        return list(self._events.get(event_type, []))

    def _maybe_fail(self, method: str) -> None:
        self.call_counts[method] += 1
        pending = self._failures.get(method)
        if pending:
            raise pending.pop(0)

    # Ledger protocol

    async def query_events(
        self,
        event_type: str,
        cursor: EventId | None,
        limit: int,
        descending: bool = False,
    ) -> EventPage:
        async with self._lock:
            self._maybe_fail("query_events")
            events = list(self._events.get(event_type, []))
            if descending:
                events.reverse()

            start = 0
            if cursor is not None:
                ids = [e.id for e in events]
                if cursor not in ids:
                    raise LedgerError(f"Unknown cursor for {event_type}: {cursor}")
                start = ids.index(cursor) + 1

            page = events[start : start + limit]
            has_next = start + limit < len(events)
            next_cursor = page[-1].id if page else cursor

            logger.debug(
                "In-memory events queried",
                extra={"event_type": event_type, "count": len(page), "has_next": has_next},
            )
            return EventPage(events=page, next_cursor=next_cursor, has_next_page=has_next)

    async def get_object(self, object_id: str) -> dict[str, Any] | None:
        self._maybe_fail("get_object")
        fields = self._objects.get(object_id)
        return dict(fields) if fields is not None else None

    async def multi_get_objects(self, object_ids: list[str]) -> list[dict[str, Any] | None]:
        self._maybe_fail("multi_get_objects")
        results = []
        for object_id in object_ids:
            fields = self._objects.get(object_id)
            results.append(dict(fields) if fields is not None else None)
        return results

    async def close(self) -> None:
        """Nothing to release for in-memory."""
        logger.debug("InMemoryLedger closed")
