"""
Read/trigger service behind the REST surface.

The servicer coordinates between the materialized store (for reads) and the
EventSynchronizer (for refreshes). Transport adapters translate its dict
results and raised PatronErrors into responses.

Invariants:
    - Results are JSON-ready dicts with camelCase keys
    - Missing entities raise NotFoundError, bad input raises ValidationError

How to change safely:
    - Keep response shapes backward compatible; clients parse them directly
"""

from __future__ import annotations

import logging
from typing import Any

from .. import __version__
from ..errors import NotFoundError
from ..store.base import Store
from ..sync.synchronizer import EventSynchronizer

logger = logging.getLogger(__name__)


class PatronServicer:
    """Service implementation for the indexer API.

    Attributes:
        store: Materialized store for reads
        synchronizer: Synchronizer run by run_sync(); None disables it
    """

    def __init__(self, store: Store, synchronizer: EventSynchronizer | None = None) -> None:
        self.store = store
        self.synchronizer = synchronizer

    async def list_creators(self, limit: int = 20, cursor: str | None = None) -> dict[str, Any]:
        """List creators in keyset order.

        Args:
            limit: Page size
            cursor: Opaque cursor from a previous page

        Returns:
            {"creators": [...], "nextCursor": str | None, "hasNextPage": bool}
        """
        page = await self.store.get_creators(limit, cursor)
        return {
            "creators": [creator.to_dict() for creator in page.items],
            "nextCursor": page.next_cursor,
            "hasNextPage": page.has_next_page,
        }

    async def get_creator_detail(self, profile_id: str) -> dict[str, Any]:
        """Creator plus its content list.

        Raises:
            NotFoundError: If the creator is not indexed
        """
        creator = await self.store.get_creator(profile_id)
        if creator is None:
            raise NotFoundError(f"Creator not found: {profile_id}", details={"profile_id": profile_id})
        content = await self.store.get_content_by_profile(profile_id)
        return {
            "creator": creator.to_dict(),
            "content": [item.to_dict() for item in content],
        }

    async def get_supporters(self, profile_id: str) -> dict[str, Any]:
        if await self.store.get_creator(profile_id) is None:
            raise NotFoundError(f"Creator not found: {profile_id}", details={"profile_id": profile_id})
        supporters = await self.store.get_supporters(profile_id)
        return {"supporters": [purchase.to_dict() for purchase in supporters]}

    async def get_handle(self, handle: str) -> dict[str, Any]:
        record = await self.store.get_handle(handle)
        if record is None:
            raise NotFoundError(f"Handle not registered: {handle}", details={"handle": handle})
        return record.to_dict()

    async def run_sync(self) -> dict[str, Any]:
        """Run one synchronization pass.

        Returns:
            {"ok": True, "processed": int, "errors"?: [str]}
        """
        if self.synchronizer is None:
            raise NotFoundError("Synchronizer is not configured")
        result = await self.synchronizer.sync()
        return result.to_dict()

    async def health(self) -> dict[str, Any]:
        """Get indexer health status."""
        try:
            cursors = await self.store.get_cursors()
            stats = await self.store.stats()
            skipped = await self.store.get_skipped_events(limit=10)
            healthy = True
        except Exception as e:
            logger.error(f"Health check failed: {e}", exc_info=True)
            cursors, stats, skipped = {}, {}, []
            healthy = False

        return {
            "healthy": healthy,
            "version": __version__,
            "cursors": cursors,
            "stats": stats,
            "recentSkipped": [s.to_dict() for s in skipped],
        }
