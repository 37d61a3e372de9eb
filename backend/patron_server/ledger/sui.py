"""
Sui full-node JSON-RPC ledger client.

Uses httpx to call:
- suix_queryEvents      (paginated event query by MoveEventType)
- sui_getObject         (current object fields)
- sui_multiGetObjects   (batched object fields)

Invariants:
    - Transport failures surface as TransientNetworkError
    - JSON-RPC error objects surface as LedgerRpcError
    - Missing objects read as None
    - Responses of an unexpected shape surface as LedgerRpcError

How to change safely:
    - Keep object field extraction in _extract_fields; every caller relies on it
    - Node responses vary between releases; test against a live node before upgrading
"""

from __future__ import annotations

import itertools
import logging
from typing import Any

import httpx

from ..errors import LedgerRpcError, TransientNetworkError
from .base import EventId, EventPage, LedgerEvent

logger = logging.getLogger(__name__)

# sui_multiGetObjects rejects larger batches
MAX_OBJECTS_PER_CALL = 50


class SuiLedgerClient:
    """Ledger implementation backed by a Sui full node.

    Example:
        >>> ledger = SuiLedgerClient("https://fullnode.testnet.sui.io")
        >>> page = await ledger.query_events("0xabc::suipatron::ProfileCreated", None, 50)
        >>> await ledger.close()
    """

    def __init__(
        self,
        rpc_url: str,
        timeout_seconds: float = 15.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            rpc_url: Full node JSON-RPC URL
            timeout_seconds: Per-request timeout
            client: Optional pre-built httpx client (tests inject a MockTransport)
        """
        self.rpc_url = rpc_url
        self._client = client or httpx.AsyncClient(timeout=timeout_seconds)
        self._ids = itertools.count(1)

    async def close(self) -> None:
        await self._client.aclose()

    async def _call(self, method: str, params: list[Any]) -> Any:
        request = {"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": params}
        try:
            response = await self._client.post(self.rpc_url, json=request)
            response.raise_for_status()
            body = response.json()
        except httpx.HTTPError as e:
            raise TransientNetworkError(f"{method} failed: {e}") from e
        except ValueError as e:
            raise TransientNetworkError(f"{method} returned invalid JSON: {e}") from e

        if not isinstance(body, dict):
            raise LedgerRpcError(f"{method} returned a malformed response")
        if "error" in body:
            error = body["error"] if isinstance(body["error"], dict) else {}
            raise LedgerRpcError(
                f"{method}: {error.get('message', 'unknown error')}",
                rpc_code=error.get("code"),
            )
        return body.get("result")

    async def query_events(
        self,
        event_type: str,
        cursor: EventId | None,
        limit: int,
        descending: bool = False,
    ) -> EventPage:
        result = await self._call(
            "suix_queryEvents",
            [
                {"MoveEventType": event_type},
                cursor.to_dict() if cursor else None,
                limit,
                descending,
            ],
        )
        try:
            page = _parse_event_page(result or {}, event_type)
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            raise LedgerRpcError(f"suix_queryEvents returned a malformed page: {e!r}") from e

        logger.debug(
            "Queried events",
            extra={"event_type": event_type, "count": len(page.events), "has_next": page.has_next_page},
        )
        return page

    async def get_object(self, object_id: str) -> dict[str, Any] | None:
        result = await self._call("sui_getObject", [object_id, {"showContent": True}])
        return _extract_fields(result)

    async def multi_get_objects(self, object_ids: list[str]) -> list[dict[str, Any] | None]:
        results: list[dict[str, Any] | None] = []
        for start in range(0, len(object_ids), MAX_OBJECTS_PER_CALL):
            batch = object_ids[start : start + MAX_OBJECTS_PER_CALL]
            raw = await self._call("sui_multiGetObjects", [batch, {"showContent": True}])
            if raw is not None and not isinstance(raw, list):
                raise LedgerRpcError("sui_multiGetObjects returned a malformed result")
            results.extend(_extract_fields(item) for item in raw or [])
        return results


def _extract_fields(response: dict[str, Any] | None) -> dict[str, Any] | None:
    """Pull the Move struct fields out of an object response."""
    if not isinstance(response, dict) or response.get("error"):
        return None
    data = response.get("data")
    content = data.get("content") if isinstance(data, dict) else None
    if not isinstance(content, dict):
        return None
    fields = content.get("fields")
    return fields if isinstance(fields, dict) else None


def _parse_event_page(result: dict[str, Any], event_type: str) -> EventPage:
    """Map a suix_queryEvents result onto an EventPage.

    Raises:
        KeyError, TypeError, ValueError, AttributeError: If the node answered
            with an unexpected shape
    """
    events = []
    for raw in result.get("data") or []:
        timestamp = raw.get("timestampMs")
        payload = raw.get("parsedJson") or {}
        if not isinstance(payload, dict):
            raise TypeError(f"parsedJson is {type(payload).__name__}, expected object")
        events.append(
            LedgerEvent(
                id=EventId.from_dict(raw["id"]),
                event_type=raw.get("type", event_type),
                payload=payload,
                timestamp_ms=int(timestamp) if timestamp is not None else None,
                sender=raw.get("sender"),
            )
        )

    next_cursor = result.get("nextCursor")
    return EventPage(
        events=events,
        next_cursor=EventId.from_dict(next_cursor) if next_cursor else None,
        has_next_page=bool(result.get("hasNextPage", False)),
    )
