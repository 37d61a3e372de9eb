"""
Base protocol and types for the ledger abstraction.

The indexer consumes the ledger through two read paths:
- an ordered, paginated event query per event type
- object reads (single and batched) to fill fields absent from events

Invariants:
    - EventId uniquely identifies an event and doubles as a resume cursor
    - Pages are returned in ascending ledger order unless asked otherwise
    - An object that does not exist reads as None, never as an exception

How to change safely:
    - Protocol changes require updating every implementation
    - Keep EventId.to_token() stable: stored cursors depend on it
"""

from __future__ import annotations

import json
from abc import abstractmethod
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from ..config import LedgerConfig


@dataclass(frozen=True)
class EventId:
    """Position of an event in the ledger: transaction digest plus sequence.

    The ledger accepts an EventId as the exclusive start cursor of a query.
    """

    tx_digest: str
    event_seq: str

    def to_dict(self) -> dict[str, str]:
        return {"txDigest": self.tx_digest, "eventSeq": self.event_seq}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> EventId:
        return cls(tx_digest=str(data["txDigest"]), event_seq=str(data["eventSeq"]))

    def to_token(self) -> str:
        """Serialize to the opaque token stored in the cursor table."""
        return json.dumps(self.to_dict(), sort_keys=True)

    @classmethod
    def from_token(cls, token: str) -> EventId:
        """Parse a stored cursor token.

        Raises:
            ValueError: If the token is not a serialized EventId
        """
        try:
            data = json.loads(token)
            return cls.from_dict(data)
        except (json.JSONDecodeError, KeyError, TypeError) as e:
            raise ValueError(f"Invalid cursor token: {token!r}") from e

    def __str__(self) -> str:
        return f"{self.tx_digest}:{self.event_seq}"


@dataclass
class LedgerEvent:
    """An event emitted by the ledger.

    Attributes:
        id: Position of the event
        event_type: Fully qualified event type
        payload: Structured event payload (parsed JSON)
        timestamp_ms: Checkpoint timestamp, if the node reported one
        sender: Address that sent the emitting transaction
    """

    id: EventId
    event_type: str
    payload: dict[str, Any]
    timestamp_ms: int | None = None
    sender: str | None = None


@dataclass
class EventPage:
    """One page of an event query."""

    events: list[LedgerEvent] = field(default_factory=list)
    next_cursor: EventId | None = None
    has_next_page: bool = False


@runtime_checkable
class Ledger(Protocol):
    """Read interface to the ledger.

    Example:
        >>> page = await ledger.query_events(event_type, cursor=None, limit=50)
        >>> for event in page.events:
        ...     print(event.id, event.payload)
    """

    @abstractmethod
    async def query_events(
        self,
        event_type: str,
        cursor: EventId | None,
        limit: int,
        descending: bool = False,
    ) -> EventPage:
        """Fetch the next page of events of one type after `cursor`.

        Raises:
            TransientNetworkError: If the node could not be reached
            LedgerRpcError: If the node rejected the query
        """
        ...

    @abstractmethod
    async def get_object(self, object_id: str) -> dict[str, Any] | None:
        """Read the current fields of an object, or None if it does not exist."""
        ...

    @abstractmethod
    async def multi_get_objects(self, object_ids: list[str]) -> list[dict[str, Any] | None]:
        """Batched get_object; results are in the same order as `object_ids`."""
        ...

    @abstractmethod
    async def close(self) -> None:
        """Release network resources."""
        ...


def create_ledger(config: "LedgerConfig") -> Ledger:
    """Factory function to create a ledger client from configuration."""
    from .sui import SuiLedgerClient

    return SuiLedgerClient(config.endpoint, timeout_seconds=config.timeout_seconds)
