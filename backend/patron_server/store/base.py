"""
Materialized view types and store protocols.

The materialized store is the queryable projection of ledger state:
- CreatorProfile rows, one per profile object
- Content rows, one per published content object
- AccessPurchase rows, one per access pass
- Handle rows and skipped-event records
- Per-event-type cursors (CursorStore)

Invariants:
    - content_count and total_supporters are derived from row counts
    - created_at of a creator is never rewritten once the row exists
    - Content and purchases always reference an indexed creator
    - Every write is idempotent: re-applying it leaves the store unchanged
    - Integers outside the signed 64-bit range are rejected with ValidationError
      by every backend before anything is written

How to change safely:
    - Both backends must implement every protocol method identically
    - Keyset cursor tokens are opaque to clients; keep decode_cursor tolerant
      of tokens issued by earlier releases
"""

from __future__ import annotations

import base64
import binascii
import json
from abc import abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from ..errors import ValidationError

if TYPE_CHECKING:
    from ..config import StorageConfig


class ContentKind(str, Enum):
    """Known content kinds; UNKNOWN keeps the raw tag."""

    IMAGE = "image"
    TEXT = "text"
    PDF = "pdf"
    VIDEO = "video"
    AUDIO = "audio"
    UNKNOWN = "unknown"


_MIME_PREFIXES = {
    "image/": ContentKind.IMAGE,
    "text/": ContentKind.TEXT,
    "video/": ContentKind.VIDEO,
    "audio/": ContentKind.AUDIO,
}


@dataclass(frozen=True)
class ContentType:
    """Content type tag as published on the ledger.

    Attributes:
        kind: Parsed kind
        raw: Tag exactly as it appeared in the event
    """

    kind: ContentKind
    raw: str

    @classmethod
    def parse(cls, tag: str) -> ContentType:
        """Parse a ledger content type tag.

        Accepts bare kinds ("image") and MIME types ("image/png",
        "application/pdf"). Anything else becomes UNKNOWN with the raw tag.
        """
        normalized = tag.strip().lower()
        for kind in ContentKind:
            if kind is not ContentKind.UNKNOWN and normalized == kind.value:
                return cls(kind, tag)
        if normalized == "application/pdf":
            return cls(ContentKind.PDF, tag)
        for prefix, kind in _MIME_PREFIXES.items():
            if normalized.startswith(prefix):
                return cls(kind, tag)
        return cls(ContentKind.UNKNOWN, tag)

    @property
    def tag(self) -> str:
        """Value exposed to clients."""
        if self.kind is ContentKind.UNKNOWN:
            return self.raw
        return self.kind.value

    @property
    def is_known(self) -> bool:
        return self.kind is not ContentKind.UNKNOWN


@dataclass
class CreatorProfile:
    """A creator as indexed from the ledger.

    Attributes:
        profile_id: Profile object id
        owner: Owner address
        name: Display name
        bio: Free-text biography
        price: Access price in the smallest currency unit
        created_at: Creation timestamp (Unix ms)
        avatar_blob_id: Avatar blob id in the storage network
        alias: Human-readable name (e.g. a SuiNS name)
        content_count: Number of indexed content rows (derived)
        total_supporters: Number of distinct access purchases (derived)
    """

    profile_id: str
    owner: str
    name: str
    bio: str
    price: int
    created_at: int
    avatar_blob_id: str | None = None
    alias: str | None = None
    content_count: int = 0
    total_supporters: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "profileId": self.profile_id,
            "owner": self.owner,
            "name": self.name,
            "bio": self.bio,
            "avatarBlobId": self.avatar_blob_id,
            "alias": self.alias,
            "price": self.price,
            "contentCount": self.content_count,
            "totalSupporters": self.total_supporters,
            "createdAt": self.created_at,
        }


@dataclass
class ProfilePatch:
    """Partial creator update. A None field means "no change"."""

    name: str | None = None
    bio: str | None = None
    avatar_blob_id: str | None = None
    alias: str | None = None
    price: int | None = None

    def changes(self) -> dict[str, Any]:
        """Fields present in the patch."""
        return {
            key: value
            for key, value in (
                ("name", self.name),
                ("bio", self.bio),
                ("avatar_blob_id", self.avatar_blob_id),
                ("alias", self.alias),
                ("price", self.price),
            )
            if value is not None
        }

    def is_empty(self) -> bool:
        return not self.changes()


@dataclass
class Content:
    """A published content record. Immutable once indexed."""

    content_id: str
    profile_id: str
    title: str
    description: str
    blob_id: str
    content_type: ContentType
    created_at: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "contentId": self.content_id,
            "profileId": self.profile_id,
            "title": self.title,
            "description": self.description,
            "blobId": self.blob_id,
            "contentType": self.content_type.tag,
            "createdAt": self.created_at,
        }


@dataclass
class AccessPurchase:
    """An access pass bought by a supporter.

    Attributes:
        access_pass_id: Access pass object id (idempotency key)
        profile_id: Creator the pass grants access to
        supporter: Buyer address
        amount: Amount paid in the smallest currency unit
        timestamp: Purchase timestamp (Unix ms)
        expires_at: Expiry (Unix ms); None means permanent
    """

    access_pass_id: str
    profile_id: str
    supporter: str
    amount: int
    timestamp: int
    expires_at: int | None = None

    def is_active(self, now_ms: int) -> bool:
        return self.expires_at is None or self.expires_at > now_ms

    def to_dict(self) -> dict[str, Any]:
        return {
            "accessPassId": self.access_pass_id,
            "profileId": self.profile_id,
            "supporter": self.supporter,
            "amount": self.amount,
            "timestamp": self.timestamp,
            "expiresAt": self.expires_at,
        }


@dataclass
class HandleRecord:
    """A registered handle resolving to a profile."""

    handle: str
    profile_id: str
    registered_at: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "handle": self.handle,
            "profileId": self.profile_id,
            "registeredAt": self.registered_at,
        }


@dataclass
class SkippedEvent:
    """An event the synchronizer could not apply and moved past."""

    event_type: str
    event_key: str
    error: str
    recorded_at: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "eventType": self.event_type,
            "eventKey": self.event_key,
            "error": self.error,
            "recordedAt": self.recorded_at,
        }


@dataclass
class CreatorsPage:
    """One page of the creator listing."""

    items: list[CreatorProfile] = field(default_factory=list)
    next_cursor: str | None = None

    @property
    def has_next_page(self) -> bool:
        return self.next_cursor is not None


def encode_cursor(created_at: int, profile_id: str) -> str:
    """Encode a keyset position as an opaque urlsafe token."""
    raw = json.dumps([created_at, profile_id], separators=(",", ":")).encode("utf-8")
    return base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")


def decode_cursor(token: str) -> tuple[int, str]:
    """Decode a keyset token produced by encode_cursor.

    Raises:
        ValidationError: If the token is malformed
    """
    padded = token + "=" * (-len(token) % 4)
    try:
        created_at, profile_id = json.loads(base64.urlsafe_b64decode(padded.encode("ascii")))
    except (binascii.Error, UnicodeError, ValueError, TypeError) as e:
        raise ValidationError(f"Invalid cursor: {token!r}") from e
    if not isinstance(created_at, int) or not isinstance(profile_id, str):
        raise ValidationError(f"Invalid cursor: {token!r}")
    return created_at, profile_id


def validate_limit(limit: int) -> None:
    if limit < 1:
        raise ValidationError(f"limit must be at least 1, got {limit}")


# SQLite INTEGER is a signed 64-bit value; ledger u64 fields can exceed it
MAX_STORED_INT = 2**63 - 1


def check_stored_ints(**values: int | None) -> None:
    """Reject integers that no backend can store.

    Raises:
        ValidationError: If a value lies outside the signed 64-bit range
    """
    for name, value in values.items():
        if value is not None and not -MAX_STORED_INT - 1 <= value <= MAX_STORED_INT:
            raise ValidationError(
                f"{name} {value} is outside the storable integer range",
                details={"field": name},
            )


@runtime_checkable
class CursorStore(Protocol):
    """Durable per-event-type progress positions."""

    @abstractmethod
    async def get_cursor(self, event_type: str) -> str | None:
        """Last processed position token for `event_type`, or None."""
        ...

    @abstractmethod
    async def set_cursor(self, event_type: str, token: str) -> None:
        ...

    @abstractmethod
    async def get_cursors(self) -> dict[str, str]:
        """All stored cursors, keyed by event type."""
        ...


@runtime_checkable
class MaterializedStore(Protocol):
    """Async contract shared by the SQLite and in-memory backends.

    Example:
        >>> await store.upsert_creator(profile)
        >>> page = await store.get_creators(limit=20)
        >>> more = await store.get_creators(limit=20, cursor=page.next_cursor)
    """

    @abstractmethod
    async def initialize(self) -> None:
        """Create schema / backing structures. Safe to call repeatedly."""
        ...

    @abstractmethod
    async def upsert_creator(self, creator: CreatorProfile) -> CreatorProfile:
        """Insert a creator or overwrite its descriptive fields.

        created_at and the derived counters of an existing row are kept.
        """
        ...

    @abstractmethod
    async def update_creator(self, profile_id: str, patch: ProfilePatch) -> CreatorProfile | None:
        """Apply a partial update; None if the creator is not indexed."""
        ...

    @abstractmethod
    async def upsert_content(self, content: Content) -> bool:
        """Insert content if absent. Returns True if newly inserted.

        Raises:
            UnknownCreatorError: If the owning creator is not indexed
        """
        ...

    @abstractmethod
    async def add_access_purchase(self, purchase: AccessPurchase) -> bool:
        """Insert a purchase if absent. Returns True if newly inserted.

        Raises:
            UnknownCreatorError: If the creator is not indexed
        """
        ...

    @abstractmethod
    async def update_access_expiry(self, access_pass_id: str, expires_at: int) -> bool:
        """Extend a pass's expiry; False if the pass is not indexed."""
        ...

    @abstractmethod
    async def get_creator(self, profile_id: str) -> CreatorProfile | None:
        ...

    @abstractmethod
    async def get_creators(self, limit: int, cursor: str | None = None) -> CreatorsPage:
        """Keyset page over (created_at, profile_id) ascending.

        Raises:
            ValidationError: If limit < 1 or the cursor is malformed
        """
        ...

    @abstractmethod
    async def get_content_by_profile(self, profile_id: str) -> list[Content]:
        ...

    @abstractmethod
    async def get_supporters(self, profile_id: str) -> list[AccessPurchase]:
        """Purchases for a creator, newest first."""
        ...

    @abstractmethod
    async def upsert_handle(self, record: HandleRecord) -> None:
        ...

    @abstractmethod
    async def get_handle(self, handle: str) -> HandleRecord | None:
        ...

    @abstractmethod
    async def record_skipped_event(self, skipped: SkippedEvent) -> None:
        """Persist a skipped event; re-recording the same key updates the error."""
        ...

    @abstractmethod
    async def get_skipped_events(self, limit: int = 100) -> list[SkippedEvent]:
        """Most recently recorded first."""
        ...

    @abstractmethod
    async def stats(self) -> dict[str, int]:
        """Row counts per table."""
        ...

    @abstractmethod
    async def close(self) -> None:
        ...


class Store(MaterializedStore, CursorStore, Protocol):
    """Both protocols; every backend implements this."""


def create_store(config: "StorageConfig") -> Store:
    """Factory function to create a store from configuration.

    Args:
        config: Storage configuration

    Returns:
        Store instance (not yet initialized)
    """
    from ..config import StoreBackend

    if config.backend == StoreBackend.MEMORY:
        from .memory_store import InMemoryStore

        return InMemoryStore()

    from .sqlite_store import SqliteStore

    return SqliteStore(
        data_dir=config.data_dir,
        db_name=config.db_name,
        wal_mode=config.wal_mode,
        busy_timeout_ms=config.busy_timeout_ms,
    )
