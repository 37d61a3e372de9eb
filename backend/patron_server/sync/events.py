"""
Versioned event and object schema mapping.

Each tracked event type has exactly one decoder per schema version. A
decoder turns a raw event payload into a typed record or raises
EventSchemaError; it never guesses between naming conventions and never
defaults a required field.

Move encodings accepted:
    - u64 values as JSON ints or decimal strings
    - Option<T> as null, a bare value, a one-element list, or {"vec": [...]}

Invariants:
    - Decoders are pure functions of the payload
    - A missing or ill-typed required field raises EventSchemaError
    - referenced_objects() lists every object the applier may read

How to change safely:
    - A Move struct change gets a new decoder version; keep the old one
      registered until no events of that version remain to replay
    - Add new event types to TRACKED_EVENTS and DECODERS together
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Union

from ..errors import EventSchemaError

SCHEMA_VERSION = 1

# Event name -> Move module that emits it
TRACKED_EVENTS: dict[str, str] = {
    "ProfileCreated": "suipatron",
    "ProfileUpdated": "suipatron",
    "ContentPublished": "suipatron",
    "AccessPurchased": "suipatron",
    "SubscriptionRenewed": "suipatron",
    "HandleRegistered": "registry",
}


def full_event_type(package_id: str, name: str) -> str:
    """Fully qualified Move event type, e.g. 0xabc::suipatron::ProfileCreated."""
    return f"{package_id}::{TRACKED_EVENTS[name]}::{name}"


# Field helpers


def _missing(payload: dict[str, Any], name: str) -> bool:
    return name not in payload or payload[name] is None


def _require_str(event_type: str, payload: dict[str, Any], name: str) -> str:
    if _missing(payload, name):
        raise EventSchemaError(event_type, name, "is required")
    value = payload[name]
    if not isinstance(value, str) or not value:
        raise EventSchemaError(event_type, name, f"must be a non-empty string, got {value!r}")
    return value


def _to_int(event_type: str, name: str, value: Any) -> int:
    if isinstance(value, bool):
        raise EventSchemaError(event_type, name, f"must be an integer, got {value!r}")
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.isdigit():
        return int(value)
    raise EventSchemaError(event_type, name, f"must be an integer, got {value!r}")


def _require_int(event_type: str, payload: dict[str, Any], name: str) -> int:
    if _missing(payload, name):
        raise EventSchemaError(event_type, name, "is required")
    return _to_int(event_type, name, payload[name])


def _unwrap_option(event_type: str, name: str, value: Any) -> Any:
    """Reduce a Move Option<T> encoding to the inner value or None."""
    if isinstance(value, dict):
        if "vec" not in value:
            raise EventSchemaError(event_type, name, f"is not a Move Option: {value!r}")
        value = value["vec"]
    if isinstance(value, list):
        if len(value) > 1:
            raise EventSchemaError(event_type, name, f"has more than one element: {value!r}")
        return value[0] if value else None
    return value


def _option_str(event_type: str, payload: dict[str, Any], name: str) -> str | None:
    value = _unwrap_option(event_type, name, payload.get(name))
    if value is None:
        return None
    if not isinstance(value, str):
        raise EventSchemaError(event_type, name, f"must be a string, got {value!r}")
    return value or None


def _option_int(event_type: str, payload: dict[str, Any], name: str) -> int | None:
    value = _unwrap_option(event_type, name, payload.get(name))
    if value is None:
        return None
    return _to_int(event_type, name, value)


# Decoded events


@dataclass(frozen=True)
class ProfileCreated:
    profile_id: str
    owner: str
    name: str
    timestamp: int
    price: int | None = None


@dataclass(frozen=True)
class ProfileUpdated:
    """Fields other than profile_id are present only when the event carries them."""

    profile_id: str
    timestamp: int | None = None
    name: str | None = None
    bio: str | None = None
    avatar_blob_id: str | None = None
    price: int | None = None


@dataclass(frozen=True)
class ContentPublished:
    content_id: str
    profile_id: str
    blob_id: str
    content_type: str
    timestamp: int


@dataclass(frozen=True)
class AccessPurchased:
    access_pass_id: str
    profile_id: str
    supporter: str
    amount: int
    timestamp: int
    expires_at: int | None = None


@dataclass(frozen=True)
class SubscriptionRenewed:
    access_pass_id: str
    new_expires_at: int


@dataclass(frozen=True)
class HandleRegistered:
    handle: str
    profile_id: str
    timestamp: int


DecodedEvent = Union[
    ProfileCreated,
    ProfileUpdated,
    ContentPublished,
    AccessPurchased,
    SubscriptionRenewed,
    HandleRegistered,
]


def _decode_profile_created_v1(p: dict[str, Any]) -> ProfileCreated:
    t = "ProfileCreated"
    return ProfileCreated(
        profile_id=_require_str(t, p, "profile_id"),
        owner=_require_str(t, p, "owner"),
        name=_require_str(t, p, "name"),
        timestamp=_require_int(t, p, "timestamp"),
        price=_option_int(t, p, "price"),
    )


def _decode_profile_updated_v1(p: dict[str, Any]) -> ProfileUpdated:
    t = "ProfileUpdated"
    return ProfileUpdated(
        profile_id=_require_str(t, p, "profile_id"),
        timestamp=_option_int(t, p, "timestamp"),
        name=_option_str(t, p, "name"),
        bio=_option_str(t, p, "bio"),
        avatar_blob_id=_option_str(t, p, "avatar_blob_id"),
        price=_option_int(t, p, "price"),
    )


def _decode_content_published_v1(p: dict[str, Any]) -> ContentPublished:
    t = "ContentPublished"
    return ContentPublished(
        content_id=_require_str(t, p, "content_id"),
        profile_id=_require_str(t, p, "profile_id"),
        blob_id=_require_str(t, p, "blob_id"),
        content_type=_require_str(t, p, "content_type"),
        timestamp=_require_int(t, p, "timestamp"),
    )


def _decode_access_purchased_v1(p: dict[str, Any]) -> AccessPurchased:
    t = "AccessPurchased"
    return AccessPurchased(
        access_pass_id=_require_str(t, p, "access_pass_id"),
        profile_id=_require_str(t, p, "profile_id"),
        supporter=_require_str(t, p, "supporter"),
        amount=_require_int(t, p, "amount"),
        timestamp=_require_int(t, p, "timestamp"),
        expires_at=_option_int(t, p, "expires_at"),
    )


def _decode_subscription_renewed_v1(p: dict[str, Any]) -> SubscriptionRenewed:
    t = "SubscriptionRenewed"
    return SubscriptionRenewed(
        access_pass_id=_require_str(t, p, "access_pass_id"),
        new_expires_at=_require_int(t, p, "new_expires_at"),
    )


def _decode_handle_registered_v1(p: dict[str, Any]) -> HandleRegistered:
    t = "HandleRegistered"
    return HandleRegistered(
        handle=_require_str(t, p, "handle"),
        profile_id=_require_str(t, p, "profile_id"),
        timestamp=_require_int(t, p, "timestamp"),
    )


DECODERS: dict[tuple[str, int], Callable[[dict[str, Any]], DecodedEvent]] = {
    ("ProfileCreated", 1): _decode_profile_created_v1,
    ("ProfileUpdated", 1): _decode_profile_updated_v1,
    ("ContentPublished", 1): _decode_content_published_v1,
    ("AccessPurchased", 1): _decode_access_purchased_v1,
    ("SubscriptionRenewed", 1): _decode_subscription_renewed_v1,
    ("HandleRegistered", 1): _decode_handle_registered_v1,
}


def decode_event(name: str, payload: dict[str, Any], version: int = SCHEMA_VERSION) -> DecodedEvent:
    """Decode a raw payload of event `name`.

    Raises:
        EventSchemaError: If the payload does not match the schema
        KeyError: If no decoder is registered for (name, version)
    """
    decoder = DECODERS[(name, version)]
    if not isinstance(payload, dict):
        raise EventSchemaError(name, "<payload>", f"must be an object, got {type(payload).__name__}")
    return decoder(payload)


def referenced_objects(event: DecodedEvent) -> list[str]:
    """Object ids the applier reads for this event, in lookup order."""
    if isinstance(event, (ProfileCreated, ProfileUpdated, AccessPurchased)):
        return [event.profile_id]
    if isinstance(event, ContentPublished):
        return [event.content_id, event.profile_id]
    return []


# Object field mapping


@dataclass(frozen=True)
class ProfileObject:
    """Descriptive fields of an on-ledger creator profile object."""

    owner: str | None
    name: str | None
    bio: str | None
    avatar_blob_id: str | None
    alias: str | None
    price: int | None


@dataclass(frozen=True)
class ContentObject:
    title: str
    description: str
    blob_id: str | None
    content_type: str | None


def decode_profile_object(fields: dict[str, Any]) -> ProfileObject:
    """Map creator profile object fields. Ledger-side counters are ignored."""
    t = "CreatorProfile"
    return ProfileObject(
        owner=_option_str(t, fields, "owner"),
        name=_option_str(t, fields, "name"),
        bio=fields.get("bio") if isinstance(fields.get("bio"), str) else None,
        avatar_blob_id=_option_str(t, fields, "avatar_blob_id"),
        alias=_option_str(t, fields, "suins_name"),
        price=_option_int(t, fields, "price"),
    )


def decode_content_object(fields: dict[str, Any]) -> ContentObject:
    t = "Content"
    return ContentObject(
        title=_option_str(t, fields, "title") or "",
        description=_option_str(t, fields, "description") or "",
        blob_id=_option_str(t, fields, "blob_id"),
        content_type=_option_str(t, fields, "content_type"),
    )
