"""
Error types for the Patron indexer service.

Taxonomy:
    - LedgerError: the ledger could not be queried
        - TransientNetworkError: transport failure or timeout, retried next run
        - LedgerRpcError: the node answered with a JSON-RPC error
    - ApplyError: a single event could not be mapped to a store mutation
        - EventSchemaError: payload is missing a required field or is ill-typed
    - NotFoundError: a requested entity does not exist (HTTP 404)
        - UnknownCreatorError: a row references a creator that is not indexed
    - ValidationError: malformed input (HTTP 400)

Invariants:
    - Synchronizer-level errors are collected as data, never raised out of sync()
    - Every error carries a stable code for programmatic handling
"""

from __future__ import annotations

from typing import Any


class PatronError(Exception):
    """Base exception for all indexer errors.

    Attributes:
        message: Error message
        code: Error code for programmatic handling
        details: Additional error context
    """

    code = "PATRON_ERROR"

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}


class LedgerError(PatronError):
    """Ledger query or object read failed."""

    code = "LEDGER_ERROR"


class TransientNetworkError(LedgerError):
    """Network-level failure talking to the ledger; safe to retry."""

    code = "TRANSIENT_NETWORK"


class LedgerRpcError(LedgerError):
    """The ledger node returned a JSON-RPC error object."""

    code = "LEDGER_RPC"

    def __init__(self, message: str, rpc_code: int | None = None) -> None:
        super().__init__(message, details={"rpc_code": rpc_code})
        self.rpc_code = rpc_code


class ApplyError(PatronError):
    """A single event failed to map to a store mutation."""

    code = "APPLY_ERROR"


class EventSchemaError(ApplyError):
    """Event payload does not match the expected schema."""

    code = "EVENT_SCHEMA"

    def __init__(self, event_type: str, field_name: str, reason: str) -> None:
        super().__init__(
            f"{event_type}: field '{field_name}' {reason}",
            details={"event_type": event_type, "field": field_name},
        )
        self.event_type = event_type
        self.field_name = field_name


class NotFoundError(PatronError):
    """Requested entity does not exist."""

    code = "NOT_FOUND"


class UnknownCreatorError(NotFoundError):
    """A content or purchase row references a creator missing from the store."""

    code = "UNKNOWN_CREATOR"

    def __init__(self, profile_id: str) -> None:
        super().__init__(f"Creator not indexed: {profile_id}", details={"profile_id": profile_id})
        self.profile_id = profile_id


class ValidationError(PatronError):
    """Malformed input."""

    code = "VALIDATION_ERROR"
