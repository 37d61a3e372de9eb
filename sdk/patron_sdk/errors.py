"""
Error types for the Patron SDK.

This module defines all exception types raised by the SDK:
- PatronSdkError: Base exception
- BlobPipelineError: A storage step failed (carries stage and pending handle)
- PublicationError: Publication failed before any external commitment
- PartialPipelineFailure: Publication failed after at least one commitment
- CommitRejected: The final ledger transaction did not succeed
- ExpiredSessionKey / DecryptionDenied / SessionKeyRefreshFailed: decryption
- BlobNotFoundError: No aggregator could serve a blob

Invariants:
    - All errors inherit from PatronSdkError
    - Pipeline errors carry enough state to resume
    - Error messages are actionable
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Dict, Optional

if TYPE_CHECKING:
    from .publication import PublishState
    from .storage import PendingBlob


class PatronSdkError(Exception):
    """Base exception for all Patron SDK errors.

    Attributes:
        message: Error message
        code: Error code for programmatic handling
        details: Additional error context
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or "PATRON_SDK_ERROR"
        self.details = details or {}


class BlobPipelineError(PatronSdkError):
    """A blob storage step failed.

    No rollback happens: a registration that succeeded stays on the ledger.
    Pass `handle` to BlobPipeline.resume() to continue without registering
    again.

    Attributes:
        stage: register, propagate, upload or certify
        handle: Pending registration, None if register itself failed
    """

    def __init__(
        self,
        message: str,
        stage: str,
        handle: Optional["PendingBlob"] = None,
    ) -> None:
        super().__init__(
            message,
            code="BLOB_PIPELINE_ERROR",
            details={"stage": stage, "blob_object_id": handle.blob_object_id if handle else None},
        )
        self.stage = stage
        self.handle = handle


class PublicationError(PatronSdkError):
    """Publication failed and nothing was committed externally.

    Attributes:
        state: Pipeline state at the time of failure
    """

    def __init__(self, message: str, state: "PublishState", code: str = "PUBLICATION_ERROR") -> None:
        super().__init__(message, code=code, details={"stage": state.stage.value})
        self.state = state


class PartialPipelineFailure(PublicationError):
    """Publication failed after at least one external commitment.

    The blob registration (and possibly the upload and certification) is
    durable. Retry with `publish(..., resume_from=error.state)`.
    """

    def __init__(self, message: str, state: "PublishState") -> None:
        super().__init__(message, state, code="PARTIAL_PIPELINE_FAILURE")


class CommitRejected(PatronSdkError):
    """The ledger reported the commit transaction as failed."""

    def __init__(self, message: str, digest: Optional[str] = None) -> None:
        super().__init__(message, code="COMMIT_REJECTED", details={"digest": digest})
        self.digest = digest


class ExpiredSessionKey(PatronSdkError):
    """The session key is past its TTL."""

    def __init__(self, message: str = "Session key expired") -> None:
        super().__init__(message, code="EXPIRED_SESSION_KEY")


class DecryptionDenied(PatronSdkError):
    """The capability does not grant access to the identity, or is missing."""

    def __init__(self, message: str, identity: Optional[str] = None) -> None:
        super().__init__(message, code="DECRYPTION_DENIED", details={"identity": identity})
        self.identity = identity


class SessionKeyRefreshFailed(PatronSdkError):
    """A freshly issued session key was also reported as expired."""

    def __init__(self, message: str, identity: str) -> None:
        super().__init__(message, code="SESSION_KEY_REFRESH_FAILED", details={"identity": identity})
        self.identity = identity


class BlobNotFoundError(PatronSdkError):
    """No aggregator returned the blob."""

    def __init__(self, blob_id: str, tried: Optional[list] = None) -> None:
        super().__init__(
            f"Blob not found: {blob_id}",
            code="BLOB_NOT_FOUND",
            details={"blob_id": blob_id, "tried": tried or []},
        )
        self.blob_id = blob_id
