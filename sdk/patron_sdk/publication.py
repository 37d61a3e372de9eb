"""
Content publication saga.

Publishing gated content touches three external systems in order:

    (encrypt) -> register blob -> upload -> certify -> commit publish_content

Each completed step is recorded in a PublishState. Nothing is rolled back:
a failure returns an outcome carrying the state, and passing that state
back as `resume_from` skips every completed step.

Stages:
    PENDING     nothing done (payload may be prepared if not encrypting)
    ENCRYPTED   payload encrypted to the creator identity
    REGISTERED  blob registered on the ledger (first external commitment)
    UPLOADED    data stored on storage nodes
    CERTIFIED   blob certified; blob_id is final
    COMMITTED   publish_content transaction succeeded

Invariants:
    - The payload registered is the payload uploaded; a resumed run never
      re-encrypts once the payload exists
    - A state with a blob id only runs the commit
    - publish() never raises for step failures; unwrap() does

How to change safely:
    - New stages go between existing ones; keep Stage.order monotonic
"""

from __future__ import annotations

import base64
import logging
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Dict, Optional

from .blob_pipeline import BlobPipeline
from .encryption import EncryptionGateway
from .errors import CommitRejected, PartialPipelineFailure, PublicationError
from .storage import PendingBlob
from .transactions import SignAndExecute, build_publish_content_tx

logger = logging.getLogger(__name__)


class PublishStage(Enum):
    PENDING = "pending"
    ENCRYPTED = "encrypted"
    REGISTERED = "registered"
    UPLOADED = "uploaded"
    CERTIFIED = "certified"
    COMMITTED = "committed"

    @property
    def order(self) -> int:
        return _STAGE_ORDER.index(self)

    def reached(self, other: PublishStage) -> bool:
        """True if this stage is `other` or later."""
        return self.order >= other.order


_STAGE_ORDER = list(PublishStage)


@dataclass(frozen=True)
class PublishMetadata:
    """Descriptive fields committed with the content record.

    Attributes:
        title: Content title
        description: Content description
        content_type: Content type tag (image, text, pdf, video, audio)
        encrypt: Encrypt to the creator identity before storing
    """

    title: str
    description: str
    content_type: str
    encrypt: bool = True


@dataclass(frozen=True)
class PublishState:
    """Resumable progress of one publication.

    Attributes:
        stage: Furthest completed stage
        payload: Bytes stored in the blob (ciphertext when encrypted)
        encrypted: Whether payload is ciphertext
        handle: Pending registration, once registered
        blob_id: Certified blob id, once certified
        commit_digest: Digest of the publish_content transaction
    """

    stage: PublishStage = PublishStage.PENDING
    payload: Optional[bytes] = None
    encrypted: bool = False
    handle: Optional[PendingBlob] = None
    blob_id: Optional[str] = None
    commit_digest: Optional[str] = None

    @property
    def has_external_commitment(self) -> bool:
        return self.stage.reached(PublishStage.REGISTERED)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "stage": self.stage.value,
            "payload": base64.b64encode(self.payload).decode("ascii") if self.payload else None,
            "encrypted": self.encrypted,
            "handle": self.handle.to_dict() if self.handle else None,
            "blobId": self.blob_id,
            "commitDigest": self.commit_digest,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> PublishState:
        payload = data.get("payload")
        handle = data.get("handle")
        return cls(
            stage=PublishStage(data["stage"]),
            payload=base64.b64decode(payload) if payload else None,
            encrypted=bool(data.get("encrypted", False)),
            handle=PendingBlob.from_dict(handle) if handle else None,
            blob_id=data.get("blobId"),
            commit_digest=data.get("commitDigest"),
        )


@dataclass(frozen=True)
class PublishResult:
    blob_id: str
    commit_digest: str


@dataclass(frozen=True)
class PublishOutcome:
    """Typed result of publish(): the state reached and the error, if any."""

    state: PublishState
    error: Optional[Exception] = None

    @property
    def ok(self) -> bool:
        return self.error is None and self.state.stage is PublishStage.COMMITTED

    def unwrap(self) -> PublishResult:
        """Return the result or raise the failure with its resumable state.

        Raises:
            PartialPipelineFailure: If an external commitment already happened
            PublicationError: If nothing was committed externally
        """
        if self.ok:
            if self.state.blob_id is None or self.state.commit_digest is None:
                raise PublicationError("committed state lacks its blob id or commit digest", self.state)
            return PublishResult(blob_id=self.state.blob_id, commit_digest=self.state.commit_digest)

        message = str(self.error) if self.error else "publication did not complete"
        if self.state.has_external_commitment:
            raise PartialPipelineFailure(message, self.state) from self.error
        raise PublicationError(message, self.state) from self.error


class PublicationPipeline:
    """Client-driven saga publishing one piece of content.

    Example:
        >>> pipeline = PublicationPipeline(package_id, BlobPipeline(network), gateway)
        >>> outcome = await pipeline.publish(data, profile_id, cap_id, metadata, owner, signer)
        >>> if not outcome.ok:
        ...     outcome = await pipeline.publish(..., resume_from=outcome.state)
        >>> result = outcome.unwrap()
    """

    def __init__(
        self,
        package_id: str,
        blobs: BlobPipeline,
        gateway: Optional[EncryptionGateway] = None,
    ) -> None:
        self.package_id = package_id
        self.blobs = blobs
        self.gateway = gateway

    async def publish(
        self,
        data: bytes,
        profile_id: str,
        creator_cap_id: str,
        metadata: PublishMetadata,
        owner: str,
        sign_and_execute: SignAndExecute,
        resume_from: Optional[PublishState] = None,
    ) -> PublishOutcome:
        """Run (or continue) the publication.

        Args:
            data: Plaintext content
            profile_id: Creator profile; also the encryption identity
            creator_cap_id: Creator capability object
            metadata: Title, description, content type and encryption flag
            owner: Address owning the blob and sending transactions
            sign_and_execute: Caller's signer callback
            resume_from: State of an earlier, failed run

        Returns:
            PublishOutcome; never raises for step failures
        """
        state = resume_from or PublishState()
        if state.stage is PublishStage.COMMITTED:
            return PublishOutcome(state)
        if state.blob_id and not state.stage.reached(PublishStage.CERTIFIED):
            state = replace(state, stage=PublishStage.CERTIFIED)

        try:
            registered_now = False
            if not state.stage.reached(PublishStage.REGISTERED):
                if state.payload is None:
                    state = await self._prepare_payload(state, data, profile_id, metadata)
                if state.payload is None:
                    raise ValueError("no payload was prepared for registration")
                handle = await self.blobs.register(state.payload, owner, sign_and_execute)
                state = replace(state, stage=PublishStage.REGISTERED, handle=handle)
                registered_now = True

            if not state.stage.reached(PublishStage.UPLOADED):
                if state.handle is None or state.payload is None:
                    raise ValueError("resume state lacks the registered blob or its payload")
                if registered_now:
                    await self.blobs.await_propagation()
                await self.blobs.upload_data(state.handle, state.payload)
                state = replace(state, stage=PublishStage.UPLOADED)

            if not state.stage.reached(PublishStage.CERTIFIED):
                if state.handle is None:
                    raise ValueError("resume state lacks the registered blob")
                blob_id = await self.blobs.certify(state.handle, sign_and_execute)
                state = replace(state, stage=PublishStage.CERTIFIED, blob_id=blob_id)

            state = await self._commit(state, profile_id, creator_cap_id, metadata, owner, sign_and_execute)

        except Exception as e:
            logger.warning(
                "Publication stopped",
                extra={"profile_id": profile_id, "stage": state.stage.value, "error": str(e)},
            )
            return PublishOutcome(state, error=e)

        logger.info(
            "Content published",
            extra={"profile_id": profile_id, "blob_id": state.blob_id, "digest": state.commit_digest},
        )
        return PublishOutcome(state)

    async def _prepare_payload(
        self, state: PublishState, data: bytes, profile_id: str, metadata: PublishMetadata
    ) -> PublishState:
        if metadata.encrypt and self.gateway is not None:
            payload = await self.gateway.encrypt(profile_id, data)
            return replace(state, stage=PublishStage.ENCRYPTED, payload=payload, encrypted=True)
        return replace(state, payload=data, encrypted=False)

    async def _commit(
        self,
        state: PublishState,
        profile_id: str,
        creator_cap_id: str,
        metadata: PublishMetadata,
        owner: str,
        sign_and_execute: SignAndExecute,
    ) -> PublishState:
        if state.blob_id is None:
            raise ValueError("resume state lacks the certified blob id")
        tx = build_publish_content_tx(
            package_id=self.package_id,
            profile_id=profile_id,
            creator_cap_id=creator_cap_id,
            title=metadata.title,
            description=metadata.description,
            blob_id=state.blob_id,
            content_type=metadata.content_type,
            sender=owner,
        )
        result = await sign_and_execute(tx)
        if not result.succeeded:
            raise CommitRejected(
                f"publish_content failed: {result.error or result.status}", digest=result.digest
            )
        return replace(state, stage=PublishStage.COMMITTED, commit_digest=result.digest)
