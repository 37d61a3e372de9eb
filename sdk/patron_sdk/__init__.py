"""
Patron Python SDK - client-side publication and decryption of gated content.

This SDK drives the client half of the system:
- BlobPipeline for the storage network's register/upload/certify protocol
- EncryptionGateway for identity-based encryption to a creator profile
- PublicationPipeline, a resumable saga ending in publish_content
- SessionKeyCache and ContentReader for decrypting purchased content

Example:
    >>> from sdk.patron_sdk import BlobPipeline, PublicationPipeline, PublishMetadata
    >>>
    >>> pipeline = PublicationPipeline(package_id, BlobPipeline(network), gateway)
    >>> outcome = await pipeline.publish(
    ...     data, profile_id, creator_cap_id,
    ...     PublishMetadata(title="Ep. 1", description="", content_type="video"),
    ...     owner=address, sign_and_execute=wallet.sign_and_execute,
    ... )
    >>> result = outcome.unwrap()

Invariants:
    - The SDK never holds keys; signing is always a caller callback
    - Pipeline failures carry resumable state
    - Nothing is rolled back on the ledger or storage network

Version: 0.3.0
"""

__version__ = "0.3.0"

from .blob_pipeline import BlobPipeline
from .encryption import (
    EncryptionGateway,
    EncryptionService,
    LocalEncryptionService,
    SessionKey,
)
from .errors import (
    BlobNotFoundError,
    BlobPipelineError,
    CommitRejected,
    DecryptionDenied,
    ExpiredSessionKey,
    PartialPipelineFailure,
    PatronSdkError,
    PublicationError,
    SessionKeyRefreshFailed,
)
from .memory import InMemoryStorageNetwork
from .publication import (
    PublicationPipeline,
    PublishMetadata,
    PublishOutcome,
    PublishResult,
    PublishStage,
    PublishState,
)
from .session_keys import ContentReader, SessionKeyCache, SessionKeyIssuer
from .storage import PendingBlob, StorageNetwork, WalrusBlobReader
from .transactions import (
    ExecutionResult,
    MoveCall,
    ObjectArg,
    PureArg,
    Transaction,
    build_publish_content_tx,
)

__all__ = [
    "BlobNotFoundError",
    "BlobPipeline",
    "BlobPipelineError",
    "CommitRejected",
    "ContentReader",
    "DecryptionDenied",
    "EncryptionGateway",
    "EncryptionService",
    "ExecutionResult",
    "ExpiredSessionKey",
    "InMemoryStorageNetwork",
    "LocalEncryptionService",
    "MoveCall",
    "ObjectArg",
    "PartialPipelineFailure",
    "PatronSdkError",
    "PendingBlob",
    "PublicationError",
    "PublicationPipeline",
    "PublishMetadata",
    "PublishOutcome",
    "PublishResult",
    "PublishStage",
    "PublishState",
    "PureArg",
    "SessionKey",
    "SessionKeyCache",
    "SessionKeyIssuer",
    "SessionKeyRefreshFailed",
    "StorageNetwork",
    "Transaction",
    "WalrusBlobReader",
    "__version__",
    "build_publish_content_tx",
]
