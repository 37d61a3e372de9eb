"""
Blob storage network interface and HTTP blob reader.

Writing a blob is a multi-step protocol against the storage network:

    register (ledger tx) -> propagation wait -> upload -> certify (ledger tx)

StorageNetwork describes those steps; BlobPipeline sequences them.
Reads are public and go through aggregator HTTP endpoints.

Invariants:
    - register() and certify() each submit exactly one transaction through
      the caller's sign_and_execute callback
    - A PendingBlob is all that is needed to continue after register()
    - WalrusBlobReader tries aggregators in order and never retries one

How to change safely:
    - Keep PendingBlob serializable (to_dict/from_dict); clients persist it
      to resume interrupted publications
"""

from __future__ import annotations

import logging
from abc import abstractmethod
from dataclasses import asdict, dataclass
from typing import Any, Dict, List, Optional, Protocol, Sequence, runtime_checkable

import httpx

from .errors import BlobNotFoundError
from .transactions import SignAndExecute

logger = logging.getLogger(__name__)

WALRUS_AGGREGATOR_URL_TESTNET = "https://aggregator.walrus-testnet.walrus.space/v1"
WALRUS_DEFAULT_EPOCHS = 5


@dataclass(frozen=True)
class PendingBlob:
    """A registered blob whose data may not be uploaded or certified yet.

    Attributes:
        blob_id: Content-derived blob id (known from encoding)
        blob_object_id: Ledger object created by the registration
        register_digest: Digest of the registration transaction
        owner: Owner address of the blob object
        size: Unencoded size in bytes
        epochs: Storage duration in epochs
    """

    blob_id: str
    blob_object_id: str
    register_digest: str
    owner: str
    size: int
    epochs: int

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> PendingBlob:
        return cls(**data)


@runtime_checkable
class StorageNetwork(Protocol):
    """Write and read access to the blob storage network."""

    @abstractmethod
    async def register(
        self,
        data: bytes,
        owner: str,
        epochs: int,
        sign_and_execute: SignAndExecute,
    ) -> PendingBlob:
        """Encode `data`, build and submit the registration transaction."""
        ...

    @abstractmethod
    async def upload(self, handle: PendingBlob, data: bytes) -> None:
        """Upload encoded data to the storage nodes of a registered blob."""
        ...

    @abstractmethod
    async def certify(self, handle: PendingBlob, sign_and_execute: SignAndExecute) -> str:
        """Submit the certification transaction and return the blob id."""
        ...

    @abstractmethod
    async def read(self, blob_id: str) -> bytes:
        """Read a certified blob.

        Raises:
            BlobNotFoundError: If the blob cannot be served
        """
        ...


class WalrusBlobReader:
    """Reads blobs from Walrus aggregators over HTTP.

    Aggregators are tried in order; the first 200 response wins.

    Example:
        >>> reader = WalrusBlobReader()
        >>> data = await reader.read("Xyz...")
        >>> await reader.close()
    """

    def __init__(
        self,
        aggregator_urls: Sequence[str] = (WALRUS_AGGREGATOR_URL_TESTNET,),
        timeout_seconds: float = 30.0,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        """Initialize the reader.

        Args:
            aggregator_urls: Primary aggregator first, then fallbacks
            timeout_seconds: Per-request timeout
            client: Optional pre-built httpx client
        """
        if not aggregator_urls:
            raise ValueError("At least one aggregator URL is required")
        self.aggregator_urls: List[str] = [url.rstrip("/") for url in aggregator_urls]
        self._client = client or httpx.AsyncClient(timeout=timeout_seconds)

    async def read(self, blob_id: str) -> bytes:
        tried = []
        for base_url in self.aggregator_urls:
            url = f"{base_url}/blobs/{blob_id}"
            tried.append(url)
            try:
                response = await self._client.get(url)
            except httpx.HTTPError as e:
                logger.warning("Aggregator request failed", extra={"url": url, "error": str(e)})
                continue
            if response.status_code == 200:
                return response.content
            logger.debug(
                "Aggregator did not serve blob",
                extra={"url": url, "status": response.status_code},
            )
        raise BlobNotFoundError(blob_id, tried=tried)

    async def close(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> WalrusBlobReader:
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()
