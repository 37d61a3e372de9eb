"""
In-memory storage network for testing.

Implements the full StorageNetwork protocol without any network:
- register() submits a register transaction through the caller's signer
- upload() stores the bytes against the pending registration
- certify() submits a certify transaction and makes the blob readable

Invariants:
    - All data is lost on process exit
    - Blob ids are content-derived, so the same bytes get the same id
    - A blob is readable only after certify()

How to change safely:
    - This is test-only code, changes don't affect production
    - Keep interface compatible with the StorageNetwork protocol
"""

from __future__ import annotations

import base64
import hashlib
import logging
from collections import defaultdict
from typing import Dict, List, Optional

from .errors import BlobNotFoundError
from .storage import PendingBlob
from .transactions import ObjectArg, PureArg, SignAndExecute, Transaction

logger = logging.getLogger(__name__)


def blob_id_for(data: bytes) -> str:
    """Content-derived blob id (urlsafe base64 of sha256, unpadded)."""
    digest = hashlib.sha256(data).digest()
    return base64.urlsafe_b64encode(digest).decode("ascii").rstrip("=")


class InMemoryStorageNetwork:
    """StorageNetwork double with failure injection and call counters.

    Example:
        >>> network = InMemoryStorageNetwork()
        >>> network.fail_next("upload")
        >>> handle = await network.register(b"data", "0xme", 5, signer)
    """

    def __init__(self, system_object_id: str = "0xstorage") -> None:
        self.system_object_id = system_object_id
        self._uploaded: Dict[str, bytes] = {}
        self._certified: Dict[str, bytes] = {}
        self._failures: Dict[str, List[Exception]] = defaultdict(list)
        self._counter = 0
        self.call_counts: Dict[str, int] = defaultdict(int)

    def fail_next(self, step: str, exception: Optional[Exception] = None, times: int = 1) -> None:
        """Make the next `times` calls of `step` raise (testing helper).

        Args:
            step: register, upload, certify or read
            exception: Exception to raise (default ConnectionError)
            times: Number of calls that fail
        """
        exc = exception or ConnectionError(f"injected {step} failure")
        self._failures[step].extend([exc] * times)

    def _enter(self, step: str) -> None:
        self.call_counts[step] += 1
        pending = self._failures.get(step)
        if pending:
            raise pending.pop(0)

    async def register(
        self,
        data: bytes,
        owner: str,
        epochs: int,
        sign_and_execute: SignAndExecute,
    ) -> PendingBlob:
        self._enter("register")
        blob_id = blob_id_for(data)

        tx = Transaction(sender=owner)
        tx.move_call(
            f"{self.system_object_id}::system::register_blob",
            [
                ObjectArg(self.system_object_id),
                PureArg("string", blob_id),
                PureArg("u64", len(data)),
                PureArg("u32", epochs),
            ],
        )
        result = await sign_and_execute(tx)
        if not result.succeeded:
            raise RuntimeError(f"register transaction failed: {result.error}")

        self._counter += 1
        handle = PendingBlob(
            blob_id=blob_id,
            blob_object_id=f"0xblob{self._counter:04d}",
            register_digest=result.digest,
            owner=owner,
            size=len(data),
            epochs=epochs,
        )
        logger.debug("Blob registered", extra={"blob_id": blob_id})
        return handle

    async def upload(self, handle: PendingBlob, data: bytes) -> None:
        self._enter("upload")
        if blob_id_for(data) != handle.blob_id:
            raise ValueError("Uploaded data does not match the registered blob id")
        self._uploaded[handle.blob_object_id] = data

    async def certify(self, handle: PendingBlob, sign_and_execute: SignAndExecute) -> str:
        self._enter("certify")
        data = self._uploaded.get(handle.blob_object_id)
        if data is None:
            raise RuntimeError(f"Blob {handle.blob_id} has no uploaded data")

        tx = Transaction(sender=handle.owner)
        tx.move_call(
            f"{self.system_object_id}::system::certify_blob",
            [ObjectArg(self.system_object_id), ObjectArg(handle.blob_object_id)],
        )
        result = await sign_and_execute(tx)
        if not result.succeeded:
            raise RuntimeError(f"certify transaction failed: {result.error}")

        self._certified[handle.blob_id] = data
        return handle.blob_id

    async def read(self, blob_id: str) -> bytes:
        self._enter("read")
        data = self._certified.get(blob_id)
        if data is None:
            raise BlobNotFoundError(blob_id)
        return data

    # Testing helpers

    def is_certified(self, blob_id: str) -> bool:
        return blob_id in self._certified

    def put_blob(self, data: bytes) -> str:
        """Store a certified blob directly, bypassing the write protocol."""
        blob_id = blob_id_for(data)
        self._certified[blob_id] = data
        return blob_id
