"""
Blob write pipeline: register, await propagation, upload, certify.

Invariants:
    - register and certify each require exactly one signature
    - No automatic retries and no rollback; a failed step raises
      BlobPipelineError carrying the stage and the pending handle
    - resume() never registers again

How to change safely:
    - Stage names are part of the error contract; keep STAGES stable
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Optional

from .errors import BlobPipelineError
from .storage import WALRUS_DEFAULT_EPOCHS, PendingBlob, StorageNetwork
from .transactions import SignAndExecute

logger = logging.getLogger(__name__)

STAGE_REGISTER = "register"
STAGE_PROPAGATE = "propagate"
STAGE_UPLOAD = "upload"
STAGE_CERTIFY = "certify"
STAGES = (STAGE_REGISTER, STAGE_PROPAGATE, STAGE_UPLOAD, STAGE_CERTIFY)


class BlobPipeline:
    """Sequences the storage network's write protocol.

    Example:
        >>> pipeline = BlobPipeline(network, epochs=5)
        >>> blob_id = await pipeline.upload_and_certify(data, owner, sign_and_execute)
    """

    def __init__(
        self,
        network: StorageNetwork,
        epochs: int = WALRUS_DEFAULT_EPOCHS,
        propagation_delay: float = 5.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        """Initialize the pipeline.

        Args:
            network: Storage network implementation
            epochs: Storage duration requested at registration
            propagation_delay: Seconds to wait between register and upload
            sleep: Sleep function (tests pass a no-op)
        """
        if epochs < 1:
            raise ValueError("epochs must be at least 1")
        if propagation_delay < 0:
            raise ValueError("propagation_delay must not be negative")
        self.network = network
        self.epochs = epochs
        self.propagation_delay = propagation_delay
        self._sleep = sleep

    async def register(
        self, data: bytes, owner: str, sign_and_execute: SignAndExecute
    ) -> PendingBlob:
        try:
            handle = await self.network.register(data, owner, self.epochs, sign_and_execute)
        except BlobPipelineError:
            raise
        except Exception as e:
            raise BlobPipelineError(f"register failed: {e}", STAGE_REGISTER) from e
        logger.info(
            "Blob registered",
            extra={"blob_id": handle.blob_id, "digest": handle.register_digest},
        )
        return handle

    async def await_propagation(self) -> None:
        """Bounded wait for the registration to reach storage nodes."""
        if self.propagation_delay:
            await self._sleep(self.propagation_delay)

    async def upload_data(self, handle: PendingBlob, data: bytes) -> None:
        try:
            await self.network.upload(handle, data)
        except Exception as e:
            raise BlobPipelineError(f"upload failed: {e}", STAGE_UPLOAD, handle) from e

    async def certify(self, handle: PendingBlob, sign_and_execute: SignAndExecute) -> str:
        try:
            blob_id = await self.network.certify(handle, sign_and_execute)
        except Exception as e:
            raise BlobPipelineError(f"certify failed: {e}", STAGE_CERTIFY, handle) from e
        logger.info("Blob certified", extra={"blob_id": blob_id})
        return blob_id

    async def upload_and_certify(
        self, data: bytes, owner: str, sign_and_execute: SignAndExecute
    ) -> str:
        """Run every step and return the certified blob id.

        Raises:
            BlobPipelineError: On the first failing step
        """
        handle = await self.register(data, owner, sign_and_execute)
        return await self.resume(handle, data, sign_and_execute, from_stage=STAGE_PROPAGATE)

    async def resume(
        self,
        handle: PendingBlob,
        data: bytes,
        sign_and_execute: SignAndExecute,
        from_stage: Optional[str] = None,
    ) -> str:
        """Continue a registered blob from `from_stage` (default: upload).

        Raises:
            ValueError: If from_stage is register or unknown
            BlobPipelineError: On the first failing step
        """
        stage = from_stage or STAGE_UPLOAD
        if stage not in STAGES or stage == STAGE_REGISTER:
            raise ValueError(f"Cannot resume from stage {stage!r}")

        if stage == STAGE_PROPAGATE:
            await self.await_propagation()
        if stage in (STAGE_PROPAGATE, STAGE_UPLOAD):
            await self.upload_data(handle, data)
        return await self.certify(handle, sign_and_execute)
