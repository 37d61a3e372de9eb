"""
Session key cache and content reader.

Decrypting gated content needs a session key signed by the requester's
wallet. Signing prompts the user, so keys are cached per requester address
until their TTL runs out and re-issued lazily. One key covers every creator
the requester reads from.

Invariants:
    - A cached key is never returned once expired
    - A key is only ever cached under the address it was issued for
    - ContentReader.read() re-issues at most once per call; a second
      expiry raises SessionKeyRefreshFailed
    - The cache is process-local and keyed by requester address

How to change safely:
    - Keep the single-retry rule in ContentReader; callers rely on read()
      prompting for at most two signatures
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Dict, Optional, Protocol

from .encryption import (
    SESSION_KEY_TTL_MIN,
    Clock,
    EncryptionGateway,
    SessionKey,
    session_key_message,
)
from .errors import ExpiredSessionKey, SessionKeyRefreshFailed
from .transactions import SignPersonalMessage

logger = logging.getLogger(__name__)


class BlobReader(Protocol):
    async def read(self, blob_id: str) -> bytes:
        ...


class SessionKeyIssuer:
    """Creates session keys by asking the requester's wallet to sign."""

    def __init__(
        self,
        package_id: str,
        ttl_min: int = SESSION_KEY_TTL_MIN,
        clock: Clock = time.time,
    ) -> None:
        if ttl_min < 1:
            raise ValueError("ttl_min must be at least 1")
        self.package_id = package_id
        self.ttl_min = ttl_min
        self._clock = clock

    async def issue(self, address: str, sign_personal_message: SignPersonalMessage) -> SessionKey:
        """Issue a key for `address`; the callback must sign as that address."""
        if not address:
            raise ValueError("address is required")
        created_at_ms = int(self._clock() * 1000)
        message = session_key_message(self.package_id, self.ttl_min, created_at_ms)
        signature = await sign_personal_message(message)
        return SessionKey(
            address=address,
            package_id=self.package_id,
            created_at_ms=created_at_ms,
            ttl_min=self.ttl_min,
            signature=signature,
        )


class SessionKeyCache:
    """Per-requester session keys with TTL expiry.

    Example:
        >>> cache = SessionKeyCache(SessionKeyIssuer(package_id))
        >>> key = await cache.get(wallet_address, wallet.sign_personal_message)
    """

    def __init__(self, issuer: SessionKeyIssuer, clock: Clock = time.time) -> None:
        self.issuer = issuer
        self._clock = clock
        self._keys: Dict[str, SessionKey] = {}
        self._locks: Dict[str, asyncio.Lock] = {}
        self.issued_count = 0

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    def peek(self, address: str) -> Optional[SessionKey]:
        """Cached live key for `address`, or None. Never issues."""
        key = self._keys.get(address)
        if key is not None and not key.is_expired(self._now_ms()):
            return key
        return None

    async def get(self, address: str, sign_personal_message: SignPersonalMessage) -> SessionKey:
        """Return the cached live key for `address`, issuing one if needed."""
        lock = self._locks.setdefault(address, asyncio.Lock())
        async with lock:
            key = self.peek(address)
            if key is not None:
                return key
            key = await self.issuer.issue(address, sign_personal_message)
            self._keys[address] = key
            self.issued_count += 1
            logger.debug("Session key issued", extra={"address": address})
            return key

    def invalidate(self, address: str) -> None:
        self._keys.pop(address, None)


class ContentReader:
    """Downloads and decrypts gated content for a requester.

    The content identity travels in the ciphertext header; the session key
    is looked up by the requester's address.

    Example:
        >>> reader = ContentReader(WalrusBlobReader(), gateway, cache)
        >>> data = await reader.read(blob_id, wallet_address, access_pass_id, sign)
    """

    def __init__(
        self,
        blobs: BlobReader,
        gateway: EncryptionGateway,
        cache: SessionKeyCache,
    ) -> None:
        self.blobs = blobs
        self.gateway = gateway
        self.cache = cache

    async def read(
        self,
        blob_id: str,
        requester: str,
        capability_ref: Optional[str],
        sign_personal_message: SignPersonalMessage,
    ) -> bytes:
        """Fetch `blob_id` and decrypt it as `requester`.

        Raises:
            BlobNotFoundError: If the blob cannot be downloaded
            DecryptionDenied: If the capability is missing or not approved
            SessionKeyRefreshFailed: If a freshly issued key also expires
        """
        ciphertext = await self.blobs.read(blob_id)

        session_key = await self.cache.get(requester, sign_personal_message)
        try:
            return await self.gateway.decrypt(ciphertext, session_key, capability_ref)
        except ExpiredSessionKey:
            logger.info("Session key expired, re-issuing", extra={"address": requester})
            self.cache.invalidate(requester)

        session_key = await self.cache.get(requester, sign_personal_message)
        try:
            return await self.gateway.decrypt(ciphertext, session_key, capability_ref)
        except ExpiredSessionKey as e:
            self.cache.invalidate(requester)
            raise SessionKeyRefreshFailed(
                f"Session key for {requester} expired again right after re-issue", requester
            ) from e
