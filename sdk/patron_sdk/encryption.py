"""
Identity-based encryption gateway.

Content is encrypted to an identity (the owning creator's profile id) and
can only be decrypted by presenting a live session key together with a
capability (an access pass) that the access policy approves for that
identity.

Components:
    - SessionKey: short-lived, signed proof of the requester's address
    - EncryptionService: pluggable encrypt/decrypt backend
    - EncryptionGateway: checks session key expiry and capability presence
      before the service is contacted
    - LocalEncryptionService: AES-GCM backend with per-identity keys derived
      by HKDF from a master secret, for local development and tests

Invariants:
    - An expired session key never reaches the service
    - Decryption without a capability fails with DecryptionDenied
    - Ciphertexts are self-describing: the header carries format version
      and identity, and is authenticated as associated data

How to change safely:
    - Bump CIPHERTEXT_VERSION when the header layout changes and keep
      decrypting the old layout
"""

from __future__ import annotations

import logging
import os
import struct
import time
from abc import abstractmethod
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, Protocol, Tuple, runtime_checkable

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

from .errors import DecryptionDenied, ExpiredSessionKey

logger = logging.getLogger(__name__)

CIPHERTEXT_MAGIC = b"PTRN"
CIPHERTEXT_VERSION = 1
SESSION_KEY_TTL_MIN = 10

_KEY_LENGTH = 32
_NONCE_LENGTH = 12
_HKDF_INFO_PREFIX = b"patron:identity-key:v1:"

Clock = Callable[[], float]


@dataclass(frozen=True)
class SessionKey:
    """Signed, time-boxed proof that `address` requests decryption keys.

    Attributes:
        address: Requester address
        package_id: Package whose access policy is evaluated
        created_at_ms: Issue time (Unix ms)
        ttl_min: Lifetime in minutes
        signature: Signature over personal_message()
    """

    address: str
    package_id: str
    created_at_ms: int
    ttl_min: int
    signature: str

    @property
    def expires_at_ms(self) -> int:
        return self.created_at_ms + self.ttl_min * 60_000

    def is_expired(self, now_ms: int) -> bool:
        return now_ms >= self.expires_at_ms

    def personal_message(self) -> bytes:
        return session_key_message(self.package_id, self.ttl_min, self.created_at_ms)


def session_key_message(package_id: str, ttl_min: int, created_at_ms: int) -> bytes:
    """Message a wallet signs to activate a session key."""
    return (
        f"Accessing keys of package {package_id} for {ttl_min} mins "
        f"from {created_at_ms}"
    ).encode("utf-8")


@runtime_checkable
class EncryptionService(Protocol):
    """Identity-based encryption backend."""

    @abstractmethod
    async def encrypt(self, identity: str, data: bytes) -> bytes:
        ...

    @abstractmethod
    async def decrypt(self, ciphertext: bytes, session_key: SessionKey, capability_ref: str) -> bytes:
        """Decrypt if the capability is approved for the ciphertext's identity.

        Raises:
            ExpiredSessionKey: If the service considers the session key expired
            DecryptionDenied: If the capability is not approved
        """
        ...


class EncryptionGateway:
    """Front door to an EncryptionService.

    Example:
        >>> gateway = EncryptionGateway(service)
        >>> ciphertext = await gateway.encrypt(profile_id, data)
        >>> plaintext = await gateway.decrypt(ciphertext, session_key, access_pass_id)
    """

    def __init__(self, service: EncryptionService, clock: Clock = time.time) -> None:
        self.service = service
        self._clock = clock

    async def encrypt(self, identity: str, data: bytes) -> bytes:
        if not identity:
            raise ValueError("identity is required")
        return await self.service.encrypt(identity, data)

    async def decrypt(
        self, ciphertext: bytes, session_key: SessionKey, capability_ref: Optional[str]
    ) -> bytes:
        if session_key.is_expired(int(self._clock() * 1000)):
            raise ExpiredSessionKey(
                f"Session key for {session_key.address} expired at {session_key.expires_at_ms}"
            )
        if not capability_ref:
            raise DecryptionDenied("An access capability is required to decrypt")
        return await self.service.decrypt(ciphertext, session_key, capability_ref)


def pack_header(identity: str) -> bytes:
    encoded = identity.encode("utf-8")
    return CIPHERTEXT_MAGIC + struct.pack(">BH", CIPHERTEXT_VERSION, len(encoded)) + encoded


def unpack_header(ciphertext: bytes) -> Tuple[str, int]:
    """Return (identity, header length).

    Raises:
        DecryptionDenied: If the ciphertext is not in the expected format
    """
    fixed = len(CIPHERTEXT_MAGIC) + 3
    if len(ciphertext) < fixed or not ciphertext.startswith(CIPHERTEXT_MAGIC):
        raise DecryptionDenied("Ciphertext is not in a recognized format")
    version, length = struct.unpack(">BH", ciphertext[len(CIPHERTEXT_MAGIC) : fixed])
    if version != CIPHERTEXT_VERSION:
        raise DecryptionDenied(f"Unsupported ciphertext version {version}")
    if len(ciphertext) < fixed + length + _NONCE_LENGTH:
        raise DecryptionDenied("Ciphertext is truncated")
    try:
        identity = ciphertext[fixed : fixed + length].decode("utf-8")
    except UnicodeDecodeError as e:
        raise DecryptionDenied("Ciphertext is not in a recognized format") from e
    return identity, fixed + length


ApproveCallback = Callable[[str, str, str], Awaitable[bool]]


class LocalEncryptionService:
    """AES-GCM encryption service with HKDF-derived per-identity keys.

    The approve callback plays the role of the on-ledger access policy: it
    receives (identity, capability_ref, requester address) and returns
    whether access is granted.

    Example:
        >>> async def approve(identity, capability_ref, address):
        ...     return capability_ref in passes_of(address, identity)
        >>> service = LocalEncryptionService(os.urandom(32), approve)
    """

    def __init__(
        self,
        master_secret: bytes,
        approve: ApproveCallback,
        clock: Clock = time.time,
    ) -> None:
        if len(master_secret) < 16:
            raise ValueError("master_secret must be at least 16 bytes")
        self._master_secret = master_secret
        self._approve = approve
        self._clock = clock

    def _identity_key(self, identity: str) -> bytes:
        return HKDF(
            algorithm=hashes.SHA256(),
            length=_KEY_LENGTH,
            salt=None,
            info=_HKDF_INFO_PREFIX + identity.encode("utf-8"),
        ).derive(self._master_secret)

    async def encrypt(self, identity: str, data: bytes) -> bytes:
        header = pack_header(identity)
        nonce = os.urandom(_NONCE_LENGTH)
        sealed = AESGCM(self._identity_key(identity)).encrypt(nonce, data, header)
        return header + nonce + sealed

    async def decrypt(self, ciphertext: bytes, session_key: SessionKey, capability_ref: str) -> bytes:
        if session_key.is_expired(int(self._clock() * 1000)):
            raise ExpiredSessionKey()
        if not session_key.signature:
            raise DecryptionDenied("Session key is not signed")

        identity, offset = unpack_header(ciphertext)
        if not await self._approve(identity, capability_ref, session_key.address):
            logger.info(
                "Decryption denied",
                extra={"identity": identity, "address": session_key.address},
            )
            raise DecryptionDenied(
                f"Capability {capability_ref} does not grant access to {identity}",
                identity=identity,
            )

        nonce = ciphertext[offset : offset + _NONCE_LENGTH]
        sealed = ciphertext[offset + _NONCE_LENGTH :]
        try:
            return AESGCM(self._identity_key(identity)).decrypt(nonce, sealed, ciphertext[:offset])
        except InvalidTag as exc:
            raise DecryptionDenied("Ciphertext failed authentication", identity=identity) from exc
