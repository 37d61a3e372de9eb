"""
Ledger transaction builders and signer callback types.

The SDK never holds keys. Every transaction is handed to a caller-supplied
`sign_and_execute` callback, and session keys are proven with a
caller-supplied `sign_personal_message` callback.

Invariants:
    - Builders are pure: they only describe Move calls
    - Object arguments are referenced by id; pure arguments carry a Move type

How to change safely:
    - Argument order must match the Move entry function signature
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional

CLOCK_OBJECT_ID = "0x6"


@dataclass(frozen=True)
class ObjectArg:
    """Reference to an on-ledger object."""

    object_id: str


@dataclass(frozen=True)
class PureArg:
    """Pure value with its Move type, e.g. ("string", "hello") or ("u64", 5)."""

    move_type: str
    value: Any


@dataclass
class MoveCall:
    target: str
    arguments: list = field(default_factory=list)


@dataclass
class Transaction:
    """A programmable transaction: an ordered list of Move calls.

    Example:
        >>> tx = Transaction(sender="0xme")
        >>> tx.move_call("0xpkg::suipatron::publish_content", [ObjectArg("0xp1"), ...])
    """

    sender: Optional[str] = None
    calls: list = field(default_factory=list)

    def move_call(self, target: str, arguments: list) -> MoveCall:
        call = MoveCall(target=target, arguments=list(arguments))
        self.calls.append(call)
        return call

    def to_dict(self) -> dict:
        return {
            "sender": self.sender,
            "calls": [
                {
                    "target": call.target,
                    "arguments": [
                        {"object": arg.object_id}
                        if isinstance(arg, ObjectArg)
                        else {"pure": arg.value, "type": arg.move_type}
                        for arg in call.arguments
                    ],
                }
                for call in self.calls
            ],
        }


@dataclass
class ExecutionResult:
    """Outcome of sign-and-execute as reported by the ledger.

    Attributes:
        digest: Transaction digest
        status: "success" or "failure"
        error: Failure reason when status is "failure"
        created_objects: Ids of objects created by the transaction
    """

    digest: str
    status: str = "success"
    error: Optional[str] = None
    created_objects: list = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.status == "success"


SignAndExecute = Callable[[Transaction], Awaitable[ExecutionResult]]
SignPersonalMessage = Callable[[bytes], Awaitable[str]]


def build_publish_content_tx(
    package_id: str,
    profile_id: str,
    creator_cap_id: str,
    title: str,
    description: str,
    blob_id: str,
    content_type: str,
    sender: Optional[str] = None,
) -> Transaction:
    """Build the publish_content transaction.

    Args:
        package_id: Published package id
        profile_id: Creator profile object
        creator_cap_id: Creator capability proving ownership of the profile
        title: Content title
        description: Content description
        blob_id: Certified blob id in the storage network
        content_type: Content type tag (image, text, pdf, ...)
        sender: Transaction sender address

    Returns:
        Transaction with a single publish_content call
    """
    tx = Transaction(sender=sender)
    tx.move_call(
        f"{package_id}::suipatron::publish_content",
        [
            ObjectArg(profile_id),
            ObjectArg(creator_cap_id),
            PureArg("string", title),
            PureArg("string", description),
            PureArg("string", blob_id),
            PureArg("string", content_type),
            ObjectArg(CLOCK_OBJECT_ID),
        ],
    )
    return tx
