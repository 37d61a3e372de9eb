"""
Shared fixtures for Patron tests.

Store-level tests run against both backends through the `store` fixture.
"""

import tempfile

import pytest

from backend.patron_server.ledger.memory import InMemoryLedger
from backend.patron_server.store.memory_store import InMemoryStore
from backend.patron_server.store.sqlite_store import SqliteStore
from sdk.patron_sdk.transactions import ExecutionResult

PACKAGE_ID = "0xpkg"


@pytest.fixture
def data_dir():
    """Create temporary data directory."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield tmpdir


@pytest.fixture(params=["sqlite", "memory"])
async def store(request, data_dir):
    """Initialized store, once per backend."""
    if request.param == "sqlite":
        backend = SqliteStore(data_dir, wal_mode=False)
    else:
        backend = InMemoryStore()
    await backend.initialize()
    yield backend
    await backend.close()


@pytest.fixture
def ledger():
    return InMemoryLedger()


class FakeWallet:
    """Signer callbacks that record every request.

    Set `reject_targets` to make matching Move calls report failure.
    """

    def __init__(self, address: str = "0xcreator") -> None:
        self.address = address
        self.transactions = []
        self.messages = []
        self.reject_targets = set()

    async def sign_and_execute(self, tx):
        self.transactions.append(tx)
        digest = f"digest-{len(self.transactions)}"
        if any(call.target.split("::")[-1] in self.reject_targets for call in tx.calls):
            return ExecutionResult(digest=digest, status="failure", error="MoveAbort")
        return ExecutionResult(digest=digest)

    async def sign_personal_message(self, message: bytes) -> str:
        self.messages.append(message)
        return f"sig-{len(self.messages)}"

    def targets(self):
        return [call.target.split("::")[-1] for tx in self.transactions for call in tx.calls]


@pytest.fixture
def wallet():
    return FakeWallet()
