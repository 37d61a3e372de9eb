"""
Integration tests for the HTTP API.

Drives the aiohttp application through aiohttp's test client over a real
store and synchronizer backed by the in-memory ledger.
"""

import pytest
from aiohttp import test_utils

from backend.patron_server.api import PatronServicer, create_http_app
from backend.patron_server.config import HttpConfig
from backend.patron_server.store.base import (
    AccessPurchase,
    Content,
    ContentType,
    CreatorProfile,
    HandleRecord,
)
from backend.patron_server.sync.events import full_event_type
from backend.patron_server.sync.synchronizer import EventSynchronizer

PACKAGE_ID = "0xpkg"


async def seed(store, count=3):
    for i in range(count):
        await store.upsert_creator(
            CreatorProfile(
                profile_id=f"0xp{i}",
                owner="0xowner",
                name=f"Creator {i}",
                bio="",
                price=100,
                created_at=1000 + i,
            )
        )
    await store.upsert_content(
        Content("0xc1", "0xp0", "Title", "Desc", "blob1", ContentType.parse("pdf"), 2000)
    )
    await store.add_access_purchase(AccessPurchase("0xa1", "0xp0", "0xfan", 100, 3000))
    await store.upsert_handle(HandleRecord("alice", "0xp0", 10))


@pytest.fixture
async def client_factory(store, ledger):
    clients = []

    async def make(sync_secret=None, with_sync=True, cors_origins=("*",)):
        synchronizer = EventSynchronizer(ledger, store, PACKAGE_ID) if with_sync else None
        servicer = PatronServicer(store, synchronizer)
        app = create_http_app(servicer, HttpConfig(cors_origins=cors_origins), sync_secret)
        client = test_utils.TestClient(test_utils.TestServer(app))
        await client.start_server()
        clients.append(client)
        return client

    yield make

    for client in clients:
        await client.close()


class TestCreatorRoutes:
    """Tests for the read routes."""

    @pytest.mark.asyncio
    async def test_list_creators_pages(self, store, client_factory):
        await seed(store)
        client = await client_factory()

        resp = await client.get("/creators", params={"limit": "2"})
        assert resp.status == 200
        body = await resp.json()
        assert [c["profileId"] for c in body["creators"]] == ["0xp0", "0xp1"]
        assert body["hasNextPage"] is True
        assert body["creators"][0]["contentCount"] == 1
        assert body["creators"][0]["totalSupporters"] == 1

        resp = await client.get("/creators", params={"limit": "2", "cursor": body["nextCursor"]})
        body = await resp.json()
        assert [c["profileId"] for c in body["creators"]] == ["0xp2"]
        assert body["nextCursor"] is None
        assert body["hasNextPage"] is False

    @pytest.mark.asyncio
    @pytest.mark.parametrize("limit", ["0", "101", "ten"])
    async def test_invalid_limit(self, store, client_factory, limit):
        client = await client_factory()

        resp = await client.get("/creators", params={"limit": limit})

        assert resp.status == 400
        body = await resp.json()
        assert body["errorCode"] == "VALIDATION_ERROR"
        assert "limit" in body["error"]

    @pytest.mark.asyncio
    async def test_invalid_cursor(self, store, client_factory):
        client = await client_factory()

        resp = await client.get("/creators", params={"cursor": "garbage!!"})

        assert resp.status == 400

    @pytest.mark.asyncio
    async def test_creator_detail(self, store, client_factory):
        await seed(store)
        client = await client_factory()

        resp = await client.get("/creator/0xp0")
        assert resp.status == 200
        body = await resp.json()
        assert body["creator"]["name"] == "Creator 0"
        assert [c["contentId"] for c in body["content"]] == ["0xc1"]
        assert body["content"][0]["contentType"] == "pdf"

    @pytest.mark.asyncio
    async def test_unknown_creator(self, store, client_factory):
        client = await client_factory()

        resp = await client.get("/creator/0xnope")

        assert resp.status == 404
        assert (await resp.json())["errorCode"] == "NOT_FOUND"

    @pytest.mark.asyncio
    async def test_supporters(self, store, client_factory):
        await seed(store)
        client = await client_factory()

        resp = await client.get("/creator/0xp0/supporters")
        body = await resp.json()
        assert [s["accessPassId"] for s in body["supporters"]] == ["0xa1"]

    @pytest.mark.asyncio
    async def test_registry(self, store, client_factory):
        await seed(store)
        client = await client_factory()

        resp = await client.get("/registry/alice")
        assert (await resp.json())["profileId"] == "0xp0"

        resp = await client.get("/registry/bob")
        assert resp.status == 404

    @pytest.mark.asyncio
    async def test_health(self, store, client_factory):
        client = await client_factory()

        resp = await client.get("/health")
        body = await resp.json()
        assert resp.status == 200
        assert body["healthy"] is True
        assert "creators" in body["stats"]

    @pytest.mark.asyncio
    async def test_cors_headers(self, store, client_factory):
        client = await client_factory(cors_origins=("https://app.test",))

        resp = await client.get("/health", headers={"Origin": "https://app.test"})
        assert resp.headers["Access-Control-Allow-Origin"] == "https://app.test"

        resp = await client.get("/health", headers={"Origin": "https://evil.test"})
        assert "Access-Control-Allow-Origin" not in resp.headers


class TestSyncRoute:
    """Tests for GET /events."""

    @pytest.mark.asyncio
    async def test_runs_sync(self, store, ledger, client_factory):
        ledger.emit(
            full_event_type(PACKAGE_ID, "HandleRegistered"),
            {"handle": "alice", "profile_id": "0xp1", "timestamp": 1},
        )
        client = await client_factory()

        resp = await client.get("/events")

        assert resp.status == 200
        assert await resp.json() == {"ok": True, "processed": 1}
        assert (await store.get_handle("alice")).profile_id == "0xp1"

    @pytest.mark.asyncio
    async def test_errors_are_reported_in_body(self, store, ledger, client_factory):
        ledger.inject_failure("query_events")
        client = await client_factory()

        resp = await client.get("/events")

        body = await resp.json()
        assert resp.status == 200
        assert body["ok"] is True
        assert body["errors"][0].startswith("query ProfileCreated:")

    @pytest.mark.asyncio
    async def test_requires_bearer_secret(self, store, client_factory):
        client = await client_factory(sync_secret="s3cret")

        resp = await client.get("/events")
        assert resp.status == 401
        assert (await resp.json())["errorCode"] == "UNAUTHORIZED"

        resp = await client.get("/events", headers={"Authorization": "Bearer wrong"})
        assert resp.status == 401

        resp = await client.get("/events", headers={"Authorization": "Bearer s3cret"})
        assert resp.status == 200

    @pytest.mark.asyncio
    async def test_without_synchronizer(self, store, client_factory):
        client = await client_factory(with_sync=False)

        resp = await client.get("/events")

        assert resp.status == 404
