"""
Unit tests for the materialized store.

Every test runs against both backends (SQLite and in-memory).

Tests cover:
- Creator upsert and partial update
- Derived counters (content_count, total_supporters)
- Idempotent content and purchase inserts
- Keyset pagination
- Handles, skipped events and cursors
- Integer range checks
"""

import asyncio

import pytest

from backend.patron_server.errors import UnknownCreatorError, ValidationError
from backend.patron_server.store.base import (
    AccessPurchase,
    Content,
    ContentKind,
    ContentType,
    CreatorProfile,
    HandleRecord,
    ProfilePatch,
    SkippedEvent,
    decode_cursor,
    encode_cursor,
)


def make_creator(profile_id: str, created_at: int = 1000, **overrides) -> CreatorProfile:
    fields = dict(
        profile_id=profile_id,
        owner="0xowner",
        name=f"Creator {profile_id}",
        bio="",
        price=100,
        created_at=created_at,
    )
    fields.update(overrides)
    return CreatorProfile(**fields)


def make_content(content_id: str, profile_id: str, created_at: int = 2000) -> Content:
    return Content(
        content_id=content_id,
        profile_id=profile_id,
        title="Title",
        description="Description",
        blob_id=f"blob-{content_id}",
        content_type=ContentType.parse("image"),
        created_at=created_at,
    )


def make_purchase(pass_id: str, profile_id: str, timestamp: int = 3000, expires_at=None):
    return AccessPurchase(
        access_pass_id=pass_id,
        profile_id=profile_id,
        supporter="0xfan",
        amount=100,
        timestamp=timestamp,
        expires_at=expires_at,
    )


class TestCreators:
    """Tests for creator rows."""

    @pytest.mark.asyncio
    async def test_upsert_and_get(self, store):
        """Upserted creator is readable with zero counters."""
        stored = await store.upsert_creator(make_creator("0xp1", bio="hello"))

        assert stored.profile_id == "0xp1"
        assert stored.bio == "hello"
        assert stored.content_count == 0
        assert stored.total_supporters == 0

        fetched = await store.get_creator("0xp1")
        assert fetched == stored

    @pytest.mark.asyncio
    async def test_get_missing_creator(self, store):
        assert await store.get_creator("0xnope") is None

    @pytest.mark.asyncio
    async def test_upsert_keeps_created_at(self, store):
        """Re-upserting never rewrites created_at."""
        await store.upsert_creator(make_creator("0xp1", created_at=1000))
        updated = await store.upsert_creator(make_creator("0xp1", created_at=9999, name="New"))

        assert updated.name == "New"
        assert updated.created_at == 1000

    @pytest.mark.asyncio
    async def test_upsert_keeps_counters(self, store):
        """Counters survive an upsert because they are derived from rows."""
        await store.upsert_creator(make_creator("0xp1"))
        await store.upsert_content(make_content("0xc1", "0xp1"))
        await store.add_access_purchase(make_purchase("0xa1", "0xp1"))

        again = await store.upsert_creator(make_creator("0xp1", content_count=0))
        assert again.content_count == 1
        assert again.total_supporters == 1

    @pytest.mark.asyncio
    async def test_update_creator_partial(self, store):
        """Absent patch fields leave the row unchanged."""
        await store.upsert_creator(make_creator("0xp1", bio="old bio", price=100))

        updated = await store.update_creator("0xp1", ProfilePatch(bio="new bio"))

        assert updated is not None
        assert updated.bio == "new bio"
        assert updated.price == 100
        assert updated.name == "Creator 0xp1"

    @pytest.mark.asyncio
    async def test_update_missing_creator(self, store):
        assert await store.update_creator("0xnope", ProfilePatch(name="x")) is None

    @pytest.mark.asyncio
    async def test_empty_patch_is_noop(self, store):
        original = await store.upsert_creator(make_creator("0xp1"))
        assert await store.update_creator("0xp1", ProfilePatch()) == original


class TestContentAndPurchases:
    """Tests for content and access purchase rows."""

    @pytest.mark.asyncio
    async def test_content_increments_count(self, store):
        await store.upsert_creator(make_creator("0xp1"))

        assert await store.upsert_content(make_content("0xc1", "0xp1")) is True
        assert await store.upsert_content(make_content("0xc2", "0xp1")) is True

        creator = await store.get_creator("0xp1")
        assert creator.content_count == 2

    @pytest.mark.asyncio
    async def test_content_upsert_idempotent(self, store):
        """Re-applying content is a no-op."""
        await store.upsert_creator(make_creator("0xp1"))
        await store.upsert_content(make_content("0xc1", "0xp1"))

        assert await store.upsert_content(make_content("0xc1", "0xp1")) is False
        assert (await store.get_creator("0xp1")).content_count == 1

    @pytest.mark.asyncio
    async def test_content_for_unknown_creator(self, store):
        with pytest.raises(UnknownCreatorError):
            await store.upsert_content(make_content("0xc1", "0xghost"))

    @pytest.mark.asyncio
    async def test_content_order(self, store):
        """Content is ordered by (created_at, content_id) ascending."""
        await store.upsert_creator(make_creator("0xp1"))
        await store.upsert_content(make_content("0xc3", "0xp1", created_at=20))
        await store.upsert_content(make_content("0xc2", "0xp1", created_at=10))
        await store.upsert_content(make_content("0xc1", "0xp1", created_at=20))

        ids = [c.content_id for c in await store.get_content_by_profile("0xp1")]
        assert ids == ["0xc2", "0xc1", "0xc3"]

    @pytest.mark.asyncio
    async def test_unknown_content_type_round_trips(self, store):
        await store.upsert_creator(make_creator("0xp1"))
        content = make_content("0xc1", "0xp1")
        content.content_type = ContentType.parse("model/gltf")
        await store.upsert_content(content)

        [fetched] = await store.get_content_by_profile("0xp1")
        assert fetched.content_type.kind is ContentKind.UNKNOWN
        assert fetched.content_type.tag == "model/gltf"

    @pytest.mark.asyncio
    async def test_double_purchase_counts_once(self, store):
        """The same access pass applied twice increments supporters once."""
        await store.upsert_creator(make_creator("0xp1"))

        assert await store.add_access_purchase(make_purchase("0xa1", "0xp1")) is True
        assert await store.add_access_purchase(make_purchase("0xa1", "0xp1")) is False

        assert (await store.get_creator("0xp1")).total_supporters == 1

    @pytest.mark.asyncio
    async def test_concurrent_purchases_count_once(self, store):
        """Concurrent inserts of one pass still count a single supporter."""
        await store.upsert_creator(make_creator("0xp1"))

        results = await asyncio.gather(
            *(store.add_access_purchase(make_purchase("0xa1", "0xp1")) for _ in range(5))
        )

        assert results.count(True) == 1
        assert (await store.get_creator("0xp1")).total_supporters == 1

    @pytest.mark.asyncio
    async def test_purchase_for_unknown_creator(self, store):
        with pytest.raises(UnknownCreatorError):
            await store.add_access_purchase(make_purchase("0xa1", "0xghost"))

    @pytest.mark.asyncio
    async def test_supporters_newest_first(self, store):
        await store.upsert_creator(make_creator("0xp1"))
        await store.add_access_purchase(make_purchase("0xa1", "0xp1", timestamp=10))
        await store.add_access_purchase(make_purchase("0xa2", "0xp1", timestamp=30))
        await store.add_access_purchase(make_purchase("0xa3", "0xp1", timestamp=20))

        ids = [p.access_pass_id for p in await store.get_supporters("0xp1")]
        assert ids == ["0xa2", "0xa3", "0xa1"]

    @pytest.mark.asyncio
    async def test_renewal_extends_expiry(self, store):
        await store.upsert_creator(make_creator("0xp1"))
        await store.add_access_purchase(make_purchase("0xa1", "0xp1", expires_at=5000))

        assert await store.update_access_expiry("0xa1", 9000) is True
        [purchase] = await store.get_supporters("0xp1")
        assert purchase.expires_at == 9000

        # An older renewal replayed later never shortens the pass
        assert await store.update_access_expiry("0xa1", 7000) is True
        [purchase] = await store.get_supporters("0xp1")
        assert purchase.expires_at == 9000

    @pytest.mark.asyncio
    async def test_renewal_keeps_permanent_pass(self, store):
        await store.upsert_creator(make_creator("0xp1"))
        await store.add_access_purchase(make_purchase("0xa1", "0xp1", expires_at=None))

        assert await store.update_access_expiry("0xa1", 9000) is True
        [purchase] = await store.get_supporters("0xp1")
        assert purchase.expires_at is None

    @pytest.mark.asyncio
    async def test_renewal_of_unknown_pass(self, store):
        assert await store.update_access_expiry("0xnope", 9000) is False


class TestKeysetPagination:
    """Tests for get_creators keyset pagination."""

    @pytest.mark.asyncio
    async def test_pages_cover_all_creators(self, store):
        for i in range(7):
            await store.upsert_creator(make_creator(f"0xp{i}", created_at=100 + i // 2))

        seen = []
        cursor = None
        while True:
            page = await store.get_creators(limit=3, cursor=cursor)
            seen.extend(c.profile_id for c in page.items)
            if not page.has_next_page:
                break
            cursor = page.next_cursor

        assert sorted(seen) == [f"0xp{i}" for i in range(7)]
        assert len(seen) == len(set(seen))

    @pytest.mark.asyncio
    async def test_exact_multiple_has_no_next_page(self, store):
        for i in range(4):
            await store.upsert_creator(make_creator(f"0xp{i}", created_at=100 + i))

        first = await store.get_creators(limit=2)
        second = await store.get_creators(limit=2, cursor=first.next_cursor)

        assert first.has_next_page
        assert len(second.items) == 2
        assert second.next_cursor is None

    @pytest.mark.asyncio
    async def test_concurrent_insert_not_skipped_or_repeated(self, store):
        """Creators inserted between pages appear at most once and never shift earlier rows."""
        for i in range(4):
            await store.upsert_creator(make_creator(f"0xp{i}", created_at=100 + i))

        first = await store.get_creators(limit=2)
        # Sorts before the cursor: must not appear; sorts after: must appear once
        await store.upsert_creator(make_creator("0xearly", created_at=50))
        await store.upsert_creator(make_creator("0xlate", created_at=500))
        rest = await store.get_creators(limit=10, cursor=first.next_cursor)

        ids = [c.profile_id for c in first.items + rest.items]
        assert ids == ["0xp0", "0xp1", "0xp2", "0xp3", "0xlate"]

    @pytest.mark.asyncio
    async def test_invalid_cursor(self, store):
        with pytest.raises(ValidationError):
            await store.get_creators(limit=10, cursor="not-a-cursor!")

    @pytest.mark.asyncio
    async def test_invalid_limit(self, store):
        with pytest.raises(ValidationError):
            await store.get_creators(limit=0)

    def test_cursor_encoding(self):
        token = encode_cursor(1234, "0xabc")
        assert "=" not in token
        assert decode_cursor(token) == (1234, "0xabc")


class TestIntegerRange:
    """Values beyond a signed 64-bit integer are rejected by both backends."""

    @pytest.mark.asyncio
    async def test_purchase_amount_out_of_range(self, store):
        await store.upsert_creator(make_creator("0xp1"))
        purchase = make_purchase("0xbig", "0xp1")
        purchase.amount = 2**64 - 1

        with pytest.raises(ValidationError) as exc_info:
            await store.add_access_purchase(purchase)
        assert exc_info.value.details == {"field": "amount"}
        assert await store.get_supporters("0xp1") == []

    @pytest.mark.asyncio
    async def test_largest_storable_value(self, store):
        await store.upsert_creator(make_creator("0xp1", price=2**63 - 1))

        assert (await store.get_creator("0xp1")).price == 2**63 - 1

    @pytest.mark.asyncio
    async def test_price_patch_and_expiry_out_of_range(self, store):
        await store.upsert_creator(make_creator("0xp1"))
        await store.add_access_purchase(make_purchase("0xa1", "0xp1", expires_at=5000))

        with pytest.raises(ValidationError):
            await store.update_creator("0xp1", ProfilePatch(price=2**63))
        with pytest.raises(ValidationError):
            await store.update_access_expiry("0xa1", 2**64)

        assert (await store.get_creator("0xp1")).price == 100
        [purchase] = await store.get_supporters("0xp1")
        assert purchase.expires_at == 5000


class TestAuxiliaryTables:
    """Tests for handles, skipped events, cursors and stats."""

    @pytest.mark.asyncio
    async def test_handles(self, store):
        await store.upsert_handle(HandleRecord("alice", "0xp1", 10))
        await store.upsert_handle(HandleRecord("alice", "0xp2", 20))

        record = await store.get_handle("alice")
        assert record.profile_id == "0xp2"
        assert await store.get_handle("bob") is None

    @pytest.mark.asyncio
    async def test_skipped_events(self, store):
        await store.record_skipped_event(SkippedEvent("ContentPublished", "tx1:0", "boom", 10))
        await store.record_skipped_event(SkippedEvent("ContentPublished", "tx2:0", "bang", 20))
        await store.record_skipped_event(SkippedEvent("ContentPublished", "tx1:0", "boom2", 30))

        skipped = await store.get_skipped_events()
        assert [(s.event_key, s.error) for s in skipped] == [("tx1:0", "boom2"), ("tx2:0", "bang")]

    @pytest.mark.asyncio
    async def test_cursors(self, store):
        assert await store.get_cursor("ProfileCreated") is None

        await store.set_cursor("ProfileCreated", "c1")
        await store.set_cursor("ProfileCreated", "c2")
        await store.set_cursor("AccessPurchased", "c3")

        assert await store.get_cursor("ProfileCreated") == "c2"
        assert await store.get_cursors() == {"ProfileCreated": "c2", "AccessPurchased": "c3"}

    @pytest.mark.asyncio
    async def test_stats(self, store):
        await store.upsert_creator(make_creator("0xp1"))
        await store.upsert_content(make_content("0xc1", "0xp1"))

        stats = await store.stats()
        assert stats["creators"] == 1
        assert stats["content"] == 1
        assert stats["access_purchases"] == 0


class TestSqlitePersistence:
    """SQLite-specific durability."""

    @pytest.mark.asyncio
    async def test_reopen_keeps_rows(self, data_dir):
        from backend.patron_server.store.sqlite_store import SqliteStore

        first = SqliteStore(data_dir, wal_mode=False)
        await first.initialize()
        await first.upsert_creator(make_creator("0xp1"))
        await first.set_cursor("ProfileCreated", "c1")

        second = SqliteStore(data_dir, wal_mode=False)
        await second.initialize()
        assert (await second.get_creator("0xp1")).name == "Creator 0xp1"
        assert await second.get_cursor("ProfileCreated") == "c1"

    @pytest.mark.asyncio
    async def test_instances_do_not_share_state(self):
        from backend.patron_server.store.memory_store import InMemoryStore

        a, b = InMemoryStore(), InMemoryStore()
        await a.upsert_creator(make_creator("0xp1"))
        assert await b.get_creator("0xp1") is None


class TestContentType:
    """Tests for ContentType parsing."""

    @pytest.mark.parametrize(
        "tag,kind",
        [
            ("image", ContentKind.IMAGE),
            ("TEXT", ContentKind.TEXT),
            ("pdf", ContentKind.PDF),
            ("application/pdf", ContentKind.PDF),
            ("image/png", ContentKind.IMAGE),
            ("video/mp4", ContentKind.VIDEO),
            ("audio", ContentKind.AUDIO),
            ("spreadsheet", ContentKind.UNKNOWN),
        ],
    )
    def test_parse(self, tag, kind):
        assert ContentType.parse(tag).kind is kind

    def test_unknown_keeps_raw_tag(self):
        parsed = ContentType.parse("spreadsheet")
        assert parsed.tag == "spreadsheet"
        assert parsed.is_known is False


class TestAccessPurchase:
    def test_is_active(self):
        assert make_purchase("0xa1", "0xp1", expires_at=None).is_active(now_ms=10**15)
        assert make_purchase("0xa1", "0xp1", expires_at=5000).is_active(now_ms=4999)
        assert not make_purchase("0xa1", "0xp1", expires_at=5000).is_active(now_ms=5000)
