"""
Unit tests for the versioned event schema mapper.
"""

import pytest

from backend.patron_server.errors import EventSchemaError
from backend.patron_server.sync.events import (
    DECODERS,
    TRACKED_EVENTS,
    AccessPurchased,
    ContentPublished,
    ProfileCreated,
    ProfileUpdated,
    decode_content_object,
    decode_event,
    decode_profile_object,
    full_event_type,
    referenced_objects,
)


class TestEventTypes:
    def test_full_event_type(self):
        assert full_event_type("0xabc", "ProfileCreated") == "0xabc::suipatron::ProfileCreated"
        assert full_event_type("0xabc", "HandleRegistered") == "0xabc::registry::HandleRegistered"

    def test_every_tracked_event_has_a_decoder(self):
        for name in TRACKED_EVENTS:
            assert (name, 1) in DECODERS


class TestDecodeEvent:
    """Tests for decode_event."""

    def test_profile_created_with_string_integers(self):
        event = decode_event(
            "ProfileCreated",
            {"profile_id": "0xp1", "owner": "0xo", "name": "Alice", "timestamp": "1000", "price": "5"},
        )

        assert event == ProfileCreated(
            profile_id="0xp1", owner="0xo", name="Alice", timestamp=1000, price=5
        )

    def test_missing_required_field(self):
        with pytest.raises(EventSchemaError) as exc_info:
            decode_event("ProfileCreated", {"profile_id": "0xp1", "owner": "0xo", "name": "A"})

        assert "timestamp" in str(exc_info.value)

    def test_ill_typed_integer(self):
        with pytest.raises(EventSchemaError):
            decode_event(
                "ContentPublished",
                {
                    "content_id": "0xc1",
                    "profile_id": "0xp1",
                    "blob_id": "b",
                    "content_type": "image",
                    "timestamp": "yesterday",
                },
            )

    def test_bool_is_not_an_integer(self):
        with pytest.raises(EventSchemaError):
            decode_event(
                "SubscriptionRenewed", {"access_pass_id": "0xa1", "new_expires_at": True}
            )

    def test_empty_string_rejected(self):
        with pytest.raises(EventSchemaError):
            decode_event(
                "HandleRegistered", {"handle": "", "profile_id": "0xp1", "timestamp": 1}
            )

    def test_non_dict_payload(self):
        with pytest.raises(EventSchemaError):
            decode_event("ProfileCreated", ["not", "a", "dict"])

    @pytest.mark.parametrize(
        "encoded,expected",
        [
            (None, None),
            (9000, 9000),
            ("9000", 9000),
            ([], None),
            (["9000"], 9000),
            ({"vec": []}, None),
            ({"vec": [9000]}, 9000),
        ],
    )
    def test_option_encodings(self, encoded, expected):
        payload = {
            "access_pass_id": "0xa1",
            "profile_id": "0xp1",
            "supporter": "0xfan",
            "amount": 100,
            "timestamp": 1,
            "expires_at": encoded,
        }
        event = decode_event("AccessPurchased", payload)
        assert isinstance(event, AccessPurchased)
        assert event.expires_at == expected

    def test_option_with_two_elements_rejected(self):
        with pytest.raises(EventSchemaError):
            decode_event(
                "ProfileUpdated", {"profile_id": "0xp1", "price": {"vec": [1, 2]}}
            )

    def test_profile_updated_optional_fields(self):
        event = decode_event("ProfileUpdated", {"profile_id": "0xp1", "bio": "hi"})

        assert event == ProfileUpdated(profile_id="0xp1", bio="hi")

    def test_unknown_version(self):
        with pytest.raises(KeyError):
            decode_event("ProfileCreated", {}, version=99)


class TestReferencedObjects:
    def test_content_reads_content_then_profile(self):
        event = ContentPublished("0xc1", "0xp1", "blob", "image", 1)
        assert referenced_objects(event) == ["0xc1", "0xp1"]

    def test_profile_events_read_profile(self):
        assert referenced_objects(ProfileUpdated(profile_id="0xp1")) == ["0xp1"]


class TestObjectMapping:
    def test_profile_object(self):
        obj = decode_profile_object(
            {
                "owner": "0xo",
                "name": "Alice",
                "bio": "",
                "avatar_blob_id": {"vec": ["avatar"]},
                "suins_name": None,
                "price": "250",
                "content_count": "99",
            }
        )

        assert obj.owner == "0xo"
        assert obj.bio == ""
        assert obj.avatar_blob_id == "avatar"
        assert obj.alias is None
        assert obj.price == 250

    def test_content_object_defaults(self):
        obj = decode_content_object({"blob_id": "b1"})

        assert obj.title == ""
        assert obj.description == ""
        assert obj.blob_id == "b1"
        assert obj.content_type is None
