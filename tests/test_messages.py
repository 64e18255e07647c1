"""Tests for the per-pair message store."""

import pytest

from pairrelay.errors import NotFoundError, ValidationError
from pairrelay.messages import (
    ImagePayload,
    MessageStore,
    TextPayload,
    parse_payload,
)


class TestParsePayload:
    """Tests for wire payload decoding."""

    def test_plain_text(self):
        assert parse_payload("hi") == TextPayload("hi")

    def test_legacy_image_prefix(self):
        """Prefixed content without a kind becomes an image reference."""
        payload = parse_payload("[IMAGE]:file:///photo.jpg")
        assert payload == ImagePayload("file:///photo.jpg")

    def test_explicit_kind(self):
        """An explicit kind is taken as-is, without prefix sniffing."""
        assert parse_payload("[IMAGE]:x", "text") == TextPayload("[IMAGE]:x")
        assert parse_payload("content://img/1", "image") == ImagePayload("content://img/1")

    def test_unknown_kind(self):
        with pytest.raises(ValidationError):
            parse_payload("hi", "video")

    def test_empty_image_uri(self):
        with pytest.raises(ValidationError):
            parse_payload("[IMAGE]:")

    def test_image_round_trips_to_legacy_content(self):
        """Image payloads render in the form older clients expect."""
        assert ImagePayload("file:///a.png").to_content() == "[IMAGE]:file:///a.png"


class TestAppend:
    """Tests for MessageStore.append."""

    @pytest.fixture
    def store(self, clock) -> MessageStore:
        store = MessageStore(clock=clock)
        store.open("pair-1")
        return store

    def test_append_assigns_id_and_timestamp(self, store: MessageStore, clock):
        message = store.append("pair-1", "device-a", TextPayload("hi"))

        assert message.id
        assert message.sender_id == "device-a"
        assert message.content == "hi"
        assert message.created_at == clock.now
        assert message.read is False

    def test_ids_unique(self, store: MessageStore):
        ids = {store.append("pair-1", "device-a", TextPayload("x")).id for _ in range(50)}
        assert len(ids) == 50

    def test_content_truncated(self, store: MessageStore):
        """Long content is truncated to 1000 code points, not rejected."""
        message = store.append("pair-1", "device-a", TextPayload("é" * 1500))
        assert message.content == "é" * 1000

    def test_image_content_truncated_with_prefix(self, store: MessageStore):
        """The rendered image content, prefix included, stays within 1000."""
        message = store.append("pair-1", "device-a", ImagePayload("x" * 1500))

        assert len(message.content) == 1000
        assert message.content.startswith("[IMAGE]:")
        assert message.payload == ImagePayload("x" * 992)

    def test_unknown_pair(self, store: MessageStore):
        with pytest.raises(NotFoundError):
            store.append("pair-x", "device-a", TextPayload("hi"))

    def test_capacity_evicts_oldest(self, clock):
        """The log never exceeds capacity and evicts in FIFO order."""
        store = MessageStore(capacity=500, clock=clock)
        store.open("pair-1")

        sent = [
            store.append("pair-1", "device-a", TextPayload(f"msg {i}")).id
            for i in range(501)
        ]

        messages = store.list_messages("pair-1")
        assert len(messages) == 500
        assert [m.id for m in messages] == sent[1:]
        assert messages[0].content == "msg 1"

    def test_small_capacity(self, clock):
        store = MessageStore(capacity=3, clock=clock)
        store.open("pair-1")
        for i in range(10):
            store.append("pair-1", "device-a", TextPayload(str(i)))

        assert [m.content for m in store.list_messages("pair-1")] == ["7", "8", "9"]


class TestReadState:
    """Tests for mark_read and poll_and_acknowledge."""

    @pytest.fixture
    def store(self, clock) -> MessageStore:
        store = MessageStore(clock=clock)
        store.open("pair-1")
        return store

    def test_mark_read_skips_own_messages(self, store: MessageStore):
        """A sender cannot mark its own message read."""
        own = store.append("pair-1", "device-a", TextPayload("mine"))
        theirs = store.append("pair-1", "device-b", TextPayload("theirs"))

        store.mark_read("pair-1", "device-a", [own.id, theirs.id])

        by_id = {m.id: m for m in store.list_messages("pair-1")}
        assert by_id[own.id].read is False
        assert by_id[theirs.id].read is True

    def test_mark_read_idempotent(self, store: MessageStore):
        message = store.append("pair-1", "device-b", TextPayload("hi"))

        assert store.mark_read("pair-1", "device-a", [message.id]) == 1
        assert store.mark_read("pair-1", "device-a", [message.id]) == 0
        assert store.list_messages("pair-1")[0].read is True

    def test_mark_read_ignores_unknown_ids(self, store: MessageStore):
        store.append("pair-1", "device-b", TextPayload("hi"))

        assert store.mark_read("pair-1", "device-a", ["nope"]) == 0
        assert store.list_messages("pair-1")[0].read is False

    def test_list_is_snapshot(self, store: MessageStore):
        """Mutating a listed message does not change the store."""
        store.append("pair-1", "device-b", TextPayload("hi"))

        snapshot = store.list_messages("pair-1")
        snapshot[0].read = True

        assert store.list_messages("pair-1")[0].read is False

    def test_poll_returns_state_before_acknowledging(self, store: MessageStore):
        """First poll shows unread, later polls show read."""
        store.append("pair-1", "device-a", TextPayload("hi"))

        first = store.poll_and_acknowledge("pair-1", "device-b")
        second = store.poll_and_acknowledge("pair-1", "device-b")

        assert first[0].read is False
        assert second[0].read is True

    def test_poll_does_not_acknowledge_own(self, store: MessageStore):
        store.append("pair-1", "device-a", TextPayload("hi"))

        store.poll_and_acknowledge("pair-1", "device-a")

        assert store.list_messages("pair-1")[0].read is False


class TestClearAndDrop:
    """Tests for clear, open and drop."""

    def test_clear_keeps_log(self, clock):
        store = MessageStore(clock=clock)
        store.open("pair-1")
        store.append("pair-1", "device-a", TextPayload("hi"))

        store.clear("pair-1")

        assert store.list_messages("pair-1") == []
        assert "pair-1" in store

    def test_drop_removes_log(self, clock):
        store = MessageStore(clock=clock)
        store.open("pair-1")

        store.drop("pair-1")

        assert "pair-1" not in store
        with pytest.raises(NotFoundError):
            store.list_messages("pair-1")
