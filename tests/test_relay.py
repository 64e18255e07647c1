"""Tests for the relay service."""

import pytest

from pairrelay.config import Config, MessagesConfig
from pairrelay.errors import (
    ConflictError,
    NotAuthorizedError,
    NotFoundError,
    ValidationError,
)
from pairrelay.messages import ImagePayload
from pairrelay.relay import RelayService


@pytest.fixture
def relay(clock) -> RelayService:
    return RelayService(clock=clock, code_source=lambda: "4821")


@pytest.fixture
def pair_id(relay: RelayService) -> str:
    relay.generate_code("device-a")
    return relay.join("device-b", "4821").id


class TestPairingFlow:
    """Tests for the pairing operations."""

    def test_both_devices_see_same_pair(self, relay: RelayService):
        """Joiner and owner observe the same pair id and each other."""
        pending = relay.generate_code("device-a")
        assert pending.code == "4821"

        pair = relay.join("device-b", "4821")
        status = relay.status("device-a", "4821")

        assert status.pair_id == pair.id
        assert status.partner_device_id == "device-b"
        assert pair.partner_of("device-b") == "device-a"

    def test_paired_devices_blocked(self, relay: RelayService, pair_id: str):
        with pytest.raises(ConflictError):
            relay.generate_code("device-a")
        with pytest.raises(ConflictError):
            relay.join("device-b", "4821")

    def test_unpair_requires_membership(self, relay: RelayService, pair_id: str):
        with pytest.raises(NotAuthorizedError):
            relay.unpair(pair_id, "device-c")

        relay.unpair(pair_id, "device-a")

        with pytest.raises(NotFoundError):
            relay.poll_and_acknowledge(pair_id, "device-b")


class TestMessaging:
    """Tests for send, poll, read and clear."""

    def test_send_then_poll(self, relay: RelayService, pair_id: str):
        """Recipient sees unread first, then read; sender sees read after."""
        relay.send(pair_id, "device-a", "hi")

        first = relay.poll_and_acknowledge(pair_id, "device-b")
        assert len(first.messages) == 1
        assert first.messages[0].content == "hi"
        assert first.messages[0].read is False

        second = relay.poll_and_acknowledge(pair_id, "device-b")
        assert second.messages[0].read is True

        sender_view = relay.poll_and_acknowledge(pair_id, "device-a")
        assert sender_view.messages[0].read is True

    def test_501_sends_keep_500(self, relay: RelayService, pair_id: str):
        """The earliest returned message is the second one sent."""
        sent = [relay.send(pair_id, "device-a", f"m{i}") for i in range(501)]

        result = relay.poll_and_acknowledge(pair_id, "device-b")

        assert len(result.messages) == 500
        assert result.messages[0].id == sent[1].id
        assert result.messages[-1].id == sent[-1].id

    def test_send_validation(self, relay: RelayService, pair_id: str):
        with pytest.raises(ValidationError):
            relay.send(pair_id, "device-a", "")
        with pytest.raises(ValidationError):
            relay.send("", "device-a", "hi")

    def test_send_not_found_before_not_authorized(self, relay: RelayService, pair_id: str):
        with pytest.raises(NotFoundError):
            relay.send("missing", "device-c", "hi")
        with pytest.raises(NotAuthorizedError):
            relay.send(pair_id, "device-c", "hi")

    def test_send_image(self, relay: RelayService, pair_id: str):
        message = relay.send(pair_id, "device-a", "[IMAGE]:file:///cat.jpg")
        assert message.payload == ImagePayload("file:///cat.jpg")

    def test_truncation_uses_config(self, clock):
        relay = RelayService(
            Config(messages=MessagesConfig(max_length=5)),
            clock=clock,
            code_source=lambda: "4821",
        )
        relay.generate_code("device-a")
        pair = relay.join("device-b", "4821")

        message = relay.send(pair.id, "device-a", "abcdefgh")

        assert message.content == "abcde"

    def test_long_legacy_image_fits_limit(self, relay: RelayService, pair_id: str):
        relay.send(pair_id, "device-a", "[IMAGE]:" + "x" * 1500)

        (message,) = relay.poll_and_acknowledge(pair_id, "device-b").messages
        assert len(message.content) == 1000
        assert message.payload.kind == "image"

    def test_mark_read(self, relay: RelayService, pair_id: str):
        message = relay.send(pair_id, "device-a", "hi")

        assert relay.mark_read(pair_id, "device-a", [message.id]) == 0
        assert relay.mark_read(pair_id, "device-b", [message.id]) == 1

    def test_clear(self, relay: RelayService, pair_id: str):
        relay.send(pair_id, "device-a", "hi")

        relay.clear(pair_id, "device-b")

        assert relay.poll_and_acknowledge(pair_id, "device-a").messages == []
        assert relay.registry.get(pair_id) is not None


class TestTyping:
    """Tests for typing indicators through the service."""

    def test_partner_typing_in_poll(self, relay: RelayService, pair_id: str, clock):
        relay.set_typing(pair_id, "device-a", True)

        assert relay.poll_and_acknowledge(pair_id, "device-b").partner_typing is True
        assert relay.poll_and_acknowledge(pair_id, "device-a").partner_typing is False

        clock.advance(3)
        assert relay.poll_and_acknowledge(pair_id, "device-b").partner_typing is False

    def test_typing_requires_membership(self, relay: RelayService, pair_id: str):
        with pytest.raises(NotAuthorizedError):
            relay.set_typing(pair_id, "device-c", True)

    def test_typing_racing_unpair_leaves_no_marks(
        self, relay: RelayService, pair_id: str, monkeypatch
    ):
        """An unpair landing between authorization and the mark is not undone."""
        authorize = relay.registry.authorize

        def authorize_then_unpair(pid, device_id):
            pair = authorize(pid, device_id)
            relay.registry.unpair(pid)
            return pair

        monkeypatch.setattr(relay.registry, "authorize", authorize_then_unpair)

        with pytest.raises(NotFoundError):
            relay.set_typing(pair_id, "device-a", True)

        assert pair_id not in relay.typing


class TestHealth:
    """Tests for the health report."""

    def test_counts(self, relay: RelayService, pair_id: str, clock):
        report = relay.health()
        assert report.active_pairs == 1
        assert report.pending_codes == 1  # still in grace window

        clock.advance(5)
        assert relay.health().pending_codes == 0

    def test_to_dict(self, relay: RelayService, clock):
        data = relay.health().to_dict()

        assert data["status"] == "ok"
        assert data["timestamp"].endswith("Z")
        assert data["activePairs"] == 0
        assert data["pendingCodes"] == 0
