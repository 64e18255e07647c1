"""Relay service: the single owner of all in-memory relay state.

Every pair-scoped operation resolves the pair first (NotFound), then
checks membership (NotAuthorized), and only then touches the message
store or typing tracker.
"""

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Optional

from pairrelay.codes import CodeGenerator, PendingCode, random_code
from pairrelay.config import Config
from pairrelay.errors import ValidationError
from pairrelay.formatting import iso_timestamp, short_id
from pairrelay.messages import Message, MessageStore, parse_payload
from pairrelay.registry import Pair, PairingStatus, PairRegistry
from pairrelay.typing_tracker import TypingTracker

logger = logging.getLogger(__name__)


def message_to_dict(message: Message) -> dict[str, Any]:
    """Wire representation of a message."""
    return {
        "id": message.id,
        "senderId": message.sender_id,
        "content": message.content,
        "kind": message.payload.kind,
        "timestamp": iso_timestamp(message.created_at),
        "read": message.read,
    }


@dataclass
class PollResult:
    """Messages and partner typing state returned by a poll."""

    messages: list[Message]
    partner_typing: bool

    def to_dict(self) -> dict[str, Any]:
        return {
            "messages": [message_to_dict(m) for m in self.messages],
            "partnerTyping": self.partner_typing,
        }


@dataclass
class HealthReport:
    """Diagnostic counters."""

    timestamp: float
    active_pairs: int
    pending_codes: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": "ok",
            "timestamp": iso_timestamp(self.timestamp),
            "activePairs": self.active_pairs,
            "pendingCodes": self.pending_codes,
        }


def _require(message: str, *values: str) -> None:
    if not all(values):
        raise ValidationError(message)


class RelayService:
    """Orchestrates pairing and message relay for all devices."""

    def __init__(
        self,
        config: Optional[Config] = None,
        clock: Callable[[], float] = time.time,
        code_source: Callable[[], str] = random_code,
    ):
        """Initialize the service and its stores.

        Args:
            config: Server configuration. Defaults are used if None.
            clock: Time source shared by every store.
            code_source: Candidate pairing code factory.
        """
        config = config or Config()
        self._clock = clock

        self.codes = CodeGenerator(
            ttl=config.pairing.code_ttl,
            bind_grace=config.pairing.bind_grace,
            max_attempts=config.pairing.max_attempts,
            clock=clock,
            code_source=code_source,
        )
        self.messages = MessageStore(
            max_length=config.messages.max_length,
            capacity=config.messages.capacity,
            clock=clock,
        )
        self.typing = TypingTracker(window=config.typing.window, clock=clock)
        self.registry = PairRegistry(
            self.codes, self.messages, self.typing, clock=clock
        )

    # =========================================================================
    # Pairing
    # =========================================================================

    def generate_code(self, device_id: str) -> PendingCode:
        return self.registry.generate_code(device_id)

    def join(self, device_id: str, code: str) -> Pair:
        return self.registry.join(code, device_id)

    def status(self, device_id: str, code: str) -> PairingStatus:
        return self.registry.status(device_id, code)

    def unpair(self, pair_id: str, device_id: str) -> Pair:
        """Destroy the caller's pair."""
        _require("Pair ID and device ID required", pair_id, device_id)
        self.registry.authorize(pair_id, device_id)
        return self.registry.unpair(pair_id)

    def reset_device(self, device_id: str) -> Optional[Pair]:
        """Forget the device's pair and pending codes."""
        return self.registry.reset_device(device_id)

    # =========================================================================
    # Messaging
    # =========================================================================

    def send(
        self,
        pair_id: str,
        device_id: str,
        content: str,
        kind: Optional[str] = None,
    ) -> Message:
        """Append a message from ``device_id`` to the pair's log."""
        _require(
            "Pair ID, device ID, and content required", pair_id, device_id, content
        )
        payload = parse_payload(content, kind)

        self.registry.authorize(pair_id, device_id)
        message = self.messages.append(pair_id, device_id, payload)

        logger.debug(f"Message sent in pair {short_id(pair_id)}")
        return message

    def poll_and_acknowledge(self, pair_id: str, device_id: str) -> PollResult:
        """Fetch the pair's messages and acknowledge the incoming ones.

        Every unread message not sent by the caller is marked read as a
        side effect; the returned messages show the state before that.
        """
        _require("Pair ID and device ID required", pair_id, device_id)
        pair = self.registry.authorize(pair_id, device_id)

        messages = self.messages.poll_and_acknowledge(pair_id, device_id)
        partner_typing = self.typing.is_partner_typing(pair, device_id)

        return PollResult(messages=messages, partner_typing=partner_typing)

    def set_typing(self, pair_id: str, device_id: str, is_typing: bool) -> None:
        _require("Pair ID and device ID required", pair_id, device_id)
        self.registry.authorize(pair_id, device_id)
        self.typing.set_typing(pair_id, device_id, is_typing)

    def mark_read(
        self, pair_id: str, device_id: str, message_ids: Iterable[str]
    ) -> int:
        """Mark the listed messages read on behalf of the caller."""
        _require("Pair ID, device ID, and message IDs required", pair_id, device_id)
        self.registry.authorize(pair_id, device_id)
        return self.messages.mark_read(pair_id, device_id, message_ids)

    def clear(self, pair_id: str, device_id: str) -> None:
        """Delete every message in the pair; the pair stays."""
        _require("Pair ID and device ID required", pair_id, device_id)
        self.registry.authorize(pair_id, device_id)
        self.messages.clear(pair_id)

        logger.info(f"Messages cleared for pair {short_id(pair_id)}")

    # =========================================================================
    # Diagnostics
    # =========================================================================

    def health(self) -> HealthReport:
        self.codes.sweep()
        return HealthReport(
            timestamp=self._clock(),
            active_pairs=len(self.registry),
            pending_codes=len(self.codes),
        )
