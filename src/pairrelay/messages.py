"""Bounded per-pair message logs."""

import logging
import time
import uuid
from collections import deque
from dataclasses import dataclass, field, replace
from threading import Lock
from typing import Callable, Iterable, Optional, Union

from pairrelay.errors import NotFoundError, ValidationError

logger = logging.getLogger(__name__)

# Legacy wire form for image messages sent by older clients
IMAGE_PREFIX = "[IMAGE]:"


@dataclass(frozen=True)
class TextPayload:
    """Plain text message body."""

    text: str

    kind = "text"

    @property
    def value(self) -> str:
        return self.text

    def truncated(self, max_length: int) -> "TextPayload":
        return TextPayload(self.text[:max_length])

    def to_content(self) -> str:
        return self.text


@dataclass(frozen=True)
class ImagePayload:
    """Reference to an image held on the sending device.

    The relay never receives image bytes; ``uri`` is opaque to it.
    """

    uri: str

    kind = "image"

    @property
    def value(self) -> str:
        return self.uri

    def truncated(self, max_length: int) -> "ImagePayload":
        """Cut the URI so the rendered content fits in ``max_length``."""
        return ImagePayload(self.uri[:max(max_length - len(IMAGE_PREFIX), 0)])

    def to_content(self) -> str:
        return f"{IMAGE_PREFIX}{self.uri}"


MessagePayload = Union[TextPayload, ImagePayload]

PAYLOAD_KINDS = {
    TextPayload.kind: TextPayload,
    ImagePayload.kind: ImagePayload,
}


def parse_payload(content: str, kind: Optional[str] = None) -> MessagePayload:
    """Build a payload from wire fields.

    Args:
        content: Message content string.
        kind: ``"text"`` or ``"image"``. When omitted, a legacy
            ``[IMAGE]:<uri>`` content string becomes an ImagePayload.

    Raises:
        ValidationError: If kind is unknown or the payload is empty.
    """
    if kind is None:
        if content.startswith(IMAGE_PREFIX):
            kind = ImagePayload.kind
            content = content[len(IMAGE_PREFIX):]
        else:
            kind = TextPayload.kind

    payload_cls = PAYLOAD_KINDS.get(kind)
    if payload_cls is None:
        raise ValidationError(f"Unknown message kind: {kind}")
    if not content:
        raise ValidationError("Message content required")
    return payload_cls(content)


@dataclass
class Message:
    """A relayed message. Only ``read`` changes after creation."""

    id: str
    sender_id: str
    payload: MessagePayload
    created_at: float
    read: bool = False

    @property
    def content(self) -> str:
        return self.payload.to_content()


@dataclass
class MessageLog:
    """FIFO message window for one pair."""

    capacity: int
    messages: deque = field(default_factory=deque)
    lock: Lock = field(default_factory=Lock, repr=False)


class MessageStore:
    """Owns the message log of every live pair.

    Each log has its own lock; the store lock only guards the mapping
    from pair id to log.
    """

    def __init__(
        self,
        max_length: int = 1000,
        capacity: int = 500,
        clock: Callable[[], float] = time.time,
    ):
        """Initialize the store.

        Args:
            max_length: Payloads are truncated to this many code points.
            capacity: Messages kept per pair before the oldest are evicted.
            clock: Time source (Unix seconds).
        """
        self.max_length = max_length
        self.capacity = capacity
        self._clock = clock
        self._logs: dict[str, MessageLog] = {}
        self._lock = Lock()

    def _log(self, pair_id: str) -> MessageLog:
        with self._lock:
            log = self._logs.get(pair_id)
        if log is None:
            raise NotFoundError("Pair not found")
        return log

    def open(self, pair_id: str) -> None:
        """Create an empty log for a newly created pair."""
        with self._lock:
            self._logs[pair_id] = MessageLog(capacity=self.capacity)

    def drop(self, pair_id: str) -> None:
        """Destroy a pair's log."""
        with self._lock:
            self._logs.pop(pair_id, None)

    def append(
        self, pair_id: str, sender_id: str, payload: MessagePayload
    ) -> Message:
        """Store a message, evicting the oldest past capacity.

        Returns:
            The stored message.
        """
        message = Message(
            id=str(uuid.uuid4()),
            sender_id=sender_id,
            payload=payload.truncated(self.max_length),
            created_at=self._clock(),
        )

        log = self._log(pair_id)
        with log.lock:
            log.messages.append(message)
            while len(log.messages) > log.capacity:
                log.messages.popleft()

        return message

    def list_messages(self, pair_id: str) -> list[Message]:
        """Snapshot of the pair's messages, oldest first."""
        log = self._log(pair_id)
        with log.lock:
            return [replace(m) for m in log.messages]

    def mark_read(
        self, pair_id: str, reader_id: str, message_ids: Iterable[str]
    ) -> int:
        """Mark messages read on behalf of ``reader_id``.

        Messages sent by the reader are skipped and unknown ids ignored.

        Returns:
            Number of messages that flipped to read.
        """
        wanted = set(message_ids)
        log = self._log(pair_id)
        flipped = 0
        with log.lock:
            for message in log.messages:
                if (
                    message.id in wanted
                    and message.sender_id != reader_id
                    and not message.read
                ):
                    message.read = True
                    flipped += 1
        return flipped

    def poll_and_acknowledge(self, pair_id: str, reader_id: str) -> list[Message]:
        """Snapshot the log, then mark everything sent to the reader as read.

        The returned snapshot reflects read state from before this call.
        """
        log = self._log(pair_id)
        with log.lock:
            snapshot = [replace(m) for m in log.messages]
            for message in log.messages:
                if message.sender_id != reader_id:
                    message.read = True
        return snapshot

    def clear(self, pair_id: str) -> None:
        """Empty the pair's log. The pair itself is untouched."""
        log = self._log(pair_id)
        with log.lock:
            log.messages.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._logs)

    def __contains__(self, pair_id: str) -> bool:
        with self._lock:
            return pair_id in self._logs
