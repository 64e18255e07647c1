"""Registry of live two-device pairs.

The registry turns a joined pairing code into a permanent pair and
enforces the one-pair-per-device rule. It also keeps the message store
and typing tracker in lockstep with pair creation and destruction.
"""

import logging
import time
import uuid
from dataclasses import dataclass
from threading import Lock
from typing import Any, Callable, Optional

from pairrelay.codes import CodeGenerator, PendingCode
from pairrelay.errors import (
    ConflictError,
    NotAuthorizedError,
    NotFoundError,
    ValidationError,
)
from pairrelay.formatting import short_id
from pairrelay.messages import MessageStore
from pairrelay.typing_tracker import TypingTracker

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Pair:
    """Two devices bound by a pairing code.

    Attributes:
        id: Opaque pair identifier.
        device_a: Device that generated the code.
        device_b: Device that joined with the code.
        created_at: Unix timestamp of creation.
    """

    id: str
    device_a: str
    device_b: str
    created_at: float

    def has_member(self, device_id: str) -> bool:
        return device_id in (self.device_a, self.device_b)

    def partner_of(self, device_id: str) -> str:
        """Return the other member of the pair."""
        return self.device_b if device_id == self.device_a else self.device_a


@dataclass
class PairingStatus:
    """Result of a status poll by the code owner."""

    status: str  # pending, paired
    pair_id: Optional[str] = None
    partner_device_id: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        if self.status != "paired":
            return {"status": self.status}
        return {
            "status": self.status,
            "pairId": self.pair_id,
            "partnerDeviceId": self.partner_device_id,
        }


class PairRegistry:
    """Owns the mapping from pair id to Pair.

    All pair mutations run under one lock. Lock order is registry, then
    codes, then messages/typing.
    """

    def __init__(
        self,
        codes: CodeGenerator,
        messages: MessageStore,
        typing: TypingTracker,
        clock: Callable[[], float] = time.time,
    ):
        """Initialize the registry.

        Args:
            codes: Pending-code table used by generate/join/status.
            messages: Message store opened and dropped with each pair.
            typing: Typing tracker dropped with each pair.
            clock: Time source (Unix seconds).
        """
        self.codes = codes
        self.messages = messages
        self.typing = typing
        self._clock = clock
        self._pairs: dict[str, Pair] = {}
        self._device_pairs: dict[str, str] = {}
        self._lock = Lock()

    def _is_paired_locked(self, device_id: str) -> bool:
        return device_id in self._device_pairs

    def is_paired(self, device_id: str) -> bool:
        """Check if a device belongs to a live pair."""
        with self._lock:
            return self._is_paired_locked(device_id)

    def generate_code(self, owner_device_id: str) -> PendingCode:
        """Issue a pairing code for an unpaired device.

        Raises:
            ValidationError: If the device id is empty.
            ConflictError: If the device is already paired.
            ExhaustedError: If no unique code could be allocated.
        """
        if not owner_device_id:
            raise ValidationError("Device ID required")

        with self._lock:
            if self._is_paired_locked(owner_device_id):
                raise ConflictError("Device already paired")
            return self.codes.generate(owner_device_id)

    def join(self, code: str, joining_device_id: str) -> Pair:
        """Pair the joining device with the owner of ``code``.

        Returns:
            The new pair; ``device_a`` is the code owner.

        Raises:
            ValidationError: If a field is empty.
            ConflictError: If either device is paired, or on self-pairing.
            NotFoundError: If the code is unknown, expired or already used.
        """
        if not joining_device_id or not code:
            raise ValidationError("Device ID and code required")

        with self._lock:
            if self._is_paired_locked(joining_device_id):
                raise ConflictError("Device already paired")

            pending = self.codes.lookup(code)
            owner = pending.owner_device_id

            if owner == joining_device_id:
                raise ConflictError("Cannot pair with yourself")

            if self._is_paired_locked(owner):
                raise ConflictError("Device already paired")

            pair = Pair(
                id=str(uuid.uuid4()),
                device_a=owner,
                device_b=joining_device_id,
                created_at=self._clock(),
            )
            self.codes.bind(code, pair.id)

            self._pairs[pair.id] = pair
            self._device_pairs[owner] = pair.id
            self._device_pairs[joining_device_id] = pair.id
            self.messages.open(pair.id)
            self.typing.open(pair.id)

            # Other codes held by either device can no longer be joined
            self.codes.discard_for({owner, joining_device_id}, keep=code)

        logger.info(
            f"Devices paired: {short_id(owner)} <-> {short_id(joining_device_id)}"
        )
        return pair

    def status(self, owner_device_id: str, code: str) -> PairingStatus:
        """Report whether the owner's code has been joined.

        Raises:
            ValidationError: If a field is empty.
            NotFoundError: If the code is unknown or expired.
            NotAuthorizedError: If the caller does not own the code.
        """
        if not owner_device_id or not code:
            raise ValidationError("Device ID and code required")

        pending = self.codes.get(code)
        if pending is None:
            raise NotFoundError("Code not found")

        if pending.owner_device_id != owner_device_id:
            raise NotAuthorizedError("Not authorized")

        if pending.bound_pair_id is not None:
            with self._lock:
                pair = self._pairs.get(pending.bound_pair_id)
            if pair is not None:
                return PairingStatus(
                    status="paired",
                    pair_id=pair.id,
                    partner_device_id=pair.partner_of(owner_device_id),
                )

        return PairingStatus(status="pending")

    def get(self, pair_id: str) -> Optional[Pair]:
        """Get a pair by ID."""
        with self._lock:
            return self._pairs.get(pair_id)

    def authorize(self, pair_id: str, device_id: str) -> Pair:
        """Resolve a pair and check the caller belongs to it.

        Raises:
            NotFoundError: If the pair does not exist.
            NotAuthorizedError: If the device is not a member.
        """
        pair = self.get(pair_id)
        if pair is None:
            raise NotFoundError("Pair not found")
        if not pair.has_member(device_id):
            raise NotAuthorizedError("Not authorized")
        return pair

    def is_member(self, pair_id: str, device_id: str) -> bool:
        """Check if a device belongs to a pair."""
        pair = self.get(pair_id)
        return pair is not None and pair.has_member(device_id)

    def _remove_locked(self, pair: Pair) -> None:
        del self._pairs[pair.id]
        self._device_pairs.pop(pair.device_a, None)
        self._device_pairs.pop(pair.device_b, None)
        self.codes.discard_for(pair_id=pair.id)
        self.messages.drop(pair.id)
        self.typing.drop(pair.id)

    def unpair(self, pair_id: str) -> Pair:
        """Destroy a pair together with its messages and typing marks.

        Raises:
            NotFoundError: If the pair does not exist.
        """
        with self._lock:
            pair = self._pairs.get(pair_id)
            if pair is None:
                raise NotFoundError("Pair not found")
            self._remove_locked(pair)

        logger.info(f"Pair destroyed: {short_id(pair.id)}")
        return pair

    def reset_device(self, device_id: str) -> Optional[Pair]:
        """Forget everything held for a device.

        Destroys the device's pair (if any) and drops its pending codes.

        Returns:
            The destroyed pair, or None if the device was not paired.
        """
        if not device_id:
            raise ValidationError("Device ID required")

        with self._lock:
            pair_id = self._device_pairs.get(device_id)
            pair = self._pairs.get(pair_id) if pair_id else None
            if pair is not None:
                self._remove_locked(pair)
            self.codes.discard_for({device_id})

        logger.info(f"Device reset: {short_id(device_id)}")
        return pair

    def __len__(self) -> int:
        with self._lock:
            return len(self._pairs)

    def __contains__(self, pair_id: str) -> bool:
        with self._lock:
            return pair_id in self._pairs
