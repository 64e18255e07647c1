"""Short-lived pairing codes.

A pending code is a 4-digit numeral bound to the device that requested
it. Expiry is lazy: every entry point that reads the table sweeps it
first, so no timer task is needed.
"""

import logging
import secrets
import time
from dataclasses import dataclass
from threading import Lock
from typing import Callable, Iterable, Optional

from pairrelay.errors import ExhaustedError, NotFoundError, ValidationError
from pairrelay.formatting import short_id

logger = logging.getLogger(__name__)

CODE_MIN = 1000
CODE_MAX = 9999


def random_code() -> str:
    """Draw a uniformly random 4-digit code (1000-9999)."""
    return str(CODE_MIN + secrets.randbelow(CODE_MAX - CODE_MIN + 1))


@dataclass
class PendingCode:
    """A pairing code waiting for a second device.

    Attributes:
        code: 4-digit numeral.
        owner_device_id: Device that generated the code.
        created_at: Unix timestamp of issuance.
        expires_at: Absolute Unix timestamp after which the code is dead.
        bound_pair_id: Pair created from this code, once joined.
        release_at: When a bound code is removed from the table.
    """

    code: str
    owner_device_id: str
    created_at: float
    expires_at: float
    bound_pair_id: Optional[str] = None
    release_at: Optional[float] = None

    def is_expired(self, now: float) -> bool:
        return now > self.expires_at

    def is_released(self, now: float) -> bool:
        return self.release_at is not None and now >= self.release_at

    @property
    def is_bound(self) -> bool:
        return self.bound_pair_id is not None


class CodeGenerator:
    """Issues pairing codes and owns the pending-code table."""

    def __init__(
        self,
        ttl: float = 420.0,
        bind_grace: float = 5.0,
        max_attempts: int = 100,
        clock: Callable[[], float] = time.time,
        code_source: Callable[[], str] = random_code,
    ):
        """Initialize the generator.

        Args:
            ttl: Seconds a code stays valid after issuance.
            bind_grace: Seconds a joined code stays visible to its owner.
            max_attempts: Random draws before giving up on a unique code.
            clock: Time source (Unix seconds).
            code_source: Candidate code factory.
        """
        self.ttl = ttl
        self.bind_grace = bind_grace
        self.max_attempts = max_attempts
        self._clock = clock
        self._code_source = code_source
        self._codes: dict[str, PendingCode] = {}
        self._lock = Lock()

    def _sweep_locked(self, now: float) -> int:
        dead = [
            code
            for code, pending in self._codes.items()
            if pending.is_expired(now) or pending.is_released(now)
        ]
        for code in dead:
            del self._codes[code]
        return len(dead)

    def sweep(self) -> int:
        """Remove expired and released codes.

        Returns:
            Number of codes removed.
        """
        with self._lock:
            removed = self._sweep_locked(self._clock())
        if removed:
            logger.debug(f"Swept {removed} pairing code(s)")
        return removed

    def generate(self, owner_device_id: str) -> PendingCode:
        """Issue a new code for a device.

        Generating and reserving the code happen under one lock, so two
        concurrent calls can never receive the same code.

        Raises:
            ValidationError: If the device id is empty.
            ExhaustedError: If no unique code was found.
        """
        if not owner_device_id:
            raise ValidationError("Device ID required")

        with self._lock:
            now = self._clock()
            self._sweep_locked(now)

            for _ in range(self.max_attempts):
                candidate = self._code_source()
                if candidate not in self._codes:
                    break
            else:
                logger.error(
                    f"No unique code after {self.max_attempts} attempts "
                    f"({len(self._codes)} pending)"
                )
                raise ExhaustedError("Failed to generate unique code")

            pending = PendingCode(
                code=candidate,
                owner_device_id=owner_device_id,
                created_at=now,
                expires_at=now + self.ttl,
            )
            self._codes[candidate] = pending

        logger.info(
            f"Generated code {candidate} for device {short_id(owner_device_id)}"
        )
        return pending

    def get(self, code: str) -> Optional[PendingCode]:
        """Get a live code (bound or not) after sweeping."""
        with self._lock:
            self._sweep_locked(self._clock())
            return self._codes.get(code)

    def lookup(self, code: str) -> PendingCode:
        """Get a code that can still be joined.

        Raises:
            NotFoundError: If the code is unknown, expired or already joined.
        """
        pending = self.get(code)
        if pending is None or pending.is_bound:
            raise NotFoundError("Invalid or expired code")
        return pending

    def bind(self, code: str, pair_id: str) -> PendingCode:
        """Mark a code as joined and schedule its release.

        Raises:
            NotFoundError: If the code vanished or was bound meanwhile.
        """
        with self._lock:
            now = self._clock()
            self._sweep_locked(now)
            pending = self._codes.get(code)
            if pending is None or pending.is_bound:
                raise NotFoundError("Invalid or expired code")
            pending.bound_pair_id = pair_id
            pending.release_at = now + self.bind_grace
            return pending

    def discard_for(
        self,
        device_ids: Iterable[str] = (),
        pair_id: Optional[str] = None,
        keep: Optional[str] = None,
    ) -> int:
        """Drop codes owned by any of ``device_ids`` or bound to ``pair_id``.

        Args:
            device_ids: Owners whose codes are dropped.
            pair_id: Pair whose bound codes are dropped.
            keep: Code to leave in place.

        Returns:
            Number of codes removed.
        """
        owners = set(device_ids)
        with self._lock:
            doomed = [
                code
                for code, pending in self._codes.items()
                if code != keep
                and (
                    pending.owner_device_id in owners
                    or (pair_id is not None and pending.bound_pair_id == pair_id)
                )
            ]
            for code in doomed:
                del self._codes[code]
            return len(doomed)

    def __len__(self) -> int:
        with self._lock:
            return len(self._codes)

    def __contains__(self, code: str) -> bool:
        with self._lock:
            return code in self._codes
