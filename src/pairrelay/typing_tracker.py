"""Ephemeral "is typing" marks."""

import time
from threading import Lock
from typing import Callable

from pairrelay.errors import NotFoundError


class TypingTracker:
    """Per-pair, per-device typing timestamps.

    A mark is active while ``now - timestamp < window``. Stale marks are
    never swept; they simply stop counting the next time anyone asks.
    Marks are only accepted for pairs opened with ``open`` and not yet
    dropped.
    """

    def __init__(
        self,
        window: float = 3.0,
        clock: Callable[[], float] = time.time,
    ):
        """Initialize the tracker.

        Args:
            window: Seconds a mark stays active without a refresh.
            clock: Time source (Unix seconds).
        """
        self.window = window
        self._clock = clock
        self._marks: dict[str, dict[str, float]] = {}
        self._lock = Lock()

    def open(self, pair_id: str) -> None:
        """Start tracking a newly created pair."""
        with self._lock:
            self._marks[pair_id] = {}

    def set_typing(self, pair_id: str, device_id: str, is_typing: bool) -> None:
        """Record, refresh or cancel a device's typing mark.

        Raises:
            NotFoundError: If the pair is not open.
        """
        with self._lock:
            marks = self._marks.get(pair_id)
            if marks is None:
                raise NotFoundError("Pair not found")

            if is_typing:
                marks[device_id] = self._clock()
            else:
                marks.pop(device_id, None)

    def is_typing(self, pair_id: str, device_id: str) -> bool:
        """Check whether a device has an active mark."""
        with self._lock:
            timestamp = self._marks.get(pair_id, {}).get(device_id)
        if timestamp is None:
            return False
        return self._clock() - timestamp < self.window

    def is_partner_typing(self, pair, viewer_device_id: str) -> bool:
        """Check whether the viewer's partner in ``pair`` is typing."""
        return self.is_typing(pair.id, pair.partner_of(viewer_device_id))

    def drop(self, pair_id: str) -> None:
        """Forget a pair and every mark in it."""
        with self._lock:
            self._marks.pop(pair_id, None)

    def __contains__(self, pair_id: str) -> bool:
        with self._lock:
            return pair_id in self._marks
