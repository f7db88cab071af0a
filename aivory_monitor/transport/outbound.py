"""Bounded FIFO buffer for messages awaiting an authenticated connection."""

from __future__ import annotations

import logging
from collections import deque
from typing import Iterator, Optional

logger = logging.getLogger(__name__)

DEFAULT_MAX_QUEUE_SIZE = 1000


class OutboundQueue:
    """FIFO of serialized messages that evicts the oldest entry on overflow.

    Not thread-safe on its own; the owning connection serializes access
    under its lock.
    """

    def __init__(self, max_size: int = DEFAULT_MAX_QUEUE_SIZE) -> None:
        self._max_size = max(1, int(max_size))
        self._items: deque[str] = deque()
        self._evicted = 0

    @property
    def max_size(self) -> int:
        return self._max_size

    @property
    def evicted(self) -> int:
        """Return how many messages were dropped because the queue was full."""
        return self._evicted

    def append(self, message: str) -> None:
        """Add a message at the back, evicting the oldest when full."""
        self._items.append(message)
        while len(self._items) > self._max_size:
            self._items.popleft()
            self._evicted += 1
            logger.debug("Outbound queue full; evicted oldest message")

    def popleft(self) -> Optional[str]:
        """Remove and return the oldest message, or None when empty."""
        if not self._items:
            return None
        return self._items.popleft()

    def push_front(self, message: str) -> None:
        """Return a message to the front after a failed send."""
        self._items.appendleft(message)
        while len(self._items) > self._max_size:
            self._items.pop()
            self._evicted += 1

    def clear(self) -> None:
        self._items.clear()

    def __len__(self) -> int:
        return len(self._items)

    def __bool__(self) -> bool:
        return bool(self._items)

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._items))


__all__ = ["DEFAULT_MAX_QUEUE_SIZE", "OutboundQueue"]
