"""
Voteshare -- bounded hand-off buffer between vote arrival and the producer.

Votes arrive from the upstream listener on whatever thread it uses and
are drained by the producer's timer task on the event loop.  The buffer
is the only state those two paths share, so it carries its own lock.

Backpressure: ``offer()`` never blocks and never evicts.  When the
buffer is full the newest vote is refused and the caller decides how to
report it.
"""

from __future__ import annotations

import logging
import threading
from collections import deque

from voteshare.events.vote import Vote

logger = logging.getLogger(__name__)

DEFAULT_CAPACITY: int = 2048


class VoteBuffer:
    """Fixed-capacity, thread-safe FIFO of pending votes.

    Args:
        capacity: Maximum number of votes held at once.
    """

    def __init__(self, capacity: int = DEFAULT_CAPACITY) -> None:
        if capacity < 1:
            raise ValueError(f"capacity must be >= 1, got {capacity}")
        self._capacity: int = capacity
        self._votes: deque[Vote] = deque()
        self._lock = threading.Lock()

        self.stats: dict[str, int] = {
            "offered": 0,
            "accepted": 0,
            "rejected": 0,
            "drained": 0,
        }

    @property
    def capacity(self) -> int:
        return self._capacity

    def __len__(self) -> int:
        with self._lock:
            return len(self._votes)

    def is_empty(self) -> bool:
        return len(self) == 0

    def offer(self, vote: Vote) -> bool:
        """Append *vote* if there is room.

        Returns:
            ``True`` if the vote was queued, ``False`` if the buffer is full
            (in which case nothing changes).
        """
        with self._lock:
            self.stats["offered"] += 1
            if len(self._votes) >= self._capacity:
                self.stats["rejected"] += 1
                return False
            self._votes.append(vote)
            self.stats["accepted"] += 1
            return True

    def drain_all(self) -> list[Vote]:
        """Atomically remove and return every queued vote, oldest first."""
        with self._lock:
            if not self._votes:
                return []
            drained = list(self._votes)
            self._votes.clear()
            self.stats["drained"] += len(drained)
        return drained

    def clear(self) -> int:
        """Discard every queued vote.  Returns how many were dropped."""
        with self._lock:
            dropped = len(self._votes)
            self._votes.clear()
        if dropped:
            logger.info("Discarded %d pending votes", dropped)
        return dropped
