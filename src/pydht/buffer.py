"""Bounded, chronologically ordered in-memory reading store.

This is the only mutable state shared between the live feed, the
backfill and query callers.
"""

from __future__ import annotations

import heapq
import threading
from collections.abc import Iterable
from operator import attrgetter

from pydht.models.reading import Reading

DEFAULT_CAPACITY = 1000

_by_observed_at = attrgetter("observed_at")


class BoundedOrderedBuffer:
    """Fixed-capacity store of readings sorted by ``observed_at``.

    Writers are serialized by a lock. Every insert builds a new tuple and
    publishes it with a single assignment, so :meth:`snapshot` never sees a
    half-merged or half-truncated sequence and does not need the lock.
    """

    def __init__(self, capacity: int = DEFAULT_CAPACITY) -> None:
        if capacity < 1:
            raise ValueError("capacity must be >= 1")
        self._capacity = capacity
        self._lock = threading.Lock()
        self._readings: tuple[Reading, ...] = ()

    @property
    def capacity(self) -> int:
        return self._capacity

    def insert(self, readings: Iterable[Reading]) -> int:
        """Merge *readings* into the buffer and evict the oldest overflow.

        The batch is sorted first (stable, so equal timestamps keep their
        arrival order) and then merged linearly with the current contents;
        existing entries come before incoming ones on ties.

        Returns the number of evicted readings.
        """
        batch = sorted(readings, key=_by_observed_at)
        if not batch:
            return 0

        with self._lock:
            current = self._readings
            if not current or current[-1].observed_at <= batch[0].observed_at:
                merged = [*current, *batch]
            else:
                merged = list(heapq.merge(current, batch, key=_by_observed_at))
            evicted = max(0, len(merged) - self._capacity)
            self._readings = tuple(merged[evicted:])
        return evicted

    def snapshot(self) -> tuple[Reading, ...]:
        """Current ordered contents (immutable)."""
        return self._readings

    def latest(self) -> Reading | None:
        readings = self._readings
        return readings[-1] if readings else None

    def size(self) -> int:
        return len(self._readings)

    def __len__(self) -> int:
        return self.size()
