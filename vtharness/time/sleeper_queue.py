# vtharness/time/sleeper_queue.py
"""
Ordered queue of pending wake requests.

Entries are ordered by (wake_time, sequence). The sequence number is a
monotonic arrival counter assigned on insertion, so no two entries ever
compare equal and extraction order is fully deterministic.

Pure data structure: no locking, no awaiting. Only the clock service
touches it.
"""

import heapq
from dataclasses import dataclass, field
from typing import Any


@dataclass(order=True, frozen=True)
class ScheduledWake:
    """A sleeper waiting for virtual time to reach wake_time."""

    wake_time: int
    sequence: int
    slot: Any = field(compare=False)
    participant: str = field(default="", compare=False)


class SleeperQueue:
    """Min-heap of ScheduledWake entries.

    Example:
        >>> queue = SleeperQueue()
        >>> queue.push(100, slot_a)
        >>> queue.push(50, slot_b)
        >>> queue.extract_min().wake_time
        50
    """

    def __init__(self) -> None:
        self._heap: list[ScheduledWake] = []
        self._next_sequence: int = 0

    def push(self, wake_time: int, slot: Any, participant: str = "") -> ScheduledWake:
        """Insert a wake request and return the scheduled entry.

        Args:
            wake_time: Absolute virtual time (ns) at which to wake
            slot: Response slot to resolve when the wake is delivered
            participant: Name of the sleeping participant, for tracing

        Returns:
            The ScheduledWake, carrying its assigned sequence number
        """
        if not isinstance(wake_time, int):
            raise TypeError(f"wake_time must be an int, got {type(wake_time).__name__}")

        wake = ScheduledWake(
            wake_time=wake_time,
            sequence=self._next_sequence,
            slot=slot,
            participant=participant,
        )
        self._next_sequence += 1
        heapq.heappush(self._heap, wake)
        return wake

    def extract_min(self) -> ScheduledWake | None:
        """Remove and return the earliest entry, or None if the queue is empty."""
        if not self._heap:
            return None
        return heapq.heappop(self._heap)

    def peek_min(self) -> ScheduledWake | None:
        """Return the earliest entry without removing it."""
        return self._heap[0] if self._heap else None

    def next_wake_time(self) -> int | None:
        return self._heap[0].wake_time if self._heap else None

    def drain(self) -> list[ScheduledWake]:
        """Remove every entry, returning them in extraction order."""
        drained = []
        while self._heap:
            drained.append(heapq.heappop(self._heap))
        return drained

    def __len__(self) -> int:
        return len(self._heap)

    def __bool__(self) -> bool:
        return bool(self._heap)
