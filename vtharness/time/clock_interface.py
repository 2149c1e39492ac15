# vtharness/time/clock_interface.py
"""
The narrow clock contract that control logic is written against.

Control logic only ever sees a Clock: something it can ask for the
current time and ask to sleep. In production that is RealClock, backed
by the event loop's timers and the monotonic clock. Under test it is a
VirtualClock, which answers the same calls in virtual time.

All times and durations are integer nanoseconds.
"""

import asyncio
import time
from collections.abc import AsyncIterator
from typing import Protocol, runtime_checkable

NANOSECOND = 1
MICROSECOND = 1_000 * NANOSECOND
MILLISECOND = 1_000 * MICROSECOND
SECOND = 1_000 * MILLISECOND
MINUTE = 60 * SECOND


@runtime_checkable
class Clock(Protocol):
    """Time source used by control logic."""

    async def sleep(self, duration_ns: int) -> None:
        """Suspend the caller for duration_ns nanoseconds."""
        ...

    async def now(self) -> int:
        """Nanoseconds since an epoch fixed when the clock was created."""
        ...


class RealClock:
    """Clock backed by the operating system.

    sleep() delegates to asyncio.sleep, now() to time.monotonic_ns().
    Non-positive durations return after a single yield to the loop.
    """

    def __init__(self) -> None:
        self._epoch = time.monotonic_ns()

    async def sleep(self, duration_ns: int) -> None:
        await asyncio.sleep(max(0, duration_ns) / SECOND)

    async def now(self) -> int:
        return time.monotonic_ns() - self._epoch


# ----------------------------------------------------------------
# Helpers written against the Clock contract
# ----------------------------------------------------------------


async def sleep_until(clock: Clock, deadline_ns: int) -> int:
    """Sleep until the clock reads at least deadline_ns.

    Returns:
        The clock reading after waking (unchanged if the deadline had passed)
    """
    current = await clock.now()
    if deadline_ns > current:
        await clock.sleep(deadline_ns - current)
        current = await clock.now()
    return current


async def periodic(clock: Clock, period_ns: int) -> AsyncIterator[int]:
    """Yield the clock reading once per period, without drift.

    The first tick happens one period after iteration starts. Each tick is
    scheduled from the previous deadline rather than from the wake-up time.

    Example:
        >>> async for t in periodic(clock, 100 * MILLISECOND):
        ...     if t >= SECOND:
        ...         break
    """
    if period_ns <= 0:
        raise ValueError(f"period_ns must be > 0, got {period_ns}")

    next_tick = await clock.now() + period_ns
    while True:
        yield await sleep_until(clock, next_tick)
        next_tick += period_ns
