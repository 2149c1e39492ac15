# vtharness/time/mailbox.py
"""
Request/response plumbing between participants and the clock service.

Participants never touch clock state directly. They build a request
carrying a single-use ResponseSlot, submit it to the RequestMailbox and
await the slot. The clock service drains the mailbox without blocking
and answers each request exactly once.

The mailbox is bounded. A submitter that finds it full waits for space,
and stays counted as "in flight" until the clock service takes its
request, so the service can tell an empty mailbox from one that is
about to receive a request.
"""

import asyncio
import logging
from collections import deque
from dataclasses import dataclass
from typing import Any, Generic, TypeVar, Union

from vtharness.errors import ClockTerminatedError, InvariantViolation

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_MAILBOX_CAPACITY = 64


class ResponseSlot(Generic[T]):
    """Single-use completion handle.

    Written at most once by the clock service, read at most once by the
    participant that created it.
    """

    __slots__ = ("_future", "_consumed")

    def __init__(self, loop: asyncio.AbstractEventLoop | None = None):
        loop = loop or asyncio.get_running_loop()
        self._future: asyncio.Future = loop.create_future()
        self._consumed = False

    @property
    def future(self) -> asyncio.Future:
        return self._future

    def done(self) -> bool:
        return self._future.done()

    def resolve(self, value: T) -> bool:
        """Deliver the response.

        Returns:
            True if delivered, False if the waiter was cancelled first

        Raises:
            InvariantViolation: If the slot already holds a response
        """
        if self._future.cancelled():
            return False
        if self._future.done():
            raise InvariantViolation("Response slot resolved twice")
        self._future.set_result(value)
        return True

    def fail(self, exc: BaseException) -> bool:
        """Deliver an exception instead of a response."""
        if self._future.cancelled():
            return False
        if self._future.done():
            raise InvariantViolation("Response slot resolved twice")
        self._future.set_exception(exc)
        return True

    async def wait(self) -> T:
        """Wait for the response. May only be called once."""
        if self._consumed:
            raise InvariantViolation("Response slot read twice")
        self._consumed = True
        return await self._future


@dataclass(frozen=True)
class SleepRequest:
    """Ask to be woken once virtual time has advanced by duration ns."""

    duration: int
    slot: ResponseSlot
    participant: str = ""


@dataclass(frozen=True)
class NowRequest:
    """Ask for the current virtual time."""

    slot: ResponseSlot
    participant: str = ""


Request = Union[SleepRequest, NowRequest]


class RequestMailbox:
    """Bounded FIFO of pending requests.

    Multiple producers, a single consumer (the clock service). take() never
    blocks; submit() blocks only while the mailbox is full.

    Example:
        >>> mailbox = RequestMailbox(capacity=8)
        >>> await mailbox.submit(NowRequest(slot=ResponseSlot()))
        >>> request = mailbox.take()
    """

    def __init__(self, capacity: int = DEFAULT_MAILBOX_CAPACITY):
        if capacity <= 0:
            raise ValueError(f"Mailbox capacity must be > 0, got {capacity}")

        self._capacity = int(capacity)
        self._items: deque[Request] = deque()
        self._space_waiters: deque[asyncio.Future] = deque()
        self._arrival = asyncio.Event()
        self._in_flight = 0
        self._closed = False

    # ----------------------------------------------------------------
    # Producer side
    # ----------------------------------------------------------------

    async def submit(self, request: Request) -> None:
        """Enqueue a request, waiting for space if the mailbox is full.

        Raises:
            ClockTerminatedError: If the mailbox is (or becomes) closed
        """
        if self._closed:
            raise ClockTerminatedError(
                f"Request from '{request.participant}' arrived after the clock terminated"
            )

        self._in_flight += 1
        try:
            while len(self._items) >= self._capacity:
                waiter = asyncio.get_running_loop().create_future()
                self._space_waiters.append(waiter)
                try:
                    await waiter
                except BaseException:
                    waiter.cancel()
                    if waiter in self._space_waiters:
                        self._space_waiters.remove(waiter)
                    # Woken for free space but leaving: pass the wake-up on
                    if not waiter.cancelled() and len(self._items) < self._capacity:
                        self._wakeup_next_submitter()
                    raise

                if self._closed:
                    raise ClockTerminatedError(
                        f"Request from '{request.participant}' arrived after the clock terminated"
                    )
        except BaseException:
            self._in_flight -= 1
            # Wakes wait_for_arrival() so the consumer re-checks empty()
            self._arrival.set()
            raise

        self._items.append(request)
        self._arrival.set()

    # ----------------------------------------------------------------
    # Consumer side (clock service only)
    # ----------------------------------------------------------------

    def take(self) -> Request | None:
        """Remove and return the oldest request, or None if none is queued."""
        if not self._items:
            return None

        request = self._items.popleft()
        self._in_flight -= 1
        if not self._items:
            self._arrival.clear()

        self._wakeup_next_submitter()
        return request

    def _wakeup_next_submitter(self) -> None:
        while self._space_waiters:
            waiter = self._space_waiters.popleft()
            if not waiter.done():
                waiter.set_result(None)
                break

    async def wait_for_arrival(self) -> None:
        """Wait until a request is queued or nothing is in flight any more."""
        while not self._items and self._in_flight > 0:
            self._arrival.clear()
            await self._arrival.wait()

    def close(self) -> list[Request]:
        """Close the mailbox and return any requests still queued."""
        self._closed = True

        leftover = list(self._items)
        self._items.clear()
        self._in_flight -= len(leftover)
        self._arrival.clear()

        while self._space_waiters:
            waiter = self._space_waiters.popleft()
            if not waiter.done():
                waiter.set_result(None)

        if leftover:
            logger.debug(f"Mailbox closed with {len(leftover)} queued request(s)")
        return leftover

    # ----------------------------------------------------------------
    # Status
    # ----------------------------------------------------------------

    def empty(self) -> bool:
        """True when nothing is queued and no submitter is waiting for space."""
        return self._in_flight == 0

    def qsize(self) -> int:
        return len(self._items)

    @property
    def in_flight(self) -> int:
        return self._in_flight

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def closed(self) -> bool:
        return self._closed

    def describe(self) -> dict[str, Any]:
        return {
            "capacity": self._capacity,
            "queued": len(self._items),
            "in_flight": self._in_flight,
            "closed": self._closed,
        }
