# vtharness/harness/channel.py
"""
Participant-aware FIFO channel.

Participants that talk to each other (for example two protocol
endpoints joined by a stub transport) must not use plain asyncio queues:
a receiver parked on an asyncio.Queue looks runnable to nobody and
blocked to nobody, and the clock could advance while a message is still
on its way to it.

Channel.get() registers the receiver as blocked on a future, and put()
hands the item straight to the oldest waiting receiver by completing
that future. The receiver therefore counts as runnable from the instant
of put(), before its task resumes.
"""

import asyncio
import logging
from collections import deque
from typing import Generic, TypeVar

from vtharness.errors import HarnessError
from vtharness.time.quiescence import QuiescenceDetector

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ChannelClosed(HarnessError):
    """Raised by get() on a closed, drained channel and by put() on a closed one."""


class Channel(Generic[T]):
    """Unbounded FIFO between registered participants.

    Example:
        >>> link = harness.channel("client->server")
        >>> link.put(b"\\x00\\x01")           # never blocks
        >>> packet = await link.get()       # blocks, observed by the clock
    """

    def __init__(self, detector: QuiescenceDetector, name: str = "channel"):
        self.name = name
        self._detector = detector
        self._items: deque[T] = deque()
        self._getters: deque[asyncio.Future] = deque()
        self._closed = False
        self.delivered = 0

    def put(self, item: T) -> None:
        """Deliver item to the oldest waiting receiver, or queue it.

        Raises:
            ChannelClosed: If the channel has been closed
        """
        if self._closed:
            raise ChannelClosed(f"Channel {self.name} is closed")

        while self._getters:
            getter = self._getters.popleft()
            if not getter.done():
                getter.set_result(item)
                self.delivered += 1
                return

        self._items.append(item)

    async def get(self) -> T:
        """Receive the next item, blocking until one is available.

        Raises:
            ProtocolError: If called from an unregistered task
            ChannelClosed: If the channel is closed and drained
        """
        participant = self._detector.current()

        if self._items:
            self.delivered += 1
            return self._items.popleft()
        if self._closed:
            raise ChannelClosed(f"Channel {self.name} is closed")

        getter = asyncio.get_running_loop().create_future()
        self._getters.append(getter)
        self._detector.mark_blocked(participant, getter)
        try:
            return await getter
        finally:
            self._detector.mark_runnable(participant)
            if getter in self._getters:
                self._getters.remove(getter)

    def get_nowait(self) -> T:
        """Receive an item without blocking.

        Raises:
            asyncio.QueueEmpty: If nothing is queued
        """
        if not self._items:
            raise asyncio.QueueEmpty()
        self.delivered += 1
        return self._items.popleft()

    def close(self) -> None:
        """Close the channel; waiting receivers get ChannelClosed."""
        if self._closed:
            return
        self._closed = True

        while self._getters:
            getter = self._getters.popleft()
            if not getter.done():
                getter.set_exception(ChannelClosed(f"Channel {self.name} is closed"))

        logger.debug(f"Channel {self.name} closed with {len(self._items)} undelivered item(s)")

    @property
    def closed(self) -> bool:
        return self._closed

    def waiting(self) -> int:
        """Number of receivers currently blocked in get()."""
        return sum(1 for getter in self._getters if not getter.done())

    def __len__(self) -> int:
        return len(self._items)
