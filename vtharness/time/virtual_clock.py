# vtharness/time/virtual_clock.py
"""
Virtual clock service.

The VirtualClock answers sleep() and now() for every participant of a
simulation and is the only thing that ever changes virtual time. Its
service loop (serve()) cycles through:

    QUIESCING  wait until no registered participant can run
    DRAINING   take one request from the mailbox and answer it
    ADVANCING  mailbox empty: jump to the earliest pending wake and
               resolve exactly that sleeper
    TERMINATED nothing queued and nothing sleeping: stop

Quiescence is re-confirmed after every drained request and every
delivered wake, so a participant that was just woken can submit new
work before the next sleeper (even one due at the same instant) is
released.
"""

import logging
import numbers
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any, Callable

from vtharness.errors import (
    ClockTerminatedError,
    CycleLimitExceeded,
    InvariantViolation,
    ProtocolError,
    SleepCancelled,
)
from vtharness.time.mailbox import (
    DEFAULT_MAILBOX_CAPACITY,
    NowRequest,
    Request,
    RequestMailbox,
    ResponseSlot,
    SleepRequest,
)
from vtharness.time.quiescence import QuiescenceDetector
from vtharness.time.sleeper_queue import ScheduledWake, SleeperQueue

# Configure logging
logger = logging.getLogger(__name__)


# ----------------------------------------------------------------
# Service states and bookkeeping
# ----------------------------------------------------------------
class ClockState(Enum):
    """Clock service states."""

    CREATED = "created"
    QUIESCING = "quiescing"
    DRAINING = "draining"
    ADVANCING = "advancing"
    TERMINATED = "terminated"


@dataclass
class ClockStats:
    """Counters maintained by the clock service."""

    cycles: int = 0
    now_requests: int = 0
    sleep_requests: int = 0
    immediate_sleeps: int = 0
    wakes_delivered: int = 0
    cancelled_sleepers: int = 0


@dataclass(frozen=True)
class WakeRecord:
    """One delivered wake, as recorded in the clock trace."""

    time: int
    sequence: int
    participant: str


# ----------------------------------------------------------------
# Virtual clock
# ----------------------------------------------------------------
class VirtualClock:
    """Clock service driving virtual time for one simulation run.

    Implements the Clock interface for registered participants. One
    VirtualClock serves exactly one run; create a new one per test.

    Example:
        >>> detector = QuiescenceDetector()
        >>> clock = VirtualClock(detector)
        >>> service = asyncio.create_task(clock.serve())
        >>> # participants registered with detector call:
        >>> await clock.sleep(100 * MILLISECOND)
        >>> await clock.now()
    """

    def __init__(
        self,
        detector: QuiescenceDetector,
        *,
        start_time: int = 0,
        mailbox_capacity: int = DEFAULT_MAILBOX_CAPACITY,
        max_cycles: int | None = None,
        record_trace: bool = True,
    ):
        """Initialise the clock.

        Args:
            detector: Quiescence detector tracking this run's participants
            start_time: Initial virtual time in nanoseconds
            mailbox_capacity: Bound on queued requests
            max_cycles: Abort after this many service cycles (None = unlimited)
            record_trace: Keep a WakeRecord for every delivered wake

        Raises:
            ValueError: If start_time is negative or max_cycles is not positive
        """
        if start_time < 0:
            raise ValueError(f"start_time must be >= 0, got {start_time}")
        if max_cycles is not None and max_cycles <= 0:
            raise ValueError(f"max_cycles must be > 0, got {max_cycles}")

        self._detector = detector
        self._time: int = int(start_time)
        self._sleepers = SleeperQueue()
        self._mailbox = RequestMailbox(mailbox_capacity)
        self._state = ClockState.CREATED
        self._max_cycles = max_cycles
        self._record_trace = record_trace
        self._trace: list[WakeRecord] = []
        self.stats = ClockStats()

    # ----------------------------------------------------------------
    # Clock interface (called by participants)
    # ----------------------------------------------------------------
    async def sleep(self, duration_ns: int) -> None:
        """Suspend the calling participant for duration_ns of virtual time.

        Non-positive durations are answered on the next drain cycle
        without advancing time.

        Raises:
            TypeError: If duration_ns is not a real number
            ProtocolError: If the caller is not a registered participant
            ClockTerminatedError: If the clock has already terminated
            SleepCancelled: If the harness shuts down while sleeping
        """
        if isinstance(duration_ns, bool) or not isinstance(duration_ns, numbers.Real):
            raise TypeError(f"duration_ns must be a number, got {type(duration_ns).__name__}")

        duration = int(duration_ns)
        await self._request(
            lambda slot, name: SleepRequest(duration=duration, slot=slot, participant=name)
        )

    async def now(self) -> int:
        """Return the current virtual time in nanoseconds.

        Waits for one drain cycle; never advances time.
        """
        return await self._request(lambda slot, name: NowRequest(slot=slot, participant=name))

    async def _request(self, build: Callable[[ResponseSlot, str], Request]) -> Any:
        participant = self._detector.current()
        slot: ResponseSlot = ResponseSlot()
        request = build(slot, participant.name)

        # Blocked from before submission until the response is read, so the
        # service never sees this participant as runnable mid-request.
        self._detector.mark_blocked(participant, slot.future)
        try:
            await self._mailbox.submit(request)
            return await slot.wait()
        finally:
            self._detector.mark_runnable(participant)

    # ----------------------------------------------------------------
    # Service loop
    # ----------------------------------------------------------------
    async def serve(self) -> None:
        """Run the clock service until nothing is left to drive.

        Returns normally once the mailbox and the sleeper queue are both
        empty while no participant is runnable.

        Raises:
            ProtocolError: On an unrecognised request (fatal) or if started twice
            CycleLimitExceeded: If max_cycles is exceeded
        """
        if self._state is not ClockState.CREATED:
            raise ProtocolError(f"Clock service cannot start from state {self._state.value}")

        logger.info(
            f"Virtual clock started: t={self._time}ns, "
            f"mailbox_capacity={self._mailbox.capacity}, max_cycles={self._max_cycles}"
        )

        try:
            while True:
                self._state = ClockState.QUIESCING
                await self._detector.wait_until_quiescent()
                self._count_cycle()

                request = self._mailbox.take()
                if request is not None:
                    self._state = ClockState.DRAINING
                    self._handle(request)
                    continue

                if not self._mailbox.empty():
                    # A submitter was admitted but has not enqueued yet
                    await self._mailbox.wait_for_arrival()
                    continue

                self._state = ClockState.ADVANCING
                wake = self._sleepers.extract_min()
                if wake is None:
                    break
                self._deliver(wake)
        finally:
            self._terminate("clock service stopped")

        logger.info(
            f"Virtual clock terminated at t={self._time}ns after {self.stats.cycles} cycles "
            f"({self.stats.wakes_delivered} wakes, {self.stats.now_requests} now requests)"
        )

    def _count_cycle(self) -> None:
        self.stats.cycles += 1
        if self._max_cycles is not None and self.stats.cycles > self._max_cycles:
            raise CycleLimitExceeded(
                f"Clock service exceeded {self._max_cycles} cycles at t={self._time}ns"
            )

    def _handle(self, request: Request) -> None:
        """Answer one drained request without advancing time."""
        if isinstance(request, NowRequest):
            self.stats.now_requests += 1
            request.slot.resolve(self._time)
            logger.debug(f"now() for {request.participant} -> {self._time}ns")

        elif isinstance(request, SleepRequest):
            self.stats.sleep_requests += 1
            if request.duration <= 0:
                self.stats.immediate_sleeps += 1
                request.slot.resolve(self._time)
                logger.debug(f"sleep({request.duration}) for {request.participant} answered immediately")
                return

            wake = self._sleepers.push(
                self._time + request.duration, request.slot, request.participant
            )
            logger.debug(
                f"sleep({request.duration}) for {request.participant} "
                f"scheduled at {wake.wake_time}ns (seq={wake.sequence})"
            )

        else:
            error = ProtocolError(f"Unrecognised request kind: {type(request).__name__}")
            slot = getattr(request, "slot", None)
            if isinstance(slot, ResponseSlot) and not slot.done():
                slot.fail(error)
            raise error

    def _deliver(self, wake: ScheduledWake) -> None:
        """Advance time to the wake and release exactly that sleeper."""
        if wake.wake_time < self._time:
            raise InvariantViolation(
                f"Wake at {wake.wake_time}ns would move time backwards from {self._time}ns"
            )

        self._time = wake.wake_time
        if wake.slot.resolve(self._time):
            self.stats.wakes_delivered += 1
            if self._record_trace:
                self._trace.append(
                    WakeRecord(time=wake.wake_time, sequence=wake.sequence, participant=wake.participant)
                )
            logger.debug(f"Woke {wake.participant} at {self._time}ns (seq={wake.sequence})")
        else:
            logger.debug(f"Sleeper {wake.participant} was cancelled before its wake at {self._time}ns")

    # ----------------------------------------------------------------
    # Termination and shutdown
    # ----------------------------------------------------------------
    def shutdown(self, reason: str = "harness shutdown") -> int:
        """Force the clock into TERMINATED.

        Every outstanding sleeper receives SleepCancelled, every queued
        request ClockTerminatedError. The service task, if still running,
        must be cancelled by its owner.

        Returns:
            Number of sleepers cancelled
        """
        return self._terminate(reason)

    def _terminate(self, reason: str) -> int:
        if self._state is ClockState.TERMINATED:
            return 0
        self._state = ClockState.TERMINATED

        for request in self._mailbox.close():
            request.slot.fail(
                ClockTerminatedError(f"Clock terminated before answering {request.participant}: {reason}")
            )

        cancelled = 0
        for wake in self._sleepers.drain():
            if wake.slot.fail(SleepCancelled(f"Sleep of {wake.participant} cancelled: {reason}")):
                cancelled += 1

        if cancelled:
            self.stats.cancelled_sleepers += cancelled
            logger.warning(f"Virtual clock cancelled {cancelled} outstanding sleeper(s): {reason}")
        return cancelled

    # ----------------------------------------------------------------
    # Status
    # ----------------------------------------------------------------
    @property
    def time(self) -> int:
        """Current virtual time in nanoseconds (read-only)."""
        return self._time

    @property
    def state(self) -> ClockState:
        return self._state

    @property
    def terminated(self) -> bool:
        return self._state is ClockState.TERMINATED

    @property
    def detector(self) -> QuiescenceDetector:
        return self._detector

    @property
    def trace(self) -> list[WakeRecord]:
        return list(self._trace)

    def pending_sleepers(self) -> int:
        return len(self._sleepers)

    def next_wake_time(self) -> int | None:
        return self._sleepers.next_wake_time()

    def get_status(self) -> dict[str, Any]:
        """Snapshot of the clock for diagnostics."""
        return {
            "time": self._time,
            "state": self._state.value,
            "pending_sleepers": len(self._sleepers),
            "next_wake_time": self._sleepers.next_wake_time(),
            "participants": len(self._detector),
            "mailbox": self._mailbox.describe(),
            "stats": asdict(self.stats),
        }
