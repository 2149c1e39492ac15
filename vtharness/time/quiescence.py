# vtharness/time/quiescence.py
"""
Quiescence detection for the virtual clock.

The clock service may only advance time once no participant can run.
"No one is runnable" is a global negative property over a changing set
of tasks, so it cannot be read off the event loop. Instead every unit
of work taking part in a simulation registers itself, and whenever it
suspends it tells the detector which future it is waiting on.

A participant counts as blocked only while that future is still
pending. The moment the clock (or a channel, or another participant) completes
the future, the participant counts as runnable again, even though its
task has not resumed yet. That closes the window between "was woken"
and "is running" that a plain counter would leave open.
"""

import asyncio
import itertools
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, TypeVar

from vtharness.errors import ProtocolError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ParticipantState(Enum):
    """Observable state of a registered participant."""

    RUNNABLE = "runnable"
    BLOCKED = "blocked"
    FINISHED = "finished"


@dataclass(eq=False)
class Participant:
    """A registered unit of concurrent work in a simulation."""

    name: str
    ident: int
    task: asyncio.Task | None = None
    waiting_on: asyncio.Future | None = field(default=None, repr=False)
    finished: bool = False
    external_waits: int = 0

    @property
    def state(self) -> ParticipantState:
        if self.finished:
            return ParticipantState.FINISHED
        if self.waiting_on is not None and not self.waiting_on.done():
            return ParticipantState.BLOCKED
        return ParticipantState.RUNNABLE

    @property
    def blocked(self) -> bool:
        return self.state is ParticipantState.BLOCKED


class QuiescenceDetector:
    """Counted rendezvous over the registered participant set.

    Example:
        >>> detector = QuiescenceDetector()
        >>> worker = detector.register("worker", task)
        >>> await detector.wait_until_quiescent()
    """

    def __init__(self) -> None:
        self._participants: dict[int, Participant] = {}
        self._by_task: dict[asyncio.Task, Participant] = {}
        self._ids = itertools.count(1)
        self._changed = asyncio.Event()

    # ----------------------------------------------------------------
    # Registration
    # ----------------------------------------------------------------

    def register(self, name: str | None = None, task: asyncio.Task | None = None) -> Participant:
        """Register a participant.

        Must be called before the participant's task first runs, by the code
        that creates it, so the detector never misses a runnable task.

        Args:
            name: Human-readable name (defaults to "participant-<n>")
            task: Task to bind; may be bound later with bind()

        Returns:
            The new Participant
        """
        ident = next(self._ids)
        participant = Participant(name=name or f"participant-{ident}", ident=ident)
        self._participants[ident] = participant
        if task is not None:
            self.bind(participant, task)

        logger.debug(f"Registered participant {participant.name} ({len(self._participants)} active)")
        self._notify()
        return participant

    def bind(self, participant: Participant, task: asyncio.Task) -> None:
        """Associate a participant with the task that runs it."""
        if participant.task is not None:
            self._by_task.pop(participant.task, None)
        participant.task = task
        self._by_task[task] = participant

    def deregister(self, participant: Participant) -> None:
        """Remove a finished participant. Safe to call more than once."""
        if self._participants.pop(participant.ident, None) is None:
            return

        participant.finished = True
        participant.waiting_on = None
        if participant.task is not None:
            self._by_task.pop(participant.task, None)

        logger.debug(f"Deregistered participant {participant.name} ({len(self._participants)} active)")
        self._notify()

    def current(self) -> Participant:
        """Return the participant running the current task.

        Raises:
            ProtocolError: If the current task is not registered
        """
        try:
            task = asyncio.current_task()
        except RuntimeError:
            task = None

        participant = self._by_task.get(task) if task is not None else None
        if participant is None:
            raise ProtocolError(
                "Clock used from an unregistered task; spawn it through the harness "
                "or register it with the quiescence detector"
            )
        return participant

    # ----------------------------------------------------------------
    # Blocking state
    # ----------------------------------------------------------------

    def mark_blocked(self, participant: Participant, future: asyncio.Future) -> None:
        """Record that participant is suspended until future completes."""
        participant.waiting_on = future
        self._notify()

    def mark_runnable(self, participant: Participant) -> None:
        participant.waiting_on = None

    async def blocked_on(self, participant: Participant, awaitable: Awaitable[T]) -> T:
        """Await awaitable with participant counted as blocked meanwhile.

        Only for waits that another registered participant completes. The
        clock may advance or terminate while the participant waits here.
        """
        future = asyncio.ensure_future(awaitable)
        self.mark_blocked(participant, future)
        try:
            return await future
        finally:
            self.mark_runnable(participant)

    async def external(self, participant: Participant, awaitable: Awaitable[T]) -> T:
        """Await external I/O with participant counted as runnable meanwhile.

        Completion of the awaitable does not depend on the clock, so virtual
        time must stand still until it finishes.
        """
        self.mark_runnable(participant)
        participant.external_waits += 1
        try:
            return await awaitable
        finally:
            participant.external_waits -= 1

    # ----------------------------------------------------------------
    # Quiescence
    # ----------------------------------------------------------------

    def is_quiescent(self) -> bool:
        """True when every registered participant is blocked on a pending future."""
        return all(p.blocked for p in self._participants.values())

    async def wait_until_quiescent(self) -> None:
        """Return once no registered participant is runnable.

        Every wake-up re-checks the condition, so spurious wake-ups are
        harmless.
        """
        while not self.is_quiescent():
            self._changed.clear()
            await self._changed.wait()

    def _notify(self) -> None:
        self._changed.set()

    # ----------------------------------------------------------------
    # Introspection
    # ----------------------------------------------------------------

    def participants(self) -> list[Participant]:
        return list(self._participants.values())

    def runnable(self) -> list[Participant]:
        return [p for p in self._participants.values() if not p.blocked]

    def blocked(self) -> list[Participant]:
        return [p for p in self._participants.values() if p.blocked]

    def __len__(self) -> int:
        return len(self._participants)

    def __contains__(self, participant: Any) -> bool:
        return isinstance(participant, Participant) and participant.ident in self._participants
