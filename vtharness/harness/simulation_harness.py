# vtharness/harness/simulation_harness.py
"""
Simulation harness: owns one virtual clock run from creation to teardown.

The harness is the explicit boundary of a simulation. It creates the
quiescence detector and the virtual clock, registers the control logic
and every task spawned on its behalf, starts the clock service, and
turns the outcome into a plain return value or an exception:

- the control logic's return value on clean termination
- the first participant exception, after aborting the run
- SimulationStalledError if participants are left blocked with nothing
  able to wake them, or if the real-time watchdog fires
- the clock service's own error (ProtocolError, CycleLimitExceeded)

Independent harnesses share nothing, so several simulations can run
side by side, even on the same event loop.
"""

import asyncio
import contextvars
import inspect
import logging
from typing import Any, Awaitable, Callable, Coroutine, TypeVar

from vtharness.diagnostics.logging_system import active_clock
from vtharness.errors import HarnessError, SimulationStalledError, SleepCancelled
from vtharness.harness.channel import Channel
from vtharness.harness.settings import HarnessSettings
from vtharness.time.quiescence import Participant, QuiescenceDetector
from vtharness.time.virtual_clock import VirtualClock

logger = logging.getLogger(__name__)

T = TypeVar("T")

ControlLogic = Callable[[VirtualClock], Awaitable[Any]]


class SimulationHarness:
    """
    Runs control logic against a virtual clock.

    Example:
        >>> async def control(clock):
        ...     await clock.sleep(10 * SECOND)
        ...     return await clock.now()
        >>> harness = SimulationHarness()
        >>> await harness.run(control)
        10000000000
    """

    def __init__(self, settings: HarnessSettings | None = None, **overrides: Any):
        """Initialise the harness.

        Args:
            settings: Harness settings (built-in defaults if None)
            **overrides: Individual HarnessSettings fields to override
        """
        self.settings = (settings or HarnessSettings()).with_overrides(**overrides)

        self.detector = QuiescenceDetector()
        self.clock = VirtualClock(
            self.detector,
            start_time=self.settings.start_time,
            mailbox_capacity=self.settings.mailbox_capacity,
            max_cycles=self.settings.max_cycles,
            record_trace=self.settings.record_trace,
        )

        self._tasks: list[asyncio.Task] = []
        self._finished: set[asyncio.Task] = set()
        self._joiners: list[tuple[asyncio.Future, set[asyncio.Task]]] = []
        self._failures: list[tuple[str, BaseException]] = []
        self._service: asyncio.Task | None = None
        self._started = False
        self._shutdown_reason: str | None = None

    @classmethod
    def from_config_dir(cls, config_dir: str = "config", **overrides: Any) -> "SimulationHarness":
        """Create a harness from harness.yml in config_dir."""
        return cls(HarnessSettings.load(config_dir), **overrides)

    # ----------------------------------------------------------------
    # Participants
    # ----------------------------------------------------------------

    def spawn(self, coro: Coroutine[Any, Any, T], name: str | None = None) -> "asyncio.Task[T]":
        """Start coro as a registered participant.

        Registration happens before the task can run, so the clock never
        sees a window where the new task exists but is unobserved.

        Raises:
            HarnessError: If the harness has already shut down
        """
        if self._shutdown_reason is not None:
            coro.close()
            raise HarnessError(f"Cannot spawn after shutdown ({self._shutdown_reason})")

        participant = self.detector.register(name)

        context = contextvars.copy_context()
        context.run(active_clock.set, self.clock)

        task = asyncio.get_running_loop().create_task(
            self._run_participant(participant, coro),
            name=participant.name,
            context=context,
        )
        self.detector.bind(participant, task)
        # Covers tasks cancelled before their first step, which never enter
        # _run_participant
        task.add_done_callback(lambda done: self._release(participant, done, coro))
        self._tasks.append(task)
        return task

    async def _run_participant(self, participant: Participant, coro: Coroutine[Any, Any, T]) -> T:
        try:
            return await coro
        except Exception as exc:
            self._record_failure(participant, exc)
            raise
        finally:
            self._release(participant, asyncio.current_task(), coro)

    def _release(self, participant: Participant, task: asyncio.Task | None, coro: Coroutine) -> None:
        coro.close()
        self.detector.deregister(participant)
        self._mark_finished(task)

    def _mark_finished(self, task: asyncio.Task | None) -> None:
        if task in self._finished:
            return
        self._finished.add(task)
        for joiner, waiting_for in list(self._joiners):
            waiting_for.discard(task)
            if not waiting_for:
                self._joiners.remove((joiner, waiting_for))
                if not joiner.done():
                    joiner.set_result(None)

    async def join(self, *tasks: asyncio.Task) -> list[Any]:
        """Wait for spawned participants to finish and return their results.

        The waiter becomes runnable in the same step the last task
        deregisters, so the clock cannot mistake the join for a stall.
        asyncio.gather() over the same tasks completes one loop iteration
        later and must not be used for this.
        """
        waiting_for = {task for task in tasks if task not in self._finished}
        if waiting_for:
            joiner = asyncio.get_running_loop().create_future()
            self._joiners.append((joiner, waiting_for))
            await self.blocked_on(joiner)
        return [task.result() for task in tasks]

    def register(self, name: str | None = None, task: asyncio.Task | None = None) -> Participant:
        """Register a task that was not started through spawn().

        Defaults to the current task. The caller must deregister() it when
        the task's part in the simulation ends.
        """
        return self.detector.register(name, task or asyncio.current_task())

    def deregister(self, participant: Participant) -> None:
        self.detector.deregister(participant)

    async def blocked_on(self, awaitable: Awaitable[T]) -> T:
        """Await something another participant completes, counted as blocked.

        Use for plain asyncio primitives shared between participants (a
        future or event set by another participant). While every participant
        is blocked the clock advances, and terminates if nothing is
        sleeping. Do not pass coroutines that use the clock.
        """
        return await self.detector.blocked_on(self.detector.current(), awaitable)

    async def external(self, awaitable: Awaitable[T]) -> T:
        """Await external I/O; virtual time stands still until it completes.

        The caller stays runnable, so the clock neither advances nor
        terminates underneath it. Long external waits are bounded by the
        real-time watchdog.
        """
        return await self.detector.external(self.detector.current(), awaitable)

    def channel(self, name: str = "channel") -> Channel:
        """Create a participant-aware channel bound to this simulation."""
        return Channel(self.detector, name=name)

    def _record_failure(self, participant: Participant, exc: BaseException) -> None:
        if self._shutdown_reason is not None or (
            isinstance(exc, SleepCancelled) and self.clock.terminated
        ):
            logger.debug(f"Participant {participant.name} exited during shutdown: {exc!r}")
            return

        self._failures.append((participant.name, exc))
        logger.error(f"Participant {participant.name} failed at t={self.clock.time}ns: {exc!r}")

        self._abort(f"participant {participant.name} failed: {exc!r}")

    # ----------------------------------------------------------------
    # Running
    # ----------------------------------------------------------------

    async def run(self, control_logic: ControlLogic | Coroutine[Any, Any, T], *, name: str = "control") -> Any:
        """Run a simulation to completion.

        Args:
            control_logic: async callable taking the clock, or a coroutine
            name: Participant name for the control logic

        Returns:
            Whatever the control logic returns

        Raises:
            HarnessError: If the harness was already used, or was shut down mid-run
            SimulationStalledError: If participants can never be woken
            Exception: The first participant failure, re-raised
        """
        if self._started:
            raise HarnessError("A SimulationHarness runs exactly one simulation")
        self._started = True

        coro = control_logic if inspect.iscoroutine(control_logic) else control_logic(self.clock)

        token = active_clock.set(self.clock)
        try:
            logger.info(f"Simulation starting at t={self.clock.time}ns")
            main_task = self.spawn(coro, name=name)
            self._service = asyncio.create_task(self.clock.serve(), name="virtual-clock")

            done, _ = await asyncio.wait({self._service}, timeout=self.settings.watchdog_seconds)
            if not done:
                runnable = [p.name for p in self.detector.runnable()]
                await self._teardown("watchdog expired")
                raise SimulationStalledError(
                    f"No quiescence within {self.settings.watchdog_seconds}s of real time; "
                    f"still runnable: {runnable}",
                    participants=runnable,
                )

            if not self._service.cancelled() and self._service.exception() is not None:
                await self._teardown("clock service failed")
                raise self._service.exception()

            if self._failures:
                await self._teardown("participant failure")
                raise self._failures[0][1]

            if self._shutdown_reason is not None:
                reason = self._shutdown_reason
                await self._teardown(reason)
                raise HarnessError(f"Simulation shut down at t={self.clock.time}ns: {reason}")

            stalled = [p.name for p in self.detector.participants()]
            if stalled:
                await self._teardown("participants stalled")
                raise SimulationStalledError(
                    f"Virtual clock terminated at t={self.clock.time}ns with "
                    f"{len(stalled)} participant(s) still blocked: {stalled}",
                    participants=stalled,
                )

            await asyncio.gather(*self._tasks, return_exceptions=True)
            logger.info(
                f"Simulation finished at t={self.clock.time}ns "
                f"({self.clock.stats.wakes_delivered} wakes, {len(self._tasks)} participants)"
            )
            return main_task.result()
        finally:
            active_clock.reset(token)

    # ----------------------------------------------------------------
    # Shutdown
    # ----------------------------------------------------------------

    def _abort(self, reason: str) -> None:
        if self._shutdown_reason is None:
            self._shutdown_reason = reason
        self.clock.shutdown(reason)
        if self._service is not None and not self._service.done():
            self._service.cancel()

    async def shutdown(self) -> None:
        """Force the simulation down.

        Outstanding sleepers receive SleepCancelled and get one loop
        iteration to react; anything still running after that is cancelled.
        """
        await self._teardown("harness shutdown")

    async def _teardown(self, reason: str) -> None:
        if self._shutdown_reason is None:
            self._shutdown_reason = reason
            logger.info(f"Shutting down simulation at t={self.clock.time}ns: {reason}")

        self._abort(reason)

        # Let sleepers observe SleepCancelled before anything is cancelled
        await asyncio.sleep(0)

        for task in self._tasks:
            if not task.done():
                task.cancel()

        pending = [t for t in (self._service, *self._tasks) if t is not None]
        await asyncio.gather(*pending, return_exceptions=True)

    async def __aenter__(self) -> "SimulationHarness":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        if self._shutdown_reason is None and any(not t.done() for t in self._tasks):
            await self.shutdown()

    # ----------------------------------------------------------------
    # Status
    # ----------------------------------------------------------------

    @property
    def elapsed(self) -> int:
        """Virtual nanoseconds elapsed since the start of the run."""
        return self.clock.time - self.settings.start_time

    @property
    def failures(self) -> list[tuple[str, BaseException]]:
        return list(self._failures)

    def get_status(self) -> dict[str, Any]:
        status = self.clock.get_status()
        status["elapsed"] = self.elapsed
        status["participants"] = [
            {"name": p.name, "state": p.state.value} for p in self.detector.participants()
        ]
        status["failures"] = [name for name, _ in self._failures]
        return status


def run_simulation(
    control_logic: ControlLogic,
    settings: HarnessSettings | None = None,
    **overrides: Any,
) -> Any:
    """Run control logic in a fresh harness on a fresh event loop."""
    harness = SimulationHarness(settings, **overrides)
    return asyncio.run(harness.run(control_logic))
