# vtharness/errors.py
"""
Exceptions raised by the virtual-time harness.

Everything derives from HarnessError, which is a RuntimeError: these
signal misuse of the harness or a broken invariant, never an expected
condition a scenario should handle.
"""


class HarnessError(RuntimeError):
    """Base class for all harness errors."""


class ProtocolError(HarnessError):
    """A participant or the clock service broke the request/response protocol."""


class ClockTerminatedError(ProtocolError):
    """A request reached a clock that has already terminated or shut down."""


class InvariantViolation(HarnessError):
    """An internal invariant was broken (double response, time moving backwards)."""


class SleepCancelled(HarnessError):
    """Delivered to outstanding sleepers when the harness is shut down."""


class SimulationStalledError(HarnessError):
    """Participants are still blocked but nothing can ever wake them."""

    def __init__(self, message: str, participants: list[str] | None = None):
        super().__init__(message)
        self.participants = participants or []


class CycleLimitExceeded(HarnessError):
    """The clock service ran more cycles than the configured limit."""
