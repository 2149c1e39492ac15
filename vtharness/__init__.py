# vtharness/__init__.py
"""
Virtual-time testing harness.

Runs time-driven control logic against a virtual clock so that scenarios
spanning minutes of simulated time finish in milliseconds of real time.

Modules:
- time: clock interface, virtual clock service and its building blocks
- harness: per-run harness, channels and settings
- diagnostics: virtual-time aware logging
"""

from vtharness.errors import (
    ClockTerminatedError,
    CycleLimitExceeded,
    HarnessError,
    InvariantViolation,
    ProtocolError,
    SimulationStalledError,
    SleepCancelled,
)
from vtharness.harness import (
    Channel,
    ChannelClosed,
    HarnessSettings,
    SimulationHarness,
    run_simulation,
)
from vtharness.time.clock_interface import (
    MICROSECOND,
    MILLISECOND,
    MINUTE,
    NANOSECOND,
    SECOND,
    Clock,
    RealClock,
    periodic,
    sleep_until,
)
from vtharness.time.virtual_clock import ClockState, VirtualClock, WakeRecord

__all__ = [
    # Clock interface
    "Clock",
    "RealClock",
    "VirtualClock",
    "ClockState",
    "WakeRecord",
    "sleep_until",
    "periodic",
    "NANOSECOND",
    "MICROSECOND",
    "MILLISECOND",
    "SECOND",
    "MINUTE",
    # Harness
    "SimulationHarness",
    "HarnessSettings",
    "Channel",
    "ChannelClosed",
    "run_simulation",
    # Errors
    "HarnessError",
    "ProtocolError",
    "ClockTerminatedError",
    "InvariantViolation",
    "SleepCancelled",
    "SimulationStalledError",
    "CycleLimitExceeded",
]
