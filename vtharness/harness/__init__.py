# vtharness/harness/__init__.py
"""
Harness components.

Modules:
- simulation_harness: SimulationHarness and run_simulation
- channel: participant-aware FIFO between participants
- settings: validated settings loaded from harness.yml
"""

from vtharness.harness.channel import Channel, ChannelClosed
from vtharness.harness.settings import HarnessSettings
from vtharness.harness.simulation_harness import SimulationHarness, run_simulation

__all__ = [
    "SimulationHarness",
    "run_simulation",
    "Channel",
    "ChannelClosed",
    "HarnessSettings",
]
