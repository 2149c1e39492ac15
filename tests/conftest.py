# tests/conftest.py
"""Shared pytest fixtures for virtual-time harness tests.

Foundation components (sleeper queue, mailbox, detector) are tested on
their own; everything above them is tested with real collaborators
rather than mocks.
"""

import logging
import tempfile
from pathlib import Path
from typing import Generator

import pytest
import yaml

from vtharness.harness.settings import HarnessSettings
from vtharness.harness.simulation_harness import SimulationHarness
from vtharness.time.quiescence import QuiescenceDetector
from vtharness.time.virtual_clock import VirtualClock


# ----------------------------------------------------------------
# Configuration fixtures
# ----------------------------------------------------------------
@pytest.fixture
def temp_config_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test configuration files.

    Yields:
        Path to temporary configuration directory
    """
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def default_harness_config() -> dict:
    """Provide a complete harness configuration for testing.

    Returns:
        Dictionary shaped like harness.yml
    """
    return {
        "clock": {
            "start_time": 0,
            "mailbox_capacity": 64,
            "max_cycles": 10_000,
            "record_trace": True,
        },
        "harness": {
            "watchdog_seconds": 5.0,
        },
        "logging": {
            "level": "DEBUG",
            "log_dir": None,
            "json": False,
        },
    }


@pytest.fixture
def write_config_file(temp_config_dir):
    """Factory fixture for writing YAML configuration files.

    Returns:
        Function that writes a config dict to harness.yml
    """

    def _write_config(config: dict, filename: str = "harness.yml") -> Path:
        config_file = temp_config_dir / filename
        with open(config_file, "w") as f:
            yaml.dump(config, f)
        return config_file

    return _write_config


# ----------------------------------------------------------------
# Harness fixtures
# ----------------------------------------------------------------
@pytest.fixture
def harness_settings() -> HarnessSettings:
    """Settings with tight guards so a broken test fails fast."""
    return HarnessSettings(max_cycles=100_000, watchdog_seconds=5.0)


@pytest.fixture
def make_harness(harness_settings):
    """Factory fixture for fresh harnesses.

    Returns:
        Function building a SimulationHarness with optional overrides
    """

    def _make(**overrides) -> SimulationHarness:
        return SimulationHarness(harness_settings, **overrides)

    return _make


@pytest.fixture
def harness(make_harness) -> SimulationHarness:
    """A fresh harness with test settings."""
    return make_harness()


@pytest.fixture
def clock_service():
    """Bare detector + clock pair, for driving the service by hand.

    Returns:
        Tuple of (QuiescenceDetector, VirtualClock)
    """
    detector = QuiescenceDetector()
    clock = VirtualClock(detector, max_cycles=100_000)
    return detector, clock


# ----------------------------------------------------------------
# Logging isolation
# ----------------------------------------------------------------
@pytest.fixture(autouse=True)
def reset_package_logger():
    """Undo configure_logging() so caplog sees package records in every test."""
    yield
    package_logger = logging.getLogger("vtharness")
    for handler in list(package_logger.handlers):
        handler.close()
        package_logger.removeHandler(handler)
    package_logger.propagate = True
    package_logger.setLevel(logging.NOTSET)
