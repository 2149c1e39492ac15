# vtharness/harness/settings.py
"""
Validated harness settings.

Built from the clock and harness sections of the mapping returned by
ConfigLoader.load_all(); the logging section is applied by whoever calls
configure_logging(). Invalid values are logged and replaced by defaults
rather than aborting a run.
"""

import logging
from dataclasses import dataclass, replace
from typing import Any

from config.config_loader import (
    DEFAULT_CLOCK_CONFIG,
    DEFAULT_HARNESS_CONFIG,
    ConfigLoader,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class HarnessSettings:
    """Settings for one SimulationHarness."""

    start_time: int = DEFAULT_CLOCK_CONFIG["start_time"]
    mailbox_capacity: int = DEFAULT_CLOCK_CONFIG["mailbox_capacity"]
    max_cycles: int | None = DEFAULT_CLOCK_CONFIG["max_cycles"]
    record_trace: bool = DEFAULT_CLOCK_CONFIG["record_trace"]
    watchdog_seconds: float | None = DEFAULT_HARNESS_CONFIG["watchdog_seconds"]

    @classmethod
    def from_config(cls, config: dict[str, Any]) -> "HarnessSettings":
        """Build settings from a loaded configuration mapping."""
        clock_cfg = config.get("clock", {})
        harness_cfg = config.get("harness", {})

        start_time = clock_cfg.get("start_time", cls.start_time)
        if not isinstance(start_time, int) or start_time < 0:
            logger.warning(f"Invalid start_time {start_time}, using default {cls.start_time}")
            start_time = cls.start_time

        capacity = clock_cfg.get("mailbox_capacity", cls.mailbox_capacity)
        if not isinstance(capacity, int) or capacity <= 0:
            logger.warning(
                f"Invalid mailbox_capacity {capacity}, using default {cls.mailbox_capacity}"
            )
            capacity = cls.mailbox_capacity

        max_cycles = clock_cfg.get("max_cycles", cls.max_cycles)
        if max_cycles is not None and (not isinstance(max_cycles, int) or max_cycles <= 0):
            logger.warning(f"Invalid max_cycles {max_cycles}, using default {cls.max_cycles}")
            max_cycles = cls.max_cycles

        watchdog = harness_cfg.get("watchdog_seconds", cls.watchdog_seconds)
        if watchdog is not None and (not isinstance(watchdog, (int, float)) or watchdog <= 0):
            logger.warning(
                f"Invalid watchdog_seconds {watchdog}, using default {cls.watchdog_seconds}"
            )
            watchdog = cls.watchdog_seconds

        settings = cls(
            start_time=start_time,
            mailbox_capacity=capacity,
            max_cycles=max_cycles,
            record_trace=bool(clock_cfg.get("record_trace", cls.record_trace)),
            watchdog_seconds=float(watchdog) if watchdog is not None else None,
        )

        logger.debug(
            f"Harness settings: mailbox_capacity={settings.mailbox_capacity}, "
            f"max_cycles={settings.max_cycles}, watchdog={settings.watchdog_seconds}s"
        )
        return settings

    @classmethod
    def load(cls, config_dir: str = "config") -> "HarnessSettings":
        """Load settings from harness.yml in config_dir."""
        return cls.from_config(ConfigLoader(config_dir=config_dir).load_all())

    def with_overrides(self, **overrides: Any) -> "HarnessSettings":
        """Return a copy with the given fields replaced.

        None is a real value here: max_cycles=None or watchdog_seconds=None
        disables that guard.
        """
        return replace(self, **overrides)
