# config/config_loader.py
"""
Config loader module for YAML harness configuration.
"""

from pathlib import Path

import yaml

DEFAULT_CLOCK_CONFIG = {
    "start_time": 0,
    "mailbox_capacity": 64,
    "max_cycles": 1_000_000,
    "record_trace": True,
}

DEFAULT_HARNESS_CONFIG = {
    "watchdog_seconds": 30.0,
}

DEFAULT_LOGGING_CONFIG = {
    "level": "INFO",
    "log_dir": None,
    "json": False,
}


class ConfigLoader:
    """Loads harness configuration and merges it over defaults."""

    def __init__(self, config_dir="config"):
        self.config_dir = Path(config_dir)

    def load_all(self):
        """Load all configuration sections.

        Missing files or sections fall back to the defaults; keys present
        in the file override the matching default key.
        """
        config = {}

        harness_path = self.config_dir / "harness.yml"
        if harness_path.exists():
            with open(harness_path) as f:
                harness_data = yaml.safe_load(f) or {}
        else:
            harness_data = {}

        if not isinstance(harness_data, dict):
            raise ValueError(f"{harness_path} must contain a YAML mapping")

        config["clock"] = {
            **DEFAULT_CLOCK_CONFIG,
            **(harness_data.get("clock") or {}),
        }
        config["harness"] = {
            **DEFAULT_HARNESS_CONFIG,
            **(harness_data.get("harness") or {}),
        }
        config["logging"] = {
            **DEFAULT_LOGGING_CONFIG,
            **(harness_data.get("logging") or {}),
        }

        return config

    def save(self, config):
        """Write a configuration mapping back to harness.yml."""
        self.config_dir.mkdir(parents=True, exist_ok=True)
        harness_path = self.config_dir / "harness.yml"
        with open(harness_path, "w") as f:
            yaml.dump(config, f, default_flow_style=False, sort_keys=False)
        return harness_path
