# vtharness/diagnostics/logging_system.py
"""
Logging for virtual-time simulations.

Provides:
- Virtual-time aware console formatting
- JSON formatted file logs with rotation
- A context variable naming the clock active for the running task

Log lines emitted while a simulation runs are stamped with the virtual
time of that simulation's clock, read from the active_clock context
variable. Tasks spawned by the harness inherit it, so each concurrent
simulation stamps its own time.
"""

import json
import logging
import logging.handlers
import threading
from contextvars import ContextVar
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

__all__ = [
    "active_clock",
    "current_virtual_time",
    "LogEntry",
    "VirtualTimeFormatter",
    "JSONFormatter",
    "configure_logging",
    "get_logger",
]

ROOT_LOGGER_NAME = "vtharness"

# Set by the harness for the duration of a run
active_clock: ContextVar[Any] = ContextVar("active_clock", default=None)


def current_virtual_time() -> int | None:
    """Virtual time of the clock active in this context, if any."""
    clock = active_clock.get()
    return clock.time if clock is not None else None


# ----------------------------------------------------------------
# Structured Log Entry
# ----------------------------------------------------------------


@dataclass
class LogEntry:
    """Structured log entry."""

    virtual_time: int | None  # ns, None outside a simulation
    wall_time: float
    level: str
    logger: str
    message: str
    data: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        entry_dict = {
            "virtual_time": self.virtual_time,
            "wall_time": self.wall_time,
            "level": self.level,
            "logger": self.logger,
            "message": self.message,
        }
        if self.data:
            entry_dict["data"] = self.data
        return entry_dict

    def to_json(self) -> str:
        return json.dumps(self.to_dict())


# ----------------------------------------------------------------
# Formatters
# ----------------------------------------------------------------


class VirtualTimeFormatter(logging.Formatter):
    """Format log records with a virtual time prefix."""

    def __init__(self):
        super().__init__(fmt="[VT:%(vtime)16s] [%(levelname)8s] %(name)s: %(message)s")

    def format(self, record: logging.LogRecord) -> str:
        vtime = current_virtual_time()
        record.vtime = f"{vtime}ns" if vtime is not None else "-"
        return super().format(record)


class JSONFormatter(logging.Formatter):
    """Format log records as JSON with virtual time."""

    def format(self, record: logging.LogRecord) -> str:
        entry = LogEntry(
            virtual_time=current_virtual_time(),
            wall_time=record.created,
            level=record.levelname,
            logger=record.name,
            message=record.getMessage(),
        )

        if record.exc_info:
            entry.data["exception"] = self.formatException(record.exc_info)

        return entry.to_json()


# ----------------------------------------------------------------
# Global configuration
# ----------------------------------------------------------------

_configure_lock = threading.Lock()


def configure_logging(
    level: str | int = logging.INFO,
    log_dir: Path | str | None = None,
    json_logs: bool = False,
) -> logging.Logger:
    """
    Configure the package logger.

    Replaces any handlers installed by an earlier call, so it is safe to
    call once per run.

    Args:
        level: Logging level name or number
        log_dir: Directory for rotating log files (None = console only)
        json_logs: Emit JSON on the console instead of plain text

    Returns:
        The configured package logger
    """
    if isinstance(level, str):
        numeric = logging.getLevelName(level.upper())
        if not isinstance(numeric, int):
            raise ValueError(f"Unknown log level: {level}")
        level = numeric

    with _configure_lock:
        logger = logging.getLogger(ROOT_LOGGER_NAME)
        logger.setLevel(level)
        logger.propagate = False
        logger.handlers.clear()

        console = logging.StreamHandler()
        console.setLevel(level)
        console.setFormatter(JSONFormatter() if json_logs else VirtualTimeFormatter())
        logger.addHandler(console)

        if log_dir:
            log_path = Path(log_dir)
            log_path.mkdir(parents=True, exist_ok=True)

            # Rotating file handler (10MB max, 5 backups)
            file_handler = logging.handlers.RotatingFileHandler(
                log_path / "vtharness.json.log",
                maxBytes=10 * 1024 * 1024,
                backupCount=5,
            )
            file_handler.setLevel(level)
            file_handler.setFormatter(JSONFormatter())
            logger.addHandler(file_handler)

    return logger


def get_logger(name: str) -> logging.Logger:
    """Get a logger under the package hierarchy."""
    if name == ROOT_LOGGER_NAME or name.startswith(ROOT_LOGGER_NAME + "."):
        return logging.getLogger(name)
    return logging.getLogger(f"{ROOT_LOGGER_NAME}.{name}")
