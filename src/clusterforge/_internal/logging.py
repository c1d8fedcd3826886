"""Logging for the driver and its respawned workers.

Every process of a run, driver or worker, writes to its own stderr under
the ``clusterforge`` logger namespace. Records carry the process name
(``MainProcess`` or ``clusterforge-worker-N``) so interleaved output from
a run can be told apart.
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import UTC, datetime

_ROOT = "clusterforge"
_TEXT_FORMAT = "%(asctime)s [%(levelname)-8s] %(processName)s %(name)s: %(message)s"


class _JsonFormatter(logging.Formatter):
    """One JSON object per line: timestamp, level, logger, process, message."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "process": record.processName,
            "message": record.getMessage(),
        }
        if record.exc_info and record.exc_info[1] is not None:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry)


def _formatter(json_format: bool) -> logging.Formatter:
    if json_format:
        return _JsonFormatter()
    return logging.Formatter(_TEXT_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")


def setup_logging(
    level: int = logging.INFO,
    *,
    json_format: bool = False,
) -> logging.Logger:
    """Attach a stderr handler to the ``clusterforge`` logger.

    Calling again only changes the level, so the CLI and a worker entry
    point can both call it without duplicating output. Records do not
    propagate to the root logger.

    Args:
        level: Minimum level emitted.
        json_format: Emit one JSON object per record instead of text.

    Returns:
        The ``clusterforge`` logger.
    """
    root = logging.getLogger(_ROOT)
    root.setLevel(level)

    for handler in root.handlers:
        handler.setLevel(level)
    if root.handlers:
        return root

    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(level)
    handler.setFormatter(_formatter(json_format))
    root.addHandler(handler)
    root.propagate = False
    return root


def setup_worker_logging(level: int, *, enabled: bool) -> logging.Logger:
    """Configure logging inside a respawned worker.

    Workers stay quiet unless the driver enabled worker logs: only warnings
    and errors get through, which still surfaces crashes next to the
    driver's own output.

    Args:
        level: Level chosen by the driver for enabled worker logs.
        enabled: Whether worker logging was requested.
    """
    return setup_logging(level if enabled else logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """Return ``clusterforge.<name>``, e.g. ``get_logger("engine.coordinator")``."""
    return logging.getLogger(f"{_ROOT}.{name}")
