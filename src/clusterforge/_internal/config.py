"""Configuration loading for ClusterForge."""

from __future__ import annotations

import os
from dataclasses import dataclass

from clusterforge._internal.errors import ConfigError

_START_METHODS = ("spawn", "forkserver", "fork")


@dataclass(frozen=True)
class HarnessConfig:
    """Global orchestration configuration.

    Attributes:
        ready_timeout: Seconds the driver waits for every worker to signal
            readiness before the run is failed.
        completion_timeout: Seconds a ready worker waits for the driver's
            completion signal before giving up.
        exit_timeout: Seconds the driver waits for each worker to exit after
            completion was sent, before terminating it.
        start_method: ``multiprocessing`` start method used to spawn workers.
        log_workers: Whether worker processes emit log output below WARNING.
    """

    ready_timeout: float = 60.0
    completion_timeout: float = 600.0
    exit_timeout: float = 10.0
    start_method: str = "spawn"
    log_workers: bool = False


def _positive_float(name: str, default: str) -> float:
    raw = os.environ.get(name, default)
    try:
        value = float(raw)
    except ValueError:
        msg = f"{name} must be a number, got: {raw!r}"
        raise ConfigError(msg) from None

    if value <= 0:
        msg = f"{name} must be positive, got: {value}"
        raise ConfigError(msg)
    return value


def load_config() -> HarnessConfig:
    """Load configuration from environment variables with defaults.

    Environment variables:
        CLUSTERFORGE_READY_TIMEOUT: Readiness bound in seconds (default: 60).
        CLUSTERFORGE_COMPLETION_TIMEOUT: Completion bound in seconds
            (default: 600).
        CLUSTERFORGE_EXIT_TIMEOUT: Exit bound in seconds (default: 10).
        CLUSTERFORGE_START_METHOD: ``spawn``, ``forkserver`` or ``fork``
            (default: spawn).
        CLUSTERFORGE_TEST_LOG_WORKER: Enables worker logs when set.

    Returns:
        Populated HarnessConfig instance.

    Raises:
        ConfigError: If an environment variable has an invalid value.
    """
    start_method = os.environ.get("CLUSTERFORGE_START_METHOD", "spawn")
    if start_method not in _START_METHODS:
        msg = (
            f"CLUSTERFORGE_START_METHOD must be one of {', '.join(_START_METHODS)}, "
            f"got: {start_method!r}"
        )
        raise ConfigError(msg)

    return HarnessConfig(
        ready_timeout=_positive_float("CLUSTERFORGE_READY_TIMEOUT", "60"),
        completion_timeout=_positive_float("CLUSTERFORGE_COMPLETION_TIMEOUT", "600"),
        exit_timeout=_positive_float("CLUSTERFORGE_EXIT_TIMEOUT", "10"),
        start_method=start_method,
        log_workers="CLUSTERFORGE_TEST_LOG_WORKER" in os.environ,
    )
