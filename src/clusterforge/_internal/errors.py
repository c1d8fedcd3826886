"""Custom exception hierarchy for ClusterForge."""

from __future__ import annotations


class ClusterForgeError(Exception):
    """Base exception for all ClusterForge errors.

    All custom exceptions in the ClusterForge framework inherit from this
    class, making it easy to catch any ClusterForge-specific error with a
    single except clause.
    """


class ConfigError(ClusterForgeError):
    """Raised when configuration is invalid or missing.

    Examples:
        - Required environment variable has an invalid value.
        - A worker handler is registered without an ``args_type``.
    """


class SuiteError(ClusterForgeError):
    """Raised when a test suite definition is invalid.

    Examples:
        - A ``@cluster_test`` function is not a coroutine function.
        - Two tests share the same name.
        - A suite file cannot be loaded or defines no tests.
    """


class DispatchError(ClusterForgeError):
    """Raised when a respawned worker cannot be dispatched.

    The payload handed to the child process is malformed, or names a
    handler that is not registered. Never retried.
    """


class ProtocolError(ClusterForgeError):
    """Raised when the readiness/completion protocol is violated.

    Examples:
        - A worker signals readiness twice.
        - A worker waits for completion before signalling readiness.
        - A worker handler returns without waiting for completion.
    """


class WorkerTimeoutError(ClusterForgeError):
    """Raised when a worker misses a bounded wait.

    Either it did not become ready, did not receive completion, or did not
    exit after completion within the configured timeout.
    """


class WorkerExitError(ClusterForgeError):
    """Raised when a worker process exits abnormally.

    Attributes:
        worker_id: Index of the worker in the WorkerSpec.
        exit_code: Process exit code, negative when killed by a signal.
    """

    def __init__(self, message: str, *, worker_id: int, exit_code: int | None) -> None:
        super().__init__(message)
        self.worker_id = worker_id
        self.exit_code = exit_code


class DriverTimeoutError(ClusterForgeError):
    """Raised when a driver body outlives the completion timeout.

    Workers give up waiting for completion after the same bound, so a
    driver still running past it no longer has a cluster to talk to.
    """
