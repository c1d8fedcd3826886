"""Merged pass/fail result of one multi-process run."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import IntEnum

from clusterforge.engine.protocol import ExitCode, WorkerResult


class FailureKind(IntEnum):
    """Failure causes, ordered by increasing severity.

    Worker and timeout failures outrank driver failures: a driver result
    obtained against an unhealthy cluster cannot be trusted.
    """

    DRIVER_ASSERTION = 1
    DRIVER_ERROR = 2
    WORKER_EXIT = 3
    TIMEOUT = 4
    DISPATCH = 5

    @property
    def exit_code(self) -> ExitCode:
        """Process exit code reported for this kind of failure."""
        if self in (FailureKind.DRIVER_ASSERTION, FailureKind.DRIVER_ERROR):
            return ExitCode.DRIVER_FAILURE
        if self is FailureKind.WORKER_EXIT:
            return ExitCode.WORKER_FAILURE
        if self is FailureKind.TIMEOUT:
            return ExitCode.TIMEOUT
        return ExitCode.DISPATCH_FAILURE


@dataclass(frozen=True)
class Failure:
    """One recorded cause of a failed run.

    Attributes:
        kind: Category of the failure.
        message: Human-readable diagnostic.
        worker_id: Worker the failure belongs to, None for the driver.
    """

    kind: FailureKind
    message: str
    worker_id: int | None = None


def classify_exit_code(exit_code: int | None) -> FailureKind:
    """Map a failed worker's exit code to a failure kind."""
    if exit_code == ExitCode.DISPATCH_FAILURE:
        return FailureKind.DISPATCH
    if exit_code == ExitCode.TIMEOUT:
        return FailureKind.TIMEOUT
    return FailureKind.WORKER_EXIT


@dataclass
class Outcome:
    """Result of ``run_multiproc_test``.

    Attributes:
        test_name: Name of the run.
        failures: Every recorded failure, in the order they were observed.
        driver_ran: Whether the driver body was invoked.
        worker_results: One result per spawned worker.
        duration_seconds: Wall-clock duration of the run.
    """

    test_name: str
    failures: list[Failure] = field(default_factory=list)
    driver_ran: bool = False
    worker_results: list[WorkerResult] = field(default_factory=list)
    duration_seconds: float = 0.0

    @property
    def success(self) -> bool:
        """True only if the driver body and every worker succeeded."""
        return not self.failures

    @property
    def primary(self) -> Failure | None:
        """Most severe failure; the earliest one wins among equals."""
        if not self.failures:
            return None
        return max(self.failures, key=lambda f: f.kind)

    @property
    def failure(self) -> FailureKind | None:
        primary = self.primary
        return primary.kind if primary is not None else None

    @property
    def message(self) -> str | None:
        primary = self.primary
        return primary.message if primary is not None else None

    @property
    def diagnostics(self) -> list[str]:
        """Messages of every failure other than the primary one."""
        primary = self.primary
        return [f.message for f in self.failures if f is not primary]

    @property
    def exit_code(self) -> ExitCode:
        primary = self.primary
        return ExitCode.SUCCESS if primary is None else primary.kind.exit_code
