"""Readiness/completion protocol between the driver and its workers.

Every worker owns two one-way pipes: worker -> driver carries exactly one
:class:`ReadySignal` followed by one :class:`WorkerResult`; driver -> worker
carries exactly one :class:`FinishCommand`. Both ends track the same
:class:`WorkerState` machine::

    SPAWNED -> INITIALIZING -> READY -> FINISHING -> EXITED

Any state may move straight to EXITED when the worker fails.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from enum import Enum, IntEnum, auto
from typing import TYPE_CHECKING

from clusterforge._internal.errors import ProtocolError, WorkerTimeoutError
from clusterforge._internal.logging import get_logger

if TYPE_CHECKING:
    from multiprocessing.connection import Connection

logger = get_logger("engine.protocol")


class ExitCode(IntEnum):
    """Process exit codes shared by workers and the CLI."""

    SUCCESS = 0
    WORKER_FAILURE = 1
    DRIVER_FAILURE = 2
    TIMEOUT = 3
    DISPATCH_FAILURE = 4
    PROTOCOL_VIOLATION = 5


class WorkerState(Enum):
    """Lifecycle of one worker, as seen by either side of the pipes."""

    SPAWNED = auto()
    INITIALIZING = auto()
    READY = auto()
    FINISHING = auto()
    EXITED = auto()


_TRANSITIONS: dict[WorkerState, frozenset[WorkerState]] = {
    WorkerState.SPAWNED: frozenset({WorkerState.INITIALIZING, WorkerState.EXITED}),
    WorkerState.INITIALIZING: frozenset({WorkerState.READY, WorkerState.EXITED}),
    WorkerState.READY: frozenset({WorkerState.FINISHING, WorkerState.EXITED}),
    WorkerState.FINISHING: frozenset({WorkerState.EXITED}),
    WorkerState.EXITED: frozenset(),
}


@dataclass(frozen=True)
class ReadySignal:
    """Sent once by a worker when its setup is complete.

    Attributes:
        worker_id: Index of the worker in the WorkerSpec.
    """

    worker_id: int


@dataclass(frozen=True)
class FinishCommand:
    """Sent once by the driver when the worker may exit."""


@dataclass(frozen=True)
class WorkerResult:
    """Result of one worker, reported on exit or synthesized by the driver.

    Attributes:
        worker_id: Index of the worker in the WorkerSpec.
        success: Whether the worker exited cleanly.
        exit_code: Process exit code, negative when killed by a signal,
            None if the process never started.
        error_message: Error description if the worker failed.
    """

    worker_id: int
    success: bool
    exit_code: int | None = 0
    error_message: str | None = None


class WorkerLifecycle:
    """Checked state machine for a single worker."""

    def __init__(self, worker_id: int) -> None:
        self.worker_id = worker_id
        self._state = WorkerState.SPAWNED

    @property
    def state(self) -> WorkerState:
        return self._state

    def advance(self, target: WorkerState) -> None:
        """Move to ``target``.

        Raises:
            ProtocolError: If the transition is not allowed.
        """
        if target not in _TRANSITIONS[self._state]:
            msg = (
                f"Worker {self.worker_id}: illegal transition "
                f"{self._state.name} -> {target.name}"
            )
            raise ProtocolError(msg)
        logger.debug(
            "Worker %d: %s -> %s", self.worker_id, self._state.name, target.name
        )
        self._state = target


class SignalInit:
    """Worker-side handle used to signal readiness exactly once."""

    def __init__(self, conn: Connection, lifecycle: WorkerLifecycle) -> None:
        self._conn = conn
        self._lifecycle = lifecycle

    async def signal(self) -> None:
        """Tell the driver this worker finished its setup.

        Raises:
            ProtocolError: If readiness was already signalled.
        """
        self._lifecycle.advance(WorkerState.READY)
        self._conn.send(ReadySignal(worker_id=self._lifecycle.worker_id))


class WaitCompletion:
    """Worker-side handle used to block until the driver releases it."""

    def __init__(
        self,
        conn: Connection,
        lifecycle: WorkerLifecycle,
        *,
        timeout: float,
    ) -> None:
        self._conn = conn
        self._lifecycle = lifecycle
        self._timeout = timeout

    async def wait_completion(self, timeout: float | None = None) -> None:
        """Block until the driver sends :class:`FinishCommand`.

        Args:
            timeout: Override of the configured completion timeout.

        Raises:
            ProtocolError: If readiness was not signalled first, the driver
                closed its end, or an unexpected message arrived.
            WorkerTimeoutError: If no completion arrived in time.
        """
        if self._lifecycle.state is not WorkerState.READY:
            msg = (
                f"Worker {self._lifecycle.worker_id}: wait_completion() called "
                f"in state {self._lifecycle.state.name}, signal readiness first"
            )
            raise ProtocolError(msg)

        bound = self._timeout if timeout is None else timeout
        if not await asyncio.to_thread(self._conn.poll, bound):
            msg = (
                f"Worker {self._lifecycle.worker_id}: no completion signal "
                f"within {bound:.1f}s"
            )
            raise WorkerTimeoutError(msg)

        try:
            message = self._conn.recv()
        except (EOFError, OSError) as exc:
            msg = f"Worker {self._lifecycle.worker_id}: driver closed the completion channel"
            raise ProtocolError(msg) from exc

        if not isinstance(message, FinishCommand):
            msg = (
                f"Worker {self._lifecycle.worker_id}: expected FinishCommand, "
                f"got {type(message).__name__}"
            )
            raise ProtocolError(msg)

        self._lifecycle.advance(WorkerState.FINISHING)
