"""Multi-process worker coordinator for cluster tests."""

from __future__ import annotations

import dataclasses
import logging
import multiprocessing
import multiprocessing.process
import time
from dataclasses import dataclass
from multiprocessing.connection import wait
from typing import TYPE_CHECKING

from clusterforge._internal.config import HarnessConfig
from clusterforge._internal.errors import (
    ConfigError,
    WorkerExitError,
    WorkerTimeoutError,
)
from clusterforge._internal.logging import get_logger
from clusterforge.engine.channel import encode_payload
from clusterforge.engine.protocol import (
    ExitCode,
    FinishCommand,
    ReadySignal,
    WorkerLifecycle,
    WorkerResult,
    WorkerState,
)
from clusterforge.engine.respawn import (
    ChildOptions,
    child_main,
    handler_id,
    lookup_handler,
)

if TYPE_CHECKING:
    from multiprocessing.connection import Connection

    from clusterforge.engine.roles import MultiProcTest

logger = get_logger("engine.coordinator")

# Grace period for a terminated worker before it is killed.
_TERMINATE_GRACE = 2.0


@dataclass
class _WorkerHandle:
    """Driver-side view of one spawned worker."""

    worker_id: int
    process: multiprocessing.process.BaseProcess
    from_worker: Connection
    to_worker: Connection
    child_ends: tuple[Connection, Connection]
    lifecycle: WorkerLifecycle
    result: WorkerResult | None = None
    failure: str | None = None
    exit_code_hint: ExitCode | None = None


class Coordinator:
    """Manages the lifecycle of the worker processes of one run.

    Spawns one process per WorkerArgs, waits for every readiness signal,
    releases workers with the completion signal and joins them. The
    coordinator exclusively owns the processes and pipe ends it creates.

    Attributes:
        test: The multi-process test being run.
        num_workers: Number of worker processes, known after :meth:`start`.
    """

    def __init__(
        self,
        test: MultiProcTest,
        config: HarnessConfig | None = None,
        *,
        log_level: int = logging.INFO,
    ) -> None:
        """Initialize the coordinator.

        Args:
            test: Driver role providing the WorkerSpec and worker handler.
            config: Timeouts and spawn settings. Defaults to HarnessConfig().
            log_level: Logging level for workers when worker logs are enabled.
        """
        self.test = test
        self._config = config or HarnessConfig()
        self._log_level = log_level
        self._ctx = multiprocessing.get_context(self._config.start_method)
        self._workers: list[_WorkerHandle] = []
        self._finished = False

    @property
    def num_workers(self) -> int:
        return len(self._workers)

    @property
    def is_alive(self) -> bool:
        """Return True if any worker process is still running."""
        return any(h.process.is_alive() for h in self._workers)

    def states(self) -> list[WorkerState]:
        """Return the driver-side state of every worker."""
        return [h.lifecycle.state for h in self._workers]

    def start(self) -> None:
        """Spawn all worker processes.

        Raises:
            ConfigError: If the WorkerSpec is empty or not serializable.
            DispatchError: If the worker handler is not registered.
        """
        proc_cls = self.test.worker_proc
        key = handler_id(proc_cls)
        if lookup_handler(key) is not proc_cls:
            msg = f"Handler {key!r} resolves to a different class than {proc_cls.__name__}"
            raise ConfigError(msg)

        worker_args = list(self.test.worker_arguments())
        if not worker_args:
            msg = f"Test {self.test.test_name!r} defines no worker arguments"
            raise ConfigError(msg)

        options = ChildOptions(
            log_level=self._log_level,
            log_enabled=self._config.log_workers,
            completion_timeout=self._config.completion_timeout,
        )

        for i, args in enumerate(worker_args):
            payload = encode_payload(key, args)
            from_worker, worker_send = self._ctx.Pipe(duplex=False)
            worker_recv, to_worker = self._ctx.Pipe(duplex=False)

            process = self._ctx.Process(
                target=child_main,
                args=(payload, i, worker_send, worker_recv, options),
                name=f"clusterforge-worker-{i}",
                daemon=False,
            )
            self._workers.append(
                _WorkerHandle(
                    worker_id=i,
                    process=process,
                    from_worker=from_worker,
                    to_worker=to_worker,
                    child_ends=(worker_send, worker_recv),
                    lifecycle=WorkerLifecycle(i),
                )
            )

        for h in self._workers:
            h.process.start()
            h.lifecycle.advance(WorkerState.INITIALIZING)
            # The child holds its own copies now; closing ours makes a dead
            # peer observable as EOF.
            for conn in h.child_ends:
                conn.close()
            logger.debug(
                "Started worker process: pid=%d, name=%s", h.process.pid or 0, h.process.name
            )

        logger.info(
            "Started %d worker processes for %s", len(self._workers), self.test.test_name
        )

    def wait_ready(self, timeout: float) -> None:
        """Block until every worker has signalled readiness.

        Waits on the worker pipes and process sentinels together, so a
        worker that dies during setup is noticed immediately.

        Args:
            timeout: Overall bound in seconds.

        Raises:
            WorkerExitError: If a worker exits or reports failure first.
            WorkerTimeoutError: If the bound expires.
            ProtocolError: If a worker signals readiness twice.
        """
        deadline = time.monotonic() + timeout
        pending = {
            h.worker_id: h
            for h in self._workers
            if h.lifecycle.state is WorkerState.INITIALIZING
        }

        while pending:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                msg = (
                    f"Workers {sorted(pending)} of {self.test.test_name} "
                    f"not ready within {timeout:.1f}s"
                )
                raise WorkerTimeoutError(msg)

            waitables: dict[object, _WorkerHandle] = {}
            for h in pending.values():
                waitables[h.from_worker] = h
                waitables[h.process.sentinel] = h

            for obj in wait(list(waitables), timeout=remaining):
                h = waitables[obj]
                if h.worker_id not in pending:
                    continue

                closed = self._drain(h)
                if h.lifecycle.state is WorkerState.READY:
                    logger.debug("Worker %d is ready", h.worker_id)
                    del pending[h.worker_id]
                elif h.result is not None or closed or obj is h.process.sentinel:
                    h.process.join(timeout=self._config.exit_timeout)
                    raise self._exit_error(h, "exited before signalling readiness")

        logger.info("All %d workers ready", len(self._workers))

    def finish(self, timeout: float | None = None) -> list[WorkerResult]:
        """Release every worker and wait for all of them to exit.

        Sends the completion signal to each ready, live worker. Workers that
        never became ready are terminated, workers that already exited are
        recorded as failed. Stragglers past ``timeout`` are terminated and
        then killed. Safe to call more than once.

        Args:
            timeout: Seconds to wait for each worker to exit. Defaults to
                the configured exit timeout.

        Returns:
            One WorkerResult per worker, in WorkerSpec order.
        """
        if self._finished:
            return [self._result_for(h) for h in self._workers]
        self._finished = True

        bound = self._config.exit_timeout if timeout is None else timeout

        for h in self._workers:
            # A readiness signal may still be queued from the last wait.
            self._drain(h)
            state = h.lifecycle.state
            if state is WorkerState.READY and h.process.is_alive():
                try:
                    h.to_worker.send(FinishCommand())
                except (BrokenPipeError, OSError):
                    logger.warning("Worker %d: completion signal not delivered", h.worker_id)
                    h.failure = "exited before receiving the completion signal"
                else:
                    h.lifecycle.advance(WorkerState.FINISHING)
            elif state is WorkerState.READY:
                logger.warning("Worker %d exited before completion", h.worker_id)
                h.failure = "exited before receiving the completion signal"
            elif state in (WorkerState.SPAWNED, WorkerState.INITIALIZING) and h.process.is_alive():
                logger.warning("Worker %d never became ready, terminating", h.worker_id)
                h.failure = "terminated before signalling readiness"
                h.process.terminate()

        for h in self._workers:
            if h.process.pid is None:
                continue
            h.process.join(timeout=bound)
            if h.process.is_alive():
                logger.warning(
                    "Worker %s did not exit in time, terminating", h.process.name
                )
                h.process.terminate()
                h.process.join(timeout=_TERMINATE_GRACE)
                if h.process.is_alive():
                    h.process.kill()
                    h.process.join()
                h.failure = f"did not exit within {bound:.1f}s after completion"
                h.exit_code_hint = ExitCode.TIMEOUT
            self._drain(h)

        results = [self._result_for(h) for h in self._workers]

        for h in self._workers:
            if h.lifecycle.state is not WorkerState.EXITED:
                h.lifecycle.advance(WorkerState.EXITED)
            h.from_worker.close()
            h.to_worker.close()
            for conn in h.child_ends:
                conn.close()

        failed = [r for r in results if not r.success]
        logger.info(
            "All %d workers stopped (%d failed)", len(self._workers), len(failed)
        )
        return results

    def _drain(self, h: _WorkerHandle) -> bool:
        """Read every pending message from a worker.

        Returns:
            True if the worker closed its end of the pipe.
        """
        if h.from_worker.closed:
            return True
        try:
            while h.from_worker.poll():
                message = h.from_worker.recv()
                if isinstance(message, ReadySignal):
                    h.lifecycle.advance(WorkerState.READY)
                elif isinstance(message, WorkerResult):
                    h.result = message
                else:
                    logger.warning(
                        "Worker %d sent unexpected %s", h.worker_id, type(message).__name__
                    )
        except (EOFError, OSError):
            return True
        return False

    def _exit_error(self, h: _WorkerHandle, what: str) -> WorkerExitError:
        code = h.process.exitcode
        detail = h.result.error_message if h.result is not None else None
        msg = f"Worker {h.worker_id} {what} (exit code {code})"
        if detail:
            msg = f"{msg}: {detail}"
        return WorkerExitError(msg, worker_id=h.worker_id, exit_code=code)

    def _result_for(self, h: _WorkerHandle) -> WorkerResult:
        """Combine a worker's own report with what the driver observed."""
        code = h.process.exitcode
        if h.exit_code_hint is not None:
            return WorkerResult(
                worker_id=h.worker_id,
                success=False,
                exit_code=int(h.exit_code_hint),
                error_message=h.failure,
            )

        if h.result is not None:
            success = h.result.success and code == 0 and h.failure is None
            return dataclasses.replace(
                h.result,
                success=success,
                exit_code=code,
                error_message=h.result.error_message or (None if success else h.failure),
            )

        if code is None:
            message = h.failure or "worker was never started"
        else:
            message = h.failure or f"exited with code {code} without reporting a result"
        return WorkerResult(
            worker_id=h.worker_id,
            success=False,
            exit_code=code,
            error_message=message,
        )
