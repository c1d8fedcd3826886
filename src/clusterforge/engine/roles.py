"""Abstract driver and worker roles of a multi-process test."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any, ClassVar

if TYPE_CHECKING:
    from clusterforge.engine.protocol import SignalInit, WaitCompletion


class WorkerProc(ABC):
    """Logic run inside a respawned worker process.

    Subclasses declare the dataclass they receive as ``args_type`` and are
    registered with :func:`clusterforge.engine.respawn.register_handler`
    at module import time, so a freshly spawned interpreter finds them by
    importing their module.

    Example::

        @register_handler
        class EchoWorker(WorkerProc):
            args_type = EchoArgs

            async def run(self, args, init, done):
                server = await start_server(args.port)
                await init.signal()
                await done.wait_completion()
                await server.close()
    """

    args_type: ClassVar[type]

    @abstractmethod
    async def run(self, args: Any, init: SignalInit, done: WaitCompletion) -> None:
        """Set up, signal readiness, wait for completion, tear down.

        Args:
            args: Decoded ``args_type`` instance for this worker.
            init: Readiness handle; ``await init.signal()`` exactly once.
            done: Completion handle; ``await done.wait_completion()`` after
                signalling readiness.
        """


class MultiProcTest(ABC):
    """Driver side of a multi-process test.

    Attributes:
        test_name: Unique name of the run, used in logs and outcomes.
        worker_proc: Registered :class:`WorkerProc` subclass the workers run.
    """

    test_name: str
    worker_proc: ClassVar[type[WorkerProc]]

    @abstractmethod
    def worker_arguments(self) -> list[Any]:
        """Return the WorkerSpec: one WorkerArgs dataclass per worker."""

    @abstractmethod
    async def drive(self) -> None:
        """Run the test body once every worker is ready.

        Raise ``AssertionError`` for test failures.
        """
