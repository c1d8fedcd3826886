"""Cluster configuration: one router plus select workers, each in its own process."""

from __future__ import annotations

import contextlib
import socket
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from clusterforge._internal.errors import ConfigError
from clusterforge._internal.logging import get_logger
from clusterforge.engine.respawn import register_handler
from clusterforge.engine.roles import MultiProcTest, WorkerProc
from clusterforge.service.config import ServiceConfig
from clusterforge.service.node import start_test, start_test_worker

if TYPE_CHECKING:
    from clusterforge._internal.types import TestFn
    from clusterforge.engine.protocol import SignalInit, WaitCompletion
    from clusterforge.service.node import ServiceNode, Services

logger = get_logger("cluster")

HOST = "127.0.0.1"
METASTORE_PORT = 51336
WORKER_PORTS = (51337, 51338)
WORKER_POOL_SIZE = 2


def allocate_ports(count: int) -> list[int]:
    """Reserve ``count`` distinct free ports on the loopback interface.

    All sockets are held open until every port is chosen, so the ports are
    distinct; they are released before returning.
    """
    with contextlib.ExitStack() as stack:
        ports = []
        for _ in range(count):
            sock = stack.enter_context(socket.socket(socket.AF_INET, socket.SOCK_STREAM))
            sock.bind((HOST, 0))
            ports.append(sock.getsockname()[1])
    return ports


@dataclass(frozen=True)
class ClusterWorkerArgs:
    """Arguments of one select worker.

    Attributes:
        id: Position of the worker, selects its port.
        test_name: Name of the run.
        metastore_port: Port of the router node.
        worker_ports: Ports of all select workers, indexed by ``id``.
        log_enabled: Whether the worker's node writes access logs.
    """

    id: int
    test_name: str
    metastore_port: int = METASTORE_PORT
    worker_ports: list[int] = field(default_factory=lambda: list(WORKER_PORTS))
    log_enabled: bool = False


def _worker_config(args: ClusterWorkerArgs, c: ServiceConfig) -> ServiceConfig:
    c.select_worker_pool_size = WORKER_POOL_SIZE
    c.server_name = f"{HOST}:{args.worker_ports[args.id]}"
    c.worker_bind_address = c.server_name
    c.metastore_remote_address = f"{HOST}:{args.metastore_port}"
    c.log_enabled = args.log_enabled
    return c


@register_handler
class ClusterWorker(WorkerProc):
    """Runs one select worker node until the driver releases it."""

    args_type = ClusterWorkerArgs

    async def run(
        self, args: ClusterWorkerArgs, init: SignalInit, done: WaitCompletion
    ) -> None:
        config = ServiceConfig.test(args.test_name).update_config(
            lambda c: _worker_config(args, c)
        )

        async def _serve(node: ServiceNode) -> None:
            await init.signal()
            await done.wait_completion()

        await start_test_worker(config, _serve)


class ClusterTest(MultiProcTest):
    """Drives a named test body against a router backed by select workers.

    Attributes:
        test_name: Name of the run.
        test_fn: Async body receiving the cluster client.
        num_workers: Number of select workers.
        ports: Router port followed by one port per worker.
    """

    worker_proc = ClusterWorker

    def __init__(
        self,
        test_name: str,
        test_fn: TestFn,
        *,
        num_workers: int = len(WORKER_PORTS),
        dynamic_ports: bool = False,
        log_workers: bool = False,
    ) -> None:
        if num_workers < 1:
            msg = f"num_workers must be >= 1, got {num_workers}"
            raise ConfigError(msg)
        if not dynamic_ports and num_workers > len(WORKER_PORTS):
            msg = (
                f"{num_workers} workers need dynamic ports, only "
                f"{len(WORKER_PORTS)} fixed worker ports exist"
            )
            raise ConfigError(msg)

        self.test_name = test_name
        self.test_fn = test_fn
        self.num_workers = num_workers
        self.log_workers = log_workers
        if dynamic_ports:
            self.ports = allocate_ports(num_workers + 1)
        else:
            self.ports = [METASTORE_PORT, *WORKER_PORTS[:num_workers]]
        logger.debug("%s uses ports %s", test_name, self.ports)

    @property
    def metastore_port(self) -> int:
        return self.ports[0]

    @property
    def worker_ports(self) -> list[int]:
        return self.ports[1:]

    def worker_arguments(self) -> list[ClusterWorkerArgs]:
        return [
            ClusterWorkerArgs(
                id=i,
                test_name=self.test_name,
                metastore_port=self.metastore_port,
                worker_ports=list(self.worker_ports),
                log_enabled=self.log_workers,
            )
            for i in range(self.num_workers)
        ]

    def _driver_config(self, c: ServiceConfig) -> ServiceConfig:
        c.server_name = f"{HOST}:{self.metastore_port}"
        c.metastore_bind_address = c.server_name
        c.select_workers = [f"{HOST}:{p}" for p in self.worker_ports]
        return c

    async def drive(self) -> None:
        config = ServiceConfig.test(self.test_name).update_config(self._driver_config)

        async def _body(services: Services) -> None:
            await self.test_fn(services.client)

        await start_test(config, _body)
