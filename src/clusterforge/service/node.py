"""Minimal clustered service used as the system under test.

A router node accepts queries and fans them out to select workers; each
worker computes a partial sum. It is only as large as the harness needs
to exercise real cross-process network traffic.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import dataclass
from typing import Any, Literal

import aiohttp
from aiohttp import web

from clusterforge._internal.errors import ConfigError
from clusterforge._internal.logging import get_logger
from clusterforge.service.client import ClusterClient
from clusterforge.service.config import ServiceConfig, split_address

logger = get_logger("service.node")

NodeRole = Literal["router", "worker"]

_NODE_KEY: web.AppKey[ServiceNode] = web.AppKey("node")
_SESSION_KEY = web.AppKey("session", aiohttp.ClientSession)
_POOL_KEY = web.AppKey("pool", asyncio.Semaphore)


def _bad_request(message: str) -> web.Response:
    return web.json_response({"error": message}, status=400)


async def _read_values(request: web.Request) -> list[float] | web.Response:
    """Parse ``{"values": [...]}`` or return a 400 response."""
    try:
        payload = await request.json()
    except ValueError:
        return _bad_request("body must be JSON")

    values = payload.get("values") if isinstance(payload, dict) else None
    if not isinstance(values, list) or not all(
        isinstance(v, int | float) and not isinstance(v, bool) for v in values
    ):
        return _bad_request("'values' must be a list of numbers")
    return values


async def _health_handler(request: web.Request) -> web.Response:
    node = request.app[_NODE_KEY]
    return web.json_response(node.describe())


async def _sum_handler(request: web.Request) -> web.Response:
    """Worker endpoint: sum one chunk of values."""
    values = await _read_values(request)
    if isinstance(values, web.Response):
        return values

    node = request.app[_NODE_KEY]
    async with request.app[_POOL_KEY]:
        return web.json_response(
            {"sum": sum(values), "count": len(values), "node": node.config.server_name}
        )


async def _remote_sum(
    session: aiohttp.ClientSession, worker: str, chunk: list[float]
) -> dict[str, Any]:
    async with session.post(f"http://{worker}/sum", json={"values": chunk}) as resp:
        resp.raise_for_status()
        return await resp.json()


async def _query_handler(request: web.Request) -> web.Response:
    """Router endpoint: split values round-robin across select workers."""
    values = await _read_values(request)
    if isinstance(values, web.Response):
        return values

    config = request.app[_NODE_KEY].config
    workers = config.select_workers
    if not workers:
        return web.json_response({"total": sum(values), "nodes": [config.server_name]})

    chunks = [values[i :: len(workers)] for i in range(len(workers))]
    session = request.app[_SESSION_KEY]
    try:
        partials = await asyncio.gather(
            *(_remote_sum(session, w, c) for w, c in zip(workers, chunks, strict=True))
        )
    except aiohttp.ClientError as exc:
        logger.warning("Query fan-out failed: %s", exc)
        return web.json_response({"error": f"select worker unavailable: {exc}"}, status=502)

    return web.json_response(
        {
            "total": sum(p["sum"] for p in partials),
            "nodes": [p["node"] for p in partials],
        }
    )


class ServiceNode:
    """One running node of the cluster.

    Attributes:
        config: Configuration the node was started with.
        role: ``"router"`` or ``"worker"``.
        host: Bound host.
        port: Bound port.
    """

    def __init__(self, config: ServiceConfig, role: NodeRole) -> None:
        bind = config.metastore_bind_address if role == "router" else config.worker_bind_address
        if bind is None:
            msg = f"{role} node of {config.test_name} has no bind address"
            raise ConfigError(msg)
        self.config = config
        self.role = role
        self.host, self.port = split_address(bind)
        self._runner: web.AppRunner | None = None

    def describe(self) -> dict[str, Any]:
        """Health document served on ``GET /health``."""
        info: dict[str, Any] = {
            "status": "ok",
            "role": self.role,
            "node": self.config.server_name,
            "test": self.config.test_name,
        }
        if self.role == "router":
            info["workers"] = list(self.config.select_workers)
        else:
            info["metastore"] = self.config.metastore_remote_address
            info["pool_size"] = self.config.select_worker_pool_size
        return info

    def _build_app(self) -> web.Application:
        app = web.Application()
        app[_NODE_KEY] = self
        app.router.add_get("/health", _health_handler)

        if self.role == "router":
            timeout = aiohttp.ClientTimeout(total=self.config.request_timeout)

            async def _client_session(app: web.Application) -> AsyncIterator[None]:
                async with aiohttp.ClientSession(timeout=timeout) as session:
                    app[_SESSION_KEY] = session
                    yield

            app.cleanup_ctx.append(_client_session)
            app.router.add_post("/query", _query_handler)
        else:
            # Semaphore(0) would block forever; 0 means unbounded.
            size = self.config.select_worker_pool_size
            app[_POOL_KEY] = asyncio.Semaphore(size if size > 0 else 2**31 - 1)
            app.router.add_post("/sum", _sum_handler)
        return app

    async def start(self) -> None:
        """Bind and start serving."""
        access_log = logger if self.config.log_enabled else None
        self._runner = web.AppRunner(self._build_app(), access_log=access_log)
        await self._runner.setup()
        site = web.TCPSite(self._runner, self.host, self.port)
        await site.start()
        logger.info("%s node listening on %s:%d", self.role, self.host, self.port)

    async def stop(self) -> None:
        """Stop serving and release the port."""
        if self._runner is not None:
            await self._runner.cleanup()
            self._runner = None
            logger.info("%s node on port %d stopped", self.role, self.port)


@dataclass
class Services:
    """Handles given to the driver's body.

    Attributes:
        client: Client bound to the router node.
        config: Router configuration.
        node: The running router node.
    """

    client: ClusterClient
    config: ServiceConfig
    node: ServiceNode


async def start_test(
    config: ServiceConfig, body: Callable[[Services], Awaitable[None]]
) -> None:
    """Start the router node, run ``body`` against it, stop the node."""
    node = ServiceNode(config, "router")
    await node.start()
    try:
        async with ClusterClient(f"http://{config.server_name}") as client:
            await body(Services(client=client, config=config, node=node))
    finally:
        await node.stop()


async def start_test_worker(
    config: ServiceConfig, body: Callable[[ServiceNode], Awaitable[None]]
) -> None:
    """Start a worker node, run ``body`` while it serves, stop the node."""
    node = ServiceNode(config, "worker")
    await node.start()
    try:
        await body(node)
    finally:
        await node.stop()
