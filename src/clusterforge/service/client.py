"""Async client the driver's test bodies use to talk to the cluster."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import aiohttp


@dataclass(frozen=True)
class QueryResult:
    """Answer of a distributed query.

    Attributes:
        total: Sum of all submitted values.
        nodes: Names of the nodes that computed partial sums, in order.
    """

    total: float
    nodes: list[str]


class ClusterClient:
    """Async HTTP client bound to the router node.

    Wraps an ``aiohttp.ClientSession``; use as an async context manager.

    Attributes:
        base_url: Router URL, e.g. ``http://localhost:51336``.
    """

    def __init__(self, base_url: str, *, timeout: float = 30.0) -> None:
        self.base_url = base_url.rstrip("/")
        self._timeout = aiohttp.ClientTimeout(total=timeout)
        self._session: aiohttp.ClientSession | None = None

    async def __aenter__(self) -> ClusterClient:
        """Open the underlying aiohttp session."""
        self._session = aiohttp.ClientSession(timeout=self._timeout)
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: object | None,
    ) -> None:
        """Close the underlying aiohttp session."""
        if self._session is not None:
            await self._session.close()
            self._session = None

    def _require_session(self) -> aiohttp.ClientSession:
        if self._session is None:
            msg = "ClusterClient must be used as an async context manager"
            raise RuntimeError(msg)
        return self._session

    async def query(self, values: list[float]) -> QueryResult:
        """Sum ``values`` across the cluster.

        Raises:
            aiohttp.ClientResponseError: If the router answers with an error.
        """
        session = self._require_session()
        async with session.post(f"{self.base_url}/query", json={"values": values}) as resp:
            resp.raise_for_status()
            data = await resp.json()
        return QueryResult(total=data["total"], nodes=list(data["nodes"]))

    async def health(self) -> dict[str, Any]:
        """Return the router's health document."""
        session = self._require_session()
        async with session.get(f"{self.base_url}/health") as resp:
            resp.raise_for_status()
            return await resp.json()
