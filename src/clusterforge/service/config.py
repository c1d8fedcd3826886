"""Mutable per-role configuration of a service node."""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from clusterforge._internal.errors import ConfigError

if TYPE_CHECKING:
    from collections.abc import Callable

    from clusterforge._internal.types import Address


@dataclass
class ServiceConfig:
    """Configuration handed to each role before its node starts.

    The orchestration engine never interprets these values; roles override
    them through :meth:`update_config`.

    Attributes:
        test_name: Name of the run this node belongs to.
        server_name: Address this node identifies itself with.
        metastore_bind_address: Where the coordinating (router) node listens.
        metastore_remote_address: Where workers reach the coordinating node.
        worker_bind_address: Where a worker node listens.
        select_workers: Worker addresses the router fans queries out to.
        select_worker_pool_size: Concurrent requests a worker node serves;
            0 means unbounded.
        log_enabled: Whether the node writes access logs.
        request_timeout: Timeout for router -> worker requests in seconds.
    """

    test_name: str
    server_name: Address = "localhost:3030"
    metastore_bind_address: Address | None = None
    metastore_remote_address: Address | None = None
    worker_bind_address: Address | None = None
    select_workers: list[Address] = field(default_factory=list)
    select_worker_pool_size: int = 0
    log_enabled: bool = True
    request_timeout: float = 10.0

    @classmethod
    def test(cls, test_name: str) -> ServiceConfig:
        """Return the default configuration for a test run."""
        return cls(test_name=test_name)

    def update_config(
        self, override: Callable[[ServiceConfig], ServiceConfig]
    ) -> ServiceConfig:
        """Apply an override callback to a copy of this configuration.

        Args:
            override: Receives a mutable copy and returns the config to use.

        Returns:
            The updated configuration.

        Raises:
            ConfigError: If the callback does not return a ServiceConfig.
        """
        updated = override(copy.deepcopy(self))
        if not isinstance(updated, ServiceConfig):
            msg = f"Config override must return a ServiceConfig, got {type(updated).__name__}"
            raise ConfigError(msg)
        return updated


def split_address(address: Address) -> tuple[str, int]:
    """Split ``host:port`` into its parts.

    Raises:
        ConfigError: If the address has no valid port.
    """
    host, sep, port_str = address.rpartition(":")
    if not sep or not host:
        msg = f"Address must look like host:port, got: {address!r}"
        raise ConfigError(msg)
    try:
        port = int(port_str)
    except ValueError:
        msg = f"Address port must be an integer, got: {address!r}"
        raise ConfigError(msg) from None
    if not 0 < port < 65536:
        msg = f"Address port out of range: {address!r}"
        raise ConfigError(msg)
    return host, port
