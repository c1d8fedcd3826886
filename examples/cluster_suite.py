"""Runs the example tests with a cluster of 1 router and 2 select workers.

Run directly or through the CLI:
    python examples/cluster_suite.py
    clusterforge run examples/cluster_suite.py
"""

from __future__ import annotations

import sys

from clusterforge import ClusterClient, cluster_test, run_cluster_suite
from clusterforge.dsl.definition import registry
from clusterforge.engine import respawn


@cluster_test()
async def basic_select(client: ClusterClient) -> None:
    result = await client.query([1, 2, 3, 4, 5])
    assert result.total == 15
    assert len(result.nodes) == 2


@cluster_test()
async def empty_select(client: ClusterClient) -> None:
    result = await client.query([])
    assert result.total == 0


@cluster_test()
async def router_health(client: ClusterClient) -> None:
    health = await client.health()
    assert health["role"] == "router"
    assert len(health["workers"]) == 2


@cluster_test()
async def large_select(client: ClusterClient) -> None:
    values = list(range(100_000))
    result = await client.query(values)
    assert result.total == sum(values)


def main() -> int:
    respawn.init()
    # One run at a time: the fixed cluster ports cannot be shared.
    result = run_cluster_suite(
        "cluster",
        registry.get_all(),
        ["--test-threads=1", "--skip", "large_select", *sys.argv[1:]],
    )
    return int(result.exit_code)


if __name__ == "__main__":
    sys.exit(main())
