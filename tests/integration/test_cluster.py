"""End-to-end runs of the router plus select worker cluster.

PYTEST_DONT_REWRITE: ``wrong_total`` runs as a real driver body whose
assertion message must reach the outcome unmodified.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from clusterforge._internal.errors import ConfigError
from clusterforge.cluster import ClusterTest, ClusterWorkerArgs
from clusterforge.dsl.definition import ClusterTestDefinition
from clusterforge.engine.multiproc import run_multiproc_test
from clusterforge.engine.outcome import FailureKind
from clusterforge.engine.protocol import ExitCode
from clusterforge.suite.runner import run_cluster_suite
from clusterforge.suite.selection import TestSelection

if TYPE_CHECKING:
    from clusterforge._internal.config import HarnessConfig
    from clusterforge.service.client import ClusterClient


async def basic_select(client: ClusterClient) -> None:
    result = await client.query([1, 2, 3])
    assert result.total == 6
    assert len(result.nodes) == 2


async def every_worker_answers(client: ClusterClient) -> None:
    health = await client.health()
    result = await client.query(list(range(10)))
    assert result.total == 45
    assert result.nodes == health["workers"]


async def wrong_total(client: ClusterClient) -> None:
    result = await client.query([1, 2, 3])
    assert result.total == 7, f"expected 7, got {result.total}"


class TestClusterTest:
    def test_worker_arguments(self):
        test = ClusterTest("basic_select-cluster", basic_select)

        assert test.ports == [51336, 51337, 51338]
        assert test.worker_arguments() == [
            ClusterWorkerArgs(id=0, test_name="basic_select-cluster", worker_ports=[51337, 51338]),
            ClusterWorkerArgs(id=1, test_name="basic_select-cluster", worker_ports=[51337, 51338]),
        ]

    def test_dynamic_ports_are_distinct(self):
        test = ClusterTest("wide-cluster", basic_select, num_workers=4, dynamic_ports=True)
        assert len(test.worker_ports) == 4
        assert len(set(test.ports)) == 5

    def test_rejects_more_workers_than_fixed_ports(self):
        with pytest.raises(ConfigError, match="need dynamic ports"):
            ClusterTest("wide-cluster", basic_select, num_workers=3)


@pytest.mark.timeout(120)
class TestClusterRuns:
    def test_basic_select(self, fast_config: HarnessConfig):
        test = ClusterTest("basic_select-cluster", basic_select, dynamic_ports=True)

        outcome = run_multiproc_test(test, fast_config)

        assert outcome.success, outcome.message
        assert [r.exit_code for r in outcome.worker_results] == [0, 0]

    def test_three_workers(self, fast_config: HarnessConfig):
        test = ClusterTest(
            "every_worker_answers-cluster",
            every_worker_answers,
            num_workers=3,
            dynamic_ports=True,
        )

        outcome = run_multiproc_test(test, fast_config)

        assert outcome.success, outcome.message
        assert len(outcome.worker_results) == 3

    def test_driver_assertion_surfaces(self, fast_config: HarnessConfig):
        test = ClusterTest("wrong_total-cluster", wrong_total, num_workers=1, dynamic_ports=True)

        outcome = run_multiproc_test(test, fast_config)

        assert outcome.failure is FailureKind.DRIVER_ASSERTION
        assert outcome.message == "expected 7, got 6"
        assert all(r.success for r in outcome.worker_results)

    def test_suite(self, fast_config: HarnessConfig):
        tests = [
            ClusterTestDefinition(name="basic_select", func=basic_select),
            ClusterTestDefinition(name="wrong_total", func=wrong_total, workers=1),
            ClusterTestDefinition(name="large_select", func=basic_select),
        ]

        result = run_cluster_suite(
            "cluster",
            tests,
            TestSelection(skip=("large_select",), test_threads=2),
            dynamic_ports=True,
            config=fast_config,
        )

        assert [o.test_name for o in result.outcomes] == [
            "basic_select-cluster",
            "wrong_total-cluster",
        ]
        assert result.skipped == ["large_select"]
        assert result.outcomes[0].success
        assert result.exit_code is ExitCode.DRIVER_FAILURE
