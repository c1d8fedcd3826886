"""Tests for suite execution: ordering, concurrency cap and exit codes."""

from __future__ import annotations

import threading
import time

import pytest

from clusterforge._internal.config import HarnessConfig
from clusterforge.cluster import ClusterTest
from clusterforge.dsl.definition import ClusterTestDefinition
from clusterforge.engine.outcome import Failure, FailureKind, Outcome
from clusterforge.engine.protocol import ExitCode
from clusterforge.suite import runner
from clusterforge.suite.runner import SuiteResult, run_cluster_suite, run_tests
from clusterforge.suite.selection import TestSelection


async def _body(client) -> None:
    pass


def _defs(*names: str, workers: int = 2) -> list[ClusterTestDefinition]:
    return [ClusterTestDefinition(name=n, func=_body, workers=workers) for n in names]


def _passing(definition: ClusterTestDefinition) -> Outcome:
    return Outcome(test_name=definition.name, driver_ran=True)


class _ConcurrencyProbe:
    """Fake ``run_one`` recording the peak number of simultaneous runs."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._active = 0
        self.peak = 0

    def __call__(self, definition: ClusterTestDefinition) -> Outcome:
        with self._lock:
            self._active += 1
            self.peak = max(self.peak, self._active)
        time.sleep(0.05)
        with self._lock:
            self._active -= 1
        return _passing(definition)


class TestSuiteResult:
    def test_exit_code_is_most_severe_failure(self):
        result = SuiteResult(
            suite_name="cluster",
            outcomes=[
                Outcome("a", failures=[Failure(FailureKind.DRIVER_ASSERTION, "x")]),
                Outcome("b", failures=[Failure(FailureKind.TIMEOUT, "y")]),
                Outcome("c"),
            ],
        )
        assert [o.test_name for o in result.passed] == ["c"]
        assert len(result.failed) == 2
        assert result.exit_code is ExitCode.TIMEOUT

    def test_all_passed(self):
        assert SuiteResult("cluster", outcomes=[Outcome("a")]).exit_code is ExitCode.SUCCESS


class TestRunTests:
    def test_sequential_in_definition_order(self):
        seen: list[str] = []

        def run_one(definition: ClusterTestDefinition) -> Outcome:
            seen.append(definition.name)
            return _passing(definition)

        result = run_tests("cluster", _defs("b", "a", "c"), TestSelection(), run_one)

        assert seen == ["b", "a", "c"]
        assert [o.test_name for o in result.outcomes] == ["b", "a", "c"]

    def test_skipped_tests_are_reported(self):
        result = run_tests(
            "cluster",
            _defs("basic_select", "large_select"),
            TestSelection(skip=("large_select",)),
            _passing,
        )
        assert [o.test_name for o in result.outcomes] == ["basic_select"]
        assert result.skipped == ["large_select"]

    def test_nothing_selected(self):
        result = run_tests("cluster", _defs("a"), TestSelection(filters=("zzz",)), _passing)
        assert result.outcomes == []
        assert result.exit_code is ExitCode.SUCCESS

    def test_cap_of_one_never_overlaps(self):
        probe = _ConcurrencyProbe()
        run_tests("cluster", _defs("a", "b", "c"), TestSelection(), probe)
        assert probe.peak == 1

    def test_parallel_runs_keep_order(self):
        probe = _ConcurrencyProbe()
        result = run_tests(
            "cluster", _defs("a", "b", "c", "d"), TestSelection(test_threads=4), probe
        )
        assert probe.peak > 1
        assert [o.test_name for o in result.outcomes] == ["a", "b", "c", "d"]

    def test_on_outcome_callback(self):
        received: list[str] = []
        run_tests(
            "cluster",
            _defs("a", "b"),
            TestSelection(),
            _passing,
            on_outcome=lambda o: received.append(o.test_name),
        )
        assert received == ["a", "b"]


class TestRunClusterSuite:
    @pytest.fixture
    def recorded(self, monkeypatch: pytest.MonkeyPatch) -> list[ClusterTest]:
        """Replace the orchestrator with a recorder of the tests it receives."""
        tests: list[ClusterTest] = []

        def fake_run(test: ClusterTest, config, *, log_level) -> Outcome:
            tests.append(test)
            return Outcome(test_name=test.test_name, driver_ran=True)

        monkeypatch.setattr(runner, "run_multiproc_test", fake_run)
        return tests

    def test_names_and_fixed_ports(self, recorded: list[ClusterTest]):
        result = run_cluster_suite(
            "cluster",
            _defs("basic_select", "large_select"),
            ["--skip", "large_select"],
            config=HarnessConfig(),
        )

        assert [o.test_name for o in result.outcomes] == ["basic_select-cluster"]
        assert recorded[0].metastore_port == 51336
        assert recorded[0].worker_ports == [51337, 51338]

    def test_fixed_ports_force_one_run_at_a_time(
        self, monkeypatch: pytest.MonkeyPatch, recorded: list[ClusterTest]
    ):
        captured: list[TestSelection] = []
        real_run_tests = runner.run_tests

        def spy(suite_name, tests, selection, run_one, **kwargs):
            captured.append(selection)
            return real_run_tests(suite_name, tests, selection, run_one, **kwargs)

        monkeypatch.setattr(runner, "run_tests", spy)
        run_cluster_suite(
            "cluster", _defs("a", "b"), ["--test-threads=4"], config=HarnessConfig()
        )
        assert captured[0].test_threads == 1

    def test_dynamic_ports_allow_parallel_runs(
        self, monkeypatch: pytest.MonkeyPatch, recorded: list[ClusterTest]
    ):
        captured: list[TestSelection] = []
        real_run_tests = runner.run_tests

        def spy(suite_name, tests, selection, run_one, **kwargs):
            captured.append(selection)
            return real_run_tests(suite_name, tests, selection, run_one, **kwargs)

        monkeypatch.setattr(runner, "run_tests", spy)
        run_cluster_suite(
            "cluster",
            _defs("a", "b"),
            TestSelection(test_threads=2),
            dynamic_ports=True,
            config=HarnessConfig(),
        )
        assert captured[0].test_threads == 2
        assert len(recorded) == 2
        assert all(len(set(t.ports)) == 3 for t in recorded)

    def test_too_many_workers_for_fixed_ports(self, recorded: list[ClusterTest]):
        result = run_cluster_suite(
            "cluster", _defs("wide", workers=3), config=HarnessConfig()
        )
        assert recorded == []
        assert result.outcomes[0].failure is FailureKind.DISPATCH
        assert "dynamic ports" in (result.outcomes[0].message or "")
