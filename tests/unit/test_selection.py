"""Tests for test selection and test-harness argument parsing."""

from __future__ import annotations

import pytest

from clusterforge._internal.errors import ConfigError
from clusterforge.dsl.definition import ClusterTestDefinition
from clusterforge.suite.selection import TestSelection, parse_test_args, select_tests


async def _body(client) -> None:
    pass


def _defs(*names: str) -> list[ClusterTestDefinition]:
    return [ClusterTestDefinition(name=n, func=_body) for n in names]


class TestTestSelection:
    def test_default_selects_everything(self):
        selection = TestSelection()
        assert selection.includes("basic_select")
        assert selection.test_threads == 1

    def test_substring_filters(self):
        selection = TestSelection(filters=("select",))
        assert selection.includes("basic_select")
        assert not selection.includes("router_health")

    def test_skip_wins_over_filter(self):
        selection = TestSelection(filters=("select",), skip=("large",))
        assert selection.includes("basic_select")
        assert not selection.includes("large_select")

    def test_exact(self):
        selection = TestSelection(filters=("basic",), exact=True)
        assert not selection.includes("basic_select")
        assert TestSelection(filters=("basic_select",), exact=True).includes("basic_select")

    def test_rejects_zero_threads(self):
        with pytest.raises(ConfigError, match="test_threads"):
            TestSelection(test_threads=0)


def test_select_tests_keeps_order():
    tests = _defs("c_select", "a_select", "b_health")
    selected = select_tests(tests, TestSelection(filters=("select",)))
    assert [t.name for t in selected] == ["c_select", "a_select"]


class TestParseTestArgs:
    def test_empty(self):
        assert parse_test_args([]) == TestSelection()

    def test_all_flags(self):
        selection = parse_test_args(
            ["--test-threads=1", "--skip", "large_select", "--exact", "basic_select"]
        )
        assert selection == TestSelection(
            filters=("basic_select",),
            skip=("large_select",),
            exact=True,
            test_threads=1,
        )

    def test_threads_as_separate_value(self):
        assert parse_test_args(["--test-threads", "4"]).test_threads == 4

    def test_repeated_skip(self):
        assert parse_test_args(["--skip", "a", "--skip", "b"]).skip == ("a", "b")

    @pytest.mark.parametrize(
        ("args", "match"),
        [
            (["--skip"], "requires a test name"),
            (["--test-threads"], "requires an integer"),
            (["--test-threads=many"], "requires an integer"),
            (["--test-threads=0"], "test_threads must be"),
            (["--nocapture"], "Unknown test argument"),
        ],
    )
    def test_invalid(self, args: list[str], match: str):
        with pytest.raises(ConfigError, match=match):
            parse_test_args(args)
