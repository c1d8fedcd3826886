"""Tests for suite file loading."""

from __future__ import annotations

import sys
from typing import TYPE_CHECKING

import pytest

from clusterforge._internal.errors import SuiteError
from clusterforge.dsl.loader import load_suite

if TYPE_CHECKING:
    from pathlib import Path


@pytest.fixture(autouse=True)
def _clear_registry(clean_registry: None):
    """Loading a suite registers its tests globally."""


class TestLoadSuite:
    def test_loads_definitions_in_order(self, suite_file: Path):
        tests = load_suite(suite_file)

        assert [t.name for t in tests] == ["basic_select", "wrong_total"]
        assert [t.workers for t in tests] == [2, 1]
        assert "clusterforge_suite_suite" in sys.modules

    def test_missing_file(self, tmp_path: Path):
        with pytest.raises(SuiteError, match="not found"):
            load_suite(tmp_path / "nope.py")

    def test_not_python(self, tmp_path: Path):
        path = tmp_path / "suite.txt"
        path.write_text("")
        with pytest.raises(SuiteError, match=r"must be a \.py file"):
            load_suite(path)

    def test_import_failure(self, tmp_path: Path):
        path = tmp_path / "broken.py"
        path.write_text("raise RuntimeError('boom')\n")

        with pytest.raises(SuiteError, match="Failed to import"):
            load_suite(path)
        assert "clusterforge_suite_broken" not in sys.modules

    def test_no_tests(self, tmp_path: Path):
        path = tmp_path / "empty.py"
        path.write_text("VALUE = 1\n")

        with pytest.raises(SuiteError, match="No @cluster_test function"):
            load_suite(path)
        assert "clusterforge_suite_empty" not in sys.modules
