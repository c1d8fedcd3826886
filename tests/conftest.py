"""Shared test fixtures for ClusterForge test suite."""

from __future__ import annotations

import logging
import os
from typing import TYPE_CHECKING

import pytest

from clusterforge._internal.config import HarnessConfig
from clusterforge.dsl.definition import registry
from clusterforge.engine import respawn
from clusterforge.engine.channel import RESPAWN_ENV

if TYPE_CHECKING:
    from collections.abc import Iterator
    from pathlib import Path


# =============================================================================
# Pytest configuration
# =============================================================================


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Auto-apply markers based on test directory structure."""
    for item in items:
        test_path = str(item.fspath)
        if "/unit/" in test_path:
            item.add_marker(pytest.mark.unit)
        elif "/integration/" in test_path:
            item.add_marker(pytest.mark.integration)
        elif "/e2e/" in test_path:
            item.add_marker(pytest.mark.e2e)


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def fast_config() -> HarnessConfig:
    """Harness configuration with short bounds for spawning tests."""
    return HarnessConfig(
        ready_timeout=20.0,
        completion_timeout=30.0,
        exit_timeout=10.0,
    )


@pytest.fixture
def clean_registry() -> Iterator[None]:
    """Empty the global cluster test registry around a test."""
    registry.clear()
    yield
    registry.clear()


@pytest.fixture
def worker_process_state(monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:
    """Let a test call ``child_main`` in-process without leaking its role.

    ``child_main`` marks the process as a worker, exports its payload and
    lowers the log level; all three are undone when the test ends.
    """
    root = logging.getLogger("clusterforge")
    level = root.level
    monkeypatch.setattr(respawn, "_current_role", respawn.Role.DRIVER)
    monkeypatch.delenv(RESPAWN_ENV, raising=False)
    yield
    os.environ.pop(RESPAWN_ENV, None)
    root.setLevel(level)


@pytest.fixture
def suite_file(tmp_path: Path) -> Path:
    """Create a temporary suite file with one passing and one failing test."""
    code = '''\
from __future__ import annotations

from clusterforge import ClusterClient, cluster_test


@cluster_test()
async def basic_select(client: ClusterClient) -> None:
    result = await client.query([1, 2, 3])
    assert result.total == 6
    assert len(result.nodes) == 2


@cluster_test(workers=1)
async def wrong_total(client: ClusterClient) -> None:
    result = await client.query([1, 2, 3])
    assert result.total == 7, f"expected 7, got {result.total}"
'''
    path = tmp_path / "suite.py"
    path.write_text(code)
    return path
