"""Cluster test definitions and the global test registry."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from clusterforge._internal.errors import SuiteError

if TYPE_CHECKING:
    from clusterforge._internal.types import TestFn


@dataclass(frozen=True)
class ClusterTestDefinition:
    """A named test body that runs against a cluster.

    Created by the ``@cluster_test`` decorator.

    Attributes:
        name: Unique test name within a suite.
        func: Async body receiving a ``ClusterClient``.
        workers: Number of select workers the test needs.
    """

    name: str
    func: TestFn
    workers: int = 2


class TestRegistry:
    """Registry of all discovered cluster tests, in definition order.

    Tests are registered automatically by the ``@cluster_test`` decorator.
    The registry is a module-level singleton.
    """

    __test__ = False

    def __init__(self) -> None:
        """Initialize an empty registry."""
        self._tests: dict[str, ClusterTestDefinition] = {}

    def register(self, definition: ClusterTestDefinition) -> None:
        """Register a test definition.

        Raises:
            SuiteError: If a test with the same name is already registered.
        """
        if definition.name in self._tests:
            msg = f"Cluster test {definition.name!r} is already registered"
            raise SuiteError(msg)
        self._tests[definition.name] = definition

    def get(self, name: str) -> ClusterTestDefinition | None:
        return self._tests.get(name)

    def get_all(self) -> list[ClusterTestDefinition]:
        return list(self._tests.values())

    def clear(self) -> None:
        """Remove all registered tests. Primarily for testing."""
        self._tests.clear()

    def __len__(self) -> int:
        return len(self._tests)


# Global singleton registry.
registry = TestRegistry()
