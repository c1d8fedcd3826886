"""Test selection: name filters, skip list and the concurrency cap."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from clusterforge._internal.errors import ConfigError

if TYPE_CHECKING:
    from collections.abc import Sequence

    from clusterforge.dsl.definition import ClusterTestDefinition


@dataclass(frozen=True)
class TestSelection:
    """Which tests run, and how many at once.

    Attributes:
        filters: Tests whose name contains any filter run; empty means all.
        skip: Tests whose name contains any skip entry are excluded.
        exact: Match filters and skip entries against the whole name.
        test_threads: Maximum number of simultaneous runs.
    """

    __test__ = False

    filters: tuple[str, ...] = ()
    skip: tuple[str, ...] = ()
    exact: bool = False
    test_threads: int = 1

    def __post_init__(self) -> None:
        if self.test_threads < 1:
            msg = f"test_threads must be >= 1, got {self.test_threads}"
            raise ConfigError(msg)

    def _matches(self, name: str, patterns: Sequence[str]) -> bool:
        if self.exact:
            return name in patterns
        return any(p in name for p in patterns)

    def includes(self, name: str) -> bool:
        """Return True if the test named ``name`` is selected."""
        if self.filters and not self._matches(name, self.filters):
            return False
        return not self._matches(name, self.skip)


def select_tests(
    tests: Sequence[ClusterTestDefinition], selection: TestSelection
) -> list[ClusterTestDefinition]:
    """Apply ``selection`` to ``tests``, preserving their order."""
    return [t for t in tests if selection.includes(t.name)]


def parse_test_args(args: Sequence[str]) -> TestSelection:
    """Parse test-harness style arguments into a TestSelection.

    Understands ``--test-threads=N``, ``--test-threads N``, ``--skip NAME``,
    ``--exact`` and positional name filters.

    Raises:
        ConfigError: On an unknown flag or a missing/invalid value.
    """
    filters: list[str] = []
    skip: list[str] = []
    exact = False
    test_threads = 1

    it = iter(args)
    for arg in it:
        if arg == "--exact":
            exact = True
        elif arg == "--skip":
            value = next(it, None)
            if value is None:
                msg = "--skip requires a test name"
                raise ConfigError(msg)
            skip.append(value)
        elif arg == "--test-threads" or arg.startswith("--test-threads="):
            value = arg.partition("=")[2] if "=" in arg else next(it, None)
            try:
                test_threads = int(value)  # type: ignore[arg-type]
            except (TypeError, ValueError):
                msg = f"--test-threads requires an integer, got: {value!r}"
                raise ConfigError(msg) from None
        elif arg.startswith("-"):
            msg = f"Unknown test argument: {arg}"
            raise ConfigError(msg)
        else:
            filters.append(arg)

    return TestSelection(
        filters=tuple(filters),
        skip=tuple(skip),
        exact=exact,
        test_threads=test_threads,
    )
