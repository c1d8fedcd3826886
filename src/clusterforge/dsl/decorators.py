"""Decorator for defining cluster tests."""

from __future__ import annotations

import inspect
from typing import TYPE_CHECKING

from clusterforge._internal.errors import SuiteError
from clusterforge.dsl.definition import ClusterTestDefinition, registry

if TYPE_CHECKING:
    from collections.abc import Callable

    from clusterforge._internal.types import TestFn


def cluster_test(
    *,
    name: str | None = None,
    workers: int = 2,
) -> Callable[[TestFn], ClusterTestDefinition]:
    """Declare an async function as a cluster test.

    The function receives a ``ClusterClient`` bound to the router node once
    every select worker is ready, and fails by raising ``AssertionError``.

    Example::

        @cluster_test()
        async def basic_select(client: ClusterClient) -> None:
            result = await client.query([1, 2, 3])
            assert result.total == 6

    Args:
        name: Test name. Defaults to the function name.
        workers: Number of select workers. Must be >= 1.

    Returns:
        A decorator that registers the function and returns its
        ClusterTestDefinition.

    Raises:
        SuiteError: If ``workers`` is less than 1 or the function is not a
            coroutine function.
    """
    if workers < 1:
        msg = f"Cluster test workers must be >= 1, got {workers}"
        raise SuiteError(msg)

    def decorator(func: TestFn) -> ClusterTestDefinition:
        if not inspect.iscoroutinefunction(func):
            msg = f"Cluster test {func.__name__} must be an async function"
            raise SuiteError(msg)

        definition = ClusterTestDefinition(
            name=name or func.__name__,
            func=func,
            workers=workers,
        )
        registry.register(definition)
        return definition

    return decorator
