"""Tests for running the driver body in-process."""

from __future__ import annotations

import asyncio

from clusterforge.engine.multiproc import _run_driver
from clusterforge.engine.outcome import FailureKind
from clusterforge.engine.roles import MultiProcTest


class _Driver(MultiProcTest):
    def __init__(self, body) -> None:
        self.test_name = "driver-only"
        self._body = body

    def worker_arguments(self) -> list:
        return []

    async def drive(self) -> None:
        await self._body()


class TestRunDriver:
    def test_passing_body(self):
        async def body() -> None:
            await asyncio.sleep(0)

        assert _run_driver(_Driver(body), timeout=5.0) is None

    def test_body_past_timeout(self):
        async def body() -> None:
            await asyncio.sleep(30)

        failure = _run_driver(_Driver(body), timeout=0.1)

        assert failure is not None
        assert failure.kind is FailureKind.TIMEOUT
        assert "did not finish within 0.1s" in failure.message

    def test_timeout_raised_by_body_is_a_driver_error(self):
        """Only the harness bound counts as a timeout failure."""

        async def body() -> None:
            raise TimeoutError("query took too long")

        failure = _run_driver(_Driver(body), timeout=5.0)

        assert failure is not None
        assert failure.kind is FailureKind.DRIVER_ERROR
        assert failure.message == "TimeoutError: query took too long"

    def test_assertion(self):
        async def body() -> None:
            assert 1 == 2, "expected 2"

        failure = _run_driver(_Driver(body), timeout=5.0)

        assert failure is not None
        assert failure.kind is FailureKind.DRIVER_ASSERTION
        assert failure.message.startswith("expected 2")
