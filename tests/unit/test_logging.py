"""Tests for driver and worker logging setup."""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING

import pytest

from clusterforge._internal.logging import get_logger, setup_logging, setup_worker_logging

if TYPE_CHECKING:
    from collections.abc import Iterator


@pytest.fixture(autouse=True)
def _fresh_logger() -> Iterator[logging.Logger]:
    """Detach handlers from the ``clusterforge`` logger around each test."""
    root = logging.getLogger("clusterforge")
    saved = (root.handlers[:], root.level, root.propagate)
    root.handlers.clear()
    yield root
    root.handlers[:] = saved[0]
    root.setLevel(saved[1])
    root.propagate = saved[2]


class TestSetupLogging:
    def test_single_handler_across_calls(self):
        setup_logging(logging.INFO)
        root = setup_logging(logging.DEBUG)

        assert len(root.handlers) == 1
        assert root.level == logging.DEBUG
        assert root.handlers[0].level == logging.DEBUG
        assert not root.propagate

    def test_json_records_carry_process(self):
        root = setup_logging(json_format=True)
        record = logging.LogRecord(
            "clusterforge.engine.coordinator", logging.INFO, __file__, 1, "hello %s", ("x",), None
        )

        entry = json.loads(root.handlers[0].format(record))

        assert entry["message"] == "hello x"
        assert entry["logger"] == "clusterforge.engine.coordinator"
        assert entry["process"] == record.processName


class TestWorkerLogging:
    def test_disabled_workers_only_warn(self):
        root = setup_worker_logging(logging.DEBUG, enabled=False)
        assert root.level == logging.WARNING

    def test_enabled_workers_use_driver_level(self):
        root = setup_worker_logging(logging.DEBUG, enabled=True)
        assert root.level == logging.DEBUG


def test_get_logger_namespace():
    assert get_logger("engine.respawn").name == "clusterforge.engine.respawn"
