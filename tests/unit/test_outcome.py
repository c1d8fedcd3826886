"""Tests for failure classification and outcome merging."""

from __future__ import annotations

import pytest

from clusterforge.engine.outcome import Failure, FailureKind, Outcome, classify_exit_code
from clusterforge.engine.protocol import ExitCode


class TestFailureKind:
    def test_severity_order(self):
        assert (
            FailureKind.DRIVER_ASSERTION
            < FailureKind.DRIVER_ERROR
            < FailureKind.WORKER_EXIT
            < FailureKind.TIMEOUT
            < FailureKind.DISPATCH
        )

    @pytest.mark.parametrize(
        ("kind", "code"),
        [
            (FailureKind.DRIVER_ASSERTION, ExitCode.DRIVER_FAILURE),
            (FailureKind.DRIVER_ERROR, ExitCode.DRIVER_FAILURE),
            (FailureKind.WORKER_EXIT, ExitCode.WORKER_FAILURE),
            (FailureKind.TIMEOUT, ExitCode.TIMEOUT),
            (FailureKind.DISPATCH, ExitCode.DISPATCH_FAILURE),
        ],
    )
    def test_exit_code(self, kind: FailureKind, code: ExitCode):
        assert kind.exit_code is code


@pytest.mark.parametrize(
    ("exit_code", "kind"),
    [
        (4, FailureKind.DISPATCH),
        (3, FailureKind.TIMEOUT),
        (1, FailureKind.WORKER_EXIT),
        (5, FailureKind.WORKER_EXIT),
        (-9, FailureKind.WORKER_EXIT),
        (None, FailureKind.WORKER_EXIT),
    ],
)
def test_classify_exit_code(exit_code: int | None, kind: FailureKind):
    assert classify_exit_code(exit_code) is kind


class TestOutcome:
    def test_success_when_no_failures(self):
        outcome = Outcome(test_name="t", driver_ran=True)
        assert outcome.success
        assert outcome.failure is None
        assert outcome.message is None
        assert outcome.exit_code is ExitCode.SUCCESS
        assert outcome.diagnostics == []

    def test_worker_failure_outranks_driver_assertion(self):
        """A driver verdict against an unhealthy cluster is not the primary cause."""
        outcome = Outcome(
            test_name="t",
            failures=[
                Failure(FailureKind.DRIVER_ASSERTION, "expected 6"),
                Failure(FailureKind.WORKER_EXIT, "worker 1 crashed", worker_id=1),
            ],
        )
        assert not outcome.success
        assert outcome.failure is FailureKind.WORKER_EXIT
        assert outcome.message == "worker 1 crashed"
        assert outcome.diagnostics == ["expected 6"]
        assert outcome.exit_code is ExitCode.WORKER_FAILURE

    def test_earliest_wins_among_equals(self):
        outcome = Outcome(
            test_name="t",
            failures=[
                Failure(FailureKind.WORKER_EXIT, "first", worker_id=0),
                Failure(FailureKind.WORKER_EXIT, "second", worker_id=1),
            ],
        )
        assert outcome.primary is not None
        assert outcome.primary.worker_id == 0
        assert outcome.diagnostics == ["second"]

    def test_dispatch_is_most_severe(self):
        outcome = Outcome(
            test_name="t",
            failures=[
                Failure(FailureKind.TIMEOUT, "slow"),
                Failure(FailureKind.DISPATCH, "no handler", worker_id=0),
            ],
        )
        assert outcome.exit_code is ExitCode.DISPATCH_FAILURE
