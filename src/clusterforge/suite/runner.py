"""Runs a suite of cluster tests, one orchestrated run per selected test."""

from __future__ import annotations

import dataclasses
import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from clusterforge._internal.config import load_config
from clusterforge._internal.errors import ConfigError
from clusterforge._internal.logging import get_logger
from clusterforge.cluster import ClusterTest
from clusterforge.engine.multiproc import run_multiproc_test
from clusterforge.engine.outcome import Failure, FailureKind, Outcome
from clusterforge.engine.protocol import ExitCode
from clusterforge.suite.selection import TestSelection, parse_test_args, select_tests

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence

    from clusterforge._internal.config import HarnessConfig
    from clusterforge.dsl.definition import ClusterTestDefinition

logger = get_logger("suite.runner")


@dataclass
class SuiteResult:
    """Outcomes of one suite execution.

    Attributes:
        suite_name: Name of the suite configuration, e.g. ``cluster``.
        outcomes: One outcome per selected test, in definition order.
        skipped: Names of tests excluded by the selection.
    """

    suite_name: str
    outcomes: list[Outcome] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)

    @property
    def passed(self) -> list[Outcome]:
        return [o for o in self.outcomes if o.success]

    @property
    def failed(self) -> list[Outcome]:
        return [o for o in self.outcomes if not o.success]

    @property
    def exit_code(self) -> ExitCode:
        """0 if every test passed, else the code of the most severe failure."""
        kinds = [o.failure for o in self.outcomes if o.failure is not None]
        if not kinds:
            return ExitCode.SUCCESS
        return max(kinds).exit_code


def run_tests(
    suite_name: str,
    tests: Sequence[ClusterTestDefinition],
    selection: TestSelection,
    run_one: Callable[[ClusterTestDefinition], Outcome],
    *,
    on_outcome: Callable[[Outcome], None] | None = None,
) -> SuiteResult:
    """Run every selected test through ``run_one``.

    At most ``selection.test_threads`` runs are in flight at once; with the
    default of 1 tests run one after another in definition order.

    Args:
        suite_name: Name used in logs and the result.
        tests: Candidate tests, in definition order.
        selection: Filters, skip list and concurrency cap.
        run_one: Runs a single test and returns its outcome.
        on_outcome: Optional callback invoked as each outcome arrives.

    Returns:
        SuiteResult with outcomes in definition order.
    """
    selected = select_tests(tests, selection)
    selected_names = {t.name for t in selected}
    result = SuiteResult(
        suite_name=suite_name,
        skipped=[t.name for t in tests if t.name not in selected_names],
    )

    if not selected:
        logger.warning("No tests selected in suite %s", suite_name)
        return result

    logger.info(
        "Running %d tests of suite %s (%d skipped, %d at a time)",
        len(selected),
        suite_name,
        len(result.skipped),
        selection.test_threads,
    )

    def _run(definition: ClusterTestDefinition) -> Outcome:
        outcome = run_one(definition)
        if on_outcome is not None:
            on_outcome(outcome)
        return outcome

    if selection.test_threads == 1:
        result.outcomes = [_run(t) for t in selected]
    else:
        with ThreadPoolExecutor(
            max_workers=selection.test_threads, thread_name_prefix="clusterforge-test"
        ) as pool:
            result.outcomes = list(pool.map(_run, selected))

    logger.info(
        "Suite %s finished: %d passed, %d failed",
        suite_name,
        len(result.passed),
        len(result.failed),
    )
    return result


def run_cluster_suite(
    suite_name: str,
    tests: Sequence[ClusterTestDefinition],
    args: Sequence[str] | TestSelection = (),
    *,
    dynamic_ports: bool = False,
    config: HarnessConfig | None = None,
    log_level: int = logging.INFO,
    on_outcome: Callable[[Outcome], None] | None = None,
) -> SuiteResult:
    """Run tests against a router plus select workers in separate processes.

    Each run is named ``<test>-<suite_name>``. Fixed ports collide between
    simultaneous runs, so without ``dynamic_ports`` the concurrency cap is
    forced to 1.

    Args:
        suite_name: Suite configuration name, appended to test names.
        tests: Candidate tests.
        args: Test-harness style arguments or a ready TestSelection.
        dynamic_ports: Allocate free ports per run instead of fixed ones.
        config: Harness configuration. Defaults to ``load_config()``.
        log_level: Logging level forwarded to workers.
        on_outcome: Optional callback invoked as each outcome arrives.
    """
    selection = args if isinstance(args, TestSelection) else parse_test_args(args)
    if not dynamic_ports and selection.test_threads > 1:
        logger.warning(
            "Fixed cluster ports allow one run at a time, ignoring test_threads=%d",
            selection.test_threads,
        )
        selection = dataclasses.replace(selection, test_threads=1)

    harness_config = config or load_config()

    def _run_one(definition: ClusterTestDefinition) -> Outcome:
        test_name = f"{definition.name}-{suite_name}"
        try:
            test = ClusterTest(
                test_name,
                definition.func,
                num_workers=definition.workers,
                dynamic_ports=dynamic_ports,
                log_workers=harness_config.log_workers,
            )
        except ConfigError as exc:
            return Outcome(
                test_name=test_name,
                failures=[Failure(FailureKind.DISPATCH, str(exc))],
            )
        return run_multiproc_test(test, harness_config, log_level=log_level)

    return run_tests(suite_name, tests, selection, _run_one, on_outcome=on_outcome)
