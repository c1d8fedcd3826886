"""Run one multi-process test: spawn, rendezvous, drive, release, merge."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import TYPE_CHECKING

from clusterforge._internal.config import load_config
from clusterforge._internal.errors import (
    ClusterForgeError,
    ConfigError,
    DispatchError,
    DriverTimeoutError,
    ProtocolError,
    WorkerExitError,
    WorkerTimeoutError,
)
from clusterforge._internal.logging import get_logger
from clusterforge.engine._loop import run_async
from clusterforge.engine.coordinator import Coordinator
from clusterforge.engine.outcome import Failure, FailureKind, Outcome, classify_exit_code

if TYPE_CHECKING:
    from clusterforge._internal.config import HarnessConfig
    from clusterforge.engine.protocol import WorkerResult
    from clusterforge.engine.roles import MultiProcTest

logger = get_logger("engine.multiproc")


def run_multiproc_test(
    test: MultiProcTest,
    config: HarnessConfig | None = None,
    *,
    log_level: int = logging.INFO,
) -> Outcome:
    """Run ``test`` with its workers and return the merged outcome.

    The driver body starts only after every worker signalled readiness.
    Workers are always released and joined before this returns, whatever
    happened to the driver body. The body itself is bounded by the
    completion timeout. Harness errors while spawning, such as an empty or
    unencodable WorkerSpec, are reported in the outcome, not raised.

    Args:
        test: Driver role providing the WorkerSpec and the body.
        config: Timeouts and spawn settings. Defaults to ``load_config()``.
        log_level: Logging level forwarded to workers.

    Returns:
        Outcome combining the driver body result with every worker's exit.
    """
    config = config or load_config()
    coordinator = Coordinator(test, config, log_level=log_level)
    outcome = Outcome(test_name=test.test_name)
    start_time = time.monotonic()

    logger.info("Running %s", test.test_name)
    try:
        try:
            coordinator.start()
            coordinator.wait_ready(config.ready_timeout)
        except (DispatchError, ConfigError) as exc:
            outcome.failures.append(Failure(FailureKind.DISPATCH, str(exc)))
        except WorkerTimeoutError as exc:
            outcome.failures.append(Failure(FailureKind.TIMEOUT, str(exc)))
        except WorkerExitError as exc:
            outcome.failures.append(
                Failure(classify_exit_code(exc.exit_code), str(exc), worker_id=exc.worker_id)
            )
        except ProtocolError as exc:
            outcome.failures.append(Failure(FailureKind.WORKER_EXIT, str(exc)))
        except ClusterForgeError as exc:
            outcome.failures.append(Failure(FailureKind.DISPATCH, str(exc)))
        else:
            outcome.driver_ran = True
            failure = _run_driver(test, config.completion_timeout)
            if failure is not None:
                outcome.failures.append(failure)
    finally:
        outcome.worker_results = coordinator.finish(config.exit_timeout)
        outcome.duration_seconds = time.monotonic() - start_time

    reported = {f.worker_id for f in outcome.failures if f.worker_id is not None}
    for result in outcome.worker_results:
        if not result.success and result.worker_id not in reported:
            outcome.failures.append(_worker_failure(result))

    if outcome.success:
        logger.info("%s passed in %.1fs", test.test_name, outcome.duration_seconds)
    else:
        logger.warning("%s failed: %s", test.test_name, outcome.message)
        for diagnostic in outcome.diagnostics:
            logger.warning("  also: %s", diagnostic)
    return outcome


async def _drive(test: MultiProcTest, timeout: float) -> None:
    """Await the driver body, bounded by the completion timeout."""
    try:
        async with asyncio.timeout(timeout) as scope:
            await test.drive()
    except TimeoutError:
        if not scope.expired():
            raise
        msg = f"Driver body of {test.test_name} did not finish within {timeout:.1f}s"
        raise DriverTimeoutError(msg) from None


def _run_driver(test: MultiProcTest, timeout: float) -> Failure | None:
    """Run the driver body, turning its failure into a :class:`Failure`."""
    try:
        run_async(_drive(test, timeout))
    except DriverTimeoutError as exc:
        return Failure(FailureKind.TIMEOUT, str(exc))
    except AssertionError as exc:
        message = str(exc) or "assertion failed"
        return Failure(FailureKind.DRIVER_ASSERTION, message)
    except Exception as exc:
        logger.exception("Driver body of %s raised", test.test_name)
        return Failure(FailureKind.DRIVER_ERROR, f"{type(exc).__name__}: {exc}")
    return None


def _worker_failure(result: WorkerResult) -> Failure:
    detail = result.error_message or f"exit code {result.exit_code}"
    return Failure(
        classify_exit_code(result.exit_code),
        f"Worker {result.worker_id} failed: {detail}",
        worker_id=result.worker_id,
    )
