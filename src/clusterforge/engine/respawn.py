"""Role dispatch for respawned worker processes.

The driver spawns workers as fresh interpreters running :func:`child_main`.
A worker never returns into test discovery: it decodes its payload, looks
up the registered handler, runs it and exits with an :class:`ExitCode`.
"""

from __future__ import annotations

import importlib
import inspect
import logging
import os
import sys
from dataclasses import dataclass, is_dataclass
from enum import Enum
from typing import TYPE_CHECKING, NoReturn

from clusterforge._internal.errors import (
    ConfigError,
    DispatchError,
    ProtocolError,
    WorkerTimeoutError,
)
from clusterforge._internal.logging import get_logger, setup_worker_logging
from clusterforge.engine._loop import run_async
from clusterforge.engine.channel import (
    RESPAWN_ENV,
    build_args,
    decode_payload,
    qualified_name,
)
from clusterforge.engine.protocol import (
    ExitCode,
    SignalInit,
    WaitCompletion,
    WorkerLifecycle,
    WorkerResult,
    WorkerState,
)
from clusterforge.engine.roles import WorkerProc

if TYPE_CHECKING:
    from multiprocessing.connection import Connection
    from typing import Any

logger = get_logger("engine.respawn")


class Role(Enum):
    """Role of the current process, fixed at startup."""

    DRIVER = "driver"
    WORKER = "worker"


@dataclass(frozen=True)
class ChildOptions:
    """Explicit settings handed from the driver to each worker.

    Attributes:
        log_level: Logging level used when worker logging is enabled.
        log_enabled: If False, workers only log warnings and errors.
        completion_timeout: Bound on the worker's wait for completion.
    """

    log_level: int = logging.INFO
    log_enabled: bool = False
    completion_timeout: float = 600.0


_handlers: dict[str, type[WorkerProc]] = {}
_current_role = Role.DRIVER


def handler_id(proc_cls: type[WorkerProc]) -> str:
    """Return the identifier a handler is registered under."""
    return qualified_name(proc_cls)


def register_handler(proc_cls: type[WorkerProc]) -> type[WorkerProc]:
    """Register a worker handler. Usable as a class decorator.

    Call at module import time so spawned workers see the registration
    when they import the handler's module.

    Raises:
        ConfigError: If the class is not a usable WorkerProc, or another
            class is already registered under the same identifier.
    """
    if not (isinstance(proc_cls, type) and issubclass(proc_cls, WorkerProc)):
        msg = f"Worker handler must be a WorkerProc subclass, got {proc_cls!r}"
        raise ConfigError(msg)

    args_type = getattr(proc_cls, "args_type", None)
    if not (isinstance(args_type, type) and is_dataclass(args_type)):
        msg = f"Worker handler {proc_cls.__name__} must declare a dataclass args_type"
        raise ConfigError(msg)

    if not inspect.iscoroutinefunction(proc_cls.run):
        msg = f"Worker handler {proc_cls.__name__}.run must be an async function"
        raise ConfigError(msg)

    key = handler_id(proc_cls)
    existing = _handlers.get(key)
    if existing is not None and existing is not proc_cls:
        msg = f"Worker handler {key!r} is already registered"
        raise ConfigError(msg)

    _handlers[key] = proc_cls
    return proc_cls


def registered_handlers() -> dict[str, type[WorkerProc]]:
    """Return a snapshot of the handler table."""
    return dict(_handlers)


def lookup_handler(key: str) -> type[WorkerProc]:
    """Resolve a handler identifier.

    On a miss the module named in the identifier is imported, which runs its
    module-level registrations, and the lookup is retried once.

    Raises:
        DispatchError: If no handler is registered under ``key``.
    """
    proc_cls = _handlers.get(key)
    if proc_cls is not None:
        return proc_cls

    module_name, sep, _ = key.partition(":")
    if not sep or not module_name:
        msg = f"Malformed handler id: {key!r}"
        raise DispatchError(msg)

    try:
        importlib.import_module(module_name)
    except ImportError as exc:
        msg = f"Cannot import {module_name!r} for handler {key!r}: {exc}"
        raise DispatchError(msg) from exc

    proc_cls = _handlers.get(key)
    if proc_cls is None:
        msg = f"No worker handler registered for {key!r}"
        raise DispatchError(msg)
    return proc_cls


def current_role() -> Role:
    """Return the role of this process."""
    return _current_role


def init() -> Role:
    """Guard a driver entry point.

    Must be the first thing a driver entry point does. In the original
    process it returns :attr:`Role.DRIVER`. Inside a respawned worker it
    refuses to continue into test discovery and exits with
    :attr:`ExitCode.DISPATCH_FAILURE`.
    """
    if _current_role is Role.WORKER or RESPAWN_ENV in os.environ:
        logger.error("Driver entry point reached inside a respawned worker, exiting")
        sys.exit(ExitCode.DISPATCH_FAILURE)
    return Role.DRIVER


def child_main(
    payload: str,
    worker_id: int,
    ready_conn: Connection,
    done_conn: Connection,
    options: ChildOptions,
) -> NoReturn:
    """Process entry point of every respawned worker.

    Args:
        payload: Token produced by :func:`~clusterforge.engine.channel.encode_payload`.
        worker_id: Index of this worker in the WorkerSpec.
        ready_conn: Worker -> driver pipe end.
        done_conn: Driver -> worker pipe end.
        options: Logging and timeout settings chosen by the driver.
    """
    global _current_role  # noqa: PLW0603
    _current_role = Role.WORKER
    os.environ[RESPAWN_ENV] = payload

    setup_worker_logging(options.log_level, enabled=options.log_enabled)

    lifecycle = WorkerLifecycle(worker_id)
    lifecycle.advance(WorkerState.INITIALIZING)

    try:
        decoded = decode_payload(payload)
        proc_cls = lookup_handler(decoded.handler_id)
        args = build_args(proc_cls.args_type, decoded)
    except DispatchError as exc:
        logger.error("Worker %d: dispatch failed: %s", worker_id, exc)
        _exit(lifecycle, ready_conn, done_conn, ExitCode.DISPATCH_FAILURE, str(exc))

    logger.debug("Worker %d: dispatching to %s", worker_id, decoded.handler_id)
    code, error = _run_handler(proc_cls, args, lifecycle, ready_conn, done_conn, options)
    _exit(lifecycle, ready_conn, done_conn, code, error)


def _run_handler(
    proc_cls: type[WorkerProc],
    args: Any,
    lifecycle: WorkerLifecycle,
    ready_conn: Connection,
    done_conn: Connection,
    options: ChildOptions,
) -> tuple[ExitCode, str | None]:
    """Run a handler to completion and map its outcome to an exit code."""
    worker_id = lifecycle.worker_id
    init = SignalInit(ready_conn, lifecycle)
    done = WaitCompletion(done_conn, lifecycle, timeout=options.completion_timeout)

    try:
        run_async(proc_cls().run(args, init, done))
    except WorkerTimeoutError as exc:
        logger.error("Worker %d: %s", worker_id, exc)
        return ExitCode.TIMEOUT, str(exc)
    except ProtocolError as exc:
        logger.error("Worker %d: %s", worker_id, exc)
        return ExitCode.PROTOCOL_VIOLATION, str(exc)
    except KeyboardInterrupt:
        logger.info("Worker %d: KeyboardInterrupt, shutting down", worker_id)
        return ExitCode.WORKER_FAILURE, "interrupted"
    except Exception as exc:
        logger.exception("Worker %d: failed", worker_id)
        return ExitCode.WORKER_FAILURE, f"{type(exc).__name__}: {exc}"

    if lifecycle.state is not WorkerState.FINISHING:
        msg = (
            f"Worker {worker_id}: handler returned in state {lifecycle.state.name} "
            f"without waiting for completion"
        )
        logger.error(msg)
        return ExitCode.PROTOCOL_VIOLATION, msg

    return ExitCode.SUCCESS, None


def _exit(
    lifecycle: WorkerLifecycle,
    ready_conn: Connection,
    done_conn: Connection,
    code: ExitCode,
    error: str | None,
) -> NoReturn:
    """Report the result to the driver and terminate the process."""
    lifecycle.advance(WorkerState.EXITED)
    result = WorkerResult(
        worker_id=lifecycle.worker_id,
        success=code is ExitCode.SUCCESS,
        exit_code=int(code),
        error_message=error,
    )
    try:
        ready_conn.send(result)
    except (BrokenPipeError, OSError):
        logger.warning("Worker %d: driver is gone, result not delivered", lifecycle.worker_id)
    finally:
        ready_conn.close()
        done_conn.close()

    sys.exit(int(code))
