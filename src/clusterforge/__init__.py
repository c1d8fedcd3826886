"""ClusterForge: multi-process cluster tests from a single invocation."""

from __future__ import annotations

from clusterforge.cluster import ClusterTest, ClusterWorker, ClusterWorkerArgs
from clusterforge.dsl.decorators import cluster_test
from clusterforge.dsl.definition import ClusterTestDefinition
from clusterforge.engine.multiproc import run_multiproc_test
from clusterforge.engine.outcome import FailureKind, Outcome
from clusterforge.engine.protocol import ExitCode, SignalInit, WaitCompletion
from clusterforge.engine.respawn import register_handler
from clusterforge.engine.roles import MultiProcTest, WorkerProc
from clusterforge.service.client import ClusterClient, QueryResult
from clusterforge.service.config import ServiceConfig
from clusterforge.suite.runner import run_cluster_suite

__version__ = "0.1.0"

__all__ = [
    "ClusterClient",
    "ClusterTest",
    "ClusterTestDefinition",
    "ClusterWorker",
    "ClusterWorkerArgs",
    "ExitCode",
    "FailureKind",
    "MultiProcTest",
    "Outcome",
    "QueryResult",
    "ServiceConfig",
    "SignalInit",
    "WaitCompletion",
    "WorkerProc",
    "cluster_test",
    "register_handler",
    "run_cluster_suite",
    "run_multiproc_test",
]
