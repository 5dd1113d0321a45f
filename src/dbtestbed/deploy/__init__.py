"""dbtestbed deploy -- ephemeral database containers for test runs.

Starts a database engine in a throwaway container, waits until its log
says it accepts connections, hands a connection profile to a test action,
and removes the container again whatever happened in between.

Key Concepts:
    ProcessRunner: Synchronous and asynchronous child-process execution
        with typed errors.
    ReadinessWatcher: Accumulates a log stream and fires a single-fire
        signal once a marker substring has been seen.
    ContainerRuntime / ContainerHandle: Runtime CLI client and one named
        container instance (start, address, readiness, stop, remove).
    FixtureOrchestrator: One start → ready → action → teardown cycle.
    TestbedRunner: Config in, ``TestbedRunResult`` out, one orchestration
        per backend.

Architecture Decisions:
    - subprocess-only: Drives the ``docker`` CLI (or a compatible binary),
      not a client library.
    - Log-marker readiness: Engines are ready when they say so in their own
      log; no connection probing.
    - Pydantic v2 for config and results: ``from_env()`` and
      ``model_dump_json()``.

Architecture::

    ┌──────────────────────────────────────────────────────┐
    │          TestbedRunner → FixtureOrchestrator         │
    ├──────────────┬───────────────────┬───────────────────┤
    │  Container   │  Readiness        │  TestSuite        │
    │  Handle      │  Watcher          │  Executor         │
    ├──────────────┴───────────────────┴───────────────────┤
    │          ProcessRunner (subprocess, docker CLI)      │
    └──────────────────────────────────────────────────────┘

Example:
    >>> from dbtestbed.deploy import TestbedConfig
    >>> TestbedConfig(backends=["mysql"]).fail_fast
    True
"""

from __future__ import annotations

from dbtestbed.deploy.backends import BACKENDS, MYSQL, POSTGRESQL, BackendSpec, get_backend
from dbtestbed.deploy.config import TestbedConfig
from dbtestbed.deploy.connection import ConnectionProfile
from dbtestbed.deploy.container import ContainerHandle, ContainerPhase, ContainerRuntime
from dbtestbed.deploy.executor import TestSuiteExecutor
from dbtestbed.deploy.process import ProcessRunner, SpawnedProcess
from dbtestbed.deploy.readiness import ReadinessSignal, ReadinessWatcher
from dbtestbed.deploy.results import BackendResult, OverallStatus, TestbedRunResult
from dbtestbed.deploy.workflow import FixtureOrchestrator, FixtureOutcome, TestbedRunner

__all__ = [
    "BACKENDS",
    "MYSQL",
    "POSTGRESQL",
    "BackendResult",
    "BackendSpec",
    "ConnectionProfile",
    "ContainerHandle",
    "ContainerPhase",
    "ContainerRuntime",
    "FixtureOrchestrator",
    "FixtureOutcome",
    "OverallStatus",
    "ProcessRunner",
    "ReadinessSignal",
    "ReadinessWatcher",
    "SpawnedProcess",
    "TestSuiteExecutor",
    "TestbedConfig",
    "TestbedRunResult",
    "TestbedRunner",
    "get_backend",
]
