"""Fixture orchestration for dbtestbed.

``FixtureOrchestrator`` runs one full start → ready → test → teardown
cycle for a single container instance. ``TestbedRunner`` runs one
orchestration per requested backend and aggregates the outcomes into a
``TestbedRunResult``.

Orchestration sequence::

    1. stop + rm <name>        best-effort; clears a previous failed run
    2. run <image>             ──┐
    3. (teardown scheduled)      │ any failure here skips the action
    4. inspect <name>            │ and goes straight to teardown
    5. logs --follow <name>    ──┘ until the readiness marker appears
    6. action(ConnectionProfile(address, port, credentials))
    7. stop + rm <name>        always; failures logged, never raised

The earliest real error wins: a teardown failure during the unwind of a
setup or test failure is logged as ``teardown.failed`` and the original
exception propagates unchanged.

Architecture Decisions:
    - Sequential backends: Names are fixed per backend and there is no
      locking, so one orchestration per name at a time.
    - Teardown in ``finally``: Containers are removed even if tests fail,
      unless ``keep_container`` is set for debugging.
    - Explicit runtime: The ``ContainerRuntime`` is passed in; nothing is
      looked up globally.
"""

from __future__ import annotations

import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

from dbtestbed.core.errors import (
    InvalidConfigError,
    TestbedError,
    TestSuiteFailedError,
)
from dbtestbed.core.logging import LogContext, get_logger
from dbtestbed.deploy.backends import BackendSpec, get_backends
from dbtestbed.deploy.config import TestbedConfig
from dbtestbed.deploy.connection import ConnectionProfile, container_profile
from dbtestbed.deploy.container import ContainerHandle, ContainerRuntime, is_missing_container
from dbtestbed.deploy.executor import TestSuiteExecutor
from dbtestbed.deploy.results import BackendResult, TestbedRunResult

logger = get_logger(__name__)

T = TypeVar("T")

Action = Callable[[ConnectionProfile], Any]
ActionFactory = Callable[[BackendSpec], Action]


# ---------------------------------------------------------------------------
# Fixture Orchestrator
# ---------------------------------------------------------------------------


@dataclass
class FixtureOutcome(Generic[T]):
    """What a successful orchestration hands back to its caller."""

    backend: str
    container_name: str
    address: str
    profile: ConnectionProfile
    startup_ms: float
    result: T


class FixtureOrchestrator:
    """Provision one backend container, run an action against it, tear it down.

    Parameters
    ----------
    spec
        Backend profile (image, env, readiness marker, credentials).
    runtime
        Container runtime client.
    container_name
        Overrides ``spec.container_name``.
    image
        Overrides ``spec.image``.
    startup_timeout
        Readiness deadline in seconds. ``None`` waits indefinitely.
    keep_container
        Skip teardown (debugging aid).

    Example::

        runtime = ContainerRuntime.find()
        outcome = FixtureOrchestrator(MYSQL, runtime).run(
            lambda profile: profile.to_dsn(MYSQL),
        )
    """

    def __init__(
        self,
        spec: BackendSpec,
        runtime: ContainerRuntime,
        *,
        container_name: str | None = None,
        image: str | None = None,
        startup_timeout: float | None = None,
        keep_container: bool = False,
    ) -> None:
        self.spec = spec
        self.runtime = runtime
        self.container_name = container_name or spec.container_name or f"dbtestbed_{spec.name}"
        self.image = image or spec.image
        self.startup_timeout = startup_timeout
        self.keep_container = keep_container

    def run(self, action: Callable[[ConnectionProfile], T]) -> FixtureOutcome[T]:
        """Execute the full lifecycle and return the action's result.

        Raises whatever the earliest failing phase raised: ``SpawnError``,
        ``ContainerStartError``, ``AddressDiscoveryError``,
        ``ReadinessError`` or the action's own exception.
        """
        handle = self.runtime.handle(self.container_name)

        with LogContext(backend=self.spec.name, container=self.container_name):
            self._preemptive_cleanup(handle)

            started = time.monotonic()
            try:
                handle.start(self.image, self.spec.env)
                address = handle.discover_address()
                handle.wait_until_ready(
                    self.spec.ready_marker,
                    timeout=self.startup_timeout,
                    occurrences=self.spec.ready_occurrences,
                )
                startup_ms = (time.monotonic() - started) * 1000
                logger.info("backend.ready", address=address, startup_ms=f"{startup_ms:.0f}")

                profile = container_profile(self.spec, address)
                result = action(profile)
            finally:
                if self.keep_container:
                    logger.warning("container.kept", hint=f"remove with: rm -f {self.container_name}")
                else:
                    self._teardown(handle)

            logger.info("orchestration.complete")
            return FixtureOutcome(
                backend=self.spec.name,
                container_name=self.container_name,
                address=address,
                profile=profile,
                startup_ms=startup_ms,
                result=result,
            )

    # ------------------------------------------------------------------
    # Private methods
    # ------------------------------------------------------------------

    def _preemptive_cleanup(self, handle: ContainerHandle) -> None:
        """Remove a leftover container with the same name, if any."""
        for step in (handle.stop, handle.remove):
            try:
                step()
            except TestbedError as exc:
                if is_missing_container(exc):
                    logger.debug("cleanup.nothing_to_remove", step=step.__name__)
                else:
                    logger.warning("cleanup.failed", step=step.__name__, error=str(exc))

    def _teardown(self, handle: ContainerHandle) -> None:
        """Stop and remove; failures are logged, never raised."""
        for step in (handle.stop, handle.remove):
            try:
                step()
            except Exception as exc:
                logger.warning(
                    "teardown.failed",
                    step=step.__name__,
                    error=str(exc),
                    error_type=type(exc).__name__,
                )


# ---------------------------------------------------------------------------
# Testbed Runner
# ---------------------------------------------------------------------------


class TestbedRunner:
    """Runs the test action against each configured backend in turn.

    Parameters
    ----------
    config
        Testbed configuration.
    runtime
        Container runtime; resolved from ``config.runtime`` on first
        docker run when omitted.
    action_factory
        Builds the delegated action for a backend. Defaults to a
        ``TestSuiteExecutor`` running ``config.test_command``.

    Example::

        result = TestbedRunner(TestbedConfig(backends=["mysql"])).run()
        print(result.summary)
    """

    __test__ = False  # not a pytest test class

    def __init__(
        self,
        config: TestbedConfig,
        runtime: ContainerRuntime | None = None,
        action_factory: ActionFactory | None = None,
    ) -> None:
        self.config = config
        self._runtime = runtime
        self.action_factory = action_factory or self._default_action

    @property
    def runtime(self) -> ContainerRuntime:
        if self._runtime is None:
            self._runtime = ContainerRuntime.find(self.config.runtime)
        return self._runtime

    def run(self) -> TestbedRunResult:
        """Provision a container per backend and run the action against it."""
        return self._run_all(self._run_docker_backend, needs_runtime=True)

    def run_local(self, profiles: Mapping[str, ConnectionProfile]) -> TestbedRunResult:
        """Run the action against already-running servers.

        ``profiles`` maps backend name to the operator-supplied profile;
        backends without an entry use their local defaults.
        """
        def run_one(spec: BackendSpec) -> BackendResult:
            return self._run_local_backend(spec, profiles.get(spec.name, ConnectionProfile()))

        return self._run_all(run_one)

    # ------------------------------------------------------------------
    # Private methods
    # ------------------------------------------------------------------

    def _run_all(
        self,
        run_one: Callable[[BackendSpec], BackendResult],
        needs_runtime: bool = False,
    ) -> TestbedRunResult:
        result = TestbedRunResult(run_id=self.config.run_id)
        with LogContext(run_id=self.config.run_id):
            try:
                specs = self._resolve_backends()
                if needs_runtime:
                    logger.debug("runtime.resolved", binary=self.runtime.binary)
            except TestbedError as exc:
                result.error = str(exc)
                logger.error("testbed.failed", error=str(exc))
                specs = []

            failed = False
            for spec in specs:
                if failed and self.config.fail_fast:
                    result.backends.append(
                        BackendResult(backend=spec.name, image=spec.image, skipped=True)
                    )
                    continue
                br = run_one(spec)
                br.overall_status = br.compute_status()
                result.backends.append(br)
                failed = failed or br.error is not None

            result.mark_complete()
            logger.info("testbed.complete", summary=result.summary)
        return result

    def _resolve_backends(self) -> list[BackendSpec]:
        specs = get_backends(self.config.backends)
        if len(specs) > 1 and (self.config.container_name or self.config.image):
            raise InvalidConfigError(
                "container name and image overrides require a single backend"
            )
        return specs

    def _default_action(self, spec: BackendSpec) -> Action:
        return TestSuiteExecutor(
            spec,
            self.config.test_command,
            self.config.test_args,
            runner=self._runtime.runner if self._runtime is not None else None,
        )

    def _run_docker_backend(self, spec: BackendSpec) -> BackendResult:
        orchestrator = FixtureOrchestrator(
            spec,
            self.runtime,
            container_name=self.config.container_name,
            image=self.config.image,
            startup_timeout=self.config.startup_timeout_seconds,
            keep_container=self.config.keep_containers,
        )
        br = BackendResult(
            backend=spec.name,
            mode="docker",
            image=orchestrator.image,
            container_name=orchestrator.container_name,
        )
        started = time.monotonic()
        try:
            outcome = orchestrator.run(self.action_factory(spec))
        except Exception as exc:
            self._record_failure(br, spec, exc)
        else:
            br.address = outcome.address
            br.startup_ms = outcome.startup_ms
            br.connection_url = outcome.profile.redacted_dsn(spec)
            if isinstance(outcome.result, int):
                br.returncode = outcome.result
        br.duration_seconds = time.monotonic() - started
        return br

    def _run_local_backend(self, spec: BackendSpec, profile: ConnectionProfile) -> BackendResult:
        profile = profile.resolve(spec)
        br = BackendResult(
            backend=spec.name,
            mode="local",
            connection_url=profile.redacted_dsn(spec),
        )
        started = time.monotonic()
        try:
            with LogContext(backend=spec.name):
                outcome = self.action_factory(spec)(profile)
        except Exception as exc:
            self._record_failure(br, spec, exc)
        else:
            if isinstance(outcome, int):
                br.returncode = outcome
        br.duration_seconds = time.monotonic() - started
        return br

    @staticmethod
    def _record_failure(br: BackendResult, spec: BackendSpec, exc: Exception) -> None:
        br.error = str(exc)
        br.error_type = type(exc).__name__
        if isinstance(exc, TestSuiteFailedError):
            br.returncode = exc.returncode
        logger.error(
            "backend.failed",
            backend=spec.name,
            error=str(exc),
            error_type=type(exc).__name__,
        )
