"""Container lifecycle management for dbtestbed.

Drives an existing container runtime through its CLI (``docker`` or any
compatible binary such as ``podman``) as a subordinate process. There is
no native client binding and no process-wide client: callers construct a
``ContainerRuntime`` and pass it to every handle and orchestrator that
needs one.

Key Concepts:
    ContainerRuntime: Explicit runtime-client handle: binary + ProcessRunner.
        ``find()`` resolves the binary on PATH, ``is_available()`` probes
        the daemon.
    ContainerHandle: One named container instance. ``start()``,
        ``discover_address()``, ``wait_until_ready()``, ``stop()``,
        ``remove()``.
    ContainerPhase: Lifecycle state machine of a handle.

State machine::

    NOT_STARTED → STARTING → STARTED ─┬→ ADDRESS_KNOWN ─┬→ READY → STOPPED → REMOVED
                                      └→ READY ─────────┘ (address after ready is allowed)
    any non-terminal phase ──→ FAILED (only stop/remove are allowed afterwards)

Runtime commands::

    run --detach --name=<name> --env=K=V ... <image>
    inspect --format={{.NetworkSettings.IPAddress}} <name>
    logs --follow <name>
    stop <name>
    rm <name>

Tags:
    container, docker, lifecycle, subprocess, readiness, address
"""

from __future__ import annotations

import ipaddress
import shutil
import subprocess
import threading
import time
from collections.abc import Mapping, Sequence
from enum import Enum
from typing import IO

from dbtestbed.core.errors import (
    AddressDiscoveryError,
    CommandFailedError,
    ContainerStartError,
    ContainerStateError,
    ProcessError,
    ReadinessError,
    ReadinessTimeoutError,
    RuntimeNotFoundError,
    SpawnError,
)
from dbtestbed.core.logging import get_logger
from dbtestbed.deploy.process import ProcessRunner, SpawnedProcess
from dbtestbed.deploy.readiness import ReadinessWatcher

logger = get_logger(__name__)

_CHUNK_SIZE = 4096
_POLL_INTERVAL = 0.25
_JOIN_TIMEOUT = 5.0
_ADDRESS_FORMAT = "{{.NetworkSettings.IPAddress}}"


# ---------------------------------------------------------------------------
# Runtime client
# ---------------------------------------------------------------------------


class ContainerRuntime:
    """Handle on a container runtime CLI.

    Parameters
    ----------
    binary
        Runtime executable name or path (``docker``, ``podman``, ...).
    runner
        Process runner used for every invocation.

    Example::

        runtime = ContainerRuntime.find("docker")
        handle = runtime.handle("dbtestbed_mysql")
    """

    def __init__(self, binary: str = "docker", runner: ProcessRunner | None = None) -> None:
        self.binary = binary
        self.runner = runner or ProcessRunner()

    @classmethod
    def find(cls, binary: str = "docker", runner: ProcessRunner | None = None) -> ContainerRuntime:
        """Resolve ``binary`` on PATH."""
        resolved = shutil.which(binary)
        if resolved is None:
            raise RuntimeNotFoundError(
                f"Container runtime {binary!r} not found on PATH. "
                "Install Docker (https://docs.docker.com/engine/install/) "
                "or pass a compatible runtime such as podman."
            )
        return cls(resolved, runner)

    def is_available(self) -> bool:
        """Check that the runtime CLI runs and its daemon answers."""
        try:
            result = self.runner.run([self.binary, "info"], check=False, timeout=10)
        except ProcessError:
            return False
        return result.returncode == 0

    def run(self, args: Sequence[str], **kwargs) -> subprocess.CompletedProcess[str]:
        """Run ``<binary> <args>`` synchronously (see ``ProcessRunner.run``)."""
        return self.runner.run([self.binary, *args], **kwargs)

    def spawn(self, args: Sequence[str]) -> SpawnedProcess:
        """Run ``<binary> <args>`` asynchronously with combined output."""
        return self.runner.spawn([self.binary, *args])

    def handle(self, name: str) -> ContainerHandle:
        return ContainerHandle(name, self)


# ---------------------------------------------------------------------------
# Container handle
# ---------------------------------------------------------------------------


class ContainerPhase(str, Enum):
    """Lifecycle phase of a ``ContainerHandle``."""

    NOT_STARTED = "not_started"
    STARTING = "starting"
    STARTED = "started"
    ADDRESS_KNOWN = "address_known"
    READY = "ready"
    STOPPED = "stopped"
    REMOVED = "removed"
    FAILED = "failed"


class ContainerHandle:
    """One named container instance driven through the runtime CLI.

    The name is caller-chosen and stable, so ``stop()`` and ``remove()``
    can target a container left over from a previous run before this
    handle ever started it.
    """

    def __init__(self, name: str, runtime: ContainerRuntime) -> None:
        if not name:
            raise ValueError("container name must not be empty")
        self.name = name
        self.runtime = runtime
        self.phase = ContainerPhase.NOT_STARTED
        self.image: str | None = None
        self.env: dict[str, str] = {}
        self.address: str | None = None

    def __repr__(self) -> str:
        return f"ContainerHandle(name={self.name!r}, phase={self.phase.value})"

    # ------------------------------------------------------------------
    # Lifecycle operations
    # ------------------------------------------------------------------

    def start(self, image: str, env: Mapping[str, str] | None = None) -> None:
        """Launch the container detached.

        Raises
        ------
        SpawnError
            The runtime binary could not be launched.
        ContainerStartError
            The runtime exited non-zero.
        """
        self._require(ContainerPhase.NOT_STARTED, operation="start")
        self.image = image
        self.env = dict(env or {})
        self.phase = ContainerPhase.STARTING

        cmd = ["run", "--detach", f"--name={self.name}"]
        for key, value in self.env.items():
            cmd.append(f"--env={key}={value}")
        cmd.append(image)

        try:
            self.runtime.run(cmd, link_stdio=True)
        except SpawnError:
            self.phase = ContainerPhase.FAILED
            raise
        except ProcessError as exc:
            self.phase = ContainerPhase.FAILED
            raise ContainerStartError(
                f"Failed to start container {self.name!r} from {image!r}: {exc.message}",
                cause=exc,
            ).with_context(container=self.name, image=image) from exc

        self.phase = ContainerPhase.STARTED
        logger.info("container.started", container=self.name, image=image)

    def discover_address(self) -> str:
        """Query the runtime for the container's network address.

        Raises
        ------
        AddressDiscoveryError
            The container is unknown to the runtime, the query failed, or
            the reported address is empty or malformed.
        """
        self._require(
            ContainerPhase.STARTED,
            ContainerPhase.ADDRESS_KNOWN,
            ContainerPhase.READY,
            operation="discover_address",
        )
        try:
            result = self.runtime.run(
                ["inspect", f"--format={_ADDRESS_FORMAT}", self.name],
                capture=True,
            )
        except ProcessError as exc:
            self.phase = ContainerPhase.FAILED
            raise AddressDiscoveryError(
                f"Could not inspect container {self.name!r}: {exc.message}",
                cause=exc,
            ).with_context(container=self.name) from exc

        address = (result.stdout or "").strip().strip("'\"").strip()
        if not address:
            self.phase = ContainerPhase.FAILED
            raise AddressDiscoveryError(
                f"Container {self.name!r} reported no network address"
            ).with_context(container=self.name)
        try:
            ipaddress.ip_address(address)
        except ValueError as exc:
            self.phase = ContainerPhase.FAILED
            raise AddressDiscoveryError(
                f"Container {self.name!r} reported a malformed address: {address!r}",
                cause=exc,
            ).with_context(container=self.name) from exc

        self.address = address
        if self.phase == ContainerPhase.STARTED:
            self.phase = ContainerPhase.ADDRESS_KNOWN
        logger.info("address.discovered", container=self.name, address=address)
        return address

    def wait_until_ready(
        self,
        marker: str | bytes,
        timeout: float | None = None,
        occurrences: int = 1,
    ) -> ReadinessWatcher:
        """Follow the container's logs until ``marker`` appears.

        A background thread pipes ``logs --follow`` output into a
        ``ReadinessWatcher`` while this thread waits on its signal. The log
        follower is killed once the wait ends, whatever the outcome.

        Parameters
        ----------
        marker
            Readiness marker substring.
        timeout
            Seconds to wait. ``None`` waits indefinitely.
        occurrences
            Matches required before the instance counts as ready.

        Raises
        ------
        ReadinessTimeoutError
            ``timeout`` elapsed before the marker appeared.
        ReadinessError
            The log stream ended (container exited) before the marker appeared.
        SpawnError
            The log follower could not be launched.
        """
        self._require(
            ContainerPhase.STARTED,
            ContainerPhase.ADDRESS_KNOWN,
            operation="wait_until_ready",
        )
        watcher = ReadinessWatcher(marker, occurrences=occurrences)
        started_at = time.monotonic()

        try:
            follower = self.runtime.spawn(["logs", "--follow", self.name])
        except SpawnError:
            self.phase = ContainerPhase.FAILED
            raise

        forwarder = threading.Thread(
            target=_forward_stream,
            args=(follower.stream, watcher),
            name=f"dbtestbed-logs-{self.name}",
            daemon=True,
        )
        forwarder.start()

        try:
            self._block_until_ready(watcher, forwarder, follower, timeout)
        except ReadinessError:
            self.phase = ContainerPhase.FAILED
            raise
        finally:
            follower.terminate()
            forwarder.join(_JOIN_TIMEOUT)
            follower.close()

        self.phase = ContainerPhase.READY
        logger.info(
            "container.ready",
            container=self.name,
            wait_ms=f"{(time.monotonic() - started_at) * 1000:.0f}",
        )
        return watcher

    def stop(self) -> None:
        """Request a graceful stop.

        Raises ``CommandFailedError`` if the runtime refuses (for example the
        container does not exist); orchestrators treat that as non-fatal.
        """
        self._require_not(ContainerPhase.REMOVED, operation="stop")
        self.runtime.run(["stop", self.name], capture=True)
        # A leftover from an earlier run does not advance this handle.
        if self.phase not in (ContainerPhase.NOT_STARTED, ContainerPhase.FAILED):
            self.phase = ContainerPhase.STOPPED
        logger.info("container.stopped", container=self.name)

    def remove(self) -> None:
        """Delete the (stopped) container. Same failure contract as ``stop()``."""
        self._require_not(ContainerPhase.REMOVED, operation="remove")
        self.runtime.run(["rm", self.name], capture=True)
        if self.phase not in (ContainerPhase.NOT_STARTED, ContainerPhase.FAILED):
            self.phase = ContainerPhase.REMOVED
        logger.info("container.removed", container=self.name)

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _block_until_ready(
        self,
        watcher: ReadinessWatcher,
        forwarder: threading.Thread,
        follower: SpawnedProcess,
        timeout: float | None,
    ) -> None:
        deadline = None if timeout is None else time.monotonic() + timeout
        while True:
            wait_for = _POLL_INTERVAL
            if deadline is not None:
                wait_for = max(0.0, min(_POLL_INTERVAL, deadline - time.monotonic()))
            if watcher.wait_ready(wait_for):
                return
            if not forwarder.is_alive():
                if watcher.fired:
                    return
                tail = watcher.content[-500:].decode("utf-8", "replace")
                raise ReadinessError(
                    f"Log stream of container {self.name!r} ended before the "
                    f"readiness marker appeared (exit {follower.returncode}).\n"
                    f"Last output:\n{tail}"
                ).with_context(container=self.name)
            if deadline is not None and time.monotonic() >= deadline:
                raise ReadinessTimeoutError(
                    f"Container {self.name!r} did not log its readiness marker "
                    f"within {timeout}s",
                    timeout=timeout,
                ).with_context(container=self.name)

    def _require(self, *allowed: ContainerPhase, operation: str) -> None:
        if self.phase not in allowed:
            raise ContainerStateError(
                f"Cannot {operation} container {self.name!r} in phase {self.phase.value}"
            ).with_context(container=self.name)

    def _require_not(self, *forbidden: ContainerPhase, operation: str) -> None:
        if self.phase in forbidden:
            raise ContainerStateError(
                f"Cannot {operation} container {self.name!r} in phase {self.phase.value}"
            ).with_context(container=self.name)


def _forward_stream(stream: IO[bytes], watcher: ReadinessWatcher) -> None:
    """Copy ``stream`` into ``watcher`` until EOF."""
    try:
        for chunk in iter(lambda: stream.read1(_CHUNK_SIZE), b""):
            watcher.consume(chunk)
    except (OSError, ValueError) as exc:
        # The follower was killed and its pipe closed under us.
        logger.debug("logs.stream_closed", error=str(exc))


def is_missing_container(exc: BaseException) -> bool:
    """True if a runtime failure only says the container does not exist."""
    if not isinstance(exc, CommandFailedError):
        return False
    stderr = exc.stderr.lower()
    return "no such container" in stderr or "no such object" in stderr
