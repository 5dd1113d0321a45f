"""
Shared pytest fixtures for dbtestbed tests.

This module provides:
- ``FakeRuntime``: a container runtime double that records every command
  and simulates container state by name. No Docker required.
- ``FakeLogFollower``: a ``logs --follow`` stand-in backed by a real OS
  pipe, so the log forwarder thread reads and blocks exactly as it would
  on a live container.
- Structlog reset between tests.
"""

from __future__ import annotations

import os
import subprocess
from collections.abc import Sequence

import pytest
import structlog

from dbtestbed.core.errors import CommandFailedError
from dbtestbed.deploy.container import ContainerRuntime
from dbtestbed.deploy.process import ProcessRunner


class FakeLogFollower:
    """``logs --follow`` stand-in.

    ``data`` is written to the pipe up front. With ``ends=True`` the pipe is
    closed right away (the container exited); otherwise it stays open until
    ``terminate()``, like a follower on a running container.
    """

    def __init__(self, data: bytes = b"", *, ends: bool = False) -> None:
        read_fd, write_fd = os.pipe()
        self.stream = os.fdopen(read_fd, "rb")
        self._writer = os.fdopen(write_fd, "wb")
        if data:
            self._writer.write(data)
            self._writer.flush()
        if ends:
            self._writer.close()
        self.terminated = False
        self.closed = False
        self._returncode: int | None = 0 if ends else None

    @property
    def returncode(self) -> int | None:
        return self._returncode

    def terminate(self, timeout: float = 5.0) -> int | None:
        self.terminated = True
        if not self._writer.closed:
            self._writer.close()
        if self._returncode is None:
            self._returncode = -9
        return self._returncode

    def close(self) -> None:
        self.closed = True
        self.stream.close()


class FakeRuntime(ContainerRuntime):
    """Container runtime double.

    Attributes
    ----------
    calls
        Every command issued, without the binary.
    containers
        name → "running" | "exited".
    address
        What ``inspect`` reports.
    logs / logs_end
        What the next log follower yields, and whether its stream ends.
    fail
        verb → exception raised instead of running that verb.
    """

    def __init__(self) -> None:
        super().__init__("docker", runner=ProcessRunner())
        self.calls: list[list[str]] = []
        self.containers: dict[str, str] = {}
        self.address = "172.17.0.2"
        self.logs = b""
        self.logs_end = False
        self.fail: dict[str, BaseException] = {}
        self.followers: list[FakeLogFollower] = []

    def verbs(self) -> list[str]:
        return [c[0] for c in self.calls]

    def run(self, args: Sequence[str], **kwargs) -> subprocess.CompletedProcess[str]:
        args = list(args)
        self.calls.append(args)
        verb, name = args[0], args[-1]
        if verb in self.fail:
            raise self.fail[verb]

        if verb == "run":
            name = next(a.split("=", 1)[1] for a in args if a.startswith("--name="))
            if name in self.containers:
                raise _failed(
                    verb, 125, f'Conflict. The container name "/{name}" is already in use',
                )
            self.containers[name] = "running"
            return subprocess.CompletedProcess(args, 0, stdout="", stderr="")

        if name not in self.containers:
            kind = "object" if verb == "inspect" else "container"
            raise _failed(verb, 1, f"Error response from daemon: No such {kind}: {name}")
        if verb == "inspect":
            return subprocess.CompletedProcess(args, 0, stdout=f"{self.address}\n", stderr="")
        if verb == "stop":
            self.containers[name] = "exited"
        elif verb == "rm":
            if self.containers[name] == "running":
                raise _failed(verb, 1, "You cannot remove a running container")
            del self.containers[name]
        return subprocess.CompletedProcess(args, 0, stdout="", stderr="")

    def spawn(self, args: Sequence[str]) -> FakeLogFollower:
        self.calls.append(list(args))
        if "logs" in self.fail:
            raise self.fail["logs"]
        follower = FakeLogFollower(self.logs, ends=self.logs_end)
        self.followers.append(follower)
        return follower


def _failed(verb: str, returncode: int, stderr: str) -> CommandFailedError:
    return CommandFailedError(
        f"Command failed (exit {returncode}): docker {verb}\n{stderr}",
        returncode=returncode,
        stderr=stderr,
    )


@pytest.fixture
def fake_runtime() -> FakeRuntime:
    return FakeRuntime()


@pytest.fixture(autouse=True)
def _reset_structlog():
    """Keep structlog configuration and contextvars from leaking between tests."""
    structlog.contextvars.clear_contextvars()
    yield
    structlog.contextvars.clear_contextvars()
    structlog.reset_defaults()
