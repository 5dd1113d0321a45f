"""Subordinate process execution for dbtestbed.

Every interaction with the container runtime and the test command goes
through ``ProcessRunner``: synchronous calls (``run``, ``inspect``,
``stop``, ``rm``, the test suite) and one asynchronous call per readiness
wait (``logs --follow``).

Key Concepts:
    ProcessRunner.run(): Blocks until the process exits. The caller's
        stdio can be linked so the operator sees the runtime's output, or
        output can be captured for parsing.
    ProcessRunner.spawn(): Starts a process whose stdout and stderr are
        combined into one pipe, and returns a ``SpawnedProcess`` handle
        that can be read from and terminated on demand.

Failure mapping:
    - binary missing / not executable → ``SpawnError`` (never retried)
    - non-zero exit with ``check=True`` → ``CommandFailedError``
    - timeout expired → ``CommandTimeoutError``

Tags:
    process, subprocess, stdio, spawn
"""

from __future__ import annotations

import os
import subprocess
from collections.abc import Mapping, Sequence
from typing import IO

from dbtestbed.core.errors import CommandFailedError, CommandTimeoutError, SpawnError
from dbtestbed.core.logging import get_logger

logger = get_logger(__name__)


class SpawnedProcess:
    """Handle on an asynchronously running subordinate process.

    ``stream`` yields the combined stdout/stderr bytes. ``terminate()`` kills
    the process and reaps it; calling it more than once is harmless.
    """

    def __init__(self, args: Sequence[str], popen: subprocess.Popen[bytes]) -> None:
        self.args = list(args)
        self._popen = popen

    @property
    def pid(self) -> int:
        return self._popen.pid

    @property
    def stream(self) -> IO[bytes]:
        if self._popen.stdout is None:
            raise RuntimeError("process was spawned without an output pipe")
        return self._popen.stdout

    @property
    def returncode(self) -> int | None:
        return self._popen.poll()

    def is_running(self) -> bool:
        return self._popen.poll() is None

    def terminate(self, timeout: float = 5.0) -> int | None:
        """Kill the process and wait for it to exit."""
        if self.is_running():
            self._popen.kill()
        try:
            returncode = self._popen.wait(timeout=timeout)
        except subprocess.TimeoutExpired:
            logger.warning("process.kill_timeout", pid=self.pid, cmd=" ".join(self.args))
            return None
        logger.debug("process.terminated", pid=self.pid, returncode=returncode)
        return returncode

    def close(self) -> None:
        """Close the output pipe. Call after any reader has finished."""
        if self._popen.stdout is not None:
            self._popen.stdout.close()


class ProcessRunner:
    """Runs commands as subordinate OS processes.

    Stateless; one instance can be shared by any number of container
    handles and executors.
    """

    def run(
        self,
        args: Sequence[str],
        *,
        link_stdio: bool = False,
        capture: bool = False,
        check: bool = True,
        timeout: float | None = None,
        env: Mapping[str, str] | None = None,
    ) -> subprocess.CompletedProcess[str]:
        """Run a command to completion.

        Parameters
        ----------
        args
            Command and arguments.
        link_stdio
            Inherit this process's stdin/stdout/stderr so the command is
            interactively observable. Takes precedence over ``capture``.
        capture
            Capture stdout/stderr as text on the returned object.
        check
            Raise ``CommandFailedError`` on a non-zero exit.
        timeout
            Seconds before the command is killed and ``CommandTimeoutError``
            is raised. ``None`` waits indefinitely.
        env
            Complete environment for the child. ``None`` inherits ours.

        Returns
        -------
        subprocess.CompletedProcess[str]
        """
        cmd = list(args)
        logger.debug("process.exec", cmd=" ".join(cmd), link_stdio=link_stdio)

        if link_stdio:
            stdin = stdout = stderr = None
        elif capture:
            stdin, stdout, stderr = subprocess.DEVNULL, subprocess.PIPE, subprocess.PIPE
        else:
            stdin = stdout = stderr = subprocess.DEVNULL

        try:
            result = subprocess.run(
                cmd,
                stdin=stdin,
                stdout=stdout,
                stderr=stderr,
                text=True,
                timeout=timeout,
                env=dict(env) if env is not None else None,
                check=False,
            )
        except subprocess.TimeoutExpired as exc:
            raise CommandTimeoutError(
                f"Command timed out after {timeout}s: {' '.join(cmd)}",
                cause=exc,
            ).with_context(command=" ".join(cmd)) from exc
        except OSError as exc:
            raise SpawnError(
                f"Could not launch {cmd[0]!r}: {exc.strerror or exc}",
                cause=exc,
            ).with_context(command=" ".join(cmd)) from exc

        if check and result.returncode != 0:
            stderr_text = (result.stderr or "").strip()
            message = f"Command failed (exit {result.returncode}): {' '.join(cmd)}"
            if stderr_text:
                message += f"\n{stderr_text}"
            raise CommandFailedError(
                message,
                returncode=result.returncode,
                stderr=stderr_text,
            ).with_context(command=" ".join(cmd))

        return result

    def spawn(
        self,
        args: Sequence[str],
        *,
        env: Mapping[str, str] | None = None,
    ) -> SpawnedProcess:
        """Start a command asynchronously with stdout+stderr combined into a pipe."""
        cmd = list(args)
        logger.debug("process.spawn", cmd=" ".join(cmd))
        try:
            popen = subprocess.Popen(
                cmd,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                env=dict(env) if env is not None else None,
            )
        except OSError as exc:
            raise SpawnError(
                f"Could not launch {cmd[0]!r}: {exc.strerror or exc}",
                cause=exc,
            ).with_context(command=" ".join(cmd)) from exc
        return SpawnedProcess(cmd, popen)


def child_environment(extra: Mapping[str, str]) -> dict[str, str]:
    """Return a copy of our environment extended with ``extra``."""
    env = dict(os.environ)
    env.update(extra)
    return env
