"""Tests for dbtestbed.deploy.process -- subprocess wrappers (mocked)."""

from __future__ import annotations

import io
import subprocess
import sys
from unittest.mock import MagicMock, patch

import pytest

from dbtestbed.core.errors import (
    CommandFailedError,
    CommandTimeoutError,
    ErrorCategory,
    SpawnError,
)
from dbtestbed.deploy.process import ProcessRunner, SpawnedProcess, child_environment


class TestProcessRunnerRun:
    """Tests for ProcessRunner.run()."""

    @patch("subprocess.run")
    def test_success(self, mock_run):
        mock_run.return_value = subprocess.CompletedProcess(["docker", "ps"], 0, stdout="", stderr="")
        result = ProcessRunner().run(["docker", "ps"])
        assert result.returncode == 0
        kwargs = mock_run.call_args.kwargs
        assert kwargs["stdout"] == subprocess.DEVNULL
        assert kwargs["check"] is False

    @patch("subprocess.run")
    def test_link_stdio_inherits_streams(self, mock_run):
        mock_run.return_value = subprocess.CompletedProcess([], 0)
        ProcessRunner().run(["docker", "run", "img"], link_stdio=True, capture=True)
        kwargs = mock_run.call_args.kwargs
        assert kwargs["stdin"] is None
        assert kwargs["stdout"] is None
        assert kwargs["stderr"] is None

    @patch("subprocess.run")
    def test_capture(self, mock_run):
        mock_run.return_value = subprocess.CompletedProcess([], 0, stdout="172.17.0.2\n", stderr="")
        result = ProcessRunner().run(["docker", "inspect", "db"], capture=True)
        assert result.stdout == "172.17.0.2\n"
        kwargs = mock_run.call_args.kwargs
        assert kwargs["stdout"] == subprocess.PIPE
        assert kwargs["text"] is True

    @patch("subprocess.run")
    def test_nonzero_exit_raises(self, mock_run):
        mock_run.return_value = subprocess.CompletedProcess(
            ["docker", "stop", "db"], 1, stdout="", stderr="Error: No such container: db\n",
        )
        with pytest.raises(CommandFailedError) as exc_info:
            ProcessRunner().run(["docker", "stop", "db"], capture=True)
        err = exc_info.value
        assert err.returncode == 1
        assert err.stderr == "Error: No such container: db"
        assert err.context.command == "docker stop db"
        assert err.category == ErrorCategory.PROCESS

    @patch("subprocess.run")
    def test_nonzero_exit_unchecked(self, mock_run):
        mock_run.return_value = subprocess.CompletedProcess([], 3)
        assert ProcessRunner().run(["false"], check=False).returncode == 3

    @patch("subprocess.run")
    def test_missing_binary_is_spawn_error(self, mock_run):
        mock_run.side_effect = FileNotFoundError(2, "No such file or directory")
        with pytest.raises(SpawnError, match="Could not launch 'docker'") as exc_info:
            ProcessRunner().run(["docker", "info"])
        assert isinstance(exc_info.value.__cause__, FileNotFoundError)

    @patch("subprocess.run")
    def test_timeout(self, mock_run):
        mock_run.side_effect = subprocess.TimeoutExpired(["docker", "info"], 10)
        with pytest.raises(CommandTimeoutError):
            ProcessRunner().run(["docker", "info"], timeout=10)

    @patch("subprocess.run")
    def test_env_passed_through(self, mock_run):
        mock_run.return_value = subprocess.CompletedProcess([], 0)
        ProcessRunner().run(["pytest"], env={"A": "1"})
        assert mock_run.call_args.kwargs["env"] == {"A": "1"}


class TestProcessRunnerSpawn:
    """Tests for ProcessRunner.spawn() and SpawnedProcess."""

    @patch("subprocess.Popen")
    def test_spawn_combines_output(self, mock_popen):
        ProcessRunner().spawn(["docker", "logs", "--follow", "db"])
        kwargs = mock_popen.call_args.kwargs
        assert kwargs["stdout"] == subprocess.PIPE
        assert kwargs["stderr"] == subprocess.STDOUT

    @patch("subprocess.Popen")
    def test_spawn_missing_binary(self, mock_popen):
        mock_popen.side_effect = FileNotFoundError(2, "No such file or directory")
        with pytest.raises(SpawnError):
            ProcessRunner().spawn(["docker", "logs", "--follow", "db"])

    def test_terminate_running(self):
        popen = MagicMock()
        popen.poll.return_value = None
        popen.wait.return_value = -9
        proc = SpawnedProcess(["docker", "logs"], popen)

        assert proc.terminate() == -9
        popen.kill.assert_called_once()

    def test_terminate_already_exited(self):
        popen = MagicMock()
        popen.poll.return_value = 0
        popen.wait.return_value = 0
        proc = SpawnedProcess(["docker", "logs"], popen)

        assert proc.terminate() == 0
        popen.kill.assert_not_called()

    def test_pid_and_is_running(self):
        popen = MagicMock(pid=4242)
        popen.poll.return_value = None
        proc = SpawnedProcess(["docker", "logs"], popen)

        assert proc.pid == 4242
        assert proc.is_running() is True
        popen.poll.return_value = 137
        assert proc.is_running() is False
        assert proc.returncode == 137

    def test_stream_and_close(self):
        popen = MagicMock()
        popen.stdout = io.BytesIO(b"hello")
        proc = SpawnedProcess(["x"], popen)
        assert proc.stream.read() == b"hello"
        proc.close()
        assert popen.stdout.closed

    def test_real_process_roundtrip(self):
        proc = ProcessRunner().spawn([sys.executable, "-c", "print('ready')"])
        try:
            assert proc.stream.read().strip() == b"ready"
        finally:
            proc.terminate()
            proc.close()
        assert proc.is_running() is False


def test_child_environment_extends_os_environ(monkeypatch):
    monkeypatch.setenv("DBTESTBED_PARENT", "1")
    env = child_environment({"DBTESTBED_TEST_DSN": "mysql://x"})
    assert env["DBTESTBED_PARENT"] == "1"
    assert env["DBTESTBED_TEST_DSN"] == "mysql://x"
