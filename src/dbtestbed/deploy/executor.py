"""Test-suite executor for dbtestbed.

The default delegated action of a fixture orchestration: run the project's
test command in a child process, with the connection string of the live
instance exported in its environment.

Environment contract with the test suite::

    DBTESTBED_TEST_DSN       connection URL (or the operator's raw DSN)
    DBTESTBED_TEST_DIALECT   backend dialect name (mysql, postgres)

The child inherits this process's stdin/stdout/stderr so test output is
streamed straight to the operator.
"""

from __future__ import annotations

from collections.abc import Sequence

from dbtestbed.core.errors import TestSuiteFailedError
from dbtestbed.core.logging import get_logger
from dbtestbed.deploy.backends import BackendSpec
from dbtestbed.deploy.connection import ConnectionProfile
from dbtestbed.deploy.process import ProcessRunner, child_environment

logger = get_logger(__name__)

DSN_ENV_VAR = "DBTESTBED_TEST_DSN"
DIALECT_ENV_VAR = "DBTESTBED_TEST_DIALECT"


class TestSuiteExecutor:
    """Runs the test command against one backend.

    Instances are callables taking a ``ConnectionProfile``, which is the
    shape ``FixtureOrchestrator.run()`` expects of a delegated action.

    Parameters
    ----------
    spec
        Backend the profile points at.
    command
        Test command, e.g. ``["python", "-m", "pytest"]``.
    extra_args
        Arguments appended to ``command``.
    runner
        Process runner (injectable for tests).
    """

    __test__ = False  # not a pytest test class

    def __init__(
        self,
        spec: BackendSpec,
        command: Sequence[str],
        extra_args: Sequence[str] = (),
        runner: ProcessRunner | None = None,
    ) -> None:
        self.spec = spec
        self.command = [*command, *extra_args]
        self.runner = runner or ProcessRunner()

    def __call__(self, profile: ConnectionProfile) -> int:
        return self.run(profile)

    def run(self, profile: ConnectionProfile) -> int:
        """Run the test command; returns 0 or raises ``TestSuiteFailedError``."""
        dsn = profile.to_dsn(self.spec)
        logger.info(
            "tests.started",
            backend=self.spec.name,
            dsn=profile.redacted_dsn(self.spec),
            cmd=" ".join(self.command),
        )
        env = child_environment({
            DSN_ENV_VAR: dsn,
            DIALECT_ENV_VAR: self.spec.dialect,
        })
        result = self.runner.run(self.command, link_stdio=True, check=False, env=env)
        if result.returncode != 0:
            raise TestSuiteFailedError(
                f"Test suite failed against {self.spec.name} (exit {result.returncode})",
                returncode=result.returncode,
            ).with_context(backend=self.spec.name, command=" ".join(self.command))

        logger.info("tests.passed", backend=self.spec.name)
        return result.returncode
