"""Configuration models for dbtestbed.

Every field can be overridden from ``DBTESTBED_*`` environment variables
through ``from_env()``, so CI can set ``DBTESTBED_BACKENDS=mysql`` or
``DBTESTBED_RUNTIME=podman`` without touching flags.

Override precedence: kwargs > env vars > field defaults.

Key Concepts:
    TestbedConfig: Which backends to provision, which runtime to drive,
        how long to wait for readiness, what test command to run, and
        how to log.
"""

from __future__ import annotations

import os
import shlex
import sys
import uuid
from typing import Any, Literal

from pydantic import BaseModel, Field, model_validator


def _default_test_command() -> list[str]:
    return [sys.executable, "-m", "pytest"]


class TestbedConfig(BaseModel):
    """Configuration for a testbed run.

    Example::

        config = TestbedConfig(
            backends=["mysql", "postgresql"],
            startup_timeout_seconds=120,
        )
    """

    __test__ = False  # not a pytest test class

    # What to provision
    backends: list[str] = Field(
        default=["all"],
        description="Backends to run, or ['all']",
    )
    container_name: str | None = Field(
        default=None,
        description="Override the well-known container name (single backend only)",
    )
    image: str | None = Field(
        default=None,
        description="Override the backend image (single backend only)",
    )

    # Runtime
    runtime: str = Field(
        default="docker",
        description="Container runtime CLI binary",
    )
    startup_timeout_seconds: float | None = Field(
        default=None,
        gt=0,
        description="Readiness deadline; None waits indefinitely",
    )
    keep_containers: bool = Field(
        default=False,
        description="Skip teardown (for debugging)",
    )
    fail_fast: bool = Field(
        default=True,
        description="Stop after the first failing backend",
    )

    # Test action
    test_command: list[str] = Field(
        default_factory=_default_test_command,
        description="Command run against each live instance",
    )
    test_args: list[str] = Field(
        default_factory=list,
        description="Extra arguments appended to the test command",
    )

    # Logging
    verbose: bool = Field(default=False, description="Enable verbose output")
    log_level: str = Field(default="INFO", description="Log level")
    log_format: Literal["console", "json", "auto"] = Field(
        default="auto",
        description="Log renderer",
    )

    # Internal
    run_id: str = Field(default="", description="Unique run identifier (auto-generated)")

    @model_validator(mode="after")
    def _set_defaults(self) -> TestbedConfig:
        if not self.run_id:
            self.run_id = uuid.uuid4().hex[:12]
        if not self.test_command:
            raise ValueError("test_command must not be empty")
        if self.verbose:
            self.log_level = "DEBUG"
        return self

    @property
    def effective_log_level(self) -> str:
        return self.log_level.upper()

    @classmethod
    def from_env(cls, **overrides: Any) -> TestbedConfig:
        """Create config from DBTESTBED_* environment variables."""
        env_map = {
            "backends": "DBTESTBED_BACKENDS",
            "runtime": "DBTESTBED_RUNTIME",
            "startup_timeout_seconds": "DBTESTBED_STARTUP_TIMEOUT",
            "keep_containers": "DBTESTBED_KEEP_CONTAINERS",
            "fail_fast": "DBTESTBED_FAIL_FAST",
            "test_command": "DBTESTBED_TEST_COMMAND",
            "verbose": "DBTESTBED_VERBOSE",
            "log_level": "DBTESTBED_LOG_LEVEL",
            "log_format": "DBTESTBED_LOG_FORMAT",
        }
        values: dict[str, Any] = {}
        for field_name, env_var in env_map.items():
            env_val = os.environ.get(env_var)
            if env_val is not None:
                if field_name == "backends":
                    values[field_name] = [b.strip() for b in env_val.split(",") if b.strip()]
                elif field_name in ("keep_containers", "fail_fast", "verbose"):
                    values[field_name] = env_val.lower() in ("true", "1", "yes")
                elif field_name == "startup_timeout_seconds":
                    values[field_name] = float(env_val) if env_val.strip() else None
                elif field_name == "test_command":
                    values[field_name] = shlex.split(env_val)
                else:
                    values[field_name] = env_val
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)
