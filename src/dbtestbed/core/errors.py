"""
Structured error types for dbtestbed.

Every failure the testbed can report is a ``TestbedError`` subclass carrying
a category, structured context and an optional chained cause. The CLI maps
any ``TestbedError`` to a non-zero exit and a one-line message; the
orchestrator uses the hierarchy to decide what aborts a run and what is only
logged.

Architecture:
    ::

        ┌──────────────────────────────────────────────────────────────┐
        │                        TestbedError                           │
        │            (category, context, cause, to_dict())              │
        ├──────────────────────────────────────────────────────────────┤
        │  ProcessError          ContainerError          ConfigError    │
        │  (PROCESS)             (CONTAINER)             (CONFIG)       │
        │     │                     │                       │           │
        │  SpawnError            RuntimeNotFoundError    InvalidConfig  │
        │  CommandFailedError    ContainerStartError     UnknownBackend │
        │  CommandTimeoutError   AddressDiscoveryError                  │
        │                        ReadinessError                         │
        │                          └ ReadinessTimeoutError              │
        │                        ContainerStateError                    │
        │                                                               │
        │  TestSuiteFailedError (TEST_SUITE)                            │
        └──────────────────────────────────────────────────────────────┘

Usage:
    from dbtestbed.core.errors import AddressDiscoveryError

    raise AddressDiscoveryError("no address reported").with_context(
        container="dbtestbed_mysql",
    )

Tags:
    errors, exception-hierarchy, error-context, dbtestbed
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """Standard error categories for classification and reporting."""

    PROCESS = "PROCESS"  # Subordinate process could not run or failed
    CONTAINER = "CONTAINER"  # Container lifecycle failures
    CONFIG = "CONFIG"  # Invalid flags, env vars or profiles
    TEST_SUITE = "TEST_SUITE"  # Delegated test action failed
    INTERNAL = "INTERNAL"  # Bugs, unexpected state


@dataclass
class ErrorContext:
    """
    Structured metadata attached to an error.

    Only fields that were set are serialized by ``to_dict()``; anything
    without a dedicated field lands in ``metadata``.

    Examples:
        >>> ctx = ErrorContext(container="dbtestbed_mysql", backend="mysql")
        >>> ctx.to_dict()
        {'container': 'dbtestbed_mysql', 'backend': 'mysql'}
    """

    container: str | None = None
    backend: str | None = None
    command: str | None = None
    run_id: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        result = {}
        for key in ["container", "backend", "command", "run_id"]:
            value = getattr(self, key)
            if value is not None:
                result[key] = value
        if self.metadata:
            result.update(self.metadata)
        return result


class TestbedError(Exception):
    """
    Base exception for all dbtestbed errors.

    Carries a category, an ``ErrorContext`` and an optional cause. When a
    cause is given it is also chained as ``__cause__`` so tracebacks show
    the underlying ``OSError`` or ``CalledProcessError``.

    Examples:
        >>> error = TestbedError("Something went wrong")
        >>> error.category
        <ErrorCategory.INTERNAL: 'INTERNAL'>
        >>> error.with_context(container="pg").context.container
        'pg'
    """

    __test__ = False  # not a pytest test class

    default_category: ErrorCategory = ErrorCategory.INTERNAL

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        context: ErrorContext | None = None,
        cause: BaseException | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category or self.default_category
        self.context = context or ErrorContext()
        self.cause = cause

        if cause is not None:
            self.__cause__ = cause

    def with_context(self, **kwargs: Any) -> TestbedError:
        """
        Add context to this error (fluent API).

        Usage:
            raise ContainerStartError("run failed").with_context(
                container="dbtestbed_postgres",
                image="postgres:16-alpine",
            )
        """
        for key, value in kwargs.items():
            if key != "metadata" and hasattr(self.context, key):
                setattr(self.context, key, value)
            else:
                self.context.metadata[key] = value
        return self

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for logging/serialization."""
        result: dict[str, Any] = {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "category": self.category.value,
        }
        context = self.context.to_dict()
        if context:
            result["context"] = context
        if self.cause is not None:
            result["cause"] = f"{type(self.cause).__name__}: {self.cause}"
        return result

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, category={self.category.value})"


# =============================================================================
# PROCESS ERRORS
# =============================================================================


class ProcessError(TestbedError):
    """A subordinate OS process failed."""

    default_category = ErrorCategory.PROCESS


class SpawnError(ProcessError):
    """The runtime binary or subordinate process could not be launched."""


class CommandFailedError(ProcessError):
    """A subordinate process exited with a non-zero status."""

    def __init__(
        self,
        message: str,
        *,
        returncode: int,
        stderr: str = "",
        **kwargs: Any,
    ):
        super().__init__(message, **kwargs)
        self.returncode = returncode
        self.stderr = stderr


class CommandTimeoutError(ProcessError):
    """A subordinate process did not finish within its timeout."""


# =============================================================================
# CONTAINER ERRORS
# =============================================================================


class ContainerError(TestbedError):
    """Base for container lifecycle failures."""

    default_category = ErrorCategory.CONTAINER


class RuntimeNotFoundError(ContainerError):
    """The container runtime CLI is not on PATH."""


class ContainerStartError(ContainerError):
    """``run`` failed for the container."""


class AddressDiscoveryError(ContainerError):
    """The container was not found or reported no network address."""


class ReadinessError(ContainerError):
    """The readiness marker could not be observed."""


class ReadinessTimeoutError(ReadinessError):
    """The readiness marker did not appear before the caller's deadline."""

    def __init__(self, message: str, *, timeout: float, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.timeout = timeout


class ContainerStateError(ContainerError):
    """An operation was attempted in a lifecycle phase that does not allow it."""


# =============================================================================
# CONFIG ERRORS
# =============================================================================


class ConfigError(TestbedError):
    """Invalid flags, environment variables or profiles."""

    default_category = ErrorCategory.CONFIG


class InvalidConfigError(ConfigError):
    """Conflicting or malformed configuration values."""


class UnknownBackendError(ConfigError):
    """A backend name that is not registered."""


# =============================================================================
# TEST SUITE ERRORS
# =============================================================================


class TestSuiteFailedError(TestbedError):
    """The delegated test command reported failure."""

    __test__ = False

    default_category = ErrorCategory.TEST_SUITE

    def __init__(self, message: str, *, returncode: int, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.returncode = returncode


__all__ = [
    "AddressDiscoveryError",
    "CommandFailedError",
    "CommandTimeoutError",
    "ConfigError",
    "ContainerError",
    "ContainerStartError",
    "ContainerStateError",
    "ErrorCategory",
    "ErrorContext",
    "InvalidConfigError",
    "ProcessError",
    "ReadinessError",
    "ReadinessTimeoutError",
    "RuntimeNotFoundError",
    "SpawnError",
    "TestSuiteFailedError",
    "TestbedError",
    "UnknownBackendError",
]
