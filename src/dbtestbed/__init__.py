"""
dbtestbed - run a test suite against throwaway database containers.
"""

__version__ = "0.1.0"

from dbtestbed.core import TestbedError, configure_logging, get_logger  # noqa: E402
from dbtestbed.deploy import (  # noqa: E402
    ConnectionProfile,
    ContainerRuntime,
    FixtureOrchestrator,
    TestbedConfig,
    TestbedRunner,
)

__all__ = [
    "ConnectionProfile",
    "ContainerRuntime",
    "FixtureOrchestrator",
    "TestbedConfig",
    "TestbedError",
    "TestbedRunner",
    "__version__",
    "configure_logging",
    "get_logger",
]
