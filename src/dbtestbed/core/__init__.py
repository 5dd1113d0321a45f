"""dbtestbed core -- errors and logging shared by every layer.

Architecture::

    errors.py      Structured error hierarchy (TestbedError and subclasses)
    logging.py     structlog configuration, get_logger, LogContext
"""

from dbtestbed.core.errors import (
    ErrorCategory,
    ErrorContext,
    TestbedError,
)
from dbtestbed.core.logging import LogContext, configure_logging, get_logger

__all__ = [
    "ErrorCategory",
    "ErrorContext",
    "LogContext",
    "TestbedError",
    "configure_logging",
    "get_logger",
]
