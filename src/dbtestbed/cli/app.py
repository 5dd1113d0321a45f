"""
Root Typer application for the dbtestbed CLI.

Global options configure structlog once, before any sub-command runs.
"""

from __future__ import annotations

import typer
from typer import Typer

from dbtestbed.cli.utils import exit_with_error
from dbtestbed.core.logging import configure_logging
from dbtestbed.deploy.config import TestbedConfig

app = Typer(
    name="dbtestbed",
    help="dbtestbed: run a test suite against throwaway database containers.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)

_LOG_FORMATS = {"console": False, "json": True, "auto": None}


# ── Version callback ─────────────────────────────────────────────────────


def _version_callback(value: bool) -> None:
    if value:
        from importlib.metadata import PackageNotFoundError
        from importlib.metadata import version as pkg_version

        try:
            v = pkg_version("dbtestbed")
        except PackageNotFoundError:
            from dbtestbed import __version__ as v
        typer.echo(f"dbtestbed {v}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool | None = typer.Option(  # noqa: UP007
        None,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
    verbose: bool = typer.Option(
        False, "--verbose", "-v", help="Debug logging (env: DBTESTBED_VERBOSE).",
    ),
    log_level: str | None = typer.Option(  # noqa: UP007
        None, "--log-level", help="Log level (env: DBTESTBED_LOG_LEVEL, default INFO).",
    ),
    log_format: str | None = typer.Option(  # noqa: UP007
        None, "--log-format",
        help="Log renderer: console, json or auto (env: DBTESTBED_LOG_FORMAT, default auto).",
    ),
) -> None:
    """dbtestbed CLI: provision database containers and run tests against them."""
    if log_format is not None and log_format not in _LOG_FORMATS:
        raise typer.BadParameter(
            f"must be one of {', '.join(_LOG_FORMATS)}", param_hint="--log-format",
        )
    try:
        config = TestbedConfig.from_env(
            verbose=verbose or None, log_level=log_level, log_format=log_format,
        )
    except ValueError as e:
        exit_with_error(f"Invalid configuration: {e}")
    configure_logging(
        level=config.effective_log_level,
        json_format=_LOG_FORMATS[config.log_format],
    )


# ── Sub-command registration ─────────────────────────────────────────────

from dbtestbed.cli.test import app as test_app  # noqa: E402

app.add_typer(test_app, name="test", help="Run the test suite against database backends.")
