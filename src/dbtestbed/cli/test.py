"""
CLI: ``dbtestbed test`` -- run the test suite against database backends.

Usage::

    dbtestbed test mysql --mysql-host 127.0.0.1      # existing server
    dbtestbed test postgres --postgres-dsn postgresql://...
    dbtestbed test all                               # mysql then postgres

    dbtestbed test mysql-docker                      # throwaway container
    dbtestbed test postgres-docker --startup-timeout 120
    dbtestbed test all-docker --keep-going -- -k smoke

    dbtestbed test backends                          # list profiles

Everything after ``--`` is appended to the test command.
"""

from __future__ import annotations

import json

import typer
from pydantic import ValidationError
from rich.table import Table

from dbtestbed.cli.utils import console, exit_with_error, print_run_result
from dbtestbed.core.errors import TestbedError
from dbtestbed.deploy.backends import BACKENDS
from dbtestbed.deploy.config import TestbedConfig
from dbtestbed.deploy.connection import ConnectionProfile
from dbtestbed.deploy.container import ContainerRuntime
from dbtestbed.deploy.results import TestbedRunResult
from dbtestbed.deploy.workflow import TestbedRunner

app = typer.Typer(no_args_is_help=True)

_PASSTHROUGH = {"allow_extra_args": True}


# ── Existing servers ─────────────────────────────────────────────────────


@app.command("mysql", context_settings=_PASSTHROUGH)
def run_mysql(
    ctx: typer.Context,
    mysql_dsn: str | None = typer.Option(None, "--mysql-dsn", envvar="DBTESTBED_MYSQL_DSN", help="Full MySQL DSN."),
    mysql_host: str | None = typer.Option(None, "--mysql-host", envvar="DBTESTBED_MYSQL_HOST", help="MySQL host."),
    mysql_port: int | None = typer.Option(None, "--mysql-port", envvar="DBTESTBED_MYSQL_PORT", help="MySQL port."),
    mysql_username: str | None = typer.Option(None, "--mysql-username", envvar="DBTESTBED_MYSQL_USERNAME", help="MySQL user."),
    mysql_password: str | None = typer.Option(None, "--mysql-password", envvar="DBTESTBED_MYSQL_PASSWORD", help="MySQL password."),
    mysql_database: str | None = typer.Option(None, "--mysql-database", envvar="DBTESTBED_MYSQL_DATABASE", help="MySQL database."),
    json_out: bool = typer.Option(False, "--json", help="Output results as JSON."),
) -> None:
    """Run the test suite against an existing MySQL server."""
    profiles = {
        "mysql": _profile(
            "mysql",
            dsn=mysql_dsn, host=mysql_host, port=mysql_port,
            username=mysql_username, password=mysql_password, database=mysql_database,
        ),
    }
    _run_local(ctx, ["mysql"], profiles, json_out=json_out)


@app.command("postgres", context_settings=_PASSTHROUGH)
def run_postgres(
    ctx: typer.Context,
    postgres_dsn: str | None = typer.Option(None, "--postgres-dsn", envvar="DBTESTBED_POSTGRES_DSN", help="Full PostgreSQL DSN."),
    postgres_host: str | None = typer.Option(None, "--postgres-host", envvar="DBTESTBED_POSTGRES_HOST", help="PostgreSQL host."),
    postgres_port: int | None = typer.Option(None, "--postgres-port", envvar="DBTESTBED_POSTGRES_PORT", help="PostgreSQL port."),
    postgres_username: str | None = typer.Option(None, "--postgres-username", envvar="DBTESTBED_POSTGRES_USERNAME", help="PostgreSQL user."),
    postgres_password: str | None = typer.Option(None, "--postgres-password", envvar="DBTESTBED_POSTGRES_PASSWORD", help="PostgreSQL password."),
    postgres_database: str | None = typer.Option(None, "--postgres-database", envvar="DBTESTBED_POSTGRES_DATABASE", help="PostgreSQL database."),
    json_out: bool = typer.Option(False, "--json", help="Output results as JSON."),
) -> None:
    """Run the test suite against an existing PostgreSQL server."""
    profiles = {
        "postgresql": _profile(
            "postgres",
            dsn=postgres_dsn, host=postgres_host, port=postgres_port,
            username=postgres_username, password=postgres_password, database=postgres_database,
        ),
    }
    _run_local(ctx, ["postgresql"], profiles, json_out=json_out)


@app.command("all", context_settings=_PASSTHROUGH)
def run_all(
    ctx: typer.Context,
    mysql_dsn: str | None = typer.Option(None, "--mysql-dsn", envvar="DBTESTBED_MYSQL_DSN", help="Full MySQL DSN."),
    mysql_host: str | None = typer.Option(None, "--mysql-host", envvar="DBTESTBED_MYSQL_HOST", help="MySQL host."),
    mysql_port: int | None = typer.Option(None, "--mysql-port", envvar="DBTESTBED_MYSQL_PORT", help="MySQL port."),
    mysql_username: str | None = typer.Option(None, "--mysql-username", envvar="DBTESTBED_MYSQL_USERNAME", help="MySQL user."),
    mysql_password: str | None = typer.Option(None, "--mysql-password", envvar="DBTESTBED_MYSQL_PASSWORD", help="MySQL password."),
    mysql_database: str | None = typer.Option(None, "--mysql-database", envvar="DBTESTBED_MYSQL_DATABASE", help="MySQL database."),
    postgres_dsn: str | None = typer.Option(None, "--postgres-dsn", envvar="DBTESTBED_POSTGRES_DSN", help="Full PostgreSQL DSN."),
    postgres_host: str | None = typer.Option(None, "--postgres-host", envvar="DBTESTBED_POSTGRES_HOST", help="PostgreSQL host."),
    postgres_port: int | None = typer.Option(None, "--postgres-port", envvar="DBTESTBED_POSTGRES_PORT", help="PostgreSQL port."),
    postgres_username: str | None = typer.Option(None, "--postgres-username", envvar="DBTESTBED_POSTGRES_USERNAME", help="PostgreSQL user."),
    postgres_password: str | None = typer.Option(None, "--postgres-password", envvar="DBTESTBED_POSTGRES_PASSWORD", help="PostgreSQL password."),
    postgres_database: str | None = typer.Option(None, "--postgres-database", envvar="DBTESTBED_POSTGRES_DATABASE", help="PostgreSQL database."),
    json_out: bool = typer.Option(False, "--json", help="Output results as JSON."),
) -> None:
    """Run the test suite against existing MySQL then PostgreSQL servers.

    Stops at the first failing backend.
    """
    profiles = {
        "mysql": _profile(
            "mysql",
            dsn=mysql_dsn, host=mysql_host, port=mysql_port,
            username=mysql_username, password=mysql_password, database=mysql_database,
        ),
        "postgresql": _profile(
            "postgres",
            dsn=postgres_dsn, host=postgres_host, port=postgres_port,
            username=postgres_username, password=postgres_password, database=postgres_database,
        ),
    }
    _run_local(ctx, ["mysql", "postgresql"], profiles, json_out=json_out)


# ── Throwaway containers ─────────────────────────────────────────────────


@app.command("mysql-docker", context_settings=_PASSTHROUGH)
def run_mysql_docker(
    ctx: typer.Context,
    name: str | None = typer.Option(None, "--name", help="Container name (default: dbtestbed_mysql)."),
    image: str | None = typer.Option(None, "--image", help="Image override."),
    startup_timeout: float | None = typer.Option(None, "--startup-timeout", "-t", help="Readiness deadline in seconds."),
    keep: bool = typer.Option(False, "--keep", help="Keep the container after the run."),
    json_out: bool = typer.Option(False, "--json", help="Output results as JSON."),
) -> None:
    """Start MySQL in a throwaway container and run the test suite against it."""
    _run_docker(
        ctx, ["mysql"],
        name=name, image=image, startup_timeout=startup_timeout,
        keep=keep, keep_going=False, json_out=json_out,
    )


@app.command("postgres-docker", context_settings=_PASSTHROUGH)
def run_postgres_docker(
    ctx: typer.Context,
    name: str | None = typer.Option(None, "--name", help="Container name (default: dbtestbed_postgres)."),
    image: str | None = typer.Option(None, "--image", help="Image override."),
    startup_timeout: float | None = typer.Option(None, "--startup-timeout", "-t", help="Readiness deadline in seconds."),
    keep: bool = typer.Option(False, "--keep", help="Keep the container after the run."),
    json_out: bool = typer.Option(False, "--json", help="Output results as JSON."),
) -> None:
    """Start PostgreSQL in a throwaway container and run the test suite against it."""
    _run_docker(
        ctx, ["postgresql"],
        name=name, image=image, startup_timeout=startup_timeout,
        keep=keep, keep_going=False, json_out=json_out,
    )


@app.command("all-docker", context_settings=_PASSTHROUGH)
def run_all_docker(
    ctx: typer.Context,
    startup_timeout: float | None = typer.Option(None, "--startup-timeout", "-t", help="Readiness deadline in seconds."),
    keep: bool = typer.Option(False, "--keep", help="Keep containers after the run."),
    keep_going: bool = typer.Option(False, "--keep-going", help="Run every backend even after a failure."),
    json_out: bool = typer.Option(False, "--json", help="Output results as JSON."),
) -> None:
    """Run the test suite against throwaway MySQL then PostgreSQL containers."""
    _run_docker(
        ctx, ["all"],
        name=None, image=None, startup_timeout=startup_timeout,
        keep=keep, keep_going=keep_going, json_out=json_out,
    )


# ── Info commands ────────────────────────────────────────────────────────


@app.command("backends")
def list_backends(
    json_out: bool = typer.Option(False, "--json", help="Output as JSON."),
) -> None:
    """List available database backends."""
    if json_out:
        out = {
            name: {
                "dialect": spec.dialect,
                "image": spec.image,
                "port": spec.port,
                "container_name": spec.container_name,
                "ready_marker": spec.ready_marker,
                "ready_occurrences": spec.ready_occurrences,
                "aliases": list(spec.aliases),
                "notes": spec.notes,
            }
            for name, spec in BACKENDS.items()
        }
        typer.echo(json.dumps(out, indent=2))
        return

    table = Table(title="Available Backends")
    table.add_column("Name", style="bold cyan", no_wrap=True)
    table.add_column("Dialect")
    table.add_column("Image")
    table.add_column("Port")
    table.add_column("Container")
    table.add_column("Ready marker", overflow="fold")
    table.add_column("Notes", style="dim", overflow="fold")

    for name, spec in BACKENDS.items():
        marker = spec.ready_marker
        if spec.ready_occurrences > 1:
            marker = f"{marker} (x{spec.ready_occurrences})"
        table.add_row(
            name, spec.dialect, spec.image, str(spec.port), spec.container_name, marker, spec.notes,
        )

    console.print(table)


# ── Private helpers ──────────────────────────────────────────────────────


def _profile(prefix: str, **options) -> ConnectionProfile:
    try:
        return ConnectionProfile.from_options(option_prefix=prefix, **options)
    except (TestbedError, ValidationError) as exc:
        exit_with_error(str(exc))


def _load_config(ctx: typer.Context, **overrides) -> TestbedConfig:
    try:
        return TestbedConfig.from_env(test_args=list(ctx.args) or None, **overrides)
    except ValueError as exc:
        exit_with_error(f"Invalid configuration: {exc}")


def _run_local(
    ctx: typer.Context,
    backends: list[str],
    profiles: dict[str, ConnectionProfile],
    *,
    json_out: bool,
) -> None:
    config = _load_config(ctx, backends=backends, fail_fast=True)
    result = TestbedRunner(config).run_local(profiles)
    _report(result, json_out=json_out)


def _run_docker(
    ctx: typer.Context,
    backends: list[str],
    *,
    name: str | None,
    image: str | None,
    startup_timeout: float | None,
    keep: bool,
    keep_going: bool,
    json_out: bool,
) -> None:
    config = _load_config(
        ctx,
        backends=backends,
        container_name=name,
        image=image,
        startup_timeout_seconds=startup_timeout,
        keep_containers=True if keep else None,
        fail_fast=False if keep_going else None,
    )

    try:
        runtime = ContainerRuntime.find(config.runtime)
    except TestbedError as exc:
        exit_with_error(exc.message)
    if not runtime.is_available():
        exit_with_error(f"Container runtime {config.runtime!r} is installed but not responding.")

    if not json_out:
        console.print(f"[bold]dbtestbed[/] run_id: {config.run_id}")
        console.print(f"  backends: {', '.join(config.backends)}")
        console.print(f"  runtime:  {runtime.binary}")

    result = TestbedRunner(config, runtime=runtime).run()
    _report(result, json_out=json_out)


def _report(result: TestbedRunResult, *, json_out: bool) -> None:
    if json_out:
        typer.echo(result.model_dump_json(indent=2))
    else:
        print_run_result(result)

    if result.failed:
        raise typer.Exit(code=1)
