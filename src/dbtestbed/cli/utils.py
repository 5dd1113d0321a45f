"""
CLI utility helpers: console output and error exits.
"""

from __future__ import annotations

from typing import NoReturn

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from dbtestbed.deploy.results import OverallStatus, TestbedRunResult

console = Console()
err_console = Console(stderr=True)

_STATUS_STYLE = {
    OverallStatus.PASSED: "green",
    OverallStatus.FAILED: "red",
    OverallStatus.ERROR: "bold red",
    OverallStatus.SKIPPED: "dim",
    OverallStatus.PENDING: "yellow",
}


def exit_with_error(message: str, code: int = 1) -> NoReturn:
    """Print ``message`` in red on stderr and exit with ``code``."""
    err_console.print(f"[bold red]Error:[/bold red] {escape(message)}")
    raise typer.Exit(code=code)


def print_run_result(result: TestbedRunResult, *, title: str = "Testbed Results") -> None:
    """Render a ``TestbedRunResult`` as a Rich table plus summary line."""
    table = Table(title=title)
    table.add_column("Backend", style="bold cyan", no_wrap=True)
    table.add_column("Mode")
    table.add_column("Status")
    table.add_column("Address")
    table.add_column("Startup", justify="right")
    table.add_column("Duration", justify="right")
    table.add_column("Error", overflow="fold")

    for br in result.backends:
        style = _STATUS_STYLE.get(br.overall_status, "")
        table.add_row(
            br.backend,
            br.mode,
            f"[{style}]{br.overall_status.value}[/]" if style else br.overall_status.value,
            br.address or "-",
            f"{br.startup_ms / 1000:.1f}s" if br.startup_ms else "-",
            f"{br.duration_seconds:.1f}s",
            escape(br.error or ""),
        )

    console.print(table)
    if result.error:
        err_console.print(f"[bold red]Error:[/bold red] {escape(result.error)}")
    style = _STATUS_STYLE.get(result.overall_status, "")
    summary = escape(result.summary)
    console.print(f"[{style}]{summary}[/]" if style else summary)
