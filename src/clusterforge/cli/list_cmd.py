"""``clusterforge list``: show the tests a suite file defines."""

from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table

from clusterforge._internal.errors import ClusterForgeError
from clusterforge.dsl.definition import registry
from clusterforge.dsl.loader import load_suite
from clusterforge.suite.selection import parse_test_args

console = Console()


def list_cmd(
    suite_file: Path = typer.Argument(
        ...,
        help="Path to the suite .py file.",
        exists=True,
        file_okay=True,
        dir_okay=False,
        readable=True,
    ),
    filters: list[str] | None = typer.Argument(
        None,
        help="Only list tests whose name contains one of these.",
    ),
    skip: list[str] | None = typer.Option(
        None,
        "--skip",
        help="Exclude tests whose name contains this. Repeatable.",
    ),
) -> None:
    """List the cluster tests a suite file defines."""
    registry.clear()
    try:
        tests = load_suite(suite_file)
        args = list(filters or [])
        for name in skip or []:
            args += ["--skip", name]
        selection = parse_test_args(args)
    except ClusterForgeError as exc:
        console.print(f"[red]Error:[/red] {exc}")
        raise typer.Exit(code=1) from exc

    table = Table(title=suite_file.name, show_header=True, header_style="bold cyan")
    table.add_column("Test", style="bold")
    table.add_column("Workers", justify="right")
    table.add_column("Selected", justify="center")

    for test in tests:
        selected = selection.includes(test.name)
        table.add_row(test.name, str(test.workers), "yes" if selected else "[dim]no[/dim]")

    console.print(table)
