"""``clusterforge run``: execute the cluster tests of a suite file."""

from __future__ import annotations

import dataclasses
import logging
from pathlib import Path
from typing import TYPE_CHECKING

import typer
from rich.console import Console
from rich.live import Live
from rich.panel import Panel
from rich.table import Table

from clusterforge._internal.config import load_config
from clusterforge._internal.errors import ClusterForgeError
from clusterforge._internal.logging import setup_logging
from clusterforge.dsl.definition import registry
from clusterforge.dsl.loader import load_suite
from clusterforge.suite.runner import run_cluster_suite
from clusterforge.suite.selection import TestSelection

if TYPE_CHECKING:
    from clusterforge.engine.outcome import Outcome
    from clusterforge.suite.runner import SuiteResult

console = Console(stderr=True)


# ---------------------------------------------------------------------------
# Rich output
# ---------------------------------------------------------------------------


def _status(outcome: Outcome) -> str:
    if outcome.success:
        return "[green]PASS[/green]"
    kind = outcome.failure.name if outcome.failure is not None else "FAIL"
    return f"[red]{kind}[/red]"


def _make_live_table(outcomes: list[Outcome], total: int) -> Table:
    """Build a Rich table of the outcomes received so far.

    Args:
        outcomes: Outcomes in arrival order.
        total: Number of selected tests.

    Returns:
        Formatted Rich Table.
    """
    table = Table(show_header=True, header_style="bold cyan", expand=True)
    table.add_column("Test", style="bold")
    table.add_column("Result")
    table.add_column("Duration", justify="right")

    for outcome in outcomes:
        table.add_row(outcome.test_name, _status(outcome), f"{outcome.duration_seconds:.1f}s")
    table.caption = f"{len(outcomes)}/{total} done"
    return table


def _print_summary(result: SuiteResult) -> None:
    """Print a final summary table after the suite completes.

    Args:
        result: Completed suite result.
    """
    table = Table(
        title=f"Suite {result.suite_name}",
        show_header=True,
        header_style="bold green" if not result.failed else "bold red",
        expand=True,
    )
    table.add_column("Test", style="bold")
    table.add_column("Result")
    table.add_column("Duration", justify="right")
    table.add_column("Cause")

    for outcome in result.outcomes:
        table.add_row(
            outcome.test_name,
            _status(outcome),
            f"{outcome.duration_seconds:.1f}s",
            outcome.message or "",
        )
    console.print(table)

    for outcome in result.failed:
        for diagnostic in outcome.diagnostics:
            console.print(f"  [dim]{outcome.test_name}: {diagnostic}[/dim]")

    console.print(
        f"{len(result.passed)} passed, {len(result.failed)} failed, "
        f"{len(result.skipped)} skipped"
    )


# ---------------------------------------------------------------------------
# Command
# ---------------------------------------------------------------------------


def run_cmd(
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
        help="Run only tests whose name contains one of these.",
    ),
    skip: list[str] | None = typer.Option(
        None,
        "--skip",
        help="Skip tests whose name contains this. Repeatable.",
    ),
    exact: bool = typer.Option(
        False,
        "--exact",
        help="Match filters and skip entries against whole test names.",
    ),
    test_threads: int = typer.Option(
        1,
        "--test-threads",
        "-j",
        help="Maximum simultaneous runs (needs --dynamic-ports above 1).",
        min=1,
    ),
    dynamic_ports: bool = typer.Option(
        False,
        "--dynamic-ports",
        help="Allocate free ports per run instead of the fixed cluster ports.",
    ),
    suite_name: str = typer.Option(
        "cluster",
        "--suite-name",
        help="Suffix appended to every test name.",
    ),
    ready_timeout: float | None = typer.Option(
        None,
        "--ready-timeout",
        help="Seconds to wait for all workers to become ready.",
        min=0.1,
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Enable verbose (DEBUG) logging.",
    ),
    json_logs: bool = typer.Option(
        False,
        "--json-logs",
        help="Emit structured JSON logs.",
    ),
) -> None:
    """Execute the cluster tests of a suite file."""
    log_level = logging.DEBUG if verbose else logging.INFO
    setup_logging(level=log_level, json_format=json_logs)

    registry.clear()
    try:
        config = load_config()
        if ready_timeout is not None:
            config = dataclasses.replace(config, ready_timeout=ready_timeout)
        tests = load_suite(suite_file)
        selection = TestSelection(
            filters=tuple(filters or ()),
            skip=tuple(skip or ()),
            exact=exact,
            test_threads=test_threads,
        )
    except ClusterForgeError as exc:
        console.print(f"[red]Error:[/red] {exc}")
        raise typer.Exit(code=1) from exc

    total = sum(1 for t in tests if selection.includes(t.name))
    console.print(
        Panel(
            f"[bold]Suite:[/bold]   {suite_file.name}\n"
            f"[bold]Tests:[/bold]   {total} of {len(tests)} selected\n"
            f"[bold]Ports:[/bold]   {'dynamic' if dynamic_ports else 'fixed'}\n"
            f"[bold]Timeout:[/bold] {config.ready_timeout:.0f}s to ready",
            title="ClusterForge",
            border_style="cyan",
        )
    )

    outcomes: list[Outcome] = []
    with Live(
        _make_live_table(outcomes, total),
        console=console,
        refresh_per_second=2,
        transient=True,
    ) as live:

        def _on_outcome(outcome: Outcome) -> None:
            outcomes.append(outcome)
            live.update(_make_live_table(outcomes, total))

        result = run_cluster_suite(
            suite_name,
            tests,
            selection,
            dynamic_ports=dynamic_ports,
            config=config,
            log_level=log_level,
            on_outcome=_on_outcome,
        )

    _print_summary(result)

    if result.failed:
        raise typer.Exit(code=int(result.exit_code))

    console.print("[green]All cluster tests passed.[/green]")
