"""Main Typer application, entry point for the ``clusterforge`` CLI."""

from __future__ import annotations

import typer

from clusterforge import __version__
from clusterforge.cli.init_cmd import init_cmd
from clusterforge.cli.list_cmd import list_cmd
from clusterforge.cli.run import run_cmd
from clusterforge.engine import respawn

app = typer.Typer(
    name="clusterforge",
    help="Run multi-process cluster tests without a deployment step.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)

app.command("run", help="Run the cluster tests of a suite file.")(run_cmd)
app.command("list", help="List the cluster tests of a suite file.")(list_cmd)
app.command("init", help="Scaffold a new suite file.")(init_cmd)


def _version_callback(value: bool) -> None:
    """Print version and exit.

    Args:
        value: True if --version was passed.
    """
    if value:
        typer.echo(f"clusterforge {__version__}")
        raise typer.Exit


@app.callback()
def main(
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
) -> None:
    """ClusterForge: multi-process cluster tests from a single invocation."""
    respawn.init()
