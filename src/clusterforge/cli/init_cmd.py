"""``clusterforge init``: scaffold a new suite file from a template."""

from __future__ import annotations

from pathlib import Path
from string import Template

import typer
from rich.console import Console

console = Console(stderr=True)

_SUITE_TEMPLATE = Template('''\
"""Cluster tests: $name.

Run with:
    clusterforge run $filename
"""

from __future__ import annotations

from clusterforge import ClusterClient, cluster_test


@cluster_test(workers=2)
async def ${func_name}_select(client: ClusterClient) -> None:
    """Sum values across both select workers."""
    result = await client.query([1, 2, 3, 4])
    assert result.total == 10
    assert len(result.nodes) == 2
''')


def init_cmd(
    name: str = typer.Argument(
        "my_suite",
        help="Name for the suite (used as filename and test prefix).",
    ),
) -> None:
    """Scaffold a new suite file in the current directory."""
    # Sanitise the name for use as a Python identifier
    safe_name = "".join(c if c.isalnum() or c == "_" else "_" for c in name).lower()
    if not safe_name or safe_name[0].isdigit():
        safe_name = "suite_" + safe_name

    filename = f"{safe_name}.py"
    display_name = name.replace("_", " ").replace("-", " ").title()

    target = Path.cwd() / filename
    if target.exists():
        console.print(f"[red]File already exists:[/red] {filename}")
        raise typer.Exit(code=1)

    content = _SUITE_TEMPLATE.substitute(
        name=display_name,
        filename=filename,
        func_name=safe_name,
    )
    target.write_text(content)
    console.print(f"[green]Created suite:[/green] {filename}")
