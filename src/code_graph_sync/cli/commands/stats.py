"""Stats command: node and edge counts of the persisted graph."""

from pathlib import Path

import typer
from rich.table import Table

from ...config.defaults import get_default_db_path
from ...core.factory import StoreBackend, create_store
from ..output import console, handle_cli_errors, print_json


@handle_cli_errors("Stats")
def stats(
    ctx: typer.Context,
    db_path: Path | None = typer.Option(
        None, "--db-path", help="Graph database directory (default: state dir)"
    ),
    json_output: bool = typer.Option(False, "--json", help="Print stats as JSON"),
) -> None:
    """Show entity and relationship counts.

    Example:
        code-graph-sync stats
    """
    project_root: Path = ctx.obj["project_root"]
    with create_store(
        StoreBackend.KUZU, db_path or get_default_db_path(project_root)
    ) as store:
        data = store.stats()

    if json_output:
        print_json(data)
        return

    table = Table(title="Code Graph Statistics")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", justify="right")
    table.add_row("Total Entities", f"[green]{data['total_entities']:,}[/green]")
    for kind, count in sorted(data["entities"].items()):
        table.add_row(f"  {kind}", f"{count:,}")
    table.add_row("", "")
    table.add_row(
        "Total Relationships", f"[green]{data['total_relationships']:,}[/green]"
    )
    for rel_type, count in sorted(data["relationships"].items()):
        table.add_row(f"  {rel_type}", f"{count:,}")
    console.print(table)
