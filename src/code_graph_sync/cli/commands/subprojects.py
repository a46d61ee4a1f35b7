"""Subprojects command: show the build-file sub-projects of a working tree."""

from pathlib import Path

import typer
from rich.table import Table

from ...core.subprojects import SubProjectDetector
from ..output import console, handle_cli_errors, print_info, print_json


@handle_cli_errors("Sub-project detection")
def subprojects(
    ctx: typer.Context,
    json_output: bool = typer.Option(
        False, "--json", help="Print sub-projects as JSON"
    ),
) -> None:
    """List Maven, Gradle and npm sub-projects under the project root.

    These become SubProject nodes and containment candidates when ingesting
    with --detect-subprojects.
    """
    project_root: Path = ctx.obj["project_root"]
    projects = SubProjectDetector(project_root).detect()

    if json_output:
        print_json([p.properties() for p in projects])
        return
    if not projects:
        print_info(f"No build files found under {project_root}")
        return

    table = Table(title=f"Sub-projects ({len(projects)})")
    table.add_column("Path", style="cyan")
    table.add_column("Name")
    table.add_column("Build")
    table.add_column("Version")
    table.add_column("Deps", justify="right")
    for project in projects:
        table.add_row(
            project.path or ".",
            project.name,
            project.build_type,
            project.version or "",
            str(len(project.dependencies)),
        )
    console.print(table)
