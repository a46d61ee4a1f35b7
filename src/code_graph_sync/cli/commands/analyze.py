"""Analyze command: roll entity-level edges up to container dependencies."""

import asyncio
from pathlib import Path

import typer
from rich.table import Table

from ...config.defaults import (
    DEFAULT_COARSE_CONTAINER_KIND,
    get_default_thresholds_path,
)
from ...config.thresholds import ThresholdConfig
from ...core.cross_entity import AnalysisReport, CrossEntityAnalyzer
from ...core.factory import ComponentFactory, StoreBackend
from ...core.models import EntityKind
from ..output import (
    console,
    handle_cli_errors,
    print_json,
    print_success,
    print_warning,
)

STRENGTH_STYLES = {"high": "red", "medium": "yellow", "low": "green"}


def _print_report(report: AnalysisReport, thresholds: ThresholdConfig) -> None:
    if not report.dependencies:
        print_warning("No cross-container dependencies found")
        return

    table = Table(title="Container dependencies (DEPENDS_ON)")
    table.add_column("From", style="cyan", overflow="fold")
    table.add_column("To", style="cyan", overflow="fold")
    table.add_column("Edges", justify="right")
    table.add_column("Classes", justify="right")
    table.add_column("Types")
    table.add_column("Strength")
    for dep in report.dependencies:
        strength = thresholds.get_strength(dep.relationship_count)
        style = STRENGTH_STYLES[strength]
        table.add_row(
            dep.source,
            dep.target,
            f"{dep.relationship_count:,}",
            f"{dep.class_count:,}",
            ", ".join(sorted(dep.dependency_types)),
            f"[{style}]{strength}[/{style}]",
        )
    console.print(table)

    if report.shared:
        shared = Table(title="Shared dependencies (SHARES_WITH)")
        shared.add_column("Containers", style="cyan", overflow="fold")
        shared.add_column("Shared", overflow="fold")
        shared.add_column("Similarity", justify="right")
        for pair in report.shared:
            shared.add_row(
                f"{pair.first} ↔ {pair.second}",
                ", ".join(sorted(pair.shared)),
                f"{pair.similarity:.2f}",
            )
        console.print(shared)

    for cycle in report.cycles:
        print_warning(f"Cycle: {' → '.join(cycle + cycle[:1])}")


@handle_cli_errors("Analysis")
def analyze(
    ctx: typer.Context,
    backend: StoreBackend = typer.Option(
        StoreBackend.KUZU, "--backend", "-b", help="Graph store backend"
    ),
    db_path: Path | None = typer.Option(
        None, "--db-path", help="Graph database directory (default: state dir)"
    ),
    audit_dir: Path | None = typer.Option(
        None, "--audit-dir", help="Audit trail directory (default: state dir)"
    ),
    thresholds_path: Path | None = typer.Option(
        None, "--thresholds", help="Strength thresholds YAML", dir_okay=False
    ),
    container_kind: str = typer.Option(
        DEFAULT_COARSE_CONTAINER_KIND,
        "--container-kind",
        help="Entity kind whose members are aggregated (e.g. SubProject, Package)",
    ),
    json_output: bool = typer.Option(
        False, "--json", help="Print the report as JSON"
    ),
) -> None:
    """Write DEPENDS_ON and SHARES_WITH edges between containers.

    Run after ingest. Re-running updates edge metadata in place.

    [bold cyan]Examples:[/bold cyan]

        $ code-graph-sync analyze

        $ code-graph-sync analyze --container-kind Package --json
    """
    project_root: Path = ctx.obj["project_root"]
    thresholds = ThresholdConfig.load(
        thresholds_path or get_default_thresholds_path(project_root)
    )
    config = ComponentFactory.load_config(project_root)
    bundle = ComponentFactory.create_components(
        project_root, config, backend=backend, db_path=db_path, audit_dir=audit_dir
    )
    try:
        analyzer = CrossEntityAnalyzer(
            bundle.store,
            bundle.engine,
            thresholds=thresholds,
            container_kind=EntityKind.parse(container_kind),
        )
        report = asyncio.run(analyzer.analyze())
    finally:
        bundle.close()

    if json_output:
        print_json(
            {
                "operationId": report.operation_id,
                "dependencies": [
                    {"from": d.source, "to": d.target, **d.metadata(thresholds)}
                    for d in report.dependencies
                ],
                "shared": [
                    {"containers": [p.first, p.second], **p.metadata()}
                    for p in report.shared
                ],
                "cycles": report.cycles,
                "failed": [r.target_id for r in report.failed],
            }
        )
    else:
        _print_report(report, thresholds)
        print_success(
            f"{len(report.dependencies)} dependencies, {len(report.shared)} shared "
            f"pairs, {len(report.cycles)} cycles (operation {report.operation_id})"
        )

    if report.failed:
        raise typer.Exit(1)
