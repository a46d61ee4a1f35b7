"""Audit commands: list operations and show their decision trails."""

from pathlib import Path

import typer
from rich.table import Table

from ...config.defaults import get_default_audit_dir
from ...core.audit import AuditRecorder
from ...core.models import Decision
from ..output import (
    console,
    handle_cli_errors,
    print_audit_records,
    print_error,
    print_info,
    print_json,
)

audit_app = typer.Typer(help="Inspect audit trails of past runs")


def _recorder(ctx: typer.Context, audit_dir: Path | None) -> AuditRecorder:
    return AuditRecorder(audit_dir or get_default_audit_dir(ctx.obj["project_root"]))


@audit_app.command("list")
@handle_cli_errors("Listing audit trails")
def list_operations(
    ctx: typer.Context,
    audit_dir: Path | None = typer.Option(
        None, "--audit-dir", help="Audit trail directory (default: state dir)"
    ),
    limit: int = typer.Option(20, "--limit", "-n", min=1, help="Most recent N"),
) -> None:
    """List recorded operations, newest last."""
    recorder = _recorder(ctx, audit_dir)
    operations = recorder.operations()
    if not operations:
        print_info("No audit trails recorded yet")
        return

    table = Table(title="Operations")
    table.add_column("Operation", style="cyan")
    for decision in Decision:
        table.add_column(str(decision), justify="right")
    for operation_id in operations[-limit:]:
        records = recorder.records(operation_id)
        table.add_row(
            operation_id,
            *(str(sum(r.decision is d for r in records)) for d in Decision),
        )
    console.print(table)


@audit_app.command("show")
@handle_cli_errors("Reading audit trail")
def show(
    ctx: typer.Context,
    operation_id: str = typer.Argument(..., help="Operation id of the run"),
    audit_dir: Path | None = typer.Option(
        None, "--audit-dir", help="Audit trail directory (default: state dir)"
    ),
    decision: Decision | None = typer.Option(
        None, "--decision", "-d", help="Only records with this decision"
    ),
    json_output: bool = typer.Option(False, "--json", help="Print records as JSON"),
) -> None:
    """Show the ordered audit records of one operation."""
    records = _recorder(ctx, audit_dir).records(operation_id)
    if not records:
        print_error(f"No audit trail for operation {operation_id}")
        raise typer.Exit(1)
    if decision is not None:
        records = [r for r in records if r.decision is decision]

    if json_output:
        print_json([r.to_dict() for r in records])
    else:
        print_audit_records(records)
