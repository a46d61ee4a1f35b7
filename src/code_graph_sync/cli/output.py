"""Rich output helpers shared by the CLI commands."""

import functools
from collections.abc import Callable, Iterable
from typing import Any, TypeVar

import orjson
import typer
from loguru import logger
from rich.console import Console
from rich.panel import Panel
from rich.syntax import Syntax
from rich.table import Table

from ..core.exceptions import CodeGraphSyncError
from ..core.models import AuditRecord, Decision, RunSummary, UpsertResult

F = TypeVar("F", bound=Callable[..., Any])

console = Console()

DECISION_STYLES = {
    Decision.INSERT: "green",
    Decision.UPDATE: "cyan",
    Decision.SKIP: "dim",
    Decision.FAIL: "red",
}


def print_success(message: str) -> None:
    console.print(f"[green]✓[/green] {message}")


def print_error(message: str) -> None:
    console.print(f"[red]✗[/red] {message}")


def print_warning(message: str) -> None:
    console.print(f"[yellow]⚠[/yellow] {message}")


def print_info(message: str) -> None:
    console.print(f"[blue]ℹ[/blue] {message}")


def print_json(data: Any, title: str | None = None) -> None:
    """Print data as JSON: highlighted in a panel when titled, raw otherwise."""
    text = orjson.dumps(data, option=orjson.OPT_INDENT_2, default=str).decode()
    if title:
        syntax = Syntax(text, "json", theme="monokai", word_wrap=True)
        console.print(Panel(syntax, title=title, border_style="blue"))
    else:
        # Unstyled and unwrapped so the output can be piped to other tools
        typer.echo(text)


def print_run_summary(summary: RunSummary) -> None:
    """Entity and edge counters of one run."""
    table = Table(title=f"Run {summary.operation_id}")
    table.add_column("Metric", style="cyan")
    table.add_column("Entities", justify="right")
    table.add_column("Edges", justify="right")

    table.add_row(
        "Inserted / created",
        f"[green]{summary.inserted:,}[/green]",
        f"[green]{summary.edges_created:,}[/green]",
    )
    table.add_row("Updated", f"{summary.updated:,}", f"{summary.edges_updated:,}")
    table.add_row("Skipped", f"{summary.skipped:,}", f"{summary.edges_skipped:,}")
    table.add_row(
        "Failed",
        f"[red]{summary.failed:,}[/red]" if summary.failed else "0",
        f"[red]{summary.edges_failed:,}[/red]" if summary.edges_failed else "0",
    )
    table.add_row("Deferred", "", f"{summary.edges_deferred:,}")
    table.add_row("Total", f"{summary.total_entities:,}", "")
    console.print(table)
    console.print(f"[dim]Time: {summary.execution_time_ms / 1000:.2f}s[/dim]")
    if summary.cancelled:
        print_warning("Run was cancelled before all descriptors were processed")


def print_failures(results: Iterable[UpsertResult], limit: int = 20) -> None:
    failed = [r for r in results if not r.success]
    if not failed:
        return
    table = Table(title=f"Failures ({len(failed)})")
    table.add_column("Target", style="cyan", overflow="fold")
    table.add_column("Kind")
    table.add_column("Error", style="red", overflow="fold")
    table.add_column("Retryable", justify="center")
    for r in failed[:limit]:
        table.add_row(r.target_id, r.kind, r.error or "", "yes" if r.retryable else "")
    console.print(table)
    if len(failed) > limit:
        console.print(f"[dim]... and {len(failed) - limit} more[/dim]")


def print_audit_records(records: list[AuditRecord]) -> None:
    table = Table(title=f"Audit trail ({len(records)} records)")
    table.add_column("Time", style="dim")
    table.add_column("Decision")
    table.add_column("Kind")
    table.add_column("Target", style="cyan", overflow="fold")
    table.add_column("Reason", overflow="fold")
    for record in records:
        style = DECISION_STYLES.get(record.decision, "white")
        table.add_row(
            record.timestamp.strftime("%H:%M:%S"),
            f"[{style}]{record.decision}[/{style}]",
            record.kind,
            record.target_id,
            record.reason or "",
        )
    console.print(table)


def handle_cli_errors(operation_name: str) -> Callable[[F], F]:
    """Decorator for consistent CLI error handling.

    Known failures print one line and exit with status 1.
    """

    def decorator(func: F) -> F:
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            try:
                return func(*args, **kwargs)
            except (CodeGraphSyncError, ValueError, OSError) as e:
                logger.error(f"{operation_name} failed: {e}")
                print_error(f"{operation_name} failed: {e}")
                raise typer.Exit(1) from e

        return wrapper  # type: ignore[return-value]

    return decorator
