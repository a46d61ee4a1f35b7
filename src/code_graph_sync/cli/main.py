"""Entry point for the code-graph-sync CLI."""

import sys
from pathlib import Path

import typer
from loguru import logger

from .. import __version__
from .commands.analyze import analyze
from .commands.audit import audit_app
from .commands.hash_cache import hash_cache
from .commands.ingest import ingest
from .commands.stats import stats
from .commands.subprojects import subprojects
from .output import console

app = typer.Typer(
    name="code-graph-sync",
    help="Sync code entities and relationships into a property graph",
    no_args_is_help=True,
    rich_markup_mode="rich",
)

app.command("ingest")(ingest)
app.command("analyze")(analyze)
app.command("stats")(stats)
app.command("hash-cache")(hash_cache)
app.command("subprojects")(subprojects)
app.add_typer(audit_app, name="audit")


def _version_callback(value: bool) -> None:
    if value:
        console.print(f"code-graph-sync {__version__}")
        raise typer.Exit()


def configure_logging(verbose: bool) -> None:
    """Route loguru to stderr; DEBUG with --verbose, WARNING otherwise."""
    logger.remove()
    logger.add(sys.stderr, level="DEBUG" if verbose else "WARNING")


@app.callback()
def main_callback(
    ctx: typer.Context,
    verbose: bool = typer.Option(
        False, "--verbose", "-v", help="Enable debug logging"
    ),
    project_root: Path | None = typer.Option(
        None,
        "--project-root",
        "-p",
        help="Project root directory (defaults to the current directory)",
        file_okay=False,
        dir_okay=True,
    ),
    version: bool = typer.Option(
        False,
        "--version",
        callback=_version_callback,
        is_eager=True,
        help="Show version and exit",
    ),
) -> None:
    configure_logging(verbose)
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["project_root"] = (project_root or Path.cwd()).resolve()


def main() -> None:
    app()


if __name__ == "__main__":
    main()
