"""Hash-cache command: build the run-scoped content hash cache and report it."""

from pathlib import Path

import typer
from rich.table import Table

from ...core.hashing import HashCache
from ..output import console, handle_cli_errors, print_json, print_success


@handle_cli_errors("Hashing")
def hash_cache(
    ctx: typer.Context,
    paths: list[str] | None = typer.Argument(
        None, help="Only show these files (relative to the project root)"
    ),
    use_git: bool = typer.Option(
        True, "--git/--no-git", help="Reuse git blob ids for tracked files"
    ),
    json_output: bool = typer.Option(
        False, "--json", help="Print path to hash mapping as JSON"
    ),
) -> None:
    """Compute content hashes the way ingest does.

    Tracked, unmodified files take their blob id from the git index; other
    files are read and hashed with git's blob framing, so both agree.

    Example:
        code-graph-sync hash-cache src/main/java/com/example/Foo.java
    """
    project_root: Path = ctx.obj["project_root"]
    cache = HashCache(project_root, use_git=use_git).build()

    if paths:
        hashes = {p: cache.get(p) for p in paths}
    else:
        hashes = dict(sorted(cache.items()))

    if json_output:
        print_json(hashes)
        return

    if paths:
        table = Table(title="Content hashes")
        table.add_column("Path", style="cyan", overflow="fold")
        table.add_column(cache.hasher.algorithm)
        for path, digest in hashes.items():
            table.add_row(path, digest)
        console.print(table)
    source = "git index + direct reads" if cache.git_backed else "direct reads"
    print_success(
        f"{len(cache):,} files hashed with {cache.hasher.algorithm} ({source})"
    )
