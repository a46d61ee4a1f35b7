"""Ingest command: feed descriptor streams through the upsert engine."""

import asyncio
import signal
import threading
from pathlib import Path
from typing import Any

import typer
from loguru import logger

from ...config.defaults import DEFAULT_ROOT_CONTAINER_ID
from ...config.settings import SyncConfig
from ...core.descriptors import Descriptor, EntityDescriptor, iter_jsonl
from ...core.factory import ComponentFactory, StoreBackend
from ...core.git import GitError, GitManager, RepositoryMetadata
from ...core.hashing import HashCache
from ...core.identity import IdentifierResolver
from ...core.models import ConflictPolicy, ContainmentCandidate, UpsertMode
from ...core.subprojects import SubProjectDetector
from ...core.upsert import RunResult
from ..output import (
    console,
    handle_cli_errors,
    print_failures,
    print_info,
    print_json,
    print_run_summary,
    print_warning,
)
from ..progress import ProgressTracker

# Set by the first Ctrl+C; the engine stops dispatching new work
_cancellation_flag = threading.Event()


def _reset_cancellation_flag() -> None:
    _cancellation_flag.clear()


def _interrupt_handler(signum: int, frame: Any) -> None:
    if _cancellation_flag.is_set():
        raise KeyboardInterrupt
    _cancellation_flag.set()
    print_warning("Cancelling after in-flight writes finish (Ctrl+C again to abort)")


def read_descriptors(files: list[Path]) -> list[Descriptor]:
    """Parse JSON-Lines descriptor files in order.

    Raises:
        ValueError: A line is not a valid descriptor; names file and line
    """
    descriptors: list[Descriptor] = []
    for path in files:
        with open(path, "rb") as f:
            try:
                descriptors.extend(iter_jsonl(f))
            except ValueError as e:
                raise ValueError(f"{path}: {e}") from e
    return descriptors


def repository_metadata(project_root: Path) -> RepositoryMetadata:
    """Metadata from git, or a bare name/path record outside a repository."""
    try:
        return GitManager(project_root).repository_metadata()
    except GitError as e:
        logger.debug(f"No git metadata for {project_root}: {e}")
        return RepositoryMetadata(name=project_root.name, path=project_root.as_posix())


def structure_descriptors(
    project_root: Path, config: SyncConfig
) -> tuple[list[Descriptor], list[ContainmentCandidate], SyncConfig]:
    """Repository and sub-project descriptors plus containment candidates.

    Unless a root container was configured explicitly, entities that no
    sub-project encloses fall back to the repository node.
    """
    identifier = IdentifierResolver()
    detector = SubProjectDetector(project_root, identifier=identifier)
    projects = detector.detect()
    repository = repository_metadata(project_root)
    descriptors = detector.descriptors(projects, repository)
    candidates = detector.candidates(projects, repository.name)

    if config.root_container_id == DEFAULT_ROOT_CONTAINER_ID:
        repo = descriptors[0]
        repo_id = identifier.resolve(
            repo.kind, repo.container_path, repo.local_name, repo.disambiguator
        )
        config = config.model_copy(update={"root_container_id": repo_id})
    return descriptors, candidates, config


def _run_payload(result: RunResult) -> dict[str, Any]:
    return {
        "summary": result.summary.to_dict(),
        "failures": [
            {
                "target": r.target_id,
                "kind": r.kind,
                "error": r.error,
                "retryable": r.retryable,
            }
            for r in result.entity_results + result.relationship_results
            if not r.success
        ],
        "deferred": [d.model_dump(mode="json", by_alias=True) for d in result.deferred],
    }


@handle_cli_errors("Ingest")
def ingest(
    ctx: typer.Context,
    files: list[Path] = typer.Argument(
        ...,
        help="JSON-Lines descriptor files, processed in order",
        exists=True,
        dir_okay=False,
        readable=True,
    ),
    mode: UpsertMode | None = typer.Option(
        None,
        "--mode",
        "-m",
        help="Upsert mode (default INCREMENTAL)",
        case_sensitive=False,
    ),
    conflict: ConflictPolicy | None = typer.Option(
        None,
        "--conflict",
        "-c",
        help="Conflict policy (default UPDATE)",
        case_sensitive=False,
    ),
    backend: StoreBackend = typer.Option(
        StoreBackend.KUZU, "--backend", "-b", help="Graph store backend"
    ),
    db_path: Path | None = typer.Option(
        None, "--db-path", help="Graph database directory (default: state dir)"
    ),
    audit_dir: Path | None = typer.Option(
        None, "--audit-dir", help="Audit trail directory (default: state dir)"
    ),
    no_audit: bool = typer.Option(
        False, "--no-audit", help="Disable the audit trail"
    ),
    config_path: Path | None = typer.Option(
        None, "--config", help="YAML or JSON run configuration", dir_okay=False
    ),
    workers: int | None = typer.Option(
        None, "--workers", "-w", min=1, help="Concurrent upserts (default: auto)"
    ),
    timeout: float | None = typer.Option(
        None, "--timeout", help="Per-call store timeout in seconds"
    ),
    detect_subprojects: bool = typer.Option(
        False,
        "--detect-subprojects",
        help="Add repository and sub-project nodes and use them as containers",
    ),
    hash_files: bool = typer.Option(
        True,
        "--hash/--no-hash",
        help="Hash source files for entities without a contentHash",
    ),
    use_git: bool = typer.Option(
        True, "--git/--no-git", help="Reuse git blob ids for tracked files"
    ),
    json_output: bool = typer.Option(
        False, "--json", help="Print the result as JSON"
    ),
) -> None:
    """Upsert entity and relationship descriptors into the graph.

    Each input line is a JSON object with ``"type": "entity"`` or
    ``"type": "relationship"``. Re-ingesting unchanged input is a no-op.

    [bold cyan]Examples:[/bold cyan]

        $ code-graph-sync ingest entities.jsonl edges.jsonl

        $ code-graph-sync ingest --detect-subprojects --mode FULL out.jsonl
    """
    project_root: Path = ctx.obj["project_root"]
    tracker = ProgressTracker(
        console, verbose=ctx.obj.get("verbose", False), enabled=not json_output
    )

    config = ComponentFactory.load_config(
        project_root,
        config_path,
        upsert_mode=mode,
        conflict_resolution=conflict,
        audit_trail=False if no_audit else None,
        workers=workers,
        store_timeout=timeout,
    )

    tracker.start("Syncing code graph", total_phases=3 if detect_subprojects else 2)
    tracker.phase("Reading descriptors")
    descriptors = read_descriptors(files)
    tracker.item(
        f"{len(descriptors):,} descriptors from {len(files)} file(s)", done=True
    )

    candidates: list[ContainmentCandidate] = []
    if detect_subprojects:
        tracker.phase("Detecting sub-projects")
        structure, candidates, config = structure_descriptors(project_root, config)
        descriptors = structure + descriptors
        tracker.item(f"{len(candidates)} sub-project(s)", done=True)
        tracker.debug(f"Root container: {config.root_container_id}")

    needs_hash = hash_files and any(
        isinstance(d, EntityDescriptor) and d.source_path and d.content_hash is None
        for d in descriptors
    )
    hash_cache = HashCache(project_root, use_git=use_git) if needs_hash else None

    tracker.phase("Upserting")
    bundle = ComponentFactory.create_components(
        project_root,
        config,
        backend=backend,
        db_path=db_path,
        audit_dir=audit_dir,
        hash_cache=hash_cache,
        candidates=candidates,
    )
    _reset_cancellation_flag()
    bundle.engine.cancellation_flag = _cancellation_flag
    bundle.engine.progress_callback = tracker.engine_callback

    previous_handler = None
    if threading.current_thread() is threading.main_thread():
        previous_handler = signal.signal(signal.SIGINT, _interrupt_handler)
    try:
        result = asyncio.run(bundle.engine.run(descriptors))
    finally:
        if previous_handler is not None:
            signal.signal(signal.SIGINT, previous_handler)
        bundle.close()

    summary = result.summary
    tracker.complete(f"Run {result.operation_id} finished")

    if json_output:
        print_json(_run_payload(result))
    else:
        print_run_summary(summary)
        print_failures(result.entity_results + result.relationship_results)
        if result.deferred:
            print_warning(
                f"{len(result.deferred)} relationship(s) deferred, "
                "endpoints not in the graph yet"
            )
        if config.audit_trail:
            print_info(
                f"Audit trail: code-graph-sync audit show {result.operation_id}"
            )

    if summary.failed or summary.edges_failed:
        raise typer.Exit(1)
