"""Component factory wiring stores, config and the engine for one project."""

from dataclasses import dataclass
from enum import StrEnum
from pathlib import Path
from typing import Any

from loguru import logger

from ..config.defaults import (
    get_default_audit_dir,
    get_default_config_path,
    get_default_db_path,
)
from ..config.settings import SyncConfig
from .audit import AuditRecorder
from .graph_store import GraphStore, InMemoryGraphStore
from .hashing import HashCache
from .models import ContainmentCandidate
from .upsert import UpsertEngine


class StoreBackend(StrEnum):
    KUZU = "kuzu"
    MEMORY = "memory"


def create_store(
    backend: StoreBackend | str,
    db_path: Path | None = None,
    timeout: float | None = None,
) -> GraphStore:
    """Open a graph store.

    The Kuzu import is deferred so the in-memory backend works without
    loading the database bindings.
    """
    backend = StoreBackend(backend)
    if backend is StoreBackend.MEMORY:
        return InMemoryGraphStore()

    if db_path is None:
        raise ValueError("The kuzu backend needs a database path")
    from .kuzu_store import KuzuGraphStore

    return KuzuGraphStore(db_path, default_timeout=timeout)


@dataclass
class ComponentBundle:
    """Everything a sync command needs for one project."""

    project_root: Path
    config: SyncConfig
    store: GraphStore
    recorder: AuditRecorder
    engine: UpsertEngine

    def close(self) -> None:
        self.store.close()


class ComponentFactory:
    """Factory for the components of a sync run."""

    @staticmethod
    def load_config(
        project_root: Path, config_path: Path | None = None, **overrides: Any
    ) -> SyncConfig:
        return SyncConfig.load(
            config_path or get_default_config_path(project_root), **overrides
        )

    @staticmethod
    def create_recorder(
        project_root: Path, config: SyncConfig, audit_dir: Path | None = None
    ) -> AuditRecorder:
        return AuditRecorder(
            audit_dir=audit_dir or get_default_audit_dir(project_root),
            enabled=config.audit_trail,
        )

    @staticmethod
    def create_components(
        project_root: Path,
        config: SyncConfig,
        backend: StoreBackend | str = StoreBackend.KUZU,
        db_path: Path | None = None,
        audit_dir: Path | None = None,
        hash_cache: HashCache | None = None,
        candidates: list[ContainmentCandidate] | None = None,
    ) -> ComponentBundle:
        project_root = Path(project_root).resolve()
        store = create_store(
            backend,
            db_path or get_default_db_path(project_root),
            timeout=config.store_timeout,
        )
        recorder = ComponentFactory.create_recorder(project_root, config, audit_dir)
        engine = UpsertEngine(
            store,
            config=config,
            recorder=recorder,
            hash_cache=hash_cache,
            candidates=candidates,
        )
        logger.debug(
            f"Components ready: backend={backend}, workers={engine.workers}, "
            f"audit={'on' if config.audit_trail else 'off'}"
        )
        return ComponentBundle(
            project_root=project_root,
            config=config,
            store=store,
            recorder=recorder,
            engine=engine,
        )
