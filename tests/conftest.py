"""Shared fixtures for code-graph-sync tests."""

from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

from code_graph_sync.config.settings import SyncConfig
from code_graph_sync.core.audit import AuditRecorder
from code_graph_sync.core.graph_store import InMemoryGraphStore
from code_graph_sync.core.upsert import UpsertEngine


class FakeClock:
    """Deterministic clock; each call advances one second."""

    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2024, 1, 1, tzinfo=UTC)

    def __call__(self) -> datetime:
        self.now += timedelta(seconds=1)
        return self.now


@pytest.fixture
def temp_project_dir(tmp_path: Path) -> Path:
    """Empty project directory."""
    project = tmp_path / "project"
    project.mkdir()
    return project


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store() -> InMemoryGraphStore:
    return InMemoryGraphStore()


@pytest.fixture
def make_engine(store, clock):
    """Build an engine over the in-memory store with fast retries."""

    def _make(
        target_store=None,
        recorder=None,
        hash_cache=None,
        candidates=None,
        **config_overrides,
    ) -> UpsertEngine:
        settings = {
            "workers": 4,
            "store_timeout": 2.0,
            "retry_base_delay": 0.0,
            "retry_max_delay": 0.0,
            **config_overrides,
        }
        return UpsertEngine(
            target_store or store,
            config=SyncConfig(**settings),
            recorder=recorder or AuditRecorder(),
            hash_cache=hash_cache,
            candidates=candidates,
            clock=clock,
        )

    return _make
