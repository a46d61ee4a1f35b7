"""Tests for SyncConfig loading and validation."""

import pytest

from code_graph_sync.config.settings import SyncConfig
from code_graph_sync.core.exceptions import ConfigError
from code_graph_sync.core.models import ConflictPolicy, UpsertMode


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for key in ("WORKERS", "STORE_TIMEOUT", "MAX_RETRIES"):
        monkeypatch.delenv(f"CODE_GRAPH_SYNC_{key}", raising=False)


class TestSyncConfig:
    def test_defaults(self):
        config = SyncConfig()
        assert config.conflict_resolution is ConflictPolicy.UPDATE
        assert config.upsert_mode is UpsertMode.INCREMENTAL
        assert config.audit_trail is True
        assert config.workers is None

    def test_camel_case_aliases(self):
        config = SyncConfig.model_validate(
            {"conflictResolution": "FAIL", "auditTrail": False, "upsertMode": "FULL"}
        )
        assert config.conflict_resolution is ConflictPolicy.FAIL
        assert config.audit_trail is False
        assert config.upsert_mode is UpsertMode.FULL

    def test_unknown_field_rejected(self):
        with pytest.raises(ValueError):
            SyncConfig(batch_size=10)

    def test_retry_delays_validated(self):
        with pytest.raises(ValueError, match="retry_max_delay"):
            SyncConfig(retry_base_delay=5.0, retry_max_delay=1.0)


class TestLoad:
    def test_missing_file_gives_defaults(self, tmp_path):
        assert SyncConfig.load(tmp_path / "config.yaml") == SyncConfig()

    def test_yaml_file(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("conflictResolution: SKIP\nworkers: 3\n")

        config = SyncConfig.load(path)

        assert config.conflict_resolution is ConflictPolicy.SKIP
        assert config.workers == 3

    def test_json_file(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text('{"upsertMode": "INSERT_ONLY"}')
        assert SyncConfig.load(path).upsert_mode is UpsertMode.INSERT_ONLY

    def test_precedence(self, tmp_path, monkeypatch):
        path = tmp_path / "config.yaml"
        path.write_text("workers: 2\nmax_retries: 1\nstore_timeout: 5\n")
        monkeypatch.setenv("CODE_GRAPH_SYNC_WORKERS", "6")
        monkeypatch.setenv("CODE_GRAPH_SYNC_MAX_RETRIES", "4")

        config = SyncConfig.load(path, max_retries=9, store_timeout=None)

        assert config.workers == 6  # env beats file
        assert config.max_retries == 9  # override beats env
        assert config.store_timeout == 5.0  # None override ignored

    def test_camel_case_file_with_overrides(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text(
            "upsertMode: INCREMENTAL\nconflictResolution: FAIL\nauditTrail: true\n"
        )

        config = SyncConfig.load(
            path,
            upsert_mode=UpsertMode.FULL,
            audit_trail=False,
            conflict_resolution=None,
        )

        assert config.upsert_mode is UpsertMode.FULL
        assert config.audit_trail is False
        assert config.conflict_resolution is ConflictPolicy.FAIL

    def test_camel_case_override_beats_file(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("upsert_mode: FULL\n")

        config = SyncConfig.load(path, upsertMode="INSERT_ONLY")

        assert config.upsert_mode is UpsertMode.INSERT_ONLY

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("workers: [1,\n")
        with pytest.raises(ConfigError):
            SyncConfig.load(path)

    def test_non_mapping(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("- a\n- b\n")
        with pytest.raises(ConfigError, match="mapping"):
            SyncConfig.load(path)

    def test_invalid_value(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("workers: 0\n")
        with pytest.raises(ConfigError):
            SyncConfig.load(path)

    def test_save_round_trip(self, tmp_path):
        path = tmp_path / "state" / "config.yaml"
        config = SyncConfig(conflict_resolution=ConflictPolicy.FAIL, workers=2)

        config.save(path)

        assert SyncConfig.load(path) == config
