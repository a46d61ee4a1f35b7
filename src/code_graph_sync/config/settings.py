"""Run configuration for code-graph-sync."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

import orjson
import yaml
from loguru import logger
from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from ..core.exceptions import ConfigError
from ..core.models import ConflictPolicy, UpsertMode
from .defaults import (
    DEFAULT_MAX_RETRIES,
    DEFAULT_RETRY_BASE_DELAY,
    DEFAULT_RETRY_MAX_DELAY,
    DEFAULT_ROOT_CONTAINER_ID,
    DEFAULT_STORE_TIMEOUT_SECONDS,
)

ENV_PREFIX = "CODE_GRAPH_SYNC_"


class SyncConfig(BaseModel):
    """Settings for one ingestion run.

    Camel-case aliases (``conflictResolution``, ``auditTrail``,
    ``upsertMode``) are accepted so request-style payloads load unchanged.
    """

    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    conflict_resolution: ConflictPolicy = Field(
        default=ConflictPolicy.UPDATE, alias="conflictResolution"
    )
    audit_trail: bool = Field(default=True, alias="auditTrail")
    upsert_mode: UpsertMode = Field(default=UpsertMode.INCREMENTAL, alias="upsertMode")

    store_timeout: float = Field(default=DEFAULT_STORE_TIMEOUT_SECONDS, gt=0)
    max_retries: int = Field(default=DEFAULT_MAX_RETRIES, ge=0)
    retry_base_delay: float = Field(default=DEFAULT_RETRY_BASE_DELAY, ge=0)
    retry_max_delay: float = Field(default=DEFAULT_RETRY_MAX_DELAY, ge=0)

    # None = size from store concurrency, capped by memory
    workers: int | None = Field(default=None, ge=1)

    # On NoContainerFound: attach to root_container_id, or fail the entity
    containment_fallback: bool = True
    root_container_id: str = DEFAULT_ROOT_CONTAINER_ID

    @model_validator(mode="after")
    def _check_delays(self) -> SyncConfig:
        if self.retry_max_delay < self.retry_base_delay:
            raise ValueError("retry_max_delay must be >= retry_base_delay")
        return self

    @classmethod
    def load(cls, path: Path | None = None, **overrides: Any) -> SyncConfig:
        """Build a config from an optional YAML/JSON file, env vars and overrides.

        Precedence, lowest first: defaults, file, environment, ``overrides``.
        Overrides whose value is None are ignored so CLI options can be passed
        through unconditionally.

        Environment Variables:
            CODE_GRAPH_SYNC_WORKERS: Worker count
            CODE_GRAPH_SYNC_STORE_TIMEOUT: Store call timeout in seconds
            CODE_GRAPH_SYNC_MAX_RETRIES: Retry budget for transient store errors

        Raises:
            ConfigError: Unreadable file or invalid values
        """
        data: dict[str, Any] = {}
        if path is not None and path.exists():
            data.update(cls._by_field_name(_read_config_file(path)))

        for key in ("workers", "store_timeout", "max_retries"):
            value = os.environ.get(f"{ENV_PREFIX}{key.upper()}")
            if value:
                data[key] = value

        overrides = {k: v for k, v in overrides.items() if v is not None}
        data.update(cls._by_field_name(overrides))

        try:
            return cls.model_validate(data)
        except ValidationError as e:
            raise ConfigError(f"Invalid configuration: {e}", {"path": str(path)}) from e

    @classmethod
    def _by_field_name(cls, data: dict[str, Any]) -> dict[str, Any]:
        """Rename camel-case alias keys so later sources override earlier ones."""
        names = {
            info.alias: name
            for name, info in cls.model_fields.items()
            if info.alias is not None
        }
        return {names.get(key, key): value for key, value in data.items()}

    def save(self, path: Path) -> None:
        """Save configuration as YAML."""
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w") as f:
            yaml.safe_dump(self.model_dump(mode="json"), f, sort_keys=False)
        logger.debug(f"Saved configuration to {path}")


def _read_config_file(path: Path) -> dict[str, Any]:
    try:
        raw = path.read_bytes()
        if path.suffix == ".json":
            data = orjson.loads(raw)
        else:
            data = yaml.safe_load(raw) or {}
    except (OSError, orjson.JSONDecodeError, yaml.YAMLError) as e:
        raise ConfigError(
            f"Failed to load configuration: {e}", {"path": str(path)}
        ) from e

    if not isinstance(data, dict):
        raise ConfigError(
            f"Configuration must be a mapping, got {type(data).__name__}",
            {"path": str(path)},
        )
    return data
