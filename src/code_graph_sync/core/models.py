"""Core data models for graph synchronization.

Entities and relationships are plain dataclasses (the graph store is their
system of record); audit records are frozen so nothing downstream can edit
a decision after it has been recorded.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from pathlib import PurePosixPath
from types import MappingProxyType
from typing import Any


class EntityKind(StrEnum):
    REPOSITORY = "Repository"
    SUBPROJECT = "SubProject"
    PACKAGE = "Package"
    FILE = "File"
    CLASS = "Class"
    METHOD = "Method"
    FIELD = "Field"
    ANNOTATION = "Annotation"

    @classmethod
    def parse(cls, value: str | EntityKind) -> EntityKind:
        """Parse a kind name case-insensitively ("class", "sub_project", ...)."""
        if isinstance(value, EntityKind):
            return value
        key = str(value).strip().replace("_", "").replace("-", "").lower()
        for kind in cls:
            if kind.value.lower() == key:
                return kind
        raise ValueError(f"Unknown entity kind: {value!r}")


class RelationshipType(StrEnum):
    CONTAINS = "CONTAINS"
    EXTENDS = "EXTENDS"
    IMPLEMENTS = "IMPLEMENTS"
    USES = "USES"
    CALLS = "CALLS"
    DEPENDS_ON = "DEPENDS_ON"
    IMPORTS_FROM = "IMPORTS_FROM"
    SHARES_WITH = "SHARES_WITH"

    @classmethod
    def parse(cls, value: str | RelationshipType) -> RelationshipType:
        if isinstance(value, RelationshipType):
            return value
        try:
            return cls(str(value).strip().upper())
        except ValueError:
            raise ValueError(f"Unknown relationship type: {value!r}") from None


class Decision(StrEnum):
    INSERT = "INSERT"
    UPDATE = "UPDATE"
    SKIP = "SKIP"
    FAIL = "FAIL"


class ConflictPolicy(StrEnum):
    """What to do when an existing node differs from the incoming one."""

    UPDATE = "UPDATE"
    SKIP = "SKIP"
    FAIL = "FAIL"


class UpsertMode(StrEnum):
    INCREMENTAL = "INCREMENTAL"  # hash fast path enabled
    FULL = "FULL"  # always compare properties
    INSERT_ONLY = "INSERT_ONLY"  # never touch existing nodes


@dataclass
class Entity:
    """A node in the code graph."""

    id: str
    kind: EntityKind
    properties: dict[str, Any] = field(default_factory=dict)
    content_hash: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def name(self) -> str:
        return str(self.properties.get("name", self.id))

    def snapshot(self) -> dict[str, Any]:
        """Copy of the properties including the content hash, for audit."""
        data = dict(self.properties)
        if self.content_hash is not None:
            data["contentHash"] = self.content_hash
        return data


@dataclass
class Relationship:
    """A directed, typed edge. Identity is the (from, to, type) triple."""

    from_id: str
    to_id: str
    type: RelationshipType
    metadata: dict[str, Any] = field(default_factory=dict)
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def key(self) -> tuple[str, str, RelationshipType]:
        return (self.from_id, self.to_id, self.type)


@dataclass(frozen=True)
class ContainmentCandidate:
    """A possible parent container and the path it is rooted at."""

    container_id: str
    path: str

    @property
    def parts(self) -> tuple[str, ...]:
        return normalized_parts(self.path)

    @property
    def depth(self) -> int:
        return len(self.parts)


def normalized_parts(path: str) -> tuple[str, ...]:
    """Split a path into segments, treating ``\\`` as ``/`` and ignoring ``.``."""
    cleaned = str(path).strip().replace("\\", "/")
    return tuple(p for p in PurePosixPath(cleaned).parts if p not in ("/", ".", ""))


@dataclass(frozen=True)
class PropertyDiff:
    """Property-level changes to apply to a stored entity."""

    changes: MappingProxyType = field(default_factory=lambda: MappingProxyType({}))
    removed: tuple[str, ...] = ()
    content_hash: str | None = None
    updated_at: datetime | None = None

    def __post_init__(self) -> None:
        if not isinstance(self.changes, MappingProxyType):
            object.__setattr__(self, "changes", MappingProxyType(dict(self.changes)))
        object.__setattr__(self, "removed", tuple(self.removed))

    def apply(self, properties: dict[str, Any]) -> dict[str, Any]:
        merged = {k: v for k, v in properties.items() if k not in self.removed}
        merged.update(self.changes)
        return merged


@dataclass(frozen=True)
class AuditRecord:
    """Immutable record of one upsert decision."""

    operation_id: str
    target_id: str
    kind: str
    decision: Decision
    before_properties: MappingProxyType | None
    after_properties: MappingProxyType | None
    timestamp: datetime
    reason: str | None = None
    conflict_resolution: str | None = None
    execution_time_ms: float = 0.0
    retryable: bool = False

    def __post_init__(self) -> None:
        for name in ("before_properties", "after_properties"):
            value = getattr(self, name)
            if value is not None and not isinstance(value, MappingProxyType):
                object.__setattr__(self, name, MappingProxyType(dict(value)))

    def to_dict(self) -> dict[str, Any]:
        return {
            "operationId": self.operation_id,
            "entityOrRelationshipId": self.target_id,
            "kind": self.kind,
            "decision": self.decision.value,
            "beforeProperties": (
                dict(self.before_properties)
                if self.before_properties is not None
                else None
            ),
            "afterProperties": (
                dict(self.after_properties)
                if self.after_properties is not None
                else None
            ),
            "timestamp": self.timestamp.isoformat(),
            "reason": self.reason,
            "conflictResolution": self.conflict_resolution,
            "executionTimeMs": self.execution_time_ms,
            "retryable": self.retryable,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AuditRecord:
        return cls(
            operation_id=data["operationId"],
            target_id=data["entityOrRelationshipId"],
            kind=data["kind"],
            decision=Decision(data["decision"]),
            before_properties=data.get("beforeProperties"),
            after_properties=data.get("afterProperties"),
            timestamp=datetime.fromisoformat(data["timestamp"]),
            reason=data.get("reason"),
            conflict_resolution=data.get("conflictResolution"),
            execution_time_ms=data.get("executionTimeMs", 0.0),
            retryable=data.get("retryable", False),
        )


@dataclass
class UpsertResult:
    """Outcome of a single entity or relationship upsert."""

    target_id: str
    kind: str
    decision: Decision
    operation_id: str
    changed_properties: dict[str, Any] = field(default_factory=dict)
    error: str | None = None
    retryable: bool = False
    processing_time_ms: float = 0.0

    @property
    def success(self) -> bool:
        return self.decision is not Decision.FAIL


@dataclass
class RunSummary:
    """Per-run counters reported to callers."""

    operation_id: str
    total_entities: int = 0
    inserted: int = 0
    updated: int = 0
    skipped: int = 0
    failed: int = 0
    execution_time_ms: float = 0.0
    edges_created: int = 0
    edges_updated: int = 0
    edges_skipped: int = 0
    edges_failed: int = 0
    edges_deferred: int = 0
    cancelled: bool = False

    def count_entity(self, decision: Decision) -> None:
        self.total_entities += 1
        if decision is Decision.INSERT:
            self.inserted += 1
        elif decision is Decision.UPDATE:
            self.updated += 1
        elif decision is Decision.SKIP:
            self.skipped += 1
        else:
            self.failed += 1

    def count_edge(self, decision: Decision) -> None:
        if decision is Decision.INSERT:
            self.edges_created += 1
        elif decision is Decision.UPDATE:
            self.edges_updated += 1
        elif decision is Decision.SKIP:
            self.edges_skipped += 1
        else:
            self.edges_failed += 1

    def to_dict(self) -> dict[str, Any]:
        return {
            "operationId": self.operation_id,
            "totalEntities": self.total_entities,
            "inserted": self.inserted,
            "updated": self.updated,
            "skipped": self.skipped,
            "failed": self.failed,
            "executionTimeMs": round(self.execution_time_ms, 3),
            "edgesCreated": self.edges_created,
            "edgesUpdated": self.edges_updated,
            "edgesSkipped": self.edges_skipped,
            "edgesFailed": self.edges_failed,
            "edgesDeferred": self.edges_deferred,
            "cancelled": self.cancelled,
        }
