"""Graph store interface and the in-process implementation.

The store is the system of record and the only component that touches the
database. Every call takes a ``timeout`` in seconds; implementations that can
enforce it natively do so, the rest rely on the engine's ``asyncio.wait_for``.
Values handed out are copies, so callers cannot alter stored state.
"""

import copy
import threading
from abc import ABC, abstractmethod
from collections import Counter
from collections.abc import Iterator
from datetime import datetime
from typing import Any

from loguru import logger

from .exceptions import MissingEndpointError, StoreError, StoreUnavailable
from .models import Entity, EntityKind, PropertyDiff, Relationship, RelationshipType


class GraphStore(ABC):
    """Persistence surface used by the upsert engine and the analyzer."""

    # False when calls must stay on the event-loop thread (Kuzu)
    thread_safe: bool = True
    # Calls served at once; None = as many as the engine's worker threads
    max_concurrency: int | None = None

    @abstractmethod
    def ping(self, timeout: float | None = None) -> None:
        """Raise StoreUnavailable unless the store answers."""

    @abstractmethod
    def exists(self, entity_id: str, timeout: float | None = None) -> bool: ...

    @abstractmethod
    def get(self, entity_id: str, timeout: float | None = None) -> Entity | None: ...

    @abstractmethod
    def create(self, entity: Entity, timeout: float | None = None) -> None:
        """Insert a new node. Raises StoreError if the id is taken."""

    @abstractmethod
    def update(
        self, entity_id: str, diff: PropertyDiff, timeout: float | None = None
    ) -> Entity:
        """Apply a diff to an existing node and return the stored result."""

    @abstractmethod
    def get_edge(
        self,
        from_id: str,
        to_id: str,
        rel_type: RelationshipType,
        timeout: float | None = None,
    ) -> Relationship | None: ...

    def edge_exists(
        self,
        from_id: str,
        to_id: str,
        rel_type: RelationshipType,
        timeout: float | None = None,
    ) -> bool:
        return self.get_edge(from_id, to_id, rel_type, timeout=timeout) is not None

    @abstractmethod
    def create_edge(self, rel: Relationship, timeout: float | None = None) -> None:
        """Insert an edge.

        Raises:
            MissingEndpointError: Either endpoint is not persisted
            StoreError: An edge with the same (from, to, type) already exists
        """

    @abstractmethod
    def update_edge_metadata(
        self,
        from_id: str,
        to_id: str,
        rel_type: RelationshipType,
        metadata: dict[str, Any],
        updated_at: datetime,
        timeout: float | None = None,
    ) -> Relationship:
        """Replace an edge's metadata wholesale."""

    @abstractmethod
    def iter_entities(self, kind: EntityKind | None = None) -> Iterator[Entity]: ...

    @abstractmethod
    def iter_edges(
        self, rel_type: RelationshipType | None = None
    ) -> Iterator[Relationship]: ...

    @abstractmethod
    def stats(self) -> dict[str, Any]: ...

    def close(self) -> None:  # noqa: B027 - optional hook
        pass

    def __enter__(self):
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


class InMemoryGraphStore(GraphStore):
    """Dictionary-backed store guarded by one lock.

    Useful for tests and dry runs; it honours the same uniqueness and
    endpoint rules as the database-backed store.
    """

    thread_safe = True

    def __init__(self) -> None:
        self._entities: dict[str, Entity] = {}
        self._edges: dict[tuple[str, str, RelationshipType], Relationship] = {}
        self._lock = threading.Lock()
        self._closed = False

    def _check_open(self) -> None:
        if self._closed:
            raise StoreUnavailable("In-memory store is closed")

    def ping(self, timeout: float | None = None) -> None:
        self._check_open()

    def exists(self, entity_id: str, timeout: float | None = None) -> bool:
        with self._lock:
            self._check_open()
            return entity_id in self._entities

    def get(self, entity_id: str, timeout: float | None = None) -> Entity | None:
        with self._lock:
            self._check_open()
            entity = self._entities.get(entity_id)
            return copy.deepcopy(entity) if entity is not None else None

    def create(self, entity: Entity, timeout: float | None = None) -> None:
        with self._lock:
            self._check_open()
            if entity.id in self._entities:
                raise StoreError(
                    f"Entity already exists: {entity.id}", {"id": entity.id}
                )
            self._entities[entity.id] = copy.deepcopy(entity)

    def update(
        self, entity_id: str, diff: PropertyDiff, timeout: float | None = None
    ) -> Entity:
        with self._lock:
            self._check_open()
            stored = self._entities.get(entity_id)
            if stored is None:
                raise StoreError(f"Entity not found: {entity_id}", {"id": entity_id})
            stored.properties = diff.apply(stored.properties)
            stored.content_hash = diff.content_hash
            if diff.updated_at is not None:
                stored.updated_at = diff.updated_at
            return copy.deepcopy(stored)

    def get_edge(
        self,
        from_id: str,
        to_id: str,
        rel_type: RelationshipType,
        timeout: float | None = None,
    ) -> Relationship | None:
        with self._lock:
            self._check_open()
            rel = self._edges.get((from_id, to_id, rel_type))
            return copy.deepcopy(rel) if rel is not None else None

    def create_edge(self, rel: Relationship, timeout: float | None = None) -> None:
        with self._lock:
            self._check_open()
            missing = [i for i in (rel.from_id, rel.to_id) if i not in self._entities]
            if missing:
                raise MissingEndpointError(
                    f"Missing endpoint(s) for {rel.type}: {', '.join(missing)}",
                    {"missing": missing},
                )
            if rel.key in self._edges:
                raise StoreError(f"Edge already exists: {rel.key}")
            self._edges[rel.key] = copy.deepcopy(rel)

    def update_edge_metadata(
        self,
        from_id: str,
        to_id: str,
        rel_type: RelationshipType,
        metadata: dict[str, Any],
        updated_at: datetime,
        timeout: float | None = None,
    ) -> Relationship:
        with self._lock:
            self._check_open()
            rel = self._edges.get((from_id, to_id, rel_type))
            if rel is None:
                raise StoreError(f"Edge not found: {(from_id, to_id, rel_type)}")
            rel.metadata = copy.deepcopy(dict(metadata))
            rel.updated_at = updated_at
            return copy.deepcopy(rel)

    def iter_entities(self, kind: EntityKind | None = None) -> Iterator[Entity]:
        with self._lock:
            self._check_open()
            snapshot = [
                copy.deepcopy(e)
                for e in self._entities.values()
                if kind is None or e.kind == kind
            ]
        yield from snapshot

    def iter_edges(
        self, rel_type: RelationshipType | None = None
    ) -> Iterator[Relationship]:
        with self._lock:
            self._check_open()
            snapshot = [
                copy.deepcopy(r)
                for r in self._edges.values()
                if rel_type is None or r.type == rel_type
            ]
        yield from snapshot

    def stats(self) -> dict[str, Any]:
        with self._lock:
            kinds = Counter(str(e.kind) for e in self._entities.values())
            types = Counter(str(r.type) for r in self._edges.values())
            return {
                "backend": "memory",
                "total_entities": len(self._entities),
                "total_relationships": len(self._edges),
                "entities": dict(kinds),
                "relationships": dict(types),
            }

    def close(self) -> None:
        with self._lock:
            self._closed = True
        logger.debug("In-memory graph store closed")
