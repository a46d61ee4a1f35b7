"""Graph store backed by the Kuzu embedded graph database.

Schema:
- one ``CodeEntity`` node table keyed by ``id`` (ids are kind-prefixed, so
  the primary-key index also enforces uniqueness per kind); ``content_hash``
  is a dedicated column, properties are stored as a JSON string
- one relationship table per RelationshipType, CodeEntity to CodeEntity,
  carrying JSON ``metadata`` and timestamps

Kuzu's Rust bindings are not thread-safe, so every query runs under one lock
on the caller's thread and ``thread_safe`` is False: the engine calls this
store on the event-loop thread and relies on Kuzu's own query timeout.
"""

import threading
from collections.abc import Iterator
from datetime import datetime
from pathlib import Path
from typing import Any

import kuzu
import orjson
from loguru import logger

from .exceptions import (
    MissingEndpointError,
    StoreError,
    StoreTimeout,
    StoreUnavailable,
)
from .graph_store import GraphStore
from .models import Entity, EntityKind, PropertyDiff, Relationship, RelationshipType

_ENTITY_COLUMNS = (
    "e.id, e.kind, e.properties, e.content_hash, e.created_at, e.updated_at"
)


def _dump(data: dict[str, Any]) -> str:
    return orjson.dumps(data, option=orjson.OPT_SORT_KEYS).decode()


def _load(raw: str | None) -> dict[str, Any]:
    return orjson.loads(raw) if raw else {}


def _ts(value: datetime | None) -> str:
    return value.isoformat() if value is not None else ""


def _parse_ts(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


class KuzuGraphStore(GraphStore):
    """Kuzu-based graph store for code entities and their relationships."""

    thread_safe = False
    max_concurrency = 1

    def __init__(self, db_path: Path, default_timeout: float | None = None):
        """Open (and create if needed) the database.

        Args:
            db_path: Directory holding the Kuzu database files
            default_timeout: Query timeout in seconds when a call passes none
        """
        self.db_path = Path(db_path)
        self.default_timeout = default_timeout
        self.db = None
        self.conn = None
        self._timeout_ms: int | None = None
        self._kuzu_lock = threading.Lock()
        self._initialized = False
        self.initialize()

    def initialize(self) -> None:
        if self._initialized:
            return

        # Ensure parent directory exists, but let Kuzu create the db directory
        self.db_path.mkdir(parents=True, exist_ok=True)
        db_dir = self.db_path / "code_graph"
        try:
            with self._kuzu_lock:
                self.db = kuzu.Database(str(db_dir))
                self.conn = kuzu.Connection(self.db)
                logger.debug(
                    f"Kuzu database and connection created in thread "
                    f"{threading.current_thread().name}"
                )
                self._create_schema()
        except RuntimeError as e:
            raise StoreUnavailable(
                f"Cannot open graph database at {db_dir}: {e}", {"path": str(db_dir)}
            ) from e

        self._initialized = True
        logger.info(f"Graph store initialized at {db_dir}")

    def _create_schema(self) -> None:
        self.conn.execute(
            """
            CREATE NODE TABLE IF NOT EXISTS CodeEntity (
                id STRING PRIMARY KEY,
                kind STRING,
                name STRING,
                properties STRING,
                content_hash STRING,
                created_at STRING,
                updated_at STRING
            )
        """
        )
        for rel_type in RelationshipType:
            self.conn.execute(
                f"""
                CREATE REL TABLE IF NOT EXISTS {rel_type.value} (
                    FROM CodeEntity TO CodeEntity,
                    metadata STRING,
                    created_at STRING,
                    updated_at STRING,
                    MANY_MANY
                )
            """
            )
        logger.debug(f"Schema ready: CodeEntity + {len(RelationshipType)} rel tables")

    def _execute(
        self,
        query: str,
        params: dict[str, Any] | None = None,
        timeout: float | None = None,
    ) -> list[list[Any]]:
        """Run one query under the lock and return all rows.

        Kuzu errors are translated: interrupted queries become StoreTimeout,
        a closed connection StoreUnavailable, everything else StoreError.
        """
        timeout = timeout if timeout is not None else self.default_timeout
        with self._kuzu_lock:
            if self.conn is None:
                raise StoreUnavailable("Graph store is closed")
            try:
                self._apply_timeout(timeout)
                result = self.conn.execute(query, params or {})
                rows = []
                while result.has_next():
                    rows.append(result.get_next())
                return rows
            except RuntimeError as e:
                message = str(e)
                lowered = message.lower()
                if "interrupt" in lowered or "timeout" in lowered:
                    raise StoreTimeout(
                        f"Graph query exceeded {timeout}s",
                        {"query": query.strip()[:80]},
                    ) from e
                if "closed" in lowered or "connection" in lowered:
                    raise StoreUnavailable(message) from e
                raise StoreError(message, {"query": query.strip()[:80]}) from e

    def _apply_timeout(self, timeout: float | None) -> None:
        # 0 disables Kuzu's timeout
        ms = max(1, int(timeout * 1000)) if timeout else 0
        if ms != self._timeout_ms:
            self.conn.set_query_timeout(ms)
            self._timeout_ms = ms

    @staticmethod
    def _row_to_entity(row: list[Any]) -> Entity:
        entity_id, kind, properties, content_hash, created_at, updated_at = row
        return Entity(
            id=entity_id,
            kind=EntityKind(kind),
            properties=_load(properties),
            content_hash=content_hash or None,
            created_at=_parse_ts(created_at),
            updated_at=_parse_ts(updated_at),
        )

    def ping(self, timeout: float | None = None) -> None:
        self._execute("RETURN 1", timeout=timeout)

    def exists(self, entity_id: str, timeout: float | None = None) -> bool:
        rows = self._execute(
            "MATCH (e:CodeEntity) WHERE e.id = $id RETURN count(e)",
            {"id": entity_id},
            timeout,
        )
        return bool(rows and rows[0][0])

    def get(self, entity_id: str, timeout: float | None = None) -> Entity | None:
        rows = self._execute(
            f"MATCH (e:CodeEntity) WHERE e.id = $id RETURN {_ENTITY_COLUMNS}",
            {"id": entity_id},
            timeout,
        )
        return self._row_to_entity(rows[0]) if rows else None

    def create(self, entity: Entity, timeout: float | None = None) -> None:
        self._execute(
            """
            CREATE (e:CodeEntity {
                id: $id,
                kind: $kind,
                name: $name,
                properties: $properties,
                content_hash: $content_hash,
                created_at: $created_at,
                updated_at: $updated_at
            })
        """,
            {
                "id": entity.id,
                "kind": str(entity.kind),
                "name": entity.name,
                "properties": _dump(entity.properties),
                "content_hash": entity.content_hash or "",
                "created_at": _ts(entity.created_at),
                "updated_at": _ts(entity.updated_at),
            },
            timeout,
        )

    def update(
        self, entity_id: str, diff: PropertyDiff, timeout: float | None = None
    ) -> Entity:
        current = self.get(entity_id, timeout=timeout)
        if current is None:
            raise StoreError(f"Entity not found: {entity_id}", {"id": entity_id})

        current.properties = diff.apply(current.properties)
        current.content_hash = diff.content_hash
        if diff.updated_at is not None:
            current.updated_at = diff.updated_at

        self._execute(
            """
            MATCH (e:CodeEntity) WHERE e.id = $id
            SET e.properties = $properties,
                e.name = $name,
                e.content_hash = $content_hash,
                e.updated_at = $updated_at
        """,
            {
                "id": entity_id,
                "properties": _dump(current.properties),
                "name": current.name,
                "content_hash": current.content_hash or "",
                "updated_at": _ts(current.updated_at),
            },
            timeout,
        )
        return current

    def get_edge(
        self,
        from_id: str,
        to_id: str,
        rel_type: RelationshipType,
        timeout: float | None = None,
    ) -> Relationship | None:
        rel_type = RelationshipType.parse(rel_type)
        rows = self._execute(
            f"""
            MATCH (a:CodeEntity)-[r:{rel_type.value}]->(b:CodeEntity)
            WHERE a.id = $from_id AND b.id = $to_id
            RETURN r.metadata, r.created_at, r.updated_at
        """,
            {"from_id": from_id, "to_id": to_id},
            timeout,
        )
        if not rows:
            return None
        metadata, created_at, updated_at = rows[0]
        return Relationship(
            from_id=from_id,
            to_id=to_id,
            type=rel_type,
            metadata=_load(metadata),
            created_at=_parse_ts(created_at),
            updated_at=_parse_ts(updated_at),
        )

    def create_edge(self, rel: Relationship, timeout: float | None = None) -> None:
        if self.edge_exists(rel.from_id, rel.to_id, rel.type, timeout=timeout):
            raise StoreError(f"Edge already exists: {rel.key}")

        rows = self._execute(
            f"""
            MATCH (a:CodeEntity), (b:CodeEntity)
            WHERE a.id = $from_id AND b.id = $to_id
            CREATE (a)-[r:{rel.type.value} {{
                metadata: $metadata,
                created_at: $created_at,
                updated_at: $updated_at
            }}]->(b)
            RETURN count(r)
        """,
            {
                "from_id": rel.from_id,
                "to_id": rel.to_id,
                "metadata": _dump(rel.metadata),
                "created_at": _ts(rel.created_at),
                "updated_at": _ts(rel.updated_at),
            },
            timeout,
        )
        if not rows or not rows[0][0]:
            missing = [
                i for i in (rel.from_id, rel.to_id) if not self.exists(i, timeout)
            ]
            raise MissingEndpointError(
                f"Missing endpoint(s) for {rel.type}: {', '.join(missing)}",
                {"missing": missing},
            )

    def update_edge_metadata(
        self,
        from_id: str,
        to_id: str,
        rel_type: RelationshipType,
        metadata: dict[str, Any],
        updated_at: datetime,
        timeout: float | None = None,
    ) -> Relationship:
        rel_type = RelationshipType.parse(rel_type)
        rows = self._execute(
            f"""
            MATCH (a:CodeEntity)-[r:{rel_type.value}]->(b:CodeEntity)
            WHERE a.id = $from_id AND b.id = $to_id
            SET r.metadata = $metadata, r.updated_at = $updated_at
            RETURN r.created_at
        """,
            {
                "from_id": from_id,
                "to_id": to_id,
                "metadata": _dump(metadata),
                "updated_at": _ts(updated_at),
            },
            timeout,
        )
        if not rows:
            raise StoreError(f"Edge not found: {(from_id, to_id, rel_type)}")
        return Relationship(
            from_id=from_id,
            to_id=to_id,
            type=rel_type,
            metadata=dict(metadata),
            created_at=_parse_ts(rows[0][0]),
            updated_at=updated_at,
        )

    def iter_entities(self, kind: EntityKind | None = None) -> Iterator[Entity]:
        if kind is None:
            rows = self._execute(f"MATCH (e:CodeEntity) RETURN {_ENTITY_COLUMNS}")
        else:
            rows = self._execute(
                f"MATCH (e:CodeEntity) WHERE e.kind = $kind RETURN {_ENTITY_COLUMNS}",
                {"kind": str(kind)},
            )
        for row in rows:
            yield self._row_to_entity(row)

    def iter_edges(
        self, rel_type: RelationshipType | None = None
    ) -> Iterator[Relationship]:
        types = [rel_type] if rel_type is not None else list(RelationshipType)
        for t in types:
            rows = self._execute(
                f"""
                MATCH (a:CodeEntity)-[r:{t.value}]->(b:CodeEntity)
                RETURN a.id, b.id, r.metadata, r.created_at, r.updated_at
            """
            )
            for from_id, to_id, metadata, created_at, updated_at in rows:
                yield Relationship(
                    from_id=from_id,
                    to_id=to_id,
                    type=t,
                    metadata=_load(metadata),
                    created_at=_parse_ts(created_at),
                    updated_at=_parse_ts(updated_at),
                )

    def stats(self) -> dict[str, Any]:
        """Entity counts per kind and edge counts per type."""
        entities = {
            kind: count
            for kind, count in self._execute(
                "MATCH (e:CodeEntity) RETURN e.kind, count(e)"
            )
        }
        relationships = {}
        for t in RelationshipType:
            rows = self._execute(f"MATCH ()-[r:{t.value}]->() RETURN count(r)")
            count = rows[0][0] if rows else 0
            if count:
                relationships[t.value] = count
        return {
            "backend": "kuzu",
            "total_entities": sum(entities.values()),
            "total_relationships": sum(relationships.values()),
            "entities": entities,
            "relationships": relationships,
            "database_path": str(self.db_path / "code_graph"),
        }

    def close(self) -> None:
        """Close database connection."""
        with self._kuzu_lock:
            if self.conn:
                self.conn.close()
                self.conn = None
            if self.db:
                self.db.close()
                self.db = None
            self._initialized = False

        logger.debug("Graph store connection closed")
