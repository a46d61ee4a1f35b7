"""Container-level dependency analysis over the persisted graph.

After ingestion, fine-grained edges between entities (a class USES another
class) are rolled up to the coarse containers owning their endpoints:

- one ``DEPENDS_ON`` edge per ordered container pair, carrying
  ``classCount``, ``relationshipCount``, ``dependencyTypes``, ``strength``
  and ``intensity``
- a ``SHARES_WITH`` edge in both directions between containers whose
  dependency sets intersect, carrying the Jaccard ``similarity``
- a read-only cycle report over the persisted ``DEPENDS_ON`` edges

Edges are written through ``UpsertEngine.upsert_relationship`` so re-running
the analysis updates metadata instead of duplicating edges.
"""

import asyncio
from collections import defaultdict, deque
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from typing import Any, TypeVar

import networkx as nx
from loguru import logger

from ..config.thresholds import ThresholdConfig
from .descriptors import RelationshipDescriptor
from .graph_store import GraphStore
from .models import EntityKind, RelationshipType, UpsertResult
from .upsert import UpsertEngine, new_operation_id

T = TypeVar("T")

# Edge types rolled up into container dependencies
FINE_GRAINED_TYPES = (
    RelationshipType.USES,
    RelationshipType.CALLS,
    RelationshipType.EXTENDS,
    RelationshipType.IMPLEMENTS,
    RelationshipType.IMPORTS_FROM,
)


@dataclass
class ContainerDependency:
    """Aggregate of the fine-grained edges from one container to another."""

    source: str
    target: str
    classes: set[str] = field(default_factory=set)
    relationship_count: int = 0
    dependency_types: set[str] = field(default_factory=set)

    @property
    def class_count(self) -> int:
        return len(self.classes)

    @property
    def intensity(self) -> float:
        """Edges per participating source entity."""
        return round(self.relationship_count / max(self.class_count, 1), 3)

    def metadata(self, thresholds: ThresholdConfig) -> dict[str, Any]:
        return {
            "classCount": self.class_count,
            "relationshipCount": self.relationship_count,
            "dependencyTypes": sorted(self.dependency_types),
            "strength": thresholds.get_strength(self.relationship_count),
            "intensity": self.intensity,
        }


@dataclass
class SharedDependency:
    first: str
    second: str
    shared: set[str]
    similarity: float

    def metadata(self) -> dict[str, Any]:
        return {
            "similarity": self.similarity,
            "sharedDependencies": sorted(self.shared),
            "sharedCount": len(self.shared),
        }


@dataclass
class AnalysisReport:
    operation_id: str
    dependencies: list[ContainerDependency] = field(default_factory=list)
    shared: list[SharedDependency] = field(default_factory=list)
    cycles: list[list[str]] = field(default_factory=list)
    results: list[UpsertResult] = field(default_factory=list)

    @property
    def failed(self) -> list[UpsertResult]:
        return [r for r in self.results if not r.success]


def jaccard(a: set[str], b: set[str]) -> float:
    union = a | b
    return round(len(a & b) / len(union), 4) if union else 0.0


def canonical_cycle(cycle: list[str]) -> list[str]:
    """Rotate a cycle to start at its smallest node, for stable reports."""
    i = cycle.index(min(cycle))
    return cycle[i:] + cycle[:i]


class CrossEntityAnalyzer:
    """Rolls fine-grained edges up to container-level edges."""

    def __init__(
        self,
        store: GraphStore,
        engine: UpsertEngine,
        thresholds: ThresholdConfig | None = None,
        container_kind: EntityKind = EntityKind.SUBPROJECT,
        fine_grained_types: Iterable[RelationshipType] = FINE_GRAINED_TYPES,
    ):
        self.store = store
        self.engine = engine
        self.thresholds = thresholds or ThresholdConfig()
        self.container_kind = EntityKind.parse(container_kind)
        self.fine_grained_types = tuple(fine_grained_types)

    async def _read(self, fn: Callable[..., Iterable[T]], *args: Any) -> list[T]:
        if self.store.thread_safe:
            return await asyncio.to_thread(lambda: list(fn(*args)))
        return list(fn(*args))

    async def membership(self) -> dict[str, str]:
        """Map every entity id to the container that owns it.

        Ownership follows CONTAINS edges downward from each container and
        stops at nested containers, which own their own subtree. When two
        containers reach the same entity, the nearer one wins, then the
        smaller container id.
        """
        entities = await self._read(self.store.iter_entities, self.container_kind)
        containers = sorted(e.id for e in entities)
        children: dict[str, list[str]] = defaultdict(list)
        for rel in await self._read(self.store.iter_edges, RelationshipType.CONTAINS):
            children[rel.from_id].append(rel.to_id)

        container_set = set(containers)
        owner: dict[str, tuple[int, str]] = {}
        for container in containers:
            queue = deque([(container, 0)])
            seen = {container}
            while queue:
                node, depth = queue.popleft()
                current = owner.get(node)
                if current is None or (depth, container) < current:
                    owner[node] = (depth, container)
                for child in children.get(node, ()):
                    if child in seen or child in container_set:
                        continue
                    seen.add(child)
                    queue.append((child, depth + 1))

        return {node: container for node, (_, container) in owner.items()}

    async def aggregate(self, members: dict[str, str]) -> list[ContainerDependency]:
        """Aggregate cross-container fine-grained edges per ordered pair."""
        pairs: dict[tuple[str, str], ContainerDependency] = {}
        for rel_type in self.fine_grained_types:
            for rel in await self._read(self.store.iter_edges, rel_type):
                source = members.get(rel.from_id)
                target = members.get(rel.to_id)
                if source is None or target is None or source == target:
                    continue
                dep = pairs.setdefault(
                    (source, target), ContainerDependency(source, target)
                )
                dep.classes.add(rel.from_id)
                dep.relationship_count += 1
                dep.dependency_types.add(str(rel_type))
        return [pairs[k] for k in sorted(pairs)]

    def shared_dependencies(
        self, dependencies: list[ContainerDependency]
    ) -> list[SharedDependency]:
        """Container pairs whose dependency targets overlap."""
        targets: dict[str, set[str]] = defaultdict(set)
        for dep in dependencies:
            targets[dep.source].add(dep.target)

        shared: list[SharedDependency] = []
        sources = sorted(targets)
        for i, first in enumerate(sources):
            for second in sources[i + 1 :]:
                common = targets[first] & targets[second]
                if not common:
                    continue
                similarity = jaccard(targets[first], targets[second])
                if similarity < self.thresholds.min_shared_similarity:
                    continue
                shared.append(SharedDependency(first, second, common, similarity))
        return shared

    async def find_cycles(self) -> list[list[str]]:
        """Cycles among persisted DEPENDS_ON edges, self-loops included."""
        graph = nx.DiGraph()
        for rel in await self._read(self.store.iter_edges, RelationshipType.DEPENDS_ON):
            graph.add_edge(rel.from_id, rel.to_id)
        return sorted(canonical_cycle(c) for c in nx.simple_cycles(graph))

    async def analyze(self, operation_id: str | None = None) -> AnalysisReport:
        """Run the full pass: aggregate, upsert, share, detect cycles."""
        operation_id = operation_id or new_operation_id()
        self.engine.recorder.check_operation_id(operation_id)
        report = AnalysisReport(operation_id=operation_id)

        members = await self.membership()
        report.dependencies = await self.aggregate(members)
        logger.info(
            f"Cross-entity analysis: {len(set(members.values()))} containers, "
            f"{len(report.dependencies)} dependent pairs"
        )

        for dep in report.dependencies:
            report.results.append(
                await self.engine.upsert_relationship(
                    RelationshipDescriptor(
                        from_id=dep.source,
                        to_id=dep.target,
                        type=RelationshipType.DEPENDS_ON,
                        metadata=dep.metadata(self.thresholds),
                    ),
                    operation_id,
                )
            )

        report.shared = self.shared_dependencies(report.dependencies)
        for pair in report.shared:
            for a, b in ((pair.first, pair.second), (pair.second, pair.first)):
                report.results.append(
                    await self.engine.upsert_relationship(
                        RelationshipDescriptor(
                            from_id=a,
                            to_id=b,
                            type=RelationshipType.SHARES_WITH,
                            metadata=pair.metadata(),
                        ),
                        operation_id,
                    )
                )

        report.cycles = await self.find_cycles()
        for cycle in report.cycles:
            logger.warning(f"Dependency cycle: {' -> '.join(cycle + cycle[:1])}")

        if report.failed:
            logger.error(f"{len(report.failed)} aggregate edges failed to upsert")
        return report
