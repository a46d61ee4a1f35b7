"""Tests for container-level dependency roll-up."""

import pytest

from code_graph_sync.config.thresholds import StrengthThresholds, ThresholdConfig
from code_graph_sync.core.cross_entity import (
    CrossEntityAnalyzer,
    canonical_cycle,
    jaccard,
)
from code_graph_sync.core.descriptors import EntityDescriptor, RelationshipDescriptor
from code_graph_sync.core.models import EntityKind, RelationshipType

A = "subproject:shop:a"
B = "subproject:shop:b"
C = "subproject:shop:c"


def subproject(name):
    return EntityDescriptor(
        kind=EntityKind.SUBPROJECT, container_path=("shop",), local_name=name
    )


def cls(package, name):
    return EntityDescriptor(
        kind=EntityKind.CLASS, container_path=(package,), local_name=name
    )


def edge(from_id, to_id, rel_type=RelationshipType.CONTAINS, **metadata):
    return RelationshipDescriptor(
        from_id=from_id, to_id=to_id, type=rel_type, metadata=metadata
    )


def layout(classes_per_container=3):
    """Three sub-projects, each containing a file with a few classes."""
    descriptors = []
    for name in ("a", "b", "c"):
        container = f"subproject:shop:{name}"
        file_id = f"file:{name}:Main.java"
        descriptors += [
            subproject(name),
            EntityDescriptor(
                kind=EntityKind.FILE, container_path=(name,), local_name="Main.java"
            ),
            edge(container, file_id),
        ]
        for i in range(classes_per_container):
            descriptors += [cls(name, f"K{i}"), edge(file_id, f"class:{name}:K{i}")]
    return descriptors


@pytest.fixture
async def populated(make_engine, store):
    engine = make_engine()
    await engine.run(layout())
    return engine


class TestHelpers:
    def test_jaccard(self):
        assert jaccard({"x", "y"}, {"y", "z"}) == round(1 / 3, 4)
        assert jaccard(set(), set()) == 0.0

    def test_canonical_cycle(self):
        assert canonical_cycle(["c", "a", "b"]) == ["a", "b", "c"]


class TestMembership:
    @pytest.mark.asyncio
    async def test_entities_owned_by_nearest_container(self, populated, store):
        members = await CrossEntityAnalyzer(store, populated).membership()

        assert members["class:a:K0"] == A
        assert members["file:b:Main.java"] == B
        assert members[C] == C

    @pytest.mark.asyncio
    async def test_nested_container_owns_its_subtree(self, make_engine, store):
        engine = make_engine()
        await engine.run(
            [
                subproject("outer"),
                subproject("outer/inner"),
                cls("p", "Deep"),
                edge("subproject:shop:outer", "subproject:shop:outer/inner"),
                edge("subproject:shop:outer/inner", "class:p:Deep"),
            ]
        )

        members = await CrossEntityAnalyzer(store, engine).membership()
        assert members["class:p:Deep"] == "subproject:shop:outer/inner"


class TestAnalyze:
    @pytest.mark.asyncio
    async def test_twelve_uses_edges_make_medium_dependency(self, populated, store):
        # nine USES edges (every A class to every B class) plus three other types
        uses = [
            edge(f"class:a:K{i}", f"class:b:K{j}", RelationshipType.USES)
            for i in range(3)
            for j in range(3)
        ] + [
            edge("class:a:K0", "class:b:K0", RelationshipType.CALLS),
            edge("class:a:K1", "class:b:K1", RelationshipType.EXTENDS),
            edge("class:a:K2", "class:b:K2", RelationshipType.IMPLEMENTS),
        ]
        await populated.run(uses)

        report = await CrossEntityAnalyzer(store, populated).analyze()

        assert len(report.dependencies) == 1
        dependency = store.get_edge(A, B, RelationshipType.DEPENDS_ON)
        assert dependency is not None
        assert dependency.metadata["relationshipCount"] == 12
        assert dependency.metadata["strength"] == "medium"
        assert dependency.metadata["classCount"] == 3
        assert dependency.metadata["intensity"] == 4.0
        assert dependency.metadata["dependencyTypes"] == [
            "CALLS",
            "EXTENDS",
            "IMPLEMENTS",
            "USES",
        ]
        assert store.get_edge(B, A, RelationshipType.DEPENDS_ON) is None

    @pytest.mark.asyncio
    async def test_same_container_edges_ignored(self, populated, store):
        await populated.run([edge("class:a:K0", "class:a:K1", RelationshipType.USES)])
        report = await CrossEntityAnalyzer(store, populated).analyze()
        assert report.dependencies == []

    @pytest.mark.asyncio
    async def test_rerun_updates_instead_of_duplicating(self, populated, store):
        await populated.run([edge("class:a:K0", "class:b:K0", RelationshipType.USES)])
        analyzer = CrossEntityAnalyzer(store, populated)
        await analyzer.analyze()

        await populated.run([edge("class:a:K1", "class:b:K0", RelationshipType.USES)])
        report = await analyzer.analyze()

        assert report.failed == []
        assert store.stats()["relationships"]["DEPENDS_ON"] == 1
        metadata = store.get_edge(A, B, RelationshipType.DEPENDS_ON).metadata
        assert metadata["relationshipCount"] == 2
        assert metadata["strength"] == "low"

    @pytest.mark.asyncio
    async def test_custom_thresholds(self, populated, store):
        await populated.run([edge("class:a:K0", "class:b:K0", RelationshipType.USES)])
        thresholds = ThresholdConfig(strength=StrengthThresholds(high=1, medium=1))
        await CrossEntityAnalyzer(store, populated, thresholds=thresholds).analyze()
        metadata = store.get_edge(A, B, RelationshipType.DEPENDS_ON).metadata
        assert metadata["strength"] == "high"

    @pytest.mark.asyncio
    async def test_shared_dependencies_both_directions(self, populated, store):
        await populated.run(
            [
                edge("class:a:K0", "class:c:K0", RelationshipType.USES),
                edge("class:b:K0", "class:c:K0", RelationshipType.USES),
            ]
        )

        report = await CrossEntityAnalyzer(store, populated).analyze()

        assert len(report.shared) == 1
        forward = store.get_edge(A, B, RelationshipType.SHARES_WITH)
        backward = store.get_edge(B, A, RelationshipType.SHARES_WITH)
        assert forward.metadata == backward.metadata
        assert forward.metadata["sharedDependencies"] == [C]
        assert forward.metadata["similarity"] == 1.0

    @pytest.mark.asyncio
    async def test_similarity_threshold(self, populated, store):
        await populated.run(
            [
                edge("class:a:K0", "class:c:K0", RelationshipType.USES),
                edge("class:a:K0", "class:b:K0", RelationshipType.USES),
                edge("class:b:K0", "class:c:K0", RelationshipType.USES),
            ]
        )
        thresholds = ThresholdConfig(min_shared_similarity=0.9)
        report = await CrossEntityAnalyzer(
            store, populated, thresholds=thresholds
        ).analyze()
        assert report.shared == []

    @pytest.mark.asyncio
    async def test_cycles_reported(self, populated, store):
        await populated.run(
            [
                edge("class:a:K0", "class:b:K0", RelationshipType.USES),
                edge("class:b:K0", "class:c:K0", RelationshipType.USES),
                edge("class:c:K0", "class:a:K0", RelationshipType.USES),
            ]
        )

        report = await CrossEntityAnalyzer(store, populated).analyze()

        assert report.cycles == [[A, B, C]]

    @pytest.mark.asyncio
    async def test_bad_operation_id_rejected_before_writes(self, populated, store):
        await populated.run([edge("class:a:K0", "class:b:K0", RelationshipType.USES)])

        with pytest.raises(ValueError, match="Invalid operation id"):
            await CrossEntityAnalyzer(store, populated).analyze("analyze run")

        assert store.stats()["relationships"].get("DEPENDS_ON", 0) == 0
