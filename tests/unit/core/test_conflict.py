"""Tests for property comparison and conflict policies."""

from datetime import UTC, datetime

import pytest

from code_graph_sync.core.conflict import (
    ConflictResolver,
    compute_changes,
    entity_changes,
    normalize_value,
)
from code_graph_sync.core.exceptions import ConflictError
from code_graph_sync.core.models import ConflictPolicy, Decision, Entity, EntityKind

NOW = datetime(2024, 6, 1, tzinfo=UTC)


def entity(props, content_hash=None):
    return Entity(
        id="class:p:Foo",
        kind=EntityKind.CLASS,
        properties=props,
        content_hash=content_hash,
    )


class TestComputeChanges:
    def test_no_changes(self):
        assert compute_changes({"a": 1, "b": [1, 2]}, {"a": 1, "b": (1, 2)}) == {}

    def test_changed_added_removed(self):
        changes = compute_changes({"a": 1, "gone": True}, {"a": 2, "new": "x"})
        assert set(changes) == {"a", "new", "gone"}
        assert changes["a"].before == 1 and changes["a"].after == 2
        assert changes["new"].before is None
        assert changes["gone"].removed
        assert changes["gone"].to_dict() == {"before": True, "removed": True}

    def test_insignificant_keys_ignored(self):
        changes = compute_changes(
            {"name": "Foo", "updatedAt": "yesterday"},
            {"name": "Foo", "updatedAt": "today", "parsedAt": "now"},
        )
        assert changes == {}

    def test_nested_values_compared_by_value(self):
        assert compute_changes({"m": {"k": [1]}}, {"m": {"k": (1,)}}) == {}

    def test_normalize_value_datetimes(self):
        assert normalize_value(NOW) == NOW.isoformat()


class TestEntityChanges:
    def test_hash_change_reported(self):
        changes = entity_changes(entity({"a": 1}, "h1"), entity({"a": 1}, "h2"))
        assert set(changes) == {"contentHash"}

    def test_missing_incoming_hash_never_clears(self):
        changes = entity_changes(entity({"a": 1}, "h1"), entity({"a": 1}, None))
        assert changes == {}


class TestConflictResolver:
    def test_update_builds_diff(self):
        existing = entity({"a": 1, "old": 0}, "h1")
        incoming = entity({"a": 2}, "h2")
        changes = entity_changes(existing, incoming)

        resolution = ConflictResolver(ConflictPolicy.UPDATE).resolve(
            existing, incoming, changes, NOW
        )

        assert resolution.decision is Decision.UPDATE
        diff = resolution.diff
        assert dict(diff.changes) == {"a": 2}
        assert diff.removed == ("old",)
        assert diff.content_hash == "h2"
        assert diff.updated_at == NOW
        assert diff.apply({"a": 1, "old": 0, "keep": 1}) == {"a": 2, "keep": 1}

    def test_update_keeps_existing_hash_when_incoming_has_none(self):
        existing = entity({"a": 1}, "h1")
        incoming = entity({"a": 2})
        resolution = ConflictResolver().resolve(
            existing, incoming, entity_changes(existing, incoming), NOW
        )
        assert resolution.diff.content_hash == "h1"

    def test_skip(self):
        existing, incoming = entity({"a": 1}), entity({"a": 2})
        resolution = ConflictResolver(ConflictPolicy.SKIP).resolve(
            existing, incoming, entity_changes(existing, incoming), NOW
        )
        assert resolution.decision is Decision.SKIP
        assert resolution.diff is None
        assert "conflict" in resolution.reason

    def test_fail(self):
        existing, incoming = entity({"a": 1}), entity({"a": 2})
        with pytest.raises(ConflictError) as excinfo:
            ConflictResolver("FAIL").resolve(
                existing, incoming, entity_changes(existing, incoming), NOW
            )
        assert excinfo.value.context["properties"] == ["a"]
