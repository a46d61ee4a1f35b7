"""Tests for descriptor parsing from JSON-Lines streams."""

import pytest

from code_graph_sync.core.descriptors import (
    EntityDescriptor,
    RelationshipDescriptor,
    iter_jsonl,
    parse_descriptor,
)
from code_graph_sync.core.models import EntityKind, RelationshipType


def test_entity_camel_case_aliases():
    descriptor = parse_descriptor(
        {
            "type": "entity",
            "kind": "class",
            "containerPath": ["com.example"],
            "localName": "Foo",
            "contentHash": "abc",
            "sourcePath": "src/Foo.java",
        }
    )
    assert isinstance(descriptor, EntityDescriptor)
    assert descriptor.kind is EntityKind.CLASS
    assert descriptor.container_path == ("com.example",)
    assert descriptor.content_hash == "abc"
    assert descriptor.source_path == "src/Foo.java"


def test_container_path_string_is_one_segment():
    descriptor = EntityDescriptor(kind="Package", containerPath="shop", localName="x")
    assert descriptor.container_path == ("shop",)


@pytest.mark.parametrize("key", ["relType", "relationshipType"])
def test_relationship_type_keys(key):
    descriptor = parse_descriptor(
        {
            "type": "relationship",
            "fromId": "class:p:A",
            "toId": "class:p:B",
            key: "uses",
        }
    )
    assert isinstance(descriptor, RelationshipDescriptor)
    assert descriptor.type is RelationshipType.USES


def test_unknown_record_type():
    with pytest.raises(ValueError):
        parse_descriptor({"type": "widget"})


def test_unknown_kind():
    with pytest.raises(ValueError):
        parse_descriptor({"type": "entity", "kind": "Module", "localName": "x"})


def test_empty_endpoint_rejected():
    with pytest.raises(ValueError):
        RelationshipDescriptor(from_id="", to_id="class:p:B", type="USES")


def test_descriptors_are_frozen():
    descriptor = EntityDescriptor(kind="Class", localName="Foo")
    with pytest.raises(ValueError):
        descriptor.local_name = "Bar"


class TestIterJsonl:
    def test_skips_blank_lines(self):
        lines = [
            b'{"type": "entity", "kind": "Class", "localName": "Foo"}\n',
            b"\n",
            '{"type": "relationship", "fromId": "a", "toId": "b", "relType": "CALLS"}',
        ]
        descriptors = list(iter_jsonl(lines))
        assert len(descriptors) == 2
        assert descriptors[1].type is RelationshipType.CALLS

    def test_error_names_line(self):
        lines = [b'{"type": "entity", "kind": "Class", "localName": "Foo"}', b"{oops"]
        with pytest.raises(ValueError, match="line 2"):
            list(iter_jsonl(lines))
