"""Tests for deterministic entity identities."""

import pytest

from code_graph_sync.core.exceptions import InvalidIdentityInput
from code_graph_sync.core.identity import (
    IdentifierResolver,
    erase_generics,
    escape_segment,
    normalize_path,
    normalize_signature,
    normalize_type,
    short_hash,
    split_parameters,
)
from code_graph_sync.core.models import EntityKind, RelationshipType


@pytest.fixture
def resolver():
    return IdentifierResolver()


class TestResolve:
    """IdentifierResolver.resolve()"""

    def test_class_id(self, resolver):
        assert (
            resolver.resolve(EntityKind.CLASS, ["com.example"], "Foo")
            == "class:com.example:Foo"
        )

    def test_deterministic(self, resolver):
        ids = {
            resolver.resolve(EntityKind.FIELD, ["com.example", "Foo"], "count")
            for _ in range(5)
        }
        assert ids == {"field:com.example:Foo:count"}

    def test_kinds_never_collide(self, resolver):
        package = resolver.resolve(EntityKind.PACKAGE, [], "com.example")
        file_ = resolver.resolve(EntityKind.FILE, [], "com.example")
        assert package != file_
        assert package.startswith("package:")
        assert file_.startswith("file:")

    def test_method_signature_normalized(self, resolver):
        a = resolver.resolve(
            EntityKind.METHOD, ["com.example", "Foo"], "bar", ["int", "String..."]
        )
        b = resolver.resolve(
            EntityKind.METHOD,
            ["com.example", "Foo"],
            "bar",
            "(final int,  @NonNull String[])",
        )
        assert a == b == "method:com.example:Foo:bar(int,String[])"

    def test_overloads_are_distinct(self, resolver):
        a = resolver.resolve(EntityKind.METHOD, ["p", "C"], "run", [])
        b = resolver.resolve(EntityKind.METHOD, ["p", "C"], "run", ["long"])
        assert a == "method:p:C:run()"
        assert b == "method:p:C:run(long)"

    def test_generic_erasure(self, resolver):
        entity_id = resolver.resolve(
            EntityKind.METHOD,
            ["p", "C"],
            "put",
            "(Map<String, List<Integer>> m, Optional<T> o)",
        )
        assert entity_id == "method:p:C:put(Map,Optional)"

    def test_method_without_disambiguator_rejected(self, resolver):
        with pytest.raises(InvalidIdentityInput):
            resolver.resolve(EntityKind.METHOD, ["p", "C"], "run")

    def test_empty_local_name_rejected(self, resolver):
        with pytest.raises(InvalidIdentityInput):
            resolver.resolve(EntityKind.CLASS, ["p"], "  ")

    def test_empty_segment_rejected(self, resolver):
        with pytest.raises(InvalidIdentityInput):
            resolver.resolve(EntityKind.CLASS, ["com", ""], "Foo")

    def test_unescaped_colon_rejected(self, resolver):
        with pytest.raises(InvalidIdentityInput):
            resolver.resolve(EntityKind.CLASS, ["a:b"], "Foo")
        with pytest.raises(InvalidIdentityInput):
            resolver.resolve(EntityKind.CLASS, ["p"], "Fo:o")

    def test_escaped_colon_accepted(self, resolver):
        segment = escape_segment("C:/work")
        entity_id = resolver.resolve(EntityKind.FILE, [segment], "Foo.java")
        assert entity_id == "file:C\\:/work:Foo.java"

    def test_trailing_backslash_cannot_escape_delimiter(self, resolver):
        with pytest.raises(InvalidIdentityInput):
            resolver.resolve(EntityKind.CLASS, ["x\\", "y"], "Foo")
        with pytest.raises(InvalidIdentityInput):
            resolver.resolve(EntityKind.CLASS, ["p"], "Foo\\")

    def test_escaped_paths_stay_distinct(self, resolver):
        joined = resolver.resolve(EntityKind.CLASS, ["x\\:y"], "Foo")
        split = resolver.resolve(
            EntityKind.CLASS, [escape_segment("x\\"), "y"], "Foo"
        )
        assert joined == "class:x\\:y:Foo"
        assert split == "class:x\\\\:y:Foo"
        assert joined != split

    def test_escape_segment(self):
        assert escape_segment("a\\b:c") == "a\\\\b\\:c"

    def test_repository_with_path(self, resolver):
        entity_id = resolver.resolve(
            EntityKind.REPOSITORY, [], "shop", "/home/dev/shop/"
        )
        assert entity_id == f"repo:shop:{short_hash('home/dev/shop')}"
        assert resolver.validate(entity_id, EntityKind.REPOSITORY)

    def test_repository_path_spelling_does_not_matter(self, resolver):
        a = resolver.resolve(EntityKind.REPOSITORY, [], "shop", "C:\\dev\\shop")
        b = resolver.resolve(EntityKind.REPOSITORY, [], "shop", "C:/dev//shop/")
        assert a == b

    def test_kind_accepts_strings(self, resolver):
        assert resolver.resolve("sub_project", ["shop"], "api") == "subproject:shop:api"


class TestValidate:
    """IdentifierResolver.validate() and kind_of()"""

    def test_round_trip(self, resolver):
        entity_id = resolver.resolve(EntityKind.METHOD, ["p", "C"], "m", ["int"])
        assert resolver.kind_of(entity_id) is EntityKind.METHOD
        assert resolver.validate(entity_id, EntityKind.METHOD)

    def test_wrong_kind(self, resolver):
        assert not resolver.validate("class:p:Foo", EntityKind.FIELD)

    def test_method_without_signature(self, resolver):
        assert not resolver.validate("method:p:C:m", EntityKind.METHOD)

    def test_repository_bad_hash(self, resolver):
        assert not resolver.validate("repo:shop:nothex!!", EntityKind.REPOSITORY)

    def test_unknown_prefix(self, resolver):
        assert resolver.kind_of("widget:x") is None
        assert resolver.kind_of("noprefix") is None

    def test_empty_part(self, resolver):
        assert not resolver.validate("class::Foo", EntityKind.CLASS)

    def test_escaped_parts(self, resolver):
        assert resolver.validate("class:x\\\\:y:Foo", EntityKind.CLASS)
        assert resolver.validate("class:x\\:y:Foo", EntityKind.CLASS)
        assert not resolver.validate("class:x:Foo\\", EntityKind.CLASS)

    def test_edge_key(self, resolver):
        key = resolver.edge_key("class:p:A", "class:p:B", "uses")
        assert key == f"class:p:A-[{RelationshipType.USES}]->class:p:B"


class TestNormalization:
    """Signature and type normalization helpers."""

    @pytest.mark.parametrize(
        "raw,expected",
        [
            ("Map<String, List<Integer>>", "Map"),
            ("List<?>>", "List"),
            ("int", "int"),
        ],
    )
    def test_erase_generics(self, raw, expected):
        assert erase_generics(raw).strip() == expected

    def test_normalize_type_varargs(self):
        assert normalize_type("String ...") == "String[]"

    @pytest.mark.parametrize(
        "raw,expected",
        [
            ("String... args", "String[]"),
            ("int values[]", "int[]"),
            ("java.util.List<String> xs", "java.util.List"),
            ("int [ ]", "int[]"),
        ],
    )
    def test_normalize_type_drops_parameter_name(self, raw, expected):
        assert normalize_type(raw) == expected

    def test_normalize_type_strips_annotation_args(self):
        assert normalize_type('@Named("x") final Foo') == "Foo"

    def test_split_parameters_top_level_only(self):
        assert split_parameters("(Map<K, V> m, int i)") == ["Map<K, V> m", " int i"]

    def test_split_parameters_empty(self):
        assert split_parameters("()") == []
        assert split_parameters("") == []

    def test_empty_parameter_type(self):
        with pytest.raises(InvalidIdentityInput):
            normalize_signature("(int, )")

    def test_normalize_path(self):
        assert normalize_path("\\repo\\sub//src/") == "repo/sub/src"
