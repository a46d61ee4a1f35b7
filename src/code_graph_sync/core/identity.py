"""Deterministic identities for code graph nodes.

An id is a pure function of an entity's naming path::

    <prefix>:<segment>:...:<local>[<signature>]

e.g. ``class:com.example:Foo`` or ``method:com.example:Foo:bar(int,String[])``.
Segments may contain ``:`` only as ``\\:`` and ``\\`` only as ``\\\\``, so
distinct naming paths never join into the same id. Method signatures are
normalized so that ``List<String> xs``-style spelling differences do not
produce distinct nodes.
"""

import hashlib
import re
from collections.abc import Sequence

from loguru import logger

from .exceptions import InvalidIdentityInput
from .models import EntityKind, RelationshipType

PREFIXES: dict[EntityKind, str] = {
    EntityKind.REPOSITORY: "repo",
    EntityKind.SUBPROJECT: "subproject",
    EntityKind.PACKAGE: "package",
    EntityKind.FILE: "file",
    EntityKind.CLASS: "class",
    EntityKind.METHOD: "method",
    EntityKind.FIELD: "field",
    EntityKind.ANNOTATION: "annotation",
}
_KIND_BY_PREFIX = {prefix: kind for kind, prefix in PREFIXES.items()}

# One id part; "\\" and "\:" are the only escapes and ":" never appears bare
_PART = r"(?:[^\\:]|\\[\\:])+"
_PART_RE = re.compile(_PART)
_ID_BODY = re.compile(rf"{_PART}(?::{_PART})*")
_ANNOTATION = re.compile(r"@[\w.]+(?:\([^)]*\))?")
_FINAL = re.compile(r"\bfinal\b")
# Trailing parameter name, keeping C-style array brackets ("args[]")
_PARAM_NAME = re.compile(r"^[A-Za-z_$][\w$]*((?:\[\])*)$")

PATH_HASH_LENGTH = 8


def escape_segment(segment: str) -> str:
    """Escape ``\\`` and ``:`` so an arbitrary string can be a path segment."""
    return segment.replace("\\", "\\\\").replace(":", "\\:")


def short_hash(value: str, length: int = PATH_HASH_LENGTH) -> str:
    return hashlib.sha256(value.encode("utf-8")).hexdigest()[:length]


def normalize_path(path: str) -> str:
    """Normalize a filesystem path for hashing: forward slashes, no edge slashes."""
    cleaned = re.sub(r"/+", "/", path.strip().replace("\\", "/"))
    return cleaned.strip("/")


def erase_generics(type_name: str) -> str:
    """Drop generic arguments, tracking bracket depth so nesting is handled.

    ``Map<String,List<Integer>>`` becomes ``Map``. Unbalanced closing brackets
    are ignored rather than driving the depth negative.
    """
    out: list[str] = []
    depth = 0
    for ch in type_name:
        if ch == "<":
            depth += 1
        elif ch == ">":
            depth = max(depth - 1, 0)
        elif depth == 0:
            out.append(ch)
    return "".join(out)


def normalize_type(type_name: str) -> str:
    """Canonical spelling of one parameter type; a parameter name is dropped."""
    t = _ANNOTATION.sub(" ", type_name)
    t = _FINAL.sub(" ", t)
    tokens = erase_generics(t).split()
    if len(tokens) > 1 and (name := _PARAM_NAME.match(tokens[-1])):
        tokens[-1] = name.group(1)
    t = "".join(tokens)
    if t.endswith("..."):
        t = t[:-3] + "[]"
    return t


def split_parameters(signature: str) -> list[str]:
    """Split ``(a, Map<K, V>, c)`` on top-level commas only."""
    s = signature.strip()
    if s.startswith("(") and s.endswith(")"):
        s = s[1:-1]
    if not s.strip():
        return []

    params: list[str] = []
    depth = 0
    current: list[str] = []
    for ch in s:
        if ch in "<(":
            depth += 1
        elif ch in ">)":
            depth = max(depth - 1, 0)
        if ch == "," and depth == 0:
            params.append("".join(current))
            current = []
        else:
            current.append(ch)
    params.append("".join(current))
    return params


def normalize_signature(disambiguator: str | Sequence[str]) -> str:
    """Render a parameter-type list in canonical ``(T1,T2)`` form."""
    if isinstance(disambiguator, str):
        params = split_parameters(disambiguator)
    else:
        params = list(disambiguator)
    types = [normalize_type(p) for p in params]
    if any(not t for t in types):
        raise InvalidIdentityInput(
            "Method signature contains an empty parameter type",
            {"disambiguator": disambiguator},
        )
    return "(" + ",".join(types) + ")"


class IdentifierResolver:
    """Computes node identities. Stateless; safe to share across tasks."""

    def resolve(
        self,
        kind: EntityKind,
        container_path: Sequence[str],
        local_name: str,
        disambiguator: str | Sequence[str] | None = None,
    ) -> str:
        """Compute the id of an entity.

        Args:
            kind: Entity kind; selects the id prefix
            container_path: Enclosing naming segments, outermost first
            local_name: Name of the entity within its container
            disambiguator: Parameter types for methods (required), the
                repository path for repositories (optional), ignored otherwise

        Raises:
            InvalidIdentityInput: Empty local name, malformed container path,
                or a method without a disambiguator
        """
        kind = EntityKind.parse(kind)
        name = (local_name or "").strip()
        if not name:
            raise InvalidIdentityInput(
                f"{kind} has an empty local name",
                {"kind": str(kind), "container_path": list(container_path)},
            )

        segments = [self._check_segment(s, kind) for s in container_path]
        if not _PART_RE.fullmatch(name):
            raise InvalidIdentityInput(
                f"Local name has an unescaped ':' or '\\': {local_name!r}",
                {"kind": str(kind)},
            )

        if kind is EntityKind.METHOD:
            if disambiguator is None:
                raise InvalidIdentityInput(
                    f"Method {name!r} needs a parameter-type disambiguator",
                    {"container_path": list(container_path)},
                )
            name = name + normalize_signature(disambiguator)
        elif kind is EntityKind.REPOSITORY and disambiguator:
            if not isinstance(disambiguator, str):
                disambiguator = "/".join(disambiguator)
            segments.append(name)
            name = short_hash(normalize_path(disambiguator))

        entity_id = ":".join([PREFIXES[kind], *segments, name])
        logger.debug(f"Resolved {kind} id: {entity_id}")
        return entity_id

    @staticmethod
    def _check_segment(segment: str, kind: EntityKind) -> str:
        value = (segment or "").strip()
        if not value:
            raise InvalidIdentityInput(
                f"{kind} container path has an empty segment",
                {"segment": segment},
            )
        if not _PART_RE.fullmatch(value):
            raise InvalidIdentityInput(
                f"Container segment has an unescaped ':' or '\\': {segment!r}",
                {"segment": segment},
            )
        return value

    @staticmethod
    def kind_of(entity_id: str) -> EntityKind | None:
        """Recover the entity kind from an id prefix, or None if unknown."""
        prefix, sep, _ = (entity_id or "").partition(":")
        if not sep:
            return None
        return _KIND_BY_PREFIX.get(prefix)

    @classmethod
    def validate(cls, entity_id: str, kind: EntityKind) -> bool:
        """Check that an id has the shape ids of ``kind`` are generated with."""
        if not entity_id or cls.kind_of(entity_id) is not EntityKind.parse(kind):
            return False

        body = entity_id.split(":", 1)[1]
        if not _ID_BODY.fullmatch(body):
            return False
        parts = _PART_RE.findall(body)
        if kind is EntityKind.METHOD:
            return parts[-1].endswith(")") and "(" in parts[-1]
        if kind is EntityKind.REPOSITORY and len(parts) == 2:
            pattern = rf"[0-9a-f]{{{PATH_HASH_LENGTH}}}"
            return re.fullmatch(pattern, parts[1]) is not None
        return True

    @staticmethod
    def edge_key(from_id: str, to_id: str, rel_type: RelationshipType | str) -> str:
        """Identity of a relationship, used as its audit target id."""
        return f"{from_id}-[{RelationshipType.parse(rel_type)}]->{to_id}"
