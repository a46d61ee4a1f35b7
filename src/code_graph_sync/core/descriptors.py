"""Input descriptors handed over by the extraction stage.

Descriptors are the only untrusted input the engine sees, so they are
validated with pydantic at the boundary. Field aliases accept the camelCase
names used in JSON-Lines streams (``containerPath``, ``fromId``, ...).
"""

from __future__ import annotations

from typing import Any, Literal

import orjson
from pydantic import BaseModel, ConfigDict, Field, field_validator

from .models import EntityKind, RelationshipType


class EntityDescriptor(BaseModel):
    """One entity produced by the extraction stage."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    kind: EntityKind
    container_path: tuple[str, ...] = Field(default=(), alias="containerPath")
    local_name: str = Field(..., alias="localName")
    disambiguator: str | list[str] | None = None
    properties: dict[str, Any] = Field(default_factory=dict)
    content_hash: str | None = Field(default=None, alias="contentHash")
    source_path: str | None = Field(default=None, alias="sourcePath")

    @field_validator("kind", mode="before")
    @classmethod
    def _parse_kind(cls, value: Any) -> EntityKind:
        return EntityKind.parse(value)

    @field_validator("container_path", mode="before")
    @classmethod
    def _split_container_path(cls, value: Any) -> Any:
        # A bare string is a single container segment, not a character list
        if isinstance(value, str):
            return (value,) if value else ()
        return value


class RelationshipDescriptor(BaseModel):
    """One relationship between two already-identified entities."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    from_id: str = Field(..., alias="fromId", min_length=1)
    to_id: str = Field(..., alias="toId", min_length=1)
    type: RelationshipType
    metadata: dict[str, Any] = Field(default_factory=dict)

    @field_validator("type", mode="before")
    @classmethod
    def _parse_type(cls, value: Any) -> RelationshipType:
        return RelationshipType.parse(value)


Descriptor = EntityDescriptor | RelationshipDescriptor


class _StreamLine(BaseModel):
    type: Literal["entity", "relationship"]


def parse_descriptor(data: dict[str, Any]) -> Descriptor:
    """Build a descriptor from one decoded stream record.

    Records carry ``"type": "entity"`` or ``"type": "relationship"``; for
    relationships the edge type lives under ``relType`` (or ``relationshipType``).
    """
    line = _StreamLine.model_validate({"type": data.get("type")})
    payload = {k: v for k, v in data.items() if k != "type"}
    if line.type == "entity":
        return EntityDescriptor.model_validate(payload)

    rel_type = payload.pop("relType", None) or payload.pop("relationshipType", None)
    payload["type"] = rel_type
    return RelationshipDescriptor.model_validate(payload)


def iter_jsonl(lines: Any) -> Any:
    """Yield descriptors from an iterable of JSON-Lines byte/str lines."""
    for number, raw in enumerate(lines, start=1):
        if isinstance(raw, str):
            raw = raw.encode()
        if not raw.strip():
            continue
        try:
            yield parse_descriptor(orjson.loads(raw))
        except (orjson.JSONDecodeError, ValueError) as e:
            raise ValueError(f"Invalid descriptor on line {number}: {e}") from e
