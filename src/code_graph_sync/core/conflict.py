"""Property comparison and conflict policy.

``compute_changes`` decides *whether* an existing node differs from the
incoming one; ``ConflictResolver`` decides *what happens* when it does.
"""

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from ..config.defaults import INSIGNIFICANT_PROPERTY_KEYS
from .exceptions import ConflictError
from .models import ConflictPolicy, Decision, Entity, PropertyDiff

CONTENT_HASH_KEY = "contentHash"


@dataclass(frozen=True)
class PropertyChange:
    key: str
    before: Any
    after: Any
    removed: bool = False

    def to_dict(self) -> dict[str, Any]:
        if self.removed:
            return {"before": self.before, "removed": True}
        return {"before": self.before, "after": self.after}


@dataclass(frozen=True)
class Resolution:
    decision: Decision
    diff: PropertyDiff | None = None
    reason: str | None = None


def normalize_value(value: Any) -> Any:
    """Make values compare the way they serialize: tuples equal lists, etc."""
    if isinstance(value, (list, tuple)):
        return [normalize_value(v) for v in value]
    if isinstance(value, Mapping):
        return {str(k): normalize_value(v) for k, v in value.items()}
    if isinstance(value, datetime):
        return value.isoformat()
    return value


def compute_changes(
    existing: Mapping[str, Any],
    incoming: Mapping[str, Any],
    ignore: Iterable[str] = INSIGNIFICANT_PROPERTY_KEYS,
) -> dict[str, PropertyChange]:
    """Diff two property maps by value.

    Keys present only in ``existing`` are reported as removals: the incoming
    descriptor is the full current state of the entity.
    """
    ignored = set(ignore)
    changes: dict[str, PropertyChange] = {}

    for key, after in incoming.items():
        if key in ignored:
            continue
        if key not in existing:
            changes[key] = PropertyChange(key, None, after)
        elif normalize_value(existing[key]) != normalize_value(after):
            changes[key] = PropertyChange(key, existing[key], after)

    for key, before in existing.items():
        if key not in incoming and key not in ignored:
            changes[key] = PropertyChange(key, before, None, removed=True)

    return changes


def entity_changes(existing: Entity, incoming: Entity) -> dict[str, PropertyChange]:
    """Property changes plus a content hash change, when one is known.

    An incoming entity without a hash never clears a stored one.
    """
    changes = compute_changes(existing.properties, incoming.properties)
    if (
        incoming.content_hash is not None
        and incoming.content_hash != existing.content_hash
    ):
        changes[CONTENT_HASH_KEY] = PropertyChange(
            CONTENT_HASH_KEY, existing.content_hash, incoming.content_hash
        )
    return changes


class ConflictResolver:
    """Applies the run's conflict policy to a non-empty change set."""

    def __init__(self, policy: ConflictPolicy = ConflictPolicy.UPDATE):
        self.policy = ConflictPolicy(policy)

    def resolve(
        self,
        existing: Entity,
        incoming: Entity,
        changes: Mapping[str, PropertyChange],
        now: datetime,
    ) -> Resolution:
        """Decide the outcome for a differing entity.

        Raises:
            ConflictError: Policy is FAIL
        """
        if self.policy is ConflictPolicy.FAIL:
            raise ConflictError(
                f"{existing.id} differs in {len(changes)} properties",
                {"id": existing.id, "properties": sorted(changes)},
            )

        if self.policy is ConflictPolicy.SKIP:
            return Resolution(
                Decision.SKIP,
                reason=f"conflict ignored ({len(changes)} differing properties)",
            )

        diff = PropertyDiff(
            changes={
                k: c.after
                for k, c in changes.items()
                if not c.removed and k != CONTENT_HASH_KEY
            },
            removed=tuple(k for k, c in changes.items() if c.removed),
            content_hash=(
                incoming.content_hash
                if incoming.content_hash is not None
                else existing.content_hash
            ),
            updated_at=now,
        )
        return Resolution(Decision.UPDATE, diff=diff)
