"""Typed exception hierarchy for code-graph-sync.

Hierarchy
---------
CodeGraphSyncError (base)
├── InvalidIdentityInput   – malformed entity descriptor (entity dropped)
├── NoContainerFound       – no containment candidate matched a child path
├── ConflictError          – conflict policy FAIL refused an update
├── HashComputationError   – content could not be hashed (fast path disabled)
├── StoreError             – graph store failures
│   ├── StoreTimeout       – call exceeded its timeout (retryable)
│   ├── StoreUnavailable   – connectivity lost (retryable)
│   └── MissingEndpointError – edge endpoint not persisted yet (deferred)
└── ConfigError            – configuration / validation errors

Per-entity errors never abort a batch; the engine converts them into FAIL
decisions. Only ``StoreUnavailable`` raised before any progress escapes
``UpsertEngine.run()``.
"""

from typing import Any


class CodeGraphSyncError(Exception):
    """Base exception for code-graph-sync."""

    def __init__(self, message: str, context: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.context = context or {}


# ── Identity / hierarchy ────────────────────────────────────────────────


class InvalidIdentityInput(CodeGraphSyncError):
    """Entity descriptor cannot produce a valid identity."""

    pass


class NoContainerFound(CodeGraphSyncError):
    """No containment candidate is a proper prefix of the child path."""

    pass


# ── Decision layer ──────────────────────────────────────────────────────


class ConflictError(CodeGraphSyncError):
    """Existing and incoming entity differ and the policy is FAIL."""

    pass


class HashComputationError(CodeGraphSyncError):
    """Content hash could not be computed for a source file."""

    pass


# ── Store layer ─────────────────────────────────────────────────────────


class StoreError(CodeGraphSyncError):
    """Graph store operation failed."""

    retryable: bool = False


class StoreTimeout(StoreError):
    """Graph store call exceeded its caller-specified timeout."""

    retryable = True


class StoreUnavailable(StoreError):
    """Graph store cannot be reached."""

    retryable = True


class MissingEndpointError(StoreError):
    """Relationship references an entity that is not persisted."""

    pass


# ── Configuration layer ─────────────────────────────────────────────────


class ConfigError(CodeGraphSyncError):
    """Configuration / validation errors."""

    pass
