"""Core functionality for code-graph-sync."""

from .exceptions import (
    CodeGraphSyncError,
    ConfigError,
    ConflictError,
    HashComputationError,
    InvalidIdentityInput,
    MissingEndpointError,
    NoContainerFound,
    StoreError,
    StoreTimeout,
    StoreUnavailable,
)
from .git import GitError, GitManager, GitNotAvailableError, GitNotRepoError

__all__ = [
    # Exceptions
    "CodeGraphSyncError",
    "ConfigError",
    "ConflictError",
    "HashComputationError",
    "InvalidIdentityInput",
    "MissingEndpointError",
    "NoContainerFound",
    "StoreError",
    "StoreTimeout",
    "StoreUnavailable",
    # Git
    "GitError",
    "GitManager",
    "GitNotAvailableError",
    "GitNotRepoError",
]
