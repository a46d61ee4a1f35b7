"""code-graph-sync - identity-based upsert of code entities into a property graph."""

__version__ = "0.3.0"

from .core.exceptions import CodeGraphSyncError

__all__ = ["CodeGraphSyncError", "__version__"]
