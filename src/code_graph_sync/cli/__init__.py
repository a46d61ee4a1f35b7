"""Command-line interface for code-graph-sync."""
