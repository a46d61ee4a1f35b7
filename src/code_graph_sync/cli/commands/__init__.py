"""CLI commands for code-graph-sync."""
