"""Configuration for code-graph-sync."""
