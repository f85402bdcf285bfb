"""Persistent memory store for coding agents, backed by SQLite with full-text search."""

__version__ = "0.1.0"