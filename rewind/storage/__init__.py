"""Persistence layer: SQLite store and response cache."""
