"""
Versioned schema migrations for the worklens store

Applied migrations are tracked in schema_migrations and pending ones run in
version order every time a DatabaseManager opens a database file.
"""

from .runner import MigrationRunner

__all__ = ["MigrationRunner"]
