"""Storage layer - PostgreSQL connection pool shared by both engines."""

from changewatch.storage.database import Database, persistence_errors

__all__ = ["Database", "persistence_errors"]
