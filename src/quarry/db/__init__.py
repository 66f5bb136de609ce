"""Quarry database layer."""

from quarry.db.connection import Database, LockedConnection
from quarry.db.migrations import MIGRATIONS, run_migrations
from quarry.db.repository import JobRepository
from quarry.db.schema import initialize
from quarry.db.vectors import VectorIndex, ensure_vec_table, model_to_slug, vec_table_name

__all__ = [
    "Database",
    "LockedConnection",
    "initialize",
    "run_migrations",
    "MIGRATIONS",
    "JobRepository",
    "VectorIndex",
    "ensure_vec_table",
    "model_to_slug",
    "vec_table_name",
]
