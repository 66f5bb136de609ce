"""Shared CLI plumbing: config, logging and database opening."""

from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console

from quarry.cli.errors import err_config
from quarry.config import ConfigError, QuarryConfig, load_config
from quarry.db.connection import Database, LockedConnection
from quarry.db.schema import initialize
from quarry.log import setup_logger

DEFAULT_DB = Path(".quarry.db")


def load_runtime_config(console: Console) -> QuarryConfig:
    """Load config and configure logging; exit 1 on an invalid config."""
    try:
        cfg = load_config()
    except ConfigError as exc:
        console.print(err_config(str(exc)))
        raise typer.Exit(1)
    setup_logger(cfg.logging.level, cfg.logging.file)
    return cfg


def open_db(db_path: Path) -> LockedConnection:
    """Open (or create) the database and run migrations."""
    conn = Database(db_path).connect()
    initialize(conn)
    return conn
