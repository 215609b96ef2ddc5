"""Postgres connections for the build lineage tables."""

import logging
import os
from contextlib import contextmanager
from pathlib import Path
from typing import Generator, Optional

import psycopg2
from psycopg2.extras import RealDictCursor

from build_registry.config import ConfigError, load_config

logger = logging.getLogger(__name__)

MIGRATIONS_DIR = Path(__file__).parent.parent.parent / "migrations"


def get_connection_string() -> str:
    """DATABASE_URL from the environment, or from .env through load_config."""
    database_url = os.environ.get("DATABASE_URL")
    if database_url:
        return database_url

    config = load_config(require_all=False)
    if config and config.database_url:
        return config.database_url

    raise ConfigError("DATABASE_URL is required to reach the build registry database")


@contextmanager
def get_connection(dsn: Optional[str] = None) -> Generator:
    conn = psycopg2.connect(dsn or get_connection_string())
    try:
        yield conn
    finally:
        conn.close()


@contextmanager
def get_cursor(
    commit: bool = True,
    dsn: Optional[str] = None,
    isolation_level: Optional[int] = None,
) -> Generator:
    """Cursor over a single transaction.

    The transaction is committed on exit when `commit` is set (reads pass
    False) and rolled back if the body raises. `isolation_level` is one of
    psycopg2's ISOLATION_LEVEL_* constants.
    """
    with get_connection(dsn) as conn:
        if isolation_level is not None:
            conn.set_session(isolation_level=isolation_level)
        cursor = conn.cursor(cursor_factory=RealDictCursor)
        try:
            yield cursor
            if commit:
                conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            cursor.close()


def init_schema(dsn: Optional[str] = None, migrations_dir: Path = MIGRATIONS_DIR) -> None:
    """Create the builds, build_heads and build_files tables."""
    if not migrations_dir.exists():
        raise FileNotFoundError(f"Migrations directory not found: {migrations_dir}")

    sql_files = sorted(migrations_dir.glob("*.sql"))
    if not sql_files:
        raise FileNotFoundError(f"No SQL migration files found in {migrations_dir}")

    with get_cursor(dsn=dsn) as cursor:
        for sql_file in sql_files:
            logger.info("Applying migration: %s", sql_file.name)
            cursor.execute(sql_file.read_text())

    logger.info("Schema initialized for %d migration(s)", len(sql_files))
