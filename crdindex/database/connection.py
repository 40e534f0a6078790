"""
Database connection management for crdindex.

Provides context managers and configuration for the catalog.
Uses SQLite with WAL mode for better concurrent access.
"""

import os
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Optional, Generator

from .schema import ensure_schema


def get_db_path(config: Optional[dict] = None) -> Path:
    """
    Get the database file path.

    Checks in order:
    1. CRDINDEX_DB environment variable
    2. config['database']['path'] if provided
    3. Default: ~/.crdindex/catalog.db

    Args:
        config: Optional configuration dictionary

    Returns:
        Path to database file
    """
    if 'CRDINDEX_DB' in os.environ:
        return Path(os.environ['CRDINDEX_DB'])

    if config and config.get('database', {}).get('path'):
        return Path(config['database']['path']).expanduser()

    return Path.home() / '.crdindex' / 'catalog.db'


def get_connection(
    db_path: Optional[Path] = None,
    config: Optional[dict] = None,
    read_only: bool = False
) -> sqlite3.Connection:
    """
    Get a database connection.

    Creates the database and applies schema if it doesn't exist.
    Uses WAL mode for better concurrent access.

    Args:
        db_path: Optional explicit path to database
        config: Optional configuration dictionary
        read_only: If True, open in read-only mode

    Returns:
        SQLite connection
    """
    if db_path is None:
        db_path = get_db_path(config)

    if read_only:
        uri = f"file:{db_path}?mode=ro"
        conn = sqlite3.connect(uri, uri=True)
    else:
        db_path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(str(db_path))

    conn.row_factory = sqlite3.Row  # Enable dict-like access
    conn.execute("PRAGMA foreign_keys = ON")

    if not read_only:
        conn.execute("PRAGMA journal_mode = WAL")
        conn.execute("PRAGMA synchronous = NORMAL")
        ensure_schema(conn)

    return conn


class Database:
    """
    Database context manager for crdindex.

    Provides a clean interface for database operations with
    automatic connection management and transaction handling.

    Usage:
        with Database() as db:
            db.execute("SELECT * FROM tags")
            for row in db.fetchall():
                print(row['name'])

        # Or with explicit config
        with Database(config=my_config) as db:
            ...

        # Read-only mode (rendering side)
        with Database(read_only=True) as db:
            ...
    """

    def __init__(
        self,
        db_path: Optional[Path] = None,
        config: Optional[dict] = None,
        read_only: bool = False
    ):
        self.db_path = db_path
        self.config = config
        self.read_only = read_only
        self._conn: Optional[sqlite3.Connection] = None
        self._cursor: Optional[sqlite3.Cursor] = None

    def __enter__(self) -> 'Database':
        self._conn = get_connection(
            db_path=self.db_path,
            config=self.config,
            read_only=self.read_only
        )
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        if self._cursor:
            self._cursor.close()
        if self._conn:
            if exc_type is None and not self.read_only:
                self._conn.commit()
            self._conn.close()

    @property
    def conn(self) -> sqlite3.Connection:
        """Get the underlying connection."""
        if self._conn is None:
            raise RuntimeError("Database not connected. Use 'with Database() as db:'")
        return self._conn

    def execute(self, sql: str, params: tuple = ()) -> sqlite3.Cursor:
        """Execute SQL statement."""
        self._cursor = self.conn.execute(sql, params)
        return self._cursor

    def fetchone(self) -> Optional[sqlite3.Row]:
        """Fetch one row from last query."""
        if self._cursor is None:
            return None
        return self._cursor.fetchone()

    def fetchall(self) -> list:
        """Fetch all rows from last query."""
        if self._cursor is None:
            return []
        return self._cursor.fetchall()

    def commit(self) -> None:
        """Commit current transaction."""
        self.conn.commit()

    def rollback(self) -> None:
        """Rollback current transaction."""
        self.conn.rollback()

    @property
    def lastrowid(self) -> Optional[int]:
        """Get last inserted row ID."""
        if self._cursor is None:
            return None
        return self._cursor.lastrowid

    @property
    def rowcount(self) -> int:
        """Get number of rows affected by last statement."""
        if self._cursor is None:
            return 0
        return self._cursor.rowcount


@contextmanager
def transaction(db: Database) -> Generator[None, None, None]:
    """
    Context manager for explicit transactions.

    Usage:
        with Database() as db:
            with transaction(db):
                tag_id = ensure_tag(db, ...)
                insert_crds(db, tag_id, records)
                # Commits on success, rolls back on exception
    """
    try:
        yield
        db.commit()
    except Exception:
        db.rollback()
        raise


def reset_database(config: Optional[dict] = None, db_path: Optional[Path] = None) -> None:
    """
    Delete and recreate the database.

    Use with caution - the catalog is the only copy of indexed tags!

    Args:
        config: Optional configuration dictionary
        db_path: Explicit database path (overrides config)
    """
    if db_path is None:
        db_path = get_db_path(config)
    for path in (db_path, db_path.with_name(db_path.name + '-wal'),
                 db_path.with_name(db_path.name + '-shm')):
        if path.exists():
            path.unlink()

    # Recreate with fresh schema
    with Database(db_path=db_path) as _db:
        pass  # Schema is applied on connection


def get_database_info(config: Optional[dict] = None, db_path: Optional[Path] = None) -> dict:
    """
    Get information about the database.

    Returns:
        Dictionary with database stats
    """
    if db_path is None:
        db_path = get_db_path(config)

    if not db_path.exists():
        return {
            'exists': False,
            'path': str(db_path),
        }

    with Database(db_path=db_path, read_only=True) as db:
        db.execute("SELECT COUNT(DISTINCT repo) FROM tags")
        row = db.fetchone()
        repo_count = row[0] if row else 0

        db.execute("SELECT COUNT(*) FROM tags")
        row = db.fetchone()
        tag_count = row[0] if row else 0

        db.execute("SELECT COUNT(*) FROM crds")
        row = db.fetchone()
        crd_count = row[0] if row else 0

        db.execute("SELECT MAX(version) FROM _schema_info")
        row = db.fetchone()
        schema_version = row[0] if row else 0

        file_size = db_path.stat().st_size

        return {
            'exists': True,
            'path': str(db_path),
            'size_bytes': file_size,
            'size_human': _human_size(file_size),
            'schema_version': schema_version,
            'repos': repo_count,
            'tags': tag_count,
            'crds': crd_count,
        }


def _human_size(size_bytes: int) -> str:
    """Convert bytes to human-readable size."""
    size: float = float(size_bytes)
    for unit in ['B', 'KB', 'MB', 'GB']:
        if size < 1024:
            return f"{size:.1f} {unit}"
        size /= 1024
    return f"{size:.1f} TB"
