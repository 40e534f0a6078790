"""
Database schema for crdindex.

This module defines the SQLite schema of the CRD catalog and handles
migrations. The schema is designed to:
- Key every CRD by (tag, group, version, kind)
- Keep one row per (repository, tag)
- Make repeated indexing runs safe (conflicts are ignored on insert)

Unlike a cache, the catalog is append-only and the only copy of past
tags, so migrations never drop tables.
"""

import logging
import sqlite3
from typing import List, Tuple

logger = logging.getLogger(__name__)

# Current schema version - increment when schema changes
# v1: Initial schema (tags, crds)
CURRENT_VERSION = 1

# Schema definition as SQL statements
SCHEMA_V1 = """
-- Schema version tracking
CREATE TABLE IF NOT EXISTS _schema_info (
    version INTEGER PRIMARY KEY,
    applied_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    description TEXT
);

-- Indexed tags of each repository
CREATE TABLE IF NOT EXISTS tags (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL,
    repo TEXT NOT NULL,  -- e.g. github.com/org/repo
    time TIMESTAMP NOT NULL,  -- UTC ISO-8601 commit time (nightly back-dated)
    UNIQUE (repo, name)
);

-- CRDs found at a tag
CREATE TABLE IF NOT EXISTS crds (
    "group" TEXT NOT NULL,
    version TEXT NOT NULL,
    kind TEXT NOT NULL,
    tag_id INTEGER NOT NULL,
    filename TEXT,
    data BLOB,  -- normalized CRD document (JSON)
    PRIMARY KEY (tag_id, "group", version, kind),
    FOREIGN KEY (tag_id) REFERENCES tags(id)
);

CREATE INDEX IF NOT EXISTS idx_tags_repo_time ON tags(repo, time);
CREATE INDEX IF NOT EXISTS idx_tags_name ON tags(name);
CREATE INDEX IF NOT EXISTS idx_crds_kind ON crds(kind);
"""


def get_schema_version(conn: sqlite3.Connection) -> int:
    """Get current schema version from database."""
    try:
        cursor = conn.execute(
            "SELECT MAX(version) FROM _schema_info"
        )
        result = cursor.fetchone()
        return result[0] if result[0] is not None else 0
    except sqlite3.OperationalError:
        # Table doesn't exist yet
        return 0


def apply_schema(conn: sqlite3.Connection, version: int = CURRENT_VERSION) -> None:
    """
    Apply schema migrations up to the given version.

    Each migration only adds objects, so applying it to an already
    migrated database is harmless.
    """
    current = get_schema_version(conn)

    for migration_version, description, sql in get_migrations():
        if migration_version <= current or migration_version > version:
            continue
        logger.info(f"Applying schema v{migration_version}: {description}")
        conn.executescript(sql)
        conn.execute(
            "INSERT OR REPLACE INTO _schema_info (version, description) VALUES (?, ?)",
            (migration_version, description)
        )

    conn.commit()


def ensure_schema(conn: sqlite3.Connection) -> None:
    """Ensure database has current schema, migrating if necessary."""
    current = get_schema_version(conn)

    if current < CURRENT_VERSION:
        apply_schema(conn, CURRENT_VERSION)


def get_migrations() -> List[Tuple[int, str, str]]:
    """
    Get list of migrations.

    Returns:
        List of (version, description, sql) tuples
    """
    return [
        (1, "Initial schema", SCHEMA_V1),
    ]
