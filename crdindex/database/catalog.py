"""
Catalog database operations for crdindex.

Write paths used by the indexer:
- ensure_tag: insert a tag row if absent, return its ID
- insert_crds: batch insert of CRDs, conflicts ignored

Read paths used by the documentation renderer:
- get_tags, get_latest_tag, get_tag
- get_crds, get_crd, get_crds_for_tag_name, get_repos

There are no update or delete operations: the catalog is append-only.
"""

from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from ..domain.crd import GVK, CRDRecord
from ..domain.tag import RepoTag, format_time, parse_time
from .connection import Database

CRD_COLUMNS = ('"group"', 'version', 'kind', 'tag_id', 'filename', 'data')

# SQLite caps bound parameters per statement; keep batches well below it
MAX_ROWS_PER_INSERT = 500


def _row_to_tag(row) -> RepoTag:
    return RepoTag(
        id=row['id'],
        name=row['name'],
        repo=row['repo'],
        time=parse_time(row['time']),
    )


def _row_to_crd(row) -> CRDRecord:
    data = row['data']
    if isinstance(data, str):
        data = data.encode('utf-8')
    return CRDRecord(
        gvk=GVK(group=row['group'], version=row['version'], kind=row['kind']),
        filename=row['filename'] or '',
        data=bytes(data or b''),
        tag_id=row['tag_id'],
    )


def build_insert(prefix: str, args_per_row: int, rows: int) -> str:
    """
    Build a multi-row INSERT statement.

    build_insert("INSERT INTO t (a, b) VALUES ", 2, 2)
        -> "INSERT INTO t (a, b) VALUES (?,?),(?,?)"
    """
    row = "(" + ",".join("?" * args_per_row) + ")"
    return prefix + ",".join([row] * rows)


def ensure_tag(db: Database, repo: str, name: str, time: datetime) -> int:
    """
    Get the ID of a repository tag, inserting it if absent.

    An existing row is never modified, so the recorded time is the one
    from the first successful index.

    Args:
        db: Database connection
        repo: Repository catalog key ("github.com/org/repo")
        name: Tag name
        time: Commit time of the tag

    Returns:
        Row ID of the existing or inserted tag
    """
    existing = get_tag(db, repo, name)
    if existing:
        return existing.id

    db.execute(
        "INSERT OR IGNORE INTO tags (name, repo, time) VALUES (?, ?, ?)",
        (name, repo, format_time(time))
    )
    if db.rowcount == 1 and db.lastrowid:
        return db.lastrowid

    # Lost a race with another writer; the row exists now
    existing = get_tag(db, repo, name)
    if existing is None:
        raise RuntimeError(f"Tag {repo}@{name} vanished after insert")
    return existing.id


def insert_crds(db: Database, tag_id: int, records: Iterable[CRDRecord]) -> int:
    """
    Insert CRDs for a tag, ignoring rows that already exist.

    Args:
        db: Database connection
        tag_id: Tag the records belong to
        records: CRD records to insert

    Returns:
        Number of rows actually inserted
    """
    rows = [
        (r.group, r.version, r.kind, tag_id, r.filename, r.data)
        for r in records
    ]
    prefix = f"INSERT OR IGNORE INTO crds ({', '.join(CRD_COLUMNS)}) VALUES "

    inserted = 0
    for start in range(0, len(rows), MAX_ROWS_PER_INSERT):
        batch = rows[start:start + MAX_ROWS_PER_INSERT]
        params = tuple(value for row in batch for value in row)
        db.execute(build_insert(prefix, len(CRD_COLUMNS), len(batch)), params)
        inserted += max(db.rowcount, 0)
    return inserted


def get_tag(db: Database, repo: str, name: str) -> Optional[RepoTag]:
    """Get one tag of a repository."""
    db.execute(
        "SELECT * FROM tags WHERE LOWER(repo) = LOWER(?) AND name = ?",
        (repo, name)
    )
    row = db.fetchone()
    return _row_to_tag(row) if row else None


def get_tags(db: Database, repo: str) -> List[RepoTag]:
    """
    Get the tags of a repository, most recent first.

    The back-dated nightly tag therefore comes last.
    """
    db.execute(
        "SELECT * FROM tags WHERE LOWER(repo) = LOWER(?) ORDER BY time DESC, id DESC",
        (repo,)
    )
    return [_row_to_tag(row) for row in db.fetchall()]


def get_latest_tag(db: Database, repo: str) -> Optional[RepoTag]:
    """Get the most recent tag of a repository."""
    tags = get_tags(db, repo)
    return tags[0] if tags else None


def _resolve_tag(db: Database, repo: str, tag: Optional[str]) -> Optional[RepoTag]:
    if tag is None:
        return get_latest_tag(db, repo)
    return get_tag(db, repo, tag)


def get_crds(db: Database, repo: str, tag: Optional[str] = None) -> List[CRDRecord]:
    """
    Get the CRDs of a repository at a tag.

    Args:
        db: Database connection
        repo: Repository catalog key
        tag: Tag name, or None for the most recent tag

    Returns:
        CRD records ordered by kind, group and version
    """
    resolved = _resolve_tag(db, repo, tag)
    if resolved is None:
        return []

    db.execute(
        'SELECT * FROM crds WHERE tag_id = ? ORDER BY kind, "group", version',
        (resolved.id,)
    )
    return [_row_to_crd(row) for row in db.fetchall()]


def get_crd(
    db: Database,
    repo: str,
    group: str,
    version: str,
    kind: str,
    tag: Optional[str] = None,
) -> Optional[CRDRecord]:
    """
    Fetch one CRD by repository, tag and GVK.

    Args:
        tag: Tag name, or None for the most recent tag

    Returns:
        CRDRecord (use .document() to decode it), or None
    """
    resolved = _resolve_tag(db, repo, tag)
    if resolved is None:
        return None

    db.execute(
        'SELECT * FROM crds WHERE tag_id = ? AND "group" = ? AND version = ? AND kind = ?',
        (resolved.id, group, version, kind)
    )
    row = db.fetchone()
    return _row_to_crd(row) if row else None


def get_crds_for_tag_name(db: Database, name: str) -> List[Dict[str, Any]]:
    """
    Get every CRD of every repository at a tag name.

    Used for release overviews spanning several repositories that share
    a version scheme.
    """
    db.execute("""
        SELECT t.repo, c."group", c.version, c.kind, c.filename
        FROM crds c
        JOIN tags t ON t.id = c.tag_id
        WHERE t.name = ?
        ORDER BY c.kind, t.repo
    """, (name,))
    return [dict(row) for row in db.fetchall()]


def get_repos(db: Database) -> List[str]:
    """Get every indexed repository key."""
    db.execute("SELECT DISTINCT repo FROM tags ORDER BY repo")
    return [row['repo'] for row in db.fetchall()]


def count_crds(db: Database, tag_id: Optional[int] = None) -> int:
    """Count CRD rows, optionally for a single tag."""
    if tag_id is None:
        db.execute("SELECT COUNT(*) AS count FROM crds")
    else:
        db.execute("SELECT COUNT(*) AS count FROM crds WHERE tag_id = ?", (tag_id,))
    row = db.fetchone()
    return row['count'] if row else 0
