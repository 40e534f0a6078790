"""
Tests for crdindex.database module.

Tests cover:
- Database connection management
- Schema creation and versioning
- Tag and CRD write paths (idempotence, batching)
- Read paths used for rendering
"""

import os
import shutil
import sqlite3
import tempfile
import unittest
from datetime import datetime, timezone
from pathlib import Path
from unittest.mock import patch

from crdindex.database.connection import (
    Database,
    get_db_path,
    get_connection,
    get_database_info,
    reset_database,
    transaction,
)
from crdindex.database.schema import (
    CURRENT_VERSION,
    ensure_schema,
    get_schema_version,
)
from crdindex.database.catalog import (
    MAX_ROWS_PER_INSERT,
    build_insert,
    ensure_tag,
    insert_crds,
    get_tag,
    get_tags,
    get_latest_tag,
    get_crds,
    get_crd,
    get_crds_for_tag_name,
    get_repos,
    count_crds,
)
from crdindex.domain import GVK, CRDRecord, backdate_nightly

REPO = "github.com/acme/operator"


def record(kind="Foo", version="v1", group="example.com", filename="foo.yaml"):
    return CRDRecord(
        gvk=GVK(group=group, version=version, kind=kind),
        filename=filename,
        data=f'{{"kind":"{kind}","version":"{version}"}}'.encode('utf-8'),
    )


class TestDatabaseConnection(unittest.TestCase):
    """Tests for database connection management."""

    def setUp(self):
        self.temp_dir = tempfile.mkdtemp()
        self.db_path = Path(self.temp_dir) / 'test.db'

    def tearDown(self):
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def test_get_db_path_default(self):
        """Test default database path."""
        with patch.dict(os.environ, {}, clear=True):
            with patch('pathlib.Path.home', return_value=Path(self.temp_dir)):
                path = get_db_path()
        self.assertEqual(path, Path(self.temp_dir) / '.crdindex' / 'catalog.db')

    def test_get_db_path_from_env(self):
        """CRDINDEX_DB wins over the config."""
        config = {'database': {'path': '/from/config.db'}}
        with patch.dict(os.environ, {'CRDINDEX_DB': '/from/env.db'}):
            self.assertEqual(get_db_path(config), Path('/from/env.db'))

    def test_get_db_path_from_config(self):
        config = {'database': {'path': str(self.db_path)}}
        with patch.dict(os.environ, {}, clear=True):
            self.assertEqual(get_db_path(config), self.db_path)

    def test_connection_creates_schema(self):
        """A new database gets the current schema."""
        conn = get_connection(db_path=self.db_path)
        try:
            self.assertEqual(get_schema_version(conn), CURRENT_VERSION)
            tables = {
                row[0] for row in
                conn.execute("SELECT name FROM sqlite_master WHERE type='table'")
            }
            self.assertIn('tags', tables)
            self.assertIn('crds', tables)
        finally:
            conn.close()

    def test_wal_mode(self):
        conn = get_connection(db_path=self.db_path)
        try:
            mode = conn.execute("PRAGMA journal_mode").fetchone()[0]
            self.assertEqual(mode.lower(), 'wal')
        finally:
            conn.close()

    def test_ensure_schema_is_idempotent(self):
        conn = get_connection(db_path=self.db_path)
        try:
            ensure_schema(conn)
            ensure_schema(conn)
            count = conn.execute("SELECT COUNT(*) FROM _schema_info").fetchone()[0]
            self.assertEqual(count, 1)
        finally:
            conn.close()

    def test_database_context_manager(self):
        with Database(db_path=self.db_path) as db:
            db.execute("SELECT 1 AS one")
            self.assertEqual(db.fetchone()['one'], 1)

    def test_database_not_connected(self):
        db = Database(db_path=self.db_path)
        with self.assertRaises(RuntimeError):
            db.execute("SELECT 1")

    def test_transaction_rolls_back(self):
        with Database(db_path=self.db_path) as db:
            with self.assertRaises(ValueError):
                with transaction(db):
                    ensure_tag(db, REPO, "v1", datetime(2024, 1, 1, tzinfo=timezone.utc))
                    raise ValueError("abort")
            self.assertEqual(get_tags(db, REPO), [])

    def test_database_info(self):
        with Database(db_path=self.db_path) as db:
            tag_id = ensure_tag(db, REPO, "v1", datetime(2024, 1, 1, tzinfo=timezone.utc))
            insert_crds(db, tag_id, [record("Foo"), record("Bar")])

        info = get_database_info(db_path=self.db_path)
        self.assertTrue(info['exists'])
        self.assertEqual(info['repos'], 1)
        self.assertEqual(info['tags'], 1)
        self.assertEqual(info['crds'], 2)
        self.assertEqual(info['schema_version'], CURRENT_VERSION)

    def test_database_info_missing(self):
        info = get_database_info(db_path=self.db_path)
        self.assertFalse(info['exists'])

    def test_reset_database(self):
        with Database(db_path=self.db_path) as db:
            ensure_tag(db, REPO, "v1", datetime(2024, 1, 1, tzinfo=timezone.utc))

        reset_database(db_path=self.db_path)

        with Database(db_path=self.db_path) as db:
            self.assertEqual(get_repos(db), [])


class CatalogTestCase(unittest.TestCase):
    """Base class with a fresh catalog per test."""

    def setUp(self):
        self.temp_dir = tempfile.mkdtemp()
        self.db_path = Path(self.temp_dir) / 'catalog.db'
        self.db = Database(db_path=self.db_path)
        self.db.__enter__()

    def tearDown(self):
        self.db.__exit__(None, None, None)
        shutil.rmtree(self.temp_dir, ignore_errors=True)


class TestTagWrites(CatalogTestCase):
    """Tests for ensure_tag."""

    def test_insert_and_lookup(self):
        when = datetime(2024, 5, 1, 8, 30, tzinfo=timezone.utc)
        tag_id = ensure_tag(self.db, REPO, "v1.0.0", when)

        tag = get_tag(self.db, REPO, "v1.0.0")
        self.assertEqual(tag.id, tag_id)
        self.assertEqual(tag.repo, REPO)
        self.assertEqual(tag.time, when)

    def test_existing_tag_is_not_modified(self):
        first = ensure_tag(self.db, REPO, "v1", datetime(2024, 1, 1, tzinfo=timezone.utc))
        second = ensure_tag(self.db, REPO, "v1", datetime(2025, 1, 1, tzinfo=timezone.utc))

        self.assertEqual(first, second)
        self.assertEqual(get_tag(self.db, REPO, "v1").time.year, 2024)
        self.assertEqual(len(get_tags(self.db, REPO)), 1)

    def test_same_tag_name_in_two_repos(self):
        a = ensure_tag(self.db, REPO, "v1", datetime(2024, 1, 1, tzinfo=timezone.utc))
        b = ensure_tag(self.db, "github.com/acme/other", "v1", datetime(2024, 1, 1, tzinfo=timezone.utc))
        self.assertNotEqual(a, b)

    def test_lost_race_returns_existing_row(self):
        """A row inserted between lookup and insert is picked up."""
        when = datetime(2024, 1, 1, tzinfo=timezone.utc)
        existing = ensure_tag(self.db, REPO, "v1", when)

        with patch('crdindex.database.catalog.get_tag', side_effect=[None, get_tag(self.db, REPO, "v1")]):
            self.assertEqual(ensure_tag(self.db, REPO, "v1", when), existing)

    def test_times_are_stored_as_utc(self):
        from datetime import timedelta
        when = datetime(2024, 1, 1, 12, tzinfo=timezone(timedelta(hours=2)))
        ensure_tag(self.db, REPO, "v1", when)

        self.db.execute("SELECT time FROM tags WHERE name = 'v1'")
        self.assertEqual(self.db.fetchone()['time'], "2024-01-01T10:00:00+00:00")


class TestCrdWrites(CatalogTestCase):
    """Tests for insert_crds."""

    def setUp(self):
        super().setUp()
        self.tag_id = ensure_tag(self.db, REPO, "v1", datetime(2024, 1, 1, tzinfo=timezone.utc))

    def test_insert(self):
        inserted = insert_crds(self.db, self.tag_id, [record("Foo"), record("Bar")])
        self.assertEqual(inserted, 2)
        self.assertEqual(count_crds(self.db, self.tag_id), 2)

    def test_insert_is_idempotent(self):
        """Inserting the same rows twice keeps one copy of each."""
        insert_crds(self.db, self.tag_id, [record("Foo"), record("Bar")])
        before = [r.data for r in get_crds(self.db, REPO, "v1")]

        inserted = insert_crds(self.db, self.tag_id, [record("Foo"), record("Bar")])
        after = [r.data for r in get_crds(self.db, REPO, "v1")]

        self.assertEqual(inserted, 0)
        self.assertEqual(before, after)

    def test_conflicting_row_keeps_first_value(self):
        insert_crds(self.db, self.tag_id, [record("Foo", filename="a.yaml")])
        insert_crds(self.db, self.tag_id, [record("Foo", filename="b.yaml")])
        self.assertEqual(get_crds(self.db, REPO, "v1")[0].filename, "a.yaml")

    def test_insert_nothing(self):
        self.assertEqual(insert_crds(self.db, self.tag_id, []), 0)

    def test_large_batches_are_chunked(self):
        records = [record(f"Kind{i}") for i in range(MAX_ROWS_PER_INSERT * 2 + 7)]
        inserted = insert_crds(self.db, self.tag_id, records)
        self.assertEqual(inserted, len(records))
        self.assertEqual(count_crds(self.db), len(records))

    def test_unknown_tag_violates_foreign_key(self):
        with self.assertRaises(sqlite3.IntegrityError):
            insert_crds(self.db, 9999, [record("Foo")])

    def test_build_insert(self):
        sql = build_insert("INSERT INTO t (a, b) VALUES ", 2, 2)
        self.assertEqual(sql, "INSERT INTO t (a, b) VALUES (?,?),(?,?)")


class TestCatalogReads(CatalogTestCase):
    """Tests for the rendering read paths."""

    def setUp(self):
        super().setUp()
        release_time = datetime(2024, 3, 1, tzinfo=timezone.utc)
        nightly_time = backdate_nightly(datetime(2024, 6, 1, tzinfo=timezone.utc))

        self.v1 = ensure_tag(self.db, REPO, "v1", datetime(2023, 1, 1, tzinfo=timezone.utc))
        self.v2 = ensure_tag(self.db, REPO, "v2", release_time)
        self.nightly = ensure_tag(self.db, REPO, "nightly", nightly_time)
        self.other = ensure_tag(self.db, "github.com/acme/other", "v2", release_time)

        insert_crds(self.db, self.v1, [record("Foo", "v1alpha1")])
        insert_crds(self.db, self.v2, [record("Foo", "v1"), record("Bar", "v1")])
        insert_crds(self.db, self.nightly, [record("Foo", "v2")])
        insert_crds(self.db, self.other, [record("Baz", "v1", group="other.io")])

    def test_tags_most_recent_first_nightly_last(self):
        names = [t.name for t in get_tags(self.db, REPO)]
        self.assertEqual(names, ["v2", "v1", "nightly"])

    def test_repo_match_is_case_insensitive(self):
        names = [t.name for t in get_tags(self.db, "GitHub.com/ACME/Operator")]
        self.assertEqual(names, ["v2", "v1", "nightly"])
        self.assertIsNotNone(get_tag(self.db, "github.com/Acme/Operator", "v1"))

    def test_latest_tag(self):
        self.assertEqual(get_latest_tag(self.db, REPO).name, "v2")
        self.assertIsNone(get_latest_tag(self.db, "github.com/acme/missing"))

    def test_get_crds_defaults_to_latest_tag(self):
        kinds = [r.kind for r in get_crds(self.db, REPO)]
        self.assertEqual(kinds, ["Bar", "Foo"])

    def test_get_crds_for_tag(self):
        records = get_crds(self.db, REPO, "v1")
        self.assertEqual([r.key for r in records], ["example.com/v1alpha1/Foo"])
        self.assertEqual(records[0].tag_id, self.v1)

    def test_get_crds_unknown(self):
        self.assertEqual(get_crds(self.db, REPO, "v9"), [])
        self.assertEqual(get_crds(self.db, "github.com/acme/missing"), [])

    def test_get_crd(self):
        found = get_crd(self.db, REPO, "example.com", "v1", "Foo", tag="v2")
        self.assertEqual(found.document(), {'kind': 'Foo', 'version': 'v1'})

        latest = get_crd(self.db, REPO, "example.com", "v1", "Bar")
        self.assertIsNotNone(latest)

        self.assertIsNone(get_crd(self.db, REPO, "example.com", "v1", "Foo", tag="v1"))

    def test_get_crds_for_tag_name(self):
        rows = get_crds_for_tag_name(self.db, "v2")
        self.assertEqual(
            [(r['repo'], r['kind']) for r in rows],
            [
                (REPO, "Bar"),
                ("github.com/acme/other", "Baz"),
                (REPO, "Foo"),
            ]
        )

    def test_get_repos(self):
        self.assertEqual(get_repos(self.db), ["github.com/acme/operator", "github.com/acme/other"])

    def test_count(self):
        self.assertEqual(count_crds(self.db), 5)
        self.assertEqual(count_crds(self.db, self.v2), 2)


if __name__ == '__main__':
    unittest.main()
