"""
Database module for crdindex.

Provides SQLite-based persistence for the CRD catalog. The indexer is
the only writer; documentation renderers read through the query
functions exported here.

Key components:
- connection: Database connection management
- schema: Table definitions and schema versioning
- catalog: Tag and CRD operations
"""

from .connection import (
    get_connection,
    get_db_path,
    Database,
    get_database_info,
    reset_database,
    transaction,
)
from .schema import CURRENT_VERSION, ensure_schema
from .catalog import (
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

__all__ = [
    # Connection
    'get_connection',
    'get_db_path',
    'Database',
    'get_database_info',
    'reset_database',
    'transaction',
    # Schema
    'ensure_schema',
    'CURRENT_VERSION',
    # Catalog
    'ensure_tag',
    'insert_crds',
    'get_tag',
    'get_tags',
    'get_latest_tag',
    'get_crds',
    'get_crd',
    'get_crds_for_tag_name',
    'get_repos',
    'count_crds',
]
