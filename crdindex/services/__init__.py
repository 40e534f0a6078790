"""
Service layer for crdindex.

Services orchestrate domain objects, infrastructure and the database:
- Indexer: Clone, grep, parse and persist CRDs per (org, repo, tag)
"""

from .index_service import (
    Indexer,
    IndexReport,
    IndexResult,
    IndexStage,
    extract_crds,
    merge_crds,
)

__all__ = [
    'Indexer',
    'IndexReport',
    'IndexResult',
    'IndexStage',
    'extract_crds',
    'merge_crds',
]
