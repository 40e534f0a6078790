"""
Domain layer for crdindex.

Contains pure domain objects with no I/O or side effects:
- IndexTarget: An (org, repo, tag) unit of work
- RepoTag: A persisted repository tag
- GVK: Group/Version/Kind identity of a CRD
- CRDRecord: A normalized CRD ready for the catalog
"""

from .tag import (
    IndexTarget,
    RepoTag,
    NIGHTLY,
    NIGHTLY_BACKDATE_YEARS,
    is_nightly,
    backdate_nightly,
    format_time,
    parse_time,
)
from .crd import GVK, CRDRecord

__all__ = [
    'IndexTarget',
    'RepoTag',
    'NIGHTLY',
    'NIGHTLY_BACKDATE_YEARS',
    'is_nightly',
    'backdate_nightly',
    'format_time',
    'parse_time',
    'GVK',
    'CRDRecord',
]
