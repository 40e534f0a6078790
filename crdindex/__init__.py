"""
crdindex - A catalog of Kubernetes CustomResourceDefinitions across git repositories.

crdindex clones configured repositories at each requested tag, finds the
CRD manifests they ship, normalizes every CRD to its storage version and
stores it in a SQLite catalog keyed by repository, tag and Group/Version/Kind.

Quick Start:
    import crdindex

    config = crdindex.load_config()
    with crdindex.Database(config=config) as db:
        indexer = crdindex.Indexer(db, config=config)
        report = indexer.index_all(crdindex.load_targets(config))
        print(report.to_dict())

    # Read side
    with crdindex.Database(config=config, read_only=True) as db:
        for tag in crdindex.get_tags(db, "github.com/acme/operator"):
            print(tag.name, tag.time)

Pipeline:
    Snapshot    - Shallow checkout of a repository at a tag (or "nightly")
    split_yaml  - Multi-document YAML split into standalone documents
    normalize_crd - CRD filter, field stripping, storage version selection
    Indexer     - Per-unit clone, grep, parse, persist
    Catalog     - Append-only tags and crds tables
"""

__version__ = "0.1.0"

# Domain objects
from .domain import (
    GVK,
    CRDRecord,
    IndexTarget,
    RepoTag,
    NIGHTLY,
)

# Pipeline stages
from .manifests import split_yaml
from .crd import NormalizeOptions, NormalizedCRD, normalize_crd, stored_schema
from .infra import GitClient, Snapshot, AcquisitionError, checkout_snapshot

# Services
from .services import Indexer, IndexReport, IndexResult, IndexStage

# Catalog
from .database import (
    Database,
    get_tags,
    get_crds,
    get_crd,
    get_crds_for_tag_name,
    get_repos,
)

# Configuration
from .config import load_config, load_targets

__all__ = [
    # Version
    "__version__",
    # Domain objects
    "GVK",
    "CRDRecord",
    "IndexTarget",
    "RepoTag",
    "NIGHTLY",
    # Pipeline stages
    "split_yaml",
    "NormalizeOptions",
    "NormalizedCRD",
    "normalize_crd",
    "stored_schema",
    "GitClient",
    "Snapshot",
    "AcquisitionError",
    "checkout_snapshot",
    # Services
    "Indexer",
    "IndexReport",
    "IndexResult",
    "IndexStage",
    # Catalog
    "Database",
    "get_tags",
    "get_crds",
    "get_crd",
    "get_crds_for_tag_name",
    "get_repos",
    # Configuration
    "load_config",
    "load_targets",
]
