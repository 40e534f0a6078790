"""
Infrastructure layer for crdindex.

Contains abstractions for external systems:
- GitClient: Git command execution
- Snapshot / checkout_snapshot: Ephemeral shallow checkouts

These provide clean interfaces that can be mocked for testing.
"""

from .git_client import (
    AcquisitionError,
    GitClient,
    GitTag,
    Snapshot,
    checkout_snapshot,
)

__all__ = [
    'AcquisitionError',
    'GitClient',
    'GitTag',
    'Snapshot',
    'checkout_snapshot',
]
