"""
CRD domain objects for crdindex.

A CRDRecord is one CustomResourceDefinition found in a repository at a
given tag, identified by its Group/Version/Kind. Records are keyed by
GVK within an indexing run so that each tag holds at most one record
per GVK.
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional
import json


@dataclass(frozen=True)
class GVK:
    """Group/Version/Kind triple identifying a schema variant."""

    group: str
    version: str
    kind: str

    @property
    def key(self) -> str:
        """Dedup key, e.g. "example.com/v1/Foo"."""
        return f"{self.group}/{self.version}/{self.kind}"

    @classmethod
    def parse(cls, key: str) -> 'GVK':
        """
        Parse a "group/version/kind" key.

        Raises:
            ValueError: If the key does not have exactly three parts
        """
        parts = key.split('/')
        if len(parts) != 3 or not all(parts):
            raise ValueError(f"Invalid GVK key: {key!r}")
        return cls(group=parts[0], version=parts[1], kind=parts[2])

    def __str__(self) -> str:
        return self.key


@dataclass
class CRDRecord:
    """
    A normalized CRD ready to be stored in the catalog.

    Attributes:
        gvk: Group/Version/Kind of the storage version
        filename: Base name of the manifest the CRD came from
        data: Normalized CRD document as JSON bytes
        tag_id: Catalog tag the record belongs to (set when persisted)
    """

    gvk: GVK
    filename: str
    data: bytes
    tag_id: Optional[int] = None

    @property
    def group(self) -> str:
        return self.gvk.group

    @property
    def version(self) -> str:
        return self.gvk.version

    @property
    def kind(self) -> str:
        return self.gvk.kind

    @property
    def key(self) -> str:
        return self.gvk.key

    def document(self) -> Dict[str, Any]:
        """Decode the stored CRD document."""
        return json.loads(self.data)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization (without the blob)."""
        return {
            'group': self.group,
            'version': self.version,
            'kind': self.kind,
            'filename': self.filename,
            'tag_id': self.tag_id,
        }

    def to_jsonl(self) -> str:
        """Convert to single-line JSON for streaming output."""
        return json.dumps(self.to_dict(), ensure_ascii=False)

    def __repr__(self) -> str:
        return f"CRDRecord(gvk={self.key!r}, filename={self.filename!r})"
