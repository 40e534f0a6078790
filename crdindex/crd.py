"""
CustomResourceDefinition normalization for crdindex.

Turns one YAML document into a NormalizedCRD:
- Detects whether the document is a CustomResourceDefinition
- Strips fields that are irrelevant for documentation
  (labels, annotations, the conversion webhook block)
- Resolves the Group/Version/Kind of the storage version
- Resolves the OpenAPI schema of that version

Anything that is not a usable CRD yields None. Filtering out ConfigMaps,
Deployments and friends is routine, so nothing here raises.

Supported shapes:

    # apiextensions.k8s.io/v1beta1, legacy single version
    spec:
      group: example.com
      version: v1
      names: {kind: Foo}
      validation:
        openAPIV3Schema: {...}

    # apiextensions.k8s.io/v1 (or v1beta1 with versions)
    spec:
      group: example.com
      names: {kind: Foo}
      versions:
        - name: v1alpha1
          storage: false
        - name: v1
          storage: true
          schema:
            openAPIV3Schema: {...}
"""

import json
import logging
from dataclasses import dataclass, field
from pathlib import PurePosixPath
from typing import Any, Dict, List, Optional, Tuple

from .domain.crd import GVK, CRDRecord
from .manifests import DOCUMENT_ERRORS, load_document

logger = logging.getLogger(__name__)

CRD_KIND = "CustomResourceDefinition"
CRD_GROUP = "apiextensions.k8s.io"
SUPPORTED_API_VERSIONS = (f"{CRD_GROUP}/v1", f"{CRD_GROUP}/v1beta1")


@dataclass(frozen=True)
class NormalizeOptions:
    """Which operationally irrelevant fields to remove from a CRD."""
    strip_labels: bool = True
    strip_annotations: bool = True
    strip_conversion: bool = True

    @classmethod
    def from_config(cls, config: Optional[dict] = None) -> 'NormalizeOptions':
        index_config = (config or {}).get('index', {})
        return cls(
            strip_labels=bool(index_config.get('strip_labels', True)),
            strip_annotations=bool(index_config.get('strip_annotations', True)),
            strip_conversion=bool(index_config.get('strip_conversion', True)),
        )


@dataclass
class NormalizedCRD:
    """
    A CRD ready to be stored.

    Attributes:
        gvk: Group/Version/Kind of the storage version
        filename: Base name of the source manifest
        document: The CRD after stripping
        schema: OpenAPI v3 schema of the storage version
    """
    gvk: GVK
    filename: str
    document: Dict[str, Any]
    schema: Dict[str, Any] = field(default_factory=dict)

    @property
    def key(self) -> str:
        return self.gvk.key

    @property
    def data(self) -> bytes:
        """Compact, key-sorted JSON of the document (the stored blob)."""
        return json.dumps(
            self.document,
            sort_keys=True,
            separators=(',', ':'),
            default=str,
        ).encode('utf-8')

    def to_record(self) -> CRDRecord:
        return CRDRecord(gvk=self.gvk, filename=self.filename, data=self.data)


def _load(data: bytes) -> Optional[Dict[str, Any]]:
    try:
        document = load_document(data)
    except DOCUMENT_ERRORS as e:
        logger.debug(f"Unparsable document: {e}")
        return None
    return document if isinstance(document, dict) else None


def is_crd(document: Any) -> bool:
    """Check if a decoded document is a supported CustomResourceDefinition."""
    if not isinstance(document, dict):
        return False
    return (
        document.get('kind') == CRD_KIND
        and document.get('apiVersion') in SUPPORTED_API_VERSIONS
    )


def strip_fields(document: Dict[str, Any], options: NormalizeOptions) -> Dict[str, Any]:
    """Return a copy of the CRD without the fields the options ask to drop."""
    stripped = dict(document)

    metadata = stripped.get('metadata')
    if isinstance(metadata, dict):
        metadata = dict(metadata)
        if options.strip_labels:
            metadata.pop('labels', None)
        if options.strip_annotations:
            metadata.pop('annotations', None)
        stripped['metadata'] = metadata

    spec = stripped.get('spec')
    if isinstance(spec, dict) and options.strip_conversion:
        spec = dict(spec)
        spec.pop('conversion', None)
        stripped['spec'] = spec

    return stripped


def _openapi_schema(container: Any, key: str) -> Optional[Dict[str, Any]]:
    """Fetch container[key]["openAPIV3Schema"] if it is a mapping."""
    if not isinstance(container, dict):
        return None
    holder = container.get(key)
    if not isinstance(holder, dict):
        return None
    schema = holder.get('openAPIV3Schema')
    return schema if isinstance(schema, dict) else None


def _declared_versions(spec: Dict[str, Any]) -> List[Dict[str, Any]]:
    versions = spec.get('versions')
    if isinstance(versions, list) and versions:
        return [v for v in versions if isinstance(v, dict) and v.get('name')]
    legacy = spec.get('version')
    if legacy:
        # Legacy single-version form is implicitly the storage version
        return [{'name': str(legacy), 'storage': True}]
    return []


def resolve_storage_version(spec: Dict[str, Any]) -> Optional[Tuple[str, Optional[Dict[str, Any]]]]:
    """
    Select the storage version of a CRD spec and its schema.

    Versions are scanned in declaration order and the first one flagged
    storage wins. A lone declared version is the storage version. The
    per-version schema is preferred over the top-level validation schema.

    Returns:
        (version name, schema or None), or None when no version qualifies
    """
    versions = _declared_versions(spec)
    if not versions:
        return None

    selected = None
    if len(versions) == 1:
        selected = versions[0]
    else:
        for version in versions:
            if version.get('storage') is True:
                selected = version
                break
    if selected is None:
        return None

    schema = _openapi_schema(selected, 'schema') or _openapi_schema(spec, 'validation')
    return str(selected['name']), schema


def stored_schema(document: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """Schema of the storage version of a (stored) CRD document."""
    spec = document.get('spec') if isinstance(document, dict) else None
    if not isinstance(spec, dict):
        return None
    resolved = resolve_storage_version(spec)
    return resolved[1] if resolved else None


def normalize_document(
    document: Dict[str, Any],
    filename: str,
    options: Optional[NormalizeOptions] = None,
) -> Optional[NormalizedCRD]:
    """Normalize an already decoded document. See normalize_crd."""
    if not is_crd(document):
        return None

    options = options or NormalizeOptions()
    crd = strip_fields(document, options)

    spec = crd.get('spec')
    if not isinstance(spec, dict):
        logger.debug(f"CRD without spec in {filename}")
        return None

    group = spec.get('group')
    names = spec.get('names')
    kind = names.get('kind') if isinstance(names, dict) else None
    if not group or not kind:
        logger.debug(f"CRD without group or kind in {filename}")
        return None

    resolved = resolve_storage_version(spec)
    if resolved is None:
        logger.debug(f"No storage version for {group}/{kind} in {filename}, dropping")
        return None

    version, schema = resolved
    if schema is None:
        logger.debug(f"No schema for {group}/{version}/{kind} in {filename}, dropping")
        return None

    return NormalizedCRD(
        gvk=GVK(group=str(group), version=version, kind=str(kind)),
        filename=PurePosixPath(filename).name,
        document=crd,
        schema=schema,
    )


def normalize_crd(
    data: bytes,
    filename: str,
    options: Optional[NormalizeOptions] = None,
) -> Optional[NormalizedCRD]:
    """
    Parse and normalize one YAML document.

    Args:
        data: A single YAML document
        filename: Path of the manifest the document came from
        options: Fields to strip (all stripped by default)

    Returns:
        NormalizedCRD, or None when the document is not a usable CRD
    """
    document = _load(data)
    if document is None:
        return None
    return normalize_document(document, filename, options)
