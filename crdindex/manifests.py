"""
Multi-document YAML splitting for crdindex.

Kubernetes manifests often bundle many objects in a single file,
separated by "---" markers. This module cuts a file into its documents
and decodes each one on its own, so a single broken document is logged
and skipped while its siblings are still returned.

Each returned slice is the document decoded into a mapping and dumped
again with sorted keys, so slices are stable regardless of the source
formatting.
"""

import logging
import re
from typing import Any, Iterator, List, Union

import yaml

logger = logging.getLogger(__name__)

# "---" at column 0, alone or followed by whitespace (comment, tag, content)
_DOC_START = re.compile(r'^---(?=\s|$)')
# "..." at column 0 ends a document
_DOC_END = re.compile(r'^\.\.\.\s*$')

_BOOL_TAG = 'tag:yaml.org,2002:bool'


class ManifestLoader(yaml.SafeLoader):
    """
    SafeLoader with YAML 1.2 booleans.

    Only true, True, TRUE and the false forms resolve to booleans, so keys and
    values such as on, off, yes and no stay strings. Schema property
    names like "on" are common in CRDs.
    """


ManifestLoader.yaml_implicit_resolvers = {
    first: [(tag, regexp) for tag, regexp in resolvers if tag != _BOOL_TAG]
    for first, resolvers in yaml.SafeLoader.yaml_implicit_resolvers.items()
}
ManifestLoader.add_implicit_resolver(
    _BOOL_TAG,
    re.compile(r'^(?:true|True|TRUE|false|False|FALSE)$'),
    list('tTfF'),
)

# Errors a single document can raise while being decoded or re-encoded.
# Constructors raise ValueError/TypeError for values such as 2020-02-30.
DOCUMENT_ERRORS = (yaml.YAMLError, ValueError, TypeError)


def load_document(data: Union[str, bytes]) -> Any:
    """Decode one YAML document (str or bytes) with ManifestLoader."""
    return yaml.load(data, Loader=ManifestLoader)


def _is_blank(lines: List[str]) -> bool:
    """True when a chunk holds nothing but whitespace and comments."""
    for line in lines:
        stripped = line.strip()
        if stripped and not stripped.startswith('#'):
            return False
    return True


def _iter_chunks(text: str) -> Iterator[str]:
    """Cut YAML text into raw per-document chunks, in order."""
    chunk: List[str] = []

    for line in text.splitlines(keepends=True):
        if _DOC_START.match(line):
            if not _is_blank(chunk):
                yield ''.join(chunk)
            rest = line[3:].lstrip(' \t')
            chunk = [rest] if rest.strip() else []
        elif _DOC_END.match(line):
            if not _is_blank(chunk):
                yield ''.join(chunk)
            chunk = []
        elif line.startswith('%') and _is_blank(chunk):
            # Directives (%YAML, %TAG) only precede a document marker
            continue
        else:
            chunk.append(line)

    if not _is_blank(chunk):
        yield ''.join(chunk)


def dump_document(document: dict) -> bytes:
    """Serialize a decoded document canonically (sorted keys, block style)."""
    return yaml.safe_dump(
        document,
        sort_keys=True,
        default_flow_style=False,
        allow_unicode=True,
    ).encode('utf-8')


def iter_documents(data: bytes, filename: str = "<unknown>") -> Iterator[bytes]:
    """
    Iterate over the YAML documents of a file.

    Documents that fail to decode, or that are not mappings, are logged
    and skipped; the remaining documents are still yielded in order.

    Args:
        data: Raw file content
        filename: Name used in log messages

    Yields:
        Canonical YAML bytes, one per valid document
    """
    text = data.decode('utf-8-sig', errors='replace')

    for index, chunk in enumerate(_iter_chunks(text)):
        try:
            document = load_document(chunk)
        except DOCUMENT_ERRORS as e:
            logger.warning(f"Failed to decode document {index} of {filename}: {type(e).__name__}: {e}")
            continue

        if document is None:
            continue
        if not isinstance(document, dict):
            logger.debug(
                f"Skipping document {index} of {filename}: "
                f"expected a mapping, got {type(document).__name__}"
            )
            continue

        try:
            dumped = dump_document(document)
        except DOCUMENT_ERRORS as e:
            logger.warning(f"Failed to encode document {index} of {filename}: {type(e).__name__}: {e}")
            continue
        yield dumped


def split_yaml(data: bytes, filename: str = "<unknown>") -> List[bytes]:
    """
    Split a multi-document YAML file into canonical document slices.

    A failure of the decoder itself (anything outside DOCUMENT_ERRORS)
    turns into an empty result for the whole file rather than aborting
    the caller.

    Args:
        data: Raw file content
        filename: Name used in log messages

    Returns:
        List of canonical YAML documents, in file order
    """
    try:
        return list(iter_documents(data, filename))
    except Exception as e:
        logger.error(f"Failed to split {filename}, ignoring the file: {type(e).__name__}: {e}")
        return []
