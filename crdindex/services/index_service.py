"""
Index service for crdindex.

Drives the indexing pipeline for each (org, repo, tag) unit:

    NOT_STARTED -> CLONED -> GREPED -> PARSED -> PERSISTED -> DONE
                   (any stage) -> FAILED

1. CLONED:    shallow checkout of the tag (or main branch for "nightly")
2. GREPED:    manifest files containing the CRD marker text
3. PARSED:    documents split, normalized and keyed by group/version/kind
4. PERSISTED: tag row resolved or created, CRDs batch-inserted

A failing unit is logged and recorded; the remaining units still run.
Re-running a unit that was already indexed is a no-op for the catalog.
"""

import logging
import sqlite3
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Callable, Dict, Generator, Iterable, List, Optional

from ..crd import NormalizeOptions, NormalizedCRD, normalize_crd
from ..database import Database, ensure_tag, insert_crds, transaction
from ..domain.crd import CRDRecord
from ..domain.tag import IndexTarget, backdate_nightly, format_time, is_nightly
from ..infra.git_client import AcquisitionError, GitClient, Snapshot, checkout_snapshot
from ..manifests import split_yaml

logger = logging.getLogger(__name__)

DEFAULT_MARKER = "kind: CustomResourceDefinition"
DEFAULT_MANIFEST_PATH = r"\.ya?ml$"
DEFAULT_URL_TEMPLATE = "https://{host}/{org}/{repo}"


class IndexStage(str, Enum):
    """Stages of one index unit."""
    NOT_STARTED = "not_started"
    CLONED = "cloned"
    GREPED = "greped"
    PARSED = "parsed"
    PERSISTED = "persisted"
    DONE = "done"
    FAILED = "failed"


_STAGE_ORDER = [
    IndexStage.NOT_STARTED,
    IndexStage.CLONED,
    IndexStage.GREPED,
    IndexStage.PARSED,
    IndexStage.PERSISTED,
    IndexStage.DONE,
]


@dataclass
class IndexResult:
    """
    Outcome of indexing one (org, repo, tag) unit.

    Attributes:
        target: The unit that was indexed
        stage: Last stage reached (DONE or FAILED when finished)
        failed_at_stage: Stage that was being attempted when the unit failed
        error: Error message for failed units
        files: Number of manifest files that matched the marker
        crds: CRDs found, keyed by "group/version/kind"
        inserted: Rows actually inserted (0 when already indexed)
        tag_id: Catalog tag ID
        commit_time: Stored tag time (back-dated for nightly)
    """
    target: IndexTarget
    stage: IndexStage = IndexStage.NOT_STARTED
    failed_at_stage: Optional[IndexStage] = None
    error: Optional[str] = None
    files: int = 0
    crds: Dict[str, CRDRecord] = field(default_factory=dict)
    inserted: int = 0
    tag_id: Optional[int] = None
    commit_time: Optional[datetime] = None

    @property
    def ok(self) -> bool:
        return self.stage == IndexStage.DONE

    def advance(self, stage: IndexStage) -> None:
        logger.debug(f"{self.target}: {self.stage.value} -> {stage.value}")
        self.stage = stage

    def fail(self, error: Exception) -> None:
        if self.stage in _STAGE_ORDER[:-1]:
            self.failed_at_stage = _STAGE_ORDER[_STAGE_ORDER.index(self.stage) + 1]
        self.stage = IndexStage.FAILED
        self.error = str(error) or type(error).__name__

    def to_dict(self) -> dict:
        return {
            'org': self.target.org,
            'repo': self.target.repo,
            'tag': self.target.tag,
            'stage': self.stage.value,
            'failed_at_stage': self.failed_at_stage.value if self.failed_at_stage else None,
            'error': self.error,
            'files': self.files,
            'crds': sorted(self.crds),
            'inserted': self.inserted,
            'time': format_time(self.commit_time) if self.commit_time else None,
        }


@dataclass
class IndexReport:
    """Results of an indexing run."""
    results: List[IndexResult] = field(default_factory=list)

    @property
    def succeeded(self) -> int:
        return sum(1 for r in self.results if r.ok)

    @property
    def failed(self) -> int:
        return sum(1 for r in self.results if not r.ok)

    @property
    def crds_found(self) -> int:
        return sum(len(r.crds) for r in self.results)

    @property
    def crds_inserted(self) -> int:
        return sum(r.inserted for r in self.results)

    def to_dict(self) -> dict:
        return {
            'units': len(self.results),
            'succeeded': self.succeeded,
            'failed': self.failed,
            'crds_found': self.crds_found,
            'crds_inserted': self.crds_inserted,
        }


def extract_crds(
    filename: str,
    data: bytes,
    options: Optional[NormalizeOptions] = None,
) -> List[NormalizedCRD]:
    """Split one manifest file and normalize every CRD in it, in order."""
    crds = []
    for document in split_yaml(data, filename):
        crd = normalize_crd(document, filename, options)
        if crd is not None:
            crds.append(crd)
    return crds


def merge_crds(collected: Dict[str, CRDRecord], crds: Iterable[NormalizedCRD]) -> None:
    """
    Add CRDs to a GVK-keyed mapping.

    A later CRD replaces an earlier one with the same group/version/kind;
    the key keeps its original position. A CRD whose document cannot be
    encoded is dropped on its own.
    """
    for crd in crds:
        try:
            record = crd.to_record()
        except (TypeError, ValueError) as e:
            logger.warning(f"Dropping {crd.key} from {crd.filename}, cannot encode it: {e}")
            continue
        if crd.key in collected:
            logger.debug(f"{crd.key} from {crd.filename} replaces {collected[crd.key].filename}")
        collected[crd.key] = record


class Indexer:
    """
    Indexes CRDs of configured repositories into the catalog.

    Example:
        config = load_config()
        with Database(config=config) as db:
            indexer = Indexer(db, config=config)
            report = indexer.index_all(load_targets(config))
            print(report.to_dict())
    """

    def __init__(
        self,
        db: Database,
        config: Optional[dict] = None,
        git_client: Optional[GitClient] = None,
        options: Optional[NormalizeOptions] = None,
        dry_run: bool = False,
    ):
        """
        Initialize Indexer.

        Args:
            db: Open catalog database
            config: Configuration dictionary (see config.get_default_config)
            git_client: Git client instance (created from config if None)
            options: Normalization options (read from config if None)
            dry_run: Clone, grep and parse, but do not write the catalog
        """
        self.db = db
        self.config = config or {}
        self.git = git_client or GitClient.from_config(self.config)
        self.options = options or NormalizeOptions.from_config(self.config)
        self.dry_run = dry_run

        index_config = self.config.get('index', {})
        self.marker = index_config.get('marker') or DEFAULT_MARKER
        self.manifest_path = index_config.get('manifest_path') or DEFAULT_MANIFEST_PATH
        self.url_template = self.config.get('git', {}).get('url_template') or DEFAULT_URL_TEMPLATE

    def index_all(
        self,
        targets: Iterable[IndexTarget],
        progress: Optional[Callable[[IndexResult], None]] = None,
        only: Optional[str] = None,
    ) -> IndexReport:
        """
        Index targets one after the other.

        Targets without a tag expand to every tag of their repository.

        Args:
            targets: Units to index
            progress: Called with each finished unit
            only: For targets without a tag, restrict to this tag name

        Returns:
            IndexReport with one result per (org, repo, tag) unit
        """
        report = IndexReport()
        for target in targets:
            logger.info(f"Indexing {target}")
            if target.tag is None:
                results = self.index_tags(target, only=only)
            else:
                results = [self.index_target(target)]

            for result in results:
                report.results.append(result)
                if progress:
                    progress(result)

        logger.info(
            f"Indexed {report.succeeded} unit(s), {report.failed} failed, "
            f"{report.crds_inserted} new CRD(s)"
        )
        return report

    def index_target(self, target: IndexTarget) -> IndexResult:
        """
        Index a repository at a single tag (or "nightly").

        Returns:
            IndexResult; failures are recorded, not raised
        """
        if target.tag is None:
            raise ValueError(f"{target.slug}: a tag is required, use index_tags() for every tag")

        result = IndexResult(target=target)
        with self._unit(result):
            url = target.clone_url(self.url_template)
            with checkout_snapshot(self.git, url, target.tag) as snapshot:
                result.advance(IndexStage.CLONED)
                self._index_snapshot(snapshot, result)
        return result

    def index_tags(self, target: IndexTarget, only: Optional[str] = None) -> List[IndexResult]:
        """
        Index every tag of a repository from a single clone.

        The worktree is reset to each tag in turn. A tag that fails does
        not stop the others.

        Args:
            target: Repository to index (its tag is ignored)
            only: Restrict to the tag with this name

        Returns:
            One IndexResult per tag, or a single failed result when the
            clone fails or the tag named by only does not exist
        """
        results: List[IndexResult] = []
        clone_result = IndexResult(target=target.with_tag(only))

        with self._unit(clone_result):
            url = target.clone_url(self.url_template)
            with checkout_snapshot(self.git, url, None) as snapshot:
                tags = snapshot.tags()
                if only is not None:
                    tags = [t for t in tags if t.name == only]
                    if not tags:
                        raise AcquisitionError(f"Tag {only} not found in {target.slug}")
                if not tags:
                    logger.warning(f"No tags to index in {target.slug}")

                for git_tag in tags:
                    result = IndexResult(target=target.with_tag(git_tag.name))
                    with self._unit(result):
                        snapshot.checkout(git_tag.commit)
                        result.advance(IndexStage.CLONED)
                        self._index_snapshot(snapshot, result)
                    results.append(result)

        if clone_result.stage == IndexStage.FAILED:
            results.append(clone_result)
        return results

    @contextmanager
    def _unit(self, result: IndexResult) -> Generator[None, None, None]:
        """Record any failure of a unit on its result instead of raising."""
        try:
            yield
        except AcquisitionError as e:
            result.fail(e)
            logger.error(f"Failed to acquire {result.target}: {e}")
        except sqlite3.Error as e:
            result.fail(e)
            logger.error(f"Failed to persist {result.target}, re-run to retry: {e}")
        except Exception as e:
            result.fail(e)
            logger.exception(f"Failed to index {result.target}: {type(e).__name__}: {e}")

    def _index_snapshot(self, snapshot: Snapshot, result: IndexResult) -> None:
        """Run grep, parse and persist against a checked-out snapshot."""
        files = snapshot.grep(self.marker, self.manifest_path)
        result.files = len(files)
        result.advance(IndexStage.GREPED)
        logger.info(f"{result.target}: {len(files)} candidate file(s)")

        for name in files:
            try:
                data = snapshot.read_bytes(name)
            except OSError as e:
                logger.warning(f"Failed to read {name} in {result.target}: {e}")
                continue
            merge_crds(result.crds, extract_crds(name, data, self.options))
        result.advance(IndexStage.PARSED)
        logger.info(f"{result.target}: found {len(result.crds)} CRD(s)")

        if self.dry_run:
            result.advance(IndexStage.DONE)
            return

        commit_time = snapshot.commit_time()
        if is_nightly(result.target.tag):
            commit_time = backdate_nightly(commit_time)
        result.commit_time = commit_time

        self.persist(result)
        result.advance(IndexStage.DONE)

    def persist(self, result: IndexResult) -> None:
        """
        Store the tag and its CRDs in one transaction.

        The tag row is created only if absent and CRD conflicts are
        ignored, so persisting the same unit twice changes nothing.
        """
        if result.commit_time is None:
            raise ValueError(f"{result.target}: commit time not resolved")

        with transaction(self.db):
            result.tag_id = ensure_tag(
                self.db,
                repo=result.target.full_name,
                name=result.target.tag,
                time=result.commit_time,
            )
            result.inserted = insert_crds(self.db, result.tag_id, result.crds.values())
        result.advance(IndexStage.PERSISTED)
        logger.info(f"{result.target}: inserted {result.inserted} new CRD row(s)")
