"""
Git client infrastructure for crdindex.

Provides a clean abstraction over git command execution.
All git operations go through this client, making them:
- Easy to mock for testing
- Consistent in error handling
- Isolated from business logic

Repositories are acquired as shallow (depth 1) checkouts inside a
temporary directory that lives exactly as long as the
checkout_snapshot() context.
"""

import os
import re
import shutil
import subprocess
import tempfile
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Generator, List, Optional, Tuple
import logging

from ..domain.tag import NIGHTLY

logger = logging.getLogger(__name__)

WORKSPACE_PREFIX = "crdindex-"


class AcquisitionError(Exception):
    """Raised when a repository cannot be cloned or inspected."""

    def __init__(self, message: str, returncode: Optional[int] = None, stderr: str = ""):
        super().__init__(message)
        self.returncode = returncode
        self.stderr = stderr


@dataclass
class GitTag:
    """A git tag with the commit it points at."""
    name: str
    commit: str
    date: Optional[datetime] = None


def _parse_git_date(value: str) -> Optional[datetime]:
    """Parse a strict ISO-8601 date from git into an aware UTC datetime."""
    value = value.strip()
    if not value:
        return None
    try:
        date = datetime.fromisoformat(value.replace('Z', '+00:00'))
    except ValueError:
        return None
    if date.tzinfo is None:
        return date.replace(tzinfo=timezone.utc)
    return date.astimezone(timezone.utc)


class GitClient:
    """
    Abstraction over git commands.

    Provides methods for the operations needed to index a remote
    repository with consistent error handling and return types.

    Example:
        client = GitClient()
        with checkout_snapshot(client, "https://github.com/org/repo", "v1.0.0") as snap:
            for path in snap.grep("kind: CustomResourceDefinition", r"\\.ya?ml$"):
                print(path)
    """

    def __init__(self, timeout: Optional[int] = None, main_branch: str = "main"):
        """
        Initialize GitClient.

        Args:
            timeout: Command timeout in seconds (default: no timeout)
            main_branch: Branch cloned for the "nightly" reference
        """
        self.timeout = timeout
        self.main_branch = main_branch

    @classmethod
    def from_config(cls, config: Optional[dict] = None) -> 'GitClient':
        git_config = (config or {}).get('git', {})
        return cls(
            timeout=git_config.get('timeout'),
            main_branch=git_config.get('main_branch') or 'main',
        )

    def _run(
        self,
        args: List[str],
        cwd: Optional[str] = None,
        check: bool = False,
    ) -> Tuple[Optional[str], int]:
        """
        Run a git command.

        Args:
            args: Arguments passed to git
            cwd: Working directory
            check: Raise AcquisitionError on failure

        Returns:
            Tuple of (stdout, returncode)
        """
        cmd = ["git", *args]
        env = {**os.environ, "GIT_TERMINAL_PROMPT": "0"}
        try:
            result = subprocess.run(
                cmd,
                cwd=cwd,
                capture_output=True,
                text=True,
                timeout=self.timeout,
                env=env,
            )
        except subprocess.TimeoutExpired:
            logger.warning(f"Git command timed out: {' '.join(cmd)}")
            if check:
                raise AcquisitionError(f"git {args[0]} timed out after {self.timeout}s")
            return None, -1
        except OSError as e:
            logger.error(f"Git command failed: {' '.join(cmd)} - {e}")
            if check:
                raise AcquisitionError(f"git {args[0]} could not be started: {e}")
            return None, -1

        if check and result.returncode != 0:
            stderr = (result.stderr or "").strip()
            raise AcquisitionError(
                f"git {args[0]} failed ({result.returncode}): {stderr}",
                returncode=result.returncode,
                stderr=stderr,
            )

        output = result.stdout
        return output if output else None, result.returncode

    def clone(self, url: str, dest: str, ref: Optional[str] = None) -> None:
        """
        Shallow-clone a repository.

        Args:
            url: Remote URL
            dest: Target directory (must be empty or missing)
            ref: Tag to clone, "nightly" for the main branch, or None for
                 the default branch plus every tag reference

        Raises:
            AcquisitionError: If the clone fails
        """
        args = ["clone", "--depth", "1"]
        if ref == NIGHTLY:
            args += ["--single-branch", "--branch", self.main_branch]
        elif ref:
            args += ["--single-branch", "--branch", ref]
        args += [url, dest]

        logger.info(f"Cloning {url} ({ref or 'default branch'})")
        self._run(args, check=True)

        if not ref:
            self.fetch_tags(dest)

    def fetch_tags(self, path: str, remote: str = "origin") -> None:
        """Fetch every tag reference at depth 1."""
        self._run(
            ["fetch", "--depth", "1", "--no-recurse-submodules", remote,
             "+refs/tags/*:refs/tags/*"],
            cwd=path,
            check=True,
        )

    def tags(self, path: str) -> List[GitTag]:
        """
        List tag references of a repository.

        Annotated tags are peeled to the commit they point at.

        Returns:
            List of GitTag objects, sorted by name
        """
        fmt = "%(refname:short)|%(objectname)|%(*objectname)|%(committerdate:iso-strict)|%(*committerdate:iso-strict)"
        output, code = self._run(
            ["for-each-ref", "--sort=refname", f"--format={fmt}", "refs/tags"],
            cwd=path,
        )
        if code != 0 or not output:
            return []

        tags = []
        for line in output.strip().split('\n'):
            parts = line.split('|')
            if len(parts) != 5 or not parts[0]:
                continue
            name, obj, peeled, date, peeled_date = (p.strip() for p in parts)
            tags.append(GitTag(
                name=name,
                commit=peeled or obj,
                date=_parse_git_date(peeled_date or date),
            ))
        return tags

    def checkout(self, path: str, revision: str) -> None:
        """Force the worktree to a revision and hard-reset it."""
        self._run(["checkout", "--force", "--detach", revision], cwd=path, check=True)
        self._run(["reset", "--hard"], cwd=path, check=True)

    def commit_time(self, path: str, revision: str = "HEAD") -> datetime:
        """
        Get the committer timestamp of a revision.

        Raises:
            AcquisitionError: If the revision cannot be resolved
        """
        output, _ = self._run(["log", "-1", "--format=%cI", revision], cwd=path, check=True)
        date = _parse_git_date(output or "")
        if date is None:
            raise AcquisitionError(f"Unable to resolve commit time of {revision}")
        return date

    def ls_files(self, path: str) -> List[str]:
        """List tracked files (relative POSIX paths)."""
        output, _ = self._run(["ls-files", "-z"], cwd=path, check=True)
        if not output:
            return []
        return [name for name in output.split('\0') if name]


@dataclass
class Snapshot:
    """
    A shallow checkout living in a temporary directory.

    Only valid inside the checkout_snapshot() block that created it.
    """
    path: Path
    client: GitClient
    url: str
    ref: Optional[str] = None
    _tags: Optional[List[GitTag]] = field(default=None, repr=False)

    def grep(self, content_pattern: str, path_pattern: str) -> List[str]:
        """
        Find tracked files whose path and content both match.

        Args:
            content_pattern: Regular expression searched in file contents
            path_pattern: Regular expression searched in the relative path

        Returns:
            Matching relative paths, in git index order
        """
        content_re = re.compile(content_pattern.encode('utf-8'), re.MULTILINE)
        path_re = re.compile(path_pattern)

        matches = []
        for name in self.client.ls_files(str(self.path)):
            if not path_re.search(name):
                continue
            try:
                content = self.read_bytes(name)
            except OSError as e:
                logger.debug(f"Skipping unreadable file {name}: {e}")
                continue
            if content_re.search(content):
                matches.append(name)
        return matches

    def read_bytes(self, name: str) -> bytes:
        """
        Read a tracked regular file of the worktree.

        Raises:
            OSError: For symlinks, special files and paths that resolve
                outside the workspace
        """
        path = self.path / name
        if path.is_symlink():
            raise OSError(f"Not following symlink {name}")
        if not path.resolve().is_relative_to(self.path.resolve()):
            raise OSError(f"{name} resolves outside the workspace")
        if not path.is_file():
            raise OSError(f"{name} is not a regular file")
        return path.read_bytes()

    def tags(self) -> List[GitTag]:
        if self._tags is None:
            self._tags = self.client.tags(str(self.path))
        return self._tags

    def checkout(self, revision: str) -> None:
        self.client.checkout(str(self.path), revision)

    def commit_time(self, revision: str = "HEAD") -> datetime:
        return self.client.commit_time(str(self.path), revision)


@contextmanager
def checkout_snapshot(
    client: GitClient,
    url: str,
    ref: Optional[str] = None,
) -> Generator[Snapshot, None, None]:
    """
    Clone a repository into a fresh temporary directory.

    The directory is removed when the block exits, whether the clone or
    the caller succeeded or not.

    Usage:
        with checkout_snapshot(GitClient(), url, "v1.0.0") as snap:
            files = snap.grep(...)

    Raises:
        AcquisitionError: If the clone fails
    """
    workspace = tempfile.mkdtemp(prefix=WORKSPACE_PREFIX)
    try:
        client.clone(url, workspace, ref)
        yield Snapshot(path=Path(workspace), client=client, url=url, ref=ref)
    finally:
        shutil.rmtree(workspace, ignore_errors=True)
