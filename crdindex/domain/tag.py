"""
Tag domain objects for crdindex.

An IndexTarget is one unit of work taken from the configuration:
an organization, a repository and a tag to index. A RepoTag is the
persisted counterpart once a tag has been indexed successfully.

Tags:
- Release tags: "v1.2.0", "23.11.0"
- Reserved "nightly": tracks the main branch and always sorts last
- None (targets only): enumerate every tag in the repository
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

NIGHTLY = "nightly"

# How far the nightly tag is pushed into the past so that it sorts after
# every real release in a "most recent first" listing.
NIGHTLY_BACKDATE_YEARS = 50

DEFAULT_HOST = "github.com"


def is_nightly(tag: Optional[str]) -> bool:
    """Check if a tag name is the reserved nightly literal."""
    return tag == NIGHTLY


def backdate_nightly(when: datetime) -> datetime:
    """
    Move a timestamp NIGHTLY_BACKDATE_YEARS calendar years into the past.

    February 29th maps to February 28th when the target year is not a
    leap year.
    """
    year = when.year - NIGHTLY_BACKDATE_YEARS
    try:
        return when.replace(year=year)
    except ValueError:
        return when.replace(year=year, day=28)


def normalize_time(when: datetime) -> datetime:
    """Convert a timestamp to UTC; naive timestamps are assumed to be UTC."""
    if when.tzinfo is None:
        return when.replace(tzinfo=timezone.utc)
    return when.astimezone(timezone.utc)


def format_time(when: datetime) -> str:
    """Serialize a timestamp for storage (UTC ISO-8601, second precision)."""
    return normalize_time(when).replace(microsecond=0).isoformat()


def parse_time(value: str) -> datetime:
    """Parse a stored timestamp back into an aware datetime."""
    return normalize_time(datetime.fromisoformat(value.replace('Z', '+00:00')))


@dataclass(frozen=True)
class IndexTarget:
    """
    One (org, repo, tag) unit to index.

    Attributes:
        org: Organization or user owning the repository
        repo: Repository name
        tag: Tag name, "nightly", or None to index every tag
        host: Code host used for the catalog key and the clone URL
    """

    org: str
    repo: str
    tag: Optional[str] = None
    host: str = DEFAULT_HOST

    @property
    def full_name(self) -> str:
        """Catalog key for the repository, e.g. "github.com/org/repo"."""
        return f"{self.host}/{self.org}/{self.repo}".lower()

    @property
    def slug(self) -> str:
        return f"{self.org}/{self.repo}"

    def with_tag(self, tag: Optional[str]) -> 'IndexTarget':
        return IndexTarget(org=self.org, repo=self.repo, tag=tag, host=self.host)

    def clone_url(self, template: str = "https://{host}/{org}/{repo}") -> str:
        """Render the remote URL for this target from a template."""
        return template.format(
            host=self.host,
            org=self.org.lower(),
            repo=self.repo.lower(),
            full_name=self.full_name,
        )

    def __str__(self) -> str:
        return f"{self.slug}@{self.tag or '*'}"


@dataclass(frozen=True)
class RepoTag:
    """
    A persisted tag of a repository.

    Attributes:
        id: Row ID in the catalog
        name: Tag name (or "nightly")
        repo: Repository catalog key ("github.com/org/repo")
        time: Commit timestamp (back-dated for nightly)
    """

    id: int
    name: str
    repo: str
    time: datetime

    @property
    def is_nightly(self) -> bool:
        return is_nightly(self.name)

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'name': self.name,
            'repo': self.repo,
            'time': format_time(self.time),
        }
