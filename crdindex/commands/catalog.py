"""
Catalog read commands for crdindex.

Read-only views over the catalog, printed as JSON lines:
- tags:    tags of a repository, most recent first
- crds:    CRDs of a repository at a tag (default: most recent tag)
- show:    one CRD document
- release: CRDs of every repository at a tag name
- repos:   indexed repositories

Plus 'db' for catalog maintenance.
"""

import json
from typing import Optional

import click

from ..cli_utils import add_common_options, resolve_db_path, split_repo, standard_command
from ..config import load_config
from ..crd import stored_schema
from ..database import (
    Database,
    get_crd,
    get_crds,
    get_crds_for_tag_name,
    get_database_info,
    get_repos,
    get_tags,
    reset_database,
)
from ..domain.tag import DEFAULT_HOST, IndexTarget
from ..exit_codes import NotFoundError


def _open_catalog(config_path: Optional[str], db: Optional[str]):
    config = load_config(config_path)
    db_path = resolve_db_path(config, db)
    if not db_path.exists():
        raise NotFoundError(f"No catalog at {db_path}; run 'crdindex index' first")
    return config, Database(db_path=db_path, read_only=True)


def _repo_key(config: dict, value: str) -> str:
    org, repo = split_repo(value)
    host = config.get('git', {}).get('host') or DEFAULT_HOST
    return IndexTarget(org=org, repo=repo, host=host).full_name


@click.command('tags')
@click.argument('repo')
@add_common_options('config', 'db', 'quiet')
@standard_command(streaming=True)
def tags_handler(repo: str, config_path: Optional[str], db: Optional[str], quiet: bool):
    """
    List indexed tags of ORG/REPO, most recent first.

    The nightly tag is always listed last.
    """
    config, catalog = _open_catalog(config_path, db)
    with catalog:
        tags = get_tags(catalog, _repo_key(config, repo))
    if not tags:
        raise NotFoundError(f"No indexed tags for {repo}")
    return [tag.to_dict() for tag in tags]


@click.command('crds')
@click.argument('repo')
@click.option('--tag', help='Tag name (default: most recent tag)')
@add_common_options('config', 'db', 'quiet')
@standard_command(streaming=True)
def crds_handler(
    repo: str,
    tag: Optional[str],
    config_path: Optional[str],
    db: Optional[str],
    quiet: bool,
):
    """
    List CRDs of ORG/REPO at a tag.

    \b
    Examples:
        crdindex crds acme/operator
        crdindex crds acme/operator --tag v1.2.0
    """
    config, catalog = _open_catalog(config_path, db)
    with catalog:
        records = get_crds(catalog, _repo_key(config, repo), tag)
    if not records:
        raise NotFoundError(f"No CRDs for {repo}@{tag or 'latest'}")
    return [record.to_dict() for record in records]


@click.command('show')
@click.argument('repo')
@click.argument('group')
@click.argument('version')
@click.argument('kind')
@click.option('--tag', help='Tag name (default: most recent tag)')
@click.option('--schema', 'schema_only', is_flag=True, help='Print only the storage version schema')
@add_common_options('config', 'db', 'quiet')
@standard_command()
def show_handler(
    repo: str,
    group: str,
    version: str,
    kind: str,
    tag: Optional[str],
    schema_only: bool,
    config_path: Optional[str],
    db: Optional[str],
    quiet: bool,
):
    """
    Print one stored CRD document of ORG/REPO.

    \b
    Examples:
        crdindex show acme/operator acme.example.com v1 Widget
        crdindex show acme/operator acme.example.com v1 Widget --schema
    """
    config, catalog = _open_catalog(config_path, db)
    with catalog:
        record = get_crd(catalog, _repo_key(config, repo), group, version, kind, tag)
    if record is None:
        raise NotFoundError(f"{group}/{version}/{kind} not found in {repo}@{tag or 'latest'}")

    document = record.document()
    if schema_only:
        schema = stored_schema(document)
        if schema is None:
            raise NotFoundError(f"{record.key} has no storage version schema")
        return schema
    return document


@click.command('release')
@click.argument('tag')
@add_common_options('config', 'db', 'quiet')
@standard_command(streaming=True)
def release_handler(tag: str, config_path: Optional[str], db: Optional[str], quiet: bool):
    """
    List the CRDs of every repository indexed at TAG.
    """
    _, catalog = _open_catalog(config_path, db)
    with catalog:
        rows = get_crds_for_tag_name(catalog, tag)
    if not rows:
        raise NotFoundError(f"No CRDs indexed at {tag}")
    return rows


@click.command('repos')
@add_common_options('config', 'db', 'quiet')
@standard_command(streaming=True)
def repos_handler(config_path: Optional[str], db: Optional[str], quiet: bool):
    """List indexed repositories."""
    _, catalog = _open_catalog(config_path, db)
    with catalog:
        repos = get_repos(catalog)
    return [{'repo': repo} for repo in repos]


@click.command('db')
@click.option('--info', 'show_info', is_flag=True, help='Show database info')
@click.option('--path', 'show_path', is_flag=True, help='Show database path')
@click.option('--reset', is_flag=True, help='Delete and recreate database')
@click.option('--yes', is_flag=True, help='Do not ask for confirmation on --reset')
@add_common_options('config', 'db')
@standard_command()
def db_handler(
    show_info: bool,
    show_path: bool,
    reset: bool,
    yes: bool,
    config_path: Optional[str],
    db: Optional[str],
):
    """
    Catalog maintenance commands.

    \b
    Examples:
        # Show catalog info
        crdindex db --info
        # Show catalog path
        crdindex db --path
        # Reset catalog (every indexed tag is lost)
        crdindex db --reset
    """
    config = load_config(config_path)
    db_path = resolve_db_path(config, db)

    if show_path:
        print(db_path)
        return None

    if reset:
        if not yes:
            click.confirm("Delete the catalog and every indexed tag?", abort=True)
        reset_database(config, db_path=db_path)
        click.echo("Database reset.", err=True)
        return None

    # Default to showing info
    info = get_database_info(config, db_path=db_path)
    print(json.dumps(info, indent=2))
    return None
