"""
Index command for crdindex.

Populates the catalog with the CRDs of the configured repositories.
This is the only command that writes to the catalog.
"""

import json
from datetime import datetime
from typing import List, Optional

import click

from ..cli_utils import add_common_options, resolve_db_path, split_repo, standard_command
from ..config import configure_logging, load_config, load_targets
from ..database import Database, count_crds
from ..domain.tag import DEFAULT_HOST, IndexTarget
from ..exit_codes import NotFoundError, PartialSuccessError
from ..services.index_service import IndexReport, IndexResult, Indexer


def _unique_repos(targets: List[IndexTarget]) -> List[IndexTarget]:
    """Collapse targets to one per repository, keeping first-seen order."""
    seen = {}
    for target in targets:
        seen.setdefault(target.full_name, target.with_tag(None))
    return list(seen.values())


def select_targets(
    config: dict,
    repo: Optional[str] = None,
    tag: Optional[str] = None,
    all_tags: bool = False,
) -> List[IndexTarget]:
    """
    Resolve the units to index from the config and command line filters.

    A --repo that is not configured becomes an ad-hoc target. --tag indexes
    that tag of every selected repository; --all-tags indexes every tag.
    """
    targets = load_targets(config)

    if repo:
        org, name = split_repo(repo)
        targets = [
            t for t in targets
            if t.org.lower() == org.lower() and t.repo.lower() == name.lower()
        ]
        if not targets:
            host = config.get('git', {}).get('host') or DEFAULT_HOST
            targets = [IndexTarget(org=org, repo=name, tag=None, host=host)]

    if tag:
        targets = [t.with_tag(tag) for t in _unique_repos(targets)]
    elif all_tags:
        targets = _unique_repos(targets)

    return targets


def _echo_result(result: IndexResult) -> None:
    if result.ok:
        click.echo(
            f"  ok {result.target}: {len(result.crds)} CRD(s), {result.inserted} new",
            err=True
        )
    else:
        stage = result.failed_at_stage.value if result.failed_at_stage else 'unknown'
        click.echo(f"  FAILED {result.target} at {stage}: {result.error}", err=True)


@click.command('index')
@click.option('--repo', help='Only index this repository (ORG/REPO)')
@click.option('--tag', help='Only index this tag')
@click.option('--all-tags', is_flag=True, help='Index every tag, ignoring configured tag lists')
@click.option('--pretty', is_flag=True, help='Pretty output with progress')
@add_common_options('config', 'db', 'dry_run', 'debug', 'quiet')
@standard_command()
def index_handler(
    config_path: Optional[str],
    db: Optional[str],
    repo: Optional[str],
    tag: Optional[str],
    all_tags: bool,
    dry_run: bool,
    debug: bool,
    quiet: bool,
    pretty: bool,
):
    """
    Index CRDs of the configured repositories into the catalog.

    Each (org, repo, tag) unit is cloned, searched for CustomResourceDefinition
    manifests, normalized and stored. Units that were already indexed are left
    untouched, so re-running is safe. A unit that fails is reported and the
    others still run.

    \b
    Examples:
        # Index everything in the config
        crdindex index
        # One repository, one tag
        crdindex index --repo acme/operator --tag v1.2.0
        # Every tag of one repository
        crdindex index --repo acme/operator --all-tags
        # Track the main branch
        crdindex index --repo acme/operator --tag nightly
    """
    if tag and all_tags:
        raise click.UsageError("--tag and --all-tags are mutually exclusive")

    config = load_config(config_path)
    configure_logging(config, level='DEBUG' if debug else ('WARNING' if quiet else None))

    targets = select_targets(config, repo=repo, tag=tag, all_tags=all_tags)
    if not targets:
        raise NotFoundError("No repositories to index; add some under 'repos' or pass --repo")

    stats = {
        'targets': len(targets),
        'dry_run': dry_run,
        'start_time': datetime.now().isoformat(),
    }

    with Database(db_path=resolve_db_path(config, db), config=config) as catalog:
        indexer = Indexer(catalog, config=config, dry_run=dry_run)

        if pretty:
            from rich.progress import Progress, SpinnerColumn, TextColumn, BarColumn
            expands = any(t.tag is None for t in targets)
            with Progress(
                SpinnerColumn(),
                TextColumn("[progress.description]{task.description}"),
                BarColumn(),
                TextColumn("{task.completed} unit(s)"),
            ) as progress:
                task = progress.add_task(
                    "Indexing...",
                    total=None if expands else len(targets)
                )

                def advance(result: IndexResult) -> None:
                    progress.update(task, advance=1, description=f"Indexed {result.target}")

                report = indexer.index_all(targets, progress=advance)
        else:
            report = indexer.index_all(targets, progress=None if quiet else _echo_result)

        stats.update(report.to_dict())
        stats['end_time'] = datetime.now().isoformat()
        stats['total_crds'] = count_crds(catalog)

    stats['failures'] = [r.to_dict() for r in report.results if not r.ok]

    if quiet:
        pass
    elif pretty:
        _print_summary_pretty(stats, report)
    else:
        print(json.dumps(stats))

    if report.failed:
        raise PartialSuccessError(
            f"{report.failed} of {len(report.results)} unit(s) failed",
            succeeded=report.succeeded,
            failed=report.failed,
        )


def _print_summary_pretty(stats: dict, report: IndexReport):
    """Print a pretty summary of index results."""
    from rich.console import Console
    from rich.table import Table

    console = Console()

    table = Table(title="Index Summary")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="green")

    table.add_row("Units indexed", str(stats.get('units', 0)))
    table.add_row("Succeeded", str(stats.get('succeeded', 0)))
    table.add_row("Failed", str(stats.get('failed', 0)))
    table.add_row("CRDs found", str(stats.get('crds_found', 0)))
    table.add_row("CRDs inserted", str(stats.get('crds_inserted', 0)))
    table.add_row("Total in catalog", str(stats.get('total_crds', 0)))

    console.print(table)

    failed = [r for r in report.results if not r.ok]
    if failed:
        errors = Table(title="Failed Units")
        errors.add_column("Unit", style="yellow")
        errors.add_column("Stage")
        errors.add_column("Error", style="red")
        for result in failed:
            stage = result.failed_at_stage.value if result.failed_at_stage else ''
            errors.add_row(str(result.target), stage, result.error or '')
        console.print(errors)
