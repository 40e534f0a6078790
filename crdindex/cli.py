#!/usr/bin/env python3

import click

from crdindex.commands.index import index_handler
from crdindex.commands.catalog import (
    crds_handler,
    db_handler,
    release_handler,
    repos_handler,
    show_handler,
    tags_handler,
)


@click.group()
@click.version_option(package_name='crdindex')
def cli():
    """crdindex - Catalog of Kubernetes CustomResourceDefinitions across repositories.

    Indexes the CRD manifests of configured git repositories, one tag at a
    time, into a SQLite catalog that documentation tools read from.
    """
    pass


# Writer
cli.add_command(index_handler, name='index')

# Read views
cli.add_command(tags_handler, name='tags')
cli.add_command(crds_handler, name='crds')
cli.add_command(show_handler, name='show')
cli.add_command(release_handler, name='release')
cli.add_command(repos_handler, name='repos')

# Maintenance
cli.add_command(db_handler, name='db')


def main():
    cli()

if __name__ == "__main__":
    main()
