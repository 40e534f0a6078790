"""
Common CLI utilities and decorators for consistent command behavior.
"""

import json
import sys
import click
from functools import wraps
from pathlib import Path
from typing import Any, Generator, Optional

from .database import get_db_path
from .exit_codes import (
    SUCCESS, INTERRUPTED,
    get_exit_code_for_exception, CommandError
)


def standard_command(streaming: bool = False):
    """
    Decorator that provides standard CLI behavior:
    - Clean JSON lines output on stdout
    - Messages and errors on stderr
    - Consistent error handling and exit codes

    Commands return a generator, list or dict to be printed as JSON
    lines, or None when they handle their own output.

    Args:
        streaming: If True, output JSONL as items are produced.
                  If False, collect results and output at end.
    """
    def decorator(func):

        @wraps(func)
        def wrapper(*args, **kwargs):
            quiet = kwargs.get('quiet', False)

            try:
                result = func(*args, **kwargs)

                if isinstance(result, Generator) and not streaming:
                    result = list(result)

                if quiet:
                    # In quiet mode, consume the generator but don't output
                    if isinstance(result, Generator):
                        for _ in result:
                            pass
                elif result is not None:
                    output_result(result)

                sys.exit(SUCCESS)

            except KeyboardInterrupt:
                click.echo("Interrupted by user", err=True)
                sys.exit(INTERRUPTED)
            except (click.ClickException, click.Abort):
                # Click exceptions already have their exit code
                raise
            except CommandError as e:
                click.echo(f"Error: {e}", err=True)
                if not quiet:
                    error_obj = {
                        "error": str(e),
                        "type": type(e).__name__,
                        "exit_code": e.exit_code
                    }
                    # Add extra fields for PartialSuccessError
                    if hasattr(e, 'succeeded'):
                        error_obj['succeeded'] = e.succeeded
                        error_obj['failed'] = e.failed
                    print(json.dumps(error_obj, ensure_ascii=False), flush=True)
                sys.exit(e.exit_code)
            except Exception as e:
                click.echo(f"Command failed: {e}", err=True)
                if not quiet:
                    error_obj = {
                        "error": str(e),
                        "type": type(e).__name__
                    }
                    print(json.dumps(error_obj, ensure_ascii=False), flush=True)
                sys.exit(get_exit_code_for_exception(e))

        return wrapper
    return decorator


def output_result(result: Any):
    """
    Standard output handler for results.

    Args:
        result: The result to output (dict, list, or generator)
    """
    if isinstance(result, (Generator, list, tuple)):
        for item in result:
            print(json.dumps(item, ensure_ascii=False), flush=True)
    elif isinstance(result, dict):
        print(json.dumps(result, ensure_ascii=False), flush=True)
    else:
        print(result, flush=True)


# Standard options that many commands share
common_options = {
    'config': click.option('--config', 'config_path', type=click.Path(),
                           help='Config file (default: CRDINDEX_CONFIG or ~/.crdindex/config.yaml)'),
    'db': click.option('--db', type=click.Path(),
                       help='Catalog database file (default: CRDINDEX_DB or database.path)'),
    'quiet': click.option('-q', '--quiet', is_flag=True,
                          help='Suppress data output'),
    'debug': click.option('--debug', is_flag=True,
                          help='Debug logging on stderr'),
    'dry_run': click.option('--dry-run', is_flag=True,
                            help='Clone and parse, but do not write the catalog'),
}


def add_common_options(*option_names):
    """
    Decorator to add common options to a command.

    Example:
        @add_common_options('config', 'db')
        def my_command(config_path, db):
            ...
    """
    def decorator(func):
        for name in reversed(option_names):
            if name in common_options:
                func = common_options[name](func)
        return func
    return decorator


def split_repo(value: str) -> tuple:
    """
    Split an "org/repo" argument.

    Raises:
        click.BadParameter: If the value is not of the form org/repo
    """
    parts = value.strip().strip('/').split('/')
    if len(parts) != 2 or not all(parts):
        raise click.BadParameter(f"expected ORG/REPO, got {value!r}")
    return parts[0], parts[1]


def resolve_db_path(config: dict, db: Optional[str] = None) -> Path:
    """An explicit --db path wins over CRDINDEX_DB and the config."""
    if db:
        return Path(db).expanduser()
    return get_db_path(config)
