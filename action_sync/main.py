"""
CodeQL Action Sync — CLI Entry Point

Usage:
    action-sync pull [--source-token TOKEN]
    action-sync push --destination-url URL --destination-token TOKEN [...]
    action-sync sync --destination-url URL --destination-token TOKEN [...]
    action-sync version
"""

from __future__ import annotations

# Load .env FIRST, before anything reads ACTION_SYNC_* variables
from pathlib import Path
from dotenv import load_dotenv

_env_file = Path.cwd() / ".env"
if _env_file.exists():
    load_dotenv(_env_file)

import logging
from typing import Optional

import click

from . import __version__
from .cancellation import CancellationToken, install_signal_handlers
from .cli.pull import pull_cmd
from .cli.push import push_cmd
from .cli.sync import sync_cmd
from .config import SyncSettings
from .logging_config import setup_logging

logger = logging.getLogger(__name__)


@click.group()
@click.option(
    "--cache-dir",
    default=None,
    help="The path to a local directory to cache the Action in. [default: ./cache]",
)
@click.option("--insecure", is_flag=True, help="Allow insecure server connections when using TLS.")
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging.")
@click.pass_context
def cli(ctx: click.Context, cache_dir: Optional[str], insecure: bool, verbose: bool) -> None:
    """A tool for syncing the CodeQL Action from GitHub.com to GitHub Enterprise Server."""
    setup_logging(level="DEBUG" if verbose else None)

    cancel = CancellationToken()
    if not ctx.resilient_parsing:
        install_signal_handlers(cancel)

    settings = SyncSettings.from_env().merged(
        cache_dir=cache_dir,
        insecure=True if insecure else None,
    )
    ctx.ensure_object(dict)
    ctx.obj["settings"] = settings
    ctx.obj["cancel"] = cancel

    if ctx.invoked_subcommand in ("pull", "sync"):
        logger.info(f"Starting CodeQL Action sync tool version {__version__}...")


@cli.command()
def version() -> None:
    """Print the version of the tool."""
    click.echo(f"codeql-action-sync {__version__}")


cli.add_command(pull_cmd)
cli.add_command(push_cmd)
cli.add_command(sync_cmd)


if __name__ == "__main__":
    cli()
