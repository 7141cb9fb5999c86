"""Shared option sets and error handling for the CLI commands."""

from __future__ import annotations

from pathlib import Path
from typing import Callable

import click

from ..cache import CacheDirectory
from ..cancellation import CancellationToken
from ..config import SyncSettings
from ..errors import SyncError


def source_options(f: Callable) -> Callable:
    """Flags used by ``pull`` (and ``sync``)."""
    f = click.option(
        "--source-token",
        default=None,
        help="A token to access the API of GitHub.com. Avoids rate limits; optional.",
    )(f)
    return f


def destination_options(f: Callable) -> Callable:
    """Flags used by ``push`` (and ``sync``)."""
    for option in reversed([
        click.option(
            "--destination-url",
            default=None,
            help="The URL of the GitHub Enterprise instance to push to.",
        ),
        click.option(
            "--destination-token",
            default=None,
            help="A token to access the API on the GitHub Enterprise instance.",
        ),
        click.option(
            "--destination-repository",
            default=None,
            help="The name of the repository to create on GitHub Enterprise. [default: github/codeql-action]",
        ),
        click.option(
            "--actions-admin-user",
            default=None,
            help="The user to impersonate when the token belongs to a site administrator "
            "who is not a member of the destination organization. [default: actions-admin]",
        ),
        click.option(
            "--force",
            is_flag=True,
            help="Replace the contents of a repository that was not created by this tool.",
        ),
        click.option(
            "--push-ssh",
            is_flag=True,
            help="Push Git contents over SSH rather than HTTPS.",
        ),
    ]):
        f = option(f)
    return f


def get_settings(ctx: click.Context, **overrides) -> SyncSettings:
    settings: SyncSettings = ctx.obj["settings"]
    return settings.merged(**overrides)


def get_cancel(ctx: click.Context) -> CancellationToken:
    return ctx.obj["cancel"]


def get_cache_directory(settings: SyncSettings) -> CacheDirectory:
    return CacheDirectory(Path(settings.cache_dir).expanduser())


def fail(error: SyncError) -> None:
    """Surface a wrapped error and exit non-zero."""
    raise click.ClickException(str(error))
