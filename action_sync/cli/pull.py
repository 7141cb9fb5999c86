"""
CLI pull command — download the CodeQL Action and its bundles into the cache.

Usage:
    action-sync pull [--source-token TOKEN]
"""

from __future__ import annotations

from typing import Optional

import click

from ._common import fail, get_cache_directory, get_cancel, get_settings, source_options
from ..errors import SyncError
from ..progress import ClickProgress


@click.command("pull")
@source_options
@click.pass_context
def pull_cmd(ctx: click.Context, source_token: Optional[str]) -> None:
    """Pull the CodeQL Action from GitHub to a local cache."""
    from ..sync import pull

    settings = get_settings(ctx, source_token=source_token)
    cache_directory = get_cache_directory(settings)
    try:
        pull(
            cache_directory,
            source_token=settings.source_token,
            insecure=settings.insecure,
            cancel=get_cancel(ctx),
            progress=ClickProgress(),
        )
    except SyncError as e:
        fail(e)
    click.secho(f"✓ Cache ready at {cache_directory.path}", fg="green", err=True)
