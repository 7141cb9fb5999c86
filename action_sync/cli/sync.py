"""
CLI sync command — pull then push in one go.

Usage:
    action-sync sync --destination-url URL --destination-token TOKEN [...]
"""

from __future__ import annotations

from typing import Optional

import click

from ._common import (
    destination_options,
    fail,
    get_cache_directory,
    get_cancel,
    get_settings,
    source_options,
)
from .push import run_push
from ..errors import SyncError
from ..progress import ClickProgress


@click.command("sync")
@source_options
@destination_options
@click.pass_context
def sync_cmd(
    ctx: click.Context,
    source_token: Optional[str],
    destination_url: Optional[str],
    destination_token: Optional[str],
    destination_repository: Optional[str],
    actions_admin_user: Optional[str],
    force: bool,
    push_ssh: bool,
) -> None:
    """Sync the CodeQL Action from GitHub to a GitHub Enterprise Server installation."""
    from ..sync import pull

    settings = get_settings(
        ctx,
        source_token=source_token,
        destination_url=destination_url,
        destination_token=destination_token,
        destination_repository=destination_repository,
        actions_admin_user=actions_admin_user,
    )
    # Validate before spending time on the pull.
    try:
        settings.require_destination()
        pull(
            get_cache_directory(settings),
            source_token=settings.source_token,
            insecure=settings.insecure,
            cancel=get_cancel(ctx),
            progress=ClickProgress(),
        )
    except SyncError as e:
        fail(e)

    run_push(ctx, settings, force, push_ssh)
