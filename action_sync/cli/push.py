"""
CLI push command — upload the cache to a GitHub Enterprise instance.

Usage:
    action-sync push --destination-url URL --destination-token TOKEN \
        [--destination-repository owner/name] [--actions-admin-user USER] \
        [--force] [--push-ssh]
"""

from __future__ import annotations

from typing import Optional

import click

from ._common import destination_options, fail, get_cache_directory, get_cancel, get_settings
from ..config import SyncSettings
from ..errors import SyncError
from ..progress import ClickProgress


def run_push(
    ctx: click.Context,
    settings: SyncSettings,
    force: bool,
    push_ssh: bool,
) -> None:
    from ..sync import push

    try:
        settings.require_destination()
        push(
            get_cache_directory(settings),
            destination_url=settings.destination_url,
            destination_token=settings.destination_token,
            destination_repository=settings.destination_repository,
            actions_admin_user=settings.actions_admin_user,
            force=force,
            push_ssh=push_ssh,
            insecure=settings.insecure,
            cancel=get_cancel(ctx),
            progress=ClickProgress(),
        )
    except SyncError as e:
        fail(e)
    click.secho(
        f"✓ Pushed to {settings.destination_repository} on {settings.destination_url}",
        fg="green",
        err=True,
    )


@click.command("push")
@destination_options
@click.pass_context
def push_cmd(
    ctx: click.Context,
    destination_url: Optional[str],
    destination_token: Optional[str],
    destination_repository: Optional[str],
    actions_admin_user: Optional[str],
    force: bool,
    push_ssh: bool,
) -> None:
    """Push the CodeQL Action from the local cache to a GitHub Enterprise Server installation."""
    settings = get_settings(
        ctx,
        destination_url=destination_url,
        destination_token=destination_token,
        destination_repository=destination_repository,
        actions_admin_user=actions_admin_user,
    )
    run_push(ctx, settings, force, push_ssh)
