"""
Sync Configuration — Parse ACTION_SYNC_* environment variables.

Every CLI flag has an environment counterpart so tokens can stay out of
shell history. Flags win over the environment; the environment wins over
the defaults below.

    ACTION_SYNC_CACHE_DIR=./cache
    ACTION_SYNC_SOURCE_TOKEN=ghp_xxxxx               (optional, github.com)
    ACTION_SYNC_DESTINATION_URL=https://ghes.example.com
    ACTION_SYNC_DESTINATION_TOKEN=xxxxx
    ACTION_SYNC_DESTINATION_REPOSITORY=github/codeql-action
    ACTION_SYNC_ACTIONS_ADMIN_USER=actions-admin
    ACTION_SYNC_INSECURE=false
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, fields, replace
from typing import Any, Mapping, Optional

from .errors import SyncError

logger = logging.getLogger(__name__)

ENV_PREFIX = "ACTION_SYNC_"

DEFAULT_CACHE_DIR = "cache"
DEFAULT_DESTINATION_REPOSITORY = "github/codeql-action"
DEFAULT_ACTIONS_ADMIN_USER = "actions-admin"


def _env_bool(value: Optional[str]) -> bool:
    return (value or "").strip().lower() in ("true", "1", "yes")


@dataclass
class SyncSettings:
    """Resolved settings for one invocation."""

    cache_dir: str = DEFAULT_CACHE_DIR
    source_token: Optional[str] = None
    destination_url: Optional[str] = None
    destination_token: Optional[str] = None
    destination_repository: str = DEFAULT_DESTINATION_REPOSITORY
    actions_admin_user: str = DEFAULT_ACTIONS_ADMIN_USER
    insecure: bool = False

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "SyncSettings":
        """Build settings from ``ACTION_SYNC_*`` variables."""
        env = os.environ if environ is None else environ

        def get(name: str) -> Optional[str]:
            value = env.get(ENV_PREFIX + name)
            return value if value else None

        settings = cls(
            cache_dir=get("CACHE_DIR") or DEFAULT_CACHE_DIR,
            source_token=get("SOURCE_TOKEN"),
            destination_url=get("DESTINATION_URL"),
            destination_token=get("DESTINATION_TOKEN"),
            destination_repository=get("DESTINATION_REPOSITORY") or DEFAULT_DESTINATION_REPOSITORY,
            actions_admin_user=get("ACTIONS_ADMIN_USER") or DEFAULT_ACTIONS_ADMIN_USER,
            insecure=_env_bool(get("INSECURE")),
        )
        if settings.insecure:
            logger.warning("TLS certificate verification is disabled (ACTION_SYNC_INSECURE)")
        return settings

    def merged(self, **overrides: Any) -> "SyncSettings":
        """Copy with every non-None override applied (CLI flags)."""
        known = {f.name for f in fields(self)}
        values = {k: v for k, v in overrides.items() if k in known and v is not None}
        return replace(self, **values)

    def require_destination(self) -> None:
        """Push needs a destination URL and token."""
        missing = []
        if not self.destination_url:
            missing.append("--destination-url")
        if not self.destination_token:
            missing.append("--destination-token")
        if missing:
            raise SyncError(
                f"Missing required option(s): {', '.join(missing)} "
                f"(or the matching {ENV_PREFIX}* environment variables)."
            )
