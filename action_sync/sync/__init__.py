"""
Sync — The pull and push engines.

``pull`` fills a cache directory from github.com; ``push`` empties it into a
GitHub Enterprise repository. ``sync`` runs one after the other.
"""

from __future__ import annotations

from .pull import pull
from .push import push

__all__ = ["pull", "push"]
