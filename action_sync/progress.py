"""
Progress — Byte-level progress reporting for downloads and uploads.

The engines only talk to the ``ProgressSink`` protocol. The CLI plugs in a
``ClickProgress`` bar; library callers and tests get ``NullProgress``.
"""

from __future__ import annotations

import sys
from typing import Any, Optional, Protocol

import click


class ProgressSink(Protocol):
    def start(self, label: str, total: int) -> None: ...

    def advance(self, count: int) -> None: ...

    def finish(self) -> None: ...


class NullProgress:
    """Discards all progress updates."""

    def start(self, label: str, total: int) -> None:
        pass

    def advance(self, count: int) -> None:
        pass

    def finish(self) -> None:
        pass


class ClickProgress:
    """Renders transfers with ``click.progressbar`` on stderr."""

    def __init__(self):
        self._bar: Optional[Any] = None

    def start(self, label: str, total: int) -> None:
        self.finish()
        self._bar = click.progressbar(
            length=total,
            label=label,
            file=sys.stderr,
            show_pos=True,
        )
        self._bar.__enter__()

    def advance(self, count: int) -> None:
        if self._bar is not None:
            self._bar.update(count)

    def finish(self) -> None:
        if self._bar is not None:
            self._bar.__exit__(None, None, None)
            self._bar = None
