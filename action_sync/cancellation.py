"""
Cancellation — A single shared stop signal for one invocation.

The CLI creates one token at startup and hands it to both engines. Signal
handlers trigger it; long-running loops poll it between steps and between
streamed chunks, and unwind by raising ``OperationCancelled``.
"""

from __future__ import annotations

import logging
import signal
import threading
from typing import Iterable

from .errors import OperationCancelled

logger = logging.getLogger(__name__)


class CancellationToken:
    """Thread-safe cancellation flag."""

    def __init__(self):
        self._event = threading.Event()
        self.reason = ""

    def cancel(self, reason: str = "cancelled") -> None:
        self.reason = reason
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise OperationCancelled(f"Operation cancelled ({self.reason}).")


def install_signal_handlers(
    token: CancellationToken,
    signals: Iterable[int] = (signal.SIGINT, signal.SIGTERM),
) -> None:
    """Route the given signals to ``token``.

    The first signal requests a clean unwind. A second one restores the
    default handler so an impatient operator can still kill the process.
    """

    def _handler(signum, frame):
        name = signal.Signals(signum).name
        if token.cancelled:
            logger.warning(f"Received {name} again, exiting immediately")
            signal.signal(signum, signal.SIG_DFL)
            signal.raise_signal(signum)
            return
        logger.warning(f"Received {name}, stopping after the current step...")
        token.cancel(name)

    for signum in signals:
        signal.signal(signum, _handler)
