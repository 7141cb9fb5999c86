"""
Errors — One exception type, classified by kind.

Every failure that crosses a component boundary is a ``SyncError``. Callers
decide what to do by looking at ``error.kind``, never at the shape of an
underlying library exception.

## Kinds

- USER: bad credentials, ambiguous cache state, name collisions, missing
  token scopes. Shown verbatim, never retried.
- INFRASTRUCTURE: server-side or transport failures. Asset uploads retry
  these a bounded number of times.
- LOCAL: filesystem failures and cancellation. Abort immediately.
"""

from __future__ import annotations

from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    """Classification attached to every propagated error."""

    USER = "user"
    INFRASTRUCTURE = "infrastructure"
    LOCAL = "local"


class SyncError(Exception):
    """An error with a human-readable message and a kind."""

    def __init__(
        self,
        message: str,
        kind: ErrorKind = ErrorKind.USER,
        cause: Optional[BaseException] = None,
    ):
        super().__init__(message)
        self.message = message
        self.kind = kind
        self.cause = cause
        if cause is not None:
            self.__cause__ = cause

    def __str__(self) -> str:
        if self.cause is not None:
            return f"{self.message}: {self.cause}"
        return self.message

    @property
    def retryable(self) -> bool:
        return self.kind == ErrorKind.INFRASTRUCTURE

    def wrap(self, message: str) -> "SyncError":
        """Add context while keeping the kind of this error."""
        return SyncError(message, kind=self.kind, cause=self)


class OperationCancelled(SyncError):
    """Raised when the shared cancellation token has been triggered."""

    def __init__(self, message: str = "Operation cancelled."):
        super().__init__(message, kind=ErrorKind.LOCAL)


def local_error(message: str, cause: Optional[BaseException] = None) -> SyncError:
    """Wrap a filesystem failure."""
    return SyncError(message, kind=ErrorKind.LOCAL, cause=cause)


def wrap_error(error: BaseException, message: str) -> SyncError:
    """Wrap any exception with context.

    A ``SyncError`` keeps its kind; anything else is treated as a local
    failure, since network errors are already converted at the client seam.
    """
    if isinstance(error, SyncError):
        return error.wrap(message)
    return local_error(message, cause=error)
