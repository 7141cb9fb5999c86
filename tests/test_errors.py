"""
Tests for error classification and the shared cancellation token.
"""

import signal
from unittest.mock import patch

import pytest

from action_sync.cancellation import CancellationToken, install_signal_handlers
from action_sync.errors import (
    ErrorKind,
    OperationCancelled,
    SyncError,
    local_error,
    wrap_error,
)


class TestSyncError:

    def test_message_includes_cause(self):
        error = SyncError("Error doing Git fetch.", cause=ValueError("boom"))
        assert str(error) == "Error doing Git fetch.: boom"
        assert error.__cause__ is error.cause

    def test_wrap_keeps_kind(self):
        inner = SyncError("HTTP 502", kind=ErrorKind.INFRASTRUCTURE)
        outer = inner.wrap("Error uploading release asset.")

        assert outer.kind == ErrorKind.INFRASTRUCTURE
        assert outer.retryable
        assert str(outer) == "Error uploading release asset.: HTTP 502"

    def test_wrap_error_on_os_error_is_local(self):
        error = wrap_error(PermissionError("denied"), "Error writing release metadata.")
        assert error.kind == ErrorKind.LOCAL
        assert not error.retryable

    def test_local_error(self):
        assert local_error("x").kind == ErrorKind.LOCAL

    def test_user_errors_are_not_retryable(self):
        assert not SyncError("bad token").retryable


class TestCancellationToken:

    def test_cancel(self):
        token = CancellationToken()
        token.raise_if_cancelled()
        assert not token.cancelled

        token.cancel("SIGTERM")

        assert token.cancelled
        with pytest.raises(OperationCancelled) as exc_info:
            token.raise_if_cancelled()
        assert "SIGTERM" in str(exc_info.value)
        assert exc_info.value.kind == ErrorKind.LOCAL

    def test_first_signal_cancels(self):
        token = CancellationToken()
        with patch("action_sync.cancellation.signal.signal") as mock_signal:
            install_signal_handlers(token, signals=(signal.SIGTERM,))
            handler = mock_signal.call_args.args[1]

            handler(signal.SIGTERM, None)

        assert token.cancelled
        assert token.reason == "SIGTERM"

    def test_second_signal_restores_default(self):
        token = CancellationToken()
        with patch("action_sync.cancellation.signal.signal") as mock_signal, \
                patch("action_sync.cancellation.signal.raise_signal") as mock_raise:
            install_signal_handlers(token, signals=(signal.SIGTERM,))
            handler = mock_signal.call_args.args[1]

            handler(signal.SIGTERM, None)
            handler(signal.SIGTERM, None)

        mock_signal.assert_called_with(signal.SIGTERM, signal.SIG_DFL)
        mock_raise.assert_called_once_with(signal.SIGTERM)
