"""Unit tests for CancellationToken.

Tests verify:
- cancel() is idempotent and keeps the first reason
- Registered processes are terminated on cancel
- A process registered after cancellation is terminated immediately
- raise_if_cancelled() raises BuildCancelledError
"""

import threading
from unittest.mock import MagicMock, patch

import pytest

from solbuild.cancellation import CancellationToken
from solbuild.errors import BuildCancelledError


def make_proc(pid: int, running: bool = True) -> MagicMock:
    proc = MagicMock()
    proc.pid = pid
    proc.poll.return_value = None if running else 0
    return proc


class TestCancelFlag:
    def test_initial_state(self) -> None:
        token = CancellationToken()
        assert not token.is_cancelled
        assert token.reason == ""
        token.raise_if_cancelled()

    def test_cancel_sets_reason(self) -> None:
        token = CancellationToken()
        token.cancel("user interrupt")
        assert token.is_cancelled
        with pytest.raises(BuildCancelledError, match="user interrupt"):
            token.raise_if_cancelled()

    def test_cancel_is_idempotent(self) -> None:
        token = CancellationToken()
        token.cancel("first")
        token.cancel("second")
        assert token.reason == "first"

    def test_wait_wakes_on_cancel(self) -> None:
        token = CancellationToken()
        assert token.wait(0.01) is False
        threading.Timer(0.05, token.cancel).start()
        assert token.wait(5) is True


class TestProcessTracking:
    @patch("solbuild.cancellation.kill_process_tree")
    def test_cancel_kills_running_processes(self, mock_kill: MagicMock) -> None:
        token = CancellationToken()
        token.register_process(make_proc(101))
        token.register_process(make_proc(102, running=False))

        token.cancel()

        mock_kill.assert_called_once_with(101)

    @patch("solbuild.cancellation.kill_process_tree")
    def test_register_after_cancel_kills_immediately(self, mock_kill: MagicMock) -> None:
        token = CancellationToken()
        token.cancel()
        token.register_process(make_proc(7))
        mock_kill.assert_called_once_with(7)

    @patch("solbuild.cancellation.kill_process_tree")
    def test_unregistered_process_not_killed(self, mock_kill: MagicMock) -> None:
        token = CancellationToken()
        proc = make_proc(5)
        token.register_process(proc)
        assert token.active_process_count == 1
        token.unregister_process(proc)
        assert token.active_process_count == 0

        token.cancel()
        mock_kill.assert_not_called()

    @patch("solbuild.cancellation.kill_process_tree")
    def test_second_cancel_does_not_kill_again(self, mock_kill: MagicMock) -> None:
        token = CancellationToken()
        token.register_process(make_proc(9))
        token.cancel()
        token.cancel()
        assert mock_kill.call_count == 1
