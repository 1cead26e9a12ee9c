"""Tests for the interactive shell passthrough."""

from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import pytest

from app.services.remote_shell import RemoteShell


@pytest.fixture
def terminal():
    """Local terminal with stdin on fd 7."""
    with patch("app.services.remote_shell.sys") as sys_mock, patch(
        "app.services.remote_shell.termios"
    ) as termios_mock, patch("app.services.remote_shell.tty") as tty_mock, patch(
        "app.services.remote_shell.select"
    ) as select_mock:
        sys_mock.stdin.fileno.return_value = 7
        termios_mock.tcgetattr.return_value = ["saved-attrs"]
        yield SimpleNamespace(sys=sys_mock, termios=termios_mock, tty=tty_mock, select=select_mock)


@pytest.fixture
def shell(settings) -> RemoteShell:
    return RemoteShell("198.51.100.1", "PRIVATE", settings.ssh)


def remote_channel(*chunks: bytes) -> MagicMock:
    channel = MagicMock()
    channel.recv.side_effect = list(chunks)
    return channel


class TestBridge:
    def test_terminal_is_raw_then_restored(self, shell, terminal):
        channel = remote_channel(b"")
        terminal.select.select.return_value = ([channel], [], [])

        shell._bridge(channel)

        terminal.tty.setraw.assert_called_once_with(7)
        terminal.tty.setcbreak.assert_not_called()
        terminal.termios.tcsetattr.assert_called_once_with(
            7, terminal.termios.TCSADRAIN, ["saved-attrs"]
        )

    def test_copies_remote_output(self, shell, terminal):
        channel = remote_channel(b"hello\r\n", b"")
        terminal.select.select.return_value = ([channel], [], [])

        shell._bridge(channel)

        terminal.sys.stdout.buffer.write.assert_called_once_with(b"hello\r\n")

    def test_restores_terminal_on_error(self, shell, terminal):
        channel = remote_channel(OSError("connection reset"))
        terminal.select.select.return_value = ([channel], [], [])

        with pytest.raises(OSError):
            shell._bridge(channel)

        terminal.termios.tcsetattr.assert_called_once()


def test_interactive_returns_exit_status(shell, terminal):
    client = MagicMock()
    channel = client.invoke_shell.return_value
    channel.recv.side_effect = [b""]
    channel.recv_exit_status.return_value = 3
    terminal.select.select.return_value = ([channel], [], [])

    with patch("app.services.remote_shell.connect", return_value=client) as connect:
        assert shell.interactive() == 3

    assert connect.call_args.kwargs["user"] == shell.user
    client.close.assert_called_once()
