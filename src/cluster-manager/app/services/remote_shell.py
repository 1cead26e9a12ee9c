"""Interactive SSH shell passthrough to a cluster node."""

from __future__ import annotations

import os
import select
import shutil
import socket
import sys
import termios
import tty

import paramiko

from shared.config import SSHSettings
from shared.observability import get_logger

from .ssh import connect

logger = get_logger(__name__)

READ_SIZE = 1024


class RemoteShell:
    """Bridges the local terminal to a remote login shell."""

    def __init__(self, address: str, private_key: str, settings: SSHSettings, user: str | None = None):
        self.address = address
        self.user = user or settings.user
        self._private_key = private_key
        self.settings = settings

    def interactive(self) -> int:
        """Run the shell until the remote side closes it.

        Returns:
            The remote shell's exit status
        """
        client = connect(self.address, self._private_key, self.settings, user=self.user)
        logger.info("Opened remote shell", address=self.address, user=self.user)
        try:
            size = shutil.get_terminal_size()
            channel = client.invoke_shell(
                term=os.environ.get("TERM", "xterm"),
                width=size.columns,
                height=size.lines,
            )
            self._bridge(channel)
            return channel.recv_exit_status()
        finally:
            client.close()

    def _bridge(self, channel: paramiko.Channel) -> None:
        stdin_fd = sys.stdin.fileno()
        saved = termios.tcgetattr(stdin_fd)
        try:
            tty.setraw(stdin_fd)
            channel.settimeout(0.0)

            while True:
                readable, _, _ = select.select([channel, sys.stdin], [], [])
                if channel in readable:
                    try:
                        data = channel.recv(READ_SIZE)
                    except socket.timeout:
                        continue
                    if not data:
                        break
                    sys.stdout.buffer.write(data)
                    sys.stdout.flush()
                if sys.stdin in readable:
                    data = os.read(stdin_fd, READ_SIZE)
                    if not data:
                        break
                    channel.send(data)
        finally:
            termios.tcsetattr(stdin_fd, termios.TCSADRAIN, saved)
