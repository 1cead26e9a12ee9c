"""SSH helpers shared by the drain coordinator and the remote shell."""

from __future__ import annotations

import io
import time

import paramiko

from shared.config import SSHSettings
from shared.observability import get_logger, log_external_call_end, log_external_call_start

logger = get_logger(__name__)


class SSHCommandError(Exception):
    """Raised when a remote command exits non-zero."""

    def __init__(self, command: str, exit_status: int, stderr: str):
        super().__init__(f"'{command}' exited with status {exit_status}: {stderr.strip()}")
        self.command = command
        self.exit_status = exit_status
        self.stderr = stderr


def load_private_key(private_key: str) -> paramiko.PKey:
    """Parse an RSA private key held in memory (PEM or OpenSSH format)."""
    return paramiko.RSAKey.from_private_key(io.StringIO(private_key))


def connect(
    address: str,
    private_key: str,
    settings: SSHSettings,
    user: str | None = None,
) -> paramiko.SSHClient:
    """Open an SSH connection with key authentication only.

    Host keys are accepted on first use; cluster servers are created fresh
    and their keys are never known in advance.
    """
    client = paramiko.SSHClient()
    client.set_missing_host_key_policy(paramiko.AutoAddPolicy())
    client.connect(
        hostname=address,
        port=settings.port,
        username=user or settings.user,
        pkey=load_private_key(private_key),
        timeout=settings.connect_timeout_seconds,
        allow_agent=False,
        look_for_keys=False,
    )
    return client


def run_command(
    address: str,
    private_key: str,
    command: str,
    settings: SSHSettings,
) -> str:
    """Run ``command`` on ``address`` and return its stdout.

    Raises:
        SSHCommandError: the command exited non-zero
        paramiko.SSHException, OSError: connection or authentication failure
    """
    log_external_call_start(logger, "ssh", "exec")
    start = time.perf_counter()
    try:
        client = connect(address, private_key, settings)
        try:
            _, stdout, stderr = client.exec_command(
                command, timeout=settings.connect_timeout_seconds
            )
            output = stdout.read().decode()
            exit_status = stdout.channel.recv_exit_status()
            if exit_status != 0:
                raise SSHCommandError(command, exit_status, stderr.read().decode())
        finally:
            client.close()
    except (SSHCommandError, paramiko.SSHException, OSError) as e:
        log_external_call_end(
            logger,
            "ssh",
            "exec",
            success=False,
            duration_ms=(time.perf_counter() - start) * 1000,
            error=type(e).__name__,
        )
        raise

    log_external_call_end(
        logger,
        "ssh",
        "exec",
        success=True,
        duration_ms=(time.perf_counter() - start) * 1000,
    )
    return output
