"""
SSH client for the operator side.

Handles SSH connections to managed hosts. Two kinds of session exist:

- restricted: authenticates with the sys_info key only; the server runs
  the forced command whatever we ask for, so the real request is written
  to stdin (see ``send_request``);
- bootstrap: authenticates with the operator's own keys, agent or
  password and is used to install, verify and revoke the restricted key.

Usage:
    from sys_info.ssh_client import SSHClient

    async with SSHClient(ssh_config) as client:
        exit_code = await client.send_request("run", sys.stdout.write)
"""

import asyncio
import logging
import posixpath
from typing import Callable, Optional

import asyncssh

from .config import SSHConfig
from .models import CommandResult

logger = logging.getLogger(__name__)

CHUNK_SIZE = 4096
COMMAND_TIMEOUT = 60.0


class SSHClientError(Exception):
    """Custom exception for SSH client errors."""
    pass


class SSHClient:
    """Async SSH client bound to one managed host."""

    def __init__(self, config: SSHConfig):
        self.config = config
        self._connection: Optional[asyncssh.SSHClientConnection] = None

    async def connect(self) -> None:
        """
        Establish SSH connection to the remote server.

        Raises:
            SSHClientError: If connection fails
        """
        if self._connection is not None:
            return  # Already connected

        try:
            connect_opts = {
                "host": self.config.host,
                "port": self.config.port,
                "username": self.config.user,
            }
            if self.config.connection_timeout:
                connect_opts["connect_timeout"] = self.config.connection_timeout

            if self.config.key_path and not self.config.use_default_keys:
                # Only the restricted key; an agent could offer a wider one
                connect_opts["agent_path"] = None
                connect_opts["client_keys"] = [str(self.config.key_path)]

            if self.config.password:
                connect_opts["password"] = self.config.password

            if self.config.known_hosts_path:
                connect_opts["known_hosts"] = str(self.config.known_hosts_path)
            else:
                connect_opts["known_hosts"] = None

            logger.debug("Connecting to %s@%s:%s", self.config.user, self.config.host, self.config.port)
            self._connection = await asyncssh.connect(**connect_opts)

        except asyncssh.Error as e:
            raise SSHClientError(f"SSH connection failed: {e}") from e
        except (OSError, asyncio.TimeoutError) as e:
            raise SSHClientError(f"Network error: {e}") from e

    async def disconnect(self) -> None:
        """Close the SSH connection."""
        if self._connection is not None:
            self._connection.close()
            await self._connection.wait_closed()
            self._connection = None

    async def __aenter__(self) -> "SSHClient":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.disconnect()

    def _require_connection(self) -> asyncssh.SSHClientConnection:
        if self._connection is None:
            raise SSHClientError("Not connected. Call connect() first.")
        return self._connection

    # -------------------------------------------------------------------------
    # Restricted session
    # -------------------------------------------------------------------------

    async def send_request(self, request_line: str, sink: Callable[[str], object]) -> int:
        """
        Write one request line to the forced command and stream its output.

        Stdout and stderr are merged and handed to ``sink`` chunk by chunk
        as they arrive.

        Returns:
            The remote exit status
        """
        conn = self._require_connection()
        try:
            async with conn.create_process(stderr=asyncssh.STDOUT) as process:
                process.stdin.write(request_line.rstrip("\n") + "\n")
                process.stdin.write_eof()

                while True:
                    chunk = await process.stdout.read(CHUNK_SIZE)
                    if not chunk:
                        break
                    sink(chunk)

                completed = await process.wait()
        except asyncssh.Error as e:
            raise SSHClientError(f"SSH error: {e}") from e

        if completed.exit_status is None:
            logger.warning("Remote process ended without exit status (signal %s)", completed.exit_signal)
            return 1
        return completed.exit_status

    # -------------------------------------------------------------------------
    # Bootstrap session
    # -------------------------------------------------------------------------

    async def run_command(self, command: str, timeout: float = COMMAND_TIMEOUT) -> CommandResult:
        """
        Run a housekeeping command in a bootstrap session.

        Never raises for remote failures; they come back as an unsuccessful
        result with ``error_message`` set.
        """
        conn = self._require_connection()

        try:
            completed = await asyncio.wait_for(
                conn.run(command, check=False, encoding="utf-8", errors="replace"),
                timeout=timeout,
            )
        except asyncio.TimeoutError:
            return CommandResult(command, "", "", -1, False, f"timed out after {timeout}s")
        except asyncssh.Error as e:
            return CommandResult(command, "", str(e), -1, False, f"SSH error: {e}")

        status = completed.exit_status if completed.exit_status is not None else -1
        return CommandResult(
            command=command,
            stdout=completed.stdout or "",
            stderr=completed.stderr or "",
            exit_code=status,
            success=status == 0,
        )

    async def home_dir(self) -> str:
        conn = self._require_connection()
        async with conn.start_sftp_client() as sftp:
            return await sftp.realpath(".")

    async def read_file(self, path: str) -> Optional[str]:
        """Read a remote text file, or None if it does not exist."""
        conn = self._require_connection()
        try:
            async with conn.start_sftp_client() as sftp:
                if not await sftp.exists(path):
                    return None
                async with sftp.open(path, "r") as f:
                    return await f.read()
        except asyncssh.Error as e:
            raise SSHClientError(f"Cannot read {path}: {e}") from e

    async def write_file(self, path: str, content: str, mode: int = 0o600) -> None:
        """Replace a remote file through a temporary file and a rename."""
        conn = self._require_connection()
        tmp = path + ".tmp"
        try:
            async with conn.start_sftp_client() as sftp:
                await sftp.makedirs(posixpath.dirname(path), exist_ok=True)
                async with sftp.open(tmp, "w") as f:
                    await f.write(content)
                await sftp.chmod(tmp, mode)
                await sftp.posix_rename(tmp, path)
        except asyncssh.Error as e:
            raise SSHClientError(f"Cannot write {path}: {e}") from e

    async def upload(self, local_path: str, remote_path: str, mode: int = 0o755) -> int:
        """
        Copy a local file to the remote host.

        Returns:
            The remote file owner's uid
        """
        conn = self._require_connection()
        try:
            async with conn.start_sftp_client() as sftp:
                await sftp.makedirs(posixpath.dirname(remote_path), exist_ok=True)
                await sftp.put(local_path, remote_path)
                await sftp.chmod(remote_path, mode)
                attrs = await sftp.stat(remote_path)
                return attrs.uid
        except asyncssh.Error as e:
            raise SSHClientError(f"Cannot upload to {remote_path}: {e}") from e

# =============================================================================
# Convenience Functions
# =============================================================================

async def probe_connection(config: SSHConfig) -> tuple[bool, str]:
    """
    Test if an SSH connection can be established and authenticated.

    Returns:
        Tuple of (success: bool, message: str)
    """
    try:
        async with SSHClient(config):
            return True, f"Connected to {config.user}@{config.host}"
    except SSHClientError as e:
        return False, str(e)
