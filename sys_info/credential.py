"""
Restricted Credential lifecycle on the operator side.

    ABSENT -> GENERATED -> INSTALLED_UNVERIFIED -> INSTALLED_VERIFIED
           -> REVOKED | COMPROMISED

The private key stays in ``OperatorConfig.key_path``. Installation uses a
bootstrap session (the operator's own keys, agent or password) to upload
the agent, rewrite the one restricted line in the remote
``~/.ssh/authorized_keys`` and read it back.
"""

import logging
import os
import posixpath
import shlex
import shutil
import tempfile
import zipapp
from pathlib import Path
from typing import Awaitable, Callable, Optional

import asyncssh

from . import authorized_keys
from .authorized_keys import RestrictionStatus
from .config import OperatorConfig, SSHConfig
from .errors import SysInfoError
from .models import RemoteTarget
from .ssh_client import SSHClient, probe_connection

logger = logging.getLogger(__name__)

AUTHORIZED_KEYS = ".ssh/authorized_keys"

SECURITY_NOTICE = """\
SECURITY NOTICE:
===============
The SSH key for sys_info access has been configured with mandatory restrictions.
These restrictions prevent the key from being used for anything other than
running the sys_info agent.

The restrictions include:
- No port forwarding
- No X11 forwarding
- No agent forwarding
- No PTY allocation
- Command forced to the sys_info agent only

DO NOT modify the authorized_keys line containing "{identifier}"
as this will compromise security. The agent verifies these restrictions
before every self-update and refuses to update if they are missing.
"""

ClientFactory = Callable[[SSHConfig], SSHClient]
PasswordPrompt = Callable[[RemoteTarget], Optional[str]]


def generate(config: OperatorConfig) -> bool:
    """
    Create the passphrase-less key pair if it does not exist yet.

    Returns:
        True if a new key was written, False if one was already there
    """
    key_path = config.key_path
    if key_path.exists():
        logger.debug("Key already present at %s", key_path)
        return False

    key_path.parent.mkdir(parents=True, exist_ok=True)
    key = asyncssh.generate_private_key("ssh-ed25519", comment=config.key_identifier)
    key.write_private_key(str(key_path))
    key.write_public_key(str(config.public_key_path))
    os.chmod(key_path, 0o600)
    logger.info("Generated SSH key %s", key_path)
    return True


def build_agent_archive(target: Path) -> Path:
    """Pack the installed ``sys_info`` package into a runnable zip application."""
    package_dir = Path(__file__).resolve().parent
    with tempfile.TemporaryDirectory() as staging:
        shutil.copytree(
            package_dir,
            Path(staging) / "sys_info",
            ignore=shutil.ignore_patterns("__pycache__", "*.pyc"),
        )
        zipapp.create_archive(
            staging,
            target=target,
            interpreter="/usr/bin/env python3",
            main="sys_info.agent:run",
        )
    return target


class CredentialManager:
    """Install, verify and revoke the restricted key on managed hosts."""

    def __init__(
        self,
        config: OperatorConfig,
        client_factory: ClientFactory = SSHClient,
        probe: Callable[[SSHConfig], Awaitable[tuple[bool, str]]] = probe_connection,
    ):
        self.config = config
        self.client_factory = client_factory
        self.probe = probe

    def _bootstrap_config(self, target: RemoteTarget, password: Optional[str] = None) -> SSHConfig:
        return SSHConfig.for_target(
            target,
            use_default_keys=True,
            password=password,
            known_hosts_path=self.config.known_hosts,
        )

    async def open_bootstrap(
        self,
        target: RemoteTarget,
        ask_password: Optional[PasswordPrompt] = None,
    ) -> SSHClient:
        """
        Connect with the operator's own credentials.

        A short-timeout probe with keys or agent comes first; if it fails the
        operator is asked for a password and the full login is attempted.
        """
        quick = self._bootstrap_config(target).model_copy(
            update={"connection_timeout": self.config.connect_timeout}
        )
        ok, message = await self.probe(quick)
        if ok:
            logger.debug("Key-based login to %s works", target)
            client = self.client_factory(quick)
        else:
            logger.info("Key-based login to %s failed (%s), falling back to password", target, message)
            password = ask_password(target) if ask_password else None
            client = self.client_factory(self._bootstrap_config(target, password))

        await client.connect()
        return client

    def restricted_line(self, home: str) -> str:
        public_key = self.config.public_key_path.read_text(encoding="utf-8").strip()
        agent = posixpath.join(home, self.config.remote_agent)
        return authorized_keys.forced_command_line(
            public_key, f"{agent} serve", self.config.key_identifier
        )

    async def install(
        self,
        target: RemoteTarget,
        agent_archive: Path,
        ask_password: Optional[PasswordPrompt] = None,
    ) -> RestrictionStatus:
        """
        Install the agent and the restricted key line on ``target``.

        The store is checked before anything is uploaded; two or more lines
        carrying the identifier abort the install with the store untouched.

        Returns:
            The read-back verification status

        Raises:
            CredentialAmbiguous: if the identifier appears more than once
            SysInfoError: if the uploaded agent has the wrong owner or does
                not start
        """
        generate(self.config)
        client = await self.open_bootstrap(target, ask_password)
        try:
            home = await client.home_dir()
            store_path = posixpath.join(home, AUTHORIZED_KEYS)

            existing = (await client.read_file(store_path) or "").splitlines()
            updated = authorized_keys.replace_restricted(
                existing, self.restricted_line(home), self.config.key_identifier
            )

            agent_path = posixpath.join(home, self.config.remote_agent)
            owner = await client.upload(str(agent_archive), agent_path, mode=0o755)
            uid = await client.run_command("id -u")
            if uid.success and uid.stdout.strip() != str(owner):
                raise SysInfoError(
                    f"{agent_path} is owned by uid {owner}, expected {uid.stdout.strip()}"
                )
            logger.info("Agent uploaded to %s:%s", target, agent_path)

            started = await client.run_command(f"{shlex.quote(agent_path)} --version")
            if not started.success:
                reason = started.stderr.strip() or started.error_message or f"exit {started.exit_code}"
                raise SysInfoError(
                    f"Uploaded agent does not start on {target}: {reason}. "
                    f"The host needs python3 with pydantic, httpx, python-dotenv and PyYAML."
                )
            logger.debug("Remote agent reports %s", started.stdout.strip())

            await client.run_command("mkdir -p ~/.ssh && chmod 700 ~/.ssh")
            await client.write_file(store_path, authorized_keys.join_lines(updated), mode=0o600)
            await client.write_file(
                posixpath.join(home, ".ssh/security_notice.txt"),
                SECURITY_NOTICE.format(identifier=self.config.key_identifier),
                mode=0o644,
            )
            logger.info("Restricted key line written on %s", target)

            return await self._read_status(client, home)
        finally:
            await client.disconnect()

    async def _read_status(self, client: SSHClient, home: str) -> RestrictionStatus:
        lines = (await client.read_file(posixpath.join(home, AUTHORIZED_KEYS)) or "").splitlines()
        agent = posixpath.join(home, self.config.remote_agent)
        return authorized_keys.check_restriction(lines, self.config.key_identifier, agent)

    async def verify(
        self,
        target: RemoteTarget,
        ask_password: Optional[PasswordPrompt] = None,
    ) -> RestrictionStatus:
        """Read back the identifier line from the remote store."""
        client = await self.open_bootstrap(target, ask_password)
        try:
            home = await client.home_dir()
            return await self._read_status(client, home)
        finally:
            await client.disconnect()

    async def revoke(
        self,
        target: RemoteTarget,
        ask_password: Optional[PasswordPrompt] = None,
    ) -> None:
        """
        Remove the identifier line from the remote store.

        Raises:
            CredentialAmbiguous: unless exactly one line carries the identifier
        """
        client = await self.open_bootstrap(target, ask_password)
        try:
            home = await client.home_dir()
            store_path = posixpath.join(home, AUTHORIZED_KEYS)
            content = await client.read_file(store_path) or ""
            updated = authorized_keys.remove_restricted(
                content.splitlines(), self.config.key_identifier
            )
            await client.write_file(store_path + ".bak", content, mode=0o600)
            await client.write_file(store_path, authorized_keys.join_lines(updated), mode=0o600)
            logger.info("Revoked sys_info key on %s", target)
        finally:
            await client.disconnect()
