"""
Agent self-update.

The new agent is downloaded next to the current one as ``<agent>.staged``,
self-tested there, and swapped in with a rename. The previous agent stays
behind as ``<agent>.bak.<timestamp>`` until a later successful report run
removes it.

The restricted key line must verify as OK before anything is downloaded,
and it is verified again afterwards whatever the outcome.
"""

import logging
import os
import shutil
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Optional

import httpx

from . import authorized_keys
from .authorized_keys import RestrictionStatus
from .collectors import Runner, run_cmd
from .config import AgentSettings
from .errors import CredentialAmbiguous, RestrictionMissing, RestrictionWeak, UpdateFailed

logger = logging.getLogger(__name__)

DOWNLOAD_TIMEOUT = 60.0
SELF_TEST_TIMEOUT = 30.0


@dataclass
class UpdateResult:
    success: bool
    message: str
    backup: Optional[Path] = None
    verification: Optional[RestrictionStatus] = None
    verification_error: Optional[str] = None


def verify_local(settings: AgentSettings) -> RestrictionStatus:
    """
    Check the restricted line in the local authorization store.

    Raises:
        CredentialAmbiguous: if more than one line carries the identifier
    """
    try:
        lines = settings.authorized_keys.read_text(encoding="utf-8").splitlines()
    except FileNotFoundError:
        return RestrictionStatus.MISSING
    return authorized_keys.check_restriction(lines, settings.key_identifier, str(settings.agent_path))


def require_restricted(settings: AgentSettings) -> None:
    """
    Raises:
        RestrictionMissing: if the identifier line is absent
        RestrictionWeak: if it lacks the forced command or deny flags
        CredentialAmbiguous: if it appears more than once
    """
    status = verify_local(settings)
    if status == RestrictionStatus.MISSING:
        raise RestrictionMissing(
            f"No key with identifier '{settings.key_identifier}' in {settings.authorized_keys}"
        )
    if status == RestrictionStatus.UNRESTRICTED:
        raise RestrictionWeak(
            f"Key '{settings.key_identifier}' is not restricted to the sys_info agent. "
            f"Re-run the deployment to restore the restrictions."
        )


def self_test(path: Path, runner: Runner = run_cmd) -> bool:
    result = runner([str(path), "--version"], timeout=SELF_TEST_TIMEOUT)
    if not result.success:
        logger.warning("Self-test of %s failed: %s", path, result.error_message or result.stderr.strip())
    return result.success


def download(url: str, dest: Path, client: httpx.Client) -> None:
    logger.info("Downloading %s", url)
    response = client.get(url)
    response.raise_for_status()
    dest.write_bytes(response.content)


def _backup_name(agent: Path) -> Path:
    return agent.with_name(f"{agent.name}.bak.{datetime.now().strftime('%Y%m%d%H%M%S')}")


def self_update(
    settings: AgentSettings,
    http_client: Optional[httpx.Client] = None,
    runner: Runner = run_cmd,
) -> UpdateResult:
    """
    Replace the agent with the versioned release build.

    Only a failed self-check of the installed agent rolls back; a failed
    post-update verification is reported in the result and nothing more.

    Raises:
        RestrictionMissing, RestrictionWeak, CredentialAmbiguous: if the
            restricted key does not verify before the update
    """
    require_restricted(settings)

    agent = settings.agent_path
    staged = agent.with_name(agent.name + ".staged")
    client = http_client or httpx.Client(timeout=DOWNLOAD_TIMEOUT, follow_redirects=True)
    result = UpdateResult(success=False, message="")

    try:
        download(settings.resolved_update_url(), staged, client)
        staged.chmod(0o755)
        if not self_test(staged, runner):
            raise UpdateFailed("downloaded agent failed its self-test")

        if agent.exists():
            result.backup = _backup_name(agent)
            shutil.copy2(agent, result.backup)
        os.replace(staged, agent)

        if not self_test(agent, runner):
            if result.backup is not None:
                shutil.copy2(result.backup, agent)
                logger.warning("Restored previous agent from %s", result.backup)
            raise UpdateFailed("installed agent failed its self-check; previous version restored")

        result.success = True
        result.message = f"Agent updated from {settings.resolved_update_url()}"
    except (httpx.HTTPError, OSError, UpdateFailed) as e:
        result.message = f"Update failed: {e}"
        logger.error("%s", result.message)
    finally:
        staged.unlink(missing_ok=True)
        if http_client is None:
            client.close()

    try:
        result.verification = verify_local(settings)
    except CredentialAmbiguous as e:
        result.verification_error = str(e)
    return result


def confirm_stable(agent: Path) -> list[Path]:
    """Remove update backups once the current agent has run successfully."""
    removed = []
    for backup in sorted(agent.parent.glob(f"{agent.name}.bak.*")):
        try:
            backup.unlink()
            removed.append(backup)
        except OSError as e:
            logger.warning("Cannot remove %s: %s", backup, e)
    return removed
