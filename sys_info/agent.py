"""
Report Agent entry point (runs on the managed host).

Usage:
    sys_info run                      # human-readable report
    sys_info json                     # structured report
    sys_info info service nginx       # vitals + one service
    sys_info info docker redis        # vitals + one container or image
    sys_info setup                    # choose monitored items
    sys_info update-script            # self-update
    sys_info verify-restrictions      # check the restricted key line
    sys_info remove                   # revoke the restricted key line
    sys_info serve                    # forced command: request read from stdin
    sys_info --version
"""

import argparse
import logging
import os
import sys
from typing import Optional, TextIO

from pydantic import ValidationError

from . import __version__, authorized_keys, monitoring
from .authorized_keys import RestrictionStatus
from .collectors import HostProbe
from .config import AgentSettings
from .errors import ConfigMissing, SysInfoError
from .logging_config import setup_logging
from .protocol import (
    InfoRequest,
    Request,
    RunRequest,
    SetupRequest,
    UpdateScriptRequest,
    VerifyRequest,
    VersionRequest,
    parse_request,
)
from .report import build_info, build_report, render_info_text, render_json, render_text
from .setup_wizard import run_setup
from .updater import confirm_stable, self_update, verify_local

logger = logging.getLogger(__name__)


def remove_key(settings: AgentSettings, out: TextIO) -> int:
    """Drop the identifier line from the local store, keeping a .bak copy."""
    store = settings.authorized_keys
    if not store.is_file():
        raise SysInfoError(f"No authorized_keys file found at {store}")

    content = store.read_text(encoding="utf-8")
    remaining = authorized_keys.remove_restricted(content.splitlines(), settings.key_identifier)

    backup = store.with_name(store.name + ".bak")
    backup.write_text(content, encoding="utf-8")
    tmp = store.with_name(store.name + ".tmp")
    tmp.write_text(authorized_keys.join_lines(remaining), encoding="utf-8")
    os.chmod(tmp, 0o600)
    os.replace(tmp, store)

    out.write(f"Removed SSH key with identifier: {settings.key_identifier}\n")
    return 0


def execute(
    request: Request,
    settings: AgentSettings,
    probe: Optional[HostProbe] = None,
    out: TextIO = sys.stdout,
) -> int:
    """Run one validated request and return the process exit code."""
    if isinstance(request, VersionRequest):
        out.write(f"sys_info {__version__}\n")
        return 0

    if isinstance(request, VerifyRequest):
        status = verify_local(settings)
        out.write(f"Restrictions: {status.value}\n")
        return 0 if status == RestrictionStatus.OK else 1

    if isinstance(request, UpdateScriptRequest):
        result = self_update(settings)
        out.write(result.message + "\n")
        if result.backup:
            out.write(f"Previous agent kept at {result.backup}\n")
        if result.verification_error:
            out.write(f"Post-update verification failed: {result.verification_error}\n")
        else:
            out.write(f"Post-update verification: {result.verification.value}\n")
        return 0 if result.success and result.verification == RestrictionStatus.OK else 1

    probe = probe or HostProbe(log_lines=settings.log_lines)
    probe.check_requirements()

    config = monitoring.load(settings.config_file)
    if config is not None and config.use_sudo_for_container_runtime:
        probe.enable_docker_sudo()

    if isinstance(request, SetupRequest):
        try:
            run_setup(probe, settings)
        except EOFError:
            raise SysInfoError("setup needs an interactive terminal") from None
        return 0

    if isinstance(request, RunRequest):
        if config is None:
            logger.warning("%s", ConfigMissing(f"{settings.config_file} not found; reporting vitals only"))
        report = build_report(probe, config, settings)
        out.write(render_json(report) if request.structured else render_text(report))
        out.flush()
        for backup in confirm_stable(settings.agent_path):
            logger.info("Removed update backup %s", backup)
        return 0

    if isinstance(request, InfoRequest):
        info = build_info(probe, request.kind, request.name)
        out.write(render_info_text(info))
        return 0

    raise SysInfoError(f"Unhandled request: {request.to_line()}")


def read_forced_request(stdin: TextIO) -> Request:
    """
    Read the real request for a forced-command session.

    The command the client asked for (``SSH_ORIGINAL_COMMAND``) is ignored.
    """
    original = os.environ.get("SSH_ORIGINAL_COMMAND")
    if original:
        logger.debug("Ignoring requested command %r", original)
    return parse_request(stdin.readline().strip())


def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(prog="sys_info", description="sys_info Report Agent")
    parser.add_argument(
        "mode",
        help="run | json | setup | info | update-script | verify-restrictions | remove | serve",
    )
    parser.add_argument("args", nargs="*", help="info: <service|docker> <name>")
    parser.add_argument("--version", action="version", version=f"sys_info {__version__}")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging on stderr")
    parser.add_argument("--json-logs", action="store_true", help="Log as JSON lines")
    args = parser.parse_args(argv)

    setup_logging(logging.DEBUG if args.verbose else logging.WARNING, json_format=args.json_logs)

    try:
        settings = AgentSettings.from_env()
        if args.mode == "remove" and not args.args:
            return remove_key(settings, sys.stdout)
        if args.mode == "serve":
            request = read_forced_request(sys.stdin)
        else:
            request = parse_request(" ".join([args.mode, *args.args]))
        return execute(request, settings, out=sys.stdout)
    except SysInfoError as e:
        print(f"[!] {e}", file=sys.stderr)
        return e.exit_code
    except ValidationError as e:
        print(f"[!] Invalid configuration: {e}", file=sys.stderr)
        return 1


def run() -> None:
    sys.exit(main())


if __name__ == "__main__":
    run()
