"""
Operator command line tools.

    get-sys-info <alias> [info <service|docker> <name>] [--json]
    sys-info-deploy deploy <name> <user@host>
    sys-info-deploy verify <alias>
    sys-info-deploy revoke <alias>
    sys-info-deploy list

Exit status is 0 on success and 1 on bad usage, an unknown alias or any
credential problem. ``get-sys-info`` otherwise passes through the remote
agent's exit status.
"""

import argparse
import asyncio
import getpass
import logging
import sys
import tempfile
from pathlib import Path
from typing import Optional

from pydantic import ValidationError

from .aliases import AliasRegistry
from .authorized_keys import RestrictionStatus
from .config import OperatorConfig
from .credential import CredentialManager, build_agent_archive, generate
from .dispatcher import build_request, dispatch
from .errors import AliasNotFound, SysInfoError
from .logging_config import setup_logging
from .models import RemoteTarget
from .ssh_client import SSHClientError


class _Parser(argparse.ArgumentParser):
    """argparse with exit status 1 for usage errors."""

    def error(self, message: str) -> None:
        self.print_usage(sys.stderr)
        self.exit(1, f"{self.prog}: error: {message}\n")


def _stream(chunk: str) -> None:
    sys.stdout.write(chunk)
    sys.stdout.flush()


def _ask_password(target: RemoteTarget) -> Optional[str]:
    return getpass.getpass(f"Password for {target}: ") or None


def _print_known(error: AliasNotFound) -> None:
    print(f"[!] {error}.", file=sys.stderr)
    if error.known:
        print("Known hosts:", file=sys.stderr)
        for line in error.known:
            print(f"  - {line}", file=sys.stderr)
    else:
        print("No hosts deployed yet.", file=sys.stderr)


def _resolve(config: OperatorConfig, alias: str) -> RemoteTarget:
    registry = AliasRegistry.load(config.hosts_file)
    target = registry.resolve(alias)
    if target is None:
        raise AliasNotFound(alias, [f"{e.name} {e.target}" for e in registry.list()])
    return RemoteTarget.parse(target)


# =============================================================================
# get-sys-info
# =============================================================================

def dispatch_main(argv: Optional[list[str]] = None) -> int:
    parser = _Parser(prog="get-sys-info", description="Fetch a system report from a managed host")
    parser.add_argument("alias", help="Host alias (typos within 3 edits are tolerated)")
    parser.add_argument("mode", nargs="?", default="run", choices=["run", "info"])
    parser.add_argument("args", nargs="*", help="info: <service|docker> <name>")
    parser.add_argument("--json", action="store_true", help="Structured report")
    parser.add_argument("-v", "--verbose", action="store_true")
    args = parser.parse_args(argv)

    setup_logging(logging.DEBUG if args.verbose else logging.WARNING)

    try:
        request = build_request(args.mode, args.args, structured=args.json)
    except (ValueError, ValidationError) as e:
        parser.print_usage(sys.stderr)
        print(f"[!] {e}", file=sys.stderr)
        return 1

    try:
        config = OperatorConfig.load()
        result = asyncio.run(dispatch(args.alias, request, config, sink=_stream))
    except AliasNotFound as e:
        _print_known(e)
        return 1
    except (SysInfoError, SSHClientError) as e:
        print(f"[!] {e}", file=sys.stderr)
        return 1
    except ValueError as e:
        print(f"[!] Invalid configuration: {e}", file=sys.stderr)
        return 1

    return result.exit_code


# =============================================================================
# sys-info-deploy
# =============================================================================

async def _deploy(config: OperatorConfig, name: str, target: RemoteTarget) -> int:
    if generate(config):
        print(f"[+] Generated SSH key {config.key_path}")

    manager = CredentialManager(config)
    with tempfile.TemporaryDirectory() as tmp:
        archive = build_agent_archive(Path(tmp) / "sys_info.pyz")
        print(f"[+] Installing agent and restricted key on {target}")
        status = await manager.install(target, archive, ask_password=_ask_password)

    if status != RestrictionStatus.OK:
        print(f"[!] Restriction check after install returned {status.value}", file=sys.stderr)
        print("[!] Manual verification required on the remote host", file=sys.stderr)
        return 1
    print("[✓] SSH restrictions verified")

    registry = AliasRegistry.load(config.hosts_file)
    registry.upsert(name, str(target))
    registry.save()
    print(f"[+] Saved connection under name: {name}")
    print()
    print(f"Choose monitored items on the host with: {config.remote_agent} setup")
    print(f"Get system info with: get-sys-info {name}")
    return 0


async def _verify(config: OperatorConfig, alias: str) -> int:
    target = _resolve(config, alias)
    status = await CredentialManager(config).verify(target, ask_password=_ask_password)
    print(f"{target}: {status.value}")
    return 0 if status == RestrictionStatus.OK else 1


async def _revoke(config: OperatorConfig, alias: str) -> int:
    target = _resolve(config, alias)
    await CredentialManager(config).revoke(target, ask_password=_ask_password)
    print(f"Removed SSH key with identifier {config.key_identifier} from {target}")
    return 0


def deploy_main(argv: Optional[list[str]] = None) -> int:
    parser = _Parser(prog="sys-info-deploy", description="Manage the restricted sys_info credential")
    parser.add_argument("-v", "--verbose", action="store_true")
    sub = parser.add_subparsers(dest="command", required=True)

    p_deploy = sub.add_parser("deploy", help="Install the agent and restricted key, save the alias")
    p_deploy.add_argument("name")
    p_deploy.add_argument("target", help="user@host")
    p_verify = sub.add_parser("verify", help="Check the restricted key line on a host")
    p_verify.add_argument("alias")
    p_revoke = sub.add_parser("revoke", help="Remove the restricted key line from a host")
    p_revoke.add_argument("alias")
    sub.add_parser("list", help="List known host aliases")

    args = parser.parse_args(argv)
    setup_logging(logging.DEBUG if args.verbose else logging.INFO)

    try:
        config = OperatorConfig.load()
        if args.command == "list":
            for entry in AliasRegistry.load(config.hosts_file).list():
                print(f"{entry.name} {entry.target}")
            return 0
        if args.command == "deploy":
            return asyncio.run(_deploy(config, args.name, RemoteTarget.parse(args.target)))
        if args.command == "verify":
            return asyncio.run(_verify(config, args.alias))
        return asyncio.run(_revoke(config, args.alias))
    except AliasNotFound as e:
        _print_known(e)
        return 1
    except (SysInfoError, SSHClientError) as e:
        print(f"[!] {e}", file=sys.stderr)
        return 1
    except (ValueError, ValidationError) as e:
        print(f"[!] {e}", file=sys.stderr)
        return 1
