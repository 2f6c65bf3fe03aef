"""
Dispatcher: alias in, remote report out.

Resolves a host alias through the Alias Registry, connects with the
restricted key and writes one request line to the forced command. The
agent's output is passed through untouched and its exit code returned.
"""

import logging
from dataclasses import dataclass
from typing import Callable, Optional

from .aliases import AliasRegistry
from .config import OperatorConfig, SSHConfig
from .errors import AliasNotFound
from .models import RemoteTarget
from .protocol import InfoRequest, Request, RunRequest
from .ssh_client import SSHClient

logger = logging.getLogger(__name__)


@dataclass
class DispatchResult:
    target: str
    exit_code: int
    output: str


def build_request(mode: str = "run", args: Optional[list[str]] = None, structured: bool = False) -> Request:
    """Turn CLI-style ``mode args...`` into a request envelope."""
    args = args or []
    if mode == "run" and not args:
        return RunRequest(structured=structured)
    if mode == "info" and len(args) == 2:
        return InfoRequest(kind=args[0], name=args[1])
    raise ValueError("Usage: <alias> [info <service|docker> <name>]")


async def dispatch(
    alias: str,
    request: Request,
    config: OperatorConfig,
    registry: Optional[AliasRegistry] = None,
    sink: Optional[Callable[[str], object]] = None,
    client_factory: Callable[[SSHConfig], SSHClient] = SSHClient,
) -> DispatchResult:
    """
    Run one request against the host behind ``alias``.

    Output chunks are handed to ``sink`` as they arrive and also collected
    into the returned result.

    Raises:
        AliasNotFound: if no alias matches exactly or within the threshold
        SSHClientError: if the connection fails
    """
    registry = registry or AliasRegistry.load(config.hosts_file)
    target_str = registry.resolve(alias)
    if target_str is None:
        raise AliasNotFound(alias, [f"{e.name} {e.target}" for e in registry.list()])

    target = RemoteTarget.parse(target_str)
    logger.debug("Dispatching '%s' to %s", request.to_line(), target)

    chunks: list[str] = []

    def collect(chunk: str) -> None:
        chunks.append(chunk)
        if sink is not None:
            sink(chunk)

    async with client_factory(config.ssh_config(target)) as client:
        exit_code = await client.send_request(request.to_line(), collect)

    return DispatchResult(target=str(target), exit_code=exit_code, output="".join(chunks))
