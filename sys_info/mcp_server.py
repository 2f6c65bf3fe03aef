"""
MCP server exposing sys_info reports as tools.

Every tool runs at most one dispatch: resolve the alias, connect with the
restricted key, send one request, return the agent's output.

Usage:
    # Run standalone for testing
    sys-info-mcp

    # Or test with MCP inspector
    npx @modelcontextprotocol/inspector python -m sys_info.mcp_server
"""

import json
from typing import Optional

from mcp.server.fastmcp import FastMCP
from pydantic import BaseModel, ConfigDict, Field

from . import __version__
from .aliases import AliasRegistry
from .config import OperatorConfig
from .dispatcher import DispatchResult, dispatch
from .errors import AliasNotFound, SysInfoError
from .models import ItemKind
from .protocol import NAME_PATTERN, InfoRequest, Request, RunRequest
from .ssh_client import SSHClientError


mcp = FastMCP("sys_info_mcp")

# Loaded on first use
_config: Optional[OperatorConfig] = None


def _get_config() -> OperatorConfig:
    global _config
    if _config is None:
        _config = OperatorConfig.load()
    return _config


# =============================================================================
# Input Models (Pydantic)
# =============================================================================

class PingInput(BaseModel):
    """Input for the ping tool - used to test if server is responding."""

    model_config = ConfigDict(
        str_strip_whitespace=True,
        extra="forbid",
    )

    message: Optional[str] = Field(
        default="ping",
        description="Optional message to echo back (default: 'ping')",
        max_length=100,
    )


class ListHostsInput(BaseModel):
    """Input for listing known hosts - no parameters needed."""
    model_config = ConfigDict(extra="forbid")


class HostReportInput(BaseModel):
    """Input for fetching a full host report."""

    model_config = ConfigDict(
        str_strip_whitespace=True,
        extra="forbid",
    )

    alias: str = Field(
        ...,
        description="Host alias as saved at deploy time (small typos are tolerated)",
        min_length=1,
        max_length=100,
    )
    structured: bool = Field(
        default=True,
        description="Return the JSON report instead of the human-readable one",
    )


class HostItemInfoInput(BaseModel):
    """Input for a deep dive on one service or container."""

    model_config = ConfigDict(
        str_strip_whitespace=True,
        extra="forbid",
    )

    alias: str = Field(..., min_length=1, max_length=100)
    kind: ItemKind = Field(..., description="'service' or 'docker'")
    name: str = Field(
        ...,
        description="Service unit (e.g. 'nginx.service') or container/image name (e.g. 'redis:latest')",
        pattern=NAME_PATTERN,
        min_length=1,
        max_length=200,
    )


# =============================================================================
# Helper Functions
# =============================================================================

def format_dispatch_result(result: DispatchResult) -> str:
    """Format a dispatch result for display."""
    return json.dumps({
        "success": result.exit_code == 0,
        "target": result.target,
        "exit_code": result.exit_code,
        "output": result.output,
    }, indent=2)


async def _run(alias: str, request: Request) -> str:
    try:
        result = await dispatch(alias, request, _get_config())
        return format_dispatch_result(result)
    except AliasNotFound as e:
        return json.dumps({
            "success": False,
            "error": str(e),
            "known_hosts": e.known,
        }, indent=2)
    except (SysInfoError, SSHClientError, ValueError) as e:
        return json.dumps({"success": False, "error": str(e)}, indent=2)


# =============================================================================
# MCP Tool Definitions
# =============================================================================

@mcp.tool(name="ping")
async def ping(params: PingInput) -> str:
    """
    Test if the MCP server is responding.

    Args:
        params: PingInput containing optional message

    Returns:
        JSON response with status and echoed message
    """
    return json.dumps({
        "status": "pong",
        "message": params.message,
        "server": "sys_info_mcp",
        "version": __version__,
    }, indent=2)


@mcp.tool(name="list_hosts")
async def list_hosts(params: ListHostsInput) -> str:
    """
    List the host aliases that reports can be requested for.

    Returns:
        JSON list of {name, target}
    """
    try:
        registry = AliasRegistry.load(_get_config().hosts_file)
    except ValueError as e:
        return json.dumps({"success": False, "error": str(e)}, indent=2)

    hosts = [entry.model_dump() for entry in registry.list()]
    return json.dumps({"count": len(hosts), "hosts": hosts}, indent=2)


@mcp.tool(name="host_report")
async def host_report(params: HostReportInput) -> str:
    """
    Get the full health report of a managed host.

    Covers hostname, kernel, uptime, load, memory, swap, disks, optional
    temperatures/battery/containers, top processes, failed services,
    recent journal errors and every monitored service or container.

    Args:
        params: Host alias and output format

    Returns:
        JSON with the agent's exit code and output
    """
    return await _run(params.alias, RunRequest(structured=params.structured))


@mcp.tool(name="host_item_info")
async def host_item_info(params: HostItemInfoInput) -> str:
    """
    Get vitals plus a deep dive on one service or container of a host.

    For a docker name that matches no container or image, the output lists
    the available containers and images instead.

    Args:
        params: Host alias, item kind and item name

    Returns:
        JSON with the agent's exit code and output
    """
    return await _run(params.alias, InfoRequest(kind=params.kind, name=params.name))


# =============================================================================
# Main Entry Point
# =============================================================================

def main() -> None:
    """Run the MCP server over stdio."""
    mcp.run()


if __name__ == "__main__":
    main()
