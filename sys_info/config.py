"""
Configuration for the operator tools and the remote agent.

Operator side settings come from defaults, an optional YAML file named by
``SYS_INFO_CONFIG``, then ``SYS_INFO_*`` environment variables (a ``.env``
file in the working directory is honoured). Each process loads its
configuration once at start and passes it down explicitly.
"""

import os
from pathlib import Path
from typing import Any, Optional

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field

from . import __version__
from .models import RemoteTarget

DEFAULT_KEY_IDENTIFIER = "homeassistant_sys_info_key"
DEFAULT_UPDATE_URL = (
    "https://github.com/sys-info/sys_info/releases/download/v{version}/sys_info.pyz"
)


class SSHConfig(BaseModel):
    """Connection details for one SSH session."""

    host: str
    port: int = 22
    user: str
    key_path: Optional[Path] = None
    password: Optional[str] = None
    use_default_keys: bool = False
    known_hosts_path: Optional[Path] = None
    connection_timeout: Optional[float] = None

    @classmethod
    def for_target(cls, target: RemoteTarget, **kwargs: Any) -> "SSHConfig":
        return cls(host=target.hostname, port=target.port, user=target.username, **kwargs)


class OperatorConfig(BaseModel):
    """Settings for the dispatcher and credential lifecycle tools."""

    home: Path = Field(Path("/share/sys_info"), description="Base directory for keys and aliases")
    hosts_file: Optional[Path] = Field(None, description="Alias Registry file")
    key_path: Optional[Path] = Field(None, description="Private key of the restricted credential")
    key_identifier: str = Field(DEFAULT_KEY_IDENTIFIER, min_length=1)
    known_hosts: Optional[Path] = Field(None, description="known_hosts file; None disables host key checks")
    connect_timeout: float = Field(5.0, gt=0, description="Timeout for reachability probes")
    remote_agent: str = Field("bin/sys_info", description="Agent path, relative to the remote home")

    def model_post_init(self, __context: Any) -> None:
        if self.hosts_file is None:
            self.hosts_file = self.home / "etc" / "hosts"
        if self.key_path is None:
            self.key_path = self.home / "keys" / "key"

    @property
    def public_key_path(self) -> Path:
        return self.key_path.with_name(self.key_path.name + ".pub")

    @classmethod
    def load(cls) -> "OperatorConfig":
        """Build the configuration from YAML (optional) and environment."""
        load_dotenv()

        values: dict[str, Any] = {}
        config_file = os.getenv("SYS_INFO_CONFIG")
        if config_file:
            with open(config_file, encoding="utf-8") as f:
                values.update(yaml.safe_load(f) or {})

        env_map = {
            "SYS_INFO_HOME": "home",
            "SYS_INFO_HOSTS_FILE": "hosts_file",
            "SYS_INFO_KEY": "key_path",
            "SYS_INFO_KEY_IDENTIFIER": "key_identifier",
            "SYS_INFO_KNOWN_HOSTS": "known_hosts",
            "SYS_INFO_CONNECT_TIMEOUT": "connect_timeout",
            "SYS_INFO_REMOTE_AGENT": "remote_agent",
        }
        for env_name, field in env_map.items():
            value = os.getenv(env_name)
            if value:
                values[field] = value

        return cls(**values)

    def ssh_config(self, target: RemoteTarget, **kwargs: Any) -> SSHConfig:
        """Connection settings that authenticate with the restricted key."""
        return SSHConfig.for_target(
            target,
            key_path=self.key_path,
            known_hosts_path=self.known_hosts,
            **kwargs,
        )


class AgentSettings(BaseModel):
    """Settings for the Report Agent running on the managed host."""

    config_file: Path = Field(default_factory=lambda: Path.home() / ".config" / "sys_info.conf")
    authorized_keys: Path = Field(default_factory=lambda: Path.home() / ".ssh" / "authorized_keys")
    agent_path: Path = Field(default_factory=lambda: Path.home() / "bin" / "sys_info")
    key_identifier: str = DEFAULT_KEY_IDENTIFIER
    update_url: str = DEFAULT_UPDATE_URL
    log_lines: int = Field(10, ge=1)
    journal_error_lines: int = Field(50, ge=1)
    top_processes: int = Field(10, ge=1)

    @classmethod
    def from_env(cls) -> "AgentSettings":
        load_dotenv()
        env_map = {
            "SYS_INFO_MONITOR_CONFIG": "config_file",
            "SYS_INFO_AUTHORIZED_KEYS": "authorized_keys",
            "SYS_INFO_AGENT_PATH": "agent_path",
            "SYS_INFO_KEY_IDENTIFIER": "key_identifier",
            "SYS_INFO_UPDATE_URL": "update_url",
        }
        values = {field: os.environ[name] for name, field in env_map.items() if os.getenv(name)}
        return cls(**values)

    def resolved_update_url(self) -> str:
        return self.update_url.format(version=__version__)
