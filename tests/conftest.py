"""Shared fixtures: canned command output, a fake SSH session, temp settings."""

from pathlib import Path
from typing import Callable, Optional, Union

import pytest

from sys_info.authorized_keys import forced_command_line
from sys_info.collectors import REQUIRED_TOOLS, HostProbe
from sys_info.config import DEFAULT_KEY_IDENTIFIER, AgentSettings, SSHConfig
from sys_info.models import CommandResult

PUBLIC_KEY = "ssh-ed25519 AAAAC3NzaC1lZDI1NTE5AAAAIFakeKeyForTests operator@ha"


class FakeRunner:
    """
    Replays canned output keyed by command prefix.

    The longest matching prefix wins. Unknown commands behave like a
    missing binary (exit 127).
    """

    def __init__(self, outputs: Optional[dict[str, Union[str, CommandResult]]] = None):
        self.outputs = dict(outputs or {})
        self.calls: list[str] = []

    def __call__(self, cmd: list[str], timeout: Optional[float] = None) -> CommandResult:
        command = " ".join(cmd)
        self.calls.append(command)
        matches = [prefix for prefix in self.outputs if command.startswith(prefix)]
        if not matches:
            return CommandResult(command, "", "", 127, False, f"command not available: {cmd[0]}")
        value = self.outputs[max(matches, key=len)]
        if isinstance(value, CommandResult):
            return value
        return CommandResult(command, value, "", 0, True)


def failed(stderr: str = "", exit_code: int = 1) -> CommandResult:
    return CommandResult("", "", stderr, exit_code, False)


def make_which(*extra: str) -> Callable[[str], Optional[str]]:
    available = set(REQUIRED_TOOLS) | set(extra)
    return lambda tool: f"/usr/bin/{tool}" if tool in available else None


BASE_OUTPUTS: dict[str, Union[str, CommandResult]] = {
    "hostname": "box1\n",
    "uname -r": "6.1.0-18-amd64\n",
    "uptime -p": "up 3 days, 4 hours\n",
    "free -m": (
        "               total        used        free      shared  buff/cache   available\n"
        "Mem:            7900        2100        3000         120        2800        5500\n"
        "Swap:           2047           0        2047\n"
    ),
    "df -h": (
        "Filesystem     Mounted on  Used  Size Use%\n"
        "/dev/sda1      /            12G   50G  24%\n"
        "/dev/sdb1      /data       100G  900G  12%\n"
    ),
    "ps -eo": (
        "    1     0  0.1  0.5 /sbin/init\n"
        "  812     1  2.4  1.2 /usr/sbin/nginx -g daemon off;\n"
    ),
    "systemctl --failed": "",
    "journalctl -p 3": "Oct 18 09:00:01 box1 kernel: usb 1-1: device descriptor read error\n",
}


@pytest.fixture
def runner() -> FakeRunner:
    return FakeRunner(BASE_OUTPUTS)


@pytest.fixture
def probe(runner, tmp_path) -> HostProbe:
    """A host with only the required tools, no battery, no /proc."""
    return HostProbe(runner=runner, which=make_which(), root=tmp_path / "root")


@pytest.fixture
def settings(tmp_path) -> AgentSettings:
    return AgentSettings(
        config_file=tmp_path / "home" / ".config" / "sys_info.conf",
        authorized_keys=tmp_path / "home" / ".ssh" / "authorized_keys",
        agent_path=tmp_path / "home" / "bin" / "sys_info",
        update_url="https://updates.example.test/v{version}/sys_info.pyz",
    )


REMOTE_AGENT = "/home/u/bin/sys_info"


def restricted_for(agent) -> str:
    return forced_command_line(PUBLIC_KEY, f"{agent} serve", DEFAULT_KEY_IDENTIFIER)


@pytest.fixture
def restricted_line(settings) -> str:
    """The restricted line the agent under ``settings`` accepts."""
    return restricted_for(settings.agent_path)


class FakeSSHClient:
    """In-memory stand-in for ``SSHClient``."""

    def __init__(
        self,
        config: Optional[SSHConfig] = None,
        files: Optional[dict[str, str]] = None,
        home: str = "/home/u",
        output: str = "",
        exit_code: int = 0,
        uid: int = 1000,
        agent_starts: bool = True,
    ):
        self.config = config
        self.files = dict(files or {})
        self.home = home
        self.output = output
        self.exit_code = exit_code
        self.uid = uid
        self.agent_starts = agent_starts
        self.connected = False
        self.requests: list[str] = []
        self.commands: list[str] = []
        self.uploads: list[tuple[str, str, int]] = []

    async def connect(self) -> None:
        self.connected = True

    async def disconnect(self) -> None:
        self.connected = False

    async def __aenter__(self) -> "FakeSSHClient":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.disconnect()

    async def send_request(self, request_line: str, sink) -> int:
        self.requests.append(request_line)
        # Split into two chunks to exercise streaming
        half = len(self.output) // 2
        for chunk in (self.output[:half], self.output[half:]):
            if chunk:
                sink(chunk)
        return self.exit_code

    async def run_command(self, command: str, timeout: Optional[float] = None) -> CommandResult:
        self.commands.append(command)
        if command == "id -u":
            return CommandResult(command, f"{self.uid}\n", "", 0, True)
        if command.endswith(" --version") and not self.agent_starts:
            return CommandResult(command, "", "ModuleNotFoundError: No module named 'pydantic'\n", 1, False)
        return CommandResult(command, "", "", 0, True)

    async def home_dir(self) -> str:
        return self.home

    async def read_file(self, path: str) -> Optional[str]:
        return self.files.get(path)

    async def write_file(self, path: str, content: str, mode: int = 0o600) -> None:
        self.files[path] = content

    async def upload(self, local_path: str, remote_path: str, mode: int = 0o755) -> int:
        self.uploads.append((local_path, remote_path, mode))
        self.files[remote_path] = Path(local_path).read_text(encoding="utf-8")
        return self.uid
