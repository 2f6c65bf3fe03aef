import json

import pytest
from pydantic import ValidationError

from sys_info import mcp_server
from sys_info.config import OperatorConfig
from sys_info.dispatcher import DispatchResult
from sys_info.errors import AliasNotFound
from sys_info.mcp_server import (
    HostItemInfoInput,
    HostReportInput,
    ListHostsInput,
    PingInput,
)


@pytest.fixture(autouse=True)
def config(tmp_path, monkeypatch):
    config = OperatorConfig(home=tmp_path)
    config.hosts_file.parent.mkdir(parents=True)
    config.hosts_file.write_text("srv1 admin@10.0.0.5\n")
    monkeypatch.setattr(mcp_server, "_config", config)
    return config


@pytest.fixture
def dispatched(monkeypatch):
    lines = []

    async def fake_dispatch(alias, request, config, **kwargs):
        if alias == "nowhere":
            raise AliasNotFound(alias, ["srv1 admin@10.0.0.5"])
        lines.append(request.to_line())
        return DispatchResult(target="admin@10.0.0.5", exit_code=0, output="Hostname: box1\n")

    monkeypatch.setattr(mcp_server, "dispatch", fake_dispatch)
    return lines


@pytest.mark.asyncio
async def test_ping():
    data = json.loads(await mcp_server.ping(PingInput(message="hello")))
    assert data["status"] == "pong"
    assert data["message"] == "hello"


@pytest.mark.asyncio
async def test_list_hosts():
    data = json.loads(await mcp_server.list_hosts(ListHostsInput()))
    assert data == {"count": 1, "hosts": [{"name": "srv1", "target": "admin@10.0.0.5"}]}


@pytest.mark.asyncio
async def test_host_report(dispatched):
    data = json.loads(await mcp_server.host_report(HostReportInput(alias="srv1")))
    assert data["success"] is True
    assert data["exit_code"] == 0
    assert data["output"] == "Hostname: box1\n"
    assert dispatched == ["json"]


@pytest.mark.asyncio
async def test_host_item_info(dispatched):
    params = HostItemInfoInput(alias="srv1", kind="docker", name="redis:latest")
    data = json.loads(await mcp_server.host_item_info(params))
    assert data["success"] is True
    assert dispatched == ["info docker redis:latest"]


@pytest.mark.asyncio
async def test_unknown_alias(dispatched):
    data = json.loads(await mcp_server.host_report(HostReportInput(alias="nowhere", structured=False)))
    assert data["success"] is False
    assert data["known_hosts"] == ["srv1 admin@10.0.0.5"]


def test_item_name_rejects_shell_metacharacters():
    with pytest.raises(ValidationError):
        HostItemInfoInput(alias="srv1", kind="service", name="nginx;reboot")
