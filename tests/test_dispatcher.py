import pytest

from conftest import FakeSSHClient
from sys_info.aliases import AliasRegistry
from sys_info.config import OperatorConfig
from sys_info.dispatcher import build_request, dispatch
from sys_info.errors import AliasNotFound
from sys_info.models import AliasEntry, ItemKind
from sys_info.protocol import InfoRequest, RunRequest


@pytest.fixture
def config(tmp_path) -> OperatorConfig:
    return OperatorConfig(home=tmp_path)


@pytest.fixture
def registry() -> AliasRegistry:
    return AliasRegistry([
        AliasEntry(name="srv1", target="admin@10.0.0.5"),
        AliasEntry(name="nas", target="root@nas.lan:2222"),
    ])


def factory_for(client):
    def factory(ssh_config):
        client.config = ssh_config
        return client
    return factory


class TestBuildRequest:
    def test_default_run(self):
        assert build_request() == RunRequest()

    def test_structured(self):
        assert build_request(structured=True).to_line() == "json"

    def test_info(self):
        request = build_request("info", ["docker", "redis:latest"])
        assert request == InfoRequest(kind=ItemKind.DOCKER, name="redis:latest")

    @pytest.mark.parametrize("mode, args", [
        ("info", ["service"]),
        ("run", ["extra"]),
        ("setup", []),
    ])
    def test_bad_usage(self, mode, args):
        with pytest.raises(ValueError):
            build_request(mode, args)


@pytest.mark.asyncio
async def test_output_streamed_and_exit_code_passed_through(config, registry):
    client = FakeSSHClient(output="Hostname:       box1\n", exit_code=3)
    streamed = []

    result = await dispatch(
        "Srv-1", RunRequest(structured=True), config,
        registry=registry, sink=streamed.append, client_factory=factory_for(client),
    )

    assert result.exit_code == 3
    assert result.target == "admin@10.0.0.5"
    assert result.output == "Hostname:       box1\n"
    assert "".join(streamed) == result.output
    assert client.requests == ["json"]
    assert not client.connected


@pytest.mark.asyncio
async def test_connects_with_restricted_key(config, registry):
    client = FakeSSHClient()

    await dispatch("nas", RunRequest(), config, registry=registry, client_factory=factory_for(client))

    assert client.config.host == "nas.lan"
    assert client.config.port == 2222
    assert client.config.user == "root"
    assert client.config.key_path == config.key_path
    assert client.config.use_default_keys is False


@pytest.mark.asyncio
async def test_unknown_alias_lists_known_hosts(config, registry):
    client = FakeSSHClient()

    with pytest.raises(AliasNotFound) as exc:
        await dispatch("zzzzzzzz", RunRequest(), config, registry=registry, client_factory=factory_for(client))

    assert exc.value.known == ["srv1 admin@10.0.0.5", "nas root@nas.lan:2222"]
    assert "zzzzzzzz" in str(exc.value)
    assert client.requests == []


@pytest.mark.asyncio
async def test_registry_loaded_from_hosts_file(config):
    config.hosts_file.parent.mkdir(parents=True)
    config.hosts_file.write_text("srv1 admin@10.0.0.5\n")
    client = FakeSSHClient(output="ok\n")

    result = await dispatch("srv1", RunRequest(), config, client_factory=factory_for(client))

    assert result.exit_code == 0
    assert client.requests == ["run"]
