import zipfile

import pytest

from conftest import PUBLIC_KEY, REMOTE_AGENT, FakeSSHClient, restricted_for
from sys_info.authorized_keys import RestrictionStatus
from sys_info.config import DEFAULT_KEY_IDENTIFIER, OperatorConfig
from sys_info.credential import CredentialManager, build_agent_archive, generate
from sys_info.errors import CredentialAmbiguous, SysInfoError
from sys_info.models import CommandResult, RemoteTarget

STORE = "/home/u/.ssh/authorized_keys"
OTHER = "ssh-rsa AAAAB3NzaC1yc2EAAAADAQABAAABAQOther alice@laptop"
TAGGED = f"ssh-ed25519 AAAAC3NzaC1lZDI1NTE5AAAAIStale {DEFAULT_KEY_IDENTIFIER}"
TARGET = RemoteTarget.parse("u@10.0.0.5")
RESTRICTED = restricted_for(REMOTE_AGENT)


@pytest.fixture
def config(tmp_path) -> OperatorConfig:
    config = OperatorConfig(home=tmp_path)
    config.key_path.parent.mkdir(parents=True)
    config.key_path.write_text("PRIVATE KEY\n")
    config.public_key_path.write_text(PUBLIC_KEY + "\n")
    return config


@pytest.fixture
def archive(tmp_path):
    path = tmp_path / "sys_info.pyz"
    path.write_text("#!/usr/bin/env python3\n")
    return path


def test_generate_is_idempotent(tmp_path):
    config = OperatorConfig(home=tmp_path)

    assert generate(config) is True
    public_key = config.public_key_path.read_text()
    assert public_key.startswith("ssh-ed25519 ")
    assert DEFAULT_KEY_IDENTIFIER in public_key
    assert config.key_path.stat().st_mode & 0o777 == 0o600

    assert generate(config) is False
    assert config.public_key_path.read_text() == public_key


def manager_for(config, client, probe_ok=True, seen=None):
    async def probe(ssh_config):
        return probe_ok, "ok" if probe_ok else "Permission denied"

    def factory(ssh_config):
        if seen is not None:
            seen.append(ssh_config)
        client.config = ssh_config
        return client

    return CredentialManager(config, client_factory=factory, probe=probe)


@pytest.mark.asyncio
async def test_install_writes_restricted_line(config, archive):
    client = FakeSSHClient(files={STORE: OTHER + "\n" + TAGGED + "\n"})

    status = await manager_for(config, client).install(TARGET, archive)

    assert status == RestrictionStatus.OK
    lines = client.files[STORE].splitlines()
    assert lines[0] == OTHER
    assert len(lines) == 2
    assert lines[1].startswith('command="/home/u/bin/sys_info serve",')
    assert lines[1].endswith(DEFAULT_KEY_IDENTIFIER)
    assert client.uploads == [(str(archive), "/home/u/bin/sys_info", 0o755)]
    assert DEFAULT_KEY_IDENTIFIER in client.files["/home/u/.ssh/security_notice.txt"]
    assert "/home/u/bin/sys_info --version" in client.commands
    assert "mkdir -p ~/.ssh && chmod 700 ~/.ssh" in client.commands
    assert not client.connected


@pytest.mark.asyncio
async def test_install_aborts_on_duplicate_identifier(config, archive):
    original = TAGGED + "\n" + OTHER + "\n" + TAGGED + "\n"
    client = FakeSSHClient(files={STORE: original})

    with pytest.raises(CredentialAmbiguous) as exc:
        await manager_for(config, client).install(TARGET, archive)

    assert exc.value.count == 2
    assert client.files == {STORE: original}
    assert client.uploads == []
    assert not client.connected


@pytest.mark.asyncio
async def test_install_rejects_foreign_owner(config, archive):
    client = FakeSSHClient(files={STORE: OTHER + "\n"}, uid=0)

    async def id_u(command, timeout=None):
        return CommandResult(command, "1000\n", "", 0, True)

    client.run_command = id_u
    with pytest.raises(SysInfoError, match="owned by uid 0"):
        await manager_for(config, client).install(TARGET, archive)
    assert client.files[STORE] == OTHER + "\n"


@pytest.mark.asyncio
async def test_install_fails_when_agent_does_not_start(config, archive):
    client = FakeSSHClient(files={STORE: OTHER + "\n"}, agent_starts=False)

    with pytest.raises(SysInfoError, match="does not start") as exc:
        await manager_for(config, client).install(TARGET, archive)

    assert "No module named 'pydantic'" in str(exc.value)
    assert client.files[STORE] == OTHER + "\n"
    assert "/home/u/.ssh/security_notice.txt" not in client.files
    assert not client.connected


@pytest.mark.asyncio
async def test_bootstrap_uses_default_keys_when_probe_succeeds(config):
    seen = []
    client = FakeSSHClient(files={})

    await manager_for(config, client, seen=seen).verify(TARGET)

    assert len(seen) == 1
    assert seen[0].use_default_keys is True
    assert seen[0].password is None
    assert seen[0].connection_timeout == config.connect_timeout


@pytest.mark.asyncio
async def test_bootstrap_falls_back_to_password(config):
    seen = []
    asked = []
    client = FakeSSHClient(files={})

    def ask_password(target):
        asked.append(str(target))
        return "hunter2"

    status = await manager_for(config, client, probe_ok=False, seen=seen).verify(TARGET, ask_password)

    assert status == RestrictionStatus.MISSING
    assert asked == ["u@10.0.0.5"]
    assert seen[0].password == "hunter2"


@pytest.mark.asyncio
async def test_verify_reads_back(config):
    client = FakeSSHClient(files={STORE: RESTRICTED + "\n"})
    assert await manager_for(config, client).verify(TARGET) == RestrictionStatus.OK


@pytest.mark.asyncio
async def test_revoke_keeps_backup(config):
    original = OTHER + "\n" + RESTRICTED + "\n"
    client = FakeSSHClient(files={STORE: original})

    await manager_for(config, client).revoke(TARGET)

    assert client.files[STORE] == OTHER + "\n"
    assert client.files[STORE + ".bak"] == original


@pytest.mark.asyncio
async def test_revoke_refuses_when_absent(config):
    client = FakeSSHClient(files={STORE: OTHER + "\n"})

    with pytest.raises(CredentialAmbiguous):
        await manager_for(config, client).revoke(TARGET)
    assert client.files == {STORE: OTHER + "\n"}


def test_agent_archive_is_runnable_zip(tmp_path):
    archive = build_agent_archive(tmp_path / "sys_info.pyz")

    assert archive.read_bytes().startswith(b"#!/usr/bin/env python3\n")
    with zipfile.ZipFile(archive) as zf:
        names = zf.namelist()
        main = zf.read("__main__.py").decode()
    assert "sys_info/agent.py" in names
    assert not any("__pycache__" in name for name in names)
    assert "sys_info.agent" in main and "run()" in main
