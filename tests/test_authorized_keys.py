import pytest

from conftest import REMOTE_AGENT, restricted_for
from sys_info import authorized_keys
from sys_info.authorized_keys import RestrictionStatus
from sys_info.config import DEFAULT_KEY_IDENTIFIER
from sys_info.errors import CredentialAmbiguous

OTHER = "ssh-rsa AAAAB3NzaC1yc2EAAAADAQABAAABAQOther alice@laptop"
BARE = f"ssh-ed25519 AAAAC3NzaC1lZDI1NTE5AAAAIFakeKeyForTests {DEFAULT_KEY_IDENTIFIER}"
RESTRICTED = restricted_for(REMOTE_AGENT)


def check(lines):
    return authorized_keys.check_restriction(lines, DEFAULT_KEY_IDENTIFIER, REMOTE_AGENT)


def test_forced_command_line_shape():
    assert RESTRICTED.startswith('command="/home/u/bin/sys_info serve",')
    for flag in authorized_keys.DENIED_CAPABILITIES:
        assert flag in RESTRICTED
    assert RESTRICTED.endswith(DEFAULT_KEY_IDENTIFIER)
    # the operator comment of the public key is replaced by the identifier
    assert "operator@ha" not in RESTRICTED


def test_split_options_keeps_quoted_commas():
    options, rest = authorized_keys.split_options(
        f'command="echo a,b",no-pty {BARE}'
    )
    assert options == ['command="echo a,b"', "no-pty"]
    assert rest == BARE


def test_forced_command_value():
    assert authorized_keys.forced_command(RESTRICTED) == "/home/u/bin/sys_info serve"
    assert authorized_keys.forced_command(BARE) is None


def test_check_missing():
    assert check([OTHER]) == RestrictionStatus.MISSING


def test_check_unrestricted():
    assert check([OTHER, BARE]) == RestrictionStatus.UNRESTRICTED


def test_command_without_deny_flags_is_unrestricted():
    line = f'command="/home/u/bin/sys_info serve" {BARE}'
    assert check([line]) == RestrictionStatus.UNRESTRICTED


def test_other_forced_command_is_unrestricted():
    assert check([RESTRICTED.replace("/home/u/bin/sys_info serve", "/bin/sh")]) == RestrictionStatus.UNRESTRICTED
    assert check([restricted_for("/tmp/sys_info")]) == RestrictionStatus.UNRESTRICTED


def test_check_ok():
    assert check([OTHER, RESTRICTED]) == RestrictionStatus.OK


def test_commented_lines_ignored():
    lines = [f"# old: {BARE}", RESTRICTED]
    assert check(lines) == RestrictionStatus.OK


def test_identifier_must_be_the_whole_last_field():
    lookalikes = [
        BARE.replace(DEFAULT_KEY_IDENTIFIER, DEFAULT_KEY_IDENTIFIER + "_old"),
        BARE.replace(DEFAULT_KEY_IDENTIFIER, "old_" + DEFAULT_KEY_IDENTIFIER),
        f"{BARE} extra",
    ]
    assert authorized_keys.tagged_lines(lookalikes, DEFAULT_KEY_IDENTIFIER) == []
    assert check([*lookalikes, RESTRICTED]) == RestrictionStatus.OK


def test_check_ambiguous():
    with pytest.raises(CredentialAmbiguous) as exc:
        check([RESTRICTED, BARE])
    assert exc.value.count == 2


def test_replace_keeps_other_lines():
    updated = authorized_keys.replace_restricted([OTHER, BARE], RESTRICTED, DEFAULT_KEY_IDENTIFIER)
    assert updated == [OTHER, RESTRICTED]


def test_replace_refuses_ambiguous():
    with pytest.raises(CredentialAmbiguous):
        authorized_keys.replace_restricted([BARE, BARE], RESTRICTED, DEFAULT_KEY_IDENTIFIER)


def test_remove_exactly_one():
    assert authorized_keys.remove_restricted([OTHER, RESTRICTED], DEFAULT_KEY_IDENTIFIER) == [OTHER]


def test_remove_leaves_lookalike_lines():
    lookalike = BARE.replace(DEFAULT_KEY_IDENTIFIER, DEFAULT_KEY_IDENTIFIER + "_old")
    assert authorized_keys.remove_restricted([lookalike, RESTRICTED], DEFAULT_KEY_IDENTIFIER) == [lookalike]


def test_remove_refuses_zero():
    with pytest.raises(CredentialAmbiguous) as exc:
        authorized_keys.remove_restricted([OTHER], DEFAULT_KEY_IDENTIFIER)
    assert exc.value.count == 0


def test_join_lines_drops_blanks():
    assert authorized_keys.join_lines([OTHER, "", "  "]) == OTHER + "\n"
