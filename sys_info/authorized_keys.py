"""
Restricted-key lines in an OpenSSH ``authorized_keys`` store.

A restricted line binds the sys_info public key to a forced command and
denies every side capability:

    command="/home/u/bin/sys_info serve",no-port-forwarding,no-X11-forwarding,
    no-agent-forwarding,no-pty,restrict ssh-ed25519 AAAA... <identifier>

The helpers here only transform lists of lines. Reading and writing the
store (locally or over SFTP) is left to the caller.
"""

import re
from enum import Enum
from typing import Optional

from .errors import CredentialAmbiguous

DENIED_CAPABILITIES = (
    "no-port-forwarding",
    "no-X11-forwarding",
    "no-agent-forwarding",
    "no-pty",
)

# Start of the key blob: "<type> <base64>"
_KEY_START = re.compile(r"(?:^|\s)((?:ssh|ecdsa|sk)-[\w@.-]+\s+AAAA[0-9A-Za-z+/=]+)")


class RestrictionStatus(str, Enum):
    OK = "OK"
    MISSING = "MISSING"
    UNRESTRICTED = "UNRESTRICTED"


def split_options(line: str) -> tuple[list[str], str]:
    """
    Split a key line into its option list and the ``type blob comment`` rest.

    Commas inside a quoted ``command="..."`` value do not split options.
    """
    match = _KEY_START.search(line)
    if match is None:
        return [], line.strip()

    head = line[:match.start(1)].strip()
    rest = line[match.start(1):].strip()

    options: list[str] = []
    current = ""
    quoted = False
    for ch in head:
        if ch == '"':
            quoted = not quoted
        if ch == "," and not quoted:
            options.append(current)
            current = ""
        else:
            current += ch
    if current:
        options.append(current)
    return [o.strip() for o in options if o.strip()], rest


def tagged_lines(lines: list[str], identifier: str) -> list[int]:
    """Indexes of non-comment lines whose last field is ``identifier``."""
    found = []
    for i, line in enumerate(lines):
        fields = line.split()
        if fields and fields[-1] == identifier and not fields[0].startswith("#"):
            found.append(i)
    return found


def forced_command_line(public_key: str, command: str, identifier: str) -> str:
    """Build the restricted line for ``public_key`` (``type blob [comment]``)."""
    key_type, blob = public_key.split()[:2]
    options = [f'command="{command}"', *DENIED_CAPABILITIES, "restrict"]
    return f"{','.join(options)} {key_type} {blob} {identifier}"


def forced_command(line: str) -> Optional[str]:
    """The unquoted ``command="..."`` value of a key line, if any."""
    options, _ = split_options(line)
    for option in options:
        name, sep, value = option.partition("=")
        if name == "command" and sep:
            return value.strip('"')
    return None


def is_restricted(line: str, agent: str) -> bool:
    """True if ``line`` forces ``<agent> serve`` and denies side capabilities."""
    if forced_command(line) != f"{agent} serve":
        return False
    options, _ = split_options(line)
    names = {o.split("=", 1)[0] for o in options}
    return "restrict" in names or all(flag in names for flag in DENIED_CAPABILITIES)


def check_restriction(lines: list[str], identifier: str, agent: str) -> RestrictionStatus:
    """
    Classify the identifier's line against the agent path it must force.

    Raises:
        CredentialAmbiguous: if more than one line carries the identifier
    """
    found = tagged_lines(lines, identifier)
    if not found:
        return RestrictionStatus.MISSING
    if len(found) > 1:
        raise CredentialAmbiguous(identifier, len(found))
    if is_restricted(lines[found[0]], agent):
        return RestrictionStatus.OK
    return RestrictionStatus.UNRESTRICTED


def replace_restricted(lines: list[str], new_line: str, identifier: str) -> list[str]:
    """
    Drop the existing identifier line (at most one) and append ``new_line``.

    Raises:
        CredentialAmbiguous: if more than one line carries the identifier
    """
    found = tagged_lines(lines, identifier)
    if len(found) > 1:
        raise CredentialAmbiguous(identifier, len(found))
    kept = [line for i, line in enumerate(lines) if i not in found]
    return [*kept, new_line]


def remove_restricted(lines: list[str], identifier: str) -> list[str]:
    """
    Remove the identifier line for revocation.

    Raises:
        CredentialAmbiguous: unless exactly one line carries the identifier
    """
    found = tagged_lines(lines, identifier)
    if len(found) != 1:
        raise CredentialAmbiguous(identifier, len(found))
    return [line for i, line in enumerate(lines) if i != found[0]]


def join_lines(lines: list[str]) -> str:
    return "".join(f"{line}\n" for line in lines if line.strip())
