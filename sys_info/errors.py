"""
Error taxonomy shared by the operator tools and the remote agent.

Structural failures (unresolved alias, ambiguous credential, missing
tools) surface as these exceptions and end the process with exit code 1.
Data-section failures are caught inside the collectors and never reach
the caller.
"""


class SysInfoError(Exception):
    """Base class for all sys_info errors."""

    exit_code = 1


class ConfigMissing(SysInfoError):
    """No Monitoring Config has been written yet."""


class ToolMissing(SysInfoError):
    """A required OS query tool is not on PATH."""

    def __init__(self, missing: list[str]):
        self.missing = list(missing)
        super().__init__(
            f"Missing required tools: {', '.join(self.missing)}. "
            f"Install them with your package manager and retry."
        )


class PartialDataUnavailable(SysInfoError):
    """An optional report section could not be collected."""

    def __init__(self, section: str, reason: str = ""):
        self.section = section
        self.reason = reason
        super().__init__(f"{section} unavailable{': ' + reason if reason else ''}")


class AliasNotFound(SysInfoError):
    """No alias matched exactly or within the fuzzy threshold."""

    def __init__(self, query: str, known: list[str]):
        self.query = query
        self.known = list(known)
        super().__init__(f"No matching host found for '{query}'")


class CredentialAmbiguous(SysInfoError):
    """Zero or several authorization lines carry the key identifier."""

    def __init__(self, identifier: str, count: int):
        self.identifier = identifier
        self.count = count
        super().__init__(
            f"Found {count} lines with identifier '{identifier}' in the "
            f"authorization store. Aborting to avoid unintended modification."
        )


class RestrictionMissing(SysInfoError):
    """The restricted key line is absent from the authorization store."""


class RestrictionWeak(SysInfoError):
    """The key line exists but lacks the forced command or deny flags."""


class UpdateFailed(SysInfoError):
    """Download, replacement or self-test of a new agent failed."""


class RequestRejected(SysInfoError):
    """A request line did not match any allowed request form."""
