"""
Request envelope carried over the forced command's standard input.

The restricted key's forced command ignores whatever command the client
asked for. The real request travels as one line on stdin and is parsed
here against a fixed allow-list:

    run
    json
    setup
    update-script
    verify-restrictions
    --version
    info <service|docker> <name>
"""

from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from .errors import RequestRejected
from .models import ItemKind

NAME_PATTERN = r"^[A-Za-z0-9@._:/+-]+$"
MAX_REQUEST_LENGTH = 512


class _Request(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)


class RunRequest(_Request):
    mode: Literal["run"] = "run"
    structured: bool = False

    def to_line(self) -> str:
        return "json" if self.structured else "run"


class SetupRequest(_Request):
    mode: Literal["setup"] = "setup"

    def to_line(self) -> str:
        return "setup"


class InfoRequest(_Request):
    mode: Literal["info"] = "info"
    kind: ItemKind
    name: str = Field(..., min_length=1, max_length=200, pattern=NAME_PATTERN)

    def to_line(self) -> str:
        return f"info {self.kind.value} {self.name}"


class UpdateScriptRequest(_Request):
    mode: Literal["update-script"] = "update-script"

    def to_line(self) -> str:
        return "update-script"


class VerifyRequest(_Request):
    mode: Literal["verify-restrictions"] = "verify-restrictions"

    def to_line(self) -> str:
        return "verify-restrictions"


class VersionRequest(_Request):
    mode: Literal["--version"] = "--version"

    def to_line(self) -> str:
        return "--version"


Request = Annotated[
    Union[RunRequest, SetupRequest, InfoRequest, UpdateScriptRequest, VerifyRequest, VersionRequest],
    Field(discriminator="mode"),
]

_request_adapter: TypeAdapter = TypeAdapter(Request)


def parse_request(line: str) -> Request:
    """
    Parse one request line.

    Raises:
        RequestRejected: if the line is not one of the allowed forms
    """
    if len(line) > MAX_REQUEST_LENGTH:
        raise RequestRejected("Request line too long")

    parts = line.split()
    if not parts:
        raise RequestRejected("Empty request")

    head, args = parts[0], parts[1:]
    if head == "json":
        payload: dict = {"mode": "run", "structured": True}
    elif head == "info":
        if len(args) != 2:
            raise RequestRejected("Usage: info <service|docker> <name>")
        payload = {"mode": "info", "kind": args[0], "name": args[1]}
    else:
        payload = {"mode": head}
        if args:
            raise RequestRejected(f"'{head}' takes no arguments")

    try:
        return _request_adapter.validate_python(payload)
    except ValidationError as e:
        allowed = "run, json, setup, update-script, verify-restrictions, --version, info"
        raise RequestRejected(f"Request '{line.strip()}' rejected. Allowed: {allowed}") from e
