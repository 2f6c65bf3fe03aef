from dataclasses import dataclass
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, computed_field


class RemoteTarget(BaseModel):
    username: str = Field(..., description="SSH username on the managed host")
    hostname: str = Field(..., description="IP or DNS name of the managed host")
    port: int = Field(22, description="SSH port")

    @classmethod
    def parse(cls, value: str) -> "RemoteTarget":
        """Parse ``user@host`` or ``user@host:port``."""
        user, sep, rest = value.strip().partition("@")
        if not sep or not user or not rest:
            raise ValueError(f"Target '{value}' must be in user@host format")
        host, _, port = rest.partition(":")
        if port:
            return cls(username=user, hostname=host, port=int(port))
        return cls(username=user, hostname=host)

    def __str__(self) -> str:
        if self.port != 22:
            return f"{self.username}@{self.hostname}:{self.port}"
        return f"{self.username}@{self.hostname}"


class AliasEntry(BaseModel):
    name: str = Field(..., min_length=1, description="Short operator-typed host name")
    target: str = Field(..., description="user@host the alias points at")


class ItemKind(str, Enum):
    SERVICE = "service"
    DOCKER = "docker"


class MonitoredItem(BaseModel):
    kind: ItemKind
    name: str = Field(..., min_length=1)

    @classmethod
    def parse(cls, line: str) -> "MonitoredItem":
        """Bare names are legacy entries and count as services."""
        prefix, sep, rest = line.partition(":")
        if sep and prefix in (ItemKind.SERVICE.value, ItemKind.DOCKER.value):
            return cls(kind=ItemKind(prefix), name=rest)
        return cls(kind=ItemKind.SERVICE, name=line)

    def to_line(self) -> str:
        return f"{self.kind.value}:{self.name}"


@dataclass
class CommandResult:
    """Result of a local or remote command execution."""

    command: str
    stdout: str
    stderr: str
    exit_code: int
    success: bool
    error_message: Optional[str] = None


# =============================================================================
# Report
# =============================================================================

class UsageSummary(BaseModel):
    used_mb: int
    total_mb: int

    @computed_field
    @property
    def percent(self) -> float:
        if not self.total_mb:
            return 0.0
        return round(self.used_mb * 100 / self.total_mb, 2)

    def __str__(self) -> str:
        return f"{self.used_mb}/{self.total_mb} MB ({self.percent:.2f}%)"


class DiskUsage(BaseModel):
    source: str
    mount: str
    used: str
    size: str
    percent: str


class TemperatureReading(BaseModel):
    label: str
    temp: str


class BatteryInfo(BaseModel):
    status: str
    capacity_percentage: Optional[int] = None


class ProcessInfo(BaseModel):
    pid: int
    ppid: int
    cmd: str
    mem: float
    cpu: float


class ContainerInstance(BaseModel):
    id: str
    name: str
    image: str = ""
    status: str = "unknown"
    logs: list[str] = Field(default_factory=list)


class ContainerRuntimeSummary(BaseModel):
    version: str = "unknown"
    running: int = 0
    images: int = 0
    containers: list[ContainerInstance] = Field(default_factory=list)


class ItemDetail(BaseModel):
    kind: ItemKind = ItemKind.SERVICE
    name: str
    description: str = "unknown"
    status: str = "unknown"
    logs: list[str] = Field(default_factory=list)
    instances: list[ContainerInstance] = Field(default_factory=list)


class Report(BaseModel):
    """
    Point-in-time snapshot of one host.

    Optional sections are ``None`` when their source is unavailable and are
    left out of both renderings.
    """

    generated_at: str
    hostname: str
    kernel: str
    uptime: str
    load_average: str
    memory: Optional[UsageSummary] = None
    swap: Optional[UsageSummary] = None
    disk: list[DiskUsage] = Field(default_factory=list)
    temperatures: Optional[list[TemperatureReading]] = None
    battery: Optional[BatteryInfo] = None
    containers: Optional[ContainerRuntimeSummary] = None
    top_processes: list[ProcessInfo] = Field(default_factory=list)
    failed_services: list[ItemDetail] = Field(default_factory=list)
    journal_errors: list[str] = Field(default_factory=list)
    services: list[ItemDetail] = Field(default_factory=list)
    notice: Optional[str] = None


class InfoReport(BaseModel):
    """Vital subset plus a deep dive on one service or container."""

    generated_at: str
    hostname: str
    kernel: str
    uptime: str
    memory: Optional[UsageSummary] = None
    disk: list[DiskUsage] = Field(default_factory=list)
    item: Optional[ItemDetail] = None
    available_containers: Optional[list[str]] = None
    available_images: Optional[list[str]] = None
