"""
Local fact collection for the Report Agent.

Every query goes through a runner callable so tests can replay canned
command output. A failing source returns ``None`` or ``"unknown"`` and is
logged; only the required-tool check raises.
"""

import glob
import logging
import platform
import re
import shutil
import subprocess
from pathlib import Path
from typing import Callable, Optional

from .errors import PartialDataUnavailable, ToolMissing
from .models import (
    BatteryInfo,
    CommandResult,
    ContainerInstance,
    ContainerRuntimeSummary,
    DiskUsage,
    ItemDetail,
    ItemKind,
    ProcessInfo,
    TemperatureReading,
    UsageSummary,
)

logger = logging.getLogger(__name__)

REQUIRED_TOOLS = ("systemctl", "journalctl", "free", "df", "ps", "uptime", "hostname", "uname")

PSEUDO_FILESYSTEMS = ("tmpfs", "devtmpfs", "squashfs", "overlay")
PSEUDO_MOUNTS = re.compile(r"^/(proc|sys|run|dev|snap)(/|$)")

Runner = Callable[..., CommandResult]


def run_cmd(cmd: list[str], timeout: Optional[float] = None) -> CommandResult:
    """Run a command without a shell. Never raises."""
    command = " ".join(cmd)
    try:
        r = subprocess.run(cmd, capture_output=True, text=True, timeout=timeout, check=False)
        return CommandResult(
            command=command,
            stdout=r.stdout,
            stderr=r.stderr,
            exit_code=r.returncode,
            success=r.returncode == 0,
        )
    except FileNotFoundError:
        return CommandResult(command, "", "", 127, False, f"command not available: {cmd[0]}")
    except subprocess.TimeoutExpired:
        return CommandResult(command, "", "", -1, False, f"command timed out after {timeout}s")
    except OSError as e:
        return CommandResult(command, "", "", -1, False, f"command failed: {e}")


def _lines(text: str) -> list[str]:
    return [line for line in text.splitlines() if line.strip()]


class HostProbe:
    """Queries the local host through OS tools, /proc and /sys."""

    def __init__(
        self,
        runner: Runner = run_cmd,
        which: Callable[[str], Optional[str]] = shutil.which,
        root: Path = Path("/"),
        use_sudo_for_docker: bool = False,
        log_lines: int = 10,
    ):
        self.runner = runner
        self.which = which
        self.root = root
        self.use_sudo_for_docker = use_sudo_for_docker
        self.log_lines = log_lines
        self._docker_ok: Optional[bool] = None

    # -------------------------------------------------------------------------
    # Requirements
    # -------------------------------------------------------------------------

    def missing_tools(self) -> list[str]:
        return [tool for tool in REQUIRED_TOOLS if self.which(tool) is None]

    def check_requirements(self) -> None:
        """
        Raises:
            ToolMissing: if any required tool is not on PATH
        """
        missing = self.missing_tools()
        if missing:
            raise ToolMissing(missing)
        if self.which("sensors") is None:
            logger.info("'sensors' not found; temperatures are left out")
        if self.battery_path() is None:
            logger.info("No battery detected")

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def _stdout(self, cmd: list[str]) -> str:
        result = self.runner(cmd)
        if not result.success and not result.stdout:
            logger.debug("%s failed: %s", result.command, result.error_message or result.stderr.strip())
        return result.stdout

    def _value(self, cmd: list[str]) -> str:
        return self._stdout(cmd).strip() or "unknown"

    def _read(self, relative: str) -> Optional[str]:
        try:
            return (self.root / relative).read_text(encoding="utf-8").strip()
        except OSError:
            return None

    def _docker(self, *args: str) -> list[str]:
        prefix = ["sudo", "-n"] if self.use_sudo_for_docker else []
        return [*prefix, "docker", *args]

    # -------------------------------------------------------------------------
    # Vitals
    # -------------------------------------------------------------------------

    def hostname(self) -> str:
        return self._stdout(["hostname"]).strip() or platform.node() or "unknown"

    def kernel(self) -> str:
        return self._stdout(["uname", "-r"]).strip() or platform.release() or "unknown"

    def uptime(self) -> str:
        return self._value(["uptime", "-p"])

    def load_average(self) -> str:
        return self._read("proc/loadavg") or "unknown"

    def memory(self) -> tuple[Optional[UsageSummary], Optional[UsageSummary]]:
        """(memory, swap) in MB from ``free -m``."""
        mem = swap = None
        for line in _lines(self._stdout(["free", "-m"])):
            parts = line.split()
            try:
                if parts[0] == "Mem:":
                    mem = UsageSummary(total_mb=int(parts[1]), used_mb=int(parts[2]))
                elif parts[0] == "Swap:":
                    swap = UsageSummary(total_mb=int(parts[1]), used_mb=int(parts[2]))
            except (IndexError, ValueError):
                logger.debug("Unparseable free line: %r", line)
        return mem, swap

    def disk(self) -> list[DiskUsage]:
        cmd = ["df", "-h", "--output=source,target,used,size,pcent"]
        for fstype in PSEUDO_FILESYSTEMS:
            cmd += ["-x", fstype]

        disks = []
        for line in _lines(self._stdout(cmd))[1:]:
            parts = line.split()
            if len(parts) < 5:
                continue
            source, mount, used, size, percent = parts[0], " ".join(parts[1:-3]), *parts[-3:]
            if PSEUDO_MOUNTS.match(mount):
                continue
            disks.append(DiskUsage(source=source, mount=mount, used=used, size=size, percent=percent))
        return disks

    # -------------------------------------------------------------------------
    # Optional sections
    # -------------------------------------------------------------------------

    def temperatures(self) -> Optional[list[TemperatureReading]]:
        """Readings from lm-sensors, or None if ``sensors`` is unavailable."""
        if self.which("sensors") is None:
            return None
        result = self.runner(["sensors"])
        if not result.success and not result.stdout:
            logger.warning("%s", PartialDataUnavailable("temperatures", result.stderr.strip()))
            return None

        readings = []
        for line in result.stdout.splitlines():
            label, sep, rest = line.partition(":")
            if not sep or "°C" not in rest:
                continue
            temp = rest.split()[0]
            readings.append(TemperatureReading(label=label.strip(), temp=temp))
        return readings

    def battery_path(self) -> Optional[Path]:
        matches = sorted(glob.glob(str(self.root / "sys/class/power_supply/BAT*")))
        return Path(matches[0]) if matches else None

    def battery(self) -> Optional[BatteryInfo]:
        path = self.battery_path()
        if path is None:
            return None
        relative = path.relative_to(self.root)
        status = self._read(f"{relative}/status") or "unknown"
        capacity = self._read(f"{relative}/capacity")
        try:
            percent = int(capacity) if capacity is not None else None
        except ValueError:
            percent = None
        return BatteryInfo(status=status, capacity_percentage=percent)

    def enable_docker_sudo(self) -> None:
        self.use_sudo_for_docker = True
        self._docker_ok = None

    def docker_available(self) -> bool:
        if self._docker_ok is None:
            if self.which("docker") is None:
                self._docker_ok = False
            else:
                self._docker_ok = self.runner(self._docker("info", "--format", "{{.ServerVersion}}")).success
                if not self._docker_ok:
                    logger.info("docker present but the daemon is not reachable")
        return self._docker_ok

    def containers(self, *filters: str, all_states: bool = False) -> list[ContainerInstance]:
        args = ["ps", "--no-trunc", "--format", "{{.ID}}\t{{.Names}}\t{{.Image}}\t{{.Status}}"]
        if all_states:
            args.insert(1, "-a")
        for f in filters:
            args += ["--filter", f]

        instances = []
        for line in _lines(self._stdout(self._docker(*args))):
            parts = line.split("\t")
            if len(parts) < 4:
                continue
            instances.append(ContainerInstance(id=parts[0][:12], name=parts[1], image=parts[2], status=parts[3]))
        return instances

    def images(self) -> list[str]:
        return _lines(self._stdout(self._docker("images", "--format", "{{.Repository}}:{{.Tag}}")))

    def container_summary(self) -> Optional[ContainerRuntimeSummary]:
        """Runtime version and running containers, or None without docker."""
        if not self.docker_available():
            return None
        running = self.containers()
        return ContainerRuntimeSummary(
            version=self._value(self._docker("info", "--format", "{{.ServerVersion}}")),
            running=len(running),
            images=len(self.images()),
            containers=running,
        )

    # -------------------------------------------------------------------------
    # Processes, units, logs
    # -------------------------------------------------------------------------

    def top_processes(self, count: int = 10) -> list[ProcessInfo]:
        out = self._stdout(["ps", "-eo", "pid,ppid,%mem,%cpu,args", "--sort=-%cpu", "--no-headers"])
        processes = []
        for line in _lines(out):
            parts = line.split(None, 4)
            if len(parts) < 5:
                continue
            try:
                processes.append(ProcessInfo(
                    pid=int(parts[0]), ppid=int(parts[1]),
                    mem=float(parts[2]), cpu=float(parts[3]), cmd=parts[4],
                ))
            except ValueError:
                continue
            if len(processes) >= count:
                break
        return processes

    def failed_units(self) -> list[str]:
        out = self._stdout(["systemctl", "--failed", "--no-pager", "--plain", "--no-legend"])
        units = []
        for line in _lines(out):
            unit = next((tok for tok in line.split() if tok.endswith(".service")), None)
            if unit:
                units.append(unit)
        return units

    def journal_errors(self, lines: int = 50) -> list[str]:
        return _lines(self._stdout(["journalctl", "-p", "3", "-xb", "--no-pager", "-n", str(lines)]))

    def unit_logs(self, name: str) -> list[str]:
        return _lines(self._stdout(["journalctl", "-u", name, "-n", str(self.log_lines), "--no-pager"]))

    def list_services(self) -> list[str]:
        out = self._stdout(["systemctl", "list-unit-files", "--type=service", "--no-legend", "--no-pager"])
        return sorted({line.split()[0] for line in _lines(out) if line.split()[0].endswith(".service")})

    # -------------------------------------------------------------------------
    # Item details
    # -------------------------------------------------------------------------

    def service_detail(self, name: str) -> ItemDetail:
        return ItemDetail(
            kind=ItemKind.SERVICE,
            name=name,
            status=self._value(["systemctl", "is-active", name]),
            description=self._value(["systemctl", "show", "-p", "Description", "--value", name]),
            logs=self.unit_logs(name),
        )

    def container_logs(self, container: str) -> list[str]:
        result = self.runner(self._docker("logs", "--tail", str(self.log_lines), container))
        return _lines(result.stdout + result.stderr)

    def image_detail(self, image: str) -> ItemDetail:
        """Status of an image plus every running container created from it."""
        if not self.docker_available():
            return ItemDetail(kind=ItemKind.DOCKER, name=image, status="container runtime unavailable")

        instances = self.containers(f"ancestor={image}")
        for instance in instances:
            instance.logs = self.container_logs(instance.id)

        inspected = self.runner(self._docker("image", "inspect", "--format", "{{.Id}} created {{.Created}}", image))
        description = inspected.stdout.strip() if inspected.success else "image not found"
        status = f"running ({len(instances)} instances)" if instances else "not running"
        return ItemDetail(
            kind=ItemKind.DOCKER,
            name=image,
            status=status,
            description=description,
            instances=instances,
        )

    def container_detail(self, name: str) -> Optional[ItemDetail]:
        """Detail for a container by name or id, or None if there is none."""
        if not self.docker_available():
            return None
        inspected = self.runner(self._docker(
            "inspect", "--type", "container", "--format", "{{.State.Status}}\t{{.Config.Image}}\t{{.Id}}", name,
        ))
        if not inspected.success:
            return None
        parts = inspected.stdout.strip().split("\t")
        status = parts[0] if parts else "unknown"
        image = parts[1] if len(parts) > 1 else ""
        container_id = parts[2][:12] if len(parts) > 2 else name
        return ItemDetail(
            kind=ItemKind.DOCKER,
            name=name,
            status=status,
            description=f"container {container_id} from image {image}",
            logs=self.container_logs(name),
        )

    def image_known(self, image: str) -> bool:
        if not self.docker_available():
            return False
        return self.runner(self._docker("image", "inspect", image)).success
