"""
Report assembly and rendering.

``build_report`` and ``build_info`` collect facts into pydantic models.
``render_text`` / ``render_info_text`` and ``render_json`` are two views of
the same model, so every value in the text output also appears in the
JSON output.
"""

import logging
from datetime import datetime, timezone
from typing import Callable, Optional, TypeVar

from pydantic import BaseModel

from .collectors import HostProbe
from .config import AgentSettings
from .errors import PartialDataUnavailable
from .models import InfoReport, ItemDetail, ItemKind, Report, UsageSummary
from .monitoring import MonitoringConfig

logger = logging.getLogger(__name__)

T = TypeVar("T")

RULE = "-" * 80
NO_CONFIG_NOTICE = "No services selected. Run 'sys_info setup' first."


def _section(name: str, collect: Callable[[], T], default: T) -> T:
    """Collect one section; any failure degrades to ``default``."""
    try:
        return collect()
    except Exception as e:
        logger.warning("%s", PartialDataUnavailable(name, str(e)))
        return default


def _now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


def item_detail(probe: HostProbe, kind: ItemKind, name: str) -> ItemDetail:
    if kind == ItemKind.DOCKER:
        return probe.image_detail(name)
    return probe.service_detail(name)


def build_report(
    probe: HostProbe,
    config: Optional[MonitoringConfig],
    settings: AgentSettings,
) -> Report:
    """
    Assemble the full report in one pass.

    ``config`` is None when setup has not been run: the report is still
    produced, with a notice instead of monitored items.
    """
    memory, swap = _section("memory", probe.memory, (None, None))

    include_battery = config is None or config.include_battery
    battery = _section("battery", probe.battery, None) if include_battery else None

    failed = []
    for unit in _section("failed units", probe.failed_units, []):
        failed.append(_section(f"unit {unit}", lambda u=unit: probe.service_detail(u), ItemDetail(name=unit)))

    services = []
    if config is not None:
        for item in config.items:
            services.append(_section(
                f"{item.kind.value} {item.name}",
                lambda i=item: item_detail(probe, i.kind, i.name),
                ItemDetail(kind=item.kind, name=item.name),
            ))

    return Report(
        generated_at=_now(),
        hostname=_section("hostname", probe.hostname, "unknown"),
        kernel=_section("kernel", probe.kernel, "unknown"),
        uptime=_section("uptime", probe.uptime, "unknown"),
        load_average=_section("load average", probe.load_average, "unknown"),
        memory=memory,
        swap=swap,
        disk=_section("disk", probe.disk, []),
        temperatures=_section("temperatures", probe.temperatures, None),
        battery=battery,
        containers=_section("containers", probe.container_summary, None),
        top_processes=_section("processes", lambda: probe.top_processes(settings.top_processes), []),
        failed_services=failed,
        journal_errors=_section("journal", lambda: probe.journal_errors(settings.journal_error_lines), []),
        services=services,
        notice=NO_CONFIG_NOTICE if config is None else None,
    )


def build_info(probe: HostProbe, kind: ItemKind, name: str) -> InfoReport:
    """
    Vital subset plus a deep dive on one service or container.

    A docker name matching neither a container nor an image falls back to
    listing what is available.
    """
    memory, _ = _section("memory", probe.memory, (None, None))
    info = InfoReport(
        generated_at=_now(),
        hostname=_section("hostname", probe.hostname, "unknown"),
        kernel=_section("kernel", probe.kernel, "unknown"),
        uptime=_section("uptime", probe.uptime, "unknown"),
        memory=memory,
        disk=_section("disk", probe.disk, []),
    )

    if kind == ItemKind.SERVICE:
        info.item = _section(f"service {name}", lambda: probe.service_detail(name), ItemDetail(name=name))
        return info

    container = _section(f"container {name}", lambda: probe.container_detail(name), None)
    if container is not None:
        info.item = container
    elif _section(f"image {name}", lambda: probe.image_known(name), False):
        info.item = _section(
            f"image {name}", lambda: probe.image_detail(name), ItemDetail(kind=ItemKind.DOCKER, name=name)
        )
    else:
        info.available_containers = _section(
            "containers", lambda: [c.name for c in probe.containers(all_states=True)], []
        )
        info.available_images = _section("images", probe.images, [])
    return info


# =============================================================================
# Rendering
# =============================================================================

def render_json(model: BaseModel) -> str:
    return model.model_dump_json(indent=2, exclude_none=True) + "\n"


def _field(label: str, value: object) -> str:
    return f"{label + ':':<16}{value}"


def _usage(value: Optional[UsageSummary]) -> str:
    return str(value) if value is not None else "unknown"


def _indent(lines: list[str], prefix: str = "  ") -> list[str]:
    return [prefix + line for line in lines]


def _render_item(item: ItemDetail) -> list[str]:
    label = "Service" if item.kind == ItemKind.SERVICE else "Container"
    out = [
        RULE,
        _field(label, item.name),
        _field("Status", item.status),
        _field("Description", item.description),
    ]
    if item.logs or item.kind == ItemKind.SERVICE:
        out.append("Recent Logs:")
        out.extend(_indent(item.logs) if item.logs else ["  (No logs found)"])
    for instance in item.instances:
        out.append(f"  Instance {instance.name} ({instance.id}): {instance.status}")
        out.extend(_indent(instance.logs, "    ") if instance.logs else ["    (No logs found)"])
    out.append("")
    return out


def _render_disk(disks) -> list[str]:
    rows = [("Source", "Mounted on", "Used", "Size", "Use%")]
    rows += [(d.source, d.mount, d.used, d.size, d.percent) for d in disks]
    widths = [max(len(row[i]) for row in rows) for i in range(5)]
    return ["  " + "  ".join(cell.ljust(w) for cell, w in zip(row, widths)).rstrip() for row in rows]


def render_text(report: Report) -> str:
    out = [
        "============== SYSTEM INFORMATION ==============",
        "",
        _field("Hostname", report.hostname),
        _field("Kernel", report.kernel),
        _field("Uptime", report.uptime),
        _field("Load Avg", report.load_average),
        _field("Memory", _usage(report.memory)),
        _field("Swap", _usage(report.swap)),
        "Disk usage:",
        *_render_disk(report.disk),
        "",
    ]

    if report.temperatures is not None:
        out += ["Temperatures:", RULE]
        out += [f"  {t.label}: {t.temp}" for t in report.temperatures]
        out.append("")

    if report.battery is not None:
        capacity = report.battery.capacity_percentage
        out += [
            "Battery:",
            RULE,
            f"  Status:     {report.battery.status}",
            f"  Capacity:   {capacity if capacity is not None else 'unknown'}%",
            "",
        ]

    if report.containers is not None:
        out += [
            "Containers:",
            RULE,
            f"  Runtime:    docker {report.containers.version}",
            f"  Running:    {report.containers.running}",
            f"  Images:     {report.containers.images}",
        ]
        out += [f"  {c.name} ({c.image}): {c.status}" for c in report.containers.containers]
        out.append("")

    out += ["Top Processes:", RULE, f"  {'PID':>7} {'PPID':>7} {'%MEM':>5} {'%CPU':>5} CMD"]
    out += [f"  {p.pid:>7} {p.ppid:>7} {p.mem:>5.1f} {p.cpu:>5.1f} {p.cmd}" for p in report.top_processes]
    out.append("")

    out += ["Failed Services and Recent Logs:"]
    if report.failed_services:
        for item in report.failed_services:
            out += _render_item(item)
    else:
        out += ["  None", ""]

    out += ["Recent Journal Errors (Level 3 - ERR):", RULE]
    out += report.journal_errors or ["  None"]
    out.append("")

    if report.notice:
        out += [report.notice, ""]
    else:
        out += ["============== MONITORED ITEMS ==============", ""]
        for item in report.services:
            out += _render_item(item)

    return "\n".join(out) + "\n"


def render_info_text(info: InfoReport) -> str:
    out = [
        _field("Hostname", info.hostname),
        _field("Kernel", info.kernel),
        _field("Uptime", info.uptime),
        _field("Memory", _usage(info.memory)),
        "Disk usage:",
        *_render_disk(info.disk),
        "",
    ]
    if info.item is not None:
        out += _render_item(info.item)
    else:
        out += ["No matching container or image found.", "", "Available containers:"]
        out += _indent(info.available_containers or ["(none)"])
        out += ["Available images:"]
        out += _indent(info.available_images or ["(none)"])
    return "\n".join(out) + "\n"
