"""
Interactive selection of monitored services and container images.

Prompts go through ``ask``/``say`` callables (``input``/``print`` by
default). The result is saved as a complete replacement of the Monitoring
Config.
"""

from typing import Callable

from .collectors import HostProbe
from .config import AgentSettings
from . import monitoring
from .errors import SysInfoError
from .models import ItemKind, MonitoredItem
from .monitoring import MonitoringConfig


def parse_selection(text: str, count: int) -> list[int]:
    """
    Parse ``1,3,5-7`` into zero-based indexes in order of first mention.

    Raises:
        ValueError: on malformed input or numbers outside ``1..count``
    """
    indexes: list[int] = []
    for part in text.replace(" ", "").split(","):
        if not part:
            continue
        start, sep, end = part.partition("-")
        first = int(start)
        last = int(end) if sep else first
        if first < 1 or last > count or first > last:
            raise ValueError(f"'{part}' is outside 1-{count}")
        for n in range(first, last + 1):
            if n - 1 not in indexes:
                indexes.append(n - 1)
    return indexes


def _yes(answer: str) -> bool:
    return answer.strip().lower() in ("y", "yes")


def run_setup(
    probe: HostProbe,
    settings: AgentSettings,
    ask: Callable[[str], str] = input,
    say: Callable[[str], object] = print,
) -> MonitoringConfig:
    """
    Ask which items to monitor and save them.

    Raises:
        SysInfoError: if nothing is selected or the selection is malformed
    """
    existing = monitoring.load(settings.config_file)
    if existing is not None:
        if not _yes(ask(f"{settings.config_file} already exists. Update config? [y/N]: ")):
            say("Keeping existing config.")
            return existing

    include_battery = False
    if probe.battery_path() is not None:
        include_battery = _yes(ask("Battery detected. Include battery info in output? [y/N]: "))

    use_sudo = False
    if probe.which("docker") is not None and not probe.docker_available():
        if _yes(ask("Docker is installed but not reachable. Use sudo for docker? [y/N]: ")):
            probe.enable_docker_sudo()
            use_sudo = probe.docker_available()
            if not use_sudo:
                say("Docker is still unreachable with sudo; skipping container images.")

    options = [MonitoredItem(kind=ItemKind.SERVICE, name=name) for name in probe.list_services()]
    if probe.docker_available():
        options += [MonitoredItem(kind=ItemKind.DOCKER, name=image) for image in probe.images()]

    if not options:
        raise SysInfoError("No services or container images found to monitor.")

    say("Select items to monitor:")
    for n, item in enumerate(options, 1):
        say(f"  {n:>3}) {item.to_line()}")

    answer = ask("Numbers to include (e.g. 1,3,5-7): ")
    try:
        chosen = parse_selection(answer, len(options))
    except ValueError as e:
        raise SysInfoError(f"Invalid selection: {e}") from e

    if not chosen:
        raise SysInfoError("No services selected.")

    config = MonitoringConfig(
        items=[options[i] for i in chosen],
        include_battery=include_battery,
        use_sudo_for_container_runtime=use_sudo,
    )
    saved = monitoring.save(config, settings.config_file)
    say(f"Saved selection to {settings.config_file}")
    return saved
