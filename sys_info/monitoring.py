"""
Monitoring Config: which services and containers the report details.

On-disk format (``~/.config/sys_info.conf``)::

    #version=2
    #last_updated=2026-10-18T09:12:44+00:00
    #include_battery=true
    #use_sudo_for_container_runtime=false
    service:nginx.service
    docker:redis:latest

Bare item lines from older configs are read as services. The file is only
ever replaced as a whole.
"""

import logging
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field, ValidationError

from .errors import PartialDataUnavailable
from .models import MonitoredItem

logger = logging.getLogger(__name__)

CONFIG_VERSION = "2"

_TRUE = {"1", "true", "yes", "on"}


class MonitoringConfig(BaseModel):
    items: list[MonitoredItem] = Field(default_factory=list)
    include_battery: bool = False
    use_sudo_for_container_runtime: bool = False
    version: str = CONFIG_VERSION
    last_updated: Optional[str] = None

    @classmethod
    def parse(cls, text: str) -> "MonitoringConfig":
        meta: dict[str, str] = {}
        items: list[MonitoredItem] = []
        seen: set[tuple[str, str]] = set()

        for raw in text.splitlines():
            line = raw.strip()
            if not line:
                continue
            if line.startswith("#"):
                key, sep, value = line[1:].partition("=")
                if sep:
                    meta[key.strip()] = value.strip()
                continue
            try:
                item = MonitoredItem.parse(line)
            except ValidationError as e:
                reason = e.errors()[0]["msg"]
                logger.warning("%s", PartialDataUnavailable(f"Monitored item '{line}'", reason))
                continue
            key = (item.kind.value, item.name)
            if key not in seen:
                seen.add(key)
                items.append(item)

        return cls(
            items=items,
            include_battery=meta.get("include_battery", "false").lower() in _TRUE,
            use_sudo_for_container_runtime=(
                meta.get("use_sudo_for_container_runtime", "false").lower() in _TRUE
            ),
            version=meta.get("version", "1"),
            last_updated=meta.get("last_updated"),
        )

    def dump(self) -> str:
        lines = [
            f"#version={self.version}",
            f"#last_updated={self.last_updated or ''}",
            f"#include_battery={str(self.include_battery).lower()}",
            f"#use_sudo_for_container_runtime={str(self.use_sudo_for_container_runtime).lower()}",
        ]
        lines.extend(item.to_line() for item in self.items)
        return "\n".join(lines) + "\n"


def load(path: Path) -> Optional[MonitoringConfig]:
    """Read the config, or return None if setup has not been run yet."""
    if not path.is_file():
        return None
    return MonitoringConfig.parse(path.read_text(encoding="utf-8"))


def save(config: MonitoringConfig, path: Path) -> MonitoringConfig:
    """
    Replace the persisted config with ``config``.

    The timestamp and schema version are refreshed; the returned copy is
    what was written.
    """
    stamped = config.model_copy(update={
        "version": CONFIG_VERSION,
        "last_updated": datetime.now(timezone.utc).isoformat(timespec="seconds"),
    })
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_name(path.name + ".tmp")
    tmp.write_text(stamped.dump(), encoding="utf-8")
    os.replace(tmp, path)
    logger.info("Saved %d monitored items to %s", len(stamped.items), path)
    return stamped
