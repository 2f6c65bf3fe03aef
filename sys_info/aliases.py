"""
Alias Registry: short host names mapped to ``user@host`` targets.

File format is one entry per line, ``<name> <user@host>``. Blank lines
and lines starting with ``#`` are ignored.

Usage:
    registry = AliasRegistry.load(Path("/share/sys_info/etc/hosts"))
    target = registry.resolve("web1")
"""

import logging
import os
import re
from pathlib import Path
from typing import Iterable, Optional

from .distance import distance
from .models import AliasEntry, RemoteTarget

logger = logging.getLogger(__name__)

FUZZY_THRESHOLD = 3

_NOISE = re.compile(r"[\W_]+", re.UNICODE)


def normalize(name: str) -> str:
    """Lowercase and strip punctuation and whitespace."""
    return _NOISE.sub("", name).lower()


class AliasRegistry:
    """Ordered name -> target table with exact and fuzzy lookup."""

    def __init__(self, entries: Optional[Iterable[AliasEntry]] = None, path: Optional[Path] = None):
        self.path = path
        self._entries: list[AliasEntry] = list(entries or [])

    @classmethod
    def load(cls, path: Path) -> "AliasRegistry":
        """Read a registry file. A missing file is an empty registry."""
        entries: list[AliasEntry] = []
        if path.is_file():
            for lineno, raw in enumerate(path.read_text(encoding="utf-8").splitlines(), 1):
                line = raw.strip()
                if not line or line.startswith("#"):
                    continue
                parts = line.split()
                if len(parts) < 2:
                    logger.warning("%s:%d: ignoring malformed alias line", path, lineno)
                    continue
                try:
                    RemoteTarget.parse(parts[1])
                except ValueError as e:
                    logger.warning("%s:%d: ignoring alias '%s': %s", path, lineno, parts[0], e)
                    continue
                entries.append(AliasEntry(name=parts[0], target=parts[1]))
        return cls(entries, path=path)

    def save(self, path: Optional[Path] = None) -> None:
        """Rewrite the whole registry file."""
        path = path or self.path
        if path is None:
            raise ValueError("No registry path to save to")
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_name(path.name + ".tmp")
        tmp.write_text("".join(f"{e.name} {e.target}\n" for e in self._entries), encoding="utf-8")
        os.replace(tmp, path)

    def __len__(self) -> int:
        return len(self._entries)

    def upsert(self, name: str, target: str) -> AliasEntry:
        """
        Insert ``name -> target``.

        Existing entries with the same name or the same target are dropped
        first, so both columns stay unique and the newest write wins.
        """
        entry = AliasEntry(name=name, target=target)
        self._entries = [
            e for e in self._entries
            if e.name != entry.name and e.target != entry.target
        ]
        self._entries.append(entry)
        return entry

    def find(self, query: str) -> Optional[AliasEntry]:
        """
        Look up an entry by exact normalized name, else by edit distance.

        Ties on the smallest distance go to the entry listed first.
        """
        wanted = normalize(query)

        for entry in self._entries:
            if normalize(entry.name) == wanted:
                return entry

        best: Optional[AliasEntry] = None
        best_distance = None
        for entry in self._entries:
            d = distance(wanted, normalize(entry.name))
            if best_distance is None or d < best_distance:
                best, best_distance = entry, d

        if best is not None and best_distance <= FUZZY_THRESHOLD:
            logger.info("Fuzzy matched '%s' to '%s' (distance %d)", query, best.name, best_distance)
            return best
        return None

    def resolve(self, query: str) -> Optional[str]:
        """Return the target for ``query``, or None when nothing is close enough."""
        entry = self.find(query)
        return entry.target if entry else None

    def list(self) -> "list[AliasEntry]":
        return self._entries.copy()
