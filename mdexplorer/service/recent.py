"""Recent files list: most-recent-first, capped, stored in recent_files.json."""

from __future__ import annotations

import json
import logging
import os
import threading
import time
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any

logger = logging.getLogger("mdexplorer.recent")

MAX_RECENT_FILES = 20


@dataclass
class RecentFile:
    path: str
    name: str
    timestamp: int
    action: str  # "open" | "save"


class RecentFiles:

    def __init__(self, path: str | Path, limit: int = MAX_RECENT_FILES) -> None:
        self.path = Path(path).expanduser()
        self.limit = limit
        self._lock = threading.Lock()

    def _read(self) -> list[RecentFile]:
        if not self.path.exists():
            return []
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Ignoring unreadable recent files list {self.path}: {e}")
            return []
        if not isinstance(data, list):
            return []

        entries = []
        for item in data:
            if not isinstance(item, dict) or "path" not in item:
                continue
            entries.append(RecentFile(
                path=str(item["path"]),
                name=str(item.get("name") or Path(item["path"]).name),
                timestamp=int(item.get("timestamp", 0)),
                action=str(item.get("action", "open")),
            ))
        return entries

    def _write(self, entries: list[RecentFile]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump([asdict(e) for e in entries], f, indent=2)
        os.replace(tmp_path, self.path)

    def entries(self) -> list[RecentFile]:
        """Return entries whose file still exists, pruning the stored list if needed."""
        with self._lock:
            entries = self._read()
            valid = [e for e in entries if Path(e.path).exists()]
            if len(valid) != len(entries):
                logger.info(f"Pruned {len(entries) - len(valid)} missing recent file(s)")
                self._write(valid)
            return valid

    def add(self, file_path: str | Path, action: str = "open") -> dict[str, Any]:
        entry = RecentFile(
            path=str(file_path),
            name=Path(file_path).name,
            timestamp=int(time.time() * 1000),
            action=action,
        )
        try:
            with self._lock:
                entries = [e for e in self._read() if e.path != entry.path]
                self._write([entry, *entries][: self.limit])
        except OSError as e:
            logger.error(f"Failed to record recent file: {e}")
            return {"success": False, "error": str(e)}
        return {"success": True}

    def remove(self, file_path: str | Path) -> dict[str, Any]:
        """Drop ``file_path`` and, for deleted folders, everything below it."""
        target = str(file_path)
        prefix = target.rstrip(os.sep) + os.sep
        try:
            with self._lock:
                entries = self._read()
                kept = [e for e in entries if e.path != target and not e.path.startswith(prefix)]
                if len(kept) != len(entries):
                    self._write(kept)
        except OSError as e:
            logger.error(f"Failed to update recent files: {e}")
            return {"success": False, "error": str(e)}
        return {"success": True}

    def clear(self) -> dict[str, Any]:
        try:
            with self._lock:
                self._write([])
        except OSError as e:
            return {"success": False, "error": str(e)}
        return {"success": True}
