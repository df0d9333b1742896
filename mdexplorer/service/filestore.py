"""Sandboxed file operations on the configured root directory.

Every public method validates each path argument against the sandbox root
before touching the disk and returns a structured result dict:

    {"success": True, "data": ...}
    {"success": False, "error": "...", "code": "..."}

Nothing raises across this boundary; callers (tools, HTTP handlers) only
inspect ``success``.
"""

from __future__ import annotations

import functools
import logging
import os
import shutil
from pathlib import Path
from typing import Any, Callable

import send2trash

from . import sandbox
from .errors import (
    AccessDenied,
    AlreadyExists,
    FileIOError,
    MDExplorerError,
    NotAFile,
    NotFound,
    ValidationError,
    from_os_error,
)
from .recent import RecentFiles
from .settings import Settings, SettingsStore

logger = logging.getLogger("mdexplorer.filestore")

MARKDOWN_EXTENSIONS = (".md", ".mdx", ".markdown")


def is_markdown_file(name: str) -> bool:
    return Path(name).suffix.lower() in MARKDOWN_EXTENSIONS


def file_node(path: Path, is_directory: bool, children: list[dict] | None = None) -> dict[str, Any]:
    node: dict[str, Any] = {
        "name": path.name,
        "path": str(path),
        "type": "directory" if is_directory else "file",
    }
    if is_directory:
        if children is not None:
            node["children"] = children
    else:
        node["extension"] = path.suffix.lower()
    return node


def sort_nodes(nodes: list[dict[str, Any]]) -> list[dict[str, Any]]:
    """Directories first, then files, both alphabetical (case-insensitive)."""
    return sorted(nodes, key=lambda n: (n["type"] != "directory", n["name"].lower(), n["name"]))


def build_tree(directory: Path, root: Path, settings: Settings) -> list[dict[str, Any]]:
    nodes = []
    with os.scandir(directory) as it:
        for entry in it:
            is_dir = entry.is_dir()
            if settings.is_excluded(entry.name, is_dir):
                continue
            entry_path = Path(entry.path)
            # skip symlinks that point outside the sandbox
            if entry.is_symlink() and not sandbox.is_within(entry_path, root):
                continue
            if is_dir:
                # symlinked folders are listed but not followed (cycles)
                children = [] if entry.is_symlink() else build_tree(entry_path, root, settings)
                nodes.append(file_node(entry_path, True, children))
            else:
                nodes.append(file_node(entry_path, False))
    return sort_nodes(nodes)


def walk_markdown_files(directory: Path, root: Path, settings: Settings, pattern: str | None = None) -> list[Path]:
    """Recursively collect ``.md`` files, optionally filtered by a filename substring."""
    results: list[Path] = []
    needle = pattern.lower() if pattern else None
    try:
        entries = sorted(os.scandir(directory), key=lambda e: e.name.lower())
    except OSError as e:
        logger.warning(f"Skipping unreadable directory {directory}: {e}")
        return results

    for entry in entries:
        entry_path = Path(entry.path)
        if entry.is_symlink() and not sandbox.is_within(entry_path, root):
            continue
        if entry.is_dir():
            if settings.is_excluded(entry.name, True) or entry.is_symlink():
                continue
            results.extend(walk_markdown_files(entry_path, root, settings, pattern))
        elif entry.is_file() and entry.name.lower().endswith(".md"):
            if needle is None or needle in entry.name.lower():
                results.append(entry_path)
    return results


def search_lines(file_path: Path, query: str) -> list[dict[str, Any]]:
    """Case-insensitive line-level substring matches, 1-based line numbers."""
    try:
        content = file_path.read_text(encoding="utf-8", errors="replace")
    except OSError:
        return []
    needle = query.lower()
    return [
        {"line": idx, "text": line.strip()}
        for idx, line in enumerate(content.split("\n"), start=1)
        if needle in line.lower()
    ]


def _structured(op: Callable[..., Any]) -> Callable[..., dict[str, Any]]:
    """Turn a raising operation into one returning the uniform result dict."""

    @functools.wraps(op)
    def wrapper(self: FileStore, *args: Any, **kwargs: Any) -> dict[str, Any]:
        try:
            data = op(self, *args, **kwargs)
        except MDExplorerError as e:
            logger.info(f"{op.__name__} failed: {e}")
            return e.to_result()
        except OSError as e:
            err = from_os_error(e)
            logger.warning(f"{op.__name__} I/O error: {e}")
            return err.to_result()
        except UnicodeDecodeError:
            return FileIOError("File is not valid UTF-8 text").to_result()
        return {"success": True, "data": data}

    return wrapper


class FileStore:
    """CRUD on files and folders below the settings root."""

    def __init__(self, settings: SettingsStore, recent: RecentFiles | None = None) -> None:
        self.settings_store = settings
        self.recent = recent

    @property
    def settings(self) -> Settings:
        return self.settings_store.current

    @property
    def root(self) -> Path:
        return self.settings.root

    def _validate(self, path: str | Path | None) -> Path:
        if path is None or str(path).strip() == "":
            return sandbox.validate(self.root, self.root)
        return sandbox.validate(path, self.root)

    def _require_below_root(self, resolved: Path, what: str) -> None:
        if resolved == self.root:
            raise AccessDenied(f"Access denied: cannot {what} the root directory")

    @staticmethod
    def _check_name(name: str) -> str:
        name = (name or "").strip()
        if not name:
            raise ValidationError("Name is required")
        if name in (".", ".."):
            raise ValidationError(f"Invalid name: {name}")
        return name

    # ─── Reads ───────────────────────────────────────────────────────

    @_structured
    def read_directory(self, path: str | Path | None = None) -> list[dict[str, Any]]:
        target = self._validate(path)
        if not target.exists():
            target.mkdir(parents=True, exist_ok=True)
            logger.info(f"Created missing directory {target}")
            return []
        if not target.is_dir():
            raise ValidationError("Path is not a directory")
        return build_tree(target, self.root, self.settings)

    @_structured
    def read_file(self, path: str | Path) -> str:
        target = self._validate(path)
        if not target.exists():
            raise NotFound(f"File not found: {path}")
        if not target.is_file():
            raise NotAFile(f"Not a file: {path}")
        return target.read_text(encoding="utf-8")

    @_structured
    def search(self, query: str) -> list[dict[str, Any]]:
        """Name search over the whole tree; markdown files first, then by name."""
        needle = (query or "").strip().lower()
        if not needle:
            return []
        results: list[dict[str, Any]] = []

        def visit(directory: Path) -> None:
            try:
                entries = list(os.scandir(directory))
            except OSError:
                return
            for entry in entries:
                is_dir = entry.is_dir()
                if self.settings.is_excluded(entry.name, is_dir):
                    continue
                entry_path = Path(entry.path)
                if entry.is_symlink() and not sandbox.is_within(entry_path, self.root):
                    continue
                if needle in entry.name.lower():
                    results.append(file_node(entry_path, is_dir))
                if is_dir and not entry.is_symlink():
                    visit(entry_path)

        visit(self.root)
        return sorted(
            results,
            key=lambda n: (not (n["type"] == "file" and is_markdown_file(n["name"])), n["name"].lower()),
        )

    @_structured
    def path_for_clipboard(self, path: str | Path, relative: bool = False) -> str:
        target = self._validate(path)
        return sandbox.relative_to_root(target, self.root) if relative else str(target)

    @_structured
    def resolve_wiki_link(self, link_target: str, current_file: str | None = None) -> dict[str, Any] | None:
        """Resolve ``[[target]]``: next to the current file, then from the root, then by name."""
        clean = (link_target or "").strip()
        if not clean:
            return None

        candidates: list[str | Path] = []
        if current_file:
            candidates.append(Path(current_file).parent / clean)
        candidates.append(self.root / clean)

        resolved: Path | None = None
        for candidate in candidates:
            if not sandbox.is_within(candidate, self.root):
                continue
            path = sandbox.validate(candidate, self.root)
            if path.exists():
                resolved = path
                break

        if resolved is None:
            wanted = Path(clean).name.lower()
            for directory, dirnames, filenames in os.walk(self.root):
                dirnames[:] = sorted(d for d in dirnames if not self.settings.is_excluded(d, True))
                match = next((f for f in sorted(filenames) if f.lower() == wanted), None)
                if match:
                    resolved = Path(directory) / match
                    break

        if resolved is None:
            return None
        return {"path": str(resolved), "exists": True, "isMarkdown": is_markdown_file(resolved.name)}

    # ─── Writes ──────────────────────────────────────────────────────

    @_structured
    def write_file(self, path: str | Path, content: str) -> dict[str, Any]:
        target = self._validate(path)
        if target.is_dir():
            raise NotAFile(f"Not a file: {path}")
        target.parent.mkdir(parents=True, exist_ok=True)
        with open(target, "w", encoding="utf-8", newline="") as f:
            f.write(content)
        bytes_written = target.stat().st_size
        logger.info(f"Wrote {bytes_written} bytes to {target}")
        return {"path": str(target), "bytesWritten": bytes_written}

    @_structured
    def create(self, parent_path: str | Path | None, name: str, content: str = "") -> dict[str, Any]:
        name = self._check_name(name)
        parent = self._validate(parent_path)
        target = sandbox.validate(parent / name, self.root)
        if target.exists():
            raise AlreadyExists("A file with this name already exists")
        target.parent.mkdir(parents=True, exist_ok=True)
        # "x" mode: creation fails instead of overwriting a file that appeared meanwhile
        with open(target, "x", encoding="utf-8", newline="") as f:
            f.write(content)
        logger.info(f"Created file {target}")
        return {"path": str(target)}

    @_structured
    def create_folder(self, parent_path: str | Path | None, name: str) -> dict[str, Any]:
        name = self._check_name(name)
        parent = self._validate(parent_path)
        target = sandbox.validate(parent / name, self.root)
        if target.exists():
            raise AlreadyExists("A folder with this name already exists")
        target.mkdir(parents=True)
        logger.info(f"Created folder {target}")
        return {"path": str(target)}

    @_structured
    def rename(self, old_path: str | Path, new_name: str) -> dict[str, Any]:
        new_name = self._check_name(new_name)
        if "/" in new_name or os.sep in new_name:
            raise ValidationError("New name must not contain path separators")
        source = self._validate(old_path)
        self._require_below_root(source, "rename")
        if not source.exists():
            raise NotFound(f"Not found: {old_path}")
        destination = sandbox.validate(source.parent / new_name, self.root)
        if destination.exists():
            raise AlreadyExists("An item with this name already exists")
        source.rename(destination)
        self._forget_recent(source)
        logger.info(f"Renamed {source} -> {destination}")
        return {"path": str(destination)}

    @_structured
    def move(self, source_path: str | Path, target_dir: str | Path) -> dict[str, Any]:
        source = self._validate(source_path)
        self._require_below_root(source, "move")
        if not source.exists():
            raise NotFound(f"Not found: {source_path}")
        target_folder = self._validate(target_dir)
        destination = sandbox.validate(target_folder / source.name, self.root)

        if source.is_dir() and (target_folder == source or sandbox.is_strict_descendant(target_folder, source)):
            raise ValidationError("Cannot move a folder into itself")
        if destination.exists():
            raise AlreadyExists("An item with this name already exists at the destination")
        if target_folder.exists() and not target_folder.is_dir():
            raise ValidationError("Move target is not a directory")

        target_folder.mkdir(parents=True, exist_ok=True)
        shutil.move(str(source), str(destination))
        self._forget_recent(source)
        logger.info(f"Moved {source} -> {destination}")
        return {"path": str(destination)}

    @_structured
    def delete(self, path: str | Path, use_trash: bool = True) -> dict[str, Any]:
        target = self._validate(path)
        self._require_below_root(target, "delete")
        if not target.exists():
            raise NotFound(f"Not found: {path}")

        trashed = False
        if use_trash:
            try:
                send2trash.send2trash(str(target))
                trashed = True
            except OSError as e:
                logger.warning(f"Trash unavailable, deleting permanently: {e}")

        if not trashed:
            if target.is_dir() and not target.is_symlink():
                shutil.rmtree(target)
            else:
                target.unlink()

        self._forget_recent(target)
        logger.info(f"Deleted {target} ({'trash' if trashed else 'permanent'})")
        return {"path": str(target), "trashed": trashed}

    @_structured
    def duplicate(self, path: str | Path) -> dict[str, Any]:
        source = self._validate(path)
        if not source.exists():
            raise NotFound(f"Not found: {path}")
        if not source.is_file():
            raise NotAFile("Can only duplicate files")

        stem, ext = source.stem, source.suffix
        candidate = source.with_name(f"{stem} copy{ext}")
        counter = 1
        while candidate.exists():
            counter += 1
            candidate = source.with_name(f"{stem} copy {counter}{ext}")

        with open(candidate, "x", encoding="utf-8", newline="") as f:
            f.write(source.read_text(encoding="utf-8"))
        logger.info(f"Duplicated {source} -> {candidate}")
        return {"path": str(candidate)}

    def _forget_recent(self, path: Path) -> None:
        if self.recent is not None:
            self.recent.remove(path)
