"""User settings: sandbox root and exclusion lists, persisted as one JSON document."""

from __future__ import annotations

import json
import logging
import os
import threading
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from .errors import ValidationError, from_os_error

logger = logging.getLogger("mdexplorer.settings")

DEFAULT_EXCLUDED_EXTENSIONS = [".exe", ".dll", ".log", ".tmp", ".cache"]
DEFAULT_EXCLUDED_FOLDERS = [".git", "node_modules", ".next", ".vscode", "__pycache__", ".cache"]


def default_root_directory() -> Path:
    return Path.cwd() / "documents"


class Settings(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    root_directory: str = Field(default="", alias="rootDirectory")
    excluded_extensions: frozenset[str] = Field(
        default=frozenset(DEFAULT_EXCLUDED_EXTENSIONS), alias="excludedExtensions"
    )
    excluded_folders: frozenset[str] = Field(
        default=frozenset(DEFAULT_EXCLUDED_FOLDERS), alias="excludedFolders"
    )

    @field_validator("excluded_extensions", mode="before")
    @classmethod
    def _normalize_extensions(cls, value: Any) -> frozenset[str]:
        exts = set()
        for ext in value or []:
            ext = str(ext).strip().lower()
            if not ext:
                continue
            exts.add(ext if ext.startswith(".") else f".{ext}")
        return frozenset(exts)

    @field_validator("excluded_folders", mode="before")
    @classmethod
    def _normalize_folders(cls, value: Any) -> frozenset[str]:
        return frozenset(str(name).strip() for name in (value or []) if str(name).strip())

    @property
    def root(self) -> Path:
        return Path(self.root_directory).expanduser().resolve()

    def is_excluded(self, name: str, is_directory: bool) -> bool:
        """Folder names match case-insensitively; files match on extension."""
        if is_directory:
            lowered = name.lower()
            return any(lowered == folder.lower() for folder in self.excluded_folders)
        return Path(name).suffix.lower() in self.excluded_extensions

    def to_json(self) -> dict[str, Any]:
        return {
            "rootDirectory": self.root_directory,
            "excludedExtensions": sorted(self.excluded_extensions),
            "excludedFolders": sorted(self.excluded_folders),
        }


def validate_directory(dir_path: str | Path) -> dict[str, Any]:
    """Check that a directory exists and can be listed."""
    resolved = Path(dir_path).expanduser().resolve()
    if not resolved.exists():
        return {"valid": False, "error": "Directory does not exist"}
    if not resolved.is_dir():
        return {"valid": False, "error": "Path is not a directory"}
    if not os.access(resolved, os.R_OK | os.X_OK):
        return {"valid": False, "error": "Permission denied"}
    return {"valid": True}


class SettingsStore:
    """Owns the Settings document; the only writer of settings.json."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path).expanduser()
        self._lock = threading.Lock()
        self._settings = self._load()

    @property
    def current(self) -> Settings:
        return self._settings

    @property
    def root(self) -> Path:
        return self._settings.root

    def _load(self) -> Settings:
        data: dict[str, Any] = {}
        if self.path.exists():
            try:
                with open(self.path, "r", encoding="utf-8") as f:
                    data = json.load(f)
            except (OSError, json.JSONDecodeError) as e:
                logger.warning(f"Failed to read settings from {self.path}, using defaults: {e}")
                data = {}
        try:
            settings = Settings.model_validate(data)
        except PydanticValidationError as e:
            logger.warning(f"Invalid settings document {self.path}, using defaults: {e}")
            settings = Settings()

        if not settings.root_directory:
            settings = settings.model_copy(update={"root_directory": str(default_root_directory())})
        settings = self._ensure_root(settings)
        self._write(settings)
        logger.info(f"Settings loaded: root={settings.root_directory}")
        return settings

    @staticmethod
    def _ensure_root(settings: Settings) -> Settings:
        root = settings.root
        try:
            root.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise ValidationError(f"Root directory is not usable: {from_os_error(e).args[0]}")
        check = validate_directory(root)
        if not check["valid"]:
            raise ValidationError(f"Root directory is not usable: {check['error']}")
        return settings.model_copy(update={"root_directory": str(root)})

    def _write(self, settings: Settings) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(settings.to_json(), f, indent=2)
        os.replace(tmp_path, self.path)

    def update(self, changes: dict[str, Any]) -> Settings:
        """Apply a partial update (camelCase or snake_case keys) after validation.

        Raises:
            ValidationError: unknown keys, bad values or an unusable root.
        """
        allowed = {
            "rootDirectory", "excludedExtensions", "excludedFolders",
            "root_directory", "excluded_extensions", "excluded_folders",
        }
        unknown = set(changes) - allowed
        if unknown:
            raise ValidationError(f"Unknown setting(s): {', '.join(sorted(unknown))}")

        with self._lock:
            merged = self._settings.to_json()
            for key, value in changes.items():
                merged[Settings.model_fields[key].alias if key in Settings.model_fields else key] = value
            try:
                candidate = Settings.model_validate(merged)
            except PydanticValidationError as e:
                raise ValidationError(f"Invalid settings: {e.errors()[0].get('msg', str(e))}")
            if not candidate.root_directory:
                candidate = candidate.model_copy(update={"root_directory": str(default_root_directory())})
            candidate = self._ensure_root(candidate)
            self._write(candidate)
            self._settings = candidate

        logger.info(f"Settings updated: {sorted(changes)}")
        return candidate
