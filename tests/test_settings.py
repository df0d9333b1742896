"""Config loading, settings persistence and the recent files list."""

import json
import time

import pytest

from mdexplorer.service.config import DEFAULT_CONFIG, Config, get_config, reset_config
from mdexplorer.service.errors import ValidationError
from mdexplorer.service.recent import RecentFiles
from mdexplorer.service.settings import Settings, SettingsStore, validate_directory


# ═══════════════════════════════════════════════════════════════
# Config
# ═══════════════════════════════════════════════════════════════

class TestConfig:

    def test_load_merges_file_over_defaults(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({"server_port": 9000, "unknown_key": 1}), encoding="utf-8")
        cfg = Config.load(path)
        assert cfg.server_port == 9000
        assert cfg.default_model == DEFAULT_CONFIG["default_model"]

    def test_env_override(self, tmp_path, monkeypatch):
        monkeypatch.setenv("MDEXPLORER_AGENT_MAX_STEPS", "3")
        monkeypatch.setenv("MDEXPLORER_OLLAMA_TEMPERATURE", "0.9")
        cfg = Config.load(tmp_path / "missing.json")
        assert cfg.agent_max_steps == 3
        assert cfg.ollama_temperature == 0.9

    def test_invalid_env_value_is_ignored(self, tmp_path, monkeypatch):
        monkeypatch.setenv("MDEXPLORER_SERVER_PORT", "not-a-port")
        cfg = Config.load(tmp_path / "missing.json")
        assert cfg.server_port == DEFAULT_CONFIG["server_port"]

    def test_config_is_frozen(self, config):
        with pytest.raises(AttributeError):
            config.server_port = 1

    def test_get_config_is_cached_until_reset(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({"server_port": 4000}), encoding="utf-8")
        reset_config()
        try:
            cfg = get_config(str(path))
            assert cfg.server_port == 4000
            assert get_config() is cfg
        finally:
            reset_config()


# ═══════════════════════════════════════════════════════════════
# Settings
# ═══════════════════════════════════════════════════════════════

class TestSettings:

    def test_extensions_are_normalized(self):
        settings = Settings(excludedExtensions=["LOG", ".Tmp", " "])
        assert settings.excluded_extensions == frozenset({".log", ".tmp"})

    def test_folder_exclusion_is_case_insensitive(self):
        settings = Settings(excludedFolders=["node_modules"])
        assert settings.is_excluded("Node_Modules", True)
        assert not settings.is_excluded("node_modules.md", False)

    def test_extension_exclusion(self):
        settings = Settings()
        assert settings.is_excluded("debug.LOG", False)
        assert not settings.is_excluded("notes.md", False)

    def test_store_creates_root_and_persists(self, tmp_path):
        path = tmp_path / "settings.json"
        path.write_text(json.dumps({"rootDirectory": str(tmp_path / "new-root")}), encoding="utf-8")
        store = SettingsStore(path)
        assert store.root.is_dir()
        saved = json.loads(path.read_text(encoding="utf-8"))
        assert saved["rootDirectory"] == str(store.root)

    def test_corrupt_document_falls_back_to_defaults(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        path = tmp_path / "settings.json"
        path.write_text("{not json", encoding="utf-8")
        store = SettingsStore(path)
        assert store.root == (tmp_path / "documents").resolve()

    def test_update_accepts_camel_and_snake_keys(self, settings_store):
        settings_store.update({"excludedFolders": ["build"]})
        settings = settings_store.update({"excluded_extensions": ["bak"]})
        assert settings.excluded_folders == frozenset({"build"})
        assert settings.excluded_extensions == frozenset({".bak"})

    def test_update_rejects_unknown_key(self, settings_store):
        with pytest.raises(ValidationError):
            settings_store.update({"theme": "dark"})

    def test_update_with_uncreatable_root(self, settings_store, root, doc):
        with pytest.raises(ValidationError, match="Root directory is not usable"):
            settings_store.update({"rootDirectory": str(doc / "sub")})
        assert settings_store.root == root
        assert not (doc / "sub").exists()

    def test_update_is_persisted(self, settings_store, tmp_path):
        new_root = tmp_path / "other"
        settings_store.update({"rootDirectory": str(new_root)})
        reloaded = SettingsStore(settings_store.path)
        assert reloaded.root == new_root.resolve()

    def test_validate_directory(self, tmp_path):
        assert validate_directory(tmp_path) == {"valid": True}
        assert validate_directory(tmp_path / "nope")["valid"] is False
        file_path = tmp_path / "f.md"
        file_path.write_text("", encoding="utf-8")
        assert validate_directory(file_path) == {"valid": False, "error": "Path is not a directory"}


# ═══════════════════════════════════════════════════════════════
# Recent files
# ═══════════════════════════════════════════════════════════════

class TestRecentFiles:

    def test_most_recent_first_without_duplicates(self, recent, root):
        a, b = root / "a.md", root / "b.md"
        a.write_text("", encoding="utf-8")
        b.write_text("", encoding="utf-8")
        recent.add(a)
        recent.add(b, "save")
        recent.add(a)
        entries = recent.entries()
        assert [e.path for e in entries] == [str(a), str(b)]
        assert entries[1].action == "save"

    def test_limit_is_enforced(self, tmp_path):
        recent = RecentFiles(tmp_path / "recent.json", limit=3)
        for i in range(5):
            path = tmp_path / f"{i}.md"
            path.write_text("", encoding="utf-8")
            recent.add(path)
        assert [e.name for e in recent.entries()] == ["4.md", "3.md", "2.md"]

    def test_missing_files_are_pruned(self, recent, root):
        gone = root / "gone.md"
        gone.write_text("", encoding="utf-8")
        recent.add(gone)
        gone.unlink()
        assert recent.entries() == []
        assert json.loads(recent.path.read_text(encoding="utf-8")) == []

    def test_remove_folder_drops_children(self, recent, root):
        folder = root / "sub"
        folder.mkdir()
        child = folder / "c.md"
        child.write_text("", encoding="utf-8")
        other = root / "subway.md"
        other.write_text("", encoding="utf-8")
        recent.add(child)
        recent.add(other)
        recent.remove(folder)
        assert [e.path for e in recent.entries()] == [str(other)]

    def test_timestamp_in_milliseconds(self, recent, root):
        path = root / "t.md"
        path.write_text("", encoding="utf-8")
        before = int(time.time() * 1000)
        recent.add(path)
        assert recent.entries()[0].timestamp >= before
