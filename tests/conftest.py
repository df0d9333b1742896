"""Shared fixtures: a tmp sandbox root, persisted documents and a scripted provider."""

import json

import pytest

from mdexplorer.service.agent import SessionState
from mdexplorer.service.config import DEFAULT_CONFIG, Config
from mdexplorer.service.filestore import FileStore
from mdexplorer.service.models import Provider, ProviderRegistry
from mdexplorer.service.recent import RecentFiles
from mdexplorer.service.settings import SettingsStore

from helpers import MODEL, FakeProvider


# ═══════════════════════════════════════════════════════════════
# Fixtures
# ═══════════════════════════════════════════════════════════════

@pytest.fixture
def root(tmp_path):
    workspace = tmp_path / "workspace"
    workspace.mkdir()
    return workspace.resolve()


@pytest.fixture
def config(tmp_path):
    data = dict(DEFAULT_CONFIG)
    data.update({
        "settings_file": str(tmp_path / "state" / "settings.json"),
        "recent_files_file": str(tmp_path / "state" / "recent_files.json"),
        "log_file": str(tmp_path / "state" / "mdexplorer.log"),
        "default_model": MODEL,
    })
    return Config(**data)


@pytest.fixture
def settings_store(config, root):
    config.settings_path.parent.mkdir(parents=True, exist_ok=True)
    config.settings_path.write_text(json.dumps({"rootDirectory": str(root)}), encoding="utf-8")
    return SettingsStore(config.settings_path)


@pytest.fixture
def recent(config):
    return RecentFiles(config.recent_files_path, limit=config.recent_files_limit)


@pytest.fixture
def filestore(settings_store, recent):
    return FileStore(settings_store, recent)


@pytest.fixture
def provider():
    return FakeProvider()


@pytest.fixture
def providers(config, provider):
    registry = ProviderRegistry(config)
    registry.register(Provider.OPENAI, provider)
    registry.register(Provider.OLLAMA, provider)
    return registry


@pytest.fixture
def session(settings_store, recent, providers, config):
    return SessionState(settings_store, recent, providers, config=config)


@pytest.fixture
def doc(root):
    """A markdown file inside the sandbox."""
    path = root / "a.md"
    path.write_text("# Title\n\nFirst paragraph.\n", encoding="utf-8")
    return path
