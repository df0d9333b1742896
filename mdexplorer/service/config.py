"""Configuration management for the MD Explorer service."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger("mdexplorer.config")

APP_DIR_NAME = ".mdexplorer"
CONFIG_FILENAME = "config.json"

DEFAULT_CONFIG = {
    "server_host": "127.0.0.1",
    "server_port": 3210,
    "ollama_url": "http://127.0.0.1:11434",
    "ollama_timeout": 300.0,
    "ollama_num_ctx": 32768,
    "ollama_temperature": 0.3,
    "openai_base_url": "",
    "openai_timeout": 120.0,
    "anthropic_timeout": 120.0,
    "anthropic_max_tokens": 8192,
    "default_model": "gpt-4o-mini",
    "agent_max_steps": 5,
    "recent_files_limit": 20,
    "settings_file": f"~/{APP_DIR_NAME}/settings.json",
    "recent_files_file": f"~/{APP_DIR_NAME}/recent_files.json",
    "log_file": f"~/{APP_DIR_NAME}/log/mdexplorer.log",
}


@dataclass(frozen=True)
class Config:
    """Process configuration loaded from ~/.mdexplorer/config.json."""

    # HTTP server
    server_host: str
    server_port: int

    # Ollama
    ollama_url: str
    ollama_timeout: float
    ollama_num_ctx: int
    ollama_temperature: float

    # OpenAI (empty base url = official endpoint)
    openai_base_url: str
    openai_timeout: float

    # Anthropic
    anthropic_timeout: float
    anthropic_max_tokens: int

    # Conversation
    default_model: str
    agent_max_steps: int

    # Persisted documents
    recent_files_limit: int
    settings_file: str
    recent_files_file: str
    log_file: str

    @property
    def settings_path(self) -> Path:
        return Path(self.settings_file).expanduser()

    @property
    def recent_files_path(self) -> Path:
        return Path(self.recent_files_file).expanduser()

    @classmethod
    def load(cls, config_path: str | Path | None = None) -> Config:
        """Load config from the given path or the default ~/.mdexplorer/config.json."""
        if config_path:
            config_file = Path(config_path).expanduser()
        else:
            config_dir = Path.home() / APP_DIR_NAME
            config_file = config_dir / CONFIG_FILENAME
            config_dir.mkdir(parents=True, exist_ok=True)

        current_config = DEFAULT_CONFIG.copy()

        if config_file.exists():
            try:
                with open(config_file, "r", encoding="utf-8") as f:
                    user_config = json.load(f)
                # Unknown keys are ignored so old config files keep loading
                current_config.update({k: v for k, v in user_config.items() if k in DEFAULT_CONFIG})
            except (OSError, json.JSONDecodeError) as e:
                print(f"ERROR: Failed to load config from {config_file}: {e}")
                print("Using default configuration.")
        elif config_path is None:
            print(f"INFO: No config found. Generating default config at {config_file}")
            try:
                with open(config_file, "w", encoding="utf-8") as f:
                    json.dump(DEFAULT_CONFIG, f, indent=4)
            except OSError as e:
                print(f"ERROR: Failed to write default config: {e}")
        else:
            print(f"WARNING: Configuration file not found at {config_file}")
            print("Using default configuration settings.")

        # Environment overrides, e.g. MDEXPLORER_SERVER_PORT=8080
        for key in current_config:
            env_key = f"MDEXPLORER_{key.upper()}"
            if env_key not in os.environ:
                continue
            val = os.environ[env_key]
            default_val = DEFAULT_CONFIG[key]
            try:
                if isinstance(default_val, bool):
                    current_config[key] = val.lower() in ("true", "1", "yes")
                elif isinstance(default_val, int):
                    current_config[key] = int(val)
                elif isinstance(default_val, float):
                    current_config[key] = float(val)
                else:
                    current_config[key] = val
            except ValueError:
                logger.warning(f"Ignoring invalid value for {env_key}: {val!r}")

        return cls(**current_config)


# Singleton
_config: Config | None = None


def get_config(config_path: str | None = None) -> Config:
    """Get or create the global config instance, optionally loading from a path."""
    global _config
    if _config is None:
        _config = Config.load(config_path)
    return _config


def reset_config() -> None:
    """Drop the cached config so the next get_config() reloads it."""
    global _config
    _config = None
