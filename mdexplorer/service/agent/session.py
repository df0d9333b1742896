"""Per-app session state.

One ``SessionState`` lives on ``app.state`` and is handed to request handlers
through a FastAPI dependency. It owns every mutable piece of the session;
each piece is changed only through its own methods.
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Any

from .. import sandbox
from ..config import Config, get_config
from ..errors import MDExplorerError, ValidationError
from ..filestore import FileStore
from ..models import ProviderRegistry
from ..recent import RecentFiles
from ..settings import SettingsStore
from .commands import CommandRegistry, default_commands
from .loop import ConversationOrchestrator
from .models import Conversation, EditorState
from .permissions import PermissionGate
from .proposals import ChangeProposalPipeline
from .tools import ToolRegistry

logger = logging.getLogger("mdexplorer.agent.session")


class SessionState:

    def __init__(
        self,
        settings_store: SettingsStore,
        recent: RecentFiles,
        providers: ProviderRegistry,
        config: Config | None = None,
    ) -> None:
        self.config = config or get_config()
        self.settings_store = settings_store
        self.recent = recent
        self.providers = providers

        self.filestore = FileStore(settings_store, recent)
        self.tools = ToolRegistry(self.filestore)
        self.editor = EditorState()
        self.conversation = Conversation()
        self.gate = PermissionGate()
        self.pipeline = ChangeProposalPipeline(self.filestore, self.editor)
        self.commands: CommandRegistry = default_commands()

        # serializes turns, permission resolution and accept
        self.lock = asyncio.Lock()
        self.model_id: str = self.config.default_model
        self.selected_text: str | None = None
        self._root_override: Path | None = None

        self.orchestrator = ConversationOrchestrator(
            providers=providers,
            tools=self.tools,
            gate=self.gate,
            pipeline=self.pipeline,
            conversation=self.conversation,
            editor=lambda: self.editor,
            root=lambda: self.sandbox_root,
            config=self.config,
        )

    @property
    def sandbox_root(self) -> Path:
        return self._root_override or self.filestore.root

    def narrow_root(self, root_directory: str | None) -> None:
        """Restrict agent tools to a sub-directory of the configured root.

        Raises:
            AccessDenied: the directory lies outside the configured root.
        """
        if not root_directory:
            self._root_override = None
            return
        narrowed = sandbox.validate(root_directory, self.filestore.root)
        if not narrowed.is_dir():
            raise ValidationError("rootDirectory is not a directory")
        self._root_override = None if narrowed == self.filestore.root else narrowed

    # ─── Editor slot ────────────────────────────────────────────────

    def sync_editor(self, file_path: str | None, content: str | None) -> None:
        """Apply the client's view of the open file before a turn.

        Raises:
            AccessDenied: ``file_path`` lies outside the root.
        """
        if not file_path:
            return
        resolved = str(sandbox.validate(file_path, self.filestore.root))
        if resolved != self.editor.file_path:
            self.pipeline.invalidate_for(resolved)
            if content is None:
                read = self.filestore.read_file(resolved)
                content = read["data"] if read["success"] else ""
            self.editor.open(resolved, content)
        elif content is not None:
            self.editor.edit(content)

    async def open_file(self, path: str) -> dict[str, Any]:
        result = await asyncio.to_thread(self.filestore.read_file, path)
        if not result["success"]:
            return result
        resolved = str(sandbox.validate(path, self.filestore.root))
        self.pipeline.invalidate_for(resolved)
        self.editor.open(resolved, result["data"])
        await asyncio.to_thread(self.recent.add, resolved, "open")
        return {"success": True, "data": self.editor.to_json()}

    async def save_file(self, content: str | None = None) -> dict[str, Any]:
        if not self.editor.file_path:
            return ValidationError("No file is open").to_result()
        file_path = self.editor.file_path
        body = self.editor.content if content is None else content
        result = await asyncio.to_thread(self.filestore.write_file, file_path, body)
        if not result["success"]:
            return result
        self.editor.commit_saved(file_path, body)
        await asyncio.to_thread(self.recent.add, file_path, "save")
        return {"success": True, "data": {**result["data"], "version": self.editor.version}}

    def close_file(self) -> None:
        self.pipeline.invalidate_for(None)
        self.editor.close()

    def follow_path_change(self, old_path: str, new_path: str | None) -> None:
        """Keep the editor pointed at a file that was renamed, moved or deleted."""
        current = self.editor.file_path
        if not current:
            return
        old = Path(old_path)
        here = Path(current)
        if here != old and old not in here.parents:
            return
        if new_path is None:
            self.close_file()
            return
        relocated = str(Path(new_path) / here.relative_to(old)) if here != old else new_path
        self.pipeline.invalidate_for(relocated)
        self.editor.file_path = relocated

    # ─── Settings ───────────────────────────────────────────────────

    async def update_settings(self, changes: dict[str, Any]) -> dict[str, Any]:
        previous_root = self.filestore.root
        try:
            settings = await asyncio.to_thread(self.settings_store.update, changes)
        except MDExplorerError as e:
            return e.to_result()
        if settings.root != previous_root:
            logger.info(f"Root directory switched to {settings.root}")
            self._root_override = None
            if self.editor.file_path and not sandbox.is_within(self.editor.file_path, settings.root):
                self.close_file()
            pending = self.pipeline.pending
            if pending is not None and not sandbox.is_within(pending.file_path, settings.root):
                self.pipeline.reject()
        return {"success": True, "data": settings.to_json()}

    # ─── Conversation ───────────────────────────────────────────────

    def reset_conversation(self) -> None:
        self.orchestrator.stop()
        self.conversation.reset()
        self.gate.clear()
        logger.info("Conversation cleared")

    def status(self) -> dict[str, Any]:
        return {
            "rootDirectory": str(self.filestore.root),
            "sandboxRoot": str(self.sandbox_root),
            "model": self.model_id,
            "messageCount": len(self.conversation),
            "busy": self.lock.locked(),
            "editor": {k: v for k, v in self.editor.to_json().items() if k != "content"},
            "pendingPermission": self.gate.pending.to_json() if self.gate.pending else None,
            "hasPendingChange": self.pipeline.pending is not None,
        }

