"""Command port: named actions the UI (palette, shortcuts) can trigger.

Handlers receive the session explicitly and return a result dict; nothing
registers global callbacks.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Awaitable, Callable

from ..errors import NotFound, ValidationError
from ..settings import validate_directory

if TYPE_CHECKING:
    from .session import SessionState

logger = logging.getLogger("mdexplorer.agent.commands")

Handler = Callable[["SessionState", dict[str, Any]], Awaitable[dict[str, Any]]]


@dataclass
class Command:
    name: str
    description: str
    handler: Handler
    shortcut: str = ""

    def to_json(self) -> dict[str, str]:
        return {"name": self.name, "description": self.description, "shortcut": self.shortcut}


class CommandRegistry:

    def __init__(self) -> None:
        self._commands: dict[str, Command] = {}

    def register(self, name: str, description: str, shortcut: str = "") -> Callable[[Handler], Handler]:
        def decorator(handler: Handler) -> Handler:
            self._commands[name] = Command(name, description, handler, shortcut)
            return handler
        return decorator

    def get(self, name: str) -> Command:
        try:
            return self._commands[name]
        except KeyError:
            raise NotFound(f"Unknown command: {name}")

    def available(self) -> list[dict[str, str]]:
        return [c.to_json() for c in self._commands.values()]

    async def invoke(self, name: str, session: SessionState, args: dict[str, Any] | None = None) -> dict[str, Any]:
        command = self.get(name)
        logger.info(f"Running command {name}")
        return await command.handler(session, args or {})


def default_commands() -> CommandRegistry:
    commands = CommandRegistry()

    @commands.register("save-file", "Save the open file", "mod+s")
    async def _save_file(session: SessionState, args: dict[str, Any]) -> dict[str, Any]:
        return await session.save_file(args.get("content"))

    @commands.register("open-file", "Open a file in the editor")
    async def _open_file(session: SessionState, args: dict[str, Any]) -> dict[str, Any]:
        return await session.open_file(args.get("path", ""))

    @commands.register("open-recent", "List recently opened files")
    async def _open_recent(session: SessionState, args: dict[str, Any]) -> dict[str, Any]:
        entries = await asyncio.to_thread(session.recent.entries)
        return {"success": True, "data": [vars(e) for e in entries]}

    @commands.register("search-files", "Search files by name", "mod+p")
    async def _search_files(session: SessionState, args: dict[str, Any]) -> dict[str, Any]:
        return await asyncio.to_thread(session.filestore.search, args.get("query", ""))

    @commands.register("new-file", "Create a new markdown file")
    async def _new_file(session: SessionState, args: dict[str, Any]) -> dict[str, Any]:
        name = (args.get("name") or "").strip()
        if name and not name.lower().endswith(".md"):
            name += ".md"
        created = await asyncio.to_thread(session.filestore.create, args.get("parentPath"), name, "")
        if not created["success"]:
            return created
        return await session.open_file(created["data"]["path"])

    @commands.register("switch-root", "Switch the root directory")
    async def _switch_root(session: SessionState, args: dict[str, Any]) -> dict[str, Any]:
        directory = (args.get("rootDirectory") or "").strip()
        if not directory:
            return ValidationError("rootDirectory is required").to_result()
        check = validate_directory(directory)
        if not check["valid"]:
            return {"success": False, "error": check["error"], "code": "validation_error"}
        return await session.update_settings({"rootDirectory": directory})

    @commands.register("accept-change", "Accept the pending AI change")
    async def _accept_change(session: SessionState, args: dict[str, Any]) -> dict[str, Any]:
        async with session.lock:
            return await session.pipeline.accept()

    @commands.register("reject-change", "Reject the pending AI change")
    async def _reject_change(session: SessionState, args: dict[str, Any]) -> dict[str, Any]:
        async with session.lock:
            return {"success": session.pipeline.reject()}

    @commands.register("clear-chat", "Clear the conversation")
    async def _clear_chat(session: SessionState, args: dict[str, Any]) -> dict[str, Any]:
        session.reset_conversation()
        return {"success": True}

    return commands
