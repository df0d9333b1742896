"""FastAPI server: bridges the editor UI, the model providers and the sandboxed workspace."""

from __future__ import annotations

import asyncio
import json
import logging
from contextlib import asynccontextmanager
from dataclasses import asdict
from typing import Any, AsyncIterator

from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel
from sse_starlette.sse import EventSourceResponse

from . import sandbox
from .agent import AgentEvent, SessionState
from .agent.tool_defs import get_tool_definitions
from .agent.tools import GATED_TOOLS
from .config import Config, get_config
from .errors import (
    AccessDenied,
    MDExplorerError,
    NotFound,
    PermissionStateError,
    UnknownModelError,
    UnknownToolError,
    ValidationError,
)
from .models import MODELS, Provider, ProviderRegistry, is_valid_model_id, models_grouped_by_provider
from .recent import RecentFiles
from .settings import SettingsStore, validate_directory

logger = logging.getLogger("mdexplorer.server")

_STATUS_CODES: dict[type[MDExplorerError], int] = {
    UnknownModelError: 400,
    UnknownToolError: 400,
    ValidationError: 400,
    AccessDenied: 403,
    NotFound: 404,
    PermissionStateError: 409,
}


# ─── Request Models ─────────────────────────────────────────────────

class _Body(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ChatRequest(_Body):
    messages: list[dict[str, Any]] = []
    message: str | None = None
    model: str | None = None
    file_path: str | None = None
    file_content: str | None = None
    selected_text: str | None = None
    root_directory: str | None = None
    stream: bool = True


class ExecuteToolRequest(_Body):
    tool_name: str = ""
    parameters: dict[str, Any] = {}
    root_directory: str | None = None


class AcceptChangeRequest(_Body):
    file_path: str | None = None
    proposed_content: str | None = None


class EditorUpdateRequest(_Body):
    content: str
    file_path: str | None = None


class OpenFileRequest(_Body):
    path: str


class SaveFileRequest(_Body):
    content: str | None = None


class CreateRequest(_Body):
    parent_path: str | None = None
    name: str
    content: str = ""


class RenameRequest(_Body):
    old_path: str
    new_name: str


class MoveRequest(_Body):
    source_path: str
    target_dir: str


class DeleteRequest(_Body):
    path: str
    use_trash: bool = True


class PathRequest(_Body):
    path: str


# ─── App state ──────────────────────────────────────────────────────

def get_session(request: Request) -> SessionState:
    session = getattr(request.app.state, "session", None)
    if session is None:
        raise MDExplorerError("Service not initialized")
    return session


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup/shutdown lifecycle."""
    session: SessionState = app.state.session
    cfg = session.config
    logger.info(f"Starting MD Explorer service on {cfg.server_host}:{cfg.server_port}")
    logger.info(f"  Root directory: {session.filestore.root}")
    logger.info(f"  Default model: {cfg.default_model}")

    yield

    await session.providers.close()
    logger.info("MD Explorer service shutdown complete")


def create_app(
    config: Config | None = None,
    settings_store: SettingsStore | None = None,
    recent: RecentFiles | None = None,
    providers: ProviderRegistry | None = None,
) -> FastAPI:
    """Build the app with its session state; collaborators may be injected (tests)."""
    cfg = config or get_config()
    session = SessionState(
        settings_store=settings_store or SettingsStore(cfg.settings_path),
        recent=recent or RecentFiles(cfg.recent_files_path, limit=cfg.recent_files_limit),
        providers=providers or ProviderRegistry(cfg),
        config=cfg,
    )

    app = FastAPI(
        title="MD Explorer Copilot",
        version="0.2.0",
        description="Sandboxed markdown workspace with an LLM editing agent",
        lifespan=lifespan,
    )
    app.state.session = session

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(MDExplorerError)
    async def _service_error(request: Request, exc: MDExplorerError) -> JSONResponse:
        status = next((code for cls, code in _STATUS_CODES.items() if isinstance(exc, cls)), 503)
        return JSONResponse(exc.to_result(), status_code=status)

    _register_routes(app)
    return app


# ─── Helpers ────────────────────────────────────────────────────────

def _message_text(message: dict[str, Any]) -> str:
    content = message.get("content")
    if isinstance(content, str):
        return content
    parts = message.get("parts") or (content if isinstance(content, list) else [])
    return "".join(
        p.get("text", "") for p in parts if isinstance(p, dict) and p.get("type") == "text"
    )


def _split_messages(messages: list[dict[str, Any]]) -> tuple[list[dict[str, str]], str]:
    """Return (earlier text messages, latest user message)."""
    last_user = None
    for idx in range(len(messages) - 1, -1, -1):
        if messages[idx].get("role") == "user":
            last_user = idx
            break
    if last_user is None:
        return [], ""
    history = [
        {"role": m["role"], "content": _message_text(m)}
        for m in messages[:last_user]
        if m.get("role") in ("user", "assistant") and _message_text(m)
    ]
    return history, _message_text(messages[last_user])


def _sse(event: AgentEvent) -> dict[str, str]:
    return {"event": event.type, "data": json.dumps(event.to_json(), default=str)}


async def _locked_events(session: SessionState, events: AsyncIterator[AgentEvent]) -> AsyncIterator[AgentEvent]:
    async with session.lock:
        async for event in events:
            yield event


async def _respond(session: SessionState, events: AsyncIterator[AgentEvent], stream: bool):
    if stream:
        async def _stream() -> AsyncIterator[dict[str, str]]:
            async for event in _locked_events(session, events):
                yield _sse(event)
        return EventSourceResponse(_stream(), media_type="text/event-stream")

    collected = [event.to_json() async for event in _locked_events(session, events)]
    return JSONResponse({"events": collected})


# ─── Routes ─────────────────────────────────────────────────────────

def _register_routes(app: FastAPI) -> None:

    @app.get("/api/status")
    async def get_status(session: SessionState = Depends(get_session)) -> JSONResponse:
        """Health check and connection status."""
        cfg = session.config
        ollama = session.providers.client(Provider.OLLAMA)
        health_check = getattr(ollama, "health_check", None)
        ollama_ok = await health_check() if health_check else False
        return JSONResponse({
            "status": "ok",
            "ollama": {"connected": ollama_ok, "url": cfg.ollama_url},
            "session": session.status(),
        })

    @app.get("/api/models")
    async def list_models(session: SessionState = Depends(get_session)) -> JSONResponse:
        cfg = session.config
        return JSONResponse({
            "models": [m.to_json() for m in MODELS],
            "byProvider": models_grouped_by_provider(),
            "default": cfg.default_model,
        })

    @app.get("/api/tools")
    async def list_tools() -> JSONResponse:
        tools = get_tool_definitions()
        return JSONResponse({
            "count": len(tools),
            "tools": tools,
            "gated": sorted(t.value for t in GATED_TOOLS),
        })

    # ── Conversation ──

    @app.post("/api/chat", response_model=None)
    async def chat(body: ChatRequest, session: SessionState = Depends(get_session)):
        """Send a message and get a streaming response."""
        model_id = body.model or session.model_id
        if not is_valid_model_id(model_id):
            return JSONResponse({"success": False, "error": "Invalid model"}, status_code=400)

        history, user_message = _split_messages(body.messages)
        if body.message:
            user_message = body.message
        if not user_message.strip():
            raise ValidationError("A user message is required")

        # read-only checks up front; session state only changes once the turn holds the lock
        for path in (body.root_directory, body.file_path):
            if path:
                sandbox.validate(path, session.filestore.root)

        async def _turn() -> AsyncIterator[AgentEvent]:
            try:
                session.narrow_root(body.root_directory)
                session.sync_editor(body.file_path, body.file_content)
            except MDExplorerError as e:
                yield AgentEvent(type="error", data={"message": str(e), "code": e.code})
                yield AgentEvent(type="done", data={"reason": "error"})
                return
            session.model_id = model_id
            session.selected_text = body.selected_text

            # the server owns the conversation; client history only seeds an empty one
            if len(session.conversation) == 0:
                for msg in history:
                    session.conversation.add_message(msg["role"], msg["content"])
            async for event in session.orchestrator.process_message(user_message, model_id, body.selected_text):
                yield event

        return await _respond(session, _turn(), body.stream)

    @app.post("/api/chat/execute-tool")
    async def execute_tool(body: ExecuteToolRequest, session: SessionState = Depends(get_session)) -> JSONResponse:
        """Run an approved gated tool and return its structured result."""
        if not body.tool_name:
            return JSONResponse({"success": False, "error": "Tool name is required"}, status_code=400)

        root = session.sandbox_root
        if body.root_directory:
            try:
                root = sandbox.validate(body.root_directory, session.filestore.root)
            except AccessDenied as e:
                return JSONResponse(e.to_result())

        try:
            result = await asyncio.to_thread(session.tools.execute_approved, body.tool_name, body.parameters, root)
        except UnknownToolError as e:
            return JSONResponse(e.to_result(), status_code=400)
        return JSONResponse(result)

    @app.get("/api/permissions/pending")
    async def pending_permission(session: SessionState = Depends(get_session)) -> JSONResponse:
        pending = session.gate.pending
        return JSONResponse({"pending": pending.to_json() if pending else None})

    @app.post("/api/permissions/{request_id}/approve", response_model=None)
    async def approve_permission(request_id: str, stream: bool = True, session: SessionState = Depends(get_session)):
        resolved = session.gate.approve(request_id)
        events = session.orchestrator.resume_after_permission(resolved, session.model_id, session.selected_text)
        return await _respond(session, events, stream)

    @app.post("/api/permissions/{request_id}/deny", response_model=None)
    async def deny_permission(request_id: str, stream: bool = True, session: SessionState = Depends(get_session)):
        resolved = session.gate.deny(request_id)
        events = session.orchestrator.resume_after_permission(resolved, session.model_id, session.selected_text)
        return await _respond(session, events, stream)

    @app.post("/api/reset")
    async def reset_conversation(session: SessionState = Depends(get_session)) -> JSONResponse:
        """Reset conversation history."""
        session.reset_conversation()
        return JSONResponse({"status": "ok", "message": "Conversation reset"})

    @app.post("/api/stop")
    async def stop_agent(session: SessionState = Depends(get_session)) -> JSONResponse:
        """Abort the running turn."""
        session.orchestrator.stop()
        return JSONResponse({"status": "ok", "message": "Agent stopped"})

    @app.get("/api/history")
    async def get_history(session: SessionState = Depends(get_session)) -> JSONResponse:
        return JSONResponse({
            "messages": session.conversation.messages,
            "ui": session.conversation.to_ui(),
        })

    # ── Change proposals ──

    @app.get("/api/changes/pending")
    async def pending_change(session: SessionState = Depends(get_session)) -> JSONResponse:
        return JSONResponse({"pendingChange": session.pipeline.diff()})

    @app.post("/api/changes/accept")
    async def accept_change(body: AcceptChangeRequest, session: SessionState = Depends(get_session)) -> JSONResponse:
        async with session.lock:
            result = await session.pipeline.accept(body.file_path, body.proposed_content)
        return JSONResponse(result)

    @app.post("/api/changes/reject")
    async def reject_change(session: SessionState = Depends(get_session)) -> JSONResponse:
        async with session.lock:
            rejected = session.pipeline.reject()
        return JSONResponse({"success": rejected})

    # ── Editor slot ──

    @app.get("/api/editor")
    async def get_editor(session: SessionState = Depends(get_session)) -> JSONResponse:
        return JSONResponse(session.editor.to_json())

    @app.put("/api/editor")
    async def update_editor(body: EditorUpdateRequest, session: SessionState = Depends(get_session)) -> JSONResponse:
        if body.file_path:
            session.sync_editor(body.file_path, body.content)
        else:
            session.editor.edit(body.content)
        editor = session.editor.to_json()
        editor.pop("content")
        return JSONResponse(editor)

    @app.post("/api/editor/open")
    async def open_file(body: OpenFileRequest, session: SessionState = Depends(get_session)) -> JSONResponse:
        return JSONResponse(await session.open_file(body.path))

    @app.post("/api/editor/save")
    async def save_file(body: SaveFileRequest, session: SessionState = Depends(get_session)) -> JSONResponse:
        return JSONResponse(await session.save_file(body.content))

    # ── Files ──

    @app.get("/api/files/tree")
    async def file_tree(path: str | None = None, session: SessionState = Depends(get_session)) -> JSONResponse:
        return JSONResponse(await asyncio.to_thread(session.filestore.read_directory, path))

    @app.get("/api/files/read")
    async def read_file(path: str, session: SessionState = Depends(get_session)) -> JSONResponse:
        return JSONResponse(await asyncio.to_thread(session.filestore.read_file, path))

    @app.get("/api/files/search")
    async def search_files(query: str = "", session: SessionState = Depends(get_session)) -> JSONResponse:
        return JSONResponse(await asyncio.to_thread(session.filestore.search, query))

    @app.post("/api/files/create")
    async def create_file(body: CreateRequest, session: SessionState = Depends(get_session)) -> JSONResponse:
        return JSONResponse(
            await asyncio.to_thread(session.filestore.create, body.parent_path, body.name, body.content)
        )

    @app.post("/api/files/create-folder")
    async def create_folder(body: CreateRequest, session: SessionState = Depends(get_session)) -> JSONResponse:
        return JSONResponse(await asyncio.to_thread(session.filestore.create_folder, body.parent_path, body.name))

    @app.post("/api/files/rename")
    async def rename(body: RenameRequest, session: SessionState = Depends(get_session)) -> JSONResponse:
        result = await asyncio.to_thread(session.filestore.rename, body.old_path, body.new_name)
        if result["success"]:
            session.follow_path_change(str(sandbox.validate(body.old_path, session.filestore.root)),
                                       result["data"]["path"])
        return JSONResponse(result)

    @app.post("/api/files/move")
    async def move(body: MoveRequest, session: SessionState = Depends(get_session)) -> JSONResponse:
        result = await asyncio.to_thread(session.filestore.move, body.source_path, body.target_dir)
        if result["success"]:
            session.follow_path_change(str(sandbox.validate(body.source_path, session.filestore.root)),
                                       result["data"]["path"])
        return JSONResponse(result)

    @app.post("/api/files/delete")
    async def delete(body: DeleteRequest, session: SessionState = Depends(get_session)) -> JSONResponse:
        result = await asyncio.to_thread(session.filestore.delete, body.path, body.use_trash)
        if result["success"]:
            session.follow_path_change(result["data"]["path"], None)
        return JSONResponse(result)

    @app.post("/api/files/duplicate")
    async def duplicate(body: PathRequest, session: SessionState = Depends(get_session)) -> JSONResponse:
        return JSONResponse(await asyncio.to_thread(session.filestore.duplicate, body.path))

    @app.get("/api/files/clipboard-path")
    async def clipboard_path(
        path: str, relative: bool = False, session: SessionState = Depends(get_session)
    ) -> JSONResponse:
        return JSONResponse(session.filestore.path_for_clipboard(path, relative))

    @app.get("/api/files/wiki-link")
    async def wiki_link(
        target: str, current_file: str | None = None, session: SessionState = Depends(get_session)
    ) -> JSONResponse:
        return JSONResponse(
            await asyncio.to_thread(session.filestore.resolve_wiki_link, target, current_file or session.editor.file_path)
        )

    # ── Settings & recent files ──

    @app.get("/api/settings")
    async def get_settings(session: SessionState = Depends(get_session)) -> JSONResponse:
        return JSONResponse(session.settings_store.current.to_json())

    @app.put("/api/settings")
    async def update_settings(changes: dict[str, Any], session: SessionState = Depends(get_session)) -> JSONResponse:
        result = await session.update_settings(changes)
        return JSONResponse(result, status_code=200 if result["success"] else 400)

    @app.post("/api/settings/validate-directory")
    async def check_directory(body: PathRequest) -> JSONResponse:
        return JSONResponse(await asyncio.to_thread(validate_directory, body.path))

    @app.get("/api/recent")
    async def recent_files(session: SessionState = Depends(get_session)) -> JSONResponse:
        entries = await asyncio.to_thread(session.recent.entries)
        return JSONResponse({"files": [asdict(e) for e in entries]})

    @app.delete("/api/recent")
    async def clear_recent(session: SessionState = Depends(get_session)) -> JSONResponse:
        return JSONResponse(await asyncio.to_thread(session.recent.clear))

    # ── Command port ──

    @app.get("/api/commands")
    async def list_commands(session: SessionState = Depends(get_session)) -> JSONResponse:
        return JSONResponse({"commands": session.commands.available()})

    @app.post("/api/commands/{name}")
    async def run_command(
        name: str, args: dict[str, Any] | None = None, session: SessionState = Depends(get_session)
    ) -> JSONResponse:
        return JSONResponse(await session.commands.invoke(name, session, args))


def run_server(host: str | None = None, port: int | None = None) -> None:
    """Run the service with uvicorn."""
    import uvicorn

    cfg = get_config()

    # logging is configured by mdexplorer.logger; uvicorn must not replace it
    uvicorn.run(
        "mdexplorer.service.server:create_app",
        factory=True,
        host=host or cfg.server_host,
        port=port or cfg.server_port,
        log_level="warning",
        log_config=None,
        reload=False,
    )
