"""HTTP surface: status codes, non-streamed turns, permissions, proposals and file routes."""

import asyncio

import httpx
import pytest
from fastapi.testclient import TestClient

from mdexplorer.service.server import create_app

from helpers import MODEL, call, text


@pytest.fixture
def client(config, settings_store, recent, providers):
    app = create_app(config=config, settings_store=settings_store, recent=recent, providers=providers)
    with TestClient(app) as c:
        yield c


def chat(client, message, **extra):
    body = {"messages": [{"role": "user", "content": message}], "model": MODEL, "stream": False}
    body.update(extra)
    return client.post("/api/chat", json=body)


# ═══════════════════════════════════════════════════════════════
# Status and catalogue
# ═══════════════════════════════════════════════════════════════

class TestCatalogue:

    def test_status(self, client, root):
        data = client.get("/api/status").json()
        assert data["status"] == "ok"
        assert data["ollama"]["connected"] is False
        assert data["session"]["rootDirectory"] == str(root)
        assert data["session"]["pendingPermission"] is None

    def test_models(self, client):
        data = client.get("/api/models").json()
        assert data["default"] == MODEL
        assert {m["provider"] for m in data["models"]} == {"openai", "anthropic", "ollama"}

    def test_tools(self, client):
        data = client.get("/api/tools").json()
        assert data["count"] == 5
        assert "proposeDocumentChange" not in data["gated"]


# ═══════════════════════════════════════════════════════════════
# Chat
# ═══════════════════════════════════════════════════════════════

class TestChat:

    def test_invalid_model(self, client, provider):
        resp = chat(client, "hi", model="gpt-99")
        assert resp.status_code == 400
        assert resp.json() == {"success": False, "error": "Invalid model"}
        assert provider.calls == []

    def test_missing_message(self, client):
        resp = client.post("/api/chat", json={"messages": [], "model": MODEL, "stream": False})
        assert resp.status_code == 400
        assert resp.json()["code"] == "validation_error"

    def test_non_streamed_turn(self, client, provider):
        provider.responses.append([text("Hi!")])
        events = chat(client, "hello").json()["events"]
        assert events == [{"type": "text", "content": "Hi!"}, {"type": "done", "reason": "complete"}]
        history = client.get("/api/history").json()
        assert [m["role"] for m in history["messages"]] == ["user", "assistant"]
        assert history["ui"][1]["parts"] == [{"type": "text", "text": "Hi!"}]

    def test_history_seeds_empty_conversation(self, client, provider):
        provider.responses.append([text("ok")])
        client.post("/api/chat", json={
            "messages": [
                {"role": "user", "content": "earlier"},
                {"role": "assistant", "parts": [{"type": "text", "text": "earlier answer"}]},
                {"role": "user", "content": "now"},
            ],
            "model": MODEL,
            "stream": False,
        })
        sent = [m["content"] for m in provider.calls[0]["messages"][1:]]
        assert sent == ["earlier", "earlier answer", "now"]

    def test_file_outside_root_is_forbidden(self, client):
        resp = chat(client, "hi", filePath="/etc/passwd", fileContent="x")
        assert resp.status_code == 403
        assert resp.json()["code"] == "access_denied"

    def test_root_directory_that_is_a_file(self, client, doc):
        events = chat(client, "hi", rootDirectory=str(doc)).json()["events"]
        assert events[0]["type"] == "error"
        assert events[0]["code"] == "validation_error"
        assert events[-1] == {"type": "done", "reason": "error"}

    @pytest.mark.asyncio
    async def test_editor_is_synced_only_once_the_turn_runs(self, config, settings_store, recent, providers, provider, doc):
        app = create_app(config=config, settings_store=settings_store, recent=recent, providers=providers)
        session = app.state.session
        provider.responses.append([text("ok")])
        transport = httpx.ASGITransport(app=app)
        async with httpx.AsyncClient(transport=transport, base_url="http://test") as ac:
            async with session.lock:
                pending = asyncio.create_task(ac.post("/api/chat", json={
                    "message": "hi", "model": MODEL, "stream": False,
                    "filePath": str(doc), "fileContent": "typed",
                }))
                await asyncio.sleep(0.05)
                assert not pending.done()
                assert session.editor.file_path is None
            resp = await pending
        assert resp.json()["events"][-1]["reason"] == "complete"
        assert session.editor.file_path == str(doc)
        assert session.editor.content == "typed"

    def test_reset(self, client, provider):
        provider.responses.append([text("Hi!")])
        chat(client, "hello")
        client.post("/api/reset")
        assert client.get("/api/history").json()["messages"] == []


# ═══════════════════════════════════════════════════════════════
# Permissions
# ═══════════════════════════════════════════════════════════════

class TestPermissions:

    def _ask(self, client, provider, doc):
        provider.responses.append([call("readMarkdownFile", {"filePath": str(doc), "reason": "context"})])
        events = chat(client, "what is in a.md?").json()["events"]
        return events[-1]["permissionRequest"]["id"]

    def test_approve_resumes_turn(self, client, provider, doc):
        request_id = self._ask(client, provider, doc)
        assert client.get("/api/permissions/pending").json()["pending"]["id"] == request_id

        provider.responses.append([text("It has a title.")])
        events = client.post(f"/api/permissions/{request_id}/approve?stream=false").json()["events"]

        assert [e["type"] for e in events] == ["tool_start", "tool_end", "text", "done"]
        assert client.get("/api/permissions/pending").json()["pending"] is None

    def test_resolving_twice_conflicts(self, client, provider, doc):
        request_id = self._ask(client, provider, doc)
        client.post(f"/api/permissions/{request_id}/deny?stream=false")
        resp = client.post(f"/api/permissions/{request_id}/approve?stream=false")
        assert resp.status_code == 409
        assert resp.json()["code"] == "permission_state"

    def test_unknown_request(self, client):
        assert client.post("/api/permissions/nope/deny?stream=false").status_code == 409


class TestExecuteTool:

    def test_missing_tool_name(self, client):
        resp = client.post("/api/chat/execute-tool", json={"parameters": {}})
        assert resp.status_code == 400
        assert resp.json()["error"] == "Tool name is required"

    def test_unknown_tool(self, client):
        resp = client.post("/api/chat/execute-tool", json={"toolName": "rmrf", "parameters": {}})
        assert resp.status_code == 400
        assert resp.json()["code"] == "unknown_tool"

    def test_read(self, client, doc):
        resp = client.post("/api/chat/execute-tool", json={
            "toolName": "readMarkdownFile", "parameters": {"filePath": str(doc)},
        })
        assert resp.json()["data"]["fileName"] == "a.md"

    def test_root_outside_sandbox(self, client):
        resp = client.post("/api/chat/execute-tool", json={
            "toolName": "listFileTree", "parameters": {}, "rootDirectory": "/",
        })
        assert resp.status_code == 200
        assert resp.json()["code"] == "access_denied"


# ═══════════════════════════════════════════════════════════════
# Proposals and the editor slot
# ═══════════════════════════════════════════════════════════════

class TestChanges:

    def _propose(self, client, provider, doc, content="# Better\n"):
        provider.responses.extend([
            [call("proposeDocumentChange", {"path": str(doc), "newContent": content, "summary": "s"})],
            [text("Proposed.")],
        ])
        return chat(client, "improve it", filePath=str(doc), fileContent="# Title\n").json()["events"]

    def test_accept_writes_and_cleans_editor(self, client, provider, doc):
        self._propose(client, provider, doc)
        pending = client.get("/api/changes/pending").json()["pendingChange"]
        assert pending["originalContent"] == "# Title\n"

        result = client.post("/api/changes/accept", json={"filePath": str(doc)}).json()

        assert result["success"] is True
        assert doc.read_text(encoding="utf-8") == "# Better\n"
        editor = client.get("/api/editor").json()
        assert editor["content"] == "# Better\n"
        assert editor["isDirty"] is False
        assert client.get("/api/changes/pending").json()["pendingChange"] is None

    def test_reject(self, client, provider, doc):
        self._propose(client, provider, doc)
        assert client.post("/api/changes/reject").json() == {"success": True}
        assert doc.read_text(encoding="utf-8").startswith("# Title\n\nFirst")
        assert client.post("/api/changes/reject").json() == {"success": False}

    def test_opening_other_file_discards_stale_proposal(self, client, provider, doc, root):
        (root / "b.md").write_text("b", encoding="utf-8")
        self._propose(client, provider, doc)
        client.post("/api/editor/open", json={"path": str(root / "b.md")})
        assert client.get("/api/changes/pending").json()["pendingChange"] is None

    def test_editor_round_trip(self, client, doc):
        opened = client.post("/api/editor/open", json={"path": str(doc)}).json()
        assert opened["data"]["filePath"] == str(doc)
        edited = client.put("/api/editor", json={"content": "changed"}).json()
        assert edited["isDirty"] is True
        saved = client.post("/api/editor/save", json={}).json()
        assert saved["success"] is True
        assert doc.read_text(encoding="utf-8") == "changed"
        assert client.get("/api/editor").json()["isDirty"] is False

    def test_save_without_open_file(self, client):
        assert client.post("/api/editor/save", json={"content": "x"}).json()["code"] == "validation_error"


# ═══════════════════════════════════════════════════════════════
# Files, settings, recent, commands
# ═══════════════════════════════════════════════════════════════

class TestFileRoutes:

    def test_create_then_conflict(self, client, root):
        body = {"parentPath": str(root), "name": "new.md", "content": "x"}
        assert client.post("/api/files/create", json=body).json()["success"] is True
        again = client.post("/api/files/create", json=body).json()
        assert again["error"] == "A file with this name already exists"

    def test_read_traversal(self, client):
        result = client.get("/api/files/read", params={"path": "../../etc/passwd"}).json()
        assert result["success"] is False
        assert result["code"] == "access_denied"

    def test_rename_moves_open_editor(self, client, doc, root):
        client.post("/api/editor/open", json={"path": str(doc)})
        client.post("/api/files/rename", json={"oldPath": str(doc), "newName": "b.md"})
        assert client.get("/api/editor").json()["filePath"] == str(root / "b.md")

    def test_delete_closes_open_editor(self, client, doc):
        client.post("/api/editor/open", json={"path": str(doc)})
        result = client.post("/api/files/delete", json={"path": str(doc), "useTrash": False}).json()
        assert result["success"] is True
        assert client.get("/api/editor").json()["filePath"] is None
        assert client.get("/api/recent").json()["files"] == []

    def test_tree_and_search(self, client, doc):
        assert client.get("/api/files/tree").json()["data"][0]["name"] == "a.md"
        assert client.get("/api/files/search", params={"query": "A."}).json()["data"][0]["path"] == str(doc)

    def test_settings_update(self, client):
        resp = client.put("/api/settings", json={"excludedFolders": ["drafts"]})
        assert resp.status_code == 200
        assert client.get("/api/settings").json()["excludedFolders"] == ["drafts"]
        assert client.put("/api/settings", json={"color": "red"}).status_code == 400

    def test_settings_update_with_uncreatable_root(self, client, root, doc):
        resp = client.put("/api/settings", json={"rootDirectory": str(doc / "sub")})
        assert resp.status_code == 400
        assert resp.json()["code"] == "validation_error"
        assert client.get("/api/settings").json()["rootDirectory"] == str(root)

    def test_commands(self, client, doc):
        names = {c["name"] for c in client.get("/api/commands").json()["commands"]}
        assert {"save-file", "open-file", "accept-change", "clear-chat"} <= names
        opened = client.post("/api/commands/open-file", json={"path": str(doc)}).json()
        assert opened["success"] is True
        assert client.post("/api/commands/no-such").status_code == 404
