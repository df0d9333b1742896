"""Conversation orchestrator: streaming, tool dispatch, permission pauses and step limits."""

import json

import pytest

from mdexplorer.service.errors import ProviderError
from mdexplorer.service.models import Provider

from helpers import MODEL, FakeProvider, call, text


async def collect(events):
    return [e async for e in events]


def types(events):
    return [e.type for e in events]


def last_tool_result(session):
    return json.loads(next(m for m in reversed(session.conversation.messages) if m["role"] == "tool")["content"])


# ═══════════════════════════════════════════════════════════════
# Plain turns
# ═══════════════════════════════════════════════════════════════

class TestPlainTurn:

    @pytest.mark.asyncio
    async def test_text_reply_completes(self, session, provider):
        provider.responses.append([text("Hello "), text("there.")])
        events = await collect(session.orchestrator.process_message("What is this about?", MODEL))

        assert types(events) == ["text", "text", "done"]
        assert events[-1].data == {"reason": "complete"}
        assert session.conversation.messages[-1] == {"role": "assistant", "content": "Hello there."}
        assert provider.calls[0]["tool_choice"] == "auto"
        assert provider.calls[0]["messages"][0]["role"] == "system"

    @pytest.mark.asyncio
    async def test_unknown_model_fails_closed(self, session, provider):
        events = await collect(session.orchestrator.process_message("hi", "gpt-99"))
        assert types(events) == ["error", "done"]
        assert events[0].data["code"] == "unknown_model"
        assert provider.calls == []

    @pytest.mark.asyncio
    async def test_empty_response(self, session, provider):
        provider.responses.append([])
        events = await collect(session.orchestrator.process_message("hi", MODEL))
        assert types(events) == ["error", "done"]
        assert events[-1].data["reason"] == "empty"

    @pytest.mark.asyncio
    async def test_provider_error_is_reported(self, session, providers):
        class BrokenProvider(FakeProvider):
            async def chat_stream(self, model, messages, tools=None, tool_choice="auto"):
                raise ProviderError("OpenAI error: boom")
                yield

        providers.register(Provider.OPENAI, BrokenProvider())
        events = await collect(session.orchestrator.process_message("hi", MODEL))
        assert types(events) == ["error", "done"]
        assert events[0].data == {"message": "OpenAI error: boom", "code": "provider_error"}

    @pytest.mark.asyncio
    async def test_stop_keeps_partial_text(self, session, provider):
        provider.responses.append([text("partial "), text("never seen")])
        gen = session.orchestrator.process_message("hi", MODEL)
        first = await gen.__anext__()
        session.orchestrator.stop()
        rest = await collect(gen)

        assert first.data == {"content": "partial "}
        assert types(rest) == ["done"]
        assert rest[0].data["reason"] == "stopped"
        assert session.conversation.messages[-1] == {"role": "assistant", "content": "partial "}


# ═══════════════════════════════════════════════════════════════
# Proposals and forced tool use
# ═══════════════════════════════════════════════════════════════

class TestProposalTurn:

    @pytest.mark.asyncio
    async def test_edit_request_forces_tool_on_first_step_only(self, session, provider, doc):
        session.sync_editor(str(doc), "# Title\nlive content\n")
        provider.responses.extend([
            [call("proposeDocumentChange", {"path": str(doc), "newContent": "# Fixed\n", "summary": "Fix"})],
            [text("I proposed a fix.")],
        ])

        events = await collect(session.orchestrator.process_message("Please fix the heading", MODEL))

        assert [c["tool_choice"] for c in provider.calls] == ["required", "auto"]
        assert types(events) == ["tool_start", "proposal", "tool_end", "text", "done"]
        proposal = events[1].data
        assert proposal["originalContent"] == "# Title\nlive content\n"
        assert proposal["proposedContent"] == "# Fixed\n"
        assert proposal["additions"] == 1
        assert session.pipeline.pending.file_path == str(doc)
        assert doc.read_text(encoding="utf-8") == "# Title\n\nFirst paragraph.\n"

    @pytest.mark.asyncio
    async def test_system_prompt_carries_live_editor(self, session, provider, doc):
        session.sync_editor(str(doc), "first draft")
        provider.responses.extend([
            [call("proposeDocumentChange", {"path": str(doc), "newContent": "x", "summary": "s"})],
            [text("ok")],
        ])
        gen = session.orchestrator.process_message("What do you think?", MODEL)
        async for event in gen:
            if event.type == "tool_end":
                session.editor.edit("second draft")

        assert "first draft" in provider.calls[0]["messages"][0]["content"]
        assert str(doc) in provider.calls[0]["messages"][0]["content"]
        assert "second draft" in provider.calls[1]["messages"][0]["content"]

    @pytest.mark.asyncio
    async def test_model_result_omits_proposed_content(self, session, provider, doc):
        provider.responses.extend([
            [call("proposeDocumentChange", {"path": str(doc), "newContent": "big body", "summary": "s"})],
            [text("ok")],
        ])
        await collect(session.orchestrator.process_message("hi", MODEL))
        result = last_tool_result(session)
        assert result["type"] == "proposal"
        assert "proposedContent" not in result

    @pytest.mark.asyncio
    async def test_provider_without_tool_choice_support(self, session, provider, doc):
        provider.supports_tool_choice = False
        provider.responses.append([text("ok")])
        await collect(session.orchestrator.process_message("edit this", MODEL))
        assert provider.calls[0]["tool_choice"] == "auto"
        assert "ACTION REQUIRED" in provider.calls[0]["messages"][0]["content"]

    @pytest.mark.asyncio
    async def test_step_limit(self, session, provider, doc):
        step = [call("proposeDocumentChange", {"path": str(doc), "newContent": "x", "summary": "s"})]
        provider.responses.extend([step] * 10)

        events = await collect(session.orchestrator.process_message("hi", MODEL))

        assert len(provider.calls) == session.config.agent_max_steps
        assert events[-2].type == "error"
        assert events[-2].data["message"] == f"Reached the step limit ({session.config.agent_max_steps}) for this turn."
        assert events[-1].data == {"reason": "max_steps"}

    @pytest.mark.asyncio
    async def test_unknown_tool_is_reported_to_model(self, session, provider):
        provider.responses.extend([[call("formatDisk", {})], [text("sorry")]])
        events = await collect(session.orchestrator.process_message("hi", MODEL))
        tool_end = next(e for e in events if e.type == "tool_end")
        assert tool_end.data["success"] is False
        tool_msg = next(m for m in session.conversation.messages if m["role"] == "tool")
        assert json.loads(tool_msg["content"])["code"] == "unknown_tool"
        assert events[-1].data["reason"] == "complete"


# ═══════════════════════════════════════════════════════════════
# Permission round trip
# ═══════════════════════════════════════════════════════════════

class TestPermissionTurn:

    async def _request_read(self, session, provider, doc):
        provider.responses.append([
            call("readMarkdownFile", {"filePath": str(doc), "reason": "Need the intro"}, "call_read"),
        ])
        return await collect(session.orchestrator.process_message("What does a.md say?", MODEL))

    @pytest.mark.asyncio
    async def test_gated_call_pauses_turn(self, session, provider, doc):
        events = await self._request_read(session, provider, doc)

        assert types(events) == ["tool_start", "permission_request", "tool_end", "done"]
        pending = session.gate.pending
        assert pending is not None
        assert pending.tool_call_id == "call_read"
        assert events[1].data["id"] == pending.id
        assert events[-1].data["reason"] == "awaiting_permission"
        assert events[-1].data["permissionRequest"]["id"] == pending.id
        result = last_tool_result(session)
        assert result["requiresPermission"] is True
        assert result["requestId"] == pending.id
        assert "First paragraph" not in json.dumps(session.conversation.messages)

    @pytest.mark.asyncio
    async def test_approval_runs_tool_and_resumes(self, session, provider, doc):
        await self._request_read(session, provider, doc)
        request = session.gate.approve(session.gate.pending.id)
        provider.responses.append([text("It has a title.")])

        events = await collect(session.orchestrator.resume_after_permission(request, MODEL))

        assert types(events) == ["tool_start", "tool_end", "text", "done"]
        assert events[1].data["success"] is True
        feedback = provider.calls[-1]["messages"][-1]
        assert feedback["role"] == "user"
        assert feedback["content"].startswith('Tool "readMarkdownFile" executed successfully. Result: ')
        assert "First paragraph." in feedback["content"]

    @pytest.mark.asyncio
    async def test_denial_resumes_with_message(self, session, provider, doc):
        await self._request_read(session, provider, doc)
        request = session.gate.deny(session.gate.pending.id)
        provider.responses.append([text("Understood.")])

        events = await collect(session.orchestrator.resume_after_permission(request, MODEL))

        assert types(events) == ["text", "done"]
        assert provider.calls[-1]["messages"][-1]["content"] == (
            'Permission denied for tool "readMarkdownFile". The user did not approve the request.'
        )

    @pytest.mark.asyncio
    async def test_second_gated_call_is_rejected_as_busy(self, session, provider):
        provider.responses.append([{"content": "", "tool_calls": [
            {"id": "c1", "function": {"name": "listFileTree", "arguments": {"reason": "r"}}},
            {"id": "c2", "function": {"name": "searchMarkdownFiles", "arguments": {"reason": "r"}}},
        ]}])

        events = await collect(session.orchestrator.process_message("hi", MODEL))

        assert types(events).count("permission_request") == 1
        assert session.gate.pending.tool_name == "listFileTree"
        tool_msgs = [m for m in session.conversation.messages if m["role"] == "tool"]
        assert [m["tool_call_id"] for m in tool_msgs] == ["c1", "c2"]
        assert json.loads(tool_msgs[1]["content"])["code"] == "permission_state"
