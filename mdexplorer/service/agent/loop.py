from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Any, AsyncIterator, Callable

from ..config import Config, get_config
from ..errors import MDExplorerError, UnknownToolError
from ..models import ProviderRegistry
from .models import (
    DEFAULT_MAX_STEPS,
    AgentEvent,
    Conversation,
    EditorState,
    PermissionStatus,
    ToolCallRequest,
    ToolPermissionRequest,
)
from .permissions import PermissionGate, approval_message, busy_result, denial_message
from .prompts import build_system_prompt, should_force_tool_use
from .proposals import ChangeProposalPipeline
from .tool_defs import get_tool_definitions
from .tools import ToolRegistry

logger = logging.getLogger("mdexplorer.agent")

_PREVIEW_CHARS = 2000


class ConversationOrchestrator:
    """Bounded tool-use loop for one session.

    The editor slot and the sandbox root are read through accessors at the
    moment of use, so a turn never acts on content captured earlier.
    """

    def __init__(
        self,
        providers: ProviderRegistry,
        tools: ToolRegistry,
        gate: PermissionGate,
        pipeline: ChangeProposalPipeline,
        conversation: Conversation,
        editor: Callable[[], EditorState],
        root: Callable[[], Path],
        config: Config | None = None,
    ) -> None:
        self.config = config or get_config()
        self.providers = providers
        self.tools = tools
        self.gate = gate
        self.pipeline = pipeline
        self.conversation = conversation
        self._editor = editor
        self._root = root
        self._tool_defs = get_tool_definitions()
        self._stop_requested = False

    def stop(self) -> None:
        logger.warning("Stop requested for the running turn")
        self._stop_requested = True

    async def process_message(
        self,
        user_message: str,
        model_id: str,
        selected_text: str | None = None,
    ) -> AsyncIterator[AgentEvent]:
        self._stop_requested = False
        self.conversation.add_message("user", user_message)
        async for event in self._run(model_id, selected_text):
            yield event

    async def resume_after_permission(
        self,
        request: ToolPermissionRequest,
        model_id: str,
        selected_text: str | None = None,
    ) -> AsyncIterator[AgentEvent]:
        """Continue the conversation once ``request`` has left the gate.

        Approved requests run through the separate execution entry point first;
        either way the model is told the outcome as a user message.
        """
        self._stop_requested = False
        if request.status is PermissionStatus.APPROVED:
            yield AgentEvent(type="tool_start", data={
                "tool_id": request.tool_call_id, "tool": request.tool_name,
                "arguments": request.parameters, "approved": True,
            })
            try:
                result = await asyncio.to_thread(
                    self.tools.execute_approved, request.tool_name, request.parameters, self._root()
                )
            except UnknownToolError as e:
                result = e.to_result()
            yield AgentEvent(type="tool_end", data={
                "tool_id": request.tool_call_id,
                "tool": request.tool_name,
                "success": bool(result.get("success")),
                "result_preview": self._preview(result),
            })
            message = approval_message(request.tool_name, result)
        else:
            message = denial_message(request.tool_name)

        self.conversation.add_message("user", message)
        async for event in self._run(model_id, selected_text):
            yield event

    async def _run(self, model_id: str, selected_text: str | None) -> AsyncIterator[AgentEvent]:
        max_steps = self.config.agent_max_steps or DEFAULT_MAX_STEPS
        try:
            model, client = self.providers.client_for(model_id)
            force_tool_use = should_force_tool_use(self.conversation.last_user_message())
            if force_tool_use:
                logger.info("Edit keywords detected, forcing tool use for this turn")

            step = 0
            while step < max_steps:
                if self._stop_requested:
                    yield AgentEvent(type="done", data={"reason": "stopped"})
                    return
                step += 1

                # forcing only applies to the first step, later steps may just confirm
                forced = force_tool_use and step == 1
                editor = self._editor()
                system_prompt = build_system_prompt(
                    editor.file_path,
                    editor.content if editor.file_path else None,
                    selected_text,
                    force_tool_use=forced,
                )
                messages = [{"role": "system", "content": system_prompt}, *self.conversation.messages]
                tool_choice = "required" if forced and client.supports_tool_choice else "auto"

                content_acc = ""
                tool_calls_acc: list[dict[str, Any]] = []
                async for chunk in client.chat_stream(model.id, messages, self._tool_defs, tool_choice):
                    if self._stop_requested:
                        break
                    if chunk.get("content"):
                        content_acc += chunk["content"]
                        yield AgentEvent(type="text", data={"content": chunk["content"]})
                    if chunk.get("tool_calls"):
                        tool_calls_acc.extend(chunk["tool_calls"])

                if self._stop_requested:
                    # aborted mid-stream: keep the text, drop the unexecuted calls
                    if content_acc:
                        self.conversation.add_message("assistant", content_acc)
                    yield AgentEvent(type="done", data={"reason": "stopped"})
                    return

                if not content_acc and not tool_calls_acc:
                    yield AgentEvent(type="error", data={"message": "Empty response from model."})
                    yield AgentEvent(type="done", data={"reason": "empty"})
                    return

                self.conversation.add_message("assistant", content_acc, tool_calls_acc)

                if not tool_calls_acc:
                    yield AgentEvent(type="done", data={"reason": "complete"})
                    return

                awaiting: ToolPermissionRequest | None = None
                handled = 0
                try:
                    for tc in tool_calls_acc:
                        events, request = await self._handle_tool_call(tc, awaiting)
                        handled += 1
                        if request is not None:
                            awaiting = request
                        for event in events:
                            yield event
                finally:
                    # every tool call gets a result, even when the stream is torn down
                    for tc in tool_calls_acc[handled:]:
                        self.conversation.add_tool_result(
                            tc["function"]["name"],
                            json.dumps({"success": False, "error": "Aborted before execution"}),
                            tc.get("id"),
                        )

                if awaiting is not None:
                    yield AgentEvent(type="done", data={
                        "reason": "awaiting_permission",
                        "permissionRequest": awaiting.to_json(),
                    })
                    return

            yield AgentEvent(type="error", data={"message": f"Reached the step limit ({max_steps}) for this turn."})
            yield AgentEvent(type="done", data={"reason": "max_steps"})

        except MDExplorerError as e:
            logger.error(f"Turn failed: {e}")
            yield AgentEvent(type="error", data={"message": str(e), "code": e.code})
            yield AgentEvent(type="done", data={"reason": "error"})
        except Exception as e:
            logger.exception("Fatal error in agent loop")
            yield AgentEvent(type="error", data={"message": f"Fatal Agent Error: {str(e)}"})
            yield AgentEvent(type="done", data={"reason": "error"})

    async def _handle_tool_call(
        self,
        tc: dict[str, Any],
        awaiting: ToolPermissionRequest | None,
    ) -> tuple[list[AgentEvent], ToolPermissionRequest | None]:
        """Run one tool call and record its result before any event leaves the loop."""
        call = ToolCallRequest(
            tool_name=tc["function"]["name"],
            parameters=tc["function"].get("arguments") or {},
            call_id=tc.get("id") or "",
        )
        name, args, call_id = call.tool_name, call.parameters, call.call_id
        events = [AgentEvent(type="tool_start", data={"tool_id": call_id, "tool": name, "arguments": args})]
        opened: ToolPermissionRequest | None = None

        try:
            result = await asyncio.to_thread(self.tools.invoke, name, args, self._root())
        except UnknownToolError as e:
            logger.warning(f"Model called unknown tool {name!r}")
            result = e.to_result()

        model_result = result
        if result.get("success") and result.get("type") == "proposal":
            change = self.pipeline.stage(result["path"], result["proposedContent"], result.get("summary", ""))
            events.append(AgentEvent(type="proposal", data=self.pipeline.diff() or change.to_json()))
            model_result = {k: v for k, v in result.items() if k != "proposedContent"}

        elif result.get("requiresPermission"):
            pending = awaiting or self.gate.pending
            if pending is not None:
                model_result = result = busy_result(pending)
            else:
                opened = self.gate.open(
                    name,
                    args,
                    action=result["permissionRequest"].get("action", "execute"),
                    reason=call.reason or "",
                    tool_call_id=call_id,
                )
                events.append(AgentEvent(type="permission_request", data=opened.to_json()))
                model_result = {
                    **result,
                    "requestId": opened.id,
                    "message": "Permission requested from the user. The result will follow once they decide.",
                }

        self.conversation.add_tool_result(name, json.dumps(model_result, ensure_ascii=False, default=str), call_id)
        events.append(AgentEvent(type="tool_end", data={
            "tool_id": call_id,
            "tool": name,
            "success": bool(result.get("success")),
            "requiresPermission": bool(result.get("requiresPermission")),
            "result_preview": self._preview(model_result),
        }))
        return events, opened

    @staticmethod
    def _preview(result: dict[str, Any]) -> str:
        text = json.dumps(result, ensure_ascii=False, default=str)
        return text if len(text) <= _PREVIEW_CHARS else text[:_PREVIEW_CHARS] + "..."
