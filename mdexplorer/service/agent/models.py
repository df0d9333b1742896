from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

DEFAULT_MAX_STEPS = 5


def now_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class AgentEvent:
    # "text", "tool_start", "tool_end", "permission_request", "proposal", "error", "done"
    type: str
    data: dict[str, Any] = field(default_factory=dict)

    def to_json(self) -> dict[str, Any]:
        return {"type": self.type, **self.data}


@dataclass(frozen=True)
class ToolCallRequest:
    tool_name: str
    parameters: dict[str, Any]
    call_id: str = ""

    @property
    def reason(self) -> str | None:
        reason = self.parameters.get("reason")
        return reason if isinstance(reason, str) else None


class PermissionStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    DENIED = "denied"


@dataclass(frozen=True)
class ToolPermissionRequest:
    """A gated tool call surfaced for approval. Never mutated; resolving yields a copy."""

    tool_name: str
    action: str
    reason: str
    parameters: dict[str, Any]
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    timestamp: int = field(default_factory=now_ms)
    status: PermissionStatus = PermissionStatus.PENDING
    tool_call_id: str = ""

    def to_json(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "toolName": self.tool_name,
            "action": self.action,
            "reason": self.reason,
            "parameters": dict(self.parameters),
            "timestamp": self.timestamp,
            "status": self.status.value,
        }


@dataclass(frozen=True)
class PendingChange:
    file_path: str
    original_content: str
    proposed_content: str
    summary: str
    timestamp: int = field(default_factory=now_ms)

    def to_json(self) -> dict[str, Any]:
        return {
            "filePath": self.file_path,
            "originalContent": self.original_content,
            "proposedContent": self.proposed_content,
            "summary": self.summary,
            "timestamp": self.timestamp,
        }


@dataclass
class Conversation:
    """Append-only message log for one session; cleared wholesale by reset()."""

    messages: list[dict[str, Any]] = field(default_factory=list)

    def add_message(
        self,
        role: str,
        content: str,
        tool_calls: list[dict[str, Any]] | None = None,
    ) -> None:
        msg: dict[str, Any] = {"role": role, "content": content}
        if tool_calls:
            msg["tool_calls"] = tool_calls
        self.messages.append(msg)

    def add_tool_result(self, tool_name: str, content: str, tool_call_id: str | None = None) -> None:
        msg: dict[str, Any] = {"role": "tool", "name": tool_name, "content": content}
        if tool_call_id:
            msg["tool_call_id"] = tool_call_id
        self.messages.append(msg)

    def last_user_message(self) -> str:
        for msg in reversed(self.messages):
            if msg.get("role") == "user":
                return msg.get("content") or ""
        return ""

    def reset(self) -> None:
        self.messages = []

    def __len__(self) -> int:
        return len(self.messages)

    def to_ui(self) -> list[dict[str, Any]]:
        """Render messages as typed parts: text, tool-call, tool-result."""
        rendered = []
        for msg in self.messages:
            parts: list[dict[str, Any]] = []
            if msg["role"] == "tool":
                parts.append({
                    "type": "tool-result",
                    "toolName": msg.get("name", ""),
                    "toolCallId": msg.get("tool_call_id"),
                    "output": msg.get("content", ""),
                })
            else:
                if msg.get("content"):
                    parts.append({"type": "text", "text": msg["content"]})
                for tc in msg.get("tool_calls") or []:
                    parts.append({
                        "type": "tool-call",
                        "toolName": tc["function"]["name"],
                        "toolCallId": tc.get("id"),
                        "input": tc["function"]["arguments"],
                    })
            rendered.append({"role": msg["role"], "parts": parts})
        return rendered


@dataclass
class EditorState:
    """The single mutable "current file content" slot.

    Readers go through ``content`` at the moment of use. ``commit_saved`` is
    the only transition that marks the document clean after a write.
    """

    file_path: str | None = None
    content: str = ""
    is_dirty: bool = False
    version: int = 0
    last_saved: int | None = None

    def open(self, file_path: str, content: str) -> None:
        self.file_path = file_path
        self.content = content
        self.is_dirty = False
        self.version += 1

    def edit(self, content: str) -> None:
        if content != self.content:
            self.content = content
            self.is_dirty = True

    def close(self) -> None:
        self.file_path = None
        self.content = ""
        self.is_dirty = False
        self.version += 1

    def commit_saved(self, file_path: str, content: str) -> None:
        # content, then clean, then version: one synchronous step, no await in between
        self.file_path = file_path
        self.content = content
        self.is_dirty = False
        self.version += 1
        self.last_saved = now_ms()

    def to_json(self) -> dict[str, Any]:
        return {
            "filePath": self.file_path,
            "content": self.content,
            "isDirty": self.is_dirty,
            "version": self.version,
            "lastSaved": self.last_saved,
        }
