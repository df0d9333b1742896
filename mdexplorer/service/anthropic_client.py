"""Anthropic Messages provider with streamed tool use."""

from __future__ import annotations

import json
import logging
import os
from typing import Any, AsyncIterator

import anthropic
from anthropic import AsyncAnthropic

from .config import Config, get_config
from .errors import ProviderError

logger = logging.getLogger("mdexplorer.anthropic")


class AnthropicClient:
    """Wrapper around anthropic.AsyncAnthropic. Uses ANTHROPIC_API_KEY from the environment."""

    supports_tool_choice = True

    def __init__(self, config: Config | None = None) -> None:
        cfg = config or get_config()
        self.config = cfg
        # the SDK only complains about a missing key on the first request
        if not os.environ.get("ANTHROPIC_API_KEY"):
            raise ProviderError("Anthropic client not configured: ANTHROPIC_API_KEY is not set")
        try:
            self._client = AsyncAnthropic(timeout=cfg.anthropic_timeout, max_retries=2)
        except anthropic.AnthropicError as e:
            raise ProviderError(f"Anthropic client not configured: {e}")

    async def close(self) -> None:
        await self._client.close()

    @staticmethod
    def _to_anthropic_messages(messages: list[dict[str, Any]]) -> tuple[str, list[dict[str, Any]]]:
        """Split out the system prompt and convert the rest to content blocks.

        Tool results travel as user turns. Consecutive turns of the same role
        are merged since the API requires user and assistant to alternate.
        """
        system_parts: list[str] = []
        converted: list[dict[str, Any]] = []
        for msg in messages:
            role = msg["role"]
            content = msg.get("content") or ""
            if role == "system":
                if content:
                    system_parts.append(content)
                continue

            blocks: list[dict[str, Any]] = []
            if role == "tool":
                role = "user"
                blocks.append({
                    "type": "tool_result",
                    "tool_use_id": msg.get("tool_call_id", ""),
                    "content": content,
                })
            else:
                if content:
                    blocks.append({"type": "text", "text": content})
                for tc in msg.get("tool_calls") or []:
                    blocks.append({
                        "type": "tool_use",
                        "id": tc["id"],
                        "name": tc["function"]["name"],
                        "input": tc["function"]["arguments"],
                    })
            if not blocks:
                continue

            if converted and converted[-1]["role"] == role:
                converted[-1]["content"].extend(blocks)
            else:
                converted.append({"role": role, "content": blocks})
        return "\n\n".join(system_parts), converted

    @staticmethod
    def _to_anthropic_tools(tools: list[dict[str, Any]]) -> list[dict[str, Any]]:
        return [
            {
                "name": tool["function"]["name"],
                "description": tool["function"].get("description", ""),
                "input_schema": tool["function"]["parameters"],
            }
            for tool in tools
        ]

    @staticmethod
    def _parse_arguments(raw: str) -> dict[str, Any]:
        if not raw:
            return {}
        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning(f"Model sent malformed tool input ({len(raw)} chars)")
            return {}
        return parsed if isinstance(parsed, dict) else {}

    async def chat_stream(
        self,
        model: str,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None = None,
        tool_choice: str = "auto",
    ) -> AsyncIterator[dict[str, Any]]:
        system, converted = self._to_anthropic_messages(messages)
        kwargs: dict[str, Any] = {
            "model": model,
            "max_tokens": self.config.anthropic_max_tokens,
            "messages": converted,
            "stream": True,
        }
        if system:
            kwargs["system"] = system
        if tools:
            kwargs["tools"] = self._to_anthropic_tools(tools)
            kwargs["tool_choice"] = {"type": "any" if tool_choice == "required" else "auto"}

        # tool_use input arrives as partial JSON keyed by content block index
        pending: dict[int, dict[str, str]] = {}
        try:
            stream = await self._client.messages.create(**kwargs)
            async for event in stream:
                if event.type == "content_block_start":
                    block = event.content_block
                    if block.type == "tool_use":
                        pending[event.index] = {"id": block.id, "name": block.name, "arguments": ""}
                elif event.type == "content_block_delta":
                    delta = event.delta
                    if delta.type == "text_delta" and delta.text:
                        yield {"content": delta.text, "tool_calls": []}
                    elif delta.type == "input_json_delta" and event.index in pending:
                        pending[event.index]["arguments"] += delta.partial_json or ""
        except anthropic.APIError as e:
            logger.error(f"Anthropic API error: {e}")
            raise ProviderError(f"Anthropic error: {e}")

        if pending:
            yield {
                "content": "",
                "tool_calls": [
                    {
                        "id": slot["id"] or f"call_{idx}",
                        "function": {"name": slot["name"], "arguments": self._parse_arguments(slot["arguments"])},
                    }
                    for idx, slot in sorted(pending.items())
                ],
            }
