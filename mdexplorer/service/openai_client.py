"""OpenAI chat-completions provider with streamed tool calls."""

from __future__ import annotations

import json
import logging
from typing import Any, AsyncIterator

import openai
from openai import AsyncOpenAI

from .config import Config, get_config
from .errors import ProviderError

logger = logging.getLogger("mdexplorer.openai")


class OpenAIClient:
    """Wrapper around openai.AsyncOpenAI. Uses OPENAI_API_KEY from the environment."""

    supports_tool_choice = True

    def __init__(self, config: Config | None = None) -> None:
        cfg = config or get_config()
        kwargs: dict[str, Any] = {"timeout": cfg.openai_timeout, "max_retries": 2}
        if cfg.openai_base_url:
            kwargs["base_url"] = cfg.openai_base_url
        try:
            self._client = AsyncOpenAI(**kwargs)
        except openai.OpenAIError as e:
            # raised when OPENAI_API_KEY is missing
            raise ProviderError(f"OpenAI client not configured: {e}")

    async def close(self) -> None:
        await self._client.close()

    @staticmethod
    def _to_openai_messages(messages: list[dict[str, Any]]) -> list[dict[str, Any]]:
        converted: list[dict[str, Any]] = []
        for msg in messages:
            role = msg["role"]
            if role == "tool":
                converted.append({
                    "role": "tool",
                    "tool_call_id": msg.get("tool_call_id", ""),
                    "content": msg.get("content", ""),
                })
            elif role == "assistant" and msg.get("tool_calls"):
                converted.append({
                    "role": "assistant",
                    "content": msg.get("content") or None,
                    "tool_calls": [
                        {
                            "id": tc["id"],
                            "type": "function",
                            "function": {
                                "name": tc["function"]["name"],
                                "arguments": json.dumps(tc["function"]["arguments"]),
                            },
                        }
                        for tc in msg["tool_calls"]
                    ],
                })
            else:
                converted.append({"role": role, "content": msg.get("content", "")})
        return converted

    @staticmethod
    def _parse_arguments(raw: str) -> dict[str, Any]:
        if not raw:
            return {}
        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning(f"Model sent malformed tool arguments ({len(raw)} chars)")
            return {}
        return parsed if isinstance(parsed, dict) else {}

    async def chat_stream(
        self,
        model: str,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None = None,
        tool_choice: str = "auto",
    ) -> AsyncIterator[dict[str, Any]]:
        kwargs: dict[str, Any] = {
            "model": model,
            "messages": self._to_openai_messages(messages),
            "stream": True,
        }
        if tools:
            kwargs["tools"] = tools
            kwargs["tool_choice"] = tool_choice

        # Tool call fragments arrive keyed by index and are only complete at the end
        pending: dict[int, dict[str, str]] = {}
        try:
            stream = await self._client.chat.completions.create(**kwargs)
            async for chunk in stream:
                if not chunk.choices:
                    continue
                delta = chunk.choices[0].delta
                for tc in delta.tool_calls or []:
                    slot = pending.setdefault(tc.index, {"id": "", "name": "", "arguments": ""})
                    if tc.id:
                        slot["id"] = tc.id
                    if tc.function is not None:
                        slot["name"] += tc.function.name or ""
                        slot["arguments"] += tc.function.arguments or ""
                if delta.content:
                    yield {"content": delta.content, "tool_calls": []}
        except openai.APIError as e:
            logger.error(f"OpenAI API error: {e}")
            raise ProviderError(f"OpenAI error: {e}")

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
