"""Async client for Ollama using the official Python SDK."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, AsyncIterator

import httpx
import ollama

from .config import Config, get_config
from .errors import ProviderError

logger = logging.getLogger("mdexplorer.ollama")

_TRANSIENT_MARKERS = (
    "connection reset", "connection refused", "eof", "broken pipe",
    "timeout", "timed out", "network", "connection error",
)


class OllamaClient:
    """Wrapper around the official ollama.AsyncClient."""

    # Ollama has no tool_choice parameter; forcing is done through instructions
    supports_tool_choice = False

    def __init__(self, config: Config | None = None) -> None:
        cfg = config or get_config()
        self.config = cfg
        host = cfg.ollama_url.rstrip("/")
        logger.info(f"Initializing Ollama SDK client for host: {host}, timeout: {cfg.ollama_timeout}s")
        self._client = ollama.AsyncClient(host=host, timeout=cfg.ollama_timeout)
        self._used_models: set[str] = set()

    async def close(self) -> None:
        """Unload the models this client used, then close the HTTP connection."""
        for model in sorted(self._used_models):
            await self.unload_model(model)
        self._used_models.clear()
        await self._client._client.aclose()

    async def unload_model(self, model: str) -> None:
        """Unload model from memory by setting keep_alive to 0."""
        try:
            logger.info(f"Unloading model {model}...")
            await self._client.generate(model=model, prompt="", keep_alive=0)
            logger.info("Model unloaded successfully.")
        except (ollama.ResponseError, httpx.HTTPError, ConnectionError) as e:
            logger.error(f"Failed to unload model {model}: {e}")

    async def health_check(self) -> bool:
        """Check if Ollama is reachable."""
        try:
            await self._client.list()
            return True
        except Exception:
            return False

    @staticmethod
    def _to_ollama_messages(messages: list[dict[str, Any]]) -> list[dict[str, Any]]:
        converted = []
        for msg in messages:
            out: dict[str, Any] = {"role": msg["role"], "content": msg.get("content", "")}
            if msg.get("tool_calls"):
                out["tool_calls"] = [
                    {"function": {"name": tc["function"]["name"], "arguments": tc["function"]["arguments"]}}
                    for tc in msg["tool_calls"]
                ]
            if msg["role"] == "tool" and msg.get("name"):
                out["tool_name"] = msg["name"]
            converted.append(out)
        return converted

    async def chat_stream(
        self,
        model: str,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None = None,
        tool_choice: str = "auto",
        max_retries: int = 2,
    ) -> AsyncIterator[dict[str, Any]]:
        """
        Streaming chat completion using the SDK, normalized to
        ``{"content", "tool_calls"}`` chunks.
        Retries up to max_retries times on transient connection errors,
        but only before the first chunk has been yielded.
        """
        kwargs: dict[str, Any] = {
            "model": model,
            "messages": self._to_ollama_messages(messages),
            "stream": True,
            "options": {
                "num_ctx": self.config.ollama_num_ctx,
                "temperature": self.config.ollama_temperature,
            },
        }
        if tools:
            kwargs["tools"] = tools

        self._used_models.add(model)
        last_err: Exception | None = None
        for attempt in range(max_retries + 1):
            started = False
            try:
                async for chunk in await self._client.chat(**kwargs):
                    started = True
                    chunk_data = chunk.model_dump() if hasattr(chunk, "model_dump") else dict(chunk)
                    message = chunk_data.get("message") or {}
                    tool_calls = []
                    for idx, tc in enumerate(message.get("tool_calls") or []):
                        fn = tc.get("function") or {}
                        tool_calls.append({
                            "id": f"call_{attempt}_{idx}",
                            "function": {"name": fn.get("name", ""), "arguments": dict(fn.get("arguments") or {})},
                        })
                    yield {"content": message.get("content") or "", "tool_calls": tool_calls}
                return

            except ollama.ResponseError as e:
                logger.error(f"Ollama ResponseError (attempt {attempt + 1}): {e.error}")
                raise ProviderError(f"Ollama error: {e.error}")

            except Exception as e:
                err_str = str(e).lower()
                is_transient = any(k in err_str for k in _TRANSIENT_MARKERS)
                if is_transient and not started and attempt < max_retries:
                    wait = 1.5 * (attempt + 1)
                    logger.warning(
                        f"Transient Ollama error (attempt {attempt + 1}/{max_retries + 1}), "
                        f"retrying in {wait:.1f}s: {e}"
                    )
                    last_err = e
                    await asyncio.sleep(wait)
                    continue
                logger.exception(f"Unexpected SDK error: {e}")
                raise ProviderError(f"Model connection error: {e}")

        raise ProviderError(f"Ollama connection failed after {max_retries + 1} attempts: {last_err}")
