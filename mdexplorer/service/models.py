"""Model allow-list and provider lookup.

Resolving a model id is a pure table lookup. Unknown ids fail closed with
UnknownModelError; there is no fallback model, so a conversation is never
sent to a provider the user did not pick.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any, AsyncIterator, Protocol

from .config import Config, get_config
from .errors import UnknownModelError

logger = logging.getLogger("mdexplorer.models")


class Provider(str, Enum):
    OPENAI = "openai"
    ANTHROPIC = "anthropic"
    OLLAMA = "ollama"


PROVIDER_DISPLAY_NAMES = {
    Provider.OPENAI: "OpenAI",
    Provider.ANTHROPIC: "Anthropic",
    Provider.OLLAMA: "Ollama",
}


@dataclass(frozen=True)
class ModelConfig:
    id: str
    name: str
    provider: Provider
    description: str = ""

    def to_json(self) -> dict[str, Any]:
        data = asdict(self)
        data["provider"] = self.provider.value
        return data


MODELS: tuple[ModelConfig, ...] = (
    ModelConfig("gpt-5.2", "GPT-5.2", Provider.OPENAI, "Latest flagship model with advanced reasoning"),
    ModelConfig("gpt-5-mini", "GPT-5 Mini", Provider.OPENAI, "Fast reasoning model"),
    ModelConfig("gpt-4o", "GPT-4o", Provider.OPENAI, "Multimodal model with vision capabilities"),
    ModelConfig("gpt-4o-mini", "GPT-4o Mini", Provider.OPENAI, "Fast and cost-effective"),
    ModelConfig("claude-sonnet-4-20250514", "Claude Sonnet 4", Provider.ANTHROPIC, "Latest Claude model with enhanced capabilities"),
    ModelConfig("claude-3-5-sonnet-latest", "Claude 3.5 Sonnet", Provider.ANTHROPIC, "Balanced performance and speed"),
    ModelConfig("qwen3:8b", "Qwen3 8B", Provider.OLLAMA, "Local model via Ollama"),
    ModelConfig("llama3.1:8b", "Llama 3.1 8B", Provider.OLLAMA, "Local model via Ollama"),
    ModelConfig("gpt-oss:20b", "gpt-oss 20B", Provider.OLLAMA, "Local open-weight model via Ollama"),
)

ALLOWED_MODEL_IDS = frozenset(m.id for m in MODELS)

_BY_ID = {m.id: m for m in MODELS}


def is_valid_model_id(model_id: str) -> bool:
    return model_id in ALLOWED_MODEL_IDS


def get_model_config(model_id: str) -> ModelConfig:
    """Look up a model by id.

    Raises:
        UnknownModelError: the id is not in the allow-list.
    """
    try:
        return _BY_ID[model_id]
    except (KeyError, TypeError):
        raise UnknownModelError(str(model_id))


def models_grouped_by_provider() -> dict[str, list[dict[str, Any]]]:
    return {
        provider.value: [m.to_json() for m in MODELS if m.provider is provider]
        for provider in Provider
    }


class ChatProvider(Protocol):
    """What the orchestrator needs from a provider client.

    ``chat_stream`` yields normalized chunks ``{"content": str,
    "tool_calls": [{"id", "function": {"name", "arguments": dict}}]}``.
    """

    supports_tool_choice: bool

    def chat_stream(
        self,
        model: str,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None = None,
        tool_choice: str = "auto",
    ) -> AsyncIterator[dict[str, Any]]: ...

    async def close(self) -> None: ...


class ProviderRegistry:
    """Creates one client per provider on first use."""

    def __init__(self, config: Config | None = None) -> None:
        self.config = config or get_config()
        self._clients: dict[Provider, ChatProvider] = {}

    def register(self, provider: Provider, client: ChatProvider) -> None:
        self._clients[provider] = client

    def _create(self, provider: Provider) -> ChatProvider:
        match provider:
            case Provider.OPENAI:
                from .openai_client import OpenAIClient
                return OpenAIClient(self.config)
            case Provider.ANTHROPIC:
                from .anthropic_client import AnthropicClient
                return AnthropicClient(self.config)
            case Provider.OLLAMA:
                from .ollama import OllamaClient
                return OllamaClient(self.config)

    def client(self, provider: Provider) -> ChatProvider:
        client = self._clients.get(provider)
        if client is None:
            client = self._create(provider)
            self._clients[provider] = client
            logger.info(f"Initialized {PROVIDER_DISPLAY_NAMES[provider]} client")
        return client

    def client_for(self, model_id: str) -> tuple[ModelConfig, ChatProvider]:
        model = get_model_config(model_id)
        return model, self.client(model.provider)

    async def close(self) -> None:
        for client in self._clients.values():
            await client.close()
        self._clients.clear()
