"""
pixie/llm/providers.py

Provider adapters: one streaming-completion contract over every supported
LLM vendor, plus the closed registry of providers and their model tables.

  openai: OpenAI Chat Completions (AsyncOpenAI)
  groq  : Groq through its OpenAI-compatible endpoint (AsyncOpenAI + base_url)
  ollama: local/remote Ollama server (ollama.AsyncClient)

Adding a model only requires a new ModelSpec in PROVIDERS. Adding a vendor
requires a BaseProvider subclass and a new PROVIDERS entry.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Any, AsyncIterator, ClassVar, Literal

import httpx
import openai
from ollama import AsyncClient as OllamaAsyncClient
from openai import AsyncOpenAI

from .errors import (
    LLMAuthError,
    LLMConfigError,
    LLMConnectionError,
    LLMError,
    LLMProviderError,
    LLMRateLimitError,
)

logger = logging.getLogger(__name__)

ProviderName = Literal["openai", "groq", "ollama"]
ChatMessage = dict[str, str]


@dataclass(frozen=True)
class ModelSpec:
    name: str
    max_tokens: int
    temperature: float = 0.7
    reasoning: bool = False  # o-series: no temperature, max_completion_tokens


@dataclass
class ChatOptions:
    temperature: float = 0.7
    max_tokens: int = 1000
    system: str | None = None


# ── Base adapter ────────────────────────────────────────────────────────────

class BaseProvider:
    name: ClassVar[str] = "base"
    credential_env: ClassVar[str] = ""

    def __init__(self, model: ModelSpec, options: dict[str, Any] | None = None):
        self.model = model
        self.options = dict(options or {})

    def validate_config(self) -> str:
        """Return the provider credential or fail before any network call."""
        value = self.options.get("api_key") or os.getenv(self.credential_env)
        if not value:
            raise LLMConfigError(
                f"{self.name.upper()} credentials are not configured (set {self.credential_env})"
            )
        return value

    @staticmethod
    def order_messages(messages: list[ChatMessage], system: str | None = None) -> list[ChatMessage]:
        """
        Move every system message to the front, merged into one message led
        by `system`. Relative order of all other messages is preserved.
        """
        system_parts = [system] if system else []
        system_parts += [m["content"] for m in messages if m.get("role") == "system" and m.get("content")]
        others = [
            {"role": m["role"], "content": m["content"]}
            for m in messages
            if m.get("role") != "system"
        ]
        if not system_parts:
            return others
        return [{"role": "system", "content": "\n\n".join(system_parts)}, *others]

    async def stream_chat(
        self, messages: list[ChatMessage], options: ChatOptions | None = None
    ) -> AsyncIterator[str]:
        """Yield text fragments of one completion. Each call is a fresh request."""
        options = options or ChatOptions()
        credential = self.validate_config()
        ordered = self.order_messages(messages, options.system)
        max_tokens = max(1, min(options.max_tokens, self.model.max_tokens))

        try:
            async for text in self._stream(credential, ordered, options.temperature, max_tokens):
                if text:
                    yield text
        except LLMError:
            raise
        except Exception as e:
            logger.error("Error in %s stream: %s", self.name, e)
            raise self._wrap_error(e) from e

    async def _stream(
        self, credential: str, messages: list[ChatMessage], temperature: float, max_tokens: int
    ) -> AsyncIterator[str]:
        raise NotImplementedError
        yield  # pragma: no cover

    def _wrap_error(self, error: Exception) -> LLMProviderError:
        message = f"AI Provider Error ({self.name}): {error}"
        if isinstance(error, (ConnectionError, httpx.ConnectError, httpx.TimeoutException)):
            return LLMConnectionError(message)
        return LLMProviderError(message)


# ── OpenAI-compatible adapters ──────────────────────────────────────────────

class OpenAIProvider(BaseProvider):
    name = "openai"
    credential_env = "OPENAI_API_KEY"
    base_url: ClassVar[str | None] = None

    def build_client(self, api_key: str) -> AsyncOpenAI:
        return AsyncOpenAI(api_key=api_key, base_url=self.options.get("base_url") or self.base_url)

    async def _stream(
        self, credential: str, messages: list[ChatMessage], temperature: float, max_tokens: int
    ) -> AsyncIterator[str]:
        client = self.build_client(credential)
        create_kw: dict[str, Any] = dict(model=self.model.name, messages=messages, stream=True)
        if self.model.reasoning:
            create_kw["max_completion_tokens"] = max_tokens
        else:
            create_kw["temperature"] = temperature
            create_kw["max_tokens"] = max_tokens

        async for chunk in await client.chat.completions.create(**create_kw):
            if choice := (chunk.choices[0] if chunk.choices else None):
                yield choice.delta.content or ""

    def _wrap_error(self, error: Exception) -> LLMProviderError:
        message = f"AI Provider Error ({self.name}): {error}"
        if isinstance(error, openai.RateLimitError):
            return LLMRateLimitError(message)
        if isinstance(error, openai.AuthenticationError):
            return LLMAuthError(message)
        if isinstance(error, openai.APIConnectionError):
            return LLMConnectionError(message)
        return super()._wrap_error(error)


class GroqProvider(OpenAIProvider):
    name = "groq"
    credential_env = "GROQ_API_KEY"
    base_url = "https://api.groq.com/openai/v1"


# ── Ollama adapter ──────────────────────────────────────────────────────────

class OllamaProvider(BaseProvider):
    """The Ollama "credential" is the server URL; OLLAMA_API_KEY is optional."""

    name = "ollama"
    credential_env = "OLLAMA_HOST"

    async def _stream(
        self, credential: str, messages: list[ChatMessage], temperature: float, max_tokens: int
    ) -> AsyncIterator[str]:
        api_key = os.getenv("OLLAMA_API_KEY")
        headers = {"Authorization": f"Bearer {api_key}"} if api_key else {}
        client = OllamaAsyncClient(host=credential, headers=headers)

        async for part in await client.chat(
            model=self.model.name,
            messages=messages,
            stream=True,
            options={"temperature": temperature, "num_predict": max_tokens},
        ):
            yield part.message.content or ""


# ── Registry ────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class ProviderSpec:
    provider: type[BaseProvider]
    models: dict[str, ModelSpec]
    default_model: str


def _models(*specs: ModelSpec) -> dict[str, ModelSpec]:
    return {s.name: s for s in specs}


PROVIDERS: dict[str, ProviderSpec] = {
    "openai": ProviderSpec(
        provider=OpenAIProvider,
        models=_models(
            ModelSpec("gpt-4.1", 8192),
            ModelSpec("gpt-4.1-mini", 4096),
            ModelSpec("gpt-4.1-nano", 2048),
            ModelSpec("gpt-4o", 8192),
            ModelSpec("gpt-4o-mini", 4096),
            ModelSpec("gpt-4-turbo", 4096),
            ModelSpec("gpt-4", 8192),
            ModelSpec("o1", 8192, reasoning=True),
            ModelSpec("o1-mini", 4096, reasoning=True),
            ModelSpec("o1-preview", 4096, reasoning=True),
        ),
        default_model="gpt-4-turbo",
    ),
    "groq": ProviderSpec(
        provider=GroqProvider,
        models=_models(
            ModelSpec("meta-llama/llama-4-scout-17b-16e-instruct", 32768),
            ModelSpec("deepseek-r1-distill-llama-70b", 32768),
            ModelSpec("llama-3.3-70b-versatile", 32768),
            ModelSpec("llama-3.1-8b-instant", 32768),
            ModelSpec("mistral-saba-24b", 32768),
            ModelSpec("qwen-qwq-32b", 32768),
            ModelSpec("mixtral-8x7b-32768", 32768),
            ModelSpec("gemma2-9b-it", 32768),
        ),
        default_model="mixtral-8x7b-32768",
    ),
    "ollama": ProviderSpec(
        provider=OllamaProvider,
        models=_models(
            ModelSpec("llama3.1:8b", 8192),
            ModelSpec("qwen3:14b", 8192),
            ModelSpec("gemma3:12b", 8192),
            ModelSpec("mistral:7b", 8192),
        ),
        default_model="llama3.1:8b",
    ),
}


def resolve_model(provider_name: str, model_name: str | None = None) -> tuple[ProviderSpec, ModelSpec]:
    spec = PROVIDERS.get(provider_name)
    if spec is None:
        raise LLMConfigError(f"Invalid provider: {provider_name}")
    model = spec.models.get(model_name or spec.default_model)
    if model is None:
        raise LLMConfigError(f"Invalid model {model_name} for provider {provider_name}")
    return spec, model


def build_provider(
    provider_name: str = "openai",
    model_name: str | None = None,
    options: dict[str, Any] | None = None,
) -> BaseProvider:
    spec, model = resolve_model(provider_name, model_name)
    return spec.provider(model, options)


def all_model_names() -> list[str]:
    return [m for spec in PROVIDERS.values() for m in spec.models]
