"""LiteLLM gateway: the model's "given a transcript, produce the next message" capability."""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from typing import Any, Protocol

from litellm import acompletion

from dynparse.errors import GenerationError

logger = logging.getLogger(__name__)

_DEFAULT_NVIDIA_API_BASE = "https://integrate.api.nvidia.com/v1"
_DEFAULT_OLLAMA_API_BASE = "http://localhost:11434"
_SUPPORTED_PROVIDERS = {"openai", "nvidia", "ollama", "custom"}
_DEFAULT_LLM_TIMEOUT_S = 120.0


class ChatModel(Protocol):
    """Anything that can continue a chat transcript."""

    async def complete(self, messages: list[dict[str, str]]) -> str: ...


def _read_mapping_value(obj: object, key: str) -> object:
    if isinstance(obj, Mapping):
        return obj.get(key)
    return getattr(obj, key, None)


def _extract_content(response: object) -> str:
    choices = _read_mapping_value(response, "choices")
    if not isinstance(choices, list) or not choices:
        return ""

    first_choice = choices[0]
    message = _read_mapping_value(first_choice, "message")
    content = _read_mapping_value(message, "content")
    return content if isinstance(content, str) else ""


class LiteLLMClient:
    """Wrapper around LiteLLM ``acompletion`` returning the raw reply text."""

    def __init__(
        self,
        model_name: str = "gpt-4o",
        provider: str = "openai",
        api_base: str | None = None,
        api_key: str | None = None,
        extra_body: dict[str, object] | None = None,
        request_timeout_s: float = _DEFAULT_LLM_TIMEOUT_S,
        max_tokens: int | None = None,
        temperature: float | None = None,
        top_p: float | None = None,
        **kwargs: Any,
    ) -> None:
        self.model_name = model_name
        self.provider = provider.strip().lower()
        if self.provider not in _SUPPORTED_PROVIDERS:
            raise ValueError(
                f"Unsupported LLM provider '{provider}'. "
                f"Supported providers: {sorted(_SUPPORTED_PROVIDERS)}"
            )
        self.api_base = api_base
        self.api_key = api_key
        self.extra_body = dict(extra_body or {})
        self.request_timeout_s = request_timeout_s
        self.max_tokens = max_tokens
        self.temperature = temperature
        self.top_p = top_p
        self.kwargs = kwargs

    async def complete(self, messages: list[dict[str, str]]) -> str:
        """Send the transcript to the configured model and return the reply content."""
        completion_kwargs: dict[str, Any] = {
            "model": self.model_name,
            "messages": messages,
            "timeout": self.request_timeout_s,
        }
        completion_kwargs.update(self.kwargs)

        if self.max_tokens is not None:
            completion_kwargs["max_tokens"] = self.max_tokens
        if self.temperature is not None:
            completion_kwargs["temperature"] = self.temperature
        if self.top_p is not None:
            completion_kwargs["top_p"] = self.top_p
        if self.extra_body:
            completion_kwargs["extra_body"] = self.extra_body

        logger.debug(
            "LLM request: model=%s provider=%s message_count=%d",
            self.model_name,
            self.provider,
            len(messages),
        )
        try:
            completion_kwargs.update(self._provider_kwargs())
            response = await acompletion(**completion_kwargs)
        except GenerationError:
            raise
        except Exception as err:
            raise GenerationError(f"LLM Gateway Request Failed: {err}") from err

        return _extract_content(response)

    def _provider_kwargs(self) -> dict[str, Any]:
        provider_kwargs: dict[str, Any] = {}

        if self.provider == "nvidia":
            api_base = self.api_base or os.getenv("NVIDIA_API_BASE") or _DEFAULT_NVIDIA_API_BASE
            api_key = self.api_key or os.getenv("NVIDIA_API_KEY")
            if not api_key:
                raise GenerationError("NVIDIA_API_KEY is required when llm_provider='nvidia'.")
            provider_kwargs["api_base"] = api_base
            provider_kwargs["api_key"] = api_key
            return provider_kwargs

        if self.provider == "ollama":
            provider_kwargs["api_base"] = (
                self.api_base or os.getenv("OLLAMA_API_BASE") or _DEFAULT_OLLAMA_API_BASE
            )
            return provider_kwargs

        if self.api_base:
            provider_kwargs["api_base"] = self.api_base
        if self.api_key:
            provider_kwargs["api_key"] = self.api_key
        return provider_kwargs
