# =============================================================================
# LLM Providers — Text Completion for Workers and the Composer
# =============================================================================
#
# Three callers need a language model: the analysis worker (insights over
# the financial snapshot), the statement extractor (JSON out of a text
# attachment) and the reply composer. All three send a system prompt plus
# one user turn and read back text and token usage, so that is the whole
# interface.
#
# DESIGN DECISION: Protocol, not a base class.
# Workers type against LLMProvider; tests hand them an AsyncMock whose
# complete() returns an LLMResponse.
#
# DESIGN DECISION: Built once by main.build_coordinator().
# There is no module-level client. The factory below reads Settings and
# the result is injected into every worker that calls a model.
#
#   LLMProvider (Protocol)
#   ├── AnthropicProvider        — system prompt via `system=`
#   ├── OpenAICompatibleProvider — system prompt as a leading message
#   └── create_llm_provider()
# =============================================================================

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Protocol

from finassist.config import Settings

logger = logging.getLogger(__name__)


@dataclass
class LLMResponse:
    content: str
    model: str
    input_tokens: int
    output_tokens: int


class LLMProvider(Protocol):
    async def complete(
        self,
        messages: list[dict[str, str]],
        system: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> LLMResponse:
        """
        One completion.

        Args:
            messages: "user" / "assistant" turns. The system prompt is
                passed separately, never as a message.
            system: Instructions for this call (see composer.SYSTEM_PROMPTS).
            temperature: Per-call override; the extractor uses 0.0.
            max_tokens: Per-call override of the configured output budget.
        """
        ...


# ---------------------------------------------------------------------------
# Anthropic
# ---------------------------------------------------------------------------


class AnthropicProvider:
    def __init__(
        self,
        api_key: str,
        model: str,
        temperature: float = 0.3,
        max_tokens: int = 1024,
    ) -> None:
        from anthropic import AsyncAnthropic

        if not api_key:
            raise ValueError(
                "Anthropic provider selected but no key set "
                "(LLM_API_KEY or ANTHROPIC_API_KEY)"
            )

        self._client = AsyncAnthropic(api_key=api_key)
        self._model = model
        self._temperature = temperature
        self._max_tokens = max_tokens
        logger.info("LLM provider: anthropic, model=%s", model)

    async def complete(
        self,
        messages: list[dict[str, str]],
        system: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> LLMResponse:
        kwargs: dict = {
            "model": self._model,
            "messages": messages,
            "max_tokens": max_tokens or self._max_tokens,
            "temperature": self._temperature if temperature is None else temperature,
        }
        if system:
            kwargs["system"] = system

        response = await self._client.messages.create(**kwargs)

        # Replies can arrive split over several text blocks
        content = "".join(
            block.text for block in response.content if block.type == "text"
        )
        return LLMResponse(
            content=content,
            model=response.model,
            input_tokens=response.usage.input_tokens,
            output_tokens=response.usage.output_tokens,
        )


# ---------------------------------------------------------------------------
# OpenAI-compatible chat completions (OpenAI, DeepSeek, Qwen, ...)
# ---------------------------------------------------------------------------


class OpenAICompatibleProvider:
    """
    Any chat-completions endpoint; LLM_BASE_URL selects the vendor.

        LLM_PROVIDER=openai_compatible
        LLM_BASE_URL=https://api.deepseek.com/v1
        LLM_MODEL=deepseek-chat
    """

    def __init__(
        self,
        api_key: str,
        model: str,
        base_url: str | None = None,
        temperature: float = 0.3,
        max_tokens: int = 1024,
    ) -> None:
        from openai import AsyncOpenAI

        if not api_key:
            raise ValueError(
                "openai_compatible provider selected but no key set "
                "(LLM_API_KEY or OPENAI_API_KEY)"
            )

        if base_url:
            self._client = AsyncOpenAI(api_key=api_key, base_url=base_url)
        else:
            self._client = AsyncOpenAI(api_key=api_key)
        self._model = model
        self._temperature = temperature
        self._max_tokens = max_tokens
        logger.info(
            "LLM provider: openai_compatible, model=%s, base_url=%s",
            model, base_url or "default",
        )

    async def complete(
        self,
        messages: list[dict[str, str]],
        system: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> LLMResponse:
        chat = [{"role": "system", "content": system}] if system else []
        chat.extend(messages)

        response = await self._client.chat.completions.create(
            model=self._model,
            messages=chat,
            max_tokens=max_tokens or self._max_tokens,
            temperature=self._temperature if temperature is None else temperature,
        )

        usage = response.usage
        return LLMResponse(
            content=response.choices[0].message.content or "",
            model=response.model or self._model,
            input_tokens=usage.prompt_tokens if usage else 0,
            output_tokens=usage.completion_tokens if usage else 0,
        )


def create_llm_provider(
    config: Settings,
) -> AnthropicProvider | OpenAICompatibleProvider:
    """
    Provider named by `config.llm_provider`.

    Raises:
        ValueError: Unknown provider name or missing API key. Raised at
            startup, before the app accepts requests.
    """
    if config.llm_provider == "anthropic":
        return AnthropicProvider(
            api_key=config.llm_api_key or config.anthropic_api_key,
            model=config.llm_model,
            temperature=config.llm_temperature,
            max_tokens=config.llm_max_tokens,
        )
    if config.llm_provider == "openai_compatible":
        return OpenAICompatibleProvider(
            api_key=config.llm_api_key or config.openai_api_key,
            model=config.llm_model,
            base_url=config.llm_base_url,
            temperature=config.llm_temperature,
            max_tokens=config.llm_max_tokens,
        )
    raise ValueError(
        f"Unknown LLM provider '{config.llm_provider}' "
        "(expected 'anthropic' or 'openai_compatible')"
    )
