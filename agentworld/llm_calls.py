"""
Language model collaborator used by the agent pipeline.

This module provides:
- The LanguageModel protocol (stream + generate) the core depends on
- MirascopeLanguageModel, the provider-agnostic implementation

Implementations are stateless: every call receives the agent's model
configuration and the full message list. Any provider failure is raised
as ModelProviderError so the pipeline can contain it.
"""

from typing import AsyncIterator, Protocol, Sequence, Union, runtime_checkable

from agentworld.errors import ModelProviderError
from agentworld.logging_utils import log_llm
from agentworld.schemas import LLMMessage, ModelConfig, TokenUsage
from .llm_utils import generate_llm_text, stream_llm_text


@runtime_checkable
class LanguageModel(Protocol):
    """Interface the core expects from a model provider."""

    def stream(
        self, config: ModelConfig, messages: Sequence[LLMMessage]
    ) -> AsyncIterator[Union[str, TokenUsage]]:
        """Yield text fragments, optionally followed by one TokenUsage."""
        ...

    async def generate(self, config: ModelConfig, messages: Sequence[LLMMessage]) -> str:
        """Return the complete response text."""
        ...


# ============================================================================
# Mirascope implementation
# ============================================================================


class MirascopeLanguageModel:
    """LanguageModel backed by mirascope (remote) and Ollama (local).

    Args:
        timeout: Per-wait timeout in seconds (None uses LLM_TIMEOUT_SECONDS)
        max_attempts: Attempts for ``generate`` when the model replies empty
    """

    def __init__(self, *, timeout: float | None = None, max_attempts: int = 3) -> None:
        self.timeout = timeout
        self.max_attempts = max_attempts

    async def stream(
        self, config: ModelConfig, messages: Sequence[LLMMessage]
    ) -> AsyncIterator[Union[str, TokenUsage]]:
        log_llm(f"Streaming {config.provider}/{config.model}")
        try:
            async for item in stream_llm_text(
                messages=messages,
                llm_provider=config.provider,
                llm_model=config.model,
                temperature=config.temperature,
                max_tokens=config.max_tokens,
                timeout=self.timeout,
            ):
                yield item
        except ModelProviderError:
            raise
        except Exception as exc:
            raise ModelProviderError(
                config.provider, config.model, str(exc) or type(exc).__name__, underlying=exc
            ) from exc

    async def generate(self, config: ModelConfig, messages: Sequence[LLMMessage]) -> str:
        log_llm(f"Generating with {config.provider}/{config.model}")
        try:
            text, _ = await generate_llm_text(
                messages=messages,
                llm_provider=config.provider,
                llm_model=config.model,
                temperature=config.temperature,
                max_tokens=config.max_tokens,
                timeout=self.timeout,
                max_attempts=self.max_attempts,
            )
        except Exception as exc:
            raise ModelProviderError(
                config.provider, config.model, str(exc) or type(exc).__name__, underlying=exc
            ) from exc
        return text


__all__ = ["LanguageModel", "MirascopeLanguageModel"]
