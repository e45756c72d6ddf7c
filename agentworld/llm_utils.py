"""Helper utilities for LLM calls: streaming, retries and timeouts."""

from __future__ import annotations

import asyncio
from typing import Any, AsyncIterator, Callable, Sequence, Union

from mirascope import llm
from mirascope.core import BaseMessageParam
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt

from agentworld.config import Config
from agentworld.local_llm import call_ollama_chat
from agentworld.logging_utils import log_debug, log_error, log_llm
from agentworld.schemas import LLMMessage, TokenUsage

LLM_TIMEOUT_SECONDS = Config.LLM_TIMEOUT_SECONDS

StreamItem = Union[str, TokenUsage]


class EmptyResponseError(RuntimeError):
    """Raised when the model returns no text; triggers a retry."""


def _to_message_params(messages: Sequence[LLMMessage]) -> list[BaseMessageParam]:
    return [BaseMessageParam(role=m.role, content=m.content) for m in messages]


def _call_params(temperature: float | None, max_tokens: int | None) -> dict[str, Any]:
    params: dict[str, Any] = {}
    if temperature is not None:
        params["temperature"] = temperature
    if max_tokens is not None:
        params["max_tokens"] = max_tokens
    return params


def _usage_from(input_tokens: Any, output_tokens: Any) -> TokenUsage | None:
    """Build usage from provider counts; None when the provider reported nothing."""
    if input_tokens is None and output_tokens is None:
        return None
    prompt = int(input_tokens or 0)
    completion = int(output_tokens or 0)
    return TokenUsage(
        input_tokens=prompt,
        output_tokens=completion,
        total_tokens=prompt + completion,
    )


def _is_local(llm_provider: str) -> bool:
    return llm_provider.lower() == "ollama"


async def stream_llm_text(
    *,
    messages: Sequence[LLMMessage],
    llm_provider: str,
    llm_model: str,
    temperature: float | None = None,
    max_tokens: int | None = None,
    timeout: float | None = None,
) -> AsyncIterator[StreamItem]:
    """Stream a chat completion as text fragments.

    Yields ``str`` fragments in arrival order, then at most one ``TokenUsage``
    when the provider reported token counts. Local (Ollama) models are not
    streamed; their full reply arrives as a single fragment.

    Each wait (opening the stream, every next chunk) is bounded by ``timeout``
    seconds, defaulting to ``LLM_TIMEOUT_SECONDS``.

    Raises:
        asyncio.TimeoutError: If the provider stalls longer than the timeout
        LocalLLMError: If the local provider fails
    """
    limit = timeout or LLM_TIMEOUT_SECONDS
    log_debug("llm", f"stream {llm_provider}/{llm_model} ({len(messages)} messages)")

    if _is_local(llm_provider):
        text, counts = await asyncio.wait_for(
            call_ollama_chat(
                messages=messages,
                llm_model=llm_model,
                timeout=limit,
                temperature=temperature,
                max_tokens=max_tokens,
            ),
            timeout=limit,
        )
        yield text
        usage = _usage_from(counts.get("input_tokens"), counts.get("output_tokens"))
        if usage is not None:
            yield usage
        return

    # Mirascope builds the provider request from the returned message list
    @llm.call(
        provider=llm_provider,
        model=llm_model,
        stream=True,
        call_params=_call_params(temperature, max_tokens),
    )
    async def _invoke(params: list[BaseMessageParam]) -> list[BaseMessageParam]:
        return params

    stream = await asyncio.wait_for(_invoke(_to_message_params(messages)), timeout=limit)
    iterator = stream.__aiter__()
    while True:
        try:
            chunk, _ = await asyncio.wait_for(iterator.__anext__(), timeout=limit)
        except StopAsyncIteration:
            break
        if chunk.content:
            yield chunk.content

    usage = _usage_from(
        getattr(stream, "input_tokens", None),
        getattr(stream, "output_tokens", None),
    )
    if usage is not None:
        yield usage


async def generate_llm_text(
    *,
    messages: Sequence[LLMMessage],
    llm_provider: str,
    llm_model: str,
    temperature: float | None = None,
    max_tokens: int | None = None,
    timeout: float | None = None,
    max_attempts: int = 3,
) -> tuple[str, TokenUsage | None]:
    """Return a complete (non-streamed) response.

    Empty replies are retried up to ``max_attempts`` times. Other errors
    (network, auth, timeouts) propagate immediately.

    Returns:
        The response text and provider usage (None when not reported).
    """
    limit = timeout or LLM_TIMEOUT_SECONDS
    use_local_llm = _is_local(llm_provider)

    remote_invoke: Callable[[list[BaseMessageParam]], Any] | None = None
    if not use_local_llm:
        @llm.call(
            provider=llm_provider,
            model=llm_model,
            call_params=_call_params(temperature, max_tokens),
        )
        async def _invoke(params: list[BaseMessageParam]) -> list[BaseMessageParam]:
            return params

        remote_invoke = _invoke

    attempt_number = 0
    async for attempt in AsyncRetrying(
        retry=retry_if_exception_type(EmptyResponseError),
        stop=stop_after_attempt(max_attempts),
        reraise=True,
    ):
        with attempt:
            attempt_number += 1
            if attempt_number > 1:
                log_llm(f"LLM retry {attempt_number}/{max_attempts} for {llm_provider}/{llm_model} (empty reply)")
            try:
                if use_local_llm:
                    text, counts = await asyncio.wait_for(
                        call_ollama_chat(
                            messages=messages,
                            llm_model=llm_model,
                            timeout=limit,
                            temperature=temperature,
                            max_tokens=max_tokens,
                        ),
                        timeout=limit,
                    )
                    usage = _usage_from(counts.get("input_tokens"), counts.get("output_tokens"))
                else:
                    if remote_invoke is None:
                        raise RuntimeError("Remote LLM invoke is not initialized.")
                    response = await asyncio.wait_for(
                        remote_invoke(_to_message_params(messages)),
                        timeout=limit,
                    )
                    text = response.content or ""
                    usage = _usage_from(
                        getattr(response, "input_tokens", None),
                        getattr(response, "output_tokens", None),
                    )
            except asyncio.TimeoutError:
                log_error(f"LLM call timed out after {int(limit)}s for {llm_provider}/{llm_model}.")
                raise

            if not text.strip():
                raise EmptyResponseError(f"{llm_provider}/{llm_model} returned an empty response")
            return text, usage

    # AsyncRetrying with reraise=True always exits via return or raise
    raise RuntimeError("LLM retry mechanism exited unexpectedly")


__all__ = [
    "LLM_TIMEOUT_SECONDS",
    "EmptyResponseError",
    "stream_llm_text",
    "generate_llm_text",
]
