"""Utilities for calling locally hosted LLMs (e.g., Ollama)."""

from __future__ import annotations

import asyncio
import json
import os
from typing import Any, Sequence
from urllib import error, request

from agentworld.schemas import LLMMessage

DEFAULT_OLLAMA_BASE_URL = "http://127.0.0.1:11434"
_CHAT_ENDPOINT = "/api/chat"


class LocalLLMError(RuntimeError):
    """Raised when a local LLM invocation fails."""


def _perform_ollama_request(
    payload: dict[str, Any],
    base_url: str,
    timeout: float,
) -> dict[str, Any]:
    """Execute the blocking HTTP request against the Ollama REST API."""

    url = f"{base_url.rstrip('/')}{_CHAT_ENDPOINT}"
    data = json.dumps(payload).encode("utf-8")
    req = request.Request(
        url,
        data=data,
        headers={"Content-Type": "application/json"},
        method="POST",
    )

    try:
        with request.urlopen(req, timeout=timeout) as resp:
            raw = resp.read().decode("utf-8")
    except error.HTTPError as exc:
        body = exc.read().decode("utf-8", errors="ignore") if exc.fp else ""
        message = body or exc.reason
        raise LocalLLMError(
            f"Ollama chat request failed with status {exc.code}: {message}"
        ) from exc
    except error.URLError as exc:
        raise LocalLLMError(
            f"Could not reach Ollama at {url}: {exc.reason}"
        ) from exc

    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise LocalLLMError("Ollama returned non-JSON response.") from exc

    message = parsed.get("message") or {}
    if not message.get("content"):
        raise LocalLLMError("Ollama response did not include assistant content.")

    return parsed


async def call_ollama_chat(
    *,
    messages: Sequence[LLMMessage],
    llm_model: str,
    base_url: str | None = None,
    timeout: float = 120.0,
    temperature: float | None = None,
    max_tokens: int | None = None,
) -> tuple[str, dict[str, int]]:
    """Invoke a local Ollama model.

    Returns:
        The assistant text and the token counts Ollama reported
        (``input_tokens``/``output_tokens``, empty when not reported).
    """

    resolved_base = (
        base_url or os.getenv("OLLAMA_BASE_URL") or DEFAULT_OLLAMA_BASE_URL
    ).rstrip("/")

    if not any(message.role != "system" and message.content.strip() for message in messages):
        raise LocalLLMError("Cannot call Ollama without a user or assistant message.")

    payload: dict[str, Any] = {
        "model": llm_model,
        "messages": [{"role": m.role, "content": m.content} for m in messages],
        "stream": False,
    }
    options: dict[str, Any] = {}
    if temperature is not None:
        options["temperature"] = temperature
    if max_tokens is not None:
        options["num_predict"] = max_tokens
    if options:
        payload["options"] = options

    parsed = await asyncio.to_thread(
        _perform_ollama_request,
        payload,
        resolved_base,
        timeout,
    )

    usage: dict[str, int] = {}
    if isinstance(parsed.get("prompt_eval_count"), int):
        usage["input_tokens"] = parsed["prompt_eval_count"]
    if isinstance(parsed.get("eval_count"), int):
        usage["output_tokens"] = parsed["eval_count"]
    return parsed["message"]["content"], usage


__all__ = ["LocalLLMError", "call_ollama_chat", "DEFAULT_OLLAMA_BASE_URL"]
