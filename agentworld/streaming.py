"""Streaming coordinator.

Turns one incremental model response into bus events:
``start`` -> ``chunk``* -> ``end`` (with usage) or ``error``. Every event
carries the agent id and a correlation id so observers can reassemble
concurrent streams per agent. The coordinator keeps no state between calls.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import TYPE_CHECKING, List, Optional, Sequence

from agentworld.bus import publish_sse
from agentworld.errors import ModelProviderError
from agentworld.llm_calls import LanguageModel
from agentworld.logging_utils import log_debug, log_error
from agentworld.schemas import Agent, LLMMessage, StreamEvent, TokenUsage, generate_id

if TYPE_CHECKING:
    from agentworld.world import World


@dataclass
class StreamResult:
    """Outcome of a successful stream."""

    text: str
    message_id: str
    usage: TokenUsage


def estimate_tokens(text: str) -> int:
    """Rough token count: one token per four characters, rounded up."""
    return math.ceil(len(text) / 4) if text else 0


def estimate_usage(messages: Sequence[LLMMessage], output: str) -> TokenUsage:
    prompt = sum(estimate_tokens(m.content) for m in messages)
    completion = estimate_tokens(output)
    return TokenUsage(
        input_tokens=prompt,
        output_tokens=completion,
        total_tokens=prompt + completion,
        estimated=True,
    )


class StreamingCoordinator:
    """Publishes a model response on the world bus as it streams."""

    def __init__(self, llm: LanguageModel) -> None:
        self.llm = llm

    def _event(self, world: "World", agent: Agent, message_id: str, type: str, **fields) -> StreamEvent:
        return StreamEvent(
            world_id=world.id,
            agent_id=agent.id,
            type=type,
            message_id=message_id,
            chat_id=world.active_chat_id,
            **fields,
        )

    def _publish_error(
        self, world: "World", agent: Agent, message_id: str, error: ModelProviderError
    ) -> None:
        log_error(f"Stream failed for {agent.id} in {world.id}: {error.reason}")
        publish_sse(world, self._event(world, agent, message_id, "error", error=error.reason))

    async def stream_response(
        self,
        world: "World",
        agent: Agent,
        messages: Sequence[LLMMessage],
        *,
        message_id: Optional[str] = None,
    ) -> StreamResult:
        """Stream ``agent``'s reply to ``messages``.

        Args:
            world: World whose bus receives the events
            agent: Responding agent (supplies the model configuration)
            messages: Prompt built for this attempt
            message_id: Correlation id; generated when omitted

        Returns:
            StreamResult with the concatenated text and usage

        Raises:
            ModelProviderError: After publishing the ``error`` event
        """
        message_id = message_id or generate_id()
        publish_sse(world, self._event(world, agent, message_id, "start"))

        fragments: List[str] = []
        reported: Optional[TokenUsage] = None
        try:
            async for item in self.llm.stream(agent.config, messages):
                if isinstance(item, TokenUsage):
                    reported = item
                    continue
                if not item:
                    continue
                fragments.append(item)
                publish_sse(world, self._event(world, agent, message_id, "chunk", content=item))
        except ModelProviderError as exc:
            self._publish_error(world, agent, message_id, exc)
            raise
        except Exception as exc:
            error = ModelProviderError(
                agent.config.provider,
                agent.config.model,
                str(exc) or type(exc).__name__,
                underlying=exc,
            )
            self._publish_error(world, agent, message_id, error)
            raise error from exc

        text = "".join(fragments)
        if reported is None:
            usage = estimate_usage(messages, text)
        elif not reported.total_tokens:
            usage = reported.model_copy(
                update={"total_tokens": reported.input_tokens + reported.output_tokens}
            )
        else:
            usage = reported
        publish_sse(world, self._event(world, agent, message_id, "end", content=text, usage=usage))
        log_debug("stream", f"{agent.id} streamed {len(fragments)} chunks ({usage.total_tokens} tokens)")
        return StreamResult(text=text, message_id=message_id, usage=usage)


__all__ = ["StreamResult", "StreamingCoordinator", "estimate_tokens", "estimate_usage"]
