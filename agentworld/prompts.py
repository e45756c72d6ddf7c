"""Prompt building for agent responses.

The model sees the agent's system prompt followed by a bounded tail of its
memory. Inbound messages from other participants are prefixed with the
sender so the model can tell speakers apart.
"""

from __future__ import annotations

from typing import List, Optional

from agentworld.config import Config
from agentworld.schemas import Agent, AgentMessage, LLMMessage

DEFAULT_MEMORY_WINDOW = 50


def memory_window(memory: List[AgentMessage], window: Optional[int]) -> List[AgentMessage]:
    """Return the last ``window`` entries; ``None`` or 0 keeps the full history."""
    if not window:
        return list(memory)
    if window < 0:
        raise ValueError(f"memory window must be >= 0 (got {window})")
    return list(memory[-window:])


def format_memory_entry(entry: AgentMessage) -> LLMMessage:
    if entry.role == "assistant":
        return LLMMessage(role="assistant", content=entry.content)
    # Human text is passed through unchanged; other speakers are labelled
    if entry.sender == "human":
        return LLMMessage(role="user", content=entry.content)
    return LLMMessage(role="user", content=f"[{entry.sender}]: {entry.content}")


def build_llm_messages(
    agent: Agent,
    *,
    window: Optional[int] = -1,
) -> List[LLMMessage]:
    """Build the provider-neutral message list for ``agent``.

    Args:
        agent: Agent about to respond (its memory already holds the trigger)
        window: Memory entries to include; ``-1`` uses ``Config.MEMORY_WINDOW``,
            ``None``/0 sends the full history

    Returns:
        System message (when configured) followed by the memory tail.
    """
    if window == -1:
        window = Config.MEMORY_WINDOW
    messages: List[LLMMessage] = []
    system_prompt = agent.config.system_prompt.strip()
    if system_prompt:
        messages.append(LLMMessage(role="system", content=system_prompt))
    messages.extend(format_memory_entry(entry) for entry in memory_window(agent.memory, window))
    return messages


__all__ = ["DEFAULT_MEMORY_WINDOW", "memory_window", "format_memory_entry", "build_llm_messages"]
