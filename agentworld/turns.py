"""Turn counter for agent-to-agent chains.

Every agent carries ``llm_call_count``, the number of consecutive model
calls since the last human or system input. Chains of agent replies stop
once the count reaches the world's turn limit; a human or system message
starts a fresh budget. All mutations of the counter go through this module.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from agentworld.schemas import Agent, utc_now

if TYPE_CHECKING:
    from agentworld.decision import Sender
    from agentworld.world import World


def should_throttle(world: "World", agent: Agent, sender: "Sender") -> bool:
    """True when ``agent`` exhausted its budget and ``sender`` is another agent."""
    return sender.is_agent and agent.llm_call_count >= world.turn_limit


def record_call(agent: Agent) -> None:
    """Count one model call; taken when the call is decided, before it runs."""
    agent.llm_call_count += 1
    agent.last_llm_call = utc_now()


def release_call(agent: Agent) -> None:
    """Give back a call taken by ``record_call`` that produced nothing."""
    agent.llm_call_count = max(0, agent.llm_call_count - 1)


def reset_on_external_input(agent: Agent, sender: "Sender") -> bool:
    """Reset the counter for human/system input.

    Idempotent within a dispatch: a second call for the same message is a no-op.

    Returns:
        True when the sender is human or system (the counter is now zero).
    """
    if sender.is_agent:
        return False
    reset_turns(agent)
    return True


def reset_turns(agent: Agent) -> None:
    """Start a fresh chain: zero the counter and re-arm the limit notice."""
    agent.llm_call_count = 0
    agent.turn_limit_notified = False


def claim_turn_limit_notice(agent: Agent) -> bool:
    """Return True exactly once per chain; later calls return False until reset."""
    if agent.turn_limit_notified:
        return False
    agent.turn_limit_notified = True
    return True


def turn_limit_notice(world: "World") -> str:
    # Addressed to the human so no agent picks it up
    return (
        f"@human Turn limit reached ({world.turn_limit} LLM calls). "
        "Please take control of the conversation."
    )


__all__ = [
    "should_throttle",
    "record_call",
    "release_call",
    "reset_on_external_input",
    "reset_turns",
    "claim_turn_limit_notice",
    "turn_limit_notice",
]
