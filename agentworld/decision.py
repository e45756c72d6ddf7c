"""Response decision engine.

Decides whether an agent must call its model for an incoming bus message.
The rules, in order:

1. An agent never responds to its own message.
2. The sender is classified once as human, agent or system.
3. Human/system input resets the agent's turn counter.
4. Leading mentions address a message: only the *first* mentioned agent
   responds. Without leading mentions, only human/system messages are
   broadcasts that every agent answers; agent chatter does not chain.
5. An agent that would respond to another agent but has exhausted its turn
   budget is throttled instead.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Optional

from agentworld.mentions import extract_leading_mentions, is_human_sender
from agentworld.schemas import Agent, WorldMessageEvent
from agentworld.turns import reset_on_external_input, should_throttle

if TYPE_CHECKING:
    from agentworld.world import World


class SenderKind(str, Enum):
    HUMAN = "human"
    AGENT = "agent"
    SYSTEM = "system"


@dataclass(frozen=True)
class Sender:
    """Classified message sender. ``agent_id`` is set only for agents."""

    kind: SenderKind
    agent_id: Optional[str] = None

    @property
    def is_agent(self) -> bool:
        return self.kind is SenderKind.AGENT

    @property
    def is_external(self) -> bool:
        return self.kind is not SenderKind.AGENT


class Decision(str, Enum):
    RESPOND = "respond"
    SKIP = "skip"
    THROTTLED = "throttled"


def normalize_sender(raw: Optional[str]) -> str:
    """Canonical sender string for publishing.

    ``HUMAN``/``user*``/``you`` become ``human``, ``SYSTEM`` becomes ``system``
    and ``WORLD`` becomes ``world``; agent ids are returned trimmed.
    """
    value = (raw or "").strip()
    lowered = value.lower()
    if not value:
        return "system"
    if is_human_sender(lowered):
        return "human"
    if lowered in ("system", "world"):
        return lowered
    return value


def classify_sender(raw: Optional[str]) -> Sender:
    normalized = normalize_sender(raw)
    if normalized == "human":
        return Sender(SenderKind.HUMAN)
    if normalized in ("system", "world"):
        return Sender(SenderKind.SYSTEM)
    return Sender(SenderKind.AGENT, normalized.lower())


def decide(world: "World", agent: Agent, message: WorldMessageEvent) -> Decision:
    """Evaluate the response rules for ``agent`` and ``message``.

    Resets the agent's turn counter as a side effect for human/system input.

    Args:
        world: World the message was published in (supplies the turn limit)
        agent: Candidate responder
        message: Incoming bus message

    Returns:
        RESPOND, SKIP, or THROTTLED when the agent would respond but is out of turns.
    """
    if message.sender.lower() == agent.id.lower():
        return Decision.SKIP

    sender = classify_sender(message.sender)
    reset_on_external_input(agent, sender)

    mentions = extract_leading_mentions(message.content)
    if mentions:
        respond = mentions[0] == agent.id.lower()
    else:
        respond = sender.is_external

    if not respond:
        return Decision.SKIP
    if should_throttle(world, agent, sender):
        return Decision.THROTTLED
    return Decision.RESPOND


def should_respond(world: "World", agent: Agent, message: WorldMessageEvent) -> bool:
    return decide(world, agent, message) is Decision.RESPOND


__all__ = [
    "SenderKind",
    "Sender",
    "Decision",
    "normalize_sender",
    "classify_sender",
    "decide",
    "should_respond",
]
