"""World runtime object.

A ``World`` is the in-memory counterpart of a ``WorldRecord``: the record's
fields plus the registered agents and the world's own event bus.
"""

from __future__ import annotations

import re
from typing import Dict, List, Optional

from agentworld.bus import WorldEventBus
from agentworld.errors import AgentNotFound, DuplicateAgentName
from agentworld.schemas import Agent, ModelConfig, WorldRecord, utc_now

# Sender names that classify as human or system, never as an agent
RESERVED_SENDER_IDS = frozenset({"human", "you", "system", "world"})


def to_kebab_case(name: str) -> str:
    """Derive a stable identifier from a display name.

    ``"Alice Smith"`` -> ``alice-smith``, ``"myAgent"`` -> ``my-agent``.
    """
    if not name:
        return ""
    value = re.sub(r"\s+", "-", name)
    value = re.sub(r"([a-z])([A-Z])", r"\1-\2", value)
    value = re.sub(r"[^a-zA-Z0-9-]", "-", value)
    value = re.sub(r"-+", "-", value)
    return value.strip("-").lower()


class World:
    """An isolated conversational space.

    Attributes:
        id: World identifier
        name: Display name
        description: Optional free-form description
        turn_limit: Max consecutive agent-triggered model calls per agent
        active_chat_id: Chat currently receiving memory snapshots
        agents: Registered agents keyed by id (insertion ordered)
        bus: The world's private event bus
    """

    def __init__(
        self,
        id: str,
        name: str,
        *,
        description: Optional[str] = None,
        turn_limit: int = 5,
        active_chat_id: Optional[str] = None,
        created_at=None,
        last_updated=None,
    ) -> None:
        if turn_limit < 1:
            raise ValueError(f"turn_limit must be a positive integer (got {turn_limit})")
        self.id = id
        self.name = name
        self.description = description
        self.turn_limit = turn_limit
        self.active_chat_id = active_chat_id
        self.created_at = created_at or utc_now()
        self.last_updated = last_updated or self.created_at
        self.agents: Dict[str, Agent] = {}
        self.bus = WorldEventBus(id)

    @classmethod
    def from_record(cls, record: WorldRecord, agents: Optional[List[Agent]] = None) -> "World":
        world = cls(
            record.id,
            record.name,
            description=record.description,
            turn_limit=record.turn_limit,
            active_chat_id=record.active_chat_id,
            created_at=record.created_at,
            last_updated=record.last_updated,
        )
        for agent in agents or []:
            world.agents[agent.id] = agent
        return world

    def to_record(self) -> WorldRecord:
        return WorldRecord(
            id=self.id,
            name=self.name,
            description=self.description,
            turn_limit=self.turn_limit,
            active_chat_id=self.active_chat_id,
            created_at=self.created_at,
            last_updated=self.last_updated,
        )

    def touch(self) -> None:
        self.last_updated = utc_now()

    # ------------------------------------------------------------------
    # Agent registry
    # ------------------------------------------------------------------

    def add_agent(
        self,
        name: str,
        config: ModelConfig,
        *,
        auto_reply: bool = True,
    ) -> Agent:
        """Create and register an agent whose id derives from ``name``.

        Raises:
            ValueError: If ``name`` yields an empty id
            DuplicateAgentName: If the derived id is already registered
        """
        agent_id = to_kebab_case(name)
        if not agent_id:
            raise ValueError(f"Agent name '{name}' does not produce a usable id")
        if agent_id in RESERVED_SENDER_IDS or agent_id.startswith("user"):
            raise ValueError(f"Agent id '{agent_id}' is reserved for non-agent senders")
        if agent_id in self.agents:
            raise DuplicateAgentName(self.id, agent_id)
        agent = Agent(id=agent_id, name=name, config=config, auto_reply=auto_reply)
        self.agents[agent_id] = agent
        self.touch()
        return agent

    def get_agent(self, agent_id: str) -> Agent:
        agent = self.agents.get(to_kebab_case(agent_id))
        if agent is None:
            raise AgentNotFound(self.id, agent_id)
        return agent

    def remove_agent(self, agent_id: str) -> Agent:
        agent = self.get_agent(agent_id)
        del self.agents[agent.id]
        self.touch()
        return agent

    def __repr__(self) -> str:
        return f"World(id={self.id!r}, agents={list(self.agents)!r}, active_chat_id={self.active_chat_id!r})"


__all__ = ["World", "to_kebab_case"]
