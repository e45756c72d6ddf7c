"""Domain exceptions raised by the agent world core.

Lookup failures (world, agent, chat) surface synchronously to the caller.
Model provider failures are raised by the LLM layer and contained inside the
agent pipeline that triggered them.
"""

from __future__ import annotations

from typing import Optional


class AgentWorldError(Exception):
    """Base class for all agent world errors."""


class WorldNotFound(AgentWorldError):
    """Raised when a world id does not exist in storage."""

    def __init__(self, world_id: str) -> None:
        self.world_id = world_id
        super().__init__(
            f"World '{world_id}' not found.\n"
            "Remediation tips:\n"
            "  - Check the world id (ids are the kebab-case form of the name)\n"
            "  - Verify AGENT_WORLD_DATA_PATH points at the expected storage root"
        )


class AgentNotFound(AgentWorldError):
    """Raised when an agent id is not registered in a world."""

    def __init__(self, world_id: str, agent_id: str) -> None:
        self.world_id = world_id
        self.agent_id = agent_id
        super().__init__(f"Agent '{agent_id}' not found in world '{world_id}'.")


class ChatNotFound(AgentWorldError):
    """Raised when a chat id does not belong to the world."""

    def __init__(self, world_id: str, chat_id: str) -> None:
        self.world_id = world_id
        self.chat_id = chat_id
        super().__init__(f"Chat '{chat_id}' not found in world '{world_id}'.")


class MessageNotFound(AgentWorldError):
    """Raised when a message id is not in any agent's memory for the chat."""

    def __init__(self, world_id: str, chat_id: str, message_id: str) -> None:
        self.world_id = world_id
        self.chat_id = chat_id
        self.message_id = message_id
        super().__init__(f"Message '{message_id}' not found in chat '{chat_id}' of world '{world_id}'.")


class DuplicateAgentName(AgentWorldError):
    """Raised when a new agent's derived id collides with an existing agent."""

    def __init__(self, world_id: str, agent_id: str) -> None:
        self.world_id = world_id
        self.agent_id = agent_id
        super().__init__(
            f"An agent with id '{agent_id}' already exists in world '{world_id}'. "
            "Agent ids are derived from names, so choose a different name."
        )


class StorageIOError(AgentWorldError):
    """Raised when the storage backend fails to read or write."""

    def __init__(self, operation: str, underlying: Exception) -> None:
        self.operation = operation
        self.underlying = underlying
        super().__init__(f"Storage operation '{operation}' failed: {underlying}")


class SnapshotCorrupt(AgentWorldError):
    """Raised when a persisted chat snapshot cannot be parsed."""

    def __init__(self, world_id: str, chat_id: str, reason: str) -> None:
        self.world_id = world_id
        self.chat_id = chat_id
        self.reason = reason
        super().__init__(
            f"Chat snapshot '{chat_id}' in world '{world_id}' is corrupt: {reason}"
        )


class ModelProviderError(AgentWorldError):
    """Raised when the language model collaborator fails.

    Non-fatal to the world: the pipeline publishes an ``error`` stream event
    and leaves the agent's memory untouched.
    """

    def __init__(
        self,
        provider: str,
        model: str,
        reason: str,
        *,
        underlying: Optional[Exception] = None,
    ) -> None:
        self.provider = provider
        self.model = model
        self.reason = reason
        self.underlying = underlying
        super().__init__(f"Model provider error ({provider}/{model}): {reason}")


__all__ = [
    "AgentWorldError",
    "WorldNotFound",
    "AgentNotFound",
    "ChatNotFound",
    "DuplicateAgentName",
    "StorageIOError",
    "SnapshotCorrupt",
    "ModelProviderError",
]
