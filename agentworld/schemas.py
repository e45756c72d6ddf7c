"""
Pydantic schemas for the agent world core.

All persisted and published data structures are defined here.

Design Philosophy:
- Records (WorldRecord, Agent, ChatSnapshot) are what storage backends read/write
- Events (WorldMessageEvent, StreamEvent, SystemEvent) are what the world bus carries
- Every event is stamped with its world_id so buses can refuse foreign traffic
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Literal, Optional
from uuid import uuid4

from pydantic import BaseModel, Field


def utc_now() -> datetime:
    """Timezone-aware current time used for every timestamp field."""
    return datetime.now(timezone.utc)


def generate_id() -> str:
    """Unique identifier for messages and stream correlation."""
    return uuid4().hex


# ============================================================================
# Agent Schemas
# ============================================================================


class AgentStatus(str, Enum):
    """Lifecycle status of an agent."""

    ACTIVE = "active"
    INACTIVE = "inactive"
    ERROR = "error"


class ModelConfig(BaseModel):
    """Model configuration for an agent.

    Opaque to the routing core; only the LLM collaborator interprets it.
    """

    provider: str = Field(..., description="LLM provider name (openai, anthropic, ollama, ...)")
    model: str = Field(..., description="Provider model identifier")
    system_prompt: str = Field("", description="System prompt prepended to every call")
    temperature: Optional[float] = Field(None, ge=0.0, le=2.0, description="Sampling temperature")
    max_tokens: Optional[int] = Field(None, ge=1, description="Maximum output tokens")


class AgentMessage(BaseModel):
    """A single entry in an agent's memory.

    Inbound messages from other participants are stored with role ``user``;
    the agent's own replies are stored with role ``assistant``.
    """

    role: Literal["user", "assistant"] = Field(..., description="Chat role of the entry")
    content: str = Field(..., description="Message text")
    # sender is an agent id, "human" or "system"
    sender: str = Field(..., description="Who authored the message")
    created_at: datetime = Field(default_factory=utc_now, description="Creation time")
    message_id: str = Field(default_factory=generate_id, description="Unique message id")
    chat_id: Optional[str] = Field(None, description="Chat the message was recorded under")
    reply_to_message_id: Optional[str] = Field(
        None, description="Message this entry replies to (threading)"
    )


class Agent(BaseModel):
    """A model-backed participant with private memory and its own turn budget.

    ``llm_call_count`` is only changed through ``agentworld.turns``; ``memory``
    is append-only in insertion order except when a chat swap replaces it
    or a message edit cuts it at the edited message.
    """

    id: str = Field(..., description="Stable id derived once from the name (kebab-case)")
    name: str = Field(..., description="Display name")
    config: ModelConfig = Field(..., description="Model configuration")
    memory: List[AgentMessage] = Field(default_factory=list, description="Ordered memory")
    llm_call_count: int = Field(0, ge=0, description="Consecutive model invocations")
    last_llm_call: Optional[datetime] = Field(None, description="Time of the last model call")
    status: AgentStatus = Field(AgentStatus.ACTIVE, description="Lifecycle status")
    # When False the agent never prepends an @mention of the agent it replies to
    auto_reply: bool = Field(True, description="Address replies to non-human senders")
    turn_limit_notified: bool = Field(
        False, description="Whether the turn-limit notice was already emitted for this chain"
    )
    created_at: datetime = Field(default_factory=utc_now, description="Creation time")
    last_active: Optional[datetime] = Field(None, description="Last successful response time")


# ============================================================================
# World Schemas
# ============================================================================


class WorldRecord(BaseModel):
    """Persisted world metadata (agents and chats are stored separately)."""

    id: str = Field(..., description="World identifier (kebab-case of the name)")
    name: str = Field(..., description="Human-readable name")
    description: Optional[str] = Field(None, description="Free-form description")
    turn_limit: int = Field(5, gt=0, description="Max consecutive agent-triggered LLM calls")
    active_chat_id: Optional[str] = Field(None, description="Currently active chat")
    created_at: datetime = Field(default_factory=utc_now, description="Creation time")
    last_updated: datetime = Field(default_factory=utc_now, description="Last modification time")


class ChatSnapshot(BaseModel):
    """Persisted copy of every agent's memory under a chat identifier."""

    id: str = Field(..., description="Chat id, unique per world")
    world_id: str = Field(..., description="Owning world")
    name: str = Field("New Chat", description="Chat title")
    agent_memories: Dict[str, List[AgentMessage]] = Field(
        default_factory=dict, description="Agent id to memory copy at snapshot time"
    )
    message_count: int = Field(0, ge=0, description="Total memory entries across agents")
    created_at: datetime = Field(default_factory=utc_now, description="Creation time")
    last_updated: datetime = Field(default_factory=utc_now, description="Last snapshot write")

    def summary(self) -> "ChatSummary":
        return ChatSummary(
            id=self.id,
            world_id=self.world_id,
            name=self.name,
            message_count=self.message_count,
            last_updated=self.last_updated,
        )


class ChatSummary(BaseModel):
    """Lightweight chat listing entry."""

    id: str
    world_id: str
    name: str
    message_count: int = 0
    last_updated: datetime


# ============================================================================
# Bus Event Schemas
# ============================================================================


class WorldMessageEvent(BaseModel):
    """A chat message carried on a world's bus."""

    world_id: str = Field(..., description="World the message belongs to")
    message_id: str = Field(default_factory=generate_id, description="Unique message id")
    content: str = Field(..., description="Message text")
    sender: str = Field(..., description="Normalized sender (agent id, human, system)")
    role: Literal["user", "assistant"] = Field("user", description="Chat role of the sender")
    chat_id: Optional[str] = Field(None, description="Active chat when published")
    reply_to_message_id: Optional[str] = Field(None, description="Parent message id")
    timestamp: datetime = Field(default_factory=utc_now, description="Publish time")


class TokenUsage(BaseModel):
    """Token accounting for one model response (reported or estimated)."""

    input_tokens: int = Field(0, ge=0)
    output_tokens: int = Field(0, ge=0)
    total_tokens: int = Field(0, ge=0)
    estimated: bool = Field(False, description="True when counts were estimated locally")


StreamEventType = Literal["start", "chunk", "end", "error"]


class StreamEvent(BaseModel):
    """Incremental response event published while an agent streams."""

    world_id: str = Field(..., description="World the stream belongs to")
    agent_id: str = Field(..., description="Agent producing the stream")
    type: StreamEventType = Field(..., description="start, chunk, end or error")
    # message_id correlates every event of one response attempt
    message_id: str = Field(..., description="Correlation id of the response")
    content: Optional[str] = Field(None, description="Text fragment (chunk events)")
    error: Optional[str] = Field(None, description="Error message (error events)")
    usage: Optional[TokenUsage] = Field(None, description="Token usage (end events)")
    chat_id: Optional[str] = Field(None, description="Active chat when published")
    timestamp: datetime = Field(default_factory=utc_now)


class SystemEvent(BaseModel):
    """Lifecycle notification (chat and agent changes) published on the bus."""

    world_id: str
    type: str = Field(..., description="Event type, e.g. chat-created, agent-created")
    content: Dict[str, Any] = Field(default_factory=dict)
    chat_id: Optional[str] = None
    timestamp: datetime = Field(default_factory=utc_now)


# ============================================================================
# LLM Schemas
# ============================================================================


class LLMMessage(BaseModel):
    """Provider-neutral chat message handed to the LLM collaborator."""

    role: Literal["system", "user", "assistant"]
    content: str
