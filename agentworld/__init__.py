"""
Agent World - message routing core for multi-agent LLM conversations.

Agents exchange messages inside isolated worlds. Each world owns its event
bus; every agent remembers everything it hears, but only answers when
addressed by a leading @mention or by a human/system broadcast, and turn
limits keep agent-to-agent chains bounded.

No file I/O required. No database required. Storage and the language model
are injected by the user.
"""

__version__ = "0.1.0"

# Main entry point
from .orchestrator import Orchestrator

# Core runtime
from .world import World, to_kebab_case
from .bus import (
    WorldEventBus,
    Subscription,
    publish_message,
    publish_sse,
    publish_event,
    subscribe_to_messages,
    subscribe_to_sse,
    subscribe_to_events,
)
from .pipeline import AgentPipeline, PipelineState
from .streaming import StreamingCoordinator, StreamResult
from .chats import ChatSessionManager
from .decision import Decision, Sender, SenderKind, classify_sender, decide, normalize_sender, should_respond
from .mentions import (
    PASS_TOKEN,
    add_auto_mention,
    extract_leading_mentions,
    extract_mentions,
    is_pass_response,
    remove_self_mentions,
    should_auto_mention,
)

# Collaborator interfaces
from .persistence import PersistenceStrategy, InMemoryPersistence, JsonPersistence
from .llm_calls import LanguageModel, MirascopeLanguageModel

# Core schemas
from .schemas import (
    Agent,
    AgentMessage,
    AgentStatus,
    ChatSnapshot,
    ChatSummary,
    LLMMessage,
    ModelConfig,
    StreamEvent,
    SystemEvent,
    TokenUsage,
    WorldMessageEvent,
    WorldRecord,
)

# Errors
from .errors import (
    AgentWorldError,
    WorldNotFound,
    AgentNotFound,
    ChatNotFound,
    DuplicateAgentName,
    MessageNotFound,
    StorageIOError,
    SnapshotCorrupt,
    ModelProviderError,
)

__all__ = [
    # Main
    "Orchestrator",
    # Runtime
    "World",
    "to_kebab_case",
    "WorldEventBus",
    "Subscription",
    "publish_message",
    "publish_sse",
    "publish_event",
    "subscribe_to_messages",
    "subscribe_to_sse",
    "subscribe_to_events",
    "AgentPipeline",
    "PipelineState",
    "StreamingCoordinator",
    "StreamResult",
    "ChatSessionManager",
    "Decision",
    "Sender",
    "SenderKind",
    "classify_sender",
    "decide",
    "normalize_sender",
    "should_respond",
    "PASS_TOKEN",
    "add_auto_mention",
    "extract_leading_mentions",
    "extract_mentions",
    "is_pass_response",
    "remove_self_mentions",
    "should_auto_mention",
    # Interfaces
    "PersistenceStrategy",
    "InMemoryPersistence",
    "JsonPersistence",
    "LanguageModel",
    "MirascopeLanguageModel",
    # Schemas
    "Agent",
    "AgentMessage",
    "AgentStatus",
    "ChatSnapshot",
    "ChatSummary",
    "LLMMessage",
    "ModelConfig",
    "StreamEvent",
    "SystemEvent",
    "TokenUsage",
    "WorldMessageEvent",
    "WorldRecord",
    # Errors
    "AgentWorldError",
    "WorldNotFound",
    "AgentNotFound",
    "ChatNotFound",
    "MessageNotFound",
    "DuplicateAgentName",
    "StorageIOError",
    "SnapshotCorrupt",
    "ModelProviderError",
]
