"""
Agent world orchestrator.

Fully decoupled from file I/O and provider SDKs: storage and the language
model are injected by the user.

Wires together, per loaded world:
1. The world's event bus
2. One AgentPipeline per agent (save, decide, respond)
3. Chat snapshot saving after every completed message cycle
4. Agent record persistence (memory, turn counters, status)
"""

from typing import Dict, List, Optional

from .bus import publish_event, publish_message
from .chats import ChatSessionManager
from .config import Config
from .errors import AgentWorldError, StorageIOError, WorldNotFound
from .llm_calls import LanguageModel, MirascopeLanguageModel
from .logging_utils import log_error, log_info, log_success
from .persistence import InMemoryPersistence, PersistenceStrategy
from .pipeline import AgentPipeline
from .schemas import (
    Agent,
    AgentMessage,
    AgentStatus,
    ChatSnapshot,
    ChatSummary,
    ModelConfig,
    WorldMessageEvent,
    WorldRecord,
)
from .turns import reset_turns
from .world import World, to_kebab_case


class Orchestrator:
    """
    Entry point for running agent worlds.

    Args:
        storage: Persistence backend (defaults to InMemoryPersistence)
        llm: Language model collaborator (defaults to MirascopeLanguageModel)
        streaming: Stream responses as ``sse`` events; defaults to
            ``Config.STREAMING_ENABLED``
        memory_window: Memory entries sent to the model; -1 uses
            ``Config.MEMORY_WINDOW``, None/0 sends the full history
        count_failed_calls: Whether failed model calls consume turn budget
        auto_title: Title "New Chat" chats when their world goes idle;
            defaults to ``Config.AUTO_TITLE_CHATS``
    """

    def __init__(
        self,
        storage: Optional[PersistenceStrategy] = None,
        llm: Optional[LanguageModel] = None,
        *,
        streaming: Optional[bool] = None,
        memory_window: Optional[int] = -1,
        count_failed_calls: bool = False,
        auto_title: Optional[bool] = None,
    ):
        self.storage = storage or InMemoryPersistence()
        self.llm = llm or MirascopeLanguageModel()
        self.streaming = Config.STREAMING_ENABLED if streaming is None else streaming
        self.memory_window = memory_window
        self.count_failed_calls = count_failed_calls
        self.auto_title = Config.AUTO_TITLE_CHATS if auto_title is None else auto_title
        self.chats = ChatSessionManager(self.storage)
        self.worlds: Dict[str, World] = {}
        self._pipelines: Dict[str, Dict[str, AgentPipeline]] = {}

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def initialize(self) -> None:
        await self.storage.initialize()

    async def close(self) -> None:
        """Wait for in-flight work, save every loaded world, release storage."""
        for world in list(self.worlds.values()):
            await world.bus.wait_until_idle()
            await self.chats.save_current_state(world)
            self._detach_all(world)
        self.worlds.clear()
        await self.storage.close()

    # ------------------------------------------------------------------
    # Worlds
    # ------------------------------------------------------------------

    async def create_world(
        self,
        name: str,
        *,
        description: Optional[str] = None,
        turn_limit: Optional[int] = None,
    ) -> World:
        """Create, persist and load a new world with an empty active chat.

        Raises:
            ValueError: If the name is unusable or a world with the same id exists
        """
        world_id = to_kebab_case(name)
        if not world_id:
            raise ValueError(f"World name '{name}' does not produce a usable id")
        if world_id in self.worlds or await self.storage.load_world(world_id) is not None:
            raise ValueError(f"World '{world_id}' already exists")

        record = WorldRecord(
            id=world_id,
            name=name,
            description=description,
            turn_limit=turn_limit or Config.DEFAULT_TURN_LIMIT,
        )
        await self.storage.save_world(record)
        world = World.from_record(record)
        self.worlds[world.id] = world
        self._pipelines[world.id] = {}
        await self.chats.new_chat(world)
        log_success(f"Created world {world.id} (turn limit {world.turn_limit})")
        return world

    async def load_world(self, world_id: str) -> World:
        """Return the loaded world, loading it from storage on first use.

        Raises:
            WorldNotFound: If the world does not exist
        """
        world_id = to_kebab_case(world_id)
        if world_id in self.worlds:
            return self.worlds[world_id]
        world = await self.chats.load_world(world_id)
        self.worlds[world.id] = world
        self._pipelines[world.id] = {}
        for agent in world.agents.values():
            self._attach(world, agent)
        return world

    def get_world(self, world_id: str) -> World:
        world = self.worlds.get(to_kebab_case(world_id))
        if world is None:
            raise WorldNotFound(world_id)
        return world

    async def list_worlds(self) -> List[WorldRecord]:
        return await self.storage.list_worlds()

    async def update_world(
        self,
        world: World,
        *,
        name: Optional[str] = None,
        description: Optional[str] = None,
        turn_limit: Optional[int] = None,
    ) -> World:
        """Change a world's display fields or turn limit; the id never changes.

        Raises:
            ValueError: If ``turn_limit`` is not a positive integer or ``name`` is blank
        """
        if turn_limit is not None and turn_limit < 1:
            raise ValueError(f"turn_limit must be a positive integer (got {turn_limit})")
        if name is not None and not name.strip():
            raise ValueError("World name must not be empty")

        if name is not None:
            world.name = name.strip()
        if description is not None:
            world.description = description
        if turn_limit is not None:
            world.turn_limit = turn_limit
        world.touch()
        await self.storage.save_world(world.to_record())
        publish_event(world, "world-updated", {"name": world.name, "turn_limit": world.turn_limit})
        return world

    async def delete_world(self, world_id: str) -> bool:
        world_id = to_kebab_case(world_id)
        world = self.worlds.pop(world_id, None)
        if world is not None:
            await world.bus.wait_until_idle()
            self._detach_all(world)
        return await self.storage.delete_world(world_id)

    # ------------------------------------------------------------------
    # Agents
    # ------------------------------------------------------------------

    async def create_agent(
        self,
        world: World,
        name: str,
        config: ModelConfig,
        *,
        auto_reply: bool = True,
    ) -> Agent:
        """Register a new agent and start its pipeline.

        Raises:
            DuplicateAgentName: If an agent with the derived id exists
        """
        agent = world.add_agent(name, config, auto_reply=auto_reply)
        await self.storage.save_agent(world.id, agent)
        await self.storage.save_world(world.to_record())
        self._attach(world, agent)
        await self.chats.save_current_state(world)
        publish_event(world, "agent-created", {"agent_id": agent.id, "name": agent.name})
        log_info(f"Agent {agent.id} joined world {world.id}")
        return agent

    async def remove_agent(self, world: World, agent_id: str) -> Agent:
        """Stop an agent's pipeline and delete it.

        Raises:
            AgentNotFound: If the agent is not registered
        """
        agent = world.remove_agent(agent_id)
        pipeline = self._pipelines.get(world.id, {}).pop(agent.id, None)
        if pipeline is not None:
            pipeline.detach()
        await self.storage.delete_agent(world.id, agent.id)
        await self.storage.save_world(world.to_record())
        await self.chats.save_current_state(world)
        publish_event(world, "agent-deleted", {"agent_id": agent.id})
        return agent

    async def clear_agent_memory(self, world: World, agent_id: str) -> Agent:
        """Empty an agent's memory and reset its turn counter."""
        agent = world.get_agent(agent_id)
        agent.memory = []
        reset_turns(agent)
        await self._persist_agent(world, agent)
        await self.chats.save_current_state(world)
        return agent

    async def update_agent(
        self,
        world: World,
        agent_id: str,
        *,
        name: Optional[str] = None,
        config: Optional[ModelConfig] = None,
        auto_reply: Optional[bool] = None,
        status: Optional[AgentStatus] = None,
    ) -> Agent:
        """Change an agent's settings; its id, memory and turn counter are kept.

        Raises:
            AgentNotFound: If the agent is not registered
            ValueError: If ``name`` is blank
        """
        agent = world.get_agent(agent_id)
        if name is not None and not name.strip():
            raise ValueError("Agent name must not be empty")

        if name is not None:
            agent.name = name.strip()
        if config is not None:
            agent.config = config
        if auto_reply is not None:
            agent.auto_reply = auto_reply
        if status is not None:
            agent.status = AgentStatus(status)
        await self._persist_agent(world, agent)
        publish_event(world, "agent-updated", {"agent_id": agent.id, "name": agent.name})
        return agent

    def get_pipeline(self, world: World, agent_id: str) -> AgentPipeline:
        return self._pipelines[world.id][world.get_agent(agent_id).id]

    # ------------------------------------------------------------------
    # Messaging
    # ------------------------------------------------------------------

    def publish(self, world: World, content: str, sender: str = "human") -> WorldMessageEvent:
        """Inject a message; agent work continues in the background."""
        return publish_message(world, content, sender)

    async def send(
        self,
        world: World,
        content: str,
        sender: str = "human",
        *,
        timeout: Optional[float] = None,
    ) -> WorldMessageEvent:
        """Publish a message and wait until every triggered response finished."""
        event = self.publish(world, content, sender)
        await self.wait_until_idle(world, timeout=timeout)
        return event

    async def remove_messages_from(self, world: World, message_id: str) -> int:
        """Drop ``message_id`` and everything after it from the active chat.

        Raises:
            MessageNotFound: If no agent remembers the message
        """
        await world.bus.wait_until_idle()
        removed = await self.chats.remove_messages_from(world, message_id)
        for agent in world.agents.values():
            await self._persist_agent(world, agent)
        return removed

    async def edit_message(
        self,
        world: World,
        message_id: str,
        content: str,
        sender: str = "human",
    ) -> WorldMessageEvent:
        """Replace a message and the conversation after it with ``content``.

        The old message and every later entry are removed from all agents'
        memories, then ``content`` is published as a new message, so agents
        answer it again. Returns immediately after publishing.

        Raises:
            MessageNotFound: If no agent remembers the message
            ValueError: If ``content`` is blank
        """
        if not content.strip():
            raise ValueError("Edited message must not be empty")
        await self.remove_messages_from(world, message_id)
        log_info(f"Resubmitting edited message {message_id} in {world.id}")
        return self.publish(world, content, sender)

    async def wait_until_idle(self, world: World, *, timeout: Optional[float] = None) -> None:
        await world.bus.wait_until_idle(timeout=timeout)

    # ------------------------------------------------------------------
    # Chats
    # ------------------------------------------------------------------

    async def new_chat(self, world: World) -> str:
        await world.bus.wait_until_idle()
        return await self.chats.new_chat(world)

    async def load_chat(self, world: World, chat_id: str) -> ChatSnapshot:
        await world.bus.wait_until_idle()
        return await self.chats.load_chat(world, chat_id)

    async def list_chats(self, world: World) -> List[ChatSummary]:
        return await self.chats.list_chats(world)

    async def delete_chat(self, world: World, chat_id: str) -> bool:
        await world.bus.wait_until_idle()
        return await self.chats.delete_chat(world, chat_id)

    async def rename_chat(self, world: World, chat_id: str, name: str) -> ChatSnapshot:
        return await self.chats.rename_chat(world, chat_id, name)

    async def generate_chat_title(self, world: World) -> str:
        return await self.chats.generate_chat_title(world, self.llm)

    async def get_memory(self, world: World, chat_id: Optional[str] = None) -> List[AgentMessage]:
        return await self.chats.get_memory(world, chat_id)

    async def save_current_state(self, world: World) -> bool:
        return await self.chats.save_current_state(world)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _attach(self, world: World, agent: Agent) -> AgentPipeline:
        pipeline = AgentPipeline(
            world,
            agent,
            self.llm,
            streaming=self.streaming,
            memory_window=self.memory_window,
            count_failed_calls=self.count_failed_calls,
        )
        pipeline.add_cycle_listener(self._after_cycle)
        pipeline.attach()
        self._pipelines.setdefault(world.id, {})[agent.id] = pipeline
        return pipeline

    def _detach_all(self, world: World) -> None:
        for pipeline in self._pipelines.pop(world.id, {}).values():
            pipeline.detach()

    async def _after_cycle(self, world: World, agent: Agent, decision) -> None:
        await self._persist_agent(world, agent)
        await self.chats.save_current_state(world)
        # Only the task running this listener is left when the world is idle
        if self.auto_title and world.bus.pending <= 1:
            try:
                await self.chats.title_if_untitled(world, self.llm)
            except AgentWorldError as exc:
                log_error(f"Automatic chat title failed for {world.id}: {exc}")

    async def _persist_agent(self, world: World, agent: Agent) -> None:
        try:
            await self.storage.save_agent(world.id, agent)
        except StorageIOError as exc:
            log_error(f"Failed to save agent {agent.id} of world {world.id}: {exc}")


__all__ = ["Orchestrator"]
