"""Chat session manager.

A chat is a persisted snapshot of every agent's memory in a world. Exactly
one chat is active per world; the active chat's snapshot is rewritten after
each completed message cycle, and swapping chats replaces every agent's
memory wholesale. Turn counters are not part of a chat and survive swaps.
"""

from __future__ import annotations

import asyncio
import hashlib
import json
import re
from typing import Dict, Iterable, List, Optional, Tuple
from uuid import uuid4

from agentworld.bus import publish_event
from agentworld.errors import (
    AgentWorldError,
    ChatNotFound,
    MessageNotFound,
    SnapshotCorrupt,
    StorageIOError,
    WorldNotFound,
)
from agentworld.llm_calls import LanguageModel
from agentworld.logging_utils import log_debug, log_error, log_info
from agentworld.persistence import PersistenceStrategy
from agentworld.schemas import AgentMessage, ChatSnapshot, ChatSummary, LLMMessage, ModelConfig, utc_now
from agentworld.world import World

DEFAULT_CHAT_NAME = "New Chat"
TITLE_MAX_LENGTH = 100
_TITLE_SYSTEM_PROMPT = "You are a helpful assistant that turns conversations into concise titles."


def _memory_fingerprint(world: World) -> str:
    payload = {
        agent_id: [entry.model_dump(mode="json") for entry in agent.memory]
        for agent_id, agent in world.agents.items()
    }
    return hashlib.sha256(json.dumps(payload, sort_keys=True).encode("utf-8")).hexdigest()


def _distinct_in_time_order(memories: Iterable[List[AgentMessage]]) -> List[AgentMessage]:
    """Messages of several memories, deduplicated by message id, oldest first."""
    seen = set()
    entries: List[AgentMessage] = []
    for memory in memories:
        for entry in memory:
            if entry.message_id in seen:
                continue
            seen.add(entry.message_id)
            entries.append(entry)
    entries.sort(key=lambda entry: entry.created_at)
    return entries


def _clean_title(title: str) -> str:
    title = title.strip().strip("\"'")
    title = re.sub(r"[\n\r*]+", " ", title)
    title = re.sub(r"\s+", " ", title).strip()
    if len(title) > TITLE_MAX_LENGTH:
        title = title[: TITLE_MAX_LENGTH - 3] + "..."
    return title


class ChatSessionManager:
    """Snapshots, restores and swaps the conversational state of worlds.

    Args:
        storage: Persistence backend holding worlds, agents and chats
    """

    def __init__(self, storage: PersistenceStrategy) -> None:
        self.storage = storage
        self._locks: Dict[str, asyncio.Lock] = {}
        # (world_id, chat_id) -> fingerprint of the memory last written there
        self._saved: Dict[Tuple[str, str], str] = {}

    def _lock(self, world_id: str) -> asyncio.Lock:
        lock = self._locks.get(world_id)
        if lock is None:
            lock = self._locks[world_id] = asyncio.Lock()
        return lock

    # ------------------------------------------------------------------
    # World loading
    # ------------------------------------------------------------------

    async def load_world(self, world_id: str) -> World:
        """Load a world and establish its active chat.

        When the recorded active chat is missing (or none is recorded), the
        most recently updated chat becomes active, or a fresh empty chat is
        created. Every agent's memory is restored from the active snapshot.

        Raises:
            WorldNotFound: If storage has no such world
        """
        record = await self.storage.load_world(world_id)
        if record is None:
            raise WorldNotFound(world_id)
        agents = await self.storage.list_agents(world_id)
        world = World.from_record(record, agents)

        snapshot: Optional[ChatSnapshot] = None
        if world.active_chat_id:
            snapshot = await self.storage.load_chat(world.id, world.active_chat_id)
        if snapshot is None:
            chats = await self.storage.list_chats(world.id)
            if chats:
                snapshot = await self.storage.load_chat(world.id, chats[0].id)

        if snapshot is None:
            await self._start_chat(world)
        else:
            self._restore(world, snapshot)
            if world.active_chat_id != snapshot.id:
                world.active_chat_id = snapshot.id
                await self.storage.save_world(world.to_record())

        log_info(f"Loaded world {world.id} ({len(world.agents)} agents, chat {world.active_chat_id})")
        return world

    # ------------------------------------------------------------------
    # Chat lifecycle
    # ------------------------------------------------------------------

    async def new_chat(self, world: World) -> str:
        """Save the active chat, then start an empty one and make it active.

        Returns:
            The new chat id (distinct from every existing chat id of the world)
        """
        if world.active_chat_id:
            await self.save_current_state(world)
        chat_id = await self._start_chat(world)
        publish_event(world, "chat-created", {"chat_id": chat_id})
        return chat_id

    async def load_chat(self, world: World, chat_id: str) -> ChatSnapshot:
        """Save the active chat, then restore every agent's memory from ``chat_id``.

        Raises:
            ChatNotFound: If the chat does not belong to the world
        """
        snapshot = await self.storage.load_chat(world.id, chat_id)
        if snapshot is None:
            raise ChatNotFound(world.id, chat_id)

        reloading_active = world.active_chat_id == chat_id
        if world.active_chat_id:
            await self.save_current_state(world)
            # Re-read in case the target was written concurrently
            snapshot = await self.storage.load_chat(world.id, chat_id) or snapshot

        # Live memory is the newest state of the active chat, even when its last write failed
        if not reloading_active:
            self._restore(world, snapshot)
        world.active_chat_id = snapshot.id
        world.touch()
        await self.storage.save_world(world.to_record())
        publish_event(world, "chat-loaded", {"chat_id": snapshot.id})
        return snapshot

    async def save_current_state(self, world: World) -> bool:
        """Write every agent's memory to the active chat's snapshot.

        Writes are serialized per world and skipped when memory has not
        changed since the last save. Storage failures are logged, not raised.

        Returns:
            True when the snapshot is current, False when there is no active
            chat or the write failed
        """
        async with self._lock(world.id):
            chat_id = world.active_chat_id
            if not chat_id:
                return False

            fingerprint = _memory_fingerprint(world)
            if self._saved.get((world.id, chat_id)) == fingerprint:
                log_debug("chats", f"{world.id}/{chat_id} unchanged; snapshot write skipped")
                return True

            try:
                existing = await self.storage.load_chat(world.id, chat_id)
                snapshot = self._capture(world, chat_id, existing)
                await self.storage.save_chat(snapshot)
            except (StorageIOError, SnapshotCorrupt, OSError) as exc:
                log_error(f"Failed to save chat {chat_id} of world {world.id}: {exc}")
                return False

            self._saved[(world.id, chat_id)] = fingerprint
            log_debug("chats", f"{world.id}/{chat_id} saved ({snapshot.message_count} messages)")
            return True

    async def list_chats(self, world: World) -> List[ChatSummary]:
        return await self.storage.list_chats(world.id)

    async def delete_chat(self, world: World, chat_id: str) -> bool:
        """Delete a chat; deleting the active chat activates another one.

        Returns:
            False if the chat did not exist
        """
        deleted = await self.storage.delete_chat(world.id, chat_id)
        if not deleted:
            return False
        self._saved.pop((world.id, chat_id), None)

        if world.active_chat_id == chat_id:
            world.active_chat_id = None
            remaining = await self.storage.list_chats(world.id)
            snapshot = await self.storage.load_chat(world.id, remaining[0].id) if remaining else None
            if snapshot is None:
                await self._start_chat(world)
            else:
                self._restore(world, snapshot)
                world.active_chat_id = snapshot.id
                await self.storage.save_world(world.to_record())
        publish_event(world, "chat-deleted", {"chat_id": chat_id})
        return True

    async def rename_chat(self, world: World, chat_id: str, name: str) -> ChatSnapshot:
        """Set a chat's title.

        Raises:
            ChatNotFound: If the chat does not belong to the world
            ValueError: If the name is blank
        """
        title = _clean_title(name)
        if not title:
            raise ValueError("Chat name must not be empty")
        async with self._lock(world.id):
            snapshot = await self.storage.load_chat(world.id, chat_id)
            if snapshot is None:
                raise ChatNotFound(world.id, chat_id)
            snapshot.name = title
            await self.storage.save_chat(snapshot)
        publish_event(world, "chat-updated", {"chat_id": chat_id, "name": title})
        return snapshot

    async def generate_chat_title(
        self,
        world: World,
        llm: LanguageModel,
        *,
        config: Optional[ModelConfig] = None,
    ) -> str:
        """Ask the model for a short title for the active chat.

        Uses ``config`` or the first agent's model. Falls back to the first
        human message (or ``Chat``) when the model fails or returns nothing.
        """
        transcript = self._transcript(world)
        title = ""
        model_config = config
        if model_config is None and world.agents:
            first = next(iter(world.agents.values()))
            model_config = first.config.model_copy(update={"max_tokens": 20})

        if model_config is not None and transcript:
            lines = "\n".join(f"-{entry.sender}: {entry.content}" for entry in transcript)
            prompt = [
                LLMMessage(role="system", content=_TITLE_SYSTEM_PROMPT),
                LLMMessage(
                    role="user",
                    content=(
                        "Below is a conversation. Generate a short, punchy title "
                        f"(3-6 words) that captures its main topic.\n\n{lines}"
                    ),
                ),
            ]
            try:
                title = await llm.generate(model_config, prompt)
            except AgentWorldError as exc:
                log_error(f"Title generation failed for {world.id}, using fallback: {exc}")

        if not title or not title.strip():
            first_human = next((entry for entry in transcript if entry.sender == "human"), None)
            title = first_human.content[:50] if first_human else "Chat"
        return _clean_title(title) or "Chat"

    async def get_memory(self, world: World, chat_id: Optional[str] = None) -> List[AgentMessage]:
        """Distinct messages of a chat across all agents, oldest first.

        The active chat (the default) is read from live memory; any other
        chat is read from its snapshot.

        Raises:
            ChatNotFound: If the chat does not belong to the world
        """
        if chat_id is None or chat_id == world.active_chat_id:
            return self._transcript(world)
        snapshot = await self.storage.load_chat(world.id, chat_id)
        if snapshot is None:
            raise ChatNotFound(world.id, chat_id)
        return _distinct_in_time_order(snapshot.agent_memories.values())

    async def remove_messages_from(self, world: World, message_id: str) -> int:
        """Cut every agent's memory of the active chat at ``message_id``.

        The cutoff is the earliest ``created_at`` recorded for the message in
        any agent's memory; every entry at or after it is dropped, so replies
        that followed the message go with it.

        Returns:
            Number of memory entries removed across all agents

        Raises:
            MessageNotFound: If no agent remembers the message
        """
        chat_id = world.active_chat_id or ""
        stamps = [
            entry.created_at
            for agent in world.agents.values()
            for entry in agent.memory
            if entry.message_id == message_id
        ]
        if not stamps:
            raise MessageNotFound(world.id, chat_id, message_id)
        cutoff = min(stamps)

        removed = 0
        for agent in world.agents.values():
            kept = [entry for entry in agent.memory if entry.created_at < cutoff]
            removed += len(agent.memory) - len(kept)
            agent.memory = kept

        log_info(f"Removed {removed} messages from chat {chat_id} of world {world.id} at {message_id}")
        await self.save_current_state(world)
        publish_event(world, "messages-removed", {"chat_id": chat_id, "message_id": message_id, "removed": removed})
        return removed

    async def title_if_untitled(self, world: World, llm: LanguageModel) -> Optional[str]:
        """Name the active chat from its conversation while it has the default name.

        Nothing happens until a human has spoken in the chat.

        Returns:
            The new title, or None when the chat was left as it was
        """
        chat_id = world.active_chat_id
        if not chat_id:
            return None
        snapshot = await self.storage.load_chat(world.id, chat_id)
        if snapshot is None or snapshot.name != DEFAULT_CHAT_NAME:
            return None
        if not any(entry.sender == "human" for entry in self._transcript(world)):
            return None

        title = await self.generate_chat_title(world, llm)
        if world.active_chat_id != chat_id:
            return None
        await self.rename_chat(world, chat_id, title)
        log_debug("chats", f"{world.id}/{chat_id} titled '{title}'")
        return title

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _unique_chat_id(self, world_id: str) -> str:
        existing = {summary.id for summary in await self.storage.list_chats(world_id)}
        while True:
            chat_id = uuid4().hex[:8]
            if chat_id not in existing:
                return chat_id

    async def _start_chat(self, world: World) -> str:
        chat_id = await self._unique_chat_id(world.id)
        for agent in world.agents.values():
            agent.memory = []
        world.active_chat_id = chat_id
        world.touch()
        snapshot = self._capture(world, chat_id, None)
        await self.storage.save_chat(snapshot)
        await self.storage.save_world(world.to_record())
        self._saved[(world.id, chat_id)] = _memory_fingerprint(world)
        log_debug("chats", f"{world.id}: started chat {chat_id}")
        return chat_id

    def _restore(self, world: World, snapshot: ChatSnapshot) -> None:
        for agent_id, agent in world.agents.items():
            stored = snapshot.agent_memories.get(agent_id, [])
            agent.memory = [entry.model_copy(deep=True) for entry in stored]
        self._saved[(world.id, snapshot.id)] = _memory_fingerprint(world)

    def _capture(self, world: World, chat_id: str, existing: Optional[ChatSnapshot]) -> ChatSnapshot:
        memories: Dict[str, List[AgentMessage]] = {
            agent_id: [entry.model_copy(deep=True) for entry in agent.memory]
            for agent_id, agent in world.agents.items()
        }
        now = utc_now()
        return ChatSnapshot(
            id=chat_id,
            world_id=world.id,
            name=existing.name if existing else DEFAULT_CHAT_NAME,
            agent_memories=memories,
            message_count=sum(len(entries) for entries in memories.values()),
            created_at=existing.created_at if existing else now,
            last_updated=now,
        )

    def _transcript(self, world: World) -> List[AgentMessage]:
        return _distinct_in_time_order(agent.memory for agent in world.agents.values())


__all__ = ["ChatSessionManager", "DEFAULT_CHAT_NAME"]
