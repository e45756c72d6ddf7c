"""
PersistenceStrategy interface for pluggable storage backends.

This module provides the abstract PersistenceStrategy interface and two concrete
implementations for storing worlds, agents and chat snapshots. Persistence is a
collaborator of the core: the routing engine itself keeps all live state in memory
and only reads/writes records through this interface.

Two included implementations:
1. InMemoryPersistence - Dict-based storage, data lost on exit (testing, prototyping)
2. JsonPersistence - File-based storage, one directory per world (small deployments)

Contract shared by every backend:
- Lookups return None (or False for deletes) for missing entities instead of raising;
  callers translate absence into domain errors (WorldNotFound, ChatNotFound, ...)
- Returned records are independent copies; mutating them never alters storage
- Backend failures surface as StorageIOError; unreadable chat files as SnapshotCorrupt

Usage pattern:
    persistence = InMemoryPersistence()  # or JsonPersistence("data/worlds")
    await persistence.initialize()
    await persistence.save_world(record)
    await persistence.close()
"""

import asyncio
import json
import os
import shutil
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from pydantic import ValidationError

from agentworld.errors import SnapshotCorrupt, StorageIOError
from agentworld.logging_utils import log_error
from agentworld.schemas import Agent, ChatSnapshot, ChatSummary, WorldRecord
from .config import Config


class PersistenceStrategy(ABC):
    """Abstract base class for world storage.

    Method categories:
    1. Lifecycle: initialize(), close()
    2. Worlds: load_world(), save_world(), delete_world(), list_worlds()
    3. Agents: load_agent(), save_agent(), list_agents(), delete_agent()
    4. Chats: load_chat(), save_chat(), list_chats(), delete_chat()
    """

    @abstractmethod
    async def initialize(self) -> None:
        """Prepare the backend (create directories, open connections)."""
        pass

    @abstractmethod
    async def close(self) -> None:
        """Release backend resources."""
        pass

    # ------------------------------------------------------------------
    # Worlds
    # ------------------------------------------------------------------

    @abstractmethod
    async def load_world(self, world_id: str) -> Optional[WorldRecord]:
        """
        Retrieve a world record.

        Args:
            world_id: World identifier

        Returns:
            WorldRecord if found, None otherwise
        """
        pass

    @abstractmethod
    async def save_world(self, record: WorldRecord) -> None:
        """Create or replace a world record."""
        pass

    @abstractmethod
    async def delete_world(self, world_id: str) -> bool:
        """
        Delete a world with all of its agents and chats.

        Returns:
            True if the world existed
        """
        pass

    @abstractmethod
    async def list_worlds(self) -> List[WorldRecord]:
        pass

    # ------------------------------------------------------------------
    # Agents
    # ------------------------------------------------------------------

    @abstractmethod
    async def load_agent(self, world_id: str, agent_id: str) -> Optional[Agent]:
        pass

    @abstractmethod
    async def save_agent(self, world_id: str, agent: Agent) -> None:
        pass

    @abstractmethod
    async def list_agents(self, world_id: str) -> List[Agent]:
        """Return every agent of the world, oldest first."""
        pass

    @abstractmethod
    async def delete_agent(self, world_id: str, agent_id: str) -> bool:
        pass

    # ------------------------------------------------------------------
    # Chats
    # ------------------------------------------------------------------

    @abstractmethod
    async def load_chat(self, world_id: str, chat_id: str) -> Optional[ChatSnapshot]:
        """
        Retrieve a chat snapshot.

        Returns:
            ChatSnapshot if found, None otherwise

        Raises:
            SnapshotCorrupt: If stored data cannot be parsed
        """
        pass

    @abstractmethod
    async def save_chat(self, snapshot: ChatSnapshot) -> None:
        pass

    @abstractmethod
    async def list_chats(self, world_id: str) -> List[ChatSummary]:
        """Return chat summaries, most recently updated first."""
        pass

    @abstractmethod
    async def delete_chat(self, world_id: str, chat_id: str) -> bool:
        pass


def _sorted_summaries(snapshots: List[ChatSnapshot]) -> List[ChatSummary]:
    ordered = sorted(snapshots, key=lambda snap: snap.last_updated, reverse=True)
    return [snap.summary() for snap in ordered]


class InMemoryPersistence(PersistenceStrategy):
    """In-memory persistence using Python dicts (no files).

    Storage structure:
    - worlds: Dict[world_id, WorldRecord]
    - agents: Dict[(world_id, agent_id), Agent]
    - chats: Dict[(world_id, chat_id), ChatSnapshot]

    Records are deep-copied on the way in and out so callers never share
    mutable state with the store. Data is lost when the process exits.
    """

    def __init__(self):
        self.worlds: Dict[str, WorldRecord] = {}
        self.agents: Dict[Tuple[str, str], Agent] = {}
        self.chats: Dict[Tuple[str, str], ChatSnapshot] = {}

    async def initialize(self) -> None:
        pass

    async def close(self) -> None:
        # Data is kept so callers can inspect it after close
        pass

    async def load_world(self, world_id: str) -> Optional[WorldRecord]:
        record = self.worlds.get(world_id)
        return record.model_copy(deep=True) if record else None

    async def save_world(self, record: WorldRecord) -> None:
        self.worlds[record.id] = record.model_copy(deep=True)

    async def delete_world(self, world_id: str) -> bool:
        if world_id not in self.worlds:
            return False
        del self.worlds[world_id]
        for key in [key for key in self.agents if key[0] == world_id]:
            del self.agents[key]
        for key in [key for key in self.chats if key[0] == world_id]:
            del self.chats[key]
        return True

    async def list_worlds(self) -> List[WorldRecord]:
        return [record.model_copy(deep=True) for record in self.worlds.values()]

    async def load_agent(self, world_id: str, agent_id: str) -> Optional[Agent]:
        agent = self.agents.get((world_id, agent_id))
        return agent.model_copy(deep=True) if agent else None

    async def save_agent(self, world_id: str, agent: Agent) -> None:
        self.agents[(world_id, agent.id)] = agent.model_copy(deep=True)

    async def list_agents(self, world_id: str) -> List[Agent]:
        agents = [agent for (wid, _), agent in self.agents.items() if wid == world_id]
        agents.sort(key=lambda agent: agent.created_at)
        return [agent.model_copy(deep=True) for agent in agents]

    async def delete_agent(self, world_id: str, agent_id: str) -> bool:
        return self.agents.pop((world_id, agent_id), None) is not None

    async def load_chat(self, world_id: str, chat_id: str) -> Optional[ChatSnapshot]:
        snapshot = self.chats.get((world_id, chat_id))
        return snapshot.model_copy(deep=True) if snapshot else None

    async def save_chat(self, snapshot: ChatSnapshot) -> None:
        self.chats[(snapshot.world_id, snapshot.id)] = snapshot.model_copy(deep=True)

    async def list_chats(self, world_id: str) -> List[ChatSummary]:
        return _sorted_summaries([snap for (wid, _), snap in self.chats.items() if wid == world_id])

    async def delete_chat(self, world_id: str, chat_id: str) -> bool:
        return self.chats.pop((world_id, chat_id), None) is not None


class JsonPersistence(PersistenceStrategy):
    """File-based persistence using JSON for human-readable storage.

    Directory structure:
    ```
    {base_path}/
      {world_id}/
        world.json                # WorldRecord
        agents/
          alice.json              # Agent (config, counters, memory)
        chats/
          k3f9a1c2.json           # ChatSnapshot
    ```

    Async operations:
    - All file I/O runs in a thread pool (asyncio.to_thread)
    - Writes go to a temporary file that replaces the target atomically,
      so readers never see a partially written snapshot
    """

    def __init__(self, base_path: Path | str | None = None):
        self.base_path = Path(base_path) if base_path is not None else Config.DATA_PATH

    async def initialize(self) -> None:
        await self._run("initialize", self.base_path.mkdir, parents=True, exist_ok=True)

    async def close(self) -> None:
        # Nothing to clean up for JSON persistence
        return None

    # ------------------------------------------------------------------
    # Worlds
    # ------------------------------------------------------------------

    async def load_world(self, world_id: str) -> Optional[WorldRecord]:
        payload = await self._read(self._world_dir(world_id) / "world.json", "load_world")
        return WorldRecord.model_validate(payload) if payload is not None else None

    async def save_world(self, record: WorldRecord) -> None:
        await self._write(self._world_dir(record.id) / "world.json", record.model_dump(mode="json"), "save_world")

    async def delete_world(self, world_id: str) -> bool:
        world_dir = self._world_dir(world_id)
        if not world_dir.exists():
            return False
        await self._run("delete_world", shutil.rmtree, world_dir)
        return True

    async def list_worlds(self) -> List[WorldRecord]:
        if not self.base_path.exists():
            return []
        records = []
        for world_dir in sorted(self.base_path.iterdir()):
            if not world_dir.is_dir():
                continue
            record = await self.load_world(world_dir.name)
            if record is not None:
                records.append(record)
        return records

    # ------------------------------------------------------------------
    # Agents
    # ------------------------------------------------------------------

    async def load_agent(self, world_id: str, agent_id: str) -> Optional[Agent]:
        payload = await self._read(self._agent_path(world_id, agent_id), "load_agent")
        return Agent.model_validate(payload) if payload is not None else None

    async def save_agent(self, world_id: str, agent: Agent) -> None:
        await self._write(self._agent_path(world_id, agent.id), agent.model_dump(mode="json"), "save_agent")

    async def list_agents(self, world_id: str) -> List[Agent]:
        directory = self._world_dir(world_id) / "agents"
        if not directory.exists():
            return []
        agents = []
        for path in sorted(directory.glob("*.json")):
            agent = await self.load_agent(world_id, path.stem)
            if agent is not None:
                agents.append(agent)
        agents.sort(key=lambda agent: agent.created_at)
        return agents

    async def delete_agent(self, world_id: str, agent_id: str) -> bool:
        return await self._unlink(self._agent_path(world_id, agent_id), "delete_agent")

    # ------------------------------------------------------------------
    # Chats
    # ------------------------------------------------------------------

    async def load_chat(self, world_id: str, chat_id: str) -> Optional[ChatSnapshot]:
        path = self._chat_path(world_id, chat_id)
        try:
            payload = await self._read(path, "load_chat")
        except StorageIOError as exc:
            if isinstance(exc.underlying, (json.JSONDecodeError, UnicodeDecodeError)):
                raise SnapshotCorrupt(world_id, chat_id, str(exc.underlying)) from exc
            raise
        if payload is None:
            return None
        try:
            return ChatSnapshot.model_validate(payload)
        except ValidationError as exc:
            raise SnapshotCorrupt(world_id, chat_id, str(exc)) from exc

    async def save_chat(self, snapshot: ChatSnapshot) -> None:
        await self._write(
            self._chat_path(snapshot.world_id, snapshot.id),
            snapshot.model_dump(mode="json"),
            "save_chat",
        )

    async def list_chats(self, world_id: str) -> List[ChatSummary]:
        directory = self._world_dir(world_id) / "chats"
        if not directory.exists():
            return []
        snapshots = []
        for path in directory.glob("*.json"):
            try:
                snapshot = await self.load_chat(world_id, path.stem)
            except SnapshotCorrupt as exc:
                log_error(str(exc))
                continue
            if snapshot is not None:
                snapshots.append(snapshot)
        return _sorted_summaries(snapshots)

    async def delete_chat(self, world_id: str, chat_id: str) -> bool:
        return await self._unlink(self._chat_path(world_id, chat_id), "delete_chat")

    # ------------------------------------------------------------------
    # File helpers
    # ------------------------------------------------------------------

    def _world_dir(self, world_id: str) -> Path:
        return self.base_path / world_id

    def _agent_path(self, world_id: str, agent_id: str) -> Path:
        return self._world_dir(world_id) / "agents" / f"{agent_id}.json"

    def _chat_path(self, world_id: str, chat_id: str) -> Path:
        return self._world_dir(world_id) / "chats" / f"{chat_id}.json"

    async def _run(self, operation: str, func, *args, **kwargs):
        try:
            return await asyncio.to_thread(func, *args, **kwargs)
        except OSError as exc:
            raise StorageIOError(operation, exc) from exc

    async def _read(self, path: Path, operation: str) -> Optional[dict]:
        def _load() -> Optional[dict]:
            if not path.exists():
                return None
            return json.loads(path.read_text("utf-8"))

        try:
            return await asyncio.to_thread(_load)
        except (OSError, json.JSONDecodeError, UnicodeDecodeError) as exc:
            raise StorageIOError(operation, exc) from exc

    async def _write(self, path: Path, payload: dict, operation: str) -> None:
        def _dump() -> None:
            path.parent.mkdir(parents=True, exist_ok=True)
            tmp = path.with_suffix(path.suffix + ".tmp")
            tmp.write_text(json.dumps(payload, indent=2), "utf-8")
            os.replace(tmp, path)

        await self._run(operation, _dump)

    async def _unlink(self, path: Path, operation: str) -> bool:
        def _remove() -> bool:
            if not path.exists():
                return False
            path.unlink()
            return True

        return await self._run(operation, _remove)


__all__ = ["PersistenceStrategy", "InMemoryPersistence", "JsonPersistence"]
