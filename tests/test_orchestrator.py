"""Integration tests for world and agent management through the orchestrator."""

import asyncio

import pytest

from agentworld.bus import subscribe_to_events
from agentworld.errors import AgentNotFound, DuplicateAgentName, WorldNotFound
from agentworld.llm_calls import MirascopeLanguageModel
from agentworld.orchestrator import Orchestrator
from agentworld.persistence import InMemoryPersistence, JsonPersistence
from agentworld.schemas import AgentStatus

from helpers import ScriptedLLM, make_config


@pytest.mark.asyncio
async def test_create_world_persists_record_and_active_chat():
    storage = InMemoryPersistence()
    orchestrator = Orchestrator(storage, ScriptedLLM())
    await orchestrator.initialize()

    world = await orchestrator.create_world("Research Lab", description="Scratch space", turn_limit=4)

    assert world.id == "research-lab"
    assert world.turn_limit == 4
    record = await storage.load_world("research-lab")
    assert record.name == "Research Lab"
    assert record.active_chat_id == world.active_chat_id
    assert await storage.load_chat(world.id, world.active_chat_id) is not None
    assert orchestrator.get_world("Research Lab") is world
    assert [w.id for w in await orchestrator.list_worlds()] == ["research-lab"]

    with pytest.raises(ValueError):
        await orchestrator.create_world("research lab")
    with pytest.raises(ValueError):
        await orchestrator.create_world("***")


def test_defaults_use_mirascope_and_in_memory_storage():
    orchestrator = Orchestrator()

    assert isinstance(orchestrator.storage, InMemoryPersistence)
    assert isinstance(orchestrator.llm, MirascopeLanguageModel)


@pytest.mark.asyncio
async def test_agent_lifecycle_events_and_storage():
    orchestrator = Orchestrator(llm=ScriptedLLM())
    world = await orchestrator.create_world("w1")
    events = []
    subscribe_to_events(world, events.append)

    agent = await orchestrator.create_agent(world, "Alice", make_config("alice"))
    assert await orchestrator.storage.load_agent(world.id, "alice") == agent
    assert orchestrator.get_pipeline(world, "alice").agent is agent

    with pytest.raises(DuplicateAgentName):
        await orchestrator.create_agent(world, "alice", make_config("alice"))

    await orchestrator.remove_agent(world, "alice")

    assert [e.type for e in events] == ["agent-created", "agent-deleted"]
    assert events[0].content == {"agent_id": "alice", "name": "Alice"}
    assert await orchestrator.storage.load_agent(world.id, "alice") is None
    with pytest.raises(AgentNotFound):
        orchestrator.get_pipeline(world, "alice")


@pytest.mark.asyncio
async def test_removed_agent_stops_receiving_messages():
    llm = ScriptedLLM()
    orchestrator = Orchestrator(llm=llm)
    world = await orchestrator.create_world("w1")
    await orchestrator.create_agent(world, "alice", make_config("alice"))
    await orchestrator.create_agent(world, "bob", make_config("bob"))
    await orchestrator.remove_agent(world, "bob")

    await orchestrator.send(world, "anyone there?")

    assert llm.calls_for("bob") == 0
    assert llm.calls_for("alice") == 1


@pytest.mark.asyncio
async def test_clear_agent_memory_resets_turns():
    orchestrator = Orchestrator(llm=ScriptedLLM())
    world = await orchestrator.create_world("w1")
    agent = await orchestrator.create_agent(world, "alice", make_config("alice"))
    await orchestrator.send(world, "hello")
    assert agent.llm_call_count == 1

    await orchestrator.clear_agent_memory(world, "alice")

    assert agent.memory == []
    assert agent.llm_call_count == 0
    stored = await orchestrator.storage.load_agent(world.id, "alice")
    assert stored.memory == []


@pytest.mark.asyncio
async def test_worlds_are_isolated():
    llm = ScriptedLLM()
    orchestrator = Orchestrator(llm=llm)
    first = await orchestrator.create_world("first")
    second = await orchestrator.create_world("second")
    await orchestrator.create_agent(first, "alice", make_config("alice"))
    await orchestrator.create_agent(second, "bob", make_config("bob"))

    await orchestrator.send(first, "only for the first world")

    assert llm.calls_for("alice") == 1
    assert llm.calls_for("bob") == 0
    assert second.agents["bob"].memory == []


@pytest.mark.asyncio
async def test_publish_returns_before_agents_finish():
    orchestrator = Orchestrator(llm=ScriptedLLM(default="later"))
    world = await orchestrator.create_world("w1")
    agent = await orchestrator.create_agent(world, "alice", make_config("alice"))

    orchestrator.publish(world, "hi")
    assert [m.content for m in agent.memory] == ["hi"]
    assert world.bus.pending > 0

    await orchestrator.wait_until_idle(world, timeout=5)
    assert [m.content for m in agent.memory] == ["hi", "later"]


@pytest.mark.asyncio
async def test_json_storage_survives_restart(tmp_path):
    first = Orchestrator(JsonPersistence(tmp_path), ScriptedLLM({"alice": ["stored reply"]}))
    await first.initialize()
    world = await first.create_world("w1", turn_limit=2)
    await first.create_agent(world, "alice", make_config("alice"))
    await first.send(world, "keep this")
    chat_id = world.active_chat_id
    await first.close()

    second = Orchestrator(JsonPersistence(tmp_path), ScriptedLLM())
    await second.initialize()
    restored = await second.load_world("w1")

    assert restored.turn_limit == 2
    assert restored.active_chat_id == chat_id
    assert [m.content for m in restored.agents["alice"].memory] == ["keep this", "stored reply"]
    assert restored.agents["alice"].llm_call_count == 1


@pytest.mark.asyncio
async def test_delete_world():
    orchestrator = Orchestrator(llm=ScriptedLLM())
    world = await orchestrator.create_world("w1")
    await orchestrator.create_agent(world, "alice", make_config("alice"))

    assert await orchestrator.delete_world("w1") is True
    assert await orchestrator.delete_world("w1") is False
    with pytest.raises(WorldNotFound):
        orchestrator.get_world("w1")
    with pytest.raises(WorldNotFound):
        await orchestrator.load_world("w1")


@pytest.mark.asyncio
async def test_send_timeout_propagates():
    class SlowLLM(ScriptedLLM):
        async def generate(self, config, messages):
            await asyncio.sleep(5)
            return "too late"

    orchestrator = Orchestrator(llm=SlowLLM(), streaming=False)
    world = await orchestrator.create_world("w1")
    await orchestrator.create_agent(world, "alice", make_config("alice"))

    with pytest.raises(asyncio.TimeoutError):
        await orchestrator.send(world, "hi", timeout=0.05)


@pytest.mark.asyncio
async def test_update_world_changes_turn_limit_but_not_id():
    orchestrator = Orchestrator(llm=ScriptedLLM())
    world = await orchestrator.create_world("w1", turn_limit=2)
    events = []
    subscribe_to_events(world, events.append)

    await orchestrator.update_world(world, name="Workshop", turn_limit=7)

    assert world.id == "w1"
    record = await orchestrator.storage.load_world("w1")
    assert (record.name, record.turn_limit) == ("Workshop", 7)
    assert events[-1].type == "world-updated"

    with pytest.raises(ValueError):
        await orchestrator.update_world(world, turn_limit=0)
    with pytest.raises(ValueError):
        await orchestrator.update_world(world, name="  ")
    assert world.turn_limit == 7


@pytest.mark.asyncio
async def test_update_agent_keeps_memory_and_changes_routing():
    llm = ScriptedLLM()
    orchestrator = Orchestrator(llm=llm)
    world = await orchestrator.create_world("w1")
    await orchestrator.create_agent(world, "alice", make_config("alice"))
    await orchestrator.send(world, "hello")
    events = []
    subscribe_to_events(world, events.append)

    agent = await orchestrator.update_agent(
        world,
        "Alice",
        config=make_config("alice-v2"),
        status=AgentStatus.INACTIVE,
    )
    await orchestrator.send(world, "anyone?")

    assert agent.id == "alice"
    assert len(agent.memory) == 3
    assert llm.calls_for("alice-v2") == 0
    assert events[0].type == "agent-updated"
    stored = await orchestrator.storage.load_agent(world.id, "alice")
    assert stored.config.model == "alice-v2"

    await orchestrator.update_agent(world, "alice", status=AgentStatus.ACTIVE)
    await orchestrator.send(world, "back?")

    assert llm.calls_for("alice-v2") == 1
    with pytest.raises(AgentNotFound):
        await orchestrator.update_agent(world, "carol", auto_reply=False)
