"""End-to-end tests of the agent message pipeline with a scripted model."""

import pytest

from agentworld.bus import subscribe_to_messages, subscribe_to_sse
from agentworld.orchestrator import Orchestrator
from agentworld.pipeline import PipelineState
from agentworld.schemas import AgentStatus, WorldMessageEvent

from helpers import ScriptedLLM, make_config


async def build(llm, *names, turn_limit=5, **kwargs):
    orchestrator = Orchestrator(llm=llm, streaming=kwargs.pop("streaming", True), **kwargs)
    await orchestrator.initialize()
    world = await orchestrator.create_world("w1", turn_limit=turn_limit)
    for name in names:
        await orchestrator.create_agent(world, name, make_config(name))
    return orchestrator, world


def record_messages(world):
    published: list[WorldMessageEvent] = []
    subscribe_to_messages(world, published.append)
    return published


@pytest.mark.asyncio
async def test_addressed_human_message_scenario():
    llm = ScriptedLLM({"alice": ["Here is the summary."]})
    orchestrator, world = await build(llm, "alice", "bob", turn_limit=2)
    published = record_messages(world)

    human = await orchestrator.send(world, "@alice summarize")

    alice, bob = world.agents["alice"], world.agents["bob"]
    assert [(m.role, m.sender) for m in alice.memory] == [("user", "human"), ("assistant", "alice")]
    assert alice.memory[0].message_id == human.message_id
    assert [(m.sender, m.content) for m in bob.memory] == [
        ("human", "@alice summarize"),
        ("alice", "Here is the summary."),
    ]
    assert llm.calls_for("alice") == 1
    assert llm.calls_for("bob") == 0
    assert alice.llm_call_count == 1

    reply = published[-1]
    assert reply.sender == "alice"
    assert reply.content == "Here is the summary."
    assert reply.reply_to_message_id == human.message_id


@pytest.mark.asyncio
async def test_human_broadcast_is_remembered_once_by_everyone():
    llm = ScriptedLLM(default="noted")
    orchestrator, world = await build(llm, "alice", "bob", "carol")

    human = await orchestrator.send(world, "Team meeting at noon")

    for agent in world.agents.values():
        inbound = [m for m in agent.memory if m.message_id == human.message_id]
        assert len(inbound) == 1
        assert all(not (m.role == "user" and m.sender == agent.id) for m in agent.memory)
        # Own reply plus the two other agents' replies
        assert len(agent.memory) == 4
    assert len(llm.calls) == 3


@pytest.mark.asyncio
async def test_turn_limit_chain_emits_single_notice_and_resets():
    llm = ScriptedLLM(
        {"alice": ["@bob your turn", "ping", "ping", "@bob again please"]},
        default="ping",
    )
    orchestrator, world = await build(llm, "alice", "bob", turn_limit=3)
    published = record_messages(world)
    alice, bob = world.agents["alice"], world.agents["bob"]

    await orchestrator.send(world, "@alice start the game")

    notices = [m for m in published if m.content.startswith("@human Turn limit reached")]
    assert len(notices) == 1
    assert notices[0].sender == "alice"
    assert llm.calls_for("alice") == 3
    assert llm.calls_for("bob") == 3
    assert alice.llm_call_count == 3

    await orchestrator.send(world, "@alice keep going")

    notices = [m for m in published if m.content.startswith("@human Turn limit reached")]
    assert len(notices) == 2
    assert llm.calls_for("alice") == 6
    assert llm.calls_for("bob") == 6


@pytest.mark.asyncio
async def test_agent_replies_are_auto_addressed():
    llm = ScriptedLLM({"alice": ["@bob what do you think?"], "bob": ["Looks good to me"]})
    orchestrator, world = await build(llm, "alice", "bob")
    published = record_messages(world)

    await orchestrator.send(world, "@alice ask bob")

    bob_reply = next(m for m in published if m.sender == "bob")
    assert bob_reply.content == "@alice Looks good to me"


@pytest.mark.asyncio
async def test_auto_reply_can_be_disabled():
    llm = ScriptedLLM({"alice": ["@bob what do you think?"], "bob": ["Looks good to me"]})
    orchestrator = Orchestrator(llm=llm, streaming=True)
    world = await orchestrator.create_world("w1")
    await orchestrator.create_agent(world, "alice", make_config("alice"))
    await orchestrator.create_agent(world, "bob", make_config("bob"), auto_reply=False)
    published = record_messages(world)

    await orchestrator.send(world, "@alice ask bob")

    bob_reply = next(m for m in published if m.sender == "bob")
    assert bob_reply.content == "Looks good to me"


@pytest.mark.asyncio
async def test_self_mentions_are_stripped():
    llm = ScriptedLLM({"alice": ["@alice noted, will do"]})
    orchestrator, world = await build(llm, "alice")
    published = record_messages(world)

    await orchestrator.send(world, "please handle it")

    assert published[-1].content == "noted, will do"
    assert world.agents["alice"].memory[-1].content == "noted, will do"


@pytest.mark.asyncio
async def test_pass_token_hands_control_back():
    llm = ScriptedLLM({"alice": ["<world>pass</world>"]})
    orchestrator, world = await build(llm, "alice")
    published = record_messages(world)

    await orchestrator.send(world, "your call")

    alice = world.agents["alice"]
    assert alice.memory[-1].role == "assistant"
    assert alice.memory[-1].content == "<world>pass</world>"
    assert published[-1].content == "@human alice is passing control to you"
    assert published[-1].sender == "alice"
    assert alice.llm_call_count == 1


@pytest.mark.asyncio
async def test_model_failure_is_isolated_to_the_agent():
    llm = ScriptedLLM({"alice": [RuntimeError("provider down")]}, default="fine here")
    orchestrator, world = await build(llm, "alice", "bob")
    stream_events = []
    subscribe_to_sse(world, stream_events.append)
    published = record_messages(world)

    await orchestrator.send(world, "status report please")

    alice, bob = world.agents["alice"], world.agents["bob"]
    assert [m.role for m in alice.memory if m.sender == "alice"] == []
    assert alice.llm_call_count == 0
    assert alice.status is AgentStatus.ERROR

    errors = [e for e in stream_events if e.type == "error"]
    assert len(errors) == 1
    assert errors[0].agent_id == "alice"
    assert "provider down" in errors[0].error

    assert any(m.sender == "bob" and m.content == "fine here" for m in published)
    assert bob.llm_call_count == 1


@pytest.mark.asyncio
async def test_failed_calls_can_consume_budget():
    llm = ScriptedLLM({"alice": [RuntimeError("provider down")]})
    orchestrator, world = await build(llm, "alice", count_failed_calls=True)

    await orchestrator.send(world, "hello")

    assert world.agents["alice"].llm_call_count == 1


@pytest.mark.asyncio
async def test_stream_events_correlate_with_published_reply():
    llm = ScriptedLLM({"alice": ["three word reply"]})
    orchestrator, world = await build(llm, "alice")
    stream_events = []
    subscribe_to_sse(world, stream_events.append)
    published = record_messages(world)

    await orchestrator.send(world, "hi")

    assert [e.type for e in stream_events] == ["start", "chunk", "chunk", "chunk", "end"]
    assert {e.message_id for e in stream_events} == {published[-1].message_id}


@pytest.mark.asyncio
async def test_non_streaming_mode_uses_generate():
    llm = ScriptedLLM({"alice": ["generated reply"]})
    orchestrator, world = await build(llm, "alice", streaming=False)
    stream_events = []
    subscribe_to_sse(world, stream_events.append)
    published = record_messages(world)

    await orchestrator.send(world, "hi")

    assert stream_events == []
    assert published[-1].content == "generated reply"


@pytest.mark.asyncio
async def test_inactive_agent_listens_but_stays_silent():
    llm = ScriptedLLM()
    orchestrator, world = await build(llm, "alice")
    world.agents["alice"].status = AgentStatus.INACTIVE

    await orchestrator.send(world, "@alice are you there?")

    assert len(world.agents["alice"].memory) == 1
    assert llm.calls == []


@pytest.mark.asyncio
async def test_duplicate_messages_are_saved_once():
    orchestrator, world = await build(ScriptedLLM(), "alice")
    pipeline = orchestrator.get_pipeline(world, "alice")
    event = WorldMessageEvent(world_id=world.id, content="hi", sender="human")

    assert pipeline.save_incoming(event) is True
    assert pipeline.save_incoming(event) is False
    assert pipeline.state is PipelineState.IDLE


@pytest.mark.asyncio
async def test_active_chat_snapshot_follows_each_cycle():
    llm = ScriptedLLM({"alice": ["hello human"]})
    orchestrator, world = await build(llm, "alice")

    await orchestrator.send(world, "hi alice")

    snapshot = await orchestrator.storage.load_chat(world.id, world.active_chat_id)
    assert [m.content for m in snapshot.agent_memories["alice"]] == ["hi alice", "hello human"]
    assert snapshot.message_count == 2
    stored_agent = await orchestrator.storage.load_agent(world.id, "alice")
    assert stored_agent.llm_call_count == 1


@pytest.mark.asyncio
async def test_overlapping_agent_triggers_respect_turn_limit():
    llm = ScriptedLLM(default="on it")
    orchestrator, world = await build(llm, "alice", turn_limit=1)
    published = record_messages(world)

    # Both land before the first reply finishes
    orchestrator.publish(world, "@alice first task", sender="bob")
    orchestrator.publish(world, "@alice second task", sender="bob")
    await orchestrator.wait_until_idle(world)

    alice = world.agents["alice"]
    assert llm.calls_for("alice") == 1
    assert alice.llm_call_count == 1
    notices = [m for m in published if m.content.startswith("@human Turn limit reached")]
    assert len(notices) == 1


@pytest.mark.asyncio
async def test_budget_is_returned_for_empty_replies():
    llm = ScriptedLLM({"alice": ["   "]})
    orchestrator, world = await build(llm, "alice")

    await orchestrator.send(world, "@alice anything?", sender="bob")

    assert llm.calls_for("alice") == 1
    assert world.agents["alice"].llm_call_count == 0
