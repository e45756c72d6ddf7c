"""Tests for building the model prompt from agent memory."""

import pytest

from agentworld.config import Config
from agentworld.prompts import build_llm_messages, format_memory_entry, memory_window
from agentworld.schemas import Agent, AgentMessage

from helpers import make_config


def make_agent(entries: int, system_prompt: str = "You are Alpha.") -> Agent:
    memory = [
        AgentMessage(role="user", content=f"entry {index}", sender="human")
        for index in range(entries)
    ]
    return Agent(id="alpha", name="Alpha", config=make_config("alpha", system_prompt), memory=memory)


def test_window_keeps_most_recent_entries():
    agent = make_agent(60)

    messages = build_llm_messages(agent, window=50)

    assert len(messages) == 51
    assert messages[0].role == "system"
    assert messages[0].content == "You are Alpha."
    assert messages[1].content == "entry 10"
    assert messages[-1].content == "entry 59"


def test_default_window_comes_from_config(monkeypatch):
    monkeypatch.setattr(Config, "MEMORY_WINDOW", 3)
    agent = make_agent(10)

    messages = build_llm_messages(agent)

    assert [m.content for m in messages[1:]] == ["entry 7", "entry 8", "entry 9"]


@pytest.mark.parametrize("window", [None, 0])
def test_disabled_window_sends_full_history(window):
    agent = make_agent(60)

    assert len(build_llm_messages(agent, window=window)) == 61


def test_window_larger_than_memory_keeps_everything():
    agent = make_agent(50)

    assert len(memory_window(agent.memory, 50)) == 50
    assert len(memory_window(agent.memory, 80)) == 50


def test_negative_window_is_rejected():
    with pytest.raises(ValueError):
        memory_window([], -3)


def test_blank_system_prompt_is_omitted():
    agent = make_agent(2, system_prompt="   ")

    messages = build_llm_messages(agent, window=None)

    assert [m.role for m in messages] == ["user", "user"]


def test_entries_are_labelled_by_speaker():
    own = format_memory_entry(AgentMessage(role="assistant", content="Sure.", sender="alpha"))
    human = format_memory_entry(AgentMessage(role="user", content="Hi all", sender="human"))
    peer = format_memory_entry(AgentMessage(role="user", content="@alpha ready?", sender="bob"))
    system = format_memory_entry(AgentMessage(role="user", content="Chat restored", sender="system"))

    assert (own.role, own.content) == ("assistant", "Sure.")
    assert (human.role, human.content) == ("user", "Hi all")
    assert (peer.role, peer.content) == ("user", "[bob]: @alpha ready?")
    assert system.content == "[system]: Chat restored"
