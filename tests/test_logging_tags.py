"""Tests for the console logging tags and configuration checks.

These tests assert that:
- Routing decisions print [•] and successful replies print [✓]
- Model failures print [!] with the provider's reason
- Debug categories only print when enabled
"""

from __future__ import annotations

import contextlib
import io

import pytest

from agentworld.config import Config
from agentworld.logging_utils import Color, colored, debug_enabled, log_debug, preview
from agentworld.orchestrator import Orchestrator

from helpers import ScriptedLLM, make_config


@pytest.fixture(autouse=True)
def plain_output(monkeypatch):
    monkeypatch.setenv("AGENT_WORLD_NO_COLOR", "1")
    for name in ("AGENT_WORLD_DEBUG", "DEBUG_BUS", "DEBUG_CHATS", "DEBUG_LLM"):
        monkeypatch.delenv(name, raising=False)


async def run_once(llm):
    orchestrator = Orchestrator(llm=llm, streaming=True)
    world = await orchestrator.create_world("w1")
    await orchestrator.create_agent(world, "alice", make_config("alice"))

    buf = io.StringIO()
    with contextlib.redirect_stdout(buf):
        await orchestrator.send(world, "@alice status?")
    return buf.getvalue()


@pytest.mark.asyncio
async def test_response_cycle_tags():
    out = await run_once(ScriptedLLM({"alice": ["All green"]}))

    assert "[•] alice responding to human in w1" in out
    assert "[✓] alice: All green" in out
    assert "[!]" not in out


@pytest.mark.asyncio
async def test_failure_tag_includes_reason():
    out = await run_once(ScriptedLLM({"alice": [RuntimeError("quota exceeded")]}))

    assert "[!] alice failed to respond: quota exceeded" in out
    assert "[✓] alice" not in out


def test_colored_respects_no_color(monkeypatch):
    assert colored("hi", Color.RED) == "hi"

    monkeypatch.delenv("AGENT_WORLD_NO_COLOR")
    assert colored("hi", Color.RED, bold=True) == "\033[1m\033[91mhi\033[0m"


def test_debug_categories(monkeypatch):
    assert debug_enabled("bus") is False

    monkeypatch.setenv("DEBUG_BUS", "1")
    assert debug_enabled("bus") is True
    assert debug_enabled("chats") is False

    monkeypatch.setenv("AGENT_WORLD_DEBUG", "chats, llm")
    assert debug_enabled("chats") is True
    assert debug_enabled("decision") is False

    monkeypatch.setenv("AGENT_WORLD_DEBUG", "all")
    assert debug_enabled("decision") is True


def test_log_debug_prints_only_enabled_categories(monkeypatch):
    monkeypatch.setenv("DEBUG_LLM", "true")

    buf = io.StringIO()
    with contextlib.redirect_stdout(buf):
        log_debug("llm", "visible")
        log_debug("bus", "hidden")

    assert buf.getvalue() == "  [DEBUG_LLM] visible\n"


def test_preview_flattens_and_truncates():
    assert preview("line one\n  line two") == "line one line two"
    assert preview("x" * 100, limit=10) == "xxxxxxx..."


def test_config_validation(monkeypatch):
    monkeypatch.setattr(Config, "LLM_PROVIDER", "ollama")
    Config.validate()

    monkeypatch.setattr(Config, "DEFAULT_TURN_LIMIT", 0)
    with pytest.raises(ValueError, match="AGENT_WORLD_TURN_LIMIT"):
        Config.validate()

    monkeypatch.setattr(Config, "DEFAULT_TURN_LIMIT", 5)
    monkeypatch.setattr(Config, "MEMORY_WINDOW", -1)
    with pytest.raises(ValueError, match="AGENT_WORLD_MEMORY_WINDOW"):
        Config.validate()

    monkeypatch.setattr(Config, "MEMORY_WINDOW", 50)
    monkeypatch.setattr(Config, "LLM_PROVIDER", "anthropic")
    monkeypatch.setattr(Config, "ANTHROPIC_API_KEY", None)
    with pytest.raises(ValueError, match="ANTHROPIC_API_KEY"):
        Config.validate()


def test_config_display(monkeypatch):
    monkeypatch.setattr(Config, "MEMORY_WINDOW", 0)
    monkeypatch.setattr(Config, "STREAMING_ENABLED", False)

    text = Config.display()

    assert "Memory Window: full history" in text
    assert "Streaming: off" in text


@pytest.mark.asyncio
async def test_mid_message_mention_is_reported_when_debugging(monkeypatch):
    monkeypatch.setenv("DEBUG_MENTIONS", "1")
    llm = ScriptedLLM()
    orchestrator = Orchestrator(llm=llm, streaming=True)
    world = await orchestrator.create_world("w1")
    await orchestrator.create_agent(world, "alice", make_config("alice"))

    buf = io.StringIO()
    with contextlib.redirect_stdout(buf):
        await orchestrator.send(world, "Could you check this, @alice?", sender="bob")

    assert "[DEBUG_MENTIONS] alice mentioned mid-message by bob" in buf.getvalue()
    assert llm.calls == []
