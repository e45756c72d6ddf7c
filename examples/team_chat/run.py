"""
Team Chat - Multi-Agent Routing
===============================

WHAT THIS SHOWS:
- Agents only answer when addressed (leading @mention) or on a human broadcast
- Agent-to-agent replies are auto-addressed back to the asker
- The turn limit stops a ping-pong chain and hands control to the human
- Chats are snapshotted and can be swapped without losing memory

Run deterministically (no LLM):

    uv run python -m examples.team_chat.run

Use a real model (requires LLM_PROVIDER, LLM_MODEL and an API key):

    uv run python -m examples.team_chat.run --llm --turn-limit 3

Keep the world on disk between runs:

    uv run python -m examples.team_chat.run --data-path data/worlds
"""

from __future__ import annotations

import argparse
import asyncio
from pathlib import Path
from typing import Sequence

from agentworld import (
    InMemoryPersistence,
    JsonPersistence,
    LLMMessage,
    ModelConfig,
    Orchestrator,
    StreamEvent,
    WorldMessageEvent,
    WorldNotFound,
    subscribe_to_messages,
    subscribe_to_sse,
)
from agentworld.config import Config
from agentworld.logging_utils import Color, colored


# ============================================================================
# Deterministic stand-in model
# ============================================================================


class EchoTeamModel:
    """Replies from a fixed table so the routing rules can be watched offline.

    The planner always delegates to the engineer, who always asks the
    planner back; only the turn limit ends the exchange.
    """

    REPLIES = {
        "planner": "@engineer can you estimate the migration?",
        "engineer": "Roughly two days, want me to start?",
    }

    async def stream(self, config: ModelConfig, messages: Sequence[LLMMessage]):
        reply = self.REPLIES.get(config.model, "Noted.")
        for word in reply.split(" "):
            yield word + " "

    async def generate(self, config: ModelConfig, messages: Sequence[LLMMessage]) -> str:
        return self.REPLIES.get(config.model, "Noted.")


TEAM = {
    "Planner": "You coordinate the team. Delegate work with @mentions and keep answers short.",
    "Engineer": "You are a pragmatic engineer. Give concrete estimates in one or two sentences.",
}


def print_message(event: WorldMessageEvent) -> None:
    speaker = colored(f"{event.sender:>9}", Color.CYAN, bold=True)
    print(f"{speaker} | {event.content}")


def print_stream(event: StreamEvent) -> None:
    if event.type == "end" and event.usage is not None:
        estimated = " (estimated)" if event.usage.estimated else ""
        print(colored(f"          {event.agent_id}: {event.usage.total_tokens} tokens{estimated}", Color.YELLOW))
    elif event.type == "error":
        print(colored(f"          {event.agent_id} failed: {event.error}", Color.RED))


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Multi-agent team chat")
    parser.add_argument("--llm", action="store_true", help="Use the configured LLM provider")
    parser.add_argument("--turn-limit", type=int, default=Config.DEFAULT_TURN_LIMIT, help="Agent turn limit")
    parser.add_argument(
        "--data-path",
        type=Path,
        default=None,
        help="Store worlds as JSON under this directory (default: in memory)",
    )
    parser.add_argument("--no-stream", action="store_true", help="Disable streaming events")
    return parser.parse_args()


async def main(args: argparse.Namespace) -> None:
    if args.llm:
        Config.validate()
        print(Config.display())
        llm = None
        provider, model_for = Config.LLM_PROVIDER, lambda name: Config.LLM_MODEL
    else:
        llm = EchoTeamModel()
        provider, model_for = "echo", lambda name: name.lower()

    storage = JsonPersistence(args.data_path) if args.data_path else InMemoryPersistence()
    orchestrator = Orchestrator(storage, llm, streaming=not args.no_stream)
    await orchestrator.initialize()

    try:
        world = await orchestrator.load_world("team-chat")
        print(colored(f"Resumed world {world.id} (chat {world.active_chat_id})", Color.GREEN))
    except WorldNotFound:
        world = await orchestrator.create_world("Team Chat", turn_limit=args.turn_limit)
        for name, prompt in TEAM.items():
            config = ModelConfig(provider=provider, model=model_for(name), system_prompt=prompt)
            await orchestrator.create_agent(world, name, config)

    subscribe_to_messages(world, print_message)
    subscribe_to_sse(world, print_stream)

    print("\n--- Broadcast: every agent answers once ---")
    await orchestrator.send(world, "Morning team, quick status please.")

    print("\n--- Addressed: planner and engineer go back and forth until the turn limit ---")
    await orchestrator.send(world, "@planner what is the plan for the database migration?")

    first_chat = world.active_chat_id
    title = await orchestrator.generate_chat_title(world)
    await orchestrator.rename_chat(world, first_chat, title)

    print("\n--- New chat: memories start empty, turn budgets carry over ---")
    await orchestrator.new_chat(world)
    await orchestrator.send(world, "@engineer anything else blocking you?")

    await orchestrator.load_chat(world, first_chat)
    print("\nChats:")
    for chat in await orchestrator.list_chats(world):
        marker = "*" if chat.id == world.active_chat_id else " "
        print(f"  {marker} {chat.id}  {chat.name:<30} {chat.message_count} messages")

    await orchestrator.close()


if __name__ == "__main__":
    asyncio.run(main(parse_args()))
