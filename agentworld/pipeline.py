"""Agent message pipeline.

One ``AgentPipeline`` per agent subscribes to its world's message channel.
Each incoming message runs through a small state machine:

    IDLE -> SAVING -> DECIDING -> (RESPONDING | SKIPPED) -> IDLE

SAVING and DECIDING run synchronously inside bus dispatch, so every agent's
memory records messages in publish order. RESPONDING (the model call) and
the end-of-cycle listeners run as background tasks tracked by the bus;
several agents may be responding at the same time.
"""

from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING, Awaitable, Callable, List, Optional

from agentworld.bus import Subscription, publish_message, publish_sse, subscribe_to_messages
from agentworld.decision import Decision, decide
from agentworld.errors import ModelProviderError
from agentworld.llm_calls import LanguageModel
from agentworld.logging_utils import log_bus, log_debug, log_error, log_info, log_success, preview
from agentworld.mentions import (
    add_auto_mention,
    extract_mentions,
    is_pass_response,
    pass_notice,
    remove_self_mentions,
    should_auto_mention,
)
from agentworld.prompts import build_llm_messages
from agentworld.schemas import (
    Agent,
    AgentMessage,
    AgentStatus,
    StreamEvent,
    WorldMessageEvent,
    generate_id,
    utc_now,
)
from agentworld.streaming import StreamingCoordinator
from agentworld.turns import claim_turn_limit_notice, record_call, release_call, turn_limit_notice

if TYPE_CHECKING:
    from agentworld.world import World

CycleListener = Callable[["World", Agent, Decision], Awaitable[None]]


class PipelineState(str, Enum):
    IDLE = "idle"
    SAVING = "saving"
    DECIDING = "deciding"
    RESPONDING = "responding"
    SKIPPED = "skipped"


class AgentPipeline:
    """Consumes bus messages on behalf of one agent.

    Args:
        world: World the agent lives in
        agent: Agent this pipeline serves
        llm: Language model collaborator
        streaming: Stream responses as ``sse`` events (False uses ``generate``)
        memory_window: Memory entries sent to the model (-1 uses the configured default)
        count_failed_calls: Whether a failed model call consumes turn budget
    """

    def __init__(
        self,
        world: "World",
        agent: Agent,
        llm: LanguageModel,
        *,
        streaming: bool = True,
        memory_window: Optional[int] = -1,
        count_failed_calls: bool = False,
    ) -> None:
        self.world = world
        self.agent = agent
        self.llm = llm
        self.streaming = streaming
        self.memory_window = memory_window
        self.count_failed_calls = count_failed_calls
        self.coordinator = StreamingCoordinator(llm)
        self.state = PipelineState.IDLE
        self._in_flight = 0
        self._listeners: List[CycleListener] = []
        self._subscription: Optional[Subscription] = None

    # ------------------------------------------------------------------
    # Wiring
    # ------------------------------------------------------------------

    def attach(self) -> Subscription:
        if self._subscription is None:
            self._subscription = subscribe_to_messages(self.world, self.handle_message)
        return self._subscription

    def detach(self) -> bool:
        if self._subscription is None:
            return False
        released = self._subscription.unsubscribe()
        self._subscription = None
        return released

    def add_cycle_listener(self, listener: CycleListener) -> None:
        """Register a coroutine awaited after every completed cycle."""
        self._listeners.append(listener)

    # ------------------------------------------------------------------
    # Saving / deciding (synchronous, inside bus dispatch)
    # ------------------------------------------------------------------

    def save_incoming(self, message: WorldMessageEvent) -> bool:
        """Append ``message`` to memory as an inbound entry.

        Returns False for the agent's own messages and for duplicates.
        """
        agent = self.agent
        if message.sender.lower() == agent.id.lower():
            return False
        if any(entry.message_id == message.message_id for entry in agent.memory):
            return False
        agent.memory.append(
            AgentMessage(
                role="user",
                content=message.content,
                sender=message.sender,
                created_at=message.timestamp,
                message_id=message.message_id,
                chat_id=message.chat_id,
                reply_to_message_id=message.reply_to_message_id,
            )
        )
        return True

    def handle_message(self, message: WorldMessageEvent) -> Optional[Awaitable[None]]:
        """Bus handler: save, decide, and return the follow-up coroutine (if any)."""
        agent = self.agent
        if message.sender.lower() == agent.id.lower():
            return None

        self.state = PipelineState.SAVING
        self.save_incoming(message)

        self.state = PipelineState.DECIDING
        if agent.status == AgentStatus.INACTIVE:
            decision = Decision.SKIP
        else:
            decision = decide(self.world, agent, message)
        log_debug("decision", f"{agent.id} <- {message.sender}: {decision.value} ({preview(message.content, 40)})")
        if decision is Decision.SKIP and extract_mentions(message.content) == [agent.id]:
            log_debug("mentions", f"{agent.id} mentioned mid-message by {message.sender}; only leading mentions trigger")

        if decision is Decision.RESPOND:
            self.state = PipelineState.RESPONDING
            self._in_flight += 1
            # Taken now so triggers arriving while this call runs see the spent budget
            record_call(agent)
            return self._respond(message)

        self.state = PipelineState.SKIPPED
        self._in_flight += 1
        if decision is Decision.THROTTLED:
            return self._throttled()
        return self._finish(decision)

    # ------------------------------------------------------------------
    # Background work
    # ------------------------------------------------------------------

    async def _throttled(self) -> None:
        if claim_turn_limit_notice(self.agent):
            log_info(f"{self.agent.id} reached the turn limit ({self.world.turn_limit}) in {self.world.id}")
            publish_message(self.world, turn_limit_notice(self.world), self.agent.id)
        await self._finish(Decision.THROTTLED)

    async def _respond(self, message: WorldMessageEvent) -> None:
        world, agent = self.world, self.agent
        prompt = build_llm_messages(agent, window=self.memory_window)
        message_id = generate_id()
        log_bus(f"{agent.id} responding to {message.sender} in {world.id}")

        try:
            if self.streaming:
                result = await self.coordinator.stream_response(world, agent, prompt, message_id=message_id)
                text = result.text
            else:
                text = await self._generate(prompt, message_id)
        except ModelProviderError as exc:
            agent.status = AgentStatus.ERROR
            if not self.count_failed_calls:
                release_call(agent)
            log_error(f"{agent.id} failed to respond: {exc.reason}")
            await self._finish(Decision.RESPOND)
            return

        if not text.strip():
            release_call(agent)
            log_info(f"{agent.id} produced an empty response; nothing published")
            await self._finish(Decision.RESPOND)
            return

        agent.status = AgentStatus.ACTIVE
        agent.last_active = utc_now()

        if is_pass_response(text):
            self._remember_reply(text, message, message_id)
            publish_message(
                world,
                pass_notice(agent.id),
                agent.id,
                reply_to_message_id=message.message_id,
                message_id=message_id,
            )
            await self._finish(Decision.RESPOND)
            return

        final = remove_self_mentions(text, agent.id)
        target = ""
        if agent.auto_reply and should_auto_mention(final, message.sender, agent.id):
            target = message.sender
        # Also resolves <world> tags when no mention is added
        final = add_auto_mention(final, target)

        if not final.strip():
            release_call(agent)
            log_info(f"{agent.id} response was empty after post-processing; nothing published")
            await self._finish(Decision.RESPOND)
            return

        self._remember_reply(final, message, message_id)
        log_success(f"{agent.id}: {preview(final)}")
        publish_message(
            world,
            final,
            agent.id,
            reply_to_message_id=message.message_id,
            message_id=message_id,
        )
        await self._finish(Decision.RESPOND)

    async def _generate(self, prompt, message_id: str) -> str:
        """Non-streaming call; failures are published as an ``error`` event."""
        agent = self.agent
        try:
            return await self.llm.generate(agent.config, prompt)
        except Exception as exc:
            error = exc if isinstance(exc, ModelProviderError) else ModelProviderError(
                agent.config.provider,
                agent.config.model,
                str(exc) or type(exc).__name__,
                underlying=exc,
            )
            publish_sse(
                self.world,
                StreamEvent(
                    world_id=self.world.id,
                    agent_id=agent.id,
                    type="error",
                    message_id=message_id,
                    error=error.reason,
                    chat_id=self.world.active_chat_id,
                ),
            )
            if error is exc:
                raise
            raise error from exc

    def _remember_reply(self, content: str, trigger: WorldMessageEvent, message_id: str) -> None:
        self.agent.memory.append(
            AgentMessage(
                role="assistant",
                content=content,
                sender=self.agent.id,
                message_id=message_id,
                chat_id=self.world.active_chat_id,
                reply_to_message_id=trigger.message_id,
            )
        )

    async def _finish(self, decision: Decision) -> None:
        try:
            for listener in list(self._listeners):
                try:
                    await listener(self.world, self.agent, decision)
                except Exception as exc:
                    log_error(f"Cycle listener failed for {self.agent.id}: {exc}")
        finally:
            self._in_flight -= 1
            if self._in_flight <= 0:
                self._in_flight = 0
                self.state = PipelineState.IDLE


__all__ = ["AgentPipeline", "PipelineState", "CycleListener"]
