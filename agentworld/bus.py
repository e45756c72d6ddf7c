"""Per-world event bus.

Each world owns exactly one ``WorldEventBus``; there is no process-wide
emitter. Three channels are carried:

- ``message``: chat messages (``WorldMessageEvent``)
- ``sse``: streaming events (``StreamEvent``)
- ``system``: lifecycle notifications (``SystemEvent``)

Dispatch is synchronous: every handler registered when ``emit`` is called
runs before ``emit`` returns, in registration order, so all subscribers see
messages in publish order. A handler that returns a coroutine has it
scheduled as a task tracked by the bus; ``wait_until_idle`` awaits those
tasks (including ones spawned while waiting).
"""

from __future__ import annotations

import asyncio
import inspect
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Dict, List, Optional, Set, Union

from agentworld.decision import normalize_sender
from agentworld.logging_utils import log_debug, log_error, preview
from agentworld.schemas import StreamEvent, SystemEvent, WorldMessageEvent

if TYPE_CHECKING:
    from agentworld.world import World

MESSAGE_CHANNEL = "message"
SSE_CHANNEL = "sse"
SYSTEM_CHANNEL = "system"
CHANNELS = (MESSAGE_CHANNEL, SSE_CHANNEL, SYSTEM_CHANNEL)

BusEvent = Union[WorldMessageEvent, StreamEvent, SystemEvent]
Handler = Callable[[Any], Union[None, Awaitable[None]]]


class Subscription:
    """Handle returned by ``subscribe``; ``unsubscribe`` releases the handler."""

    def __init__(self, bus: "WorldEventBus", channel: str, handler: Handler) -> None:
        self._bus = bus
        self.channel = channel
        self.handler = handler
        self.active = True

    def unsubscribe(self) -> bool:
        """Release the handler. Returns False if already released."""
        if not self.active:
            return False
        self.active = False
        return self._bus._remove(self)


class WorldEventBus:
    """Isolated publish/subscribe channel set for a single world."""

    def __init__(self, world_id: str) -> None:
        self.world_id = world_id
        self._subscriptions: Dict[str, List[Subscription]] = {name: [] for name in CHANNELS}
        self._tasks: Set[asyncio.Task] = set()

    def subscribe(self, channel: str, handler: Handler) -> Subscription:
        if channel not in self._subscriptions:
            raise ValueError(f"Unknown bus channel '{channel}' (expected one of {CHANNELS})")
        subscription = Subscription(self, channel, handler)
        self._subscriptions[channel].append(subscription)
        return subscription

    def _remove(self, subscription: Subscription) -> bool:
        handlers = self._subscriptions[subscription.channel]
        if subscription in handlers:
            handlers.remove(subscription)
            return True
        return False

    def subscriber_count(self, channel: str) -> int:
        return len(self._subscriptions.get(channel, []))

    def emit(self, channel: str, event: BusEvent) -> None:
        """Deliver ``event`` to every handler on ``channel``.

        Raises:
            ValueError: If the channel is unknown or the event belongs to another world
        """
        if channel not in self._subscriptions:
            raise ValueError(f"Unknown bus channel '{channel}' (expected one of {CHANNELS})")
        if event.world_id != self.world_id:
            raise ValueError(
                f"Event for world '{event.world_id}' cannot be published on the bus "
                f"of world '{self.world_id}'"
            )

        # Snapshot so handlers subscribing/unsubscribing mid-dispatch do not affect this event
        for subscription in list(self._subscriptions[channel]):
            if not subscription.active:
                continue
            try:
                result = subscription.handler(event)
            except Exception as exc:
                log_error(f"Bus handler failed on '{channel}' in world {self.world_id}: {exc}")
                continue
            if inspect.isawaitable(result):
                self.spawn(result)

    def spawn(self, awaitable: Awaitable[Any]) -> asyncio.Task:
        """Schedule ``awaitable`` as a task tracked by ``wait_until_idle``."""
        task = asyncio.ensure_future(awaitable)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            log_error(f"Background task failed in world {self.world_id}: {exc}")

    @property
    def pending(self) -> int:
        """Tracked tasks that have not finished yet."""
        return sum(1 for task in self._tasks if not task.done())

    async def wait_until_idle(self, timeout: Optional[float] = None) -> None:
        """Wait until no tracked task is running.

        Raises:
            asyncio.TimeoutError: If ``timeout`` elapses first
        """

        async def _drain() -> None:
            while self._tasks:
                await asyncio.gather(*list(self._tasks), return_exceptions=True)

        if timeout is None:
            await _drain()
        else:
            await asyncio.wait_for(_drain(), timeout=timeout)


# ============================================================================
# Transport functions
# ============================================================================


def publish_message(
    world: "World",
    content: str,
    sender: str,
    *,
    reply_to_message_id: Optional[str] = None,
    message_id: Optional[str] = None,
) -> WorldMessageEvent:
    """Publish a chat message into ``world``.

    The sender is normalized (``HUMAN`` and ``user*`` become ``human``) and the
    event is stamped with the world's active chat.
    """
    normalized = normalize_sender(sender)
    fields: Dict[str, Any] = {
        "world_id": world.id,
        "content": content,
        "sender": normalized,
        "role": "assistant" if normalized in world.agents else "user",
        "chat_id": world.active_chat_id,
        "reply_to_message_id": reply_to_message_id,
    }
    if message_id:
        fields["message_id"] = message_id
    event = WorldMessageEvent(**fields)
    log_debug("bus", f"{world.id} <- {normalized}: {preview(content)}")
    world.bus.emit(MESSAGE_CHANNEL, event)
    return event


def publish_sse(world: "World", event: StreamEvent) -> None:
    world.bus.emit(SSE_CHANNEL, event)


def publish_event(world: "World", event_type: str, content: Optional[Dict[str, Any]] = None) -> SystemEvent:
    event = SystemEvent(
        world_id=world.id,
        type=event_type,
        content=content or {},
        chat_id=world.active_chat_id,
    )
    world.bus.emit(SYSTEM_CHANNEL, event)
    return event


def subscribe_to_messages(world: "World", handler: Handler) -> Subscription:
    return world.bus.subscribe(MESSAGE_CHANNEL, handler)


def subscribe_to_sse(world: "World", handler: Handler) -> Subscription:
    return world.bus.subscribe(SSE_CHANNEL, handler)


def subscribe_to_events(world: "World", handler: Handler) -> Subscription:
    return world.bus.subscribe(SYSTEM_CHANNEL, handler)


__all__ = [
    "MESSAGE_CHANNEL",
    "SSE_CHANNEL",
    "SYSTEM_CHANNEL",
    "Subscription",
    "WorldEventBus",
    "publish_message",
    "publish_sse",
    "publish_event",
    "subscribe_to_messages",
    "subscribe_to_sse",
    "subscribe_to_events",
]
