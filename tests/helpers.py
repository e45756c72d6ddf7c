"""Shared fakes for the test suite."""

from __future__ import annotations

from typing import Dict, Iterable, List, Optional, Sequence, Union

from agentworld.errors import ModelProviderError, StorageIOError
from agentworld.persistence import InMemoryPersistence
from agentworld.schemas import ChatSnapshot, LLMMessage, ModelConfig, TokenUsage

Reply = Union[str, Exception]


def make_config(name: str, system_prompt: str = "") -> ModelConfig:
    # The fake model keys its scripts on the model name
    return ModelConfig(provider="fake", model=name, system_prompt=system_prompt)


class ScriptedLLM:
    """LanguageModel fake with per-model reply scripts.

    Each call pops the next scripted reply for ``config.model``; once a
    script is exhausted ``default`` is returned. Exceptions in a script are
    raised instead of replying.
    """

    def __init__(
        self,
        scripts: Optional[Dict[str, Iterable[Reply]]] = None,
        *,
        default: Reply = "ok",
        usage: Optional[TokenUsage] = None,
    ) -> None:
        self.scripts: Dict[str, List[Reply]] = {k: list(v) for k, v in (scripts or {}).items()}
        self.default = default
        self.usage = usage
        self.calls: List[tuple[str, List[LLMMessage]]] = []

    def _next(self, config: ModelConfig, messages: Sequence[LLMMessage]) -> str:
        self.calls.append((config.model, list(messages)))
        script = self.scripts.get(config.model)
        reply = script.pop(0) if script else self.default
        if isinstance(reply, ModelProviderError):
            raise reply
        if isinstance(reply, Exception):
            raise ModelProviderError(config.provider, config.model, str(reply), underlying=reply)
        return reply

    def calls_for(self, model: str) -> int:
        return sum(1 for name, _ in self.calls if name == model)

    async def stream(self, config: ModelConfig, messages: Sequence[LLMMessage]):
        reply = self._next(config, messages)
        words = reply.split(" ")
        for index, word in enumerate(words):
            yield word if index == len(words) - 1 else word + " "
        if self.usage is not None:
            yield self.usage

    async def generate(self, config: ModelConfig, messages: Sequence[LLMMessage]) -> str:
        return self._next(config, messages)


class CountingPersistence(InMemoryPersistence):
    """In-memory storage that counts chat writes and can be told to fail."""

    def __init__(self) -> None:
        super().__init__()
        self.chat_writes = 0
        self.fail_chat_writes = False

    async def save_chat(self, snapshot: ChatSnapshot) -> None:
        if self.fail_chat_writes:
            raise StorageIOError("save_chat", OSError("disk full"))
        self.chat_writes += 1
        await super().save_chat(snapshot)
