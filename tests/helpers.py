"""Test doubles shared across the unit tests."""

from __future__ import annotations

import json

from langchain_core.language_models.fake_chat_models import FakeListChatModel


class RecordingSleep:
    """Stands in for asyncio.sleep and remembers every requested delay."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


def fake_llm(*responses: str | dict | list) -> FakeListChatModel:
    """Deterministic chat model replying with ``responses`` in order (then cycling)."""
    return FakeListChatModel(
        responses=[r if isinstance(r, str) else json.dumps(r) for r in responses]
    )


class ScriptedChatModel(FakeListChatModel):
    """Replies with its script once, then fails every later call like a dropped connection."""

    calls: int = 0

    def _call(self, *args, **kwargs) -> str:
        self.calls += 1
        if self.calls > len(self.responses):
            raise ConnectionError("classifier unreachable")
        return super()._call(*args, **kwargs)


def scripted_llm(*responses: str | dict | list) -> ScriptedChatModel:
    return ScriptedChatModel(
        responses=[r if isinstance(r, str) else json.dumps(r) for r in responses]
    )
