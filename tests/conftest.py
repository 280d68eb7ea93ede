"""Shared fixtures for turnbudget tests."""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime, timedelta
from typing import Any

import pytest

from turnbudget.catalog import ModelCatalog, ModelInfo
from turnbudget.exceptions import ProviderError, ProviderErrorKind
from turnbudget.models.chat import ChatRequest, ChatResponse, Usage
from turnbudget.models.turn import ConversationTurn, ImageRef
from turnbudget.providers.registry import ApiKeyStore, ProviderRegistry

BASE_TIME = datetime(2025, 1, 15, 12, 0, 0, tzinfo=UTC)

HANG = object()
"""Scripted outcome that blocks the fake provider until it is cancelled."""


def make_turn(
    turn_id: str,
    tokens: int = 0,
    *,
    index: int = 0,
    assistant_tokens: int = 0,
    images: list[ImageRef] | None = None,
) -> ConversationTurn:
    """Create a turn whose heuristic estimate (4 chars/token) is exact.

    ``index`` orders turns chronologically (one minute apart).
    """
    return ConversationTurn(
        id=turn_id,
        created_at=BASE_TIME + timedelta(minutes=index),
        user_text="u" * (tokens * 4),
        assistant_text="a" * (assistant_tokens * 4),
        images=images or [],
    )


def make_history(*sizes: int) -> list[ConversationTurn]:
    """Create chronologically ordered turns ``t0, t1, ...`` with the given sizes."""
    return [make_turn(f"t{i}", size, index=i) for i, size in enumerate(sizes)]


def overflow_error() -> ProviderError:
    return ProviderError(ProviderErrorKind.OVERFLOW, "maximum context length exceeded", status=400)


class FakeProvider:
    """A provider that replays a scripted list of outcomes.

    Each outcome is a ``ChatResponse``, a ``str`` (reply text), an
    exception instance (raised), or ``HANG`` (waits until cancelled).
    When the script runs out, every call succeeds with ``"ok"``.
    """

    def __init__(self, *outcomes: Any) -> None:
        self._outcomes = list(outcomes)
        self.requests: list[ChatRequest] = []
        self.cancelled_calls = 0

    async def send(self, request: ChatRequest) -> ChatResponse:
        self.requests.append(request)
        outcome: Any = self._outcomes.pop(0) if self._outcomes else "ok"
        if outcome is HANG:
            try:
                await asyncio.Event().wait()
            except asyncio.CancelledError:
                self.cancelled_calls += 1
                raise
        if isinstance(outcome, BaseException):
            raise outcome
        if isinstance(outcome, ChatResponse):
            return outcome
        return ChatResponse(content=str(outcome), usage=Usage(prompt_tokens=1, completion_tokens=1))

    @property
    def call_count(self) -> int:
        return len(self.requests)


class FakeImageSource:
    """Image metadata source with a fixed table.

    Ids in ``broken`` raise; ids in ``hanging`` block until cancelled.
    """

    def __init__(
        self,
        images: dict[str, tuple[int, int]],
        broken: set[str] | None = None,
        hanging: set[str] | None = None,
    ) -> None:
        self._images = images
        self._broken = broken or set()
        self._hanging = hanging or set()
        self.lookups: list[str] = []
        self.cancelled_lookups = 0

    async def get_dimensions(self, image_id: str) -> ImageRef | None:
        self.lookups.append(image_id)
        if image_id in self._hanging:
            try:
                await asyncio.Event().wait()
            except asyncio.CancelledError:
                self.cancelled_lookups += 1
                raise
        if image_id in self._broken:
            msg = f"storage unavailable for {image_id}"
            raise OSError(msg)
        dims = self._images.get(image_id)
        if dims is None:
            return None
        return ImageRef(id=image_id, width=dims[0], height=dims[1])


TEST_MODELS = (
    ModelInfo(id="small", provider_id="fake", context_window=1000),
    ModelInfo(id="small-capped", provider_id="fake", context_window=1000, otpm=50),
    ModelInfo(id="reserved", provider_id="openai", context_window=1000),
    ModelInfo(id="orphan", provider_id="nobody", context_window=1000),
)


@pytest.fixture()
def catalog() -> ModelCatalog:
    return ModelCatalog(TEST_MODELS)


@pytest.fixture()
def registry() -> ProviderRegistry:
    keys = ApiKeyStore({"fake": "sk-test", "openai": "sk-test"}, use_env=False)
    return ProviderRegistry(keys)
