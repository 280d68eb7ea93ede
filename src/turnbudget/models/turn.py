"""Conversation turn models."""

from __future__ import annotations

import uuid
from collections.abc import Iterable
from datetime import UTC, datetime

from pydantic import BaseModel, ConfigDict, Field


class ImageRef(BaseModel):
    """Reference to an image attached to a user message.

    Only dimensions are known to this library; raw bytes stay with the
    image store collaborator.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    width: int | None = Field(default=None, ge=0)
    height: int | None = Field(default=None, ge=0)

    @property
    def has_dimensions(self) -> bool:
        return bool(self.width) and bool(self.height)


class ConversationTurn(BaseModel):
    """One user/assistant exchange in the transcript.

    Turns are immutable; an edit produces a new turn with the same ``id``,
    and the editor is responsible for invalidating any memoized estimate
    (see :meth:`turnbudget.tokens.estimator.TokenEstimator.invalidate`).
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    user_text: str = ""
    assistant_text: str = ""
    images: list[ImageRef] = Field(default_factory=list)
    model: str | None = None


def sort_chronologically(turns: Iterable[ConversationTurn]) -> list[ConversationTurn]:
    """Return turns oldest first, deduplicated by id (first occurrence wins)."""
    seen: set[str] = set()
    unique: list[ConversationTurn] = []
    for turn in turns:
        if turn.id in seen:
            continue
        seen.add(turn.id)
        unique.append(turn)
    return sorted(unique, key=lambda t: t.created_at)
