"""Telemetry event and send outcome models."""

from __future__ import annotations

from datetime import UTC, datetime
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field

from .budget import FinalizedHistory
from .chat import ChatMessage, ChatResponse
from .turn import ConversationTurn


class TelemetryStatus(StrEnum):
    """Pipeline transitions at which a telemetry event is emitted."""

    PREFLIGHT = "preflight"
    ATTEMPT = "attempt"
    SUCCESS = "success"
    ERROR = "error"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (TelemetryStatus.SUCCESS, TelemetryStatus.ERROR, TelemetryStatus.CANCELLED)


class AttemptOutcome(StrEnum):
    SUCCESS = "success"
    OVERFLOW = "overflow"
    ERROR = "error"
    CANCELLED = "cancelled"


class TurnSelection(BaseModel):
    """A selected turn id with the token estimate it was admitted with."""

    model_config = ConfigDict(frozen=True)

    id: str
    tokens: int


class SendAttempt(BaseModel):
    """One provider call within a send."""

    model_config = ConfigDict(frozen=True)

    attempt: int = Field(ge=1)
    sent_turn_ids: tuple[str, ...]
    trimmed_internal: int = 0
    trimmed_provider: int = 0
    outcome: AttemptOutcome


class TelemetryEvent(BaseModel):
    """Immutable record describing the pipeline state at a transition.

    The shape is fixed; observers must not rely on any field beyond these.
    """

    model_config = ConfigDict(frozen=True)

    status: TelemetryStatus
    conversation_id: str | None = None
    model: str
    provider_id: str
    attempt_number: int | None = None
    attempts_used: int = 0
    trimmed_internal: int = 0
    trimmed_provider: int = 0
    trimmed_count: int = 0
    selection: tuple[TurnSelection, ...] = ()
    max_context: int = 0
    system_tokens: int = 0
    user_tokens: int = 0
    chars_per_token: float = 4.0
    predicted_count: int = 0
    predicted_history_tokens: int = 0
    predicted_total_tokens: int = 0
    remaining_context: int | None = None
    error_code: str | None = None
    messages: tuple[ChatMessage, ...] = ()
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @property
    def selected_ids(self) -> list[str]:
        return [s.id for s in self.selection]


class SendResult(BaseModel):
    """Successful outcome of :meth:`SendPipeline.send`."""

    model_config = ConfigDict(frozen=True)

    response: ChatResponse
    budget: FinalizedHistory
    included: list[ConversationTurn] = Field(default_factory=list)
    attempts_used: int = 0
    trimmed_internal: int = 0
    trimmed_provider: int = 0
    attempts: list[SendAttempt] = Field(default_factory=list)

    @property
    def content(self) -> str:
        return self.response.content

    @property
    def trimmed_count(self) -> int:
        return self.trimmed_internal + self.trimmed_provider
