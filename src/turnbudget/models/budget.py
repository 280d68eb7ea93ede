"""Budget parameter and allocation result models."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

from .turn import ConversationTurn


class BudgetParameters(BaseModel):
    """Per-send capacity envelope.

    ``provider_reserve`` (PARA) is non-zero only for providers that need
    output tokens reserved inside the same window as the input.
    """

    model_config = ConfigDict(frozen=True)

    max_context: int = Field(gt=0)
    user_request_allowance: int = Field(default=0, ge=0)
    provider_reserve: int = Field(default=0, ge=0)
    system_tokens: int = Field(default=0, ge=0)
    chars_per_token: float = Field(default=4.0, gt=0)


class Prediction(BaseModel):
    """Outcome of the predict phase (new turn size not yet known)."""

    model_config = ConfigDict(frozen=True)

    max_context: int
    candidate_capacity: int
    system_tokens: int
    provider_reserve: int
    predicted: list[ConversationTurn] = Field(default_factory=list)
    predicted_token_sum: int = 0
    excluded: list[ConversationTurn] = Field(default_factory=list)


class FinalizedHistory(BaseModel):
    """Outcome of the finalize phase (new turn size known).

    Invariant: ``system_tokens + user_tokens + history_tokens <= max_context``.
    """

    model_config = ConfigDict(frozen=True)

    max_context: int
    user_tokens: int
    system_tokens: int
    history_limit: int
    initial_history_tokens: int
    history_tokens: int
    included: list[ConversationTurn] = Field(default_factory=list)
    evicted: list[ConversationTurn] = Field(default_factory=list)

    @property
    def input_tokens(self) -> int:
        return self.system_tokens + self.user_tokens + self.history_tokens

    @property
    def remaining_context(self) -> int:
        return self.max_context - self.input_tokens

    @property
    def trimmed_count(self) -> int:
        return len(self.evicted)


class BoundaryStats(BaseModel):
    """Numbers behind a boundary snapshot, for "N/M included" style indicators."""

    model_config = ConfigDict(frozen=True)

    model: str | None = None
    included_count: int = 0
    excluded_count: int = 0
    predicted_history_tokens: int = 0
    predicted_total_tokens: int = 0
    user_request_allowance: int = 0
    chars_per_token: float = 4.0
    max_context: int = 0
    max_usable: int = 0
    dirty_reasons: frozenset[str] = Field(default_factory=frozenset)


class BoundarySnapshot(BaseModel):
    """Which turns would be sent right now, and why."""

    model_config = ConfigDict(frozen=True)

    included: list[ConversationTurn] = Field(default_factory=list)
    excluded: list[ConversationTurn] = Field(default_factory=list)
    stats: BoundaryStats = Field(default_factory=BoundaryStats)
