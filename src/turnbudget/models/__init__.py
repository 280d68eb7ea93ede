"""Core data models for turnbudget."""

from .budget import (
    BoundarySnapshot,
    BoundaryStats,
    BudgetParameters,
    FinalizedHistory,
    Prediction,
)
from .chat import ChatMessage, ChatRequest, ChatResponse, RequestOptions, Role, Usage
from .telemetry import (
    AttemptOutcome,
    SendAttempt,
    SendResult,
    TelemetryEvent,
    TelemetryStatus,
    TurnSelection,
)
from .turn import ConversationTurn, ImageRef, sort_chronologically

__all__ = [
    "AttemptOutcome",
    "BoundarySnapshot",
    "BoundaryStats",
    "BudgetParameters",
    "ChatMessage",
    "ChatRequest",
    "ChatResponse",
    "ConversationTurn",
    "FinalizedHistory",
    "ImageRef",
    "Prediction",
    "RequestOptions",
    "Role",
    "SendAttempt",
    "SendResult",
    "TelemetryEvent",
    "TelemetryStatus",
    "TurnSelection",
    "Usage",
    "sort_chronologically",
]
