"""Custom exceptions for turnbudget.

Every budget and send failure carries a stable ``code`` so that callers
(e.g. a UI layer) can map failure kinds to user-facing text without
parsing messages.
"""

from __future__ import annotations

from enum import StrEnum
from typing import Any

__all__ = [
    "ContextOverflowError",
    "MissingApiKeyError",
    "ModelNotFoundError",
    "PipelineBusyError",
    "ProviderError",
    "ProviderErrorKind",
    "ProviderNotRegisteredError",
    "SendCancelledError",
    "SendTimeoutError",
    "SettingsError",
    "TurnBudgetError",
    "UserPromptTooLargeError",
]


class TurnBudgetError(Exception):
    """Base exception for all turnbudget errors."""

    code: str = "turnbudget_error"

    def __init__(self, message: str | None = None, details: dict[str, Any] | None = None) -> None:
        super().__init__(message or self.code)
        self.details: dict[str, Any] = details or {}
        self.attempts_used: int = 0


class UserPromptTooLargeError(TurnBudgetError):
    """The outgoing turn plus the system preamble alone exceed the model capacity."""

    code = "user_prompt_too_large"


class ContextOverflowError(TurnBudgetError):
    """History could not be trimmed enough, locally or after provider retries."""

    code = "context_overflow_after_trimming"


class ProviderNotRegisteredError(TurnBudgetError):
    """No provider adapter is registered for the resolved provider id."""

    code = "provider_not_registered"


class MissingApiKeyError(TurnBudgetError):
    """No API key is configured for the resolved provider id."""

    code = "missing_api_key"


class ModelNotFoundError(TurnBudgetError):
    """Raised by strict catalog lookups for unknown model ids."""

    code = "model_not_found"


class SettingsError(TurnBudgetError):
    """Raised when a settings patch fails validation."""

    code = "invalid_settings"


class PipelineBusyError(TurnBudgetError):
    """A send was started while another send on the same pipeline is in flight."""

    code = "pipeline_busy"


class SendCancelledError(TurnBudgetError):
    """The send was cancelled through its cancellation token."""

    code = "cancelled"


class SendTimeoutError(SendCancelledError):
    """The send was cancelled by its deferred timeout."""

    code = "timeout"


class ProviderErrorKind(StrEnum):
    """Classification of remote provider failures.

    Only ``OVERFLOW`` is acted upon by the send pipeline's retry loop.
    """

    AUTH = "auth"
    RATE = "rate"
    NETWORK = "network"
    SERVER = "server"
    OVERFLOW = "overflow"


class ProviderError(TurnBudgetError):
    """A classified failure reported by a provider adapter."""

    def __init__(
        self,
        kind: ProviderErrorKind,
        message: str | None = None,
        *,
        status: int | None = None,
        provider_code: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message or f"provider_{kind.value}", details)
        self.kind = kind
        self.status = status
        self.provider_code = provider_code

    @property
    def code(self) -> str:  # type: ignore[override]
        return f"provider_{self.kind.value}"

    @property
    def is_overflow(self) -> bool:
        return self.kind is ProviderErrorKind.OVERFLOW
