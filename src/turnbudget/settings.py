"""Runtime settings for budgeting and sending.

Defaults and bounds mirror the settings a chat UI exposes on its
"context" tab.  The send pipeline reads a snapshot once per send, so
changes made mid-send never affect an in-flight attempt.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from typing import Any, Protocol, runtime_checkable

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from turnbudget.exceptions import SettingsError

logger = logging.getLogger(__name__)

DEFAULT_MAX_TRIM_ATTEMPTS = 10
ENV_PREFIX = "TURNBUDGET_"


class Settings(BaseModel):
    """Validated, immutable settings snapshot.

    Parameters:
        user_request_allowance: Tokens reserved for the next user turn
            during prediction (URA).
        assistant_response_allowance: Tokens reserved for the reply on
            providers that count output against the input window (ARA).
        chars_per_token: Ratio used by the heuristic text estimator.
        max_trim_attempts: Ceiling on provider attempts within one send.
            ``0`` selects the default ceiling.
        request_timeout_seconds: Deferred cancellation delay for a send.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    user_request_allowance: int = Field(default=600, ge=0, le=500_000)
    assistant_response_allowance: int = Field(default=800, ge=0, le=500_000)
    chars_per_token: float = Field(default=4.0, ge=1.5, le=8.0)
    max_trim_attempts: int = Field(default=DEFAULT_MAX_TRIM_ATTEMPTS, ge=0, le=100)
    request_timeout_seconds: float = Field(default=120.0, ge=5.0, le=600.0)

    @property
    def effective_max_trim_attempts(self) -> int:
        return self.max_trim_attempts or DEFAULT_MAX_TRIM_ATTEMPTS

    def merged(self, patch: Mapping[str, Any]) -> Settings:
        """Return a validated copy with ``patch`` applied.

        Raises:
            SettingsError: If a key is unknown or a value is out of range.
        """
        data = {**self.model_dump(), **dict(patch)}
        try:
            return Settings.model_validate(data)
        except ValidationError as exc:
            msg = f"Invalid settings patch: {exc.error_count()} error(s)"
            raise SettingsError(msg, details={"errors": exc.errors()}) from exc

    @classmethod
    def from_env(
        cls, prefix: str = ENV_PREFIX, environ: Mapping[str, str] | None = None
    ) -> Settings:
        """Build settings from ``<PREFIX><FIELD>`` environment variables.

        Unset variables keep their defaults.
        """
        env = os.environ if environ is None else environ
        patch: dict[str, Any] = {}
        for name in cls.model_fields:
            raw = env.get(f"{prefix}{name.upper()}")
            if raw is not None and raw.strip():
                patch[name] = raw.strip()
        if patch:
            logger.debug("Settings overrides from environment: %s", sorted(patch))
        return cls().merged(patch)


@runtime_checkable
class SettingsProvider(Protocol):
    """Collaborator that supplies the current settings snapshot."""

    def get(self) -> Settings: ...


class StaticSettings:
    """In-process settings holder implementing :class:`SettingsProvider`."""

    __slots__ = ("_settings",)

    def __init__(self, settings: Settings | None = None) -> None:
        self._settings = settings or Settings()

    def get(self) -> Settings:
        return self._settings

    def update(self, patch: Mapping[str, Any]) -> Settings:
        """Validate and apply a patch; the previous snapshot is left untouched."""
        self._settings = self._settings.merged(patch)
        return self._settings

    def reset(self) -> None:
        self._settings = Settings()

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self._settings!r})"
