"""Model catalog: resolves a model id to its capacity and provider."""

from __future__ import annotations

import logging
import threading
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from turnbudget.exceptions import ModelNotFoundError
from turnbudget.settings import Settings

logger = logging.getLogger(__name__)

RESERVE_PROVIDERS: frozenset[str] = frozenset({"openai"})
"""Providers whose reply tokens count against the same window as the input."""

DEFAULT_CONTEXT_WINDOW = 8192


class ModelInfo(BaseModel):
    """Capacity and routing metadata for one model.

    Parameters:
        id: Model identifier sent to the provider.
        provider_id: Key used for provider and image-formula lookup.
        context_window: Raw context window in tokens.
        tpm: Tokens-per-minute limit; caps the usable context when lower
            than the window.
        otpm: Output-tokens-per-minute limit; caps ``max_output_tokens``.
        response_reserve: Explicit provider reserve (PARA) in tokens.
            ``None`` derives it from the provider policy.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    provider_id: str = "openai"
    context_window: int = Field(default=DEFAULT_CONTEXT_WINDOW, gt=0)
    tpm: int | None = Field(default=None, gt=0)
    rpm: int | None = Field(default=None, ge=0)
    tpd: int | None = Field(default=None, ge=0)
    otpm: int | None = Field(default=None, gt=0)
    response_reserve: int | None = Field(default=None, ge=0)
    web_search: bool | None = None
    enabled: bool = True

    @property
    def max_context(self) -> int:
        """Effective capacity: the smaller of the window and the TPM limit."""
        if self.tpm is None:
            return self.context_window
        return min(self.context_window, self.tpm)

    def provider_reserve(self, settings: Settings) -> int:
        """Tokens withheld for the reply (PARA) under ``settings``."""
        if self.response_reserve is not None:
            return self.response_reserve
        if self.provider_id in RESERVE_PROVIDERS:
            return settings.assistant_response_allowance
        return 0


BUILTIN_MODELS: tuple[ModelInfo, ...] = (
    ModelInfo(id="gpt-5", provider_id="openai", context_window=128_000, tpm=30_000, rpm=500, tpd=900_000),
    ModelInfo(id="gpt-5-mini", provider_id="openai", context_window=128_000, tpm=200_000, rpm=500, tpd=2_000_000),
    ModelInfo(id="gpt-4.1", provider_id="openai", context_window=128_000, tpm=30_000, rpm=500, tpd=900_000),
    ModelInfo(id="gpt-4o", provider_id="openai", context_window=128_000, tpm=30_000, rpm=500, tpd=900_000),
    ModelInfo(id="gpt-4o-mini", provider_id="openai", context_window=128_000, tpm=200_000, rpm=500, tpd=2_000_000),
    ModelInfo(id="claude-sonnet-4-5", provider_id="anthropic", context_window=200_000, tpm=30_000, otpm=8_000),
    ModelInfo(id="claude-haiku-4-5", provider_id="anthropic", context_window=200_000, tpm=50_000, otpm=10_000),
    ModelInfo(id="gemini-2.5-pro", provider_id="google", context_window=1_000_000, tpm=125_000),
    ModelInfo(id="grok-4", provider_id="xai", context_window=256_000),
)


class ModelCatalog:
    """Registry of known models.

    Built-in models (those in :data:`BUILTIN_MODELS`) can be disabled or
    updated but not removed; any other entry passed to the constructor
    counts as custom.  Unknown ids resolve to a conservative default entry
    so that a send can still be budgeted.
    """

    __slots__ = ("_builtin_ids", "_lock", "_models")

    def __init__(self, models: tuple[ModelInfo, ...] | list[ModelInfo] = BUILTIN_MODELS) -> None:
        self._models: dict[str, ModelInfo] = {m.id: m for m in models}
        self._builtin_ids: frozenset[str] = frozenset(
            m.id for m in BUILTIN_MODELS if m.id in self._models
        )
        self._lock = threading.Lock()

    def __repr__(self) -> str:
        return f"{type(self).__name__}(models={len(self._models)})"

    def __contains__(self, model_id: object) -> bool:
        return model_id in self._models

    def get(self, model_id: str) -> ModelInfo:
        """Strict lookup.

        Raises:
            ModelNotFoundError: If ``model_id`` is not in the catalog.
        """
        with self._lock:
            info = self._models.get(model_id)
        if info is None:
            msg = f"Model '{model_id}' is not in the catalog"
            raise ModelNotFoundError(msg, details={"model": model_id})
        return info

    def resolve(self, model_id: str) -> ModelInfo:
        """Lenient lookup: unknown ids get a default 8192-token entry."""
        with self._lock:
            info = self._models.get(model_id)
        if info is None:
            logger.debug("Model %r not in catalog; using defaults", model_id)
            return ModelInfo(id=model_id)
        return info

    def add(self, info: ModelInfo) -> bool:
        """Add a custom model. Returns False if the id already exists."""
        with self._lock:
            if info.id in self._models:
                return False
            self._models[info.id] = info
        return True

    def update(self, model_id: str, **patch: Any) -> ModelInfo:
        """Replace selected fields of an existing entry and return the new entry."""
        current = self.get(model_id)
        updated = ModelInfo.model_validate({**current.model_dump(), **patch, "id": model_id})
        with self._lock:
            self._models[model_id] = updated
        return updated

    def remove(self, model_id: str) -> bool:
        """Remove a custom model. Built-in models are never removed."""
        with self._lock:
            if model_id in self._builtin_ids or model_id not in self._models:
                return False
            del self._models[model_id]
        return True

    def set_enabled(self, model_id: str, enabled: bool) -> None:
        self.update(model_id, enabled=enabled)

    def list_models(self) -> list[ModelInfo]:
        """Enabled first, then built-ins before custom models, then by id."""
        with self._lock:
            models = list(self._models.values())
        return sorted(
            models,
            key=lambda m: (not m.enabled, m.id not in self._builtin_ids, m.id),
        )
