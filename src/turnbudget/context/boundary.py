"""Dirty-tracked memo of the current context boundary.

A UI refreshing an "N of M turns included" indicator reads
:meth:`BoundaryCache.get_boundary` on every render; the allocator only
runs again after one of the tracked inputs changed.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, TypeAlias

from turnbudget.catalog import DEFAULT_CONTEXT_WINDOW, ModelCatalog
from turnbudget.models.budget import BoundarySnapshot, BoundaryStats, BudgetParameters
from turnbudget.models.turn import ConversationTurn
from turnbudget.settings import Settings
from turnbudget.tokens.estimator import TokenEstimator

from .allocator import BudgetAllocator

logger = logging.getLogger(__name__)

_TRACKED_SETTINGS = ("user_request_allowance", "assistant_response_allowance", "chars_per_token")


@dataclass(frozen=True, slots=True)
class Clean:
    """The cached snapshot reflects the current inputs."""


@dataclass(frozen=True, slots=True)
class Dirty:
    """At least one input changed since the last recompute."""

    reasons: frozenset[str]


CacheState: TypeAlias = Clean | Dirty


class BoundaryCache:
    """Memoizes :meth:`BudgetAllocator.predict` for the current transcript view.

    Mutators only record the new input and a named reason; recomputation is
    deferred to the next :meth:`get_boundary` call.  Recompute reserves
    ``user_request_allowance`` for a zero-length placeholder turn, matching
    "what would be sent if the user pressed enter now".

    Not thread-safe; owned by a single consumer.

    Parameters:
        catalog: Resolves the model to capacity and provider.
        settings: Initial settings snapshot.
        estimator: Shared estimator; its per-turn side-table makes
            recomputes cheap for unchanged turns.
    """

    __slots__ = (
        "_cached",
        "_catalog",
        "_estimator",
        "_model",
        "_recompute_count",
        "_settings",
        "_state",
        "_system_text",
        "_turns",
    )

    def __init__(
        self,
        catalog: ModelCatalog,
        settings: Settings | None = None,
        estimator: TokenEstimator | None = None,
    ) -> None:
        self._catalog = catalog
        self._settings = settings or Settings()
        self._estimator = estimator or TokenEstimator()
        self._turns: list[ConversationTurn] = []
        self._model: str | None = None
        self._system_text = ""
        self._state: CacheState = Dirty(frozenset({"init"}))
        self._cached: BoundarySnapshot | None = None
        self._recompute_count = 0

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(turns={len(self._turns)}, model={self._model!r}, "
            f"state={self._state!r})"
        )

    @property
    def state(self) -> CacheState:
        return self._state

    @property
    def is_dirty(self) -> bool:
        return isinstance(self._state, Dirty)

    @property
    def recompute_count(self) -> int:
        """Number of allocator passes run so far."""
        return self._recompute_count

    @property
    def settings(self) -> Settings:
        return self._settings

    # -- Mutators --

    def mark_dirty(self, reason: str = "unknown") -> None:
        """Invalidate the cached snapshot, recording ``reason``."""
        if isinstance(self._state, Dirty):
            self._state = Dirty(self._state.reasons | {reason})
        else:
            self._state = Dirty(frozenset({reason}))

    def update_turns(self, turns: list[ConversationTurn]) -> None:
        self._turns = list(turns)
        self.mark_dirty("turns")

    def set_model(self, model_id: str | None) -> None:
        if model_id and model_id != self._model:
            self._model = model_id
            self.mark_dirty("model")

    def apply_settings(self, patch: Settings | Mapping[str, Any] | None) -> None:
        """Apply the tracked subset of ``patch``; untracked keys are ignored."""
        if patch is None:
            return
        values = patch.model_dump() if isinstance(patch, Settings) else dict(patch)
        changes = {
            k: values[k]
            for k in _TRACKED_SETTINGS
            if k in values and values[k] is not None and values[k] != getattr(self._settings, k)
        }
        if changes:
            self._settings = self._settings.merged(changes)
            self.mark_dirty("settings")

    def set_system_text(self, text: str | None) -> None:
        text = text or ""
        if text != self._system_text:
            self._system_text = text
            self.mark_dirty("system")

    # -- Read path --

    def get_boundary(self) -> BoundarySnapshot:
        """Return the cached snapshot, recomputing first when dirty."""
        if isinstance(self._state, Clean) and self._cached is not None:
            return self._cached
        reasons = self._state.reasons if isinstance(self._state, Dirty) else frozenset()
        self._cached = self._recompute(reasons)
        self._state = Clean()
        return self._cached

    def _recompute(self, reasons: frozenset[str]) -> BoundarySnapshot:
        settings = self._settings
        info = self._catalog.resolve(self._model) if self._model else None
        estimator = self._estimator.for_provider(info.provider_id) if info else self._estimator
        allocator = BudgetAllocator(estimator)

        max_context = info.max_context if info else DEFAULT_CONTEXT_WINDOW
        reserve = info.provider_reserve(settings) if info else 0
        params = BudgetParameters(
            max_context=max_context,
            user_request_allowance=settings.user_request_allowance,
            provider_reserve=reserve,
            system_tokens=estimator.estimate_text(self._system_text, settings.chars_per_token),
            chars_per_token=settings.chars_per_token,
        )
        prediction = allocator.predict(self._turns, params)
        self._recompute_count += 1
        logger.debug(
            "boundary recompute #%d (%s): %d/%d included",
            self._recompute_count, ",".join(sorted(reasons)),
            len(prediction.predicted), len(self._turns),
        )

        history = prediction.predicted_token_sum
        return BoundarySnapshot(
            included=prediction.predicted,
            excluded=prediction.excluded,
            stats=BoundaryStats(
                model=self._model,
                included_count=len(prediction.predicted),
                excluded_count=len(prediction.excluded),
                predicted_history_tokens=history,
                predicted_total_tokens=history + settings.user_request_allowance,
                user_request_allowance=settings.user_request_allowance,
                chars_per_token=settings.chars_per_token,
                max_context=max_context,
                max_usable=prediction.candidate_capacity,
                dirty_reasons=reasons,
            ),
        )
