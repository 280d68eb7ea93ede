"""Approximate token estimation for text, images and conversation turns.

Text uses a chars-per-token ratio (or a plugged-in :class:`Tokenizer`);
images use a per-provider formula looked up by provider id.  Estimates
are deliberately conservative approximations, not tokenizer-exact.
"""

from __future__ import annotations

import logging
import math
import threading
from collections.abc import Callable
from typing import TypeAlias

from turnbudget.models.turn import ConversationTurn, ImageRef
from turnbudget.protocols.tokenizer import Tokenizer

logger = logging.getLogger(__name__)

ImageFormula: TypeAlias = Callable[[int, int], int]
EstimateKey: TypeAlias = tuple[float, int, int, tuple[tuple[str, int | None, int | None], ...]]

DEFAULT_PROVIDER = "openai"
_TILE = 512


def _tiles(width: int, height: int) -> int:
    return math.ceil(width / _TILE) * math.ceil(height / _TILE)


def _openai_image_tokens(width: int, height: int) -> int:
    # detail:high, 85 base + 170 per 512px tile
    return 85 + 170 * _tiles(width, height)


def _anthropic_image_tokens(width: int, height: int) -> int:
    return 1600 * _tiles(width, height)


def _google_image_tokens(width: int, height: int) -> int:
    return 258


IMAGE_TOKEN_FORMULAS: dict[str, ImageFormula] = {
    "openai": _openai_image_tokens,
    "anthropic": _anthropic_image_tokens,
    "google": _google_image_tokens,
    "xai": _openai_image_tokens,
}
"""Image token formulas keyed by provider id."""

DEFAULT_IMAGE_FORMULA: ImageFormula = _openai_image_tokens


def register_image_formula(provider_id: str, formula: ImageFormula) -> None:
    """Add or replace the image formula for ``provider_id``."""
    IMAGE_TOKEN_FORMULAS[provider_id.lower()] = formula


def estimate_text(text: str | None, chars_per_token: float = 4.0) -> int:
    """Estimate tokens for ``text``: ``ceil(len / ratio)``, at least 1 when non-empty."""
    if not text:
        return 0
    if chars_per_token <= 0:
        msg = "chars_per_token must be positive"
        raise ValueError(msg)
    return max(1, math.ceil(len(text) / chars_per_token))


def estimate_image(
    width: int | None, height: int | None, provider_id: str | None = DEFAULT_PROVIDER
) -> int:
    """Estimate tokens for one image of ``width`` x ``height`` pixels.

    Unknown providers use the default formula.  Missing or non-positive
    dimensions cost nothing.
    """
    if not width or not height or width <= 0 or height <= 0:
        return 0
    key = (provider_id or DEFAULT_PROVIDER).lower()
    formula = IMAGE_TOKEN_FORMULAS.get(key, DEFAULT_IMAGE_FORMULA)
    return formula(width, height)


class TokenEstimator:
    """Turn-level estimator with a memoization side-table.

    The side-table maps ``turn.id`` to ``(key, tokens)`` where ``key`` is
    ``(chars_per_token, len(user_text), len(assistant_text), images)`` with
    ``images`` holding each attachment's id and dimensions.  A cached
    value is only reused when the key matches, and callers that edit or
    delete a turn must call :meth:`invalidate`.  Results are identical
    with ``use_cache=False``.

    Parameters:
        provider_id: Provider used for image formulas.
        tokenizer: Optional tokenizer replacing the chars-per-token
            heuristic for text.
        use_cache: Enable the per-turn side-table.
        max_cache_size: Entries kept before the table is cleared.
    """

    __slots__ = (
        "_cache",
        "_lock",
        "_max_cache_size",
        "_provider_id",
        "_siblings",
        "_tokenizer",
        "_use_cache",
    )

    def __init__(
        self,
        provider_id: str = DEFAULT_PROVIDER,
        tokenizer: Tokenizer | None = None,
        *,
        use_cache: bool = True,
        max_cache_size: int = 10_000,
    ) -> None:
        self._provider_id = provider_id.lower()
        self._tokenizer = tokenizer
        self._use_cache = use_cache
        self._max_cache_size = max_cache_size
        self._cache: dict[str, tuple[EstimateKey, int]] = {}
        self._lock = threading.Lock()
        self._siblings: dict[str, TokenEstimator] = {}

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(provider_id={self._provider_id!r}, "
            f"tokenizer={self._tokenizer!r}, cached={len(self._cache)})"
        )

    @property
    def provider_id(self) -> str:
        return self._provider_id

    @property
    def cache_size(self) -> int:
        with self._lock:
            return len(self._cache)

    def for_provider(self, provider_id: str) -> TokenEstimator:
        """Return an estimator for another provider sharing the same tokenizer.

        Siblings are kept, so repeated calls reuse one side-table per provider.
        """
        key = provider_id.lower()
        if key == self._provider_id:
            return self
        with self._lock:
            sibling = self._siblings.get(key)
            if sibling is None:
                sibling = TokenEstimator(
                    key,
                    self._tokenizer,
                    use_cache=self._use_cache,
                    max_cache_size=self._max_cache_size,
                )
                self._siblings[key] = sibling
        return sibling

    def estimate_text(self, text: str | None, chars_per_token: float = 4.0) -> int:
        if self._tokenizer is None:
            return estimate_text(text, chars_per_token)
        if not text:
            return 0
        return max(1, self._tokenizer.count_tokens(text))

    def estimate_image(self, image: ImageRef) -> int:
        return estimate_image(image.width, image.height, self._provider_id)

    def estimate_images(self, images: list[ImageRef]) -> int:
        return sum(self.estimate_image(img) for img in images)

    def estimate_turn(self, turn: ConversationTurn, chars_per_token: float = 4.0) -> int:
        """Estimate user text + assistant text + attached images for ``turn``."""
        key: EstimateKey = (
            chars_per_token,
            len(turn.user_text),
            len(turn.assistant_text),
            tuple((img.id, img.width, img.height) for img in turn.images),
        )
        if self._use_cache:
            with self._lock:
                hit = self._cache.get(turn.id)
            if hit is not None and hit[0] == key:
                return hit[1]

        tokens = (
            self.estimate_text(turn.user_text, chars_per_token)
            + self.estimate_text(turn.assistant_text, chars_per_token)
            + self.estimate_images(turn.images)
        )

        if self._use_cache:
            with self._lock:
                if len(self._cache) >= self._max_cache_size:
                    self._cache.clear()
                self._cache[turn.id] = (key, tokens)
        return tokens

    def invalidate(self, turn_id: str) -> None:
        """Drop the memoized estimate for ``turn_id`` (after an edit or delete)."""
        with self._lock:
            self._cache.pop(turn_id, None)
            siblings = list(self._siblings.values())
        for sibling in siblings:
            sibling.invalidate(turn_id)

    def clear_cache(self) -> None:
        with self._lock:
            self._cache.clear()
            siblings = list(self._siblings.values())
        for sibling in siblings:
            sibling.clear_cache()
