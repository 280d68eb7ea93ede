"""Tokenizer backed by OpenAI's tiktoken library."""

from __future__ import annotations

import functools


class TiktokenCounter:
    """Token counter using OpenAI's tiktoken library.

    Default encoding is cl100k_base.  Counts are exact for OpenAI models and
    close enough for budget estimation on other providers.

    Implements the Tokenizer protocol via structural subtyping and can be
    handed to :class:`~turnbudget.tokens.estimator.TokenEstimator` in place
    of the chars-per-token heuristic.

    The tiktoken import is deferred to ``__init__`` so that importing this
    module does not trigger BPE data loading for callers that stay on the
    heuristic.
    """

    __slots__ = ("_cache", "_encoding", "_max_cache_size")

    def __init__(
        self, encoding_name: str = "cl100k_base", max_cache_size: int = 10_000
    ) -> None:
        try:
            import tiktoken
        except ImportError:
            msg = (
                "tiktoken is required for TiktokenCounter. "
                "Install it with: pip install turnbudget[tiktoken] "
                "or pip install tiktoken"
            )
            raise ImportError(msg) from None

        self._encoding = tiktoken.get_encoding(encoding_name)
        self._max_cache_size = max_cache_size
        self._cache: dict[str, int] = {}

    def count_tokens(self, text: str) -> int:
        """Count the number of tokens in a text string."""
        if text in self._cache:
            return self._cache[text]
        count = len(self._encoding.encode(text))
        # Only cache strings under 10k chars to avoid memory bloat
        if len(text) < 10_000:
            if len(self._cache) >= self._max_cache_size:
                self._cache.clear()
            self._cache[text] = count
        return count

    def __repr__(self) -> str:
        return f"{type(self).__name__}(encoding={self._encoding.name!r})"


@functools.cache
def get_default_counter() -> TiktokenCounter:
    """Get or create the shared TiktokenCounter.

    Call ``get_default_counter.cache_clear()`` to reset it (useful in tests).

    Raises:
        ImportError: If tiktoken is not installed.
    """
    return TiktokenCounter()
