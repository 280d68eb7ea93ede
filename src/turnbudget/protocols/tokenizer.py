"""Tokenizer protocol for pluggable text token counting."""

from __future__ import annotations

from typing import Protocol, runtime_checkable


@runtime_checkable
class Tokenizer(Protocol):
    """Protocol for token counting.

    The default estimator is a chars-per-token heuristic; plug in any
    tokenizer (tiktoken, HuggingFace tokenizers, sentencepiece) for closer
    estimates.
    """

    def count_tokens(self, text: str) -> int:
        """Count the number of tokens in a text string.

        Parameters:
            text: The input text to tokenize and count.

        Returns:
            The total number of tokens as determined by the underlying
            tokenization scheme (e.g., BPE, SentencePiece, whitespace).
        """
        ...
