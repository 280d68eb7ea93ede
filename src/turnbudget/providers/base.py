"""Helpers shared by provider adapters: failure classification and role alternation."""

from __future__ import annotations

import re
from collections.abc import Sequence

from turnbudget.exceptions import ProviderErrorKind
from turnbudget.models.chat import ChatMessage

OVERFLOW_PROVIDER_CODES: frozenset[str] = frozenset({"context_length_exceeded"})
"""Provider error codes that always mean the request was too large."""

_OVERFLOW_PATTERN = re.compile(
    r"prompt is too long|context length|too many tokens|too large"
    r"|exceeds context window|maximum context",
    re.IGNORECASE,
)


def classify_status(status: int | None) -> ProviderErrorKind:
    """Map an HTTP status to a failure kind.

    ``401``/``403`` are auth failures, ``429`` is rate limiting, ``5xx`` is
    a server failure; everything else (including no status) is treated as
    a network failure.
    """
    if status in (401, 403):
        return ProviderErrorKind.AUTH
    if status == 429:
        return ProviderErrorKind.RATE
    if status is not None and status >= 500:
        return ProviderErrorKind.SERVER
    return ProviderErrorKind.NETWORK


def is_context_overflow(
    status: int | None, message: str | None, provider_code: str | None = None
) -> bool:
    """Return True when a rejection means "the request exceeds the context window"."""
    if provider_code in OVERFLOW_PROVIDER_CODES:
        return True
    if status not in (None, 400, 413):
        return False
    return bool(message and _OVERFLOW_PATTERN.search(message))


def ensure_alternating_roles(messages: Sequence[ChatMessage]) -> list[ChatMessage]:
    """Merge consecutive same-role messages to enforce role alternation.

    APIs such as Anthropic's Messages API require ``user`` and
    ``assistant`` messages to strictly alternate.  A history turn without
    a reply followed by the next user message breaks that rule, so
    consecutive messages sharing a role are merged by joining their
    content with ``"\\n\\n"``; images are concatenated in order.
    """
    merged: list[ChatMessage] = []
    for msg in messages:
        if merged and merged[-1].role == msg.role:
            prev = merged[-1]
            content = "\n\n".join(part for part in (prev.content, msg.content) if part)
            merged[-1] = ChatMessage(role=prev.role, content=content, images=[*prev.images, *msg.images])
        else:
            merged.append(msg)
    return merged
