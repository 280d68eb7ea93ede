"""Anthropic Messages API adapter.

Requires the ``anthropic`` extra: ``pip install turnbudget[anthropic]``
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from typing import Any, TypeAlias

from turnbudget.exceptions import ProviderError, ProviderErrorKind
from turnbudget.models.chat import ChatMessage, ChatRequest, ChatResponse, Usage
from turnbudget.models.turn import ImageRef

from .base import classify_status, ensure_alternating_roles, is_context_overflow

logger = logging.getLogger(__name__)

ImageLoader: TypeAlias = Callable[[ImageRef], Awaitable[tuple[str, str] | None]]
"""Loads an attachment as ``(media_type, base64_data)``; ``None`` skips it."""

DEFAULT_MAX_OUTPUT_TOKENS = 1024
WEB_SEARCH_TOOL: dict[str, Any] = {"type": "web_search_20250305", "name": "web_search"}


def _load_sdk() -> Any:
    try:
        import anthropic
    except ImportError:
        msg = (
            "AnthropicProvider requires the anthropic package. "
            "Install with: pip install turnbudget[anthropic]"
        )
        raise ImportError(msg) from None
    return anthropic


class AnthropicProvider:
    """Sends :class:`ChatRequest` objects through ``anthropic.AsyncAnthropic``.

    Every SDK failure is re-raised as a :class:`ProviderError`.  Requests
    rejected for size (HTTP 400/413 with a "prompt is too long" style
    message) are classified ``OVERFLOW`` so the send pipeline can trim
    and retry.

    Parameters:
        client: Optional pre-built async client.  When omitted, one client
            per API key is created lazily from ``request.api_key``.
        image_loader: Async callable returning ``(media_type, base64)`` for
            an attachment.  Without it, images are not sent.
        default_max_tokens: ``max_tokens`` used when the request has none.
    """

    __slots__ = ("_client", "_clients", "_default_max_tokens", "_image_loader")

    def __init__(
        self,
        client: Any = None,
        *,
        image_loader: ImageLoader | None = None,
        default_max_tokens: int = DEFAULT_MAX_OUTPUT_TOKENS,
    ) -> None:
        self._client = client
        self._clients: dict[str, Any] = {}
        self._image_loader = image_loader
        self._default_max_tokens = default_max_tokens

    def __repr__(self) -> str:
        return f"{type(self).__name__}(default_max_tokens={self._default_max_tokens})"

    def _client_for(self, api_key: str | None) -> Any:
        if self._client is not None:
            return self._client
        key = api_key or ""
        client = self._clients.get(key)
        if client is None:
            client = _load_sdk().AsyncAnthropic(api_key=api_key)
            self._clients[key] = client
        return client

    async def _content_blocks(self, message: ChatMessage) -> str | list[dict[str, Any]]:
        if not message.images or self._image_loader is None:
            return message.content
        blocks: list[dict[str, Any]] = []
        for image in message.images:
            loaded = await self._image_loader(image)
            if loaded is None:
                logger.warning("Image %s could not be loaded; sending without it", image.id)
                continue
            media_type, data = loaded
            blocks.append(
                {"type": "image", "source": {"type": "base64", "media_type": media_type, "data": data}},
            )
        if message.content:
            blocks.append({"type": "text", "text": message.content})
        return blocks or message.content

    async def build_payload(self, request: ChatRequest) -> dict[str, Any]:
        """Translate a provider-neutral request into ``messages.create`` kwargs."""
        messages: list[dict[str, Any]] = []
        for msg in ensure_alternating_roles(request.messages):
            content = await self._content_blocks(msg)
            if not content:
                logger.warning("Dropping %s message with no sendable content", msg.role)
                continue
            if messages and messages[-1]["role"] == msg.role:
                messages[-1]["content"] = _join_content(messages[-1]["content"], content)
            else:
                messages.append({"role": msg.role, "content": content})
        payload: dict[str, Any] = {
            "model": request.model,
            "messages": messages,
            "max_tokens": request.options.max_output_tokens or self._default_max_tokens,
        }
        if request.system:
            payload["system"] = request.system
        if request.options.temperature is not None:
            payload["temperature"] = request.options.temperature
        if request.options.web_search:
            payload["tools"] = [WEB_SEARCH_TOOL]
        return payload

    async def send(self, request: ChatRequest) -> ChatResponse:
        payload = await self.build_payload(request)
        client = self._client_for(request.api_key)
        try:
            response = await client.messages.create(**payload)
        except Exception as exc:
            error = _to_provider_error(exc)
            if error is None:
                raise
            raise error from exc

        text = "".join(
            getattr(block, "text", "")
            for block in response.content
            if getattr(block, "type", None) == "text"
        )
        usage = None
        if getattr(response, "usage", None) is not None:
            prompt = response.usage.input_tokens
            completion = response.usage.output_tokens
            usage = Usage(
                prompt_tokens=prompt,
                completion_tokens=completion,
                total_tokens=(prompt or 0) + (completion or 0),
            )
        return ChatResponse(content=text, usage=usage)


def _to_provider_error(exc: Exception) -> ProviderError | None:
    """Classify an SDK exception; ``None`` for exceptions the SDK did not raise."""
    anthropic = _load_sdk()
    if isinstance(exc, anthropic.APIStatusError):
        status = exc.status_code
        message = str(getattr(exc, "message", "") or exc)
        body = exc.body if isinstance(exc.body, dict) else {}
        error = body.get("error")
        provider_code = error.get("type") if isinstance(error, dict) else None
        if is_context_overflow(status, message, provider_code):
            kind = ProviderErrorKind.OVERFLOW
        else:
            kind = classify_status(status)
        return ProviderError(kind, message, status=status, provider_code=provider_code)
    if isinstance(exc, anthropic.APIConnectionError):
        return ProviderError(ProviderErrorKind.NETWORK, str(exc))
    return None


def _join_content(
    first: str | list[dict[str, Any]], second: str | list[dict[str, Any]]
) -> str | list[dict[str, Any]]:
    """Merge two same-role contents left adjacent by a dropped message."""
    if isinstance(first, str) and isinstance(second, str):
        return f"{first}\n\n{second}"

    def as_blocks(content: str | list[dict[str, Any]]) -> list[dict[str, Any]]:
        return [{"type": "text", "text": content}] if isinstance(content, str) else content

    return as_blocks(first) + as_blocks(second)
