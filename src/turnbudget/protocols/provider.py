"""Provider port: the boundary between the send pipeline and a remote service."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from turnbudget.models.chat import ChatRequest, ChatResponse


@runtime_checkable
class Provider(Protocol):
    """A remote generative-text service adapter.

    Implementations translate the provider-neutral request into their wire
    format and classify every failure as a
    :class:`~turnbudget.exceptions.ProviderError`.  Context-size rejections
    must use ``ProviderErrorKind.OVERFLOW``; it is the only kind the send
    pipeline retries.
    """

    async def send(self, request: ChatRequest) -> ChatResponse:
        """Send one request and return the reply.

        The call may be cancelled at any await point when the send is
        cancelled or times out; implementations must not swallow
        ``asyncio.CancelledError``.

        Parameters:
            request: Model, assembled messages, system preamble, options
                and API key.

        Returns:
            The reply content and optional usage numbers.

        Raises:
            ProviderError: Classified remote failure.
        """
        ...
