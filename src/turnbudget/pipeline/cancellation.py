"""Cooperative cancellation for in-flight sends."""

from __future__ import annotations

import asyncio
import logging

from turnbudget.exceptions import SendCancelledError, SendTimeoutError

logger = logging.getLogger(__name__)

TIMEOUT_REASON = "timeout"


class CancellationToken:
    """A one-shot cancellation signal shared between a caller and a send.

    ``cancel`` may be called from any coroutine on the pipeline's event
    loop, including from a ``loop.call_later`` timer.  Only the first call
    takes effect; its ``reason`` is kept.

    Usage::

        token = CancellationToken()
        task = asyncio.create_task(pipeline.send(request, cancel=token))
        token.cancel("user")
    """

    __slots__ = ("_event", "_reason")

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._reason: str | None = None

    def __repr__(self) -> str:
        return f"{type(self).__name__}(cancelled={self.cancelled}, reason={self._reason!r})"

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> str | None:
        return self._reason

    @property
    def timed_out(self) -> bool:
        return self._reason == TIMEOUT_REASON

    def cancel(self, reason: str = "cancelled") -> None:
        if self._event.is_set():
            return
        self._reason = reason
        self._event.set()
        logger.debug("Cancellation requested (%s)", reason)

    def raise_if_cancelled(self) -> None:
        """Raise the matching cancellation error when the token has fired.

        Raises:
            SendTimeoutError: The token was fired by the send timeout.
            SendCancelledError: Any other cancellation.
        """
        if not self._event.is_set():
            return
        if self.timed_out:
            msg = "Send timed out"
            raise SendTimeoutError(msg, details={"reason": self._reason})
        msg = f"Send cancelled ({self._reason})"
        raise SendCancelledError(msg, details={"reason": self._reason})

    async def wait(self) -> str | None:
        """Block until the token fires; returns the reason."""
        await self._event.wait()
        return self._reason
