"""Shared fire-and-forget notification helper used by the send pipeline."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Any


def fire_callbacks(
    callbacks: Sequence[Any],
    method: str,
    *args: Any,
    logger: logging.Logger | None = None,
    log_level: int = logging.WARNING,
    **kwargs: Any,
) -> None:
    """Call ``method`` on every callback, swallowing exceptions.

    A callback without ``method`` that is itself callable is invoked
    directly, so plain functions can stand in for sink objects.

    Parameters:
        callbacks: Objects (or plain callables) to notify.
        method: Name of the method to call on each callback.
        *args: Positional arguments forwarded to the callback.
        logger: Optional logger for recording failures.
        log_level: Log level for failure messages (default ``WARNING``).
        **kwargs: Keyword arguments forwarded to the callback.
    """
    for cb in callbacks:
        fn = getattr(cb, method, None)
        if fn is None and callable(cb):
            fn = cb
        if fn is None or not callable(fn):
            continue
        try:
            fn(*args, **kwargs)
        except Exception:
            if logger:
                logger.log(log_level, "Callback %r.%s failed", cb, method, exc_info=True)
