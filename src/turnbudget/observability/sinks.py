"""Built-in telemetry sinks."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

from turnbudget.models.telemetry import TelemetryEvent, TelemetryStatus

logger = logging.getLogger(__name__)


class InMemoryTelemetrySink:
    """Stores events in an in-memory list for testing and debugging.

    Provides ``get_events()``, ``statuses()`` and ``clear()`` helpers.
    """

    __slots__ = ("_events",)

    def __init__(self) -> None:
        self._events: list[TelemetryEvent] = []

    def __len__(self) -> int:
        return len(self._events)

    def emit(self, event: TelemetryEvent) -> None:
        self._events.append(event)

    def get_events(self, status: TelemetryStatus | None = None) -> list[TelemetryEvent]:
        """Return a copy of the stored events, optionally filtered by status."""
        if status is None:
            return list(self._events)
        return [e for e in self._events if e.status == status]

    def statuses(self) -> list[TelemetryStatus]:
        return [e.status for e in self._events]

    @property
    def last(self) -> TelemetryEvent | None:
        return self._events[-1] if self._events else None

    def clear(self) -> None:
        self._events.clear()


class LoggingTelemetrySink:
    """Emits each event as structured JSON to the standard logging system.

    Parameters:
        log_level: Level used for every event.
        include_messages: Include assembled message bodies; off by default
            since they can be large and contain user content.
    """

    __slots__ = ("_include_messages", "_log_level")

    def __init__(self, log_level: int = logging.INFO, *, include_messages: bool = False) -> None:
        self._log_level = log_level
        self._include_messages = include_messages

    def emit(self, event: TelemetryEvent) -> None:
        data = event_to_dict(event, include_messages=self._include_messages)
        logger.log(self._log_level, json.dumps(data, default=str))


class JsonlFileTelemetrySink:
    """Appends events as JSON-Lines to a file on disk.

    Parameters:
        path: The file path to write to.  Parent directories must exist.
        include_messages: Include assembled message bodies.
    """

    __slots__ = ("_include_messages", "_path")

    def __init__(self, path: str | Path, *, include_messages: bool = False) -> None:
        self._path = Path(path)
        self._include_messages = include_messages

    @property
    def path(self) -> Path:
        return self._path

    def emit(self, event: TelemetryEvent) -> None:
        data = event_to_dict(event, include_messages=self._include_messages)
        with self._path.open("a", encoding="utf-8") as fh:
            fh.write(json.dumps(data, default=str))
            fh.write("\n")


def event_to_dict(event: TelemetryEvent, *, include_messages: bool = True) -> dict[str, Any]:
    """Convert an event to a JSON-serialisable dictionary.

    Message bodies are replaced by their count when ``include_messages`` is
    false.
    """
    data = event.model_dump(mode="json", exclude={"messages"})
    if include_messages:
        data["messages"] = [m.model_dump(mode="json") for m in event.messages]
    else:
        data["message_count"] = len(event.messages)
    return data
