"""Telemetry sink protocol."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from turnbudget.models.telemetry import TelemetryEvent


@runtime_checkable
class TelemetrySink(Protocol):
    """Receives telemetry events emitted by the send pipeline.

    Sinks are fire-and-forget: failures are logged by the pipeline and
    never change its behavior.  Plain callables taking one event are
    accepted wherever a sink is.
    """

    def emit(self, event: TelemetryEvent) -> None:
        """Handle one event.

        Parameters:
            event: The immutable event record.
        """
        ...
