"""OTLP export of send telemetry.

Bridges turnbudget telemetry events to OpenTelemetry spans via OTLP/HTTP.
Requires the ``otlp`` extra: ``pip install turnbudget[otlp]``
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import Any

from turnbudget.models.telemetry import TelemetryEvent, TelemetryStatus

logger = logging.getLogger(__name__)

__all__ = ["OTLPTelemetrySink"]

_ATTRIBUTE_PREFIX = "turnbudget."

_NUMERIC_FIELDS = (
    "attempts_used",
    "trimmed_internal",
    "trimmed_provider",
    "trimmed_count",
    "max_context",
    "system_tokens",
    "user_tokens",
    "chars_per_token",
    "predicted_count",
    "predicted_history_tokens",
    "predicted_total_tokens",
    "remaining_context",
    "attempt_number",
)


def _event_attributes(event: TelemetryEvent) -> dict[str, Any]:
    """Flatten an event into OTel-compatible span attributes.

    Separates serialisation from the OTel SDK so it can be tested without
    installing OpenTelemetry packages.  ``None`` values are omitted since
    OTel attributes cannot hold them.
    """
    attrs: dict[str, Any] = {
        f"{_ATTRIBUTE_PREFIX}status": event.status.value,
        f"{_ATTRIBUTE_PREFIX}model": event.model,
        f"{_ATTRIBUTE_PREFIX}provider_id": event.provider_id,
        f"{_ATTRIBUTE_PREFIX}selected_ids": list(event.selected_ids),
        f"{_ATTRIBUTE_PREFIX}message_count": len(event.messages),
    }
    for name in _NUMERIC_FIELDS:
        value = getattr(event, name)
        if value is not None:
            attrs[f"{_ATTRIBUTE_PREFIX}{name}"] = value
    if event.conversation_id is not None:
        attrs[f"{_ATTRIBUTE_PREFIX}conversation_id"] = event.conversation_id
    if event.error_code is not None:
        attrs[f"{_ATTRIBUTE_PREFIX}error_code"] = event.error_code
    return attrs


def _datetime_to_ns(dt: datetime) -> int:
    """Convert a datetime to nanoseconds since the Unix epoch."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return int(dt.timestamp() * 1_000_000_000)


class OTLPTelemetrySink:
    """Export telemetry events to an OpenTelemetry collector via OTLP/HTTP.

    Each event becomes one span named ``send.<status>`` carrying the event
    numbers as attributes.  Terminal ``error`` events set an error status.

    Requires the ``opentelemetry-exporter-otlp-proto-http`` and
    ``opentelemetry-sdk`` packages.  Install via::

        pip install turnbudget[otlp]

    Parameters:
        endpoint: OTLP collector endpoint URL.
            Default ``"http://localhost:4318"``.
        service_name: Service name for the OTLP resource.
            Default ``"turnbudget"``.
        headers: Optional headers dict for authentication.
        span_exporter: Optional OTel span exporter used instead of the
            OTLP HTTP exporter (e.g. an in-memory exporter).
    """

    __slots__ = ("_endpoint", "_headers", "_provider", "_service_name", "_status_cls")

    def __init__(
        self,
        endpoint: str = "http://localhost:4318",
        service_name: str = "turnbudget",
        headers: dict[str, str] | None = None,
        span_exporter: Any = None,
    ) -> None:
        try:
            from opentelemetry.sdk.resources import Resource
            from opentelemetry.sdk.trace import TracerProvider
            from opentelemetry.sdk.trace.export import SimpleSpanProcessor
            from opentelemetry.trace import Status, StatusCode
        except ImportError:
            msg = (
                "OTLPTelemetrySink requires opentelemetry packages. "
                "Install with: pip install turnbudget[otlp]"
            )
            raise ImportError(msg) from None

        self._endpoint = endpoint
        self._service_name = service_name
        self._headers = headers or {}
        self._status_cls = (Status, StatusCode)

        if span_exporter is None:
            try:
                from opentelemetry.exporter.otlp.proto.http.trace_exporter import (
                    OTLPSpanExporter as _OTLPExporter,
                )
            except ImportError:
                msg = (
                    "OTLPTelemetrySink requires opentelemetry-exporter-otlp-proto-http. "
                    "Install with: pip install turnbudget[otlp]"
                )
                raise ImportError(msg) from None
            span_exporter = _OTLPExporter(endpoint=f"{endpoint}/v1/traces", headers=self._headers)

        resource = Resource.create({"service.name": service_name})
        provider = TracerProvider(resource=resource)
        provider.add_span_processor(SimpleSpanProcessor(span_exporter))
        self._provider = provider

    def emit(self, event: TelemetryEvent) -> None:
        """Export one event as a zero-duration span."""
        tracer = self._provider.get_tracer(self._service_name)
        start = _datetime_to_ns(event.timestamp)
        span = tracer.start_span(
            name=f"send.{event.status.value}",
            attributes=_event_attributes(event),
            start_time=start,
        )
        if event.status == TelemetryStatus.ERROR:
            status_cls, code = self._status_cls
            span.set_status(status_cls(code.ERROR, event.error_code or "error"))
        span.end(end_time=start)
        logger.debug("Exported %s event via OTLP", event.status.value)

    def shutdown(self) -> None:
        """Flush pending spans and shut down the exporter."""
        self._provider.shutdown()
