"""Telemetry sinks for the send pipeline."""

from .otlp import OTLPTelemetrySink
from .sinks import InMemoryTelemetrySink, JsonlFileTelemetrySink, LoggingTelemetrySink, event_to_dict

__all__ = [
    "InMemoryTelemetrySink",
    "JsonlFileTelemetrySink",
    "LoggingTelemetrySink",
    "OTLPTelemetrySink",
    "event_to_dict",
]
