"""Protocol definitions for turnbudget's pluggable collaborators."""

from .images import ImageMetadataSource
from .provider import Provider
from .telemetry import TelemetrySink
from .tokenizer import Tokenizer

__all__ = [
    "ImageMetadataSource",
    "Provider",
    "TelemetrySink",
    "Tokenizer",
]
