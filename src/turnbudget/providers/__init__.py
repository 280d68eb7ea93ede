"""Provider adapters, registry and API keys."""

from .anthropic import AnthropicProvider
from .base import classify_status, ensure_alternating_roles, is_context_overflow
from .images import InMemoryImageMetadataSource
from .registry import ApiKeyStore, ProviderRegistry

__all__ = [
    "AnthropicProvider",
    "ApiKeyStore",
    "InMemoryImageMetadataSource",
    "ProviderRegistry",
    "classify_status",
    "ensure_alternating_roles",
    "is_context_overflow",
]
