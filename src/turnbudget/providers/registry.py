"""Provider adapters and API keys, keyed by provider id."""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping

from turnbudget.exceptions import ProviderNotRegisteredError
from turnbudget.protocols.provider import Provider

logger = logging.getLogger(__name__)

API_KEY_ENV_TEMPLATE = "TURNBUDGET_{provider}_API_KEY"


class ApiKeyStore:
    """API keys per provider id.

    Explicitly set keys win; otherwise ``TURNBUDGET_<PROVIDER>_API_KEY`` is
    read from the environment at lookup time.  Keys never appear in
    ``repr``.
    """

    __slots__ = ("_environ", "_keys", "_use_env")

    def __init__(
        self,
        keys: Mapping[str, str] | None = None,
        *,
        use_env: bool = True,
        environ: Mapping[str, str] | None = None,
    ) -> None:
        self._keys: dict[str, str] = {k.lower(): v for k, v in (keys or {}).items()}
        self._use_env = use_env
        self._environ = environ

    def __repr__(self) -> str:
        return f"{type(self).__name__}(providers={sorted(self._keys)})"

    def __contains__(self, provider_id: object) -> bool:
        return isinstance(provider_id, str) and self.get(provider_id) is not None

    def set(self, provider_id: str, key: str) -> None:
        self._keys[provider_id.lower()] = key

    def delete(self, provider_id: str) -> bool:
        return self._keys.pop(provider_id.lower(), None) is not None

    def get(self, provider_id: str) -> str | None:
        key = self._keys.get(provider_id.lower())
        if key:
            return key
        if not self._use_env:
            return None
        env = os.environ if self._environ is None else self._environ
        value = env.get(API_KEY_ENV_TEMPLATE.format(provider=provider_id.upper()))
        return value.strip() if value and value.strip() else None


class ProviderRegistry:
    """Maps provider ids (``"openai"``, ``"anthropic"``, ...) to adapters."""

    __slots__ = ("_api_keys", "_providers")

    def __init__(self, api_keys: ApiKeyStore | None = None) -> None:
        self._providers: dict[str, Provider] = {}
        self._api_keys = api_keys or ApiKeyStore()

    def __repr__(self) -> str:
        return f"{type(self).__name__}(providers={self.provider_ids})"

    def __contains__(self, provider_id: object) -> bool:
        return isinstance(provider_id, str) and provider_id.lower() in self._providers

    @property
    def api_keys(self) -> ApiKeyStore:
        return self._api_keys

    @property
    def provider_ids(self) -> list[str]:
        return sorted(self._providers)

    def register(self, provider_id: str, provider: Provider) -> ProviderRegistry:
        """Register (or replace) an adapter. Returns self for chaining."""
        if not isinstance(provider, Provider):
            msg = f"{type(provider).__name__} does not implement the Provider protocol"
            raise TypeError(msg)
        key = provider_id.lower()
        if key in self._providers:
            logger.debug("Replacing provider adapter for %r", key)
        self._providers[key] = provider
        return self

    def unregister(self, provider_id: str) -> bool:
        return self._providers.pop(provider_id.lower(), None) is not None

    def get(self, provider_id: str) -> Provider | None:
        return self._providers.get(provider_id.lower())

    def require(self, provider_id: str) -> Provider:
        """Strict lookup.

        Raises:
            ProviderNotRegisteredError: If no adapter is registered.
        """
        provider = self.get(provider_id)
        if provider is None:
            msg = f"No provider registered for '{provider_id}'"
            raise ProviderNotRegisteredError(msg, details={"provider_id": provider_id})
        return provider
