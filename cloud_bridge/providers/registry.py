"""
Registry of configured cloud providers.
"""

import logging
import threading
from typing import Dict, List, Optional

from cloud_bridge.providers.base import CloudProvider
from cloud_bridge.utils.errors import ConfigurationError

logger = logging.getLogger(__name__)


class ProviderRegistry:
    """Thread-safe map of provider id to provider instance."""

    def __init__(self):
        self._providers: Dict[str, CloudProvider] = {}
        self._lock = threading.Lock()

    def register(self, provider: CloudProvider, replace: bool = False) -> bool:
        """
        Register a provider.

        Args:
            provider: Provider to register
            replace: Replace an existing provider with the same id

        Returns:
            True if the provider was added, False if an existing
            registration was kept
        """
        with self._lock:
            existing = self._providers.get(provider.provider_id)
            if existing is provider:
                return False
            if existing is not None and not replace:
                logger.warning(f"Provider {provider.provider_id} is already registered")
                return False
            self._providers[provider.provider_id] = provider

        logger.info(f"Registered provider {provider.provider_id} ({provider.provider_type})")
        return True

    def unregister(self, provider_id: str) -> Optional[CloudProvider]:
        with self._lock:
            provider = self._providers.pop(provider_id, None)
        if provider is not None:
            logger.info(f"Unregistered provider {provider_id}")
        return provider

    def get(self, provider_id: str) -> Optional[CloudProvider]:
        with self._lock:
            return self._providers.get(provider_id)

    def require(self, provider_id: str) -> CloudProvider:
        """
        Look up a provider that must exist.

        Raises:
            ConfigurationError: If no provider is registered under the id
        """
        provider = self.get(provider_id)
        if provider is None:
            raise ConfigurationError(
                f"No provider registered with id {provider_id}",
                error_code="PROVIDER_NOT_FOUND"
            )
        return provider

    def ids(self) -> List[str]:
        with self._lock:
            return sorted(self._providers)

    def all(self) -> List[CloudProvider]:
        with self._lock:
            return list(self._providers.values())

    def __contains__(self, provider_id: str) -> bool:
        with self._lock:
            return provider_id in self._providers

    def __len__(self) -> int:
        with self._lock:
            return len(self._providers)

    def close_all(self) -> None:
        """Close every registered provider, logging failures."""
        for provider in self.all():
            try:
                provider.close()
            except Exception as e:
                logger.error(f"Error closing provider {provider.provider_id}: {e}")
