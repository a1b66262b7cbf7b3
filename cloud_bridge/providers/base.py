"""
Base class for cloud provider implementations.
"""

import copy
import logging
from abc import ABC, abstractmethod
from dataclasses import asdict
from typing import Any, Dict, FrozenSet, Mapping, Optional

from cloud_bridge.config.models import ProviderConfig
from cloud_bridge.config.validation import ProviderConfigValidator
from cloud_bridge.models.core import MetricBatch, Resource, ValidationResult
from cloud_bridge.utils.errors import BridgeError, ConfigurationError

logger = logging.getLogger(__name__)


def _merge(base: Dict[str, Any], changes: Mapping[str, Any]) -> Dict[str, Any]:
    merged = dict(base)
    for key, value in changes.items():
        if isinstance(value, Mapping) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


class CloudProvider(ABC):
    """
    Abstract base class for cloud providers.

    A provider reports resources through ``discover`` and metric snapshots
    through ``collect``. Both calls block and are run on the worker pool by
    the orchestrators, never on the event loop.
    """

    provider_type: str = "unknown"

    def __init__(self, config: ProviderConfig):
        """
        Initialize provider.

        Args:
            config: Provider configuration
        """
        self.config = config
        self.logger = logging.getLogger(f"{__name__}.{config.provider_id}")

    @property
    def provider_id(self) -> str:
        return self.config.provider_id

    @property
    def display_name(self) -> str:
        return self.config.display_name or self.config.provider_id

    @abstractmethod
    def validate(self) -> ValidationResult:
        """Check that the provider can reach its backend with its credentials."""
        pass

    @abstractmethod
    def discover(self) -> FrozenSet[Resource]:
        """
        Discover the provider's resources.

        Returns:
            Set of discovered resources

        Raises:
            ProviderError: If the backend call fails
        """
        pass

    @abstractmethod
    def collect(self, resource: Resource) -> MetricBatch:
        """
        Collect a metric snapshot for one resource.

        Raises:
            ProviderError: If the resource is not owned by this provider or
                the backend call fails
        """
        pass

    def get_available_regions(self) -> FrozenSet[str]:
        return frozenset(self.config.regions)

    def get_supported_metrics(self) -> FrozenSet[str]:
        return frozenset(self.config.cloudwatch.metrics)

    def get_configuration(self) -> Dict[str, Any]:
        """Configuration with secrets masked."""
        data = asdict(self.config)
        for key in ("secret_access_key", "session_token"):
            if data.get(key):
                data[key] = "********"
        return data

    def update_configuration(self, changes: Mapping[str, Any]) -> None:
        """
        Apply configuration changes atomically.

        The changes are merged onto the current configuration, validated,
        and applied. If validation or the provider's own re-initialization
        fails, the previous configuration is restored.

        Raises:
            ConfigurationError: If the changes are rejected
        """
        new_id = changes.get("provider_id")
        if new_id is not None and new_id != self.provider_id:
            raise ConfigurationError(
                f"Cannot change provider id of {self.provider_id} to {new_id}",
                error_code="PROVIDER_ID_IMMUTABLE"
            )

        snapshot = copy.deepcopy(self.config)
        try:
            merged = _merge(asdict(self.config), changes)
            self.config = ProviderConfigValidator(**merged).to_config()
            self._on_configuration_changed()

            result = self.validate()
            if not result.is_valid:
                raise ConfigurationError(
                    f"Configuration rejected for {self.provider_id}: {'; '.join(result.errors)}",
                    error_code="INVALID_PROVIDER_CONFIG"
                )
        except (ValueError, BridgeError) as e:
            self.config = snapshot
            self._on_configuration_changed()
            logger.warning(f"Restored previous configuration of provider {self.provider_id}: {e}")
            if isinstance(e, ConfigurationError):
                raise
            raise ConfigurationError(
                f"Invalid configuration for {self.provider_id}: {e}",
                error_code="INVALID_PROVIDER_CONFIG"
            ) from e

        logger.info(f"Updated configuration of provider {self.provider_id}")

    def _on_configuration_changed(self) -> None:
        """Hook for providers that cache clients derived from the configuration."""

    def close(self) -> None:
        """Release backend clients."""

    def describe(self) -> Dict[str, Optional[str]]:
        return {
            "provider_id": self.provider_id,
            "provider_type": self.provider_type,
            "display_name": self.display_name,
            "backend": self.config.backend,
        }

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(provider_id={self.provider_id!r})"
