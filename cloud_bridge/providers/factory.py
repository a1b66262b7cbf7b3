"""
Provider construction from configuration.
"""

import logging
from typing import Dict, Iterable, List, Type

from cloud_bridge.config.models import ProviderConfig
from cloud_bridge.providers.aws import AwsCloudProvider
from cloud_bridge.providers.base import CloudProvider
from cloud_bridge.providers.mock import MockCloudProvider
from cloud_bridge.utils.errors import ConfigurationError

logger = logging.getLogger(__name__)

PROVIDER_BACKENDS: Dict[str, Type[CloudProvider]] = {
    "aws": AwsCloudProvider,
    "mock": MockCloudProvider,
}


def create_provider(config: ProviderConfig) -> CloudProvider:
    """
    Create a provider for a configuration entry.

    Raises:
        ConfigurationError: If the backend is unknown
    """
    provider_class = PROVIDER_BACKENDS.get(config.backend)
    if provider_class is None:
        raise ConfigurationError(
            f"Unsupported provider backend '{config.backend}' for {config.provider_id}",
            error_code="UNSUPPORTED_BACKEND"
        )
    return provider_class(config)


def create_providers(configs: Iterable[ProviderConfig]) -> List[CloudProvider]:
    """Create providers for every enabled configuration entry."""
    providers = []
    for config in configs:
        if not config.enabled:
            logger.info(f"Skipping disabled provider {config.provider_id}")
            continue
        providers.append(create_provider(config))
    return providers
