"""
Cloud provider backends and registry.
"""

from .base import CloudProvider
from .registry import ProviderRegistry
from .mock import MockCloudProvider
from .aws import AwsCloudProvider
from .factory import create_provider, create_providers, PROVIDER_BACKENDS

__all__ = [
    'CloudProvider',
    'ProviderRegistry',
    'MockCloudProvider',
    'AwsCloudProvider',
    'create_provider',
    'create_providers',
    'PROVIDER_BACKENDS',
]
