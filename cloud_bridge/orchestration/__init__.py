"""
Discovery and collection orchestration.
"""

from .base import BaseOrchestrator, PushTracker
from .cache import ResultCache
from .collection import CollectionOrchestrator
from .discovery import DiscoveryOrchestrator

__all__ = [
    'BaseOrchestrator',
    'PushTracker',
    'ResultCache',
    'CollectionOrchestrator',
    'DiscoveryOrchestrator',
]
