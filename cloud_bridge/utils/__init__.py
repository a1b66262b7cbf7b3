"""
Shared utilities for the cloud bridge.
"""

from .errors import BridgeError, ProviderError, ConfigurationError, DownstreamPushError
from .durations import parse_duration, format_duration, format_minutes

__all__ = [
    "BridgeError",
    "ProviderError",
    "ConfigurationError",
    "DownstreamPushError",
    "parse_duration",
    "format_duration",
    "format_minutes",
]
