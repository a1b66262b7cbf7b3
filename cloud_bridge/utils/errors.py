"""
Error types raised by the bridge.
"""

from typing import Any, Dict, Optional


class BridgeError(Exception):
    """Base class for all bridge errors."""

    def __init__(self, message: str, error_code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.error_code = error_code

    def to_dict(self) -> Dict[str, Any]:
        """Convert error to dictionary for status and CLI output."""
        return {
            "type": self.__class__.__name__,
            "message": self.message,
            "error_code": self.error_code,
        }


class ProviderError(BridgeError):
    """A cloud provider call failed (auth, network, API error)."""

    def __init__(
        self,
        provider_id: str,
        message: str,
        error_code: Optional[str] = None,
        resource_id: Optional[str] = None
    ):
        super().__init__(message, error_code)
        self.provider_id = provider_id
        self.resource_id = resource_id

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["provider_id"] = self.provider_id
        data["resource_id"] = self.resource_id
        return data


class ConfigurationError(BridgeError):
    """Missing provider, missing resource mapping, or invalid settings."""


class DownstreamPushError(BridgeError):
    """A reconciliation sink call failed."""

    def __init__(
        self,
        operation: str,
        message: str,
        foreign_source: Optional[str] = None,
        node_id: Optional[str] = None,
        status_code: Optional[int] = None
    ):
        super().__init__(message, error_code=f"HTTP_{status_code}" if status_code else None)
        self.operation = operation
        self.foreign_source = foreign_source
        self.node_id = node_id
        self.status_code = status_code
