"""Public interface for the MediaSync plugin client package."""

from .client import DisconnectCallback, HelloCallback, PluginClient

__all__ = [
    "DisconnectCallback",
    "HelloCallback",
    "PluginClient",
]
