"""
Key-value store wrapper.

This module contains the Valkey client configuration and the typed
command wrappers for strings, keys and expirations.
"""

from .config import (
    KeyValueConfig,
    KeyValueError,
    KeyValueConfigurationError,
    KeyValueConnectionError,
    KeyValueCommandError,
)
from .client import KeyValueClient, get_kv_client, close_global_kv_client

__all__ = [
    # Configuration
    "KeyValueConfig",

    # Errors
    "KeyValueError",
    "KeyValueConfigurationError",
    "KeyValueConnectionError",
    "KeyValueCommandError",

    # Client
    "KeyValueClient",
    "get_kv_client",
    "close_global_kv_client",
]
