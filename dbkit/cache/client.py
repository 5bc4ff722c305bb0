"""
Valkey key-value client with typed command wrappers.

Each method maps onto exactly one store command. The only behaviour added on
top of the underlying client is the configured default expiration for
``set`` and the translation of store errors into ``KeyValueError`` types.
"""

import functools
import logging
import threading
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Union

import valkey
from valkey.connection import ConnectionPool
from valkey.exceptions import ConnectionError, TimeoutError, ValkeyError

from .config import (
    KeyValueConfig,
    KeyValueCommandError,
    KeyValueConnectionError,
)

logger = logging.getLogger(__name__)

Expiration = Union[int, timedelta]
ExpireTime = Union[int, datetime]


def _command(func):
    """Translate store errors raised by a wrapped command."""

    @functools.wraps(func)
    def wrapper(self, *args, **kwargs):
        try:
            return func(self, *args, **kwargs)
        except (ConnectionError, TimeoutError) as e:
            logger.error(f"Key-value {func.__name__} lost connection: {e}")
            raise KeyValueConnectionError(f"{func.__name__} failed: {e}") from e
        except ValkeyError as e:
            raise KeyValueCommandError(f"{func.__name__} failed: {e}") from e

    return wrapper


class KeyValueClient:
    """
    Blocking key-value client over a shared Valkey connection pool.

    Usage:
        with KeyValueClient(KeyValueConfig(url="redis://localhost:6379/0")) as kv:
            kv.set("greeting", "hello", 60)
            kv.get("greeting")
    """

    def __init__(self, config: Optional[KeyValueConfig] = None):
        """
        Initialize the client and verify connectivity.

        Args:
            config: KeyValueConfig instance, defaults to environment-based config

        Raises:
            KeyValueConnectionError: If the server does not answer a PING
        """
        self.config = config or KeyValueConfig.from_env()

        logger.info(f"Initializing key-value client: {self.config}")

        self._connection_pool = ConnectionPool.from_url(
            self.config.url, **self.config.to_connection_pool_kwargs()
        )
        self._client = valkey.Valkey(connection_pool=self._connection_pool)

        try:
            self._client.ping()
        except ValkeyError as e:
            self._connection_pool.disconnect()
            logger.error(f"Failed to connect to key-value store: {e}")
            raise KeyValueConnectionError(f"Connection test failed: {e}") from e

        logger.info("Successfully connected to key-value store")

    @property
    def client(self) -> valkey.Valkey:
        """The underlying Valkey client."""
        return self._client

    def _expiration(self, expiration: Optional[Expiration]) -> Optional[Expiration]:
        if expiration is None:
            expiration = self.config.default_expiration
        seconds = expiration.total_seconds() if isinstance(expiration, timedelta) else expiration
        if seconds < 0:
            raise ValueError(f"Expiration cannot be negative: {expiration!r}")
        return expiration if seconds > 0 else None

    # Strings

    @_command
    def set(self, key: str, value: Any, expiration: Optional[Expiration] = None) -> bool:
        """
        Set the value for key.

        Args:
            key: Cache key
            value: Value to store
            expiration: Seconds or timedelta; None uses the configured default,
                0 never expires, negative values raise ValueError
        """
        return bool(self._client.set(key, value, ex=self._expiration(expiration)))

    @_command
    def set_ex(self, key: str, value: Any, expiration: Expiration) -> bool:
        """Set the value for key with an expiration."""
        return bool(self._client.setex(key, expiration, value))

    @_command
    def set_nx(self, key: str, value: Any, expiration: Optional[Expiration] = None) -> bool:
        """
        Set the value only if key does not exist yet.

        Returns:
            True if the value was written
        """
        return bool(self._client.set(key, value, ex=self._expiration(expiration), nx=True))

    @_command
    def mset(self, mapping: Dict[str, Any]) -> bool:
        """Set values for multiple keys."""
        return bool(self._client.mset(mapping))

    @_command
    def get(self, key: str) -> Optional[Any]:
        """Get the value of key, or None if it does not exist."""
        return self._client.get(key)

    @_command
    def mget(self, *keys: str) -> List[Optional[Any]]:
        """Get the values of multiple keys, None for missing ones."""
        return self._client.mget(keys)

    @_command
    def getset(self, key: str, value: Any) -> Optional[Any]:
        return self._client.getset(key, value)

    # Keys

    @_command
    def delete(self, *keys: str) -> int:
        """Delete keys and return how many existed."""
        return self._client.delete(*keys)

    @_command
    def unlink(self, *keys: str) -> int:
        """Delete keys asynchronously on the server and return how many existed."""
        return self._client.unlink(*keys)

    @_command
    def exists(self, *keys: str) -> int:
        """Number of the given keys that exist."""
        return self._client.exists(*keys)

    @_command
    def expire(self, key: str, expiration: Expiration) -> bool:
        return self._client.expire(key, expiration)

    @_command
    def pexpire(self, key: str, expiration: Expiration) -> bool:
        return self._client.pexpire(key, expiration)

    @_command
    def ttl(self, key: str) -> int:
        """Seconds to live; -1 without expiration, -2 when the key is missing."""
        return self._client.ttl(key)

    @_command
    def pttl(self, key: str) -> int:
        return self._client.pttl(key)

    @_command
    def expire_at(self, key: str, when: ExpireTime) -> bool:
        return self._client.expireat(key, when)

    @_command
    def pexpire_at(self, key: str, when: ExpireTime) -> bool:
        return self._client.pexpireat(key, when)

    @_command
    def persist(self, key: str) -> bool:
        """Remove the expiration of key."""
        return self._client.persist(key)

    @_command
    def dump(self, key: str) -> Optional[bytes]:
        """Serialized value of key, or None if it does not exist."""
        return self._client.dump(key)

    @_command
    def rename(self, key: str, new_key: str) -> bool:
        """Rename key, overwriting new_key if it exists."""
        return bool(self._client.rename(key, new_key))

    @_command
    def rename_nx(self, key: str, new_key: str) -> bool:
        """Rename key only when new_key does not exist."""
        return bool(self._client.renamenx(key, new_key))

    @_command
    def type(self, key: str) -> str:
        return self._client.type(key)

    @_command
    def random_key(self) -> Optional[str]:
        """A random key from the current database."""
        return self._client.randomkey()

    @_command
    def move(self, key: str, db: int) -> bool:
        """Move key to another database."""
        return bool(self._client.move(key, db))

    @_command
    def keys(self, pattern: str = "*") -> List[str]:
        """All keys matching pattern."""
        return list(self._client.keys(pattern))

    # Connection

    @_command
    def ping(self) -> bool:
        return bool(self._client.ping())

    def close(self) -> None:
        """Close the connection pool."""
        try:
            self._client.close()
            self._connection_pool.disconnect()
            logger.info("Disconnected from key-value store")
        except ValkeyError as e:
            logger.warning(f"Error during key-value disconnect: {e}")

    def __enter__(self):
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        self.close()


# Global client instance for convenience
_global_client: Optional[KeyValueClient] = None
_global_lock = threading.Lock()


def get_kv_client(
    url: Optional[str] = None,
    config: Optional[KeyValueConfig] = None,
) -> KeyValueClient:
    """
    Get or create the process-wide key-value client.

    The first call builds the client; later calls return the same instance
    and ignore any configuration they pass.

    Args:
        url: Optional connection URL, used when no config is given
        config: Optional KeyValueConfig, uses environment config if neither
            is provided

    Returns:
        KeyValueClient: Global client instance
    """
    global _global_client

    if config is None and url is not None:
        config = KeyValueConfig(url=url)

    with _global_lock:
        if _global_client is None:
            _global_client = KeyValueClient(config)
        elif config is not None and config != _global_client.config:
            logger.warning("Key-value client already initialized, ignoring new configuration")

    return _global_client


def close_global_kv_client() -> None:
    """Close the global client connection."""
    global _global_client

    with _global_lock:
        if _global_client:
            _global_client.close()
            _global_client = None
