"""
Test suite for the key-value client.

The Valkey client and its connection pool are mocked, so these tests do not
need a running server. Each wrapper must issue exactly one store command.
"""

import logging
from datetime import datetime, timedelta
from unittest.mock import patch

import pytest
from valkey.exceptions import ConnectionError, ResponseError, TimeoutError

from dbkit.cache import (
    KeyValueClient,
    KeyValueCommandError,
    KeyValueConfig,
    KeyValueConnectionError,
    close_global_kv_client,
    get_kv_client,
)


@pytest.fixture
def kv(mock_valkey):
    """KeyValueClient over the mocked Valkey client."""
    client = KeyValueClient(KeyValueConfig(url="redis://localhost:6379/0"))
    mock_valkey.reset_mock()
    return client


class TestConnection:
    """Test cases for client construction and teardown."""

    def test_pool_built_from_url(self):
        """Test that the pool is created from the configured URL."""
        config = KeyValueConfig(url="redis://user:pw@cache:6380/2", max_connections=5, socket_timeout=1.5)

        with patch("dbkit.cache.client.ConnectionPool") as pool_cls, \
                patch("dbkit.cache.client.valkey.Valkey") as valkey_cls:
            client = KeyValueClient(config)

        pool_cls.from_url.assert_called_once_with(
            "redis://user:pw@cache:6380/2",
            max_connections=5,
            decode_responses=True,
            socket_timeout=1.5,
        )
        valkey_cls.assert_called_once_with(connection_pool=pool_cls.from_url.return_value)
        valkey_cls.return_value.ping.assert_called_once_with()
        assert client.client is valkey_cls.return_value

    def test_ping_failure_is_fatal(self, mock_valkey):
        """Test that an unreachable server fails construction."""
        mock_valkey.ping.side_effect = ConnectionError("refused")

        with pytest.raises(KeyValueConnectionError, match="Connection test failed"):
            KeyValueClient(KeyValueConfig())

    def test_close(self, kv, mock_valkey):
        """Test that closing releases the client."""
        kv.close()
        mock_valkey.close.assert_called_once_with()

    def test_context_manager(self, mock_valkey):
        """Test the context manager protocol."""
        with KeyValueClient(KeyValueConfig()) as client:
            client.get("k")

        mock_valkey.close.assert_called_once_with()


class TestStringCommands:
    """Test cases for string commands and default expiration."""

    def test_set_without_expiration(self, kv, mock_valkey):
        """Test that the default expiration of zero never expires."""
        mock_valkey.set.return_value = True

        assert kv.set("greeting", "hello") is True
        mock_valkey.set.assert_called_once_with("greeting", "hello", ex=None)

    def test_set_uses_default_expiration(self, mock_valkey):
        """Test that a configured default expiration is applied."""
        client = KeyValueClient(KeyValueConfig(default_expiration=30))
        client.set("greeting", "hello")

        mock_valkey.set.assert_called_once_with("greeting", "hello", ex=30)

    def test_set_explicit_zero_overrides_default(self, mock_valkey):
        """Test that an explicit zero means never expire."""
        client = KeyValueClient(KeyValueConfig(default_expiration=30))
        client.set("greeting", "hello", 0)

        mock_valkey.set.assert_called_once_with("greeting", "hello", ex=None)

    def test_set_with_timedelta(self, kv, mock_valkey):
        """Test a timedelta expiration."""
        kv.set("greeting", "hello", timedelta(minutes=2))
        mock_valkey.set.assert_called_once_with("greeting", "hello", ex=timedelta(minutes=2))

    def test_set_with_zero_timedelta_never_expires(self, kv, mock_valkey):
        """Test that a zero timedelta behaves like an explicit zero."""
        kv.set("greeting", "hello", timedelta(0))
        mock_valkey.set.assert_called_once_with("greeting", "hello", ex=None)

    @pytest.mark.parametrize("expiration", [-1, timedelta(seconds=-1)])
    def test_set_rejects_negative_expiration(self, kv, mock_valkey, expiration):
        """Test that negative expirations are rejected before reaching the store."""
        with pytest.raises(ValueError, match="Expiration cannot be negative"):
            kv.set("greeting", "hello", expiration)

        mock_valkey.set.assert_not_called()

    def test_set_ex(self, kv, mock_valkey):
        """Test SETEX argument order."""
        kv.set_ex("greeting", "hello", 10)
        mock_valkey.setex.assert_called_once_with("greeting", 10, "hello")

    def test_set_nx_reports_whether_written(self, kv, mock_valkey):
        """Test SET NX outcome."""
        mock_valkey.set.return_value = None

        assert kv.set_nx("greeting", "hello", 5) is False
        mock_valkey.set.assert_called_once_with("greeting", "hello", ex=5, nx=True)

    def test_mset(self, kv, mock_valkey):
        """Test setting multiple keys."""
        mock_valkey.mset.return_value = True

        assert kv.mset({"a": 1, "b": 2}) is True
        mock_valkey.mset.assert_called_once_with({"a": 1, "b": 2})

    def test_get_missing_key(self, kv, mock_valkey):
        """Test that a missing key is not an error."""
        mock_valkey.get.return_value = None
        assert kv.get("missing") is None

    def test_mget(self, kv, mock_valkey):
        """Test getting multiple keys."""
        mock_valkey.mget.return_value = ["1", None]

        assert kv.mget("a", "b") == ["1", None]
        mock_valkey.mget.assert_called_once_with(("a", "b"))

    def test_getset(self, kv, mock_valkey):
        """Test GETSET."""
        mock_valkey.getset.return_value = "old"

        assert kv.getset("k", "new") == "old"
        mock_valkey.getset.assert_called_once_with("k", "new")


class TestKeyCommands:
    """Test cases for key and expiration commands."""

    @pytest.mark.parametrize("method, args, command, result", [
        ("delete", ("a", "b"), "delete", 2),
        ("unlink", ("a",), "unlink", 1),
        ("exists", ("a", "b"), "exists", 1),
        ("expire", ("a", 10), "expire", True),
        ("pexpire", ("a", 1500), "pexpire", True),
        ("ttl", ("a",), "ttl", -1),
        ("pttl", ("a",), "pttl", -2),
        ("persist", ("a",), "persist", True),
        ("dump", ("a",), "dump", b"\x00\x01"),
        ("type", ("a",), "type", "string"),
        ("random_key", (), "randomkey", "a"),
    ])
    def test_pass_through(self, kv, mock_valkey, method, args, command, result):
        """Test that each wrapper issues a single matching command."""
        getattr(mock_valkey, command).return_value = result

        assert getattr(kv, method)(*args) == result
        getattr(mock_valkey, command).assert_called_once_with(*args)

    def test_expire_at(self, kv, mock_valkey):
        """Test EXPIREAT with a datetime."""
        when = datetime(2030, 1, 1)
        kv.expire_at("a", when)
        mock_valkey.expireat.assert_called_once_with("a", when)

    def test_pexpire_at(self, kv, mock_valkey):
        """Test PEXPIREAT with a millisecond timestamp."""
        kv.pexpire_at("a", 1893456000000)
        mock_valkey.pexpireat.assert_called_once_with("a", 1893456000000)

    def test_rename(self, kv, mock_valkey):
        """Test RENAME."""
        mock_valkey.rename.return_value = True

        assert kv.rename("old", "new") is True
        mock_valkey.rename.assert_called_once_with("old", "new")

    def test_rename_nx_existing_target(self, kv, mock_valkey):
        """Test RENAMENX when the target exists."""
        mock_valkey.renamenx.return_value = False

        assert kv.rename_nx("old", "new") is False
        mock_valkey.renamenx.assert_called_once_with("old", "new")

    def test_move(self, kv, mock_valkey):
        """Test MOVE to another database."""
        mock_valkey.move.return_value = True

        assert kv.move("a", 3) is True
        mock_valkey.move.assert_called_once_with("a", 3)

    def test_keys(self, kv, mock_valkey):
        """Test KEYS with a pattern."""
        mock_valkey.keys.return_value = ["user:1", "user:2"]

        assert kv.keys("user:*") == ["user:1", "user:2"]
        mock_valkey.keys.assert_called_once_with("user:*")

    def test_keys_default_pattern(self, kv, mock_valkey):
        """Test KEYS without a pattern."""
        mock_valkey.keys.return_value = []

        assert kv.keys() == []
        mock_valkey.keys.assert_called_once_with("*")


class TestErrors:
    """Test cases for error translation."""

    def test_response_error_becomes_command_error(self, kv, mock_valkey):
        """Test that rejected commands raise KeyValueCommandError."""
        mock_valkey.rename.side_effect = ResponseError("ERR no such key")

        with pytest.raises(KeyValueCommandError, match="rename failed: ERR no such key") as exc_info:
            kv.rename("missing", "new")

        assert isinstance(exc_info.value.__cause__, ResponseError)

    @pytest.mark.parametrize("error", [ConnectionError("reset"), TimeoutError("timed out")])
    def test_connection_errors(self, kv, mock_valkey, error):
        """Test that connection failures raise KeyValueConnectionError."""
        mock_valkey.get.side_effect = error

        with pytest.raises(KeyValueConnectionError, match="get failed"):
            kv.get("k")

    def test_no_retry(self, kv, mock_valkey):
        """Test that a failing command is attempted exactly once."""
        mock_valkey.set.side_effect = TimeoutError("timed out")

        with pytest.raises(KeyValueConnectionError):
            kv.set("k", "v")

        assert mock_valkey.set.call_count == 1


class TestGlobalClient:
    """Test cases for the process-wide key-value client."""

    def test_same_instance_returned(self, mock_valkey):
        """Test that repeated calls return the first instance."""
        first = get_kv_client(config=KeyValueConfig(url="redis://localhost:6379/0"))
        second = get_kv_client(config=KeyValueConfig(url="redis://localhost:6379/5"))

        assert first is second
        assert second.config.url == "redis://localhost:6379/0"

    def test_reconfiguration_is_logged(self, mock_valkey, caplog):
        """Test that ignored configuration is reported."""
        get_kv_client(config=KeyValueConfig(default_expiration=1))

        with caplog.at_level(logging.WARNING, logger="dbkit.cache.client"):
            get_kv_client(config=KeyValueConfig(default_expiration=2))

        assert "ignoring new configuration" in caplog.text

    def test_url_keyword(self, mock_valkey):
        """Test building the global client from a URL."""
        client = get_kv_client(url="redis://cache:6380/1")

        assert client.config.url == "redis://cache:6380/1"
        assert get_kv_client() is client

    def test_url_reconfiguration_is_logged(self, mock_valkey, caplog):
        """Test that a different URL on a later call is ignored with a warning."""
        first = get_kv_client(url="redis://localhost:6379/0")

        with caplog.at_level(logging.WARNING, logger="dbkit.cache.client"):
            second = get_kv_client(url="redis://localhost:6379/5")

        assert second is first
        assert second.config.url == "redis://localhost:6379/0"
        assert "ignoring new configuration" in caplog.text

    def test_close_resets_global_client(self, mock_valkey):
        """Test that closing allows a fresh configuration."""
        first = get_kv_client(config=KeyValueConfig(default_expiration=1))
        close_global_kv_client()
        second = get_kv_client(config=KeyValueConfig(default_expiration=2))

        assert first is not second
        assert second.config.default_expiration == 2
